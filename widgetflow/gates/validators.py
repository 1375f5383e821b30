from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from jsonschema import Draft7Validator

from widgetflow.models import Artifact, DataResult, Plan, ValidationResult, is_json_value
from widgetflow.utils.io import read_text

SCHEMAS_DIR = Path(__file__).resolve().parents[1] / "schemas"

# Names used by earlier prompt revisions; accepted on input, never emitted.
LEGACY_DATA_SOURCES = {
    "web-search": "live-fetch",
    "example-data": "synthetic",
    "mock-database": "canned-dataset",
}

WIDGET_DATA_KEYS: Dict[str, List[str]] = {
    "metric-card": ["label", "value"],
    "line-chart": ["points"],
    "bar-chart": ["points"],
    "pie-chart": ["slices"],
    "table": ["columns", "rows"],
    "list": ["items"],
    "comparison": ["items"],
    "timeline": ["events"],
    "text": ["content"],
}

LIST_DATA_KEYS = {"points", "slices", "rows", "columns", "items", "events"}


@lru_cache(maxsize=None)
def _load_schema(name: str) -> Dict:
    return json.loads(read_text(SCHEMAS_DIR / name))


def _schema_errors(instance: Any, schema_name: str) -> List[str]:
    validator = Draft7Validator(_load_schema(schema_name))
    errors: List[str] = []
    for error in sorted(validator.iter_errors(instance), key=lambda err: list(err.path)):
        location = ".".join(str(part) for part in error.path)
        errors.append(f"{location}: {error.message}" if location else error.message)
    return errors


def _not_an_object(value: Any) -> ValidationResult:
    return ValidationResult.failed([f"Expected a JSON object, got {type(value).__name__}"])


def _clean_optional_text(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def validate_plan(payload: Any) -> ValidationResult:
    if isinstance(payload, Plan):
        payload = payload.to_dict()
    if not isinstance(payload, dict):
        return _not_an_object(payload)

    normalized = dict(payload)
    legacy_flag = normalized.pop("needsWebSearch", None)
    source = normalized.get("dataSource")
    if source is None and isinstance(legacy_flag, bool):
        source = "live-fetch" if legacy_flag else "synthetic"
    if isinstance(source, str):
        source = source.strip().lower()
        source = LEGACY_DATA_SOURCES.get(source, source)
    normalized["dataSource"] = source

    for key in ("widgetType", "dataStructure"):
        if isinstance(normalized.get(key), str):
            normalized[key] = normalized[key].strip().lower()
    normalized.setdefault("keyEntities", [])
    normalized.setdefault("reasoning", "")
    normalized["searchQuery"] = _clean_optional_text(normalized.get("searchQuery"))
    normalized["queryIntent"] = _clean_optional_text(normalized.get("queryIntent"))

    errors = _schema_errors(normalized, "plan.schema.json")
    if errors:
        return ValidationResult.failed(errors)
    return ValidationResult.ok(Plan.from_dict(normalized))


def validate_data(payload: Any) -> ValidationResult:
    if isinstance(payload, DataResult):
        payload = payload.to_dict()
    if not isinstance(payload, dict):
        return _not_an_object(payload)

    normalized = dict(payload)
    confidence = normalized.get("confidence")
    if confidence is None:
        normalized["confidence"] = "low"
    elif isinstance(confidence, str):
        normalized["confidence"] = confidence.strip().lower()
    normalized["source"] = _clean_optional_text(normalized.get("source"))

    errors = _schema_errors(normalized, "data_result.schema.json")
    if isinstance(normalized.get("data"), dict) and not is_json_value(normalized["data"]):
        errors.append("data: contains values that are not plain JSON")
    if errors:
        return ValidationResult.failed(errors)
    return ValidationResult.ok(DataResult.from_dict(normalized))


def validate_artifact(payload: Any, expected_type: Optional[str] = None) -> ValidationResult:
    """Validate a rendered widget, optionally pinning its ``type``.

    A widget rendered for one plan but tagged with another type is a defect,
    so callers that know the plan pass its widget type as ``expected_type``.
    """
    if isinstance(payload, Artifact):
        payload = payload.to_dict()
    if not isinstance(payload, dict):
        return _not_an_object(payload)

    normalized = dict(payload)
    if isinstance(normalized.get("type"), str):
        normalized["type"] = normalized["type"].strip().lower()

    errors = _schema_errors(normalized, "widget.schema.json")
    for key in ("data", "config"):
        value = normalized.get(key)
        if isinstance(value, dict) and not is_json_value(value):
            errors.append(f"{key}: contains values that are not plain JSON")
    if expected_type and normalized.get("type") != expected_type:
        errors.append(
            f"Widget type mismatch: expected {expected_type}, got {normalized.get('type')}"
        )
    if errors:
        return ValidationResult.failed(errors)
    return ValidationResult.ok(Artifact.from_dict(normalized))


def check_artifact_data(artifact: Artifact) -> ValidationResult:
    """Report widget data a renderer will have to paper over; never fatal."""
    errors: List[str] = []
    for key in WIDGET_DATA_KEYS.get(artifact.type, []):
        value = artifact.data.get(key)
        if value is None or value == "":
            errors.append(f"{artifact.type} is missing data.{key}")
        elif key in LIST_DATA_KEYS and (not isinstance(value, list) or not value):
            errors.append(f"{artifact.type} data.{key} should be a non-empty list")
    if errors:
        return ValidationResult.failed(errors)
    return ValidationResult.ok(artifact)
