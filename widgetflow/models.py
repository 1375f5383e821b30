from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Union

JsonValue = Union[str, int, float, bool, None, List["JsonValue"], Dict[str, "JsonValue"]]
JsonMap = Dict[str, JsonValue]

WIDGET_TYPES = (
    "metric-card",
    "line-chart",
    "bar-chart",
    "pie-chart",
    "table",
    "list",
    "comparison",
    "timeline",
    "text",
)

DATA_STRUCTURES = (
    "single-value",
    "time-series",
    "categorical",
    "tabular",
    "list",
    "comparison",
    "text",
)

CONFIDENCE_LEVELS = ("low", "medium", "high")


class DataSourceMode(str, Enum):
    LIVE_FETCH = "live-fetch"
    SYNTHETIC = "synthetic"
    CANNED_DATASET = "canned-dataset"

    @classmethod
    def parse(cls, value: Union[str, "DataSourceMode", None]) -> Optional["DataSourceMode"]:
        if value is None or isinstance(value, DataSourceMode):
            return value
        return cls(value.strip().lower())


CHEAPEST_MODE = DataSourceMode.SYNTHETIC


def is_json_value(value: Any) -> bool:
    pending = [value]
    while pending:
        item = pending.pop()
        if item is None or isinstance(item, (str, bool, int, float)):
            continue
        if isinstance(item, list):
            pending.extend(item)
        elif isinstance(item, dict):
            if not all(isinstance(key, str) for key in item):
                return False
            pending.extend(item.values())
        else:
            return False
    return True


@dataclass(frozen=True)
class Plan:
    widget_type: str
    data_source: DataSourceMode
    data_structure: str
    key_entities: List[str] = field(default_factory=list)
    reasoning: str = ""
    search_query: Optional[str] = None
    query_intent: Optional[str] = None

    def with_data_source(self, mode: DataSourceMode) -> "Plan":
        return replace(self, data_source=mode)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Plan":
        return cls(
            widget_type=payload["widgetType"],
            data_source=DataSourceMode(payload["dataSource"]),
            data_structure=payload["dataStructure"],
            key_entities=list(payload.get("keyEntities") or []),
            reasoning=payload.get("reasoning") or "",
            search_query=payload.get("searchQuery"),
            query_intent=payload.get("queryIntent"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "widgetType": self.widget_type,
            "dataSource": self.data_source.value,
            "searchQuery": self.search_query,
            "queryIntent": self.query_intent,
            "dataStructure": self.data_structure,
            "keyEntities": list(self.key_entities),
            "reasoning": self.reasoning,
        }


@dataclass(frozen=True)
class DataResult:
    data: JsonMap = field(default_factory=dict)
    source: Optional[str] = None
    confidence: str = "low"

    @classmethod
    def empty(cls) -> "DataResult":
        return cls(data={}, source=None, confidence="low")

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "DataResult":
        return cls(
            data=dict(payload.get("data") or {}),
            source=payload.get("source"),
            confidence=payload.get("confidence", "low"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"data": self.data, "source": self.source, "confidence": self.confidence}


@dataclass(frozen=True)
class Artifact:
    type: str
    data: JsonMap = field(default_factory=dict)
    config: Optional[JsonMap] = None

    @property
    def is_fallback(self) -> bool:
        return bool(self.config and self.config.get("fallback") is True)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Artifact":
        config = payload.get("config")
        return cls(
            type=payload["type"],
            data=dict(payload.get("data") or {}),
            config=dict(config) if isinstance(config, dict) else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type, "data": self.data}
        if self.config is not None:
            payload["config"] = self.config
        return payload


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)
    normalized: Any = None

    @classmethod
    def ok(cls, normalized: Any) -> "ValidationResult":
        return cls(valid=True, errors=[], normalized=normalized)

    @classmethod
    def failed(cls, errors: List[str]) -> "ValidationResult":
        return cls(valid=False, errors=list(errors), normalized=None)


@dataclass(frozen=True)
class ProgressEvent:
    """One entry of the ordered event stream for a single request.

    ``type`` discriminates the payload: ``progress`` carries phase/message/progress,
    ``plan`` carries ``plan``, ``data`` carries ``data_result`` and ``complete``
    carries ``response`` (the terminal event).
    """

    type: str
    phase: Optional[str] = None
    message: Optional[str] = None
    progress: Optional[int] = None
    plan: Optional[Plan] = None
    data_result: Optional[DataResult] = None
    response: Optional[Dict[str, Any]] = None

    @classmethod
    def progress_update(cls, phase: str, message: str, progress: int) -> "ProgressEvent":
        if not 0 <= progress <= 100:
            raise ValueError(f"progress must be within 0..100, got {progress}")
        return cls(type="progress", phase=phase, message=message, progress=progress)

    @classmethod
    def plan_ready(cls, plan: Plan) -> "ProgressEvent":
        return cls(type="plan", plan=plan)

    @classmethod
    def data_ready(cls, data_result: DataResult) -> "ProgressEvent":
        return cls(type="data", data_result=data_result)

    @classmethod
    def completed(cls, widget: Artifact, source: Optional[str]) -> "ProgressEvent":
        return cls(type="complete", response={"widget": widget.to_dict(), "source": source})

    @classmethod
    def completed_with_error(cls, text: str) -> "ProgressEvent":
        return cls(type="complete", response={"textResponse": text, "error": True})

    @property
    def is_terminal(self) -> bool:
        return self.type == "complete"

    def to_dict(self) -> Dict[str, Any]:
        if self.type == "progress":
            return {
                "type": "progress",
                "phase": self.phase,
                "message": self.message,
                "progress": self.progress,
            }
        if self.type == "plan":
            return {"type": "plan", "plan": self.plan.to_dict() if self.plan else None}
        if self.type == "data":
            return {
                "type": "data",
                "dataResult": self.data_result.to_dict() if self.data_result else None,
            }
        return {"type": self.type, "response": self.response}
