from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Any, Dict, Optional

from widgetflow.adapters.llm_base import GenerationEvent, LLMAdapter
from widgetflow.config import PipelineConfig
from widgetflow.datasets import CannedDatasetQuery, DatasetQuery
from widgetflow.errors import GenerationFailure, PhaseExhausted, describe_error
from widgetflow.gates.retry import DEFAULT_MAX_RETRIES, RETRY_DELAY_SECONDS, run_with_retry
from widgetflow.gates.validators import validate_artifact, validate_data, validate_plan
from widgetflow.models import (
    DATA_STRUCTURES,
    WIDGET_TYPES,
    Artifact,
    DataResult,
    DataSourceMode,
    Plan,
)
from widgetflow.utils.io import read_text
from widgetflow.utils.logs import log_step

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).resolve().parent / "configs" / "prompts"

DATA_SHAPES: Dict[str, str] = {
    "metric-card": '{"label": str, "value": str | number, "unit"?: str, "change"?: str, "description"?: str}',
    "line-chart": '{"points": [{"x": str, "y": number}], "unit"?: str}',
    "bar-chart": '{"points": [{"x": str, "y": number}], "unit"?: str}',
    "pie-chart": '{"slices": [{"label": str, "value": number}], "unit"?: str}',
    "table": '{"columns": [str], "rows": [[str | number]]}',
    "list": '{"items": [{"label": str, "value"?: str | number, "description"?: str}]}',
    "comparison": '{"items": [{"label": str, "value": str | number, "description"?: str}]}',
    "timeline": '{"events": [{"date": str, "title": str, "description"?: str}]}',
    "text": '{"content": str}',
}


@dataclass
class PhaseContext:
    """Collaborators and limits shared by the phases of one request."""

    adapter: LLMAdapter
    model: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: float = RETRY_DELAY_SECONDS
    datasets: Optional[DatasetQuery] = None
    prompts_dir: Path = PROMPTS_DIR

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        adapter: LLMAdapter,
        model: Optional[str] = None,
        datasets: Optional[DatasetQuery] = None,
    ) -> "PhaseContext":
        return cls(
            adapter=adapter,
            model=model or config.model or getattr(adapter, "default_model", None),
            options=config.generation_options(),
            max_retries=config.max_retries,
            retry_delay=config.retry_delay_seconds,
            datasets=datasets,
        )

    def dataset_query(self) -> DatasetQuery:
        if self.datasets is None:
            self.datasets = CannedDatasetQuery()
        return self.datasets


def _render_prompt(template: str, values: Dict[str, str]) -> str:
    rendered = template
    for key, value in values.items():
        rendered = rendered.replace("{{" + key + "}}", value)
    return rendered


def _system_prompt(ctx: PhaseContext, name: str, plan: Optional[Plan] = None) -> str:
    template = read_text(ctx.prompts_dir / f"{name}.md")
    values = {
        "WIDGET_TYPES": ", ".join(f'"{item}"' for item in WIDGET_TYPES),
        "DATA_STRUCTURES": ", ".join(f'"{item}"' for item in DATA_STRUCTURES),
        "DATA_SHAPES": "\n".join(f"- {kind}: {shape}" for kind, shape in DATA_SHAPES.items()),
    }
    if plan is not None:
        values.update(
            {
                "WIDGET_TYPE": plan.widget_type,
                "DATA_STRUCTURE": plan.data_structure,
                "DATA_SHAPE": DATA_SHAPES.get(plan.widget_type, "{}"),
            }
        )
    return _render_prompt(template, values)


def _generate(
    ctx: PhaseContext,
    prompt: str,
    system_prompt: str,
    on_event=None,
    **options: Any,
) -> str:
    merged = {**ctx.options, **options}
    try:
        if on_event is not None:
            result = ctx.adapter.generate_with_callback(
                prompt, system_prompt, on_event, model=ctx.model, options=merged
            )
        else:
            result = ctx.adapter.generate(prompt, system_prompt, model=ctx.model, options=merged)
    except Exception as exc:
        raise GenerationFailure(f"LLM call failed: {describe_error(exc)}") from exc
    if not result.success:
        raise GenerationFailure("LLM call failed: " + (result.error or "Unknown error"))
    return result.final_text


def fallback_plan(query: str) -> Plan:
    log_step(logger, logging.INFO, "Creating fallback plan", "fallback")
    return Plan(
        widget_type="metric-card",
        data_source=DataSourceMode.SYNTHETIC,
        data_structure="single-value",
        key_entities=[query],
        reasoning="Fallback plan due to planning failure",
    )


def fallback_artifact(query: str, phase: str, reason: Optional[str] = None) -> Artifact:
    """Fixed-shape widget explaining that the request could not be completed."""
    log_step(
        logger,
        logging.INFO,
        "Creating fallback widget",
        "fallback",
        f"reason: {reason}" if reason else None,
    )
    return Artifact(
        type="metric-card",
        data={
            "label": "Unable to complete request",
            "value": "⚠️",
            "description": (
                f"I encountered an issue while {phase}. "
                "Please try rephrasing your question or try again."
            ),
            "context": query,
        },
        config={"variant": "warning", "size": "md", "fallback": True},
    )


def plan_widget(query: str, ctx: PhaseContext) -> Plan:
    system_prompt = _system_prompt(ctx, "planner")

    def call(feedback: Optional[str]) -> str:
        return _generate(ctx, query + (feedback or ""), system_prompt)

    try:
        return run_with_retry(call, validate_plan, "Planning phase", ctx.max_retries, ctx.retry_delay)
    except PhaseExhausted as exc:
        log_step(logger, logging.ERROR, "Planning failed after retries; using fallback plan", "planning", exc)
        return fallback_plan(query)


def _degraded_data(phase_name: str, exc: PhaseExhausted) -> DataResult:
    log_step(
        logger,
        logging.WARNING,
        f"{phase_name} failed ({describe_error(exc.last_error)}); using empty fallback",
        "data",
        exc,
    )
    return DataResult.empty()


def fetch_live_data(plan: Plan, query: str, ctx: PhaseContext) -> DataResult:
    system_prompt = _system_prompt(ctx, "live_data", plan)
    search_query = plan.search_query or query

    def on_event(event: GenerationEvent) -> None:
        if event.get("type") == "tool_call" and event.get("subtype") == "started":
            log_step(logger, logging.INFO, "Live fetch tool invoked", "data", event.get("name"))

    def call(feedback: Optional[str]) -> str:
        prompt = (
            f"Extract structured data for: {query}\n"
            f"Search query: {search_query}\n"
            f"Widget type: {plan.widget_type}\n"
            f"Key entities: {', '.join(plan.key_entities)}"
            f"{feedback or ''}"
        )
        return _generate(ctx, prompt, system_prompt, on_event=on_event, web_search=True)

    try:
        return run_with_retry(call, validate_data, "Data fetching phase", ctx.max_retries, ctx.retry_delay)
    except PhaseExhausted as exc:
        return _degraded_data("Data fetching", exc)


def generate_synthetic_data(plan: Plan, query: str, ctx: PhaseContext) -> DataResult:
    system_prompt = _system_prompt(ctx, "synthetic_data", plan)

    def call(feedback: Optional[str]) -> str:
        prompt = (
            f'Generate realistic data for: "{query}"\n'
            f"Widget type: {plan.widget_type}\n"
            f"Key entities: {', '.join(plan.key_entities)}"
            f"{feedback or ''}"
        )
        return _generate(ctx, prompt, system_prompt)

    try:
        return run_with_retry(
            call, validate_data, "Synthetic data generation phase", ctx.max_retries, ctx.retry_delay
        )
    except PhaseExhausted as exc:
        return _degraded_data("Synthetic data generation", exc)


def query_canned_dataset(plan: Plan, query: str, ctx: PhaseContext) -> DataResult:
    datasets = ctx.dataset_query()

    def call(feedback: Optional[str]) -> Dict[str, Any]:
        try:
            return datasets.query(plan, query, ctx.model).to_dict()
        except Exception as exc:
            raise GenerationFailure(f"Canned dataset query failed: {describe_error(exc)}") from exc

    try:
        return run_with_retry(call, validate_data, "Canned dataset phase", ctx.max_retries, ctx.retry_delay)
    except PhaseExhausted as exc:
        return _degraded_data("Canned dataset query", exc)


def render_artifact(plan: Plan, data_result: DataResult, query: str, ctx: PhaseContext) -> Artifact:
    system_prompt = _system_prompt(ctx, "widget", plan)
    validator = partial(validate_artifact, expected_type=plan.widget_type)

    def call(feedback: Optional[str]) -> str:
        prompt = (
            f'USER: "{query}"\n'
            f"Widget type: {plan.widget_type}\n"
            f"Data structure: {plan.data_structure}\n"
            f"Available data: {json.dumps(data_result.data)}\n\n"
            "Generate a widget JSON configuration that displays this data."
            f"{feedback or ''}"
        )
        return _generate(ctx, prompt, system_prompt)

    try:
        return run_with_retry(call, validator, "Widget generation phase", ctx.max_retries, ctx.retry_delay)
    except PhaseExhausted as exc:
        log_step(
            logger,
            logging.ERROR,
            "Widget generation failed after retries; creating fallback widget",
            "widget",
            exc,
        )
        return fallback_artifact(
            query, "generating your visualization", describe_error(exc.last_error)
        )


DATA_PHASES = {
    DataSourceMode.LIVE_FETCH: fetch_live_data,
    DataSourceMode.SYNTHETIC: generate_synthetic_data,
    DataSourceMode.CANNED_DATASET: query_canned_dataset,
}
