from __future__ import annotations

import logging
from typing import Iterator, Optional, Union

from widgetflow.adapters.llm_base import LLMAdapter
from widgetflow.config import PipelineConfig
from widgetflow.datasets import CannedDatasetQuery, DatasetQuery
from widgetflow.errors import ValidationFailure
from widgetflow.gates.validators import check_artifact_data, validate_artifact, validate_data
from widgetflow.models import Artifact, DataResult, DataSourceMode, Plan, ProgressEvent
from widgetflow.phases import DATA_PHASES, PhaseContext, plan_widget, render_artifact
from widgetflow.utils.logs import log_step, truncate

logger = logging.getLogger(__name__)

# progress phase name and message per data source
DATA_STAGES = {
    DataSourceMode.LIVE_FETCH: ("searching", "Searching the web"),
    DataSourceMode.SYNTHETIC: ("preparing", "Generating"),
    DataSourceMode.CANNED_DATASET: ("querying", "Querying database"),
}


def format_search_query(search_query: Optional[str]) -> str:
    if search_query and search_query.strip():
        return truncate(search_query.strip(), 80)
    return "auto-generated query"


def describe_plan(plan: Plan) -> str:
    if plan.data_source is DataSourceMode.LIVE_FETCH:
        source_part = f'will search the web using "{format_search_query(plan.search_query)}"'
    elif plan.data_source is DataSourceMode.CANNED_DATASET:
        source_part = "will query the canned datasets"
    else:
        source_part = "does not require a web search"
    if plan.key_entities:
        entities = "focusing on " + ", ".join(f'"{entity}"' for entity in plan.key_entities)
    else:
        entities = "with no specific key entities"
    return f"Plan ready: build a {plan.widget_type} ({plan.data_structure}) that {source_part}, {entities}."


def describe_data_stage(plan: Plan) -> str:
    if plan.data_source is DataSourceMode.LIVE_FETCH:
        return (
            f'Searching the web for "{format_search_query(plan.search_query)}" '
            f"to gather real data for the {plan.widget_type}."
        )
    if plan.data_source is DataSourceMode.CANNED_DATASET:
        return f"Querying canned datasets for the {plan.widget_type} ({plan.data_structure})."
    return f"Generating example data for the {plan.widget_type} ({plan.data_structure}) without web search."


def describe_data_result(data_result: DataResult) -> str:
    field_count = len(data_result.data)
    if field_count:
        content = f"{field_count} field{'' if field_count == 1 else 's'} ready"
    else:
        content = "no structured fields returned"
    source = f"source: {truncate(data_result.source, 80)}" if data_result.source else "no source provided"
    return f"Data ready: {content}, {data_result.confidence} confidence, {source}."


def describe_artifact(artifact: Artifact, plan: Plan) -> str:
    field_count = len(artifact.data)
    if field_count:
        fields = f"{field_count} data field{'' if field_count == 1 else 's'}"
    else:
        fields = "no data fields"
    styling = "custom config applied" if artifact.config else "default styling"
    return f"Widget ready: {plan.widget_type} displaying {fields} with {styling}."


class PipelineOrchestrator:
    """Plan, acquire data, render and validate one query, as an event stream.

    The orchestrator keeps no per-request state; a single instance can serve
    any number of sequential requests. The only error that escapes
    ``iter_events`` is a ``ValidationFailure`` from the final artifact check.
    """

    def __init__(
        self,
        adapter: LLMAdapter,
        config: Optional[PipelineConfig] = None,
        datasets: Optional[DatasetQuery] = None,
    ) -> None:
        self.adapter = adapter
        self.config = config or PipelineConfig()
        if datasets is None and self.config.datasets_path is not None:
            datasets = CannedDatasetQuery(path=self.config.datasets_path)
        self.datasets = datasets

    def context(self, model: Optional[str] = None) -> PhaseContext:
        return PhaseContext.from_config(self.config, self.adapter, model=model, datasets=self.datasets)

    def iter_events(
        self,
        query: str,
        data_source_override: Union[DataSourceMode, str, None] = None,
        model: Optional[str] = None,
    ) -> Iterator[ProgressEvent]:
        ctx = self.context(model)
        override = DataSourceMode.parse(data_source_override)

        # planning
        yield ProgressEvent.progress_update("planning", "Thinking", 10)
        plan = plan_widget(query, ctx)
        log_step(logger, logging.INFO, describe_plan(plan), "planning", plan.to_dict())
        if override is not None and override is not plan.data_source:
            log_step(
                logger,
                logging.INFO,
                f"Data source overridden: {plan.data_source.value} -> {override.value}",
                "planning",
            )
            plan = plan.with_data_source(override)
        yield ProgressEvent.plan_ready(plan)

        # data acquisition
        phase, message = DATA_STAGES[plan.data_source]
        log_step(logger, logging.INFO, describe_data_stage(plan), "data", plan.widget_type)
        yield ProgressEvent.progress_update(phase, message, 40)
        data_result = DATA_PHASES[plan.data_source](plan, query, ctx)
        log_step(logger, logging.INFO, describe_data_result(data_result), "data", data_result.to_dict())
        recheck = validate_data(data_result.to_dict())
        if not recheck.valid:
            log_step(
                logger,
                logging.WARNING,
                f"Data validation reported {len(recheck.errors)} issue(s)",
                "data",
                recheck.errors,
            )
        yield ProgressEvent.data_ready(data_result)

        # rendering
        yield ProgressEvent.progress_update("generating", "Building UI", 70)
        artifact = render_artifact(plan, data_result, query, ctx)
        log_step(logger, logging.INFO, describe_artifact(artifact, plan), "widget", artifact.to_dict())

        # validating
        yield ProgressEvent.progress_update("validating", "Validating", 90)
        artifact = self.validate_final(artifact, plan)

        yield ProgressEvent.progress_update("complete", "Done", 100)
        yield ProgressEvent.completed(artifact, data_result.source)

    def validate_final(self, artifact: Artifact, plan: Plan) -> Artifact:
        expected = None if artifact.is_fallback else plan.widget_type
        result = validate_artifact(artifact, expected_type=expected)
        if not result.valid:
            raise ValidationFailure(result.errors, label="Widget validation failed")
        checked = check_artifact_data(result.normalized)
        if not checked.valid:
            log_step(
                logger,
                logging.WARNING,
                f"Widget data validation reported {len(checked.errors)} issue(s)",
                "validation",
                checked.errors,
            )
        return result.normalized
