"""Entry points that always finish with a ``complete`` event.

A request is tried with the caller's settings first, then once more pinned to
the cheapest data source, and finally answered with a fixed warning widget.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterator, Optional, Union

from widgetflow.adapters.llm_base import LLMAdapter
from widgetflow.config import PipelineConfig, build_adapter
from widgetflow.datasets import DatasetQuery
from widgetflow.errors import describe_error
from widgetflow.models import CHEAPEST_MODE, DataSourceMode, ProgressEvent
from widgetflow.phases import fallback_artifact
from widgetflow.pipeline import PipelineOrchestrator
from widgetflow.utils.logs import log_step

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[Dict[str, Any]], None]


class FallbackChain:
    def __init__(self, orchestrator: PipelineOrchestrator) -> None:
        self.orchestrator = orchestrator

    def iter_events(
        self,
        query: str,
        data_source_override: Union[DataSourceMode, str, None] = None,
        model: Optional[str] = None,
    ) -> Iterator[ProgressEvent]:
        try:
            override = DataSourceMode.parse(data_source_override)
        except ValueError as exc:
            log_step(logger, logging.WARNING, "Ignoring invalid data source override", "fallback", exc)
            override = None

        try:
            yield from self.orchestrator.iter_events(query, override, model)
            return
        except Exception as exc:
            log_step(
                logger,
                logging.WARNING,
                f"Primary pipeline attempt failed ({describe_error(exc)}); evaluating fallback",
                "fallback",
                exc,
            )

        if override is not CHEAPEST_MODE:
            yield ProgressEvent.progress_update("preparing", "Trying alternative approach", 15)
            try:
                yield from self.orchestrator.iter_events(query, CHEAPEST_MODE, model)
                return
            except Exception as exc:
                log_step(
                    logger,
                    logging.WARNING,
                    f"{CHEAPEST_MODE.value} fallback failed ({describe_error(exc)}); using guaranteed widget",
                    "fallback",
                    exc,
                )

        log_step(logger, logging.INFO, "Falling back to guaranteed widget", "fallback")
        artifact = fallback_artifact(
            query,
            "processing your request",
            "Unable to generate widget with current settings",
        )
        yield ProgressEvent.completed(artifact, None)


def _chain(
    config: Optional[PipelineConfig],
    adapter: Optional[LLMAdapter],
    datasets: Optional[DatasetQuery],
) -> FallbackChain:
    config = config or PipelineConfig.from_env()
    adapter = adapter or build_adapter(config)
    return FallbackChain(PipelineOrchestrator(adapter, config, datasets))


def iter_events(
    user_query: str,
    model: Optional[str] = None,
    data_source_override: Union[DataSourceMode, str, None] = None,
    config: Optional[PipelineConfig] = None,
    adapter: Optional[LLMAdapter] = None,
    datasets: Optional[DatasetQuery] = None,
) -> Iterator[ProgressEvent]:
    chain = _chain(config, adapter, datasets)
    return chain.iter_events(user_query, data_source_override, model)


def run(
    user_query: str,
    on_update: UpdateCallback,
    model: Optional[str] = None,
    data_source_override: Union[DataSourceMode, str, None] = None,
    config: Optional[PipelineConfig] = None,
    adapter: Optional[LLMAdapter] = None,
    datasets: Optional[DatasetQuery] = None,
) -> None:
    """Deliver every event of one request, in order, as wire dicts.

    Exceptions raised by ``on_update`` itself are not absorbed.
    """
    for event in iter_events(user_query, model, data_source_override, config, adapter, datasets):
        on_update(event.to_dict())


def run_to_completion(
    user_query: str,
    model: Optional[str] = None,
    data_source_override: Union[DataSourceMode, str, None] = None,
    config: Optional[PipelineConfig] = None,
    adapter: Optional[LLMAdapter] = None,
    datasets: Optional[DatasetQuery] = None,
) -> Dict[str, Any]:
    response: Dict[str, Any] = {}
    for event in iter_events(user_query, model, data_source_override, config, adapter, datasets):
        if event.is_terminal:
            response = event.response or {}
    return response
