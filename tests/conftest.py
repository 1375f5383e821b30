"""
Shared fixtures for the widgetflow test suite.

Provides:
- ScriptedAdapter: replays canned responses per phase for failure injection
- zero retry delays so retry tests run instantly
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Union

import pytest

from widgetflow.adapters.llm_base import GenerationResult
from widgetflow.config import PipelineConfig

PHASE_MARKERS = {
    "# widget_plan": "plan",
    "# live_data": "live",
    "# synthetic_data": "synthetic",
    "# widget_render": "render",
}

Scripted = Union[str, Dict[str, Any], Exception, GenerationResult]


def phase_of(system_prompt: str) -> str:
    for marker, phase in PHASE_MARKERS.items():
        if system_prompt.startswith(marker):
            return phase
    raise AssertionError(f"unrecognised system prompt: {system_prompt[:40]!r}")


class ScriptedAdapter:
    """Adapter that answers each phase from its own queue of responses.

    The last response of a queue repeats once the queue is drained. A dict is
    sent as JSON text, an exception is raised and a GenerationResult is
    returned unchanged.
    """

    default_model = "scripted"

    def __init__(self, **responses: List[Scripted]) -> None:
        self.responses = {phase: list(items) for phase, items in responses.items()}
        self.calls: List[Dict[str, Any]] = []

    def calls_for(self, phase: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call["phase"] == phase]

    def generate(
        self,
        prompt: str,
        system_prompt: str,
        model: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> GenerationResult:
        phase = phase_of(system_prompt)
        self.calls.append({"phase": phase, "prompt": prompt, "model": model, "options": options or {}})
        queue = self.responses.get(phase)
        if not queue:
            raise AssertionError(f"no scripted response for phase {phase}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, GenerationResult):
            return item
        if isinstance(item, dict):
            item = json.dumps(item)
        return GenerationResult(success=True, final_text=item)

    def generate_with_callback(self, prompt, system_prompt, on_event, model=None, options=None):
        on_event({"type": "tool_call", "subtype": "started", "name": "scripted_search"})
        return self.generate(prompt, system_prompt, model, options)


def make_plan(**overrides: Any) -> Dict[str, Any]:
    plan = {
        "widgetType": "metric-card",
        "dataSource": "live-fetch",
        "searchQuery": "Acme Corp stock price",
        "queryIntent": "Current share price of Acme Corp",
        "dataStructure": "single-value",
        "keyEntities": ["Acme Corp"],
        "reasoning": "A single value fits a metric card.",
    }
    plan.update(overrides)
    return plan


@pytest.fixture(autouse=True)
def no_retry_sleep(monkeypatch):
    monkeypatch.setattr("widgetflow.gates.retry.time.sleep", lambda seconds: None)


@pytest.fixture
def config():
    return PipelineConfig(mode="mock", retry_delay_seconds=0)


@pytest.fixture
def scripted():
    return ScriptedAdapter
