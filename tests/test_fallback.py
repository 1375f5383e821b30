"""Tests for the three-tier fallback chain and the public entry points."""

import pytest

from widgetflow.adapters.mock_adapter import MockAdapter
from widgetflow.errors import ValidationFailure
from widgetflow.fallback import FallbackChain, run, run_to_completion
from widgetflow.models import Artifact, DataSourceMode, ProgressEvent

QUERY = "stock price of Acme Corp"


class FakeOrchestrator:
    """Fails the first ``failures`` runs after emitting some progress."""

    def __init__(self, failures, error=None):
        self.failures = failures
        self.error = error or ValidationFailure(["Widget type mismatch"])
        self.overrides = []

    def iter_events(self, query, data_source_override=None, model=None):
        self.overrides.append(data_source_override)
        yield ProgressEvent.progress_update("planning", "Thinking", 10)
        if len(self.overrides) <= self.failures:
            raise self.error
        yield ProgressEvent.progress_update("complete", "Done", 100)
        yield ProgressEvent.completed(Artifact("text", {"content": "ok"}), "tier")


class TestTiering:
    def test_first_tier_success(self):
        orchestrator = FakeOrchestrator(failures=0)
        events = list(FallbackChain(orchestrator).iter_events(QUERY))
        assert orchestrator.overrides == [None]
        assert events[-1].response["source"] == "tier"

    def test_second_tier_pinned_to_synthetic(self):
        orchestrator = FakeOrchestrator(failures=1)
        events = list(FallbackChain(orchestrator).iter_events(QUERY, DataSourceMode.LIVE_FETCH))
        assert orchestrator.overrides == [DataSourceMode.LIVE_FETCH, DataSourceMode.SYNTHETIC]
        retry_notice = [event for event in events if event.progress == 15]
        assert len(retry_notice) == 1
        assert retry_notice[0].phase == "preparing"
        assert retry_notice[0].message == "Trying alternative approach"
        assert events[-1].response["source"] == "tier"

    def test_second_tier_skipped_when_already_synthetic(self):
        orchestrator = FakeOrchestrator(failures=5)
        events = list(FallbackChain(orchestrator).iter_events(QUERY, "synthetic"))
        assert orchestrator.overrides == [DataSourceMode.SYNTHETIC]
        assert all(event.progress != 15 for event in events)
        assert events[-1].response["widget"]["config"]["fallback"] is True

    def test_third_tier_guaranteed_widget(self):
        orchestrator = FakeOrchestrator(failures=5)
        events = list(FallbackChain(orchestrator).iter_events(QUERY))
        assert len(orchestrator.overrides) == 2
        final = events[-1]
        assert final.is_terminal
        assert final.response["source"] is None
        assert "error" not in final.response
        assert final.response["widget"]["data"]["label"] == "Unable to complete request"
        assert final.response["widget"]["data"]["context"] == QUERY

    def test_unexpected_errors_also_escalate(self):
        orchestrator = FakeOrchestrator(failures=1, error=RuntimeError("bug"))
        events = list(FallbackChain(orchestrator).iter_events(QUERY))
        assert events[-1].response["source"] == "tier"

    def test_exactly_one_complete_event(self):
        events = list(FallbackChain(FakeOrchestrator(failures=5)).iter_events(QUERY))
        assert sum(1 for event in events if event.is_terminal) == 1

    def test_invalid_override_ignored(self, caplog):
        orchestrator = FakeOrchestrator(failures=0)
        events = list(FallbackChain(orchestrator).iter_events(QUERY, "bogus"))
        assert orchestrator.overrides == [None]
        assert events[-1].response["source"] == "tier"
        assert "Ignoring invalid data source override" in caplog.text


class TestEntryPoints:
    def test_run_delivers_wire_events(self, config):
        updates = []
        run(QUERY, updates.append, config=config, adapter=MockAdapter())
        assert updates[0] == {"type": "progress", "phase": "planning", "message": "Thinking", "progress": 10}
        assert updates[-1]["type"] == "complete"
        assert updates[-1]["response"]["widget"]["type"] == "metric-card"

    def test_run_to_completion_returns_response(self, config):
        response = run_to_completion(QUERY, config=config, adapter=MockAdapter())
        assert response["source"] == "mock://live-search"
        assert response["widget"]["data"]["label"] == "Acme Corp"

    def test_callback_errors_propagate(self, config):
        def on_update(update):
            raise KeyError("consumer bug")

        with pytest.raises(KeyError):
            run(QUERY, on_update, config=config, adapter=MockAdapter())

    def test_run_to_completion_with_invalid_override(self, config):
        response = run_to_completion(QUERY, data_source_override="bogus", config=config, adapter=MockAdapter())
        assert response["widget"]["type"] == "metric-card"
        assert "error" not in response
