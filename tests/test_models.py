"""Tests for the wire form of plans, results and progress events."""

import pytest

from conftest import make_plan
from widgetflow.models import Artifact, DataResult, DataSourceMode, Plan, ProgressEvent


class TestPlan:
    def test_wire_form_uses_camel_case(self):
        plan = Plan.from_dict(make_plan())
        assert plan.to_dict() == make_plan()

    def test_with_data_source_returns_copy(self):
        plan = Plan.from_dict(make_plan())
        pinned = plan.with_data_source(DataSourceMode.SYNTHETIC)
        assert pinned.data_source is DataSourceMode.SYNTHETIC
        assert plan.data_source is DataSourceMode.LIVE_FETCH

    def test_parse_mode(self):
        assert DataSourceMode.parse(" Synthetic ") is DataSourceMode.SYNTHETIC
        assert DataSourceMode.parse(None) is None


class TestArtifact:
    def test_fallback_hint(self):
        assert Artifact("metric-card", {"label": "x"}, {"fallback": True}).is_fallback
        assert not Artifact("metric-card", {"label": "x"}, {"fallback": "yes"}).is_fallback
        assert not Artifact("metric-card", {"label": "x"}).is_fallback

    def test_config_omitted_when_absent(self):
        assert Artifact("text", {"content": "hi"}).to_dict() == {"type": "text", "data": {"content": "hi"}}


class TestProgressEvent:
    def test_progress_bounds(self):
        with pytest.raises(ValueError):
            ProgressEvent.progress_update("planning", "Thinking", 101)

    def test_data_event_wire_form(self):
        event = ProgressEvent.data_ready(DataResult({"a": 1}, None, "high"))
        assert event.to_dict() == {
            "type": "data",
            "dataResult": {"data": {"a": 1}, "source": None, "confidence": "high"},
        }

    def test_error_response_shape(self):
        event = ProgressEvent.completed_with_error("Something went wrong")
        assert event.is_terminal
        assert event.response == {"textResponse": "Something went wrong", "error": True}

    def test_complete_event_is_terminal(self):
        event = ProgressEvent.completed(Artifact("text", {"content": "hi"}), "https://example.com")
        assert event.is_terminal
        assert event.to_dict() == {
            "type": "complete",
            "response": {"widget": {"type": "text", "data": {"content": "hi"}}, "source": "https://example.com"},
        }
