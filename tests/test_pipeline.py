"""End-to-end tests for the orchestrator event stream."""

import pytest

from conftest import ScriptedAdapter, make_plan
from widgetflow.errors import ValidationFailure
from widgetflow.models import Artifact, DataResult, DataSourceMode, Plan
from widgetflow.pipeline import PipelineOrchestrator, describe_data_result, describe_plan

QUERY = "stock price of Acme Corp"
LIVE_DATA = {"data": {"price": "$123.45"}, "source": "https://finance.example.com/acme", "confidence": "high"}
WIDGET = {"type": "metric-card", "data": {"label": "Acme Corp", "price": "$123.45"}, "config": {"size": "md"}}


def acme_adapter(**overrides):
    responses = {
        "plan": [make_plan()],
        "live": [LIVE_DATA],
        "synthetic": [{"data": {"label": "Acme Corp", "value": "$100.00"}, "confidence": "low"}],
        "render": [WIDGET],
    }
    responses.update(overrides)
    return ScriptedAdapter(**responses)


class TestHappyPath:
    def test_stock_price_end_to_end(self, config):
        orchestrator = PipelineOrchestrator(acme_adapter(), config)
        events = list(orchestrator.iter_events(QUERY))
        final = events[-1]
        assert final.type == "complete"
        assert final.response["widget"]["data"]["price"] == "$123.45"
        assert final.response["source"] == "https://finance.example.com/acme"

    def test_event_order(self, config):
        events = list(PipelineOrchestrator(acme_adapter(), config).iter_events(QUERY))
        assert [event.type for event in events] == [
            "progress", "plan", "progress", "data", "progress", "progress", "progress", "complete",
        ]
        assert [event.phase for event in events if event.type == "progress"] == [
            "planning", "searching", "generating", "validating", "complete",
        ]

    def test_progress_monotonic_to_100(self, config):
        events = list(PipelineOrchestrator(acme_adapter(), config).iter_events(QUERY))
        progress = [event.progress for event in events if event.type == "progress"]
        assert progress == sorted(progress)
        assert progress == [10, 40, 70, 90, 100]
        assert sum(1 for event in events if event.is_terminal) == 1

    def test_orchestrator_reusable_across_requests(self, config):
        orchestrator = PipelineOrchestrator(acme_adapter(), config)
        first = list(orchestrator.iter_events(QUERY))[-1].response
        second = list(orchestrator.iter_events(QUERY))[-1].response
        assert first == second


class TestDataSourceOverride:
    def test_override_replaces_planned_source(self, config):
        adapter = acme_adapter()
        events = list(PipelineOrchestrator(adapter, config).iter_events(QUERY, "synthetic"))
        plan_event = next(event for event in events if event.type == "plan")
        assert plan_event.plan.data_source is DataSourceMode.SYNTHETIC
        assert adapter.calls_for("live") == []
        assert len(adapter.calls_for("synthetic")) == 1
        assert events[-1].response["source"] is None

    def test_canned_dataset_branch(self, config):
        adapter = acme_adapter(
            plan=[make_plan(widgetType="line-chart", dataSource="canned-dataset", keyEntities=["sales"])],
            render=[{"type": "line-chart", "data": {"points": [{"x": "2024-01", "y": 1}]}}],
        )
        events = list(PipelineOrchestrator(adapter, config).iter_events("monthly sales trend"))
        phases = [event.phase for event in events if event.type == "progress"]
        assert "querying" in phases
        assert events[-1].response["source"] == "canned:monthly_sales"


class TestDegradation:
    @pytest.mark.parametrize(
        "phase, failure",
        [
            ("plan", "nonsense"),
            ("live", RuntimeError("network down")),
            ("render", {"type": "table", "data": {"columns": ["a"]}}),
        ],
    )
    def test_single_phase_failure_still_completes(self, config, phase, failure):
        adapter = acme_adapter(**{phase: [failure]})
        events = list(PipelineOrchestrator(adapter, config).iter_events(QUERY))
        assert events[-1].type == "complete"
        assert "widget" in events[-1].response

    def test_planning_failure_uses_synthetic_data(self, config):
        adapter = acme_adapter(plan=["nonsense"])
        events = list(PipelineOrchestrator(adapter, config).iter_events(QUERY))
        assert len(adapter.calls_for("synthetic")) == 1
        assert events[-1].response["widget"]["type"] == "metric-card"

    def test_render_fallback_exempt_from_type_match(self, config):
        adapter = acme_adapter(render=[{"type": "table", "data": {"columns": ["a"]}}])
        events = list(PipelineOrchestrator(adapter, config).iter_events(QUERY))
        widget = events[-1].response["widget"]
        assert widget["config"]["fallback"] is True
        assert widget["data"]["label"] == "Unable to complete request"

    def test_final_validation_failure_raises(self, config, monkeypatch):
        monkeypatch.setattr(
            "widgetflow.pipeline.render_artifact",
            lambda plan, data_result, query, ctx: Artifact("bar-chart", {"points": [1]}),
        )
        stream = PipelineOrchestrator(acme_adapter(), config).iter_events(QUERY)
        seen = []
        with pytest.raises(ValidationFailure) as excinfo:
            for event in stream:
                seen.append(event)
        assert "Widget type mismatch" in str(excinfo.value)
        assert seen[-1].progress == 90


class TestDescriptions:
    def test_describe_plan(self):
        plan = Plan.from_dict(make_plan())
        assert describe_plan(plan) == (
            'Plan ready: build a metric-card (single-value) that will search the web using '
            '"Acme Corp stock price", focusing on "Acme Corp".'
        )

    def test_describe_empty_data(self):
        assert describe_data_result(DataResult.empty()) == (
            "Data ready: no structured fields returned, low confidence, no source provided."
        )
