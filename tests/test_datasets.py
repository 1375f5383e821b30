"""Tests for the bundled canned-dataset capability."""

from conftest import make_plan
from widgetflow.datasets import CannedDatasetQuery
from widgetflow.models import DataResult, Plan


def canned_plan(*entities):
    return Plan.from_dict(
        make_plan(dataSource="canned-dataset", keyEntities=list(entities), queryIntent=None)
    )


class TestCannedDatasetQuery:
    def test_bundled_datasets_load(self):
        names = [dataset.name for dataset in CannedDatasetQuery().datasets]
        assert names == [
            "monthly_sales",
            "revenue_by_region",
            "top_customers",
            "inventory_levels",
            "weekly_signups",
        ]

    def test_best_keyword_match_wins(self):
        result = CannedDatasetQuery().query(canned_plan("revenue"), "revenue breakdown by region")
        assert result.source == "canned:revenue_by_region"
        assert result.data["slices"][0]["label"] == "North America"

    def test_no_match_returns_empty(self):
        assert CannedDatasetQuery().query(canned_plan("zebra"), "zebra migration") == DataResult.empty()

    def test_results_are_copies(self):
        datasets = CannedDatasetQuery()
        first = datasets.query(canned_plan("signups"), "weekly signups")
        first.data["value"] = "tampered"
        second = datasets.query(canned_plan("signups"), "weekly signups")
        assert second.data["value"] == "1,284"

    def test_custom_file_skips_malformed_entries(self, tmp_path):
        path = tmp_path / "datasets.yaml"
        path.write_text(
            "datasets:\n"
            "  - name: churn\n"
            "    keywords: [churn]\n"
            "    data: {label: Churn, value: 2%}\n"
            "  - description: missing name and data\n",
            encoding="utf-8",
        )
        datasets = CannedDatasetQuery(path=path)
        assert [dataset.name for dataset in datasets.datasets] == ["churn"]
        result = datasets.query(canned_plan("churn"), "monthly churn")
        assert result.source == "canned:churn"
        assert result.confidence == "medium"
