from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Set

import yaml

from widgetflow.models import DataResult, Plan
from widgetflow.utils.io import read_text

logger = logging.getLogger(__name__)

DATASETS_PATH = Path(__file__).resolve().parent / "configs" / "datasets.yaml"


class DatasetQuery(Protocol):
    def query(self, plan: Plan, query: str, model: Optional[str] = None) -> DataResult:
        raise NotImplementedError


@dataclass
class CannedDataset:
    name: str
    description: str
    keywords: List[str]
    data: Dict
    confidence: str = "medium"

    def score(self, tokens: Set[str]) -> int:
        keyword_hits = len(tokens.intersection(self.keywords))
        descriptive = set(_tokenize(self.name.replace("_", " ") + " " + self.description))
        return keyword_hits * 2 + len(tokens.intersection(descriptive))


def _tokenize(text: str) -> List[str]:
    return re.findall(r"[a-z0-9]+", text.lower())


@dataclass
class CannedDatasetQuery:
    """Serve pre-built datasets picked by keyword overlap with the plan."""

    path: Path = DATASETS_PATH
    datasets: List[CannedDataset] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.datasets:
            self.datasets = self._load(self.path)

    @staticmethod
    def _load(path: Path) -> List[CannedDataset]:
        raw = yaml.safe_load(read_text(path)) or {}
        entries = raw.get("datasets", []) if isinstance(raw, dict) else []
        datasets: List[CannedDataset] = []
        for entry in entries:
            if not isinstance(entry, dict) or "name" not in entry or "data" not in entry:
                logger.warning("Skipping malformed dataset entry in %s", path)
                continue
            datasets.append(
                CannedDataset(
                    name=str(entry["name"]),
                    description=str(entry.get("description", "")),
                    keywords=[str(word).lower() for word in entry.get("keywords", [])],
                    data=entry["data"],
                    confidence=str(entry.get("confidence", "medium")),
                )
            )
        return datasets

    def match(self, plan: Plan, query: str) -> Optional[CannedDataset]:
        text = " ".join([query, plan.query_intent or "", *plan.key_entities])
        tokens = set(_tokenize(text))
        best: Optional[CannedDataset] = None
        best_score = 0
        for dataset in self.datasets:
            score = dataset.score(tokens)
            if score > best_score:
                best, best_score = dataset, score
        return best

    def query(self, plan: Plan, query: str, model: Optional[str] = None) -> DataResult:
        dataset = self.match(plan, query)
        if dataset is None:
            logger.info("No canned dataset matches %r", query, extra={"step": "data"})
            return DataResult.empty()
        logger.info("Matched canned dataset %s", dataset.name, extra={"step": "data"})
        return DataResult(
            data=copy.deepcopy(dataset.data),
            source=f"canned:{dataset.name}",
            confidence=dataset.confidence,
        )
