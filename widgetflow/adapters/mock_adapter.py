from __future__ import annotations

import json
import random
import re
import zlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .llm_base import EventCallback, GenerationResult, LLMAdapter

FEEDBACK_MARKER = "\n\nPREVIOUS ATTEMPT FAILED"

_WIDGET_RULES = [
    (("trend", "over time", "history", "growth", "since"), "line-chart", "time-series"),
    (("compare", " vs ", "versus"), "comparison", "comparison"),
    (("share", "breakdown", "distribution", "split"), "pie-chart", "categorical"),
    (("top ", "list", "best"), "list", "list"),
    (("table",), "table", "tabular"),
    (("timeline", "milestones"), "timeline", "list"),
    (("price", "how many", "population", "temperature", "rate"), "metric-card", "single-value"),
]
_LIVE_HINTS = ("latest", "today", "current", "news", "stock", "price", "weather")
_CANNED_HINTS = ("sales", "revenue", "customers", "orders", "inventory", "signups")


def _line_value(prompt: str, label: str) -> Optional[str]:
    match = re.search(rf"^{re.escape(label)}:\s*(.*)$", prompt, flags=re.MULTILINE)
    return match.group(1).strip() if match else None


@dataclass
class MockAdapter(LLMAdapter):
    """Offline generation stand-in used by ``--mode mock`` and the test suite.

    Responses are derived from the phase marker in the system prompt and the
    labelled lines of the user prompt, so the same query always yields the
    same artifacts. ``scenario="fenced"`` wraps every payload in a markdown
    fence with commentary to exercise extraction.
    """

    scenario: str = "default"
    default_model: str = "mock-1"
    calls: List[Dict[str, Any]] = field(default_factory=list)

    def generate(
        self,
        prompt: str,
        system_prompt: str,
        model: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> GenerationResult:
        self.calls.append({"prompt": prompt, "system_prompt": system_prompt, "model": model})
        payload = self._build_payload(prompt.split(FEEDBACK_MARKER)[0], system_prompt)
        text = json.dumps(payload)
        if self.scenario == "fenced":
            text = f"Here is the JSON you asked for:\n```json\n{json.dumps(payload, indent=2)}\n```\nLet me know!"
        return GenerationResult(success=True, final_text=text)

    def generate_with_callback(
        self,
        prompt: str,
        system_prompt: str,
        on_event: EventCallback,
        model: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> GenerationResult:
        if (options or {}).get("web_search"):
            on_event({"type": "tool_call", "subtype": "started", "name": "web_search"})
        return self.generate(prompt, system_prompt, model, options)

    def _build_payload(self, prompt: str, system_prompt: str) -> Dict:
        if "widget_plan" in system_prompt:
            return self._plan(prompt.strip())
        if "widget_render" in system_prompt:
            return self._widget(prompt)
        if "live_data" in system_prompt:
            return self._data(prompt, source="mock://live-search", confidence="medium")
        return self._data(prompt, source=None, confidence="medium")

    def _plan(self, query: str) -> Dict:
        lowered = f" {query.lower()} "
        widget_type, structure = "metric-card", "single-value"
        for keywords, rule_type, rule_structure in _WIDGET_RULES:
            if any(keyword in lowered for keyword in keywords):
                widget_type, structure = rule_type, rule_structure
                break
        if any(hint in lowered for hint in _CANNED_HINTS):
            source = "canned-dataset"
        elif any(hint in lowered for hint in _LIVE_HINTS):
            source = "live-fetch"
        else:
            source = "synthetic"
        entities = re.findall(r"\b[A-Z][\w&.-]*(?:\s+[A-Z][\w&.-]*)*", query) or [query]
        return {
            "widgetType": widget_type,
            "dataSource": source,
            "searchQuery": query if source == "live-fetch" else None,
            "queryIntent": query,
            "dataStructure": structure,
            "keyEntities": entities,
            "reasoning": f"Mock plan: keywords suggest a {widget_type}.",
        }

    def _data(self, prompt: str, source: Optional[str], confidence: str) -> Dict:
        widget_type = _line_value(prompt, "Widget type") or "metric-card"
        rng = random.Random(zlib.crc32(prompt.encode("utf-8")))
        labels = ["Alpha", "Beta", "Gamma", "Delta"]
        if widget_type == "metric-card":
            data: Dict[str, Any] = {
                "label": _line_value(prompt, "Key entities") or "Value",
                "value": f"{rng.randint(10, 999)}.{rng.randint(10, 99)}",
            }
        elif widget_type in ("line-chart", "bar-chart"):
            data = {"points": [{"x": f"2024-0{i + 1}", "y": rng.randint(10, 100)} for i in range(4)]}
        elif widget_type == "pie-chart":
            data = {"slices": [{"label": label, "value": rng.randint(5, 40)} for label in labels]}
        elif widget_type == "table":
            data = {
                "columns": ["Name", "Value"],
                "rows": [[label, rng.randint(1, 50)] for label in labels],
            }
        elif widget_type == "timeline":
            data = {"events": [{"date": f"202{i}", "title": label} for i, label in enumerate(labels)]}
        elif widget_type == "text":
            data = {"content": "Mock summary text."}
        else:
            data = {"items": [{"label": label, "value": rng.randint(1, 100)} for label in labels]}
        return {"data": data, "source": source, "confidence": confidence}

    def _widget(self, prompt: str) -> Dict:
        widget_type = _line_value(prompt, "Widget type") or "metric-card"
        raw_data = _line_value(prompt, "Available data") or "{}"
        try:
            data = json.loads(raw_data)
        except json.JSONDecodeError:
            data = {}
        if not data:
            data = {"label": "No data", "value": "n/a"}
        return {"type": widget_type, "data": data, "config": {"size": "md", "theme": "default"}}
