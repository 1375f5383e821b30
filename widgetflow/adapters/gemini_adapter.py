from __future__ import annotations

import logging
import os
import random
import time
from typing import Any, Callable, Dict, List, Optional

from google import genai
from google.genai import types

from widgetflow.errors import ConfigError
from .llm_base import EventCallback, GenerationResult, LLMAdapter

logger = logging.getLogger(__name__)

DEFAULT_GEMINI_MODEL = "gemini-flash-latest"


class GeminiAdapter(LLMAdapter):
    def __init__(self, api_key: Optional[str] = None, default_model: Optional[str] = None) -> None:
        api_key = api_key or os.getenv("GEMINI_API_KEY")
        if not api_key:
            raise ConfigError("GEMINI_API_KEY is not set.")

        self.client = genai.Client(api_key=api_key)
        self.default_model = default_model or os.getenv("GEMINI_MODEL", DEFAULT_GEMINI_MODEL)
        self.fallback_models: List[str] = ["gemini-pro", "gemini-1.5-pro"]

        self.max_attempts = int(os.getenv("GEMINI_MAX_ATTEMPTS", "5"))
        self.base_delay = float(os.getenv("GEMINI_BASE_DELAY_SECONDS", "1.0"))

    def _is_transient(self, err: Exception) -> bool:
        msg = str(err).lower()
        return any(s in msg for s in ["503", "unavailable", "429", "too many", "timeout", "temporarily"])

    def _config(self, system_prompt: str, options: Optional[Dict[str, Any]]) -> types.GenerateContentConfig:
        options = options or {}
        tools = None
        mime_type = "application/json"
        if options.get("web_search"):
            tools = [types.Tool(google_search=types.GoogleSearch())]
            # Grounded calls do not support a JSON response mime type.
            mime_type = None
        return types.GenerateContentConfig(
            system_instruction=system_prompt or None,
            temperature=float(options.get("temperature", 0.2)),
            max_output_tokens=int(options.get("max_output_tokens", 1200)),
            response_mime_type=mime_type,
            tools=tools,
        )

    def _with_candidates(self, model: Optional[str], call: Callable[[str], str]) -> str:
        last_err: Exception | None = None
        candidates = [model or self.default_model] + [
            name for name in self.fallback_models if name != (model or self.default_model)
        ]

        for candidate in candidates:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    logger.info("[gemini] model=%s attempt=%s/%s", candidate, attempt, self.max_attempts)
                    text = call(candidate)
                    if not text:
                        raise RuntimeError("Gemini returned empty content.")
                    return text

                except Exception as e:
                    last_err = e
                    if not self._is_transient(e):
                        break

                    delay = self.base_delay * (2 ** (attempt - 1)) + random.random() * 0.5
                    logger.warning("[gemini] transient error: %s -> sleeping %.2fs", e, delay)
                    time.sleep(delay)

            logger.warning("[gemini] switching model after failures: %s", candidate)

        raise RuntimeError(
            "Gemini generate_content failed for all candidate models. "
            f"Last error: {last_err}"
        ) from last_err

    def generate(
        self,
        prompt: str,
        system_prompt: str,
        model: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> GenerationResult:
        config = self._config(system_prompt, options)

        def call(candidate: str) -> str:
            response = self.client.models.generate_content(
                model=candidate,
                contents=prompt,
                config=config,
            )
            return getattr(response, "text", None) or ""

        try:
            return GenerationResult(success=True, final_text=self._with_candidates(model, call))
        except RuntimeError as exc:
            return GenerationResult.failed(str(exc))

    def generate_with_callback(
        self,
        prompt: str,
        system_prompt: str,
        on_event: EventCallback,
        model: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> GenerationResult:
        config = self._config(system_prompt, options)
        searching = bool((options or {}).get("web_search"))

        def call(candidate: str) -> str:
            if searching:
                on_event({"type": "tool_call", "subtype": "started", "name": "google_search"})
            chunks: List[str] = []
            queries: List[str] = []
            for chunk in self.client.models.generate_content_stream(
                model=candidate,
                contents=prompt,
                config=config,
            ):
                if chunk.text:
                    chunks.append(chunk.text)
                for candidate_part in chunk.candidates or []:
                    metadata = getattr(candidate_part, "grounding_metadata", None)
                    queries.extend(getattr(metadata, "web_search_queries", None) or [])
            if searching:
                on_event(
                    {"type": "tool_call", "subtype": "completed", "name": "google_search", "queries": queries}
                )
            return "".join(chunks)

        try:
            return GenerationResult(success=True, final_text=self._with_candidates(model, call))
        except RuntimeError as exc:
            return GenerationResult.failed(str(exc))
