from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, List, Optional

from openai import OpenAI
from openai import APIConnectionError, APITimeoutError, RateLimitError, InternalServerError

from widgetflow.errors import ConfigError
from .llm_base import EventCallback, GenerationResult, LLMAdapter

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_SEARCH_MODEL = "gpt-4o-mini-search-preview"
MAX_ATTEMPTS = 4


class QuotaExceeded(RuntimeError):
    pass


class OpenAIAdapter(LLMAdapter):
    def __init__(self, api_key: Optional[str] = None, default_model: Optional[str] = None) -> None:
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise ConfigError("OPENAI_API_KEY is not set.")
        self.client = OpenAI(api_key=self.api_key)
        self.default_model = default_model or os.getenv("OPENAI_MODEL", DEFAULT_OPENAI_MODEL)
        self.search_model = os.getenv("OPENAI_SEARCH_MODEL", DEFAULT_SEARCH_MODEL)

    def _request(
        self,
        prompt: str,
        system_prompt: str,
        model: Optional[str],
        options: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        options = options or {}
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        request: Dict[str, Any] = {
            "model": model or self.default_model,
            "messages": messages,
            "max_tokens": int(options.get("max_output_tokens", 1200)),
        }
        if options.get("web_search"):
            # Search models reject sampling and response_format parameters.
            request["model"] = self.search_model
            request["web_search_options"] = {}
        else:
            request["temperature"] = float(options.get("temperature", 0.2))
            request["response_format"] = {"type": "json_object"}
        return request

    def _create(self, **request: Any) -> Any:
        attempt = 0
        backoff = 1.0
        while True:
            attempt += 1
            try:
                return self.client.chat.completions.create(**request)
            except RateLimitError as exc:
                error = getattr(exc, "error", None)
                code = getattr(error, "code", None)
                if code == "insufficient_quota":
                    raise QuotaExceeded(
                        "OpenAI API quota exceeded. Please enable billing in your OpenAI account."
                    ) from exc
                if attempt >= MAX_ATTEMPTS:
                    raise
            except (APITimeoutError, APIConnectionError, InternalServerError):
                if attempt >= MAX_ATTEMPTS:
                    raise
            logger.info("[openai] transient error, sleeping %.1fs (attempt %s)", backoff, attempt)
            time.sleep(backoff)
            backoff *= 2

    def generate(
        self,
        prompt: str,
        system_prompt: str,
        model: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> GenerationResult:
        request = self._request(prompt, system_prompt, model, options)
        try:
            response = self._create(**request)
        except Exception as exc:
            return GenerationResult.failed(f"[openai] {exc}")
        content = response.choices[0].message.content
        if not content:
            return GenerationResult.failed("OpenAI returned empty content.")
        usage = getattr(response, "usage", None)
        usage_payload = None
        if usage:
            usage_payload = {
                "prompt_tokens": getattr(usage, "prompt_tokens", None),
                "completion_tokens": getattr(usage, "completion_tokens", None),
                "total_tokens": getattr(usage, "total_tokens", None),
            }
            logger.info(
                "[openai] model=%s prompt_tokens=%s completion_tokens=%s total_tokens=%s",
                request["model"],
                usage_payload["prompt_tokens"],
                usage_payload["completion_tokens"],
                usage_payload["total_tokens"],
            )
        else:
            logger.info("[openai] usage not provided by SDK")
        return GenerationResult(success=True, final_text=content, usage=usage_payload)

    def generate_with_callback(
        self,
        prompt: str,
        system_prompt: str,
        on_event: EventCallback,
        model: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> GenerationResult:
        request = self._request(prompt, system_prompt, model, options)
        request["stream"] = True
        searching = bool((options or {}).get("web_search"))
        if searching:
            on_event({"type": "tool_call", "subtype": "started", "name": "web_search"})
        chunks: List[str] = []
        try:
            for chunk in self._create(**request):
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if getattr(delta, "tool_calls", None):
                    for call in delta.tool_calls:
                        name = getattr(getattr(call, "function", None), "name", None)
                        if name:
                            on_event({"type": "tool_call", "subtype": "started", "name": name})
                if delta.content:
                    chunks.append(delta.content)
        except Exception as exc:
            return GenerationResult.failed(f"[openai] {exc}")
        if searching:
            on_event({"type": "tool_call", "subtype": "completed", "name": "web_search"})
        text = "".join(chunks)
        if not text:
            return GenerationResult.failed("OpenAI returned empty content.")
        return GenerationResult(success=True, final_text=text)
