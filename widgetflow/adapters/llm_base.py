from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol

GenerationEvent = Dict[str, Any]
EventCallback = Callable[[GenerationEvent], None]


@dataclass
class GenerationResult:
    success: bool
    final_text: str = ""
    error: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None

    @classmethod
    def failed(cls, error: str) -> "GenerationResult":
        return cls(success=False, final_text="", error=error)


class LLMAdapter(Protocol):
    default_model: str

    def generate(
        self,
        prompt: str,
        system_prompt: str,
        model: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> GenerationResult:
        raise NotImplementedError

    def generate_with_callback(
        self,
        prompt: str,
        system_prompt: str,
        on_event: EventCallback,
        model: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> GenerationResult:
        on_event({"type": "generation", "subtype": "started"})
        result = self.generate(prompt, system_prompt, model, options)
        on_event({"type": "generation", "subtype": "completed", "success": result.success})
        return result
