from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from widgetflow.adapters.gemini_adapter import GeminiAdapter
from widgetflow.adapters.llm_base import LLMAdapter
from widgetflow.adapters.mock_adapter import MockAdapter
from widgetflow.adapters.openai_adapter import OpenAIAdapter
from widgetflow.errors import ConfigError

MODES = ("mock", "live")
PROVIDERS = ("openai", "gemini")
API_KEY_VARS = {"openai": "OPENAI_API_KEY", "gemini": "GEMINI_API_KEY"}


@dataclass(frozen=True)
class PipelineConfig:
    """Everything a request needs besides the query itself.

    The environment is only consulted by ``from_env``; the pipeline never reads
    it directly.
    """

    mode: str = "mock"
    provider: str = "openai"
    model: Optional[str] = None
    max_retries: int = 2
    retry_delay_seconds: float = 0.5
    max_output_tokens: int = 1200
    temperature: float = 0.2
    datasets_path: Optional[Path] = None

    def __post_init__(self) -> None:
        if self.mode not in MODES:
            raise ConfigError(f"Unknown mode {self.mode!r}; expected one of {', '.join(MODES)}")
        if self.provider not in PROVIDERS:
            raise ConfigError(
                f"Unknown provider {self.provider!r}; expected one of {', '.join(PROVIDERS)}"
            )
        if self.max_retries < 0:
            raise ConfigError("max_retries must be >= 0")
        if self.retry_delay_seconds < 0:
            raise ConfigError("retry_delay_seconds must be >= 0")

    @classmethod
    def from_env(cls, base_dir: Optional[Path] = None) -> "PipelineConfig":
        if base_dir is not None:
            load_dotenv(Path(base_dir) / ".env")
        else:
            load_dotenv()
        values: Dict[str, Any] = {
            "mode": os.getenv("WIDGETFLOW_MODE", "mock"),
            "provider": os.getenv("WIDGETFLOW_PROVIDER", "openai"),
            "model": os.getenv("WIDGETFLOW_MODEL") or None,
            "max_retries": int(os.getenv("WIDGETFLOW_MAX_RETRIES", "2")),
            "retry_delay_seconds": float(os.getenv("WIDGETFLOW_RETRY_DELAY_SECONDS", "0.5")),
            "max_output_tokens": int(os.getenv("WIDGETFLOW_MAX_OUTPUT_TOKENS", "1200")),
            "temperature": float(os.getenv("WIDGETFLOW_TEMPERATURE", "0.2")),
        }
        datasets_path = os.getenv("WIDGETFLOW_DATASETS_PATH")
        if datasets_path:
            values["datasets_path"] = Path(datasets_path)
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> "PipelineConfig":
        return replace(self, **{key: value for key, value in overrides.items() if value is not None})

    def generation_options(self, **extra: Any) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "max_output_tokens": self.max_output_tokens,
            "temperature": self.temperature,
        }
        options.update(extra)
        return options


def build_adapter(config: PipelineConfig) -> LLMAdapter:
    if config.mode == "mock":
        return MockAdapter()
    key_var = API_KEY_VARS[config.provider]
    if not os.getenv(key_var):
        raise ConfigError(
            f"Missing required API key: {key_var}. Create a .env file and set the key."
        )
    if config.provider == "gemini":
        return GeminiAdapter()
    return OpenAIAdapter()
