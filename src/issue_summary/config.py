"""
Pipeline configuration.

Values come from constructor arguments or the environment (see from_env).
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from issue_summary.errors import ConfigError

PROVIDERS = ("auto", "anthropic", "openai")
CITATION_ORDERS = ("input", "completion")

DEFAULT_ANTHROPIC_MODEL = "claude-3-5-haiku-latest"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"


@dataclass(frozen=True)
class PipelineConfig:
    """Tunables for one pipeline instance."""
    provider: str = "auto"
    anthropic_model: str = DEFAULT_ANTHROPIC_MODEL
    openai_model: str = DEFAULT_OPENAI_MODEL
    concurrency: int = 3
    call_timeout: float = 90.0
    max_retries: int = 3
    retry_base_delay: float = 2.0
    citation_order: str = "input"
    max_text_chars: int = 60000

    def __post_init__(self):
        if self.provider not in PROVIDERS:
            raise ConfigError(f"Unknown AI_PROVIDER {self.provider!r}, expected one of {PROVIDERS}")
        if self.citation_order not in CITATION_ORDERS:
            raise ConfigError(
                f"Unknown citation order {self.citation_order!r}, expected one of {CITATION_ORDERS}"
            )
        if self.concurrency < 1:
            raise ConfigError("concurrency must be at least 1")
        if self.call_timeout <= 0:
            raise ConfigError("call_timeout must be positive")
        if self.max_retries < 1:
            raise ConfigError("max_retries must be at least 1")
        if self.retry_base_delay < 0:
            raise ConfigError("retry_base_delay must not be negative")
        if self.max_text_chars < 1:
            raise ConfigError("max_text_chars must be positive")

    @property
    def extraction_timeout(self) -> float:
        """
        Limit on one document's whole extraction.

        call_timeout bounds a single HTTP attempt; a document may take every
        attempt plus the backoff sleeps between them before it is given up.
        """
        backoff = sum(self.retry_base_delay * (2 ** i) for i in range(self.max_retries - 1))
        return self.call_timeout * self.max_retries + backoff

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "PipelineConfig":
        env = os.environ if env is None else env
        try:
            return cls(
                provider=env.get("AI_PROVIDER", "auto").lower(),
                anthropic_model=env.get("ANTHROPIC_MODEL", DEFAULT_ANTHROPIC_MODEL),
                openai_model=env.get("OPENAI_MODEL", DEFAULT_OPENAI_MODEL),
                concurrency=int(env.get("SUMMARY_CONCURRENCY", "3")),
                call_timeout=float(env.get("SUMMARY_CALL_TIMEOUT", "90")),
                max_retries=int(env.get("SUMMARY_MAX_RETRIES", "3")),
                citation_order=env.get("SUMMARY_CITATION_ORDER", "input").lower(),
                max_text_chars=int(env.get("SUMMARY_MAX_TEXT_CHARS", "60000")),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid numeric setting: {e}") from e
