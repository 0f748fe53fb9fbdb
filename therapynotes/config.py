"""Client configuration resolved from the environment.

Settings are read fresh on every call to :meth:`ClientSettings.from_env` so the
backend mode can be flipped between operations (tests rely on this).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

APP_NAME = "TherapyNotes"

DEFAULT_API_ENDPOINT = "http://localhost:3000"

_TRUE_VALUES = {"1", "true", "yes"}


class ConfigurationError(Exception):
    """Raised when the resolved configuration is unsafe to run."""


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _env_str(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Environment variable {name} must be a number; got {raw!r}") from exc


@dataclass(frozen=True)
class ClientSettings:
    """Resolved configuration for the data-access layer."""

    api_endpoint: str = DEFAULT_API_ENDPOINT
    streaming_api_endpoint: Optional[str] = None
    use_mock_api: bool = True
    use_real_ai: bool = False
    demo_ai_endpoint: Optional[str] = None
    mock_role: Optional[str] = None
    test_role: Optional[str] = None
    debug_mode: bool = False
    simulated_latency: float = 1.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ClientSettings":
        return cls(
            api_endpoint=(_env_str("THERAPYNOTES_API_ENDPOINT") or DEFAULT_API_ENDPOINT).rstrip("/"),
            streaming_api_endpoint=_env_str("THERAPYNOTES_STREAMING_API_ENDPOINT"),
            use_mock_api=_env_flag("THERAPYNOTES_USE_MOCK_API", default=True),
            use_real_ai=_env_flag("THERAPYNOTES_USE_REAL_AI"),
            demo_ai_endpoint=_env_str("THERAPYNOTES_DEMO_AI_ENDPOINT"),
            mock_role=_env_str("THERAPYNOTES_MOCK_ROLE"),
            test_role=_env_str("THERAPYNOTES_TEST_ROLE"),
            debug_mode=_env_flag("THERAPYNOTES_DEBUG_MODE"),
            simulated_latency=max(0.0, _env_float("THERAPYNOTES_SIMULATED_LATENCY", 1.0)),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        )

    @property
    def is_production(self) -> bool:
        return not self.debug_mode and not self.use_mock_api

    @property
    def simulated_narrative(self) -> bool:
        """Narratives come from the simulator only when real AI is not requested."""

        return self.use_mock_api and not self.use_real_ai

    @property
    def hybrid_ai(self) -> bool:
        """Simulated data with narratives proxied through the demo AI endpoint."""

        return self.use_mock_api and self.use_real_ai and bool(self.demo_ai_endpoint)

    @property
    def stream_endpoint(self) -> str:
        return (self.streaming_api_endpoint or self.api_endpoint).rstrip("/")


def validate_config(settings: ClientSettings) -> ClientSettings:
    """Reject debug mode combined with the networked backend."""

    if settings.debug_mode and not settings.use_mock_api:
        raise ConfigurationError(
            "debug_mode=true with use_mock_api=false is not allowed; "
            "this would bypass authentication while using the real API."
        )
    return settings


__all__ = [
    "APP_NAME",
    "ClientSettings",
    "ConfigurationError",
    "validate_config",
]
