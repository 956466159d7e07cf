"""
Generation settings read from the environment.
"""
import os
from dataclasses import dataclass
from typing import Optional


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def env_flag(name: str, default: bool = False) -> bool:
    """Read a boolean flag such as AUTH_DISABLED=true."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass(frozen=True)
class GenerationConfig:
    """
    Settings for the two completion calls.

    Discovery runs cooler than authoring: Phase 1 needs coverage with
    repeatable structure, Phase 2 needs voice.
    """
    api_key: Optional[str] = None
    discovery_model: str = 'gpt-4o-mini'
    authoring_model: str = 'gpt-4o'
    discovery_temperature: float = 0.7
    authoring_temperature: float = 0.8
    discovery_max_tokens: int = 4000
    authoring_max_tokens: int = 3600
    request_timeout: float = 60.0
    drift_guard_enabled: bool = True
    drift_threshold: float = 0.35

    @classmethod
    def from_env(cls) -> "GenerationConfig":
        shared_model = os.getenv('OPENAI_MODEL')
        return cls(
            api_key=os.getenv('OPENAI_API_KEY'),
            discovery_model=os.getenv('BASE_MODEL') or shared_model or cls.discovery_model,
            authoring_model=os.getenv('REWRITE_MODEL') or shared_model or cls.authoring_model,
            discovery_temperature=_env_float('DISCOVERY_TEMPERATURE', cls.discovery_temperature),
            authoring_temperature=_env_float('AUTHORING_TEMPERATURE', cls.authoring_temperature),
            discovery_max_tokens=_env_int('DISCOVERY_MAX_TOKENS', cls.discovery_max_tokens),
            authoring_max_tokens=_env_int('AUTHORING_MAX_TOKENS', cls.authoring_max_tokens),
            request_timeout=_env_float('OPENAI_TIMEOUT', cls.request_timeout),
            drift_guard_enabled=env_flag('DRIFT_GUARD_ENABLED', cls.drift_guard_enabled),
            drift_threshold=_env_float('DRIFT_THRESHOLD', cls.drift_threshold),
        )
