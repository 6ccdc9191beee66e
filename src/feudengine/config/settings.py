"""Engine configuration loaded from ``config/feud.local.json`` and the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import orjson
import structlog
from dotenv import load_dotenv

LOGGER = structlog.get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("config/feud.local.json")


@dataclass(slots=True)
class EngineConfig:
    """Tunables for the engine, the validator gate and storage."""

    strike_limit: int = 3
    history_limit: int = 50
    validator_provider: str = "offline"
    validator_timeout: float = 3.0
    confidence_floor: float = 0.8
    fallback_confidence: float = 0.85
    failure_threshold: int = 3
    cooldown_seconds: float = 30.0
    validator_url: str = "http://localhost:8000/api/validate-answer"
    openai_model: str = "gpt-4.1-mini"
    storage_dir: Path = Path(".feud")
    default_team_names: Tuple[str, str] = ("Team A", "Team B")
    team_colors: Tuple[str, str] = ("#ef4444", "#3b82f6")
    extra: Dict[str, Any] = field(default_factory=dict)

    def validator_kwargs(self) -> Dict[str, Any]:
        """Constructor arguments for the configured validator."""

        if self.validator_provider == "openai":
            return {
                "model": self.openai_model,
                "confidence_floor": self.confidence_floor,
                "default_confidence": self.fallback_confidence,
            }
        if self.validator_provider == "http":
            return {"url": self.validator_url}
        return {}


_ENV_OVERRIDES: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    "FEUD_HISTORY_LIMIT": ("history_limit", int),
    "FEUD_VALIDATOR": ("validator_provider", str),
    "FEUD_VALIDATOR_TIMEOUT": ("validator_timeout", float),
    "FEUD_CONFIDENCE_FLOOR": ("confidence_floor", float),
    "FEUD_VALIDATOR_COOLDOWN": ("cooldown_seconds", float),
    "FEUD_VALIDATOR_URL": ("validator_url", str),
    "FEUD_OPENAI_MODEL": ("openai_model", str),
    "FEUD_STORAGE_DIR": ("storage_dir", Path),
}


def _pair(value: Any, fallback: Tuple[str, str]) -> Tuple[str, str]:
    if isinstance(value, (list, tuple)) and len(value) == 2 and all(isinstance(v, str) for v in value):
        return (value[0], value[1])
    return fallback


def _coerce(raw: Any, default: Any) -> Any:
    if isinstance(default, tuple):
        return _pair(raw, default)
    if isinstance(default, Path):
        return Path(str(raw))
    if raw is None:
        return default
    if isinstance(raw, bool):
        raise ValueError("unexpected boolean")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return str(raw)


def load_engine_config(path: Path = DEFAULT_CONFIG_PATH, *, env: Optional[Dict[str, str]] = None) -> EngineConfig:
    """Load engine configuration from disk and environment, falling back to defaults."""

    config = EngineConfig()
    if path.exists():
        data = orjson.loads(path.read_bytes())
        if not isinstance(data, dict):
            data = {}
        known = {f.name for f in fields(EngineConfig)} - {"extra"}
        updates: Dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                continue
            try:
                updates[key] = _coerce(value, getattr(config, key))
            except (TypeError, ValueError):
                LOGGER.warning("config.invalid_value", key=key)
        extra = {str(k): v for k, v in data.items() if k not in known}
        config = replace(config, extra=extra, **updates)

    if env is None:
        load_dotenv()
        env = dict(os.environ)
    for variable, (attribute, convert) in _ENV_OVERRIDES.items():
        raw = env.get(variable)
        if raw is None or raw == "":
            continue
        try:
            setattr(config, attribute, convert(raw))
        except (TypeError, ValueError):
            LOGGER.warning("config.invalid_env", variable=variable)

    return config
