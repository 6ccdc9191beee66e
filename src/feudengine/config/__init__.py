"""Configuration loading."""

from .settings import DEFAULT_CONFIG_PATH, EngineConfig, load_engine_config

__all__ = ["DEFAULT_CONFIG_PATH", "EngineConfig", "load_engine_config"]
