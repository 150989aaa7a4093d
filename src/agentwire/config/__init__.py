"""Configuration models and parser for agentwire.yaml."""

from agentwire.config.models import AgentSettings, ProviderSettings, RunConfig
from agentwire.config.parser import ConfigError, load_settings

__all__ = [
    "AgentSettings",
    "ConfigError",
    "ProviderSettings",
    "RunConfig",
    "load_settings",
]
