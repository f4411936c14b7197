"""
CQL Instrumentation - Configuration Module

Provides typed configuration loading and validation.
"""

from .loader import get_config, load_config, reload_config, reset_config
from .schemas import (
    AgentConfig,
    Environment,
    InstrumentationConfig,
    InstrumentationSettings,
    LogLevel,
)

__all__ = [
    # Loader functions
    "load_config",
    "get_config",
    "reload_config",
    "reset_config",
    # Main config
    "InstrumentationSettings",
    # Enums
    "Environment",
    "LogLevel",
    # Config sections
    "InstrumentationConfig",
    "AgentConfig",
]
