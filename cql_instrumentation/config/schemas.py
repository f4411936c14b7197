"""
CQL Instrumentation - Configuration Schemas

Typed configuration models using Pydantic for validation and type safety.
All configuration is defined here and validated at startup.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Environment(str, Enum):
    """Runtime environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class InstrumentationConfig(BaseModel):
    """Switches that keep database hooks from being installed or recording."""

    disable_database_instrumentation: bool = Field(
        default=False,
        description="Disable instrumentation of every database library",
    )
    disable_cassandra_instrumentation: bool = Field(
        default=False,
        description="Disable instrumentation of the Cassandra driver",
    )

    model_config = ConfigDict(validate_assignment=True)

    def is_disabled(self, library: str) -> bool:
        """
        Check whether instrumentation of a library is switched off.

        Args:
            library: Library key, e.g. "cassandra"

        Returns:
            True if the global flag or disable_<library>_instrumentation is set
        """
        if self.disable_database_instrumentation:
            return True
        return bool(getattr(self, f"disable_{library}_instrumentation", False))


class AgentConfig(BaseModel):
    """Settings of the in-process reference agent."""

    enable_tracing: bool = Field(default=True, description="Record timings and samples")
    slow_sample_threshold: float = Field(
        default=0.5,
        ge=0.0,
        description="Minimum elapsed seconds for a call to be kept as a slow sample",
    )
    max_slow_samples: int = Field(default=20, ge=1, description="Slow samples retained between harvests")
    max_full_samples: int = Field(default=100, ge=1, description="Distinct (metric, query) aggregates retained")
    metrics_db_path: str = Field(default="./data/metrics.db", description="SQLite file for harvested metrics")


class InstrumentationSettings(BaseModel):
    """Root configuration for CQL instrumentation."""

    environment: Environment = Field(default=Environment.DEVELOPMENT, description="Runtime environment")
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")

    instrumentation: InstrumentationConfig = Field(default_factory=InstrumentationConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)

    model_config = ConfigDict(use_enum_values=True, validate_assignment=True)
