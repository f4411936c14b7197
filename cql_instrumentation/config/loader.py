"""
CQL Instrumentation - Configuration Loader

Loads and validates configuration from environment variables and .env files.
Provides a singleton configuration instance for the process.
"""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

from ..errors import ConfigurationError, ErrorCode
from .schemas import InstrumentationSettings

logger = logging.getLogger(__name__)

_config_instance: InstrumentationSettings | None = None


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def load_config(
    env_file: str | None = None,
    reload: bool = False,
) -> InstrumentationSettings:
    """
    Load configuration from environment variables and .env file.

    Args:
        env_file: Path to .env file (default: .env in the working directory)
        reload: Force reload even if config already loaded

    Returns:
        Validated InstrumentationSettings instance

    Raises:
        ConfigurationError: If the .env file cannot be read or values are invalid
    """
    global _config_instance

    if _config_instance is not None and not reload:
        return _config_instance

    if env_file:
        env_path = Path(env_file)
    else:
        env_path = Path.cwd() / ".env"

    if env_path.exists():
        logger.info(f"Loading environment from {env_path}")
        try:
            load_dotenv(env_path, override=True)
        except Exception as e:
            logger.error(
                f"Failed to load .env file from {env_path}: {e}",
                extra={"path": str(env_path), "error": str(e)},
                exc_info=True,
            )
            raise ConfigurationError(
                f"Failed to load environment file: {e}",
                details={"path": str(env_path), "error": str(e)},
                error_code=ErrorCode.ENV_FILE_UNREADABLE,
            ) from e
    else:
        logger.debug("No .env file found, using environment variables only")

    try:
        config_dict = {
            "environment": os.getenv("ENVIRONMENT", "development"),
            "log_level": os.getenv("LOG_LEVEL", "INFO"),
            "instrumentation": {
                "disable_database_instrumentation": _env_flag("DISABLE_DATABASE_INSTRUMENTATION"),
                "disable_cassandra_instrumentation": _env_flag("DISABLE_CASSANDRA_INSTRUMENTATION"),
            },
            "agent": {
                "enable_tracing": _env_flag("ENABLE_TRACING", "true"),
                "slow_sample_threshold": float(os.getenv("SLOW_SAMPLE_THRESHOLD", "0.5")),
                "max_slow_samples": int(os.getenv("MAX_SLOW_SAMPLES", "20")),
                "max_full_samples": int(os.getenv("MAX_FULL_SAMPLES", "100")),
                "metrics_db_path": os.getenv("METRICS_DB_PATH", "./data/metrics.db"),
            },
        }
    except ValueError as e:
        logger.error(f"Malformed numeric configuration value: {e}", extra={"error": str(e)})
        raise ConfigurationError(
            f"Malformed numeric configuration value: {e}",
            details={"error": str(e)},
        ) from e

    try:
        _config_instance = InstrumentationSettings(**config_dict)  # type: ignore[arg-type]
        logger.info(
            f"Configuration loaded successfully (environment: {_config_instance.environment})",
            extra={
                "environment": _config_instance.environment,
                "tracing": _config_instance.agent.enable_tracing,
            },
        )
        return _config_instance
    except ValidationError as e:
        logger.error(
            f"Configuration validation failed: {e}",
            extra={"validation_errors": e.errors(), "config_dict_keys": list(config_dict.keys())},
            exc_info=True,
        )
        raise ConfigurationError(
            "Configuration validation failed. Check your environment variables and configuration.",
            details={"validation_errors": e.errors()},
        ) from e


def get_config() -> InstrumentationSettings:
    """
    Get the current configuration instance, loading it on first access.

    Returns:
        Current InstrumentationSettings instance
    """
    if _config_instance is None:
        return load_config()

    return _config_instance


def reload_config(env_file: str | None = None) -> InstrumentationSettings:
    """
    Force reload configuration.

    Args:
        env_file: Optional path to .env file

    Returns:
        Reloaded InstrumentationSettings instance
    """
    return load_config(env_file=env_file, reload=True)


def reset_config() -> None:
    """Drop the cached configuration (testing/reset)."""
    global _config_instance
    _config_instance = None
