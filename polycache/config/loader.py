"""
Polycache - Configuration Loader

Loads and validates configuration from environment variables and .env files.
Provides a singleton configuration instance for the runtime.
"""

import logging
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import ValidationError

from ..errors import ConfigurationError
from .schemas import PolycacheConfig

logger = logging.getLogger(__name__)

_config_instance: PolycacheConfig | None = None

_DISABLED = {"", "0", "false", "no", "none", "off"}


def _build_config_dict() -> dict[str, Any]:
    """Translate environment variables into a PolycacheConfig payload."""
    namespace = os.getenv("POLYCACHE_NAMESPACE", "polycache")
    common = {
        "namespace": namespace,
        "delay_expire_time": float(os.getenv("POLYCACHE_DELAY_EXPIRE_TIME", "1800")),
        "max_reconnect_attempts": int(os.getenv("POLYCACHE_MAX_RECONNECT_ATTEMPTS", "3")),
        "reconnect_cooldown": float(os.getenv("POLYCACHE_RECONNECT_COOLDOWN", "60")),
    }

    drivers: dict[str, dict[str, Any]] = {
        "memory": {
            "type": "memory",
            "max_size": int(os.getenv("MEMORY_CACHE_MAX_SIZE", "1000")),
            **common,
        },
        "files": {
            "type": "files",
            "path": os.getenv("FILES_CACHE_PATH"),
            **common,
        },
    }

    # Auto-detect redis: configured only when a URL or server list is set
    redis_url = os.getenv("REDIS_URL")
    redis_servers = os.getenv("REDIS_SERVERS")
    if redis_url or redis_servers:
        drivers["redis"] = {
            "type": "redis",
            "url": redis_url,
            "servers": redis_servers,
            "password": os.getenv("REDIS_PASSWORD"),
            "database": int(os.getenv("REDIS_DATABASE", "0")),
            "timeout": float(os.getenv("REDIS_TIMEOUT", "5")),
            **common,
        }

    fallback: str | bool = os.getenv("POLYCACHE_FALLBACK", "files")
    if fallback.strip().lower() in _DISABLED:
        fallback = False

    return {
        "log_level": os.getenv("LOG_LEVEL", "INFO").upper(),
        "log_file": os.getenv("LOG_FILE") or None,
        "default_driver": os.getenv("POLYCACHE_DEFAULT_DRIVER", "redis" if "redis" in drivers else "memory"),
        "fallback": fallback,
        "drivers": drivers,
    }


def load_config(
    env_file: str | None = None,
    reload: bool = False,
) -> PolycacheConfig:
    """
    Load configuration from environment variables and .env file.

    Args:
        env_file: Path to .env file (default: .env in the working directory)
        reload: Force reload even if config already loaded

    Returns:
        Validated PolycacheConfig instance

    Raises:
        ConfigurationError: If configuration is invalid
    """
    global _config_instance

    if _config_instance is not None and not reload:
        return _config_instance

    # Load .env file if exists
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
            ) from e
    else:
        logger.debug("No .env file found, using environment variables only")

    try:
        config_dict = _build_config_dict()
        _config_instance = PolycacheConfig(**config_dict)
        logger.info(
            "Configuration loaded successfully",
            extra={
                "default_driver": _config_instance.default_driver,
                "drivers": sorted(_config_instance.drivers),
            },
        )
        return _config_instance
    except ValidationError as e:
        logger.error(
            f"Configuration validation failed: {e}",
            extra={"validation_errors": e.errors()},
            exc_info=True,
        )
        raise ConfigurationError(
            "Configuration validation failed. Check your environment variables and configuration.",
            details={"validation_errors": e.errors()},
        ) from e
    except ValueError as e:
        # Malformed numeric environment variables
        logger.error(f"Invalid configuration value: {e}", extra={"error": str(e)}, exc_info=True)
        raise ConfigurationError(
            f"Invalid configuration value: {e}",
            details={"error": str(e)},
        ) from e


def get_config() -> PolycacheConfig:
    """
    Get the current configuration instance.

    Returns:
        Current PolycacheConfig instance (loaded on first access)
    """
    if _config_instance is None:
        return load_config()

    return _config_instance


def reload_config(env_file: str | None = None) -> PolycacheConfig:
    """
    Force reload configuration.

    Args:
        env_file: Optional path to .env file

    Returns:
        Reloaded PolycacheConfig instance
    """
    return load_config(env_file=env_file, reload=True)
