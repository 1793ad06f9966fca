"""
Polycache - Configuration Schemas

Defines typed configuration models using Pydantic for validation and type safety.
All configuration must be defined here and validated at startup.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class CacheBackend(str, Enum):
    """Supported cache backends."""

    MEMORY = "memory"
    FILES = "files"
    REDIS = "redis"  # Requires the redis client


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ServerConfig(BaseModel):
    """One network cache server."""

    host: str = Field(default="127.0.0.1", min_length=1, description="Server host")
    port: int = Field(default=6379, ge=1, le=65535, description="Server port")
    weight: int = Field(default=1, ge=0, description="Relative weight in a server pool")

    @classmethod
    def parse(cls, spec: str) -> "ServerConfig":
        """Parse ``host``, ``host:port`` or ``host:port:weight``."""
        parts = [p.strip() for p in spec.strip().split(":")]
        if not parts[0] or len(parts) > 3:
            raise ValueError(f"Invalid server spec '{spec}', expected host[:port[:weight]]")
        fields: dict[str, Any] = {"host": parts[0]}
        if len(parts) > 1 and parts[1]:
            fields["port"] = int(parts[1])
        if len(parts) > 2 and parts[2]:
            fields["weight"] = int(parts[2])
        return cls(**fields)


class DriverConfig(BaseModel):
    """Configuration of one named cache driver."""

    type: CacheBackend = Field(default=CacheBackend.MEMORY, description="Backend type")

    # Network backends
    servers: list[ServerConfig] = Field(default_factory=list, description="Servers (host:port[:weight])")
    url: str | None = Field(default=None, description="Connection URL, alternative to servers (redis)")
    password: str | None = Field(default=None, description="Server password")
    database: int = Field(default=0, ge=0, description="Database index (redis)")
    timeout: float = Field(default=5.0, gt=0, description="Connection/operation timeout in seconds")

    namespace: str = Field(default="polycache", min_length=1, description="Cache key namespace/prefix")
    path: str | None = Field(default=None, description="Cache directory (files backend)")
    max_size: int = Field(default=1000, ge=1, description="Max cache entries (memory backend)")

    # Name of the backup driver; None uses the global default, False disables fail-over
    fallback: str | Literal[False] | None = Field(default=None, description="Backup driver name")
    delay_expire_time: float = Field(default=1800, gt=0, description="Default grace window of delayed expiry")
    max_reconnect_attempts: int = Field(default=3, ge=0, description="Health checks per round while disconnected")
    reconnect_cooldown: float = Field(
        default=60.0, ge=0, description="Seconds before checking an abandoned primary again (0 = never)"
    )

    @field_validator("servers", mode="before")
    @classmethod
    def parse_servers(cls, v: Any) -> Any:
        """Accept "host:port[:weight]" strings, lists of them, or comma-separated strings."""
        if v is None:
            return []
        if isinstance(v, str):
            v = [s for s in v.split(",") if s.strip()]
        if isinstance(v, (list, tuple)):
            return [ServerConfig.parse(s) if isinstance(s, str) else s for s in v]
        return v

    @field_validator("fallback", mode="before")
    @classmethod
    def validate_fallback(cls, v: Any) -> Any:
        if v is True:
            raise ValueError("fallback must be a driver name, None or False")
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def validate_backend_settings(self) -> "DriverConfig":
        """Ensure network backends know where to connect."""
        if self.type == CacheBackend.REDIS and not (self.url or self.servers):
            raise ValueError("redis driver requires 'url' or 'servers'")
        return self

    model_config = ConfigDict(use_enum_values=True, frozen=True)


def _default_drivers() -> dict[str, DriverConfig]:
    return {"memory": DriverConfig(type=CacheBackend.MEMORY)}


class PolycacheConfig(BaseModel):
    """Root configuration for Polycache."""

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_file: str | None = Field(default=None, description="Path of a daily-rotated log file")

    default_driver: str = Field(default="memory", description="Driver used when no name is given")
    # Backup of drivers that do not name their own; False disables fail-over
    fallback: str | Literal[False] = Field(default="files", description="Default backup driver name")
    drivers: dict[str, DriverConfig] = Field(default_factory=_default_drivers)

    @field_validator("fallback", mode="before")
    @classmethod
    def validate_fallback(cls, v: Any) -> Any:
        if v is None or v is True or (isinstance(v, str) and not v.strip()):
            return False
        return v

    @model_validator(mode="after")
    def validate_default_driver(self) -> "PolycacheConfig":
        if self.default_driver not in self.drivers and self.default_driver not in {b.value for b in CacheBackend}:
            raise ValueError(f"default_driver '{self.default_driver}' is not a configured driver")
        return self

    def driver_config(self, name: str) -> DriverConfig | None:
        """Configuration of a named driver; bare backend names get defaults."""
        if name in self.drivers:
            return self.drivers[name]
        if name in {b.value for b in CacheBackend}:
            return DriverConfig(type=CacheBackend(name))
        return None

    def backup_for(self, name: str, driver: DriverConfig) -> str | None:
        """Name of the backup driver of ``name``, or None if fail-over is disabled."""
        if driver.fallback is False:
            return None
        backup = driver.fallback or self.fallback
        if not backup or backup == name:
            return None
        return backup

    model_config = ConfigDict(use_enum_values=True, validate_assignment=True)
