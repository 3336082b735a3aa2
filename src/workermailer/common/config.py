"""
Configuration management for workermailer.

This module loads SMTP transport settings from environment variables and
TOML configuration files, and turns them into WorkerMailerOptions.
"""

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import InvalidConfigError, MissingConfigError
from .models import AuthType, Credentials, LogLevel, WorkerMailerOptions


def _invalid_config(
    error: ValidationError, source: str, env_prefix: str = ""
) -> InvalidConfigError:
    """Describe the first validation failure as an InvalidConfigError."""
    first = error.errors()[0]
    key = ".".join(str(part) for part in first["loc"]) or "smtp"
    if env_prefix:
        key = f"{env_prefix}{key.upper()}"
    return InvalidConfigError(
        config_key=key,
        value=first.get("input"),
        reason=first["msg"],
        details={"source": source},
    )


class MailerSettings(BaseSettings):
    """SMTP transport configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="SMTP_",
        extra="ignore",
    )

    host: str = Field(default="localhost", description="SMTP server host")
    port: int = Field(default=587, ge=1, le=65535, description="SMTP server port")
    secure: bool = Field(
        default=False, description="Use implicit TLS from the first byte"
    )
    start_tls: bool = Field(
        default=True, description="Upgrade with STARTTLS when offered"
    )
    username: Optional[str] = Field(None, description="SMTP username")
    password: Optional[str] = Field(None, description="SMTP password")
    auth_type: str = Field(
        default="plain,login",
        description="Comma-separated mechanisms in order of preference",
    )
    log_level: LogLevel = Field(
        default=LogLevel.INFO, description="Session log level"
    )
    socket_timeout_ms: int = Field(
        default=60_000, gt=0, description="Connect and write timeout"
    )
    response_timeout_ms: int = Field(
        default=30_000, gt=0, description="Server response timeout"
    )
    hostname: str = Field(
        default="localhost", description="Client identity for EHLO/HELO"
    )
    verify_tls: bool = Field(
        default=True, description="Verify the server certificate"
    )

    @field_validator("auth_type")
    @classmethod
    def validate_auth_type(cls, v: str) -> str:
        """Validate the comma-separated mechanism list."""
        names = [name.strip().lower() for name in v.split(",") if name.strip()]
        if not names:
            raise ValueError("At least one authentication mechanism is required")
        valid = [a.value for a in AuthType]
        for name in names:
            if name not in valid:
                raise ValueError(
                    f"Unknown mechanism '{name}', expected one of: "
                    f"{', '.join(valid)}"
                )
        return ",".join(names)

    @property
    def auth_types(self) -> list[AuthType]:
        """Mechanisms as AuthType members."""
        return [AuthType(name) for name in self.auth_type.split(",")]

    @classmethod
    def from_toml(cls, path: str | Path) -> "MailerSettings":
        """
        Load settings from the ``[smtp]`` table of a TOML file.

        Environment variables still fill in keys the file does not set.

        Args:
            path: Path to the TOML configuration file.

        Returns:
            MailerSettings instance with loaded configuration.

        Raises:
            MissingConfigError: If the file does not exist.
            InvalidConfigError: If the file cannot be parsed or validated.
        """
        path = Path(path)
        if not path.exists():
            raise MissingConfigError("config_file", {"path": str(path)})

        try:
            with open(path, "rb") as f:
                config_data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise InvalidConfigError(
                config_key="config_file",
                value=str(path),
                reason=f"Failed to parse TOML: {e}",
            )

        return cls._from_dict(config_data.get("smtp", {}), source=str(path))

    @classmethod
    def _from_dict(
        cls, data: dict[str, Any], source: str = "<dict>"
    ) -> "MailerSettings":
        """
        Create settings from a dictionary.

        Args:
            data: Contents of the ``[smtp]`` table.
            source: Where the data came from, for error messages.

        Returns:
            MailerSettings instance.
        """
        if isinstance(data.get("auth_type"), list):
            data = {**data, "auth_type": ",".join(data["auth_type"])}

        try:
            return cls(**data)
        except ValidationError as e:
            raise _invalid_config(e, source) from e

    @classmethod
    def from_env(cls) -> "MailerSettings":
        """
        Load settings from ``SMTP_*`` environment variables.

        Raises:
            InvalidConfigError: If a variable fails validation; the key names
                the variable.
        """
        try:
            return cls()
        except ValidationError as e:
            raise _invalid_config(e, "environment", env_prefix="SMTP_") from e

    def to_mailer_options(self, hooks: Any = None) -> WorkerMailerOptions:
        """
        Build WorkerMailerOptions from these settings.

        Args:
            hooks: Optional lifecycle hooks for the session.

        Returns:
            WorkerMailerOptions instance.

        Raises:
            MissingConfigError: If only one of username/password is set.
        """
        credentials = None
        if self.username or self.password:
            if not self.username:
                raise MissingConfigError("SMTP_USERNAME")
            if not self.password:
                raise MissingConfigError("SMTP_PASSWORD")
            credentials = Credentials(
                username=self.username, password=self.password
            )

        return WorkerMailerOptions(
            host=self.host,
            port=self.port,
            secure=self.secure,
            start_tls=self.start_tls,
            credentials=credentials,
            auth_type=self.auth_types,
            log_level=self.log_level,
            socket_timeout_ms=self.socket_timeout_ms,
            response_timeout_ms=self.response_timeout_ms,
            hostname=self.hostname,
            verify_tls=self.verify_tls,
            hooks=hooks,
        )


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        extra="ignore",
    )

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v_upper

    @classmethod
    def from_env(cls) -> "LoggingSettings":
        """Load logging settings from ``LOG_*`` environment variables."""
        try:
            return cls()
        except ValidationError as e:
            raise _invalid_config(e, "environment", env_prefix="LOG_") from e


@lru_cache()
def get_settings() -> MailerSettings:
    """
    Get cached mailer settings.

    Settings come from the TOML file named by ``WORKERMAILER_CONFIG_FILE``
    when it exists, otherwise from ``SMTP_*`` environment variables.

    Returns:
        MailerSettings instance.

    Raises:
        InvalidConfigError: If the file or the environment holds an invalid
            value.
    """
    config_file = os.getenv("WORKERMAILER_CONFIG_FILE")

    if config_file and Path(config_file).exists():
        return MailerSettings.from_toml(config_file)
    return MailerSettings.from_env()


def reload_settings() -> MailerSettings:
    """
    Reload settings, clearing the cache.

    Returns:
        Fresh MailerSettings instance.
    """
    get_settings.cache_clear()
    return get_settings()
