"""Configuration for the M2M API client.

Uses Pydantic v2 for validation. Credentials are read once at startup;
a missing or invalid value is a ConfigurationError, never a runtime error.
"""

from __future__ import annotations

import os
from typing import Annotated, Any, Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    SecretStr,
    ValidationError,
    field_validator,
)

from .errors import ConfigurationError, ErrorCode

# Environment variable -> config field
REQUIRED_ENV_VARS: dict[str, str] = {
    "AUTH_URL": "auth_url",
    "EXTERNAL_SERVICE_URL": "service_url",
    "CLIENT_ID": "client_id",
    "CLIENT_SECRET": "client_secret",
    "GRANT_TYPE": "grant_type",
}

# Credentials are passed through byte for byte.
UNSTRIPPED_FIELDS = frozenset({"client_secret"})


class CacheConfig(BaseModel):
    """Token cache configuration."""

    model_config = ConfigDict(frozen=True)

    token_buffer: Annotated[int, Field(ge=0)] = 60  # 1 minute before expiry


class TelemetryConfig(BaseModel):
    """Logging and tracing configuration."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    service_name: str = "m2m-api-client"
    trace_requests: bool = True
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            msg = f"Unsupported log level: {v}"
            raise ValueError(msg)
        return level


class ClientConfig(BaseModel):
    """Credentials and settings for the authenticated API client."""

    model_config = ConfigDict(frozen=True, validate_default=True)

    # Required
    auth_url: HttpUrl
    service_url: HttpUrl
    client_id: str = Field(..., min_length=1)
    client_secret: SecretStr
    grant_type: str = Field(..., min_length=1)

    # HTTP settings
    timeout: Annotated[float, Field(gt=0, le=300)] = 30.0
    connect_timeout: Annotated[float, Field(gt=0, le=60)] = 10.0
    default_headers: dict[str, str] = Field(default_factory=dict)

    # Sub-configurations
    cache: CacheConfig = Field(default_factory=CacheConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)

    @field_validator("client_secret")
    @classmethod
    def validate_client_secret(cls, v: SecretStr) -> SecretStr:
        """Reject empty secrets."""
        if not v.get_secret_value():
            msg = "client_secret must not be empty"
            raise ValueError(msg)
        return v

    @property
    def auth_url_str(self) -> str:
        """Get token endpoint URL as string."""
        return str(self.auth_url)

    @property
    def service_url_str(self) -> str:
        """Get service base URL as string without trailing slash."""
        return str(self.service_url).rstrip("/")

    def with_overrides(self, **kwargs: Any) -> Self:
        """Create new config with overridden values."""
        data = self.model_dump(mode="json")
        data["client_secret"] = self.client_secret.get_secret_value()
        data.update(kwargs)
        return self.__class__(**data)

    @classmethod
    def from_env(cls, prefix: str = "") -> Self:
        """Create config from environment variables.

        Args:
            prefix: Optional prefix prepended to every variable name.

        Returns:
            Validated configuration.

        Raises:
            ConfigurationError: If a required variable is missing or any
                value fails validation.
        """

        def get_env(key: str, default: str | None = None, *, strip: bool = True) -> str | None:
            value = os.environ.get(f"{prefix}{key}", "")
            if not value.strip():
                return default
            return value.strip() if strip else value

        values: dict[str, Any] = {}
        for env_name, field in REQUIRED_ENV_VARS.items():
            value = get_env(env_name, strip=field not in UNSTRIPPED_FIELDS)
            if value is None:
                raise ConfigurationError(
                    f"{prefix}{env_name} environment variable is required",
                    field=field,
                    code=ErrorCode.MISSING_CONFIG,
                )
            values[field] = value

        timeout = get_env("REQUEST_TIMEOUT")
        if timeout is not None:
            values["timeout"] = timeout

        token_buffer = get_env("TOKEN_BUFFER_SECONDS")
        if token_buffer is not None:
            values["cache"] = {"token_buffer": token_buffer}

        log_level = get_env("LOG_LEVEL")
        if log_level is not None:
            values["telemetry"] = {"log_level": log_level}

        try:
            return cls(**values)
        except ValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error["loc"])
            raise ConfigurationError(
                f"Invalid configuration for {field}: {error['msg']}",
                field=field,
            ) from e
