"""Custom exception classes for the consultant package."""

from __future__ import annotations

from typing import Any


class ConsultantError(Exception):
    """Base consultant exception.

    All custom exceptions should inherit from this class.

    Attributes:
        detail: Human-readable error message.
        type: Error type identifier.
        extra: Additional context-specific information about the error.

    Example:
        raise ConsultantError(
            detail="Consul returned an unexpected payload",
            type="unexpected-payload",
            extra={"prefix": "config/oauth/"},
        )
    """

    def __init__(
        self,
        detail: str,
        type: str = "consultant-error",
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Initialize consultant exception.

        Args:
            detail: Human-readable error message.
            type: Error type identifier.
            extra: Additional context about the error.
        """
        self.detail = detail
        self.type = type
        self.extra = extra or {}
        super().__init__(detail)


class ConsultantConfigurationError(ConsultantError):
    """Raised by the builder when the agent cannot be configured.

    Example:
        raise ConsultantConfigurationError(
            detail="No service name configured",
            extra={"env": "SERVICE_NAME"},
        )
    """

    def __init__(
        self,
        detail: str,
        type: str = "configuration-error",
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(detail=detail, type=type, extra=extra)


class ConfigDecodeError(ConsultantError):
    """Raised when a key/value response from Consul cannot be decoded."""

    def __init__(
        self,
        detail: str,
        type: str = "config-decode-error",
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(detail=detail, type=type, extra=extra)


class ConfigValidationError(ConsultantError):
    """Raised by config validators to reject a candidate configuration.

    Validators may raise any exception to reject a candidate; this type
    exists so that rejections can be told apart from validator bugs in logs.

    Example:
        def validate(config):
            if "database.url" not in config:
                raise ConfigValidationError(
                    detail="database.url is required",
                    extra={"missing": ["database.url"]},
                )
    """

    def __init__(
        self,
        detail: str,
        type: str = "config-validation-error",
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(detail=detail, type=type, extra=extra)
