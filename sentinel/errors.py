"""
Error hierarchy for the alerting and anomaly layer.

Every error kind carries optional correlation context (rule id, channel id,
alert id) so callers can log it with structured fields without parsing
messages.

Errors:
    SentinelError: Base class for all errors raised by this package.
    ConfigurationError: Malformed rule, condition, or channel configuration.
    TransportError: A notification channel send failed.
    PersistenceError: A store read or write failed.
    ModelError: Training data was insufficient or degenerate.
"""

from typing import Any, Dict, Optional


class SentinelError(Exception):
    """
    Base exception for all sentinel errors.

    Attributes:
        message: Human-readable error message.
        context: Correlating identifiers (rule_id, channel_id, alert_id).
        cause: Original exception that caused the error, if any.
    """

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        **context: Any,
    ) -> None:
        self.message = message
        self.cause = cause
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}
        super().__init__(message)

    def log_fields(self) -> Dict[str, Any]:
        """
        Fields suitable for passing to a structlog call.

        Returns:
            Dict[str, Any]: Error message plus correlation context.
        """
        fields: Dict[str, Any] = {"error": self.message, "error_kind": type(self).__name__}
        fields.update(self.context)
        return fields


class ConfigurationError(SentinelError):
    """Raised when a rule, condition or channel definition is malformed."""


class TransportError(SentinelError):
    """Raised when a notification transport fails to deliver a message."""


class PersistenceError(SentinelError):
    """Raised when a store operation fails."""


class ModelError(SentinelError):
    """Raised when a training cycle cannot produce a usable model."""
