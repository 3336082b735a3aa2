"""
Custom exceptions for workermailer.

This module defines the error taxonomy shared by the message builder and the
SMTP session, so callers can tell validation failures (raised before any
network I/O) apart from protocol failures (which close the session).
"""

from typing import Any, Optional


class WorkerMailerError(Exception):
    """Base exception for all workermailer errors."""

    code: str = "WORKER_MAILER_ERROR"

    def __init__(self, message: str,
                 details: Optional[dict[str, Any]] = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error details.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


# Configuration Exceptions
class ConfigurationError(WorkerMailerError):
    """Base exception for configuration-related errors."""

    code = "CONFIGURATION_ERROR"


class MissingConfigError(ConfigurationError):
    """Raised when a required configuration value is missing."""

    def __init__(
        self, config_key: str, details: Optional[dict[str, Any]] = None
    ) -> None:
        super().__init__(
            f"Missing required configuration: '{config_key}'", details)
        self.config_key = config_key


class InvalidConfigError(ConfigurationError):
    """Raised when a configuration value is invalid."""

    def __init__(
        self,
        config_key: str,
        value: Any,
        reason: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize invalid config error.

        Args:
            config_key: The configuration key with invalid value.
            value: The invalid value.
            reason: Optional reason why the value is invalid.
            details: Optional dictionary with additional error details.
        """
        message = f"Invalid configuration value for '{config_key}': {value}"
        if reason:
            message += f" - {reason}"
        super().__init__(message, details)
        self.config_key = config_key
        self.value = value
        self.reason = reason


# Email/Message Exceptions
class MessageError(WorkerMailerError):
    """Base exception for message build errors."""


class InvalidContentError(MessageError):
    """Raised when an email has no usable content (neither text nor html)."""

    code = "INVALID_CONTENT"


class InvalidEmailError(MessageError):
    """Raised when one or more addresses fail validation."""

    code = "INVALID_EMAIL"

    def __init__(
        self,
        message: str,
        invalid_emails: Optional[list[str]] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize invalid email error.

        Args:
            message: Human-readable error message.
            invalid_emails: Every offending address, in input order.
            details: Optional dictionary with additional error details.
        """
        super().__init__(message, details)
        self.invalid_emails = list(invalid_emails or [])


# SMTP Exceptions
class SmtpError(WorkerMailerError):
    """Base exception for SMTP-related errors."""

    code = "SMTP_ERROR"


class SmtpConnectionError(SmtpError):
    """Raised when the transport or the server greeting fails."""

    code = "CONNECTION_FAILED"


class SmtpAuthError(SmtpError):
    """Raised when authentication cannot be negotiated or is rejected."""

    code = "AUTH_FAILED"

    def __init__(
        self,
        message: str,
        mechanism: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details)
        self.mechanism = mechanism


class SmtpCommandError(SmtpError):
    """Raised when the server answers a command with an unexpected reply."""

    code = "COMMAND_FAILED"

    def __init__(
        self,
        command: str,
        response: str,
        message: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize command error.

        Args:
            command: The SMTP verb that failed (e.g. ``MAIL FROM``).
            response: The raw server reply text.
            message: Optional override for the human-readable message.
            details: Optional dictionary with additional error details.
        """
        super().__init__(
            message or f"{command} failed: {response.strip()}", details
        )
        self.command = command
        self.response = response


class SmtpRecipientError(SmtpCommandError):
    """Raised when the server rejects a specific recipient."""

    code = "RECIPIENT_REJECTED"

    def __init__(
        self,
        recipient: str,
        response: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            "RCPT TO",
            response,
            f"RCPT TO failed for {recipient}: {response.strip()}",
            details,
        )
        self.recipient = recipient


class SmtpTimeoutError(SmtpError):
    """Raised when an SMTP operation exceeds its deadline."""

    code = "TIMEOUT"
