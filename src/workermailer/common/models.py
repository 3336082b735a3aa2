"""
Pydantic models for workermailer.

This module defines the structured input of the mailer: addresses,
attachments, delivery status notification preferences, email options and
transport options. Every model here serializes to JSON so it can travel on a
queue.
"""

from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AuthType(str, Enum):
    """SMTP authentication mechanisms known to the client."""

    PLAIN = "plain"
    LOGIN = "login"
    CRAM_MD5 = "cram-md5"

    @property
    def wire_name(self) -> str:
        """Mechanism name as advertised and sent on the wire."""
        return self.value.upper()

    @classmethod
    def from_wire(cls, name: str) -> Optional["AuthType"]:
        """Map an advertised mechanism name to a member, if known."""
        try:
            return cls(name.strip().lower())
        except ValueError:
            return None


class LogLevel(str, Enum):
    """Session log verbosity."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    NONE = "none"


class User(BaseModel):
    """Single sender or recipient with an optional display name."""

    email: str = Field(..., description="Email address")
    name: Optional[str] = Field(None, description="Display name")


Recipient = Union[str, User]


def to_user(recipient: Recipient) -> User:
    """Normalize a bare address or a User to a User."""
    if isinstance(recipient, User):
        return recipient
    return User(email=recipient)


class Attachment(BaseModel):
    """Attachment whose content is already base64 encoded."""

    filename: str = Field(..., description="File name shown to the recipient")
    content: str = Field(..., description="Base64 encoded content")
    mime_type: Optional[str] = Field(
        None, description="MIME type, inferred from the extension when absent"
    )
    cid: Optional[str] = Field(
        None, description="Content-ID; marks the attachment as inline"
    )
    inline: Optional[bool] = Field(
        None, description="Informational only, cid decides placement"
    )


class DsnRet(BaseModel):
    """How much of the message a DSN should return."""

    headers: Optional[bool] = None
    full: Optional[bool] = None


class DsnNotify(BaseModel):
    """Which delivery events should trigger a DSN."""

    delay: Optional[bool] = None
    failure: Optional[bool] = None
    success: Optional[bool] = None


class DsnOverride(BaseModel):
    """Per-message DSN preferences."""

    envelope_id: Optional[str] = None
    ret: Optional[DsnRet] = None
    notify: Optional[DsnNotify] = None


class DsnOptions(BaseModel):
    """Global DSN defaults for a mailer."""

    ret: Optional[DsnRet] = None
    notify: Optional[DsnNotify] = None


class EmailOptions(BaseModel):
    """Structured input for a single email."""

    model_config = ConfigDict(populate_by_name=True)

    sender: Recipient = Field(..., alias="from", description="Sender")
    to: list[Recipient] = Field(
        default_factory=list, description="Primary recipients"
    )
    reply: Optional[Recipient] = Field(None, description="Reply-To address")
    cc: Optional[list[Recipient]] = None
    bcc: Optional[list[Recipient]] = None
    subject: str = ""
    text: Optional[str] = None
    html: Optional[str] = None
    headers: Optional[dict[str, str]] = None
    attachments: Optional[list[Attachment]] = None
    dsn_override: Optional[DsnOverride] = None

    @field_validator("to", "cc", "bcc", mode="before")
    @classmethod
    def ensure_list(cls, v: Any) -> Any:
        """Accept a single recipient where a list is expected."""
        if isinstance(v, (str, dict, User)):
            return [v]
        return v


class Credentials(BaseModel):
    """SMTP credentials."""

    username: str
    password: str


class WorkerMailerOptions(BaseModel):
    """Transport configuration for a mailer session."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    host: str = Field(..., description="SMTP server host")
    port: int = Field(default=587, ge=1, le=65535, description="SMTP port")
    secure: bool = Field(
        default=False, description="Connection is TLS from the first byte"
    )
    start_tls: bool = Field(
        default=True, description="Upgrade with STARTTLS when offered"
    )
    credentials: Optional[Credentials] = None
    auth_type: list[AuthType] = Field(
        default_factory=lambda: [AuthType.PLAIN, AuthType.LOGIN],
        description="Acceptable mechanisms in order of preference",
    )
    log_level: LogLevel = LogLevel.INFO
    dsn: Optional[DsnOptions] = None
    socket_timeout_ms: int = Field(default=60_000, gt=0)
    response_timeout_ms: int = Field(default=30_000, gt=0)
    hostname: str = Field(
        default="localhost", description="Identity sent with EHLO/HELO"
    )
    verify_tls: bool = Field(
        default=True, description="Verify the server certificate"
    )
    hooks: Optional[Any] = Field(default=None, exclude=True)

    @field_validator("auth_type", mode="before")
    @classmethod
    def parse_auth_type(cls, v: Any) -> Any:
        """Accept a single mechanism or a comma-separated string."""
        if isinstance(v, (str, AuthType)):
            v = v.split(",") if isinstance(v, str) else [v]
        if isinstance(v, list):
            return [
                item.strip().lower() if isinstance(item, str) else item
                for item in v
                if not (isinstance(item, str) and not item.strip())
            ]
        return v
