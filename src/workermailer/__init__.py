"""workermailer - outbound SMTP client with a MIME message builder."""

from workermailer.__version__ import (
    __description__,
    __license__,
    __title__,
    __version__,
    __version_info__,
    get_version,
)
from workermailer.common.exceptions import (
    InvalidContentError,
    InvalidEmailError,
    SmtpAuthError,
    SmtpCommandError,
    SmtpConnectionError,
    SmtpError,
    SmtpRecipientError,
    SmtpTimeoutError,
    WorkerMailerError,
)
from workermailer.common.models import (
    Attachment,
    AuthType,
    Credentials,
    DsnOptions,
    DsnOverride,
    EmailOptions,
    LogLevel,
    User,
    WorkerMailerOptions,
)
from workermailer.smtp.composer import Email, EmailComposer
from workermailer.smtp.sender import WorkerMailer, WorkerMailerHooks

__all__ = [
    "__version__",
    "__version_info__",
    "__title__",
    "__description__",
    "__license__",
    "get_version",
    # Models
    "Attachment",
    "AuthType",
    "Credentials",
    "DsnOptions",
    "DsnOverride",
    "EmailOptions",
    "LogLevel",
    "User",
    "WorkerMailerOptions",
    # Mailer
    "Email",
    "EmailComposer",
    "WorkerMailer",
    "WorkerMailerHooks",
    # Errors
    "WorkerMailerError",
    "InvalidContentError",
    "InvalidEmailError",
    "SmtpError",
    "SmtpConnectionError",
    "SmtpAuthError",
    "SmtpCommandError",
    "SmtpRecipientError",
    "SmtpTimeoutError",
]
