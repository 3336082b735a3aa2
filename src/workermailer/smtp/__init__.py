"""
SMTP module for workermailer.

This module provides the MIME message builder, the SMTP client session and
the queue adapter for outbound delivery.
"""

from .composer import Email, EmailComposer, get_mime_type
from .queue import (
    EmailQueue,
    QueueEmailMessage,
    QueueMessage,
    QueueProcessResult,
    enqueue_email,
    enqueue_emails,
    process_batch,
)
from .sender import (
    ServerCapabilities,
    SessionState,
    SmtpReply,
    WorkerMailer,
    WorkerMailerHooks,
)
from .transport import SmtpTransport, StreamTransport, open_transport

__all__ = [
    # Composer
    "Email",
    "EmailComposer",
    "get_mime_type",
    # Session
    "ServerCapabilities",
    "SessionState",
    "SmtpReply",
    "WorkerMailer",
    "WorkerMailerHooks",
    # Transport
    "SmtpTransport",
    "StreamTransport",
    "open_transport",
    # Queue
    "EmailQueue",
    "QueueEmailMessage",
    "QueueMessage",
    "QueueProcessResult",
    "enqueue_email",
    "enqueue_emails",
    "process_batch",
]
