"""
Email Composer module for workermailer.

This module resolves structured email options into an Email (every recipient
normalized, default headers filled in) and renders it into the multipart MIME
document that is streamed after the DATA command.
"""

import logging
import mimetypes
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any, Callable, Optional, Union

from ..common.exceptions import InvalidContentError, InvalidEmailError
from ..common.models import (
    Attachment,
    DsnOverride,
    EmailOptions,
    User,
    to_user,
)
from .encoding import (
    apply_dot_stuffing,
    encode,
    encode_header,
    encode_quoted_printable,
    fold_header,
    format_address,
    quote_string,
    validate_emails,
)

logger = logging.getLogger(__name__)

BOUNDARY_RANDOM_BYTES = 28
BASE64_LINE_LENGTH = 72
QP_LINE_LENGTH = 76
END_OF_DATA = "\r\n.\r\n"

# Characters that may not appear unquoted in a MIME boundary parameter.
_BOUNDARY_ILLEGAL = set('<>@,;:\\/[]?=" ')

MIME_TYPES: dict[str, str] = {
    "txt": "text/plain",
    "html": "text/html",
    "csv": "text/csv",
    "pdf": "application/pdf",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "zip": "application/zip",
}

DEFAULT_MIME_TYPE = "application/octet-stream"


def now_utc() -> datetime:
    """Default clock for Date headers."""
    return datetime.now(timezone.utc)


def get_mime_type(filename: str) -> str:
    """
    Infer a MIME type from a file name.

    Args:
        filename: The attachment file name.

    Returns:
        The MIME type from the built-in table, then from ``mimetypes``, then
        ``application/octet-stream``.
    """
    extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if extension in MIME_TYPES:
        return MIME_TYPES[extension]

    guessed, _ = mimetypes.guess_type(filename)
    return guessed or DEFAULT_MIME_TYPE


@dataclass
class Email:
    """A validated email with resolved recipients and headers."""

    sender: User
    to: list[User]
    subject: str = ""
    reply: Optional[User] = None
    cc: list[User] = field(default_factory=list)
    bcc: list[User] = field(default_factory=list)
    text: Optional[str] = None
    html: Optional[str] = None
    attachments: list[Attachment] = field(default_factory=list)
    dsn_override: Optional[DsnOverride] = None
    headers: dict[str, str] = field(default_factory=dict)

    def get_envelope_from(self) -> str:
        """Get the envelope MAIL FROM address."""
        return self.sender.email

    def get_envelope_to(self) -> list[str]:
        """Get the envelope RCPT TO addresses: to, then cc, then bcc."""
        return [user.email for user in (*self.to, *self.cc, *self.bcc)]


class EmailComposer:
    """
    Builds Email objects and renders them as MIME documents.

    The random source and the clock are injected so that boundaries,
    Message-IDs and dates are reproducible in tests.
    """

    def __init__(
        self,
        random_bytes: Callable[[int], bytes] = secrets.token_bytes,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        """
        Initialize the email composer.

        Args:
            random_bytes: Callable returning ``n`` random bytes.
            clock: Callable returning the current aware datetime.
        """
        self._random_bytes = random_bytes
        self._clock = clock

    def build(self, options: Union[EmailOptions, dict[str, Any]]) -> Email:
        """
        Validate email options and resolve them into an Email.

        Args:
            options: EmailOptions, or a dict in the same shape.

        Returns:
            The resolved Email.

        Raises:
            InvalidContentError: If neither text nor html is given, or a
                value rendered into a header contains a line break.
            InvalidEmailError: If there is no recipient or any address is
                invalid; every invalid address is reported.
        """
        if not isinstance(options, EmailOptions):
            options = EmailOptions.model_validate(options)

        if not options.text and not options.html:
            raise InvalidContentError(
                "At least one of text or html must be provided"
            )

        headers = dict(options.headers or {})
        for name, value in headers.items():
            if any(c in name or c in value for c in "\r\n"):
                raise InvalidContentError(
                    f"Header '{name.strip()}' must not contain line breaks",
                    {"header": name},
                )

        email = Email(
            sender=to_user(options.sender),
            to=[to_user(r) for r in options.to],
            subject=options.subject,
            reply=to_user(options.reply) if options.reply else None,
            cc=[to_user(r) for r in options.cc or []],
            bcc=[to_user(r) for r in options.bcc or []],
            text=options.text,
            html=options.html,
            attachments=list(options.attachments or []),
            dsn_override=options.dsn_override,
            headers=headers,
        )
        self._check_line_breaks(email)

        addresses = [email.sender.email]
        addresses.extend(user.email for user in email.to)
        if email.reply:
            addresses.append(email.reply.email)
        addresses.extend(user.email for user in email.cc)
        addresses.extend(user.email for user in email.bcc)

        invalid = validate_emails(addresses)
        if invalid:
            raise InvalidEmailError(
                f"Invalid email address(es): {', '.join(invalid)}", invalid
            )
        if not email.to:
            raise InvalidEmailError("At least one recipient is required", [])

        self._resolve_headers(email)

        logger.debug(
            "Built email from %s to %d recipient(s)",
            email.sender.email,
            len(email.get_envelope_to()),
        )
        return email

    @staticmethod
    def _check_line_breaks(email: Email) -> None:
        """Reject CR or LF in any value rendered into a header line."""
        fields: list[tuple[str, Optional[str]]] = [
            ("subject", email.subject),
            ("from", email.sender.name),
        ]
        if email.reply:
            fields.append(("reply", email.reply.name))
        for kind in ("to", "cc", "bcc"):
            fields.extend((kind, user.name) for user in getattr(email, kind))
        for attachment in email.attachments:
            fields.append(("attachment filename", attachment.filename))
            fields.append(("attachment cid", attachment.cid))
            fields.append(("attachment mime_type", attachment.mime_type))

        for name, value in fields:
            if value and ("\r" in value or "\n" in value):
                raise InvalidContentError(
                    f"Field '{name}' must not contain line breaks",
                    {"field": name},
                )

    def _resolve_headers(self, email: Email) -> None:
        """Fill in default headers the caller did not set."""
        present = {name.lower() for name in email.headers}

        def set_default(name: str, value: str) -> None:
            if name.lower() not in present:
                email.headers[name] = value
                present.add(name.lower())

        set_default("From", format_address(email.sender))
        set_default("To", ", ".join(format_address(u) for u in email.to))
        set_default("Subject", encode_header(email.subject))
        if email.reply:
            set_default("Reply-To", format_address(email.reply))
        if email.cc:
            set_default("Cc", ", ".join(format_address(u) for u in email.cc))
        if email.bcc:
            set_default("Bcc", ", ".join(format_address(u) for u in email.bcc))
        set_default("Date", format_datetime(self._clock()))
        set_default("Message-ID", self.generate_message_id(email.sender))

    def generate_message_id(self, sender: User) -> str:
        """
        Generate a Message-ID from the random source.

        Args:
            sender: The sender, whose domain qualifies the id.

        Returns:
            Message-ID string in format <uuid@domain>.
        """
        domain = sender.email.rsplit("@", 1)[-1] if "@" in sender.email else ""
        unique = uuid.UUID(bytes=self._random_bytes(16), version=4)
        return f"<{unique}@{domain or 'local'}>"

    def generate_boundary(self, prefix: str) -> str:
        """Generate a MIME boundary from 28 random bytes."""
        boundary = prefix + self._random_bytes(BOUNDARY_RANDOM_BYTES).hex()
        return "".join("_" if c in _BOUNDARY_ILLEGAL else c for c in boundary)

    def render(self, email: Email) -> bytes:
        """
        Serialize an Email into the DATA payload.

        The result is dot-stuffed and already ends with the end-of-data
        marker line.

        Args:
            email: An Email produced by :meth:`build`.

        Returns:
            The UTF-8 encoded document.
        """
        mixed = self.generate_boundary("mixed_")
        related = self.generate_boundary("related_")
        alternative = self.generate_boundary("alternative_")

        inline = [a for a in email.attachments if a.cid]
        regular = [a for a in email.attachments if not a.cid]

        lines = ["MIME-Version: 1.0"]
        lines.extend(fold_header(k, v) for k, v in email.headers.items())
        lines.append(f'Content-Type: multipart/mixed; boundary="{mixed}"')

        parts = ["\r\n".join(lines), "\r\n\r\n", f"--{mixed}\r\n"]

        if inline:
            parts.append(
                f'Content-Type: multipart/related; boundary="{related}"'
                "\r\n\r\n"
            )
            parts.append(f"--{related}\r\n")

        parts.append(
            f'Content-Type: multipart/alternative; boundary="{alternative}"'
            "\r\n\r\n"
        )
        for subtype, body in (("plain", email.text), ("html", email.html)):
            if not body:
                continue
            parts.append(f"--{alternative}\r\n")
            parts.append(f'Content-Type: text/{subtype}; charset="UTF-8"\r\n')
            parts.append("Content-Transfer-Encoding: quoted-printable\r\n\r\n")
            parts.append(encode_quoted_printable(body, QP_LINE_LENGTH))
            parts.append("\r\n\r\n")
        parts.append(f"--{alternative}--\r\n")

        for attachment in inline:
            display = encode_header(attachment.filename)
            filename = quote_string(display)
            mime_type = attachment.mime_type or get_mime_type(attachment.filename)
            parts.append(f"--{related}\r\n")
            parts.append(f'Content-Type: {mime_type}; name={filename}\r\n')
            parts.append("Content-Transfer-Encoding: base64\r\n")
            parts.append(f"Content-ID: <{attachment.cid}>\r\n")
            parts.append(
                f'Content-Disposition: inline; filename={filename}\r\n\r\n'
            )
            parts.append(self._wrap_base64(attachment.content))
            parts.append("\r\n")
        if inline:
            parts.append(f"--{related}--\r\n")

        for attachment in regular:
            display = encode_header(attachment.filename)
            filename = quote_string(display)
            mime_type = attachment.mime_type or get_mime_type(attachment.filename)
            parts.append(f"--{mixed}\r\n")
            parts.append(f'Content-Type: {mime_type}; name={filename}\r\n')
            parts.append(f"Content-Description: {display}\r\n")
            parts.append(
                f'Content-Disposition: attachment; filename={filename};\r\n'
            )
            parts.append(
                f'    creation-date="{format_datetime(self._clock())}";\r\n'
            )
            parts.append("Content-Transfer-Encoding: base64\r\n\r\n")
            parts.append(self._wrap_base64(attachment.content))
            parts.append("\r\n")

        parts.append(f"--{mixed}--\r\n")

        document = apply_dot_stuffing("".join(parts)) + END_OF_DATA
        return encode(document)

    @staticmethod
    def _wrap_base64(content: str) -> str:
        """Split base64 text into CRLF-terminated lines of 72 characters."""
        data = "".join(content.split())
        return "".join(
            f"{data[i:i + BASE64_LINE_LENGTH]}\r\n"
            for i in range(0, len(data), BASE64_LINE_LENGTH)
        )
