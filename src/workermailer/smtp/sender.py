"""
SMTP Sender module for workermailer.

This module implements the client side of an SMTP session: greeting, EHLO
capability discovery with HELO fallback, optional STARTTLS upgrade,
authentication, and the MAIL FROM / RCPT TO / DATA transaction. Every step is
strictly request-then-response and bounded by the configured timeouts.
"""

import asyncio
import base64
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from ..common.exceptions import (
    SmtpAuthError,
    SmtpCommandError,
    SmtpConnectionError,
    SmtpRecipientError,
    SmtpTimeoutError,
    WorkerMailerError,
)
from ..common.logger import MailerLogger
from ..common.models import (
    AuthType,
    Credentials,
    DsnNotify,
    DsnRet,
    EmailOptions,
    WorkerMailerOptions,
)
from .composer import Email, EmailComposer
from .encoding import decode, encode, xtext_encode
from .transport import SmtpTransport, open_transport

logger = logging.getLogger(__name__)

T = TypeVar("T")

TransportFactory = Callable[..., Awaitable[SmtpTransport]]


class SessionState(str, Enum):
    """Lifecycle of an SMTP session."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    NEGOTIATED = "negotiated"
    TLS_UPGRADED = "tls_upgraded"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    CLOSED = "closed"


@dataclass
class SmtpReply:
    """A complete, possibly multi-line, server reply."""

    code: int
    lines: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        """The reply lines joined with CRLF."""
        return "\r\n".join(self.lines)

    @property
    def is_positive(self) -> bool:
        """True for 2xx replies."""
        return self.code // 100 == 2

    @property
    def is_intermediate(self) -> bool:
        """True for 3xx replies."""
        return self.code // 100 == 3


@dataclass
class ServerCapabilities:
    """Extensions advertised in the EHLO reply."""

    supports_starttls: bool = False
    supports_dsn: bool = False
    allow_auth: bool = False
    auth_types_supported: list[AuthType] = field(default_factory=list)

    @classmethod
    def parse(cls, lines: list[str]) -> "ServerCapabilities":
        """
        Parse the lines of an EHLO reply.

        Both ``AUTH PLAIN LOGIN`` and the old-style ``AUTH=PLAIN LOGIN`` forms
        are understood. Unknown mechanisms and extensions are ignored.

        Args:
            lines: Reply lines, each still carrying its reply code.

        Returns:
            The discovered capabilities.
        """
        capabilities = cls()
        for line in lines:
            content = line[4:] if line[:3].isdigit() else line
            tokens = content.strip().upper().split()
            if not tokens:
                continue

            keyword = tokens[0]
            if keyword == "AUTH" or keyword.startswith("AUTH="):
                capabilities.allow_auth = True
                names = tokens[1:]
                if keyword.startswith("AUTH="):
                    names = [keyword[len("AUTH="):], *names]
                for name in names:
                    mechanism = AuthType.from_wire(name)
                    if (
                        mechanism is not None
                        and mechanism not in capabilities.auth_types_supported
                    ):
                        capabilities.auth_types_supported.append(mechanism)
            elif keyword == "STARTTLS":
                capabilities.supports_starttls = True
            elif keyword == "DSN":
                capabilities.supports_dsn = True

        return capabilities


class WorkerMailerHooks:
    """
    Observer for session lifecycle events.

    Subclass and override any of the methods; each may be a plain or a
    coroutine function. Exceptions raised by hooks are logged and ignored.
    """

    def on_connect(self) -> Any:
        """Called once the session is ready to send."""

    def on_sent(self, email_options: EmailOptions, response: str) -> Any:
        """Called after the server accepted a message."""

    def on_error(
        self, email_options: Optional[EmailOptions], error: Exception
    ) -> Any:
        """Called when a protocol failure aborts the session."""

    def on_close(self, error: Optional[Exception]) -> Any:
        """Called when the session closes, whatever its state."""


class WorkerMailer:
    """
    A single SMTP session.

    Usage::

        async with WorkerMailer(options) as mailer:
            await mailer.send_one(email_options)

    or the one-shot ``await WorkerMailer.send(options, email_options)``.
    """

    def __init__(
        self,
        options: Union[WorkerMailerOptions, dict[str, Any]],
        transport_factory: TransportFactory = open_transport,
        composer: Optional[EmailComposer] = None,
    ) -> None:
        """
        Initialize the session without connecting.

        Args:
            options: Transport options, or a dict in the same shape.
            transport_factory: Coroutine function opening the byte stream.
            composer: EmailComposer used to build and render messages.
        """
        if not isinstance(options, WorkerMailerOptions):
            options = WorkerMailerOptions.model_validate(options)

        self.options = options
        self.hooks = options.hooks or WorkerMailerHooks()
        self.composer = composer or EmailComposer()
        self.state = SessionState.DISCONNECTED
        self.capabilities = ServerCapabilities()
        self.logger = MailerLogger(
            logger, options.host, options.port, options.log_level
        )

        self._transport_factory = transport_factory
        self._transport: Optional[SmtpTransport] = None
        self._buffer = bytearray()

    @classmethod
    async def connect(
        cls,
        options: Union[WorkerMailerOptions, dict[str, Any]],
        **kwargs: Any,
    ) -> "WorkerMailer":
        """Create a session and run the handshake."""
        mailer = cls(options, **kwargs)
        await mailer.open()
        return mailer

    @classmethod
    async def send(
        cls,
        options: Union[WorkerMailerOptions, dict[str, Any]],
        email_options: Union[EmailOptions, dict[str, Any]],
        **kwargs: Any,
    ) -> str:
        """
        Connect, send one email and close.

        Returns:
            The server's reply to the end of the message.
        """
        mailer = await cls.connect(options, **kwargs)
        try:
            return await mailer.send_one(email_options)
        finally:
            await mailer.close()

    async def __aenter__(self) -> "WorkerMailer":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close(exc if isinstance(exc, Exception) else None)

    @property
    def socket_timeout(self) -> float:
        return self.options.socket_timeout_ms / 1000

    @property
    def response_timeout(self) -> float:
        return self.options.response_timeout_ms / 1000

    async def open(self) -> None:
        """
        Connect and negotiate the session up to READY.

        Raises:
            SmtpConnectionError: On transport, greeting or EHLO/HELO failure.
            SmtpAuthError: If authentication cannot be completed.
            SmtpTimeoutError: If any step exceeds its deadline.
        """
        if self.state != SessionState.DISCONNECTED:
            raise SmtpConnectionError(
                "Session has already been opened",
                {"state": self.state.value},
            )

        self.logger.info("Connecting")
        try:
            self._transport = await self._guard(
                self._transport_factory(
                    self.options.host,
                    self.options.port,
                    secure=self.options.secure,
                    timeout=self.socket_timeout,
                    verify_tls=self.options.verify_tls,
                ),
                self.options.socket_timeout_ms,
                "connecting",
            )

            greeting = await self._read_reply()
            if greeting.code != 220:
                raise SmtpConnectionError(
                    f"Unexpected greeting: {greeting.text}",
                    {"response": greeting.text},
                )
            self.state = SessionState.CONNECTED

            await self._ehlo()
            await self._starttls()
            await self._authenticate()
        except Exception as e:
            await self._fail(None, e)
            raise

        self.state = SessionState.READY
        self.logger.info("Connected")
        await self._emit("on_connect")

    async def send_one(
        self, email_options: Union[EmailOptions, dict[str, Any]]
    ) -> str:
        """
        Send one email over the open session.

        The email is validated before anything is written; a validation error
        leaves the session usable.

        Args:
            email_options: The email to send.

        Returns:
            The server's reply to the end of the message.

        Raises:
            SmtpConnectionError: If the session is not ready.
            InvalidContentError: If the email has no body.
            InvalidEmailError: If any address is invalid.
            SmtpRecipientError: If a recipient is rejected.
            SmtpCommandError: If MAIL FROM, DATA or the message is rejected.
            SmtpTimeoutError: If a step exceeds its deadline.
        """
        if self.state != SessionState.READY:
            raise SmtpConnectionError(
                "Session is not ready to send",
                {"state": self.state.value},
            )

        if not isinstance(email_options, EmailOptions):
            email_options = EmailOptions.model_validate(email_options)
        email = self.composer.build(email_options)

        try:
            response = await self._transact(email)
        except Exception as e:
            await self._fail(email_options, e)
            raise

        self.logger.info(
            "Email sent to %d recipient(s): %s",
            len(email.get_envelope_to()),
            response,
        )
        await self._emit("on_sent", email_options, response)
        return response

    async def close(self, error: Optional[Exception] = None) -> None:
        """
        Close the session: best-effort QUIT, then release the transport.

        Errors while quitting are logged and ignored. QUIT is skipped after a
        timeout; the transport is closed without reuse. The close hook fires
        even when the session never connected.

        Args:
            error: The error that caused the close, if any.
        """
        if self.state == SessionState.CLOSED:
            return

        if self._transport is not None:
            # A timed-out stream may still deliver the stale reply.
            if isinstance(error, SmtpTimeoutError):
                self.logger.debug("Skipping QUIT after timeout")
            else:
                try:
                    await self._command("QUIT")
                except (WorkerMailerError, OSError) as e:
                    self.logger.debug("QUIT failed: %s", e)

            transport, self._transport = self._transport, None
            if transport is not None:
                try:
                    await transport.close()
                except OSError as e:
                    self.logger.debug("Error closing transport: %s", e)

        self._buffer.clear()
        self.state = SessionState.CLOSED
        self.logger.info("Connection closed")
        await self._emit("on_close", error)

    async def _fail(
        self, email_options: Optional[EmailOptions], error: Exception
    ) -> None:
        """Report a protocol failure and close the session."""
        self.logger.error("SMTP session failed: %s", error)
        await self._emit("on_error", email_options, error)
        await self.close(error)

    async def _emit(self, name: str, *args: Any) -> None:
        """Invoke a lifecycle hook, ignoring its failures."""
        handler = getattr(self.hooks, name, None)
        if handler is None:
            return

        try:
            if inspect.iscoroutinefunction(handler):
                await handler(*args)
            else:
                handler(*args)
        except Exception as e:
            self.logger.warning("Hook %s failed: %s", name, e)

    async def _guard(
        self, awaitable: Awaitable[T], timeout_ms: int, action: str
    ) -> T:
        """Await one I/O step under a deadline, mapping transport errors."""
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout_ms / 1000)
        except asyncio.TimeoutError as e:
            raise SmtpTimeoutError(
                f"Timed out {action} after {timeout_ms} ms",
                {"timeout_ms": timeout_ms},
            ) from e
        except OSError as e:
            raise SmtpConnectionError(
                f"Connection error while {action}: {e}",
                {"error": str(e)},
            ) from e

    def _require_transport(self) -> SmtpTransport:
        if self._transport is None:
            raise SmtpConnectionError("Transport is not open")
        return self._transport

    async def _write(self, data: bytes) -> None:
        transport = self._require_transport()
        await self._guard(
            transport.write(data), self.options.socket_timeout_ms, "writing"
        )

    async def _read_reply(self) -> SmtpReply:
        """
        Read one complete reply.

        A line whose fourth character is ``-`` is continued by the next one.
        Bytes past the final line stay buffered for the next reply.

        Raises:
            SmtpConnectionError: If the server closes before the reply ends.
        """
        lines: list[str] = []
        while True:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                transport = self._require_transport()
                chunk = await self._guard(
                    transport.read(),
                    self.options.response_timeout_ms,
                    "waiting for server response",
                )
                if not chunk:
                    raise SmtpConnectionError(
                        "Connection closed by server",
                        {"partial_response": "\r\n".join(lines)},
                    )
                self._buffer.extend(chunk)
                continue

            raw = bytes(self._buffer[:newline + 1])
            del self._buffer[:newline + 1]
            try:
                line = decode(raw).rstrip("\r\n")
            except UnicodeDecodeError:
                line = ""
            lines.append(line)
            self.logger.debug("S: %s", line)

            if raw[3:4] != b"-":
                break

        status = lines[-1][:3]
        code = int(status) if status.isdigit() else 0
        return SmtpReply(code=code, lines=lines)

    async def _command(
        self, line: str, log_line: Optional[str] = None
    ) -> SmtpReply:
        """Send one command line and read its reply."""
        self.logger.debug("C: %s", log_line or line)
        await self._write(encode(f"{line}\r\n"))
        return await self._read_reply()

    async def _ehlo(self) -> None:
        """Run EHLO, falling back to HELO when the server rejects it."""
        hostname = self.options.hostname
        reply = await self._command(f"EHLO {hostname}")

        if reply.code == 421:
            raise SmtpConnectionError(
                f"Server closed the session on EHLO: {reply.text}",
                {"response": reply.text},
            )

        if reply.is_positive:
            self.capabilities = ServerCapabilities.parse(reply.lines)
        else:
            self.logger.info("EHLO rejected, falling back to HELO")
            reply = await self._command(f"HELO {hostname}")
            if not reply.is_positive:
                raise SmtpConnectionError(
                    f"HELO failed: {reply.text}", {"response": reply.text}
                )
            self.capabilities = ServerCapabilities()

        self.state = SessionState.NEGOTIATED
        self.logger.debug("Server capabilities: %s", self.capabilities)

    async def _starttls(self) -> None:
        """Upgrade to TLS when configured, not yet secure and advertised."""
        if (
            self.options.secure
            or not self.options.start_tls
            or not self.capabilities.supports_starttls
        ):
            return

        reply = await self._command("STARTTLS")
        if reply.code != 220:
            raise SmtpConnectionError(
                f"STARTTLS failed: {reply.text}", {"response": reply.text}
            )

        transport, self._transport = self._require_transport(), None
        self._buffer.clear()
        self._transport = await self._guard(
            transport.start_tls(
                self.options.host, verify=self.options.verify_tls
            ),
            self.options.socket_timeout_ms,
            "upgrading to TLS",
        )
        self.state = SessionState.TLS_UPGRADED
        self.capabilities = ServerCapabilities()
        self.logger.info("Connection upgraded to TLS")

        await self._ehlo()

    async def _authenticate(self) -> None:
        """Authenticate with the first preferred mechanism the server offers."""
        if not self.capabilities.allow_auth:
            self.logger.debug("Server does not advertise AUTH")
            return

        credentials = self.options.credentials
        if credentials is None:
            raise SmtpAuthError(
                "Server requires authentication but no credentials were "
                "provided"
            )

        mechanism = next(
            (
                m for m in self.options.auth_type
                if m in self.capabilities.auth_types_supported
            ),
            None,
        )
        if mechanism is None:
            raise SmtpAuthError(
                "No supported authentication mechanism",
                details={
                    "requested": [m.wire_name for m in self.options.auth_type],
                    "offered": [
                        m.wire_name
                        for m in self.capabilities.auth_types_supported
                    ],
                },
            )

        handlers = {
            AuthType.PLAIN: self._auth_plain,
            AuthType.LOGIN: self._auth_login,
            AuthType.CRAM_MD5: self._auth_cram_md5,
        }
        await handlers[mechanism](credentials)

        self.state = SessionState.AUTHENTICATED
        self.logger.info(
            "Authenticated as %s using %s",
            credentials.username,
            mechanism.wire_name,
        )

    async def _auth_plain(self, credentials: Credentials) -> None:
        token = _b64(f"\0{credentials.username}\0{credentials.password}")
        reply = await self._command(
            f"AUTH PLAIN {token}", log_line="AUTH PLAIN ********"
        )
        if not reply.is_positive:
            raise SmtpAuthError(
                f"Authentication failed: {reply.text}",
                mechanism=AuthType.PLAIN.wire_name,
                details={"response": reply.text},
            )

    async def _auth_login(self, credentials: Credentials) -> None:
        mechanism = AuthType.LOGIN.wire_name
        steps = [
            ("AUTH LOGIN", None, 3),
            (_b64(credentials.username), "********", 3),
            (_b64(credentials.password), "********", 2),
        ]
        for line, log_line, expected in steps:
            reply = await self._command(line, log_line=log_line)
            if reply.code // 100 != expected:
                raise SmtpAuthError(
                    f"Authentication failed: {reply.text}",
                    mechanism=mechanism,
                    details={"response": reply.text},
                )

    async def _auth_cram_md5(self, credentials: Credentials) -> None:
        raise SmtpAuthError(
            "CRAM-MD5 authentication is not supported",
            mechanism=AuthType.CRAM_MD5.wire_name,
            details={"reason": "unsupported"},
        )

    def _dsn_preferences(
        self, email: Email
    ) -> tuple[Optional[str], Optional[DsnRet], Optional[DsnNotify]]:
        """Merge the per-message DSN override over the global defaults."""
        defaults = self.options.dsn
        override = email.dsn_override

        envelope_id = override.envelope_id if override else None
        ret = (override.ret if override else None) or (
            defaults.ret if defaults else None
        )
        notify = (override.notify if override else None) or (
            defaults.notify if defaults else None
        )
        return envelope_id, ret, notify

    def _mail_from_params(self, email: Email) -> str:
        if not self.capabilities.supports_dsn:
            return ""

        envelope_id, ret, _ = self._dsn_preferences(email)
        params = []
        if ret and ret.full:
            params.append("RET=FULL")
        elif ret and ret.headers:
            params.append("RET=HDRS")
        if envelope_id:
            params.append(f"ENVID={xtext_encode(envelope_id)}")
        return "".join(f" {p}" for p in params)

    def _rcpt_to_params(self, email: Email) -> str:
        if not self.capabilities.supports_dsn:
            return ""

        _, _, notify = self._dsn_preferences(email)
        if notify is None:
            return ""

        flags = [
            ("SUCCESS", notify.success),
            ("FAILURE", notify.failure),
            ("DELAY", notify.delay),
        ]
        enabled = [name for name, value in flags if value]
        if enabled:
            return f" NOTIFY={','.join(enabled)}"
        if all(value is False for _, value in flags):
            return " NOTIFY=NEVER"
        return ""

    async def _transact(self, email: Email) -> str:
        """Run MAIL FROM, RCPT TO and DATA for a built email."""
        sender = email.get_envelope_from()
        reply = await self._command(
            f"MAIL FROM:<{sender}>{self._mail_from_params(email)}"
        )
        if not reply.is_positive:
            raise SmtpCommandError(
                "MAIL FROM", reply.text, details={"sender": sender}
            )

        rcpt_params = self._rcpt_to_params(email)
        for recipient in email.get_envelope_to():
            reply = await self._command(f"RCPT TO:<{recipient}>{rcpt_params}")
            if not reply.is_positive:
                raise SmtpRecipientError(recipient, reply.text)

        reply = await self._command("DATA")
        if not reply.is_intermediate:
            raise SmtpCommandError("DATA", reply.text)

        document = self.composer.render(email)
        self.logger.debug("C: <message data, %d bytes>", len(document))
        await self._write(document)

        reply = await self._read_reply()
        if not reply.is_positive:
            raise SmtpCommandError(
                "DATA",
                reply.text,
                f"Message rejected: {reply.text.strip()}",
            )
        return reply.text


def _b64(value: str) -> str:
    return base64.b64encode(encode(value)).decode("ascii")
