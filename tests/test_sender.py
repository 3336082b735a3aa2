"""Tests for the SMTP session state machine."""

import base64

import pytest

from workermailer.common.exceptions import (
    InvalidContentError,
    SmtpAuthError,
    SmtpCommandError,
    SmtpConnectionError,
    SmtpRecipientError,
    SmtpTimeoutError,
)
from workermailer.common.models import (
    AuthType,
    Credentials,
    DsnNotify,
    DsnOptions,
    DsnRet,
)
from workermailer.smtp.sender import (
    ServerCapabilities,
    SessionState,
    WorkerMailer,
    WorkerMailerHooks,
)

from conftest import EHLO_PLAIN, GREETING, HANG

CREDENTIALS = Credentials(username="user", password="secret")
TRANSACTION = [
    "250 2.1.0 Sender OK\r\n",
    "250 2.1.5 Recipient OK\r\n",
    "354 End data with <CR><LF>.<CR><LF>\r\n",
    "250 2.0.0 Ok: queued as ABC123\r\n",
]


def b64(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


class RecordingHooks(WorkerMailerHooks):
    """Hooks recording every event; on_connect is a coroutine."""

    def __init__(self):
        self.events = []

    async def on_connect(self):
        self.events.append(("connect",))

    def on_sent(self, email_options, response):
        self.events.append(("sent", email_options.subject, response))

    def on_error(self, email_options, error):
        self.events.append(("error", email_options, error))

    def on_close(self, error):
        self.events.append(("close", error))


class TestServerCapabilities:
    """Tests for EHLO reply parsing."""

    def test_parse_extensions(self):
        capabilities = ServerCapabilities.parse(
            ["250-AUTH PLAIN LOGIN", "250-STARTTLS", "250 DSN"]
        )

        assert capabilities.allow_auth
        assert capabilities.auth_types_supported == [AuthType.PLAIN, AuthType.LOGIN]
        assert capabilities.supports_starttls
        assert capabilities.supports_dsn

    def test_parse_old_style_auth(self):
        capabilities = ServerCapabilities.parse(
            ["250-mail.example.com", "250 AUTH=LOGIN CRAM-MD5 XOAUTH2"]
        )

        assert capabilities.allow_auth
        assert capabilities.auth_types_supported == [
            AuthType.LOGIN,
            AuthType.CRAM_MD5,
        ]

    def test_unknown_lines_ignored(self):
        capabilities = ServerCapabilities.parse(
            ["250-mail.example.com Hello", "250-PIPELINING", "250 8BITMIME"]
        )

        assert capabilities == ServerCapabilities()


class TestConnect:
    """Tests for greeting, EHLO and HELO."""

    @pytest.mark.asyncio
    async def test_connect_without_extensions(self, make_mailer, transport):
        transport.reply(GREETING, EHLO_PLAIN)
        mailer = make_mailer()

        await mailer.open()

        assert mailer.state == SessionState.READY
        assert transport.commands == ["EHLO localhost"]
        assert transport.opened_with[:2] == ("smtp.example.com", 587)
        assert transport.opened_with[2]["secure"] is False

    @pytest.mark.asyncio
    async def test_ehlo_identity(self, make_mailer, transport):
        transport.reply(GREETING, EHLO_PLAIN)
        mailer = make_mailer(hostname="client.example.org")

        await mailer.open()

        assert transport.commands == ["EHLO client.example.org"]

    @pytest.mark.asyncio
    async def test_capabilities_discovered(self, make_mailer, transport):
        transport.reply(
            GREETING,
            "250-smtp.example.com\r\n250-AUTH PLAIN LOGIN\r\n"
            "250-STARTTLS\r\n250 DSN\r\n",
            "235 2.7.0 Authentication successful\r\n",
        )
        mailer = make_mailer(start_tls=False, credentials=CREDENTIALS)

        await mailer.open()

        assert mailer.capabilities.allow_auth
        assert mailer.capabilities.supports_starttls
        assert mailer.capabilities.supports_dsn
        assert mailer.capabilities.auth_types_supported == [
            AuthType.PLAIN,
            AuthType.LOGIN,
        ]

    @pytest.mark.asyncio
    async def test_reply_split_across_reads(self, make_mailer, transport):
        transport.reply("220-smtp.exa", "mple.com\r\n220 ready\r\n", EHLO_PLAIN)
        mailer = make_mailer()

        await mailer.open()

        assert mailer.state == SessionState.READY

    @pytest.mark.asyncio
    async def test_undecodable_line_tolerated(self, make_mailer, transport):
        transport.reply(b"220-\xff\xfe banner\r\n220 ready\r\n", EHLO_PLAIN)
        mailer = make_mailer()

        await mailer.open()

        assert mailer.state == SessionState.READY

    @pytest.mark.asyncio
    async def test_bad_greeting(self, make_mailer, transport):
        transport.reply("554 No SMTP service here\r\n")
        mailer = make_mailer()

        with pytest.raises(SmtpConnectionError):
            await mailer.open()

        assert mailer.state == SessionState.CLOSED
        assert transport.closed

    @pytest.mark.asyncio
    async def test_helo_fallback(self, make_mailer, transport):
        transport.reply(
            GREETING,
            "502 5.5.2 Command not recognized\r\n",
            "250 smtp.example.com\r\n",
        )
        mailer = make_mailer(credentials=CREDENTIALS)

        await mailer.open()

        assert transport.commands == ["EHLO localhost", "HELO localhost"]
        assert mailer.capabilities == ServerCapabilities()
        assert mailer.state == SessionState.READY

    @pytest.mark.asyncio
    async def test_helo_rejected(self, make_mailer, transport):
        transport.reply(GREETING, "500 no\r\n", "501 still no\r\n")
        mailer = make_mailer()

        with pytest.raises(SmtpConnectionError):
            await mailer.open()

    @pytest.mark.asyncio
    async def test_ehlo_421_is_fatal(self, make_mailer, transport):
        transport.reply(GREETING, "421 4.3.2 Service not available\r\n")
        mailer = make_mailer()

        with pytest.raises(SmtpConnectionError) as exc_info:
            await mailer.open()

        assert "421" in str(exc_info.value)
        assert "HELO localhost" not in transport.commands
        assert mailer.state == SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_eof_before_reply_complete(self, make_mailer, transport):
        transport.reply(GREETING, "250-smtp.example.com\r\n250-SIZE")
        mailer = make_mailer()

        with pytest.raises(SmtpConnectionError):
            await mailer.open()

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        async def refuse(host, port, **kwargs):
            raise ConnectionRefusedError("connection refused")

        mailer = WorkerMailer({"host": "smtp.example.com"}, transport_factory=refuse)

        with pytest.raises(SmtpConnectionError):
            await mailer.open()

        assert mailer.state == SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_response_timeout(self, make_mailer, transport):
        transport.reply(GREETING, HANG)
        mailer = make_mailer(response_timeout_ms=50)

        with pytest.raises(SmtpTimeoutError):
            await mailer.open()

        assert mailer.state == SessionState.CLOSED
        assert "QUIT" not in transport.commands
        assert transport.closed

    @pytest.mark.asyncio
    async def test_no_quit_after_send_timeout(
        self, make_mailer, transport, email_options
    ):
        transport.reply(
            GREETING,
            EHLO_PLAIN,
            "250 OK\r\n",
            "250 OK\r\n",
            "354 go ahead\r\n",
            HANG,
            "250 2.0.0 late reply\r\n",
        )
        mailer = make_mailer(response_timeout_ms=50)
        await mailer.open()

        with pytest.raises(SmtpTimeoutError):
            await mailer.send_one(email_options)

        assert mailer.state == SessionState.CLOSED
        assert transport.commands[-1] == "DATA"
        assert transport.closed

    @pytest.mark.asyncio
    async def test_open_twice_rejected(self, make_mailer, transport):
        transport.reply(GREETING, EHLO_PLAIN)
        mailer = make_mailer()
        await mailer.open()

        with pytest.raises(SmtpConnectionError):
            await mailer.open()


class TestStartTls:
    """Tests for the STARTTLS upgrade."""

    @pytest.mark.asyncio
    async def test_upgrade_and_rediscover(self, make_mailer, transport):
        transport.reply(
            GREETING,
            "250-smtp.example.com\r\n250 STARTTLS\r\n",
            "220 2.0.0 Ready to start TLS\r\n",
            "250-smtp.example.com\r\n250 AUTH PLAIN\r\n",
            "235 2.7.0 Authentication successful\r\n",
        )
        mailer = make_mailer(credentials=CREDENTIALS, verify_tls=False)

        await mailer.open()

        assert transport.upgraded_to is not None
        assert mailer._transport is transport.upgraded_to
        assert mailer._transport.tls
        assert transport.tls_hostname == "smtp.example.com"
        assert transport.tls_verify is False
        assert transport.commands == [
            "EHLO localhost",
            "STARTTLS",
            "EHLO localhost",
            f"AUTH PLAIN {b64(chr(0) + 'user' + chr(0) + 'secret')}",
        ]
        assert not mailer.capabilities.supports_starttls
        assert mailer.state == SessionState.READY

    @pytest.mark.asyncio
    async def test_not_attempted_when_secure(self, make_mailer, transport):
        transport.reply(GREETING, "250-smtp.example.com\r\n250 STARTTLS\r\n")
        mailer = make_mailer(secure=True, port=465)

        await mailer.open()

        assert "STARTTLS" not in transport.commands
        assert transport.opened_with[2]["secure"] is True

    @pytest.mark.asyncio
    async def test_not_attempted_when_disabled(self, make_mailer, transport):
        transport.reply(GREETING, "250-smtp.example.com\r\n250 STARTTLS\r\n")
        mailer = make_mailer(start_tls=False)

        await mailer.open()

        assert transport.commands == ["EHLO localhost"]
        assert transport.upgraded_to is None

    @pytest.mark.asyncio
    async def test_rejected_starttls(self, make_mailer, transport):
        transport.reply(
            GREETING,
            "250-smtp.example.com\r\n250 STARTTLS\r\n",
            "454 4.7.0 TLS not available\r\n",
        )
        mailer = make_mailer()

        with pytest.raises(SmtpConnectionError):
            await mailer.open()

        assert transport.upgraded_to is None


class TestAuthentication:
    """Tests for mechanism negotiation."""

    @pytest.mark.asyncio
    async def test_login(self, make_mailer, transport):
        transport.reply(
            GREETING,
            "250-smtp.example.com\r\n250 AUTH LOGIN\r\n",
            "334 VXNlcm5hbWU6\r\n",
            "334 UGFzc3dvcmQ6\r\n",
            "235 2.7.0 Authentication successful\r\n",
        )
        mailer = make_mailer(credentials=CREDENTIALS)

        await mailer.open()

        assert transport.commands[1:] == ["AUTH LOGIN", b64("user"), b64("secret")]
        assert mailer.state == SessionState.READY

    @pytest.mark.asyncio
    async def test_login_rejected(self, make_mailer, transport):
        transport.reply(
            GREETING,
            "250 AUTH LOGIN\r\n",
            "334 VXNlcm5hbWU6\r\n",
            "334 UGFzc3dvcmQ6\r\n",
            "535 5.7.8 Authentication credentials invalid\r\n",
        )
        mailer = make_mailer(credentials=CREDENTIALS)

        with pytest.raises(SmtpAuthError) as exc_info:
            await mailer.open()

        assert exc_info.value.mechanism == "LOGIN"
        assert "535" in exc_info.value.details["response"]
        assert mailer.state == SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_preference_order(self, make_mailer, transport):
        transport.reply(
            GREETING,
            "250 AUTH PLAIN LOGIN\r\n",
            "334 VXNlcm5hbWU6\r\n",
            "334 UGFzc3dvcmQ6\r\n",
            "235 ok\r\n",
        )
        mailer = make_mailer(credentials=CREDENTIALS, auth_type="login,plain")

        await mailer.open()

        assert transport.commands[1] == "AUTH LOGIN"

    @pytest.mark.asyncio
    async def test_missing_credentials(self, make_mailer, transport):
        transport.reply(GREETING, "250 AUTH PLAIN LOGIN\r\n")
        mailer = make_mailer()

        with pytest.raises(SmtpAuthError):
            await mailer.open()

    @pytest.mark.asyncio
    async def test_no_common_mechanism(self, make_mailer, transport):
        transport.reply(GREETING, "250 AUTH CRAM-MD5\r\n")
        mailer = make_mailer(credentials=CREDENTIALS)

        with pytest.raises(SmtpAuthError) as exc_info:
            await mailer.open()

        assert exc_info.value.details["offered"] == ["CRAM-MD5"]

    @pytest.mark.asyncio
    async def test_cram_md5_unsupported(self, make_mailer, transport):
        transport.reply(GREETING, "250 AUTH CRAM-MD5 PLAIN\r\n")
        mailer = make_mailer(credentials=CREDENTIALS, auth_type=["cram-md5"])

        with pytest.raises(SmtpAuthError) as exc_info:
            await mailer.open()

        assert exc_info.value.mechanism == "CRAM-MD5"
        assert exc_info.value.details["reason"] == "unsupported"
        assert not any(c.startswith("AUTH") for c in transport.commands)

    @pytest.mark.asyncio
    async def test_skipped_when_not_advertised(self, make_mailer, transport):
        transport.reply(GREETING, EHLO_PLAIN)
        mailer = make_mailer(credentials=CREDENTIALS)

        await mailer.open()

        assert transport.commands == ["EHLO localhost"]
        assert mailer.state == SessionState.READY


class TestSendOne:
    """Tests for the mail transaction."""

    @pytest.mark.asyncio
    async def test_send_returns_final_reply(
        self, make_mailer, transport, email_options
    ):
        transport.reply(GREETING, EHLO_PLAIN, *TRANSACTION)
        mailer = make_mailer()
        await mailer.open()

        response = await mailer.send_one(email_options)

        assert response == "250 2.0.0 Ok: queued as ABC123"
        assert transport.commands[1:] == [
            "MAIL FROM:<sender@example.com>",
            "RCPT TO:<to@example.com>",
            "DATA",
        ]
        document = transport.written[-1]
        assert document.startswith(b"MIME-Version: 1.0\r\n")
        assert document.endswith(b"\r\n.\r\n")
        assert mailer.state == SessionState.READY

    @pytest.mark.asyncio
    async def test_replies_buffered_in_one_chunk(
        self, make_mailer, transport, email_options
    ):
        transport.reply(GREETING, EHLO_PLAIN, "".join(TRANSACTION))
        mailer = make_mailer()
        await mailer.open()

        response = await mailer.send_one(email_options)

        assert response == "250 2.0.0 Ok: queued as ABC123"

    @pytest.mark.asyncio
    async def test_recipient_order(self, make_mailer, transport, email_options):
        email_options.update(
            {
                "to": ["a@example.com", "b@example.com"],
                "cc": ["c@example.com"],
                "bcc": ["d@example.com"],
            }
        )
        transport.reply(
            GREETING,
            EHLO_PLAIN,
            "250 OK\r\n",
            *["250 OK\r\n"] * 4,
            "354 go ahead\r\n",
            "250 OK\r\n",
        )
        mailer = make_mailer()
        await mailer.open()

        await mailer.send_one(email_options)

        assert [c for c in transport.commands if c.startswith("RCPT")] == [
            "RCPT TO:<a@example.com>",
            "RCPT TO:<b@example.com>",
            "RCPT TO:<c@example.com>",
            "RCPT TO:<d@example.com>",
        ]

    @pytest.mark.asyncio
    async def test_rejected_recipient(self, make_mailer, transport, email_options):
        email_options["to"] = ["a@example.com", "b@example.com", "c@example.com"]
        transport.reply(
            GREETING,
            EHLO_PLAIN,
            "250 OK\r\n",
            "250 OK\r\n",
            "550 5.1.1 No such user here\r\n",
        )
        hooks = RecordingHooks()
        mailer = make_mailer(hooks=hooks)
        await mailer.open()

        with pytest.raises(SmtpRecipientError) as exc_info:
            await mailer.send_one(email_options)

        assert exc_info.value.recipient == "b@example.com"
        assert "550" in exc_info.value.response
        assert "b@example.com" in str(exc_info.value)
        assert "DATA" not in transport.commands
        assert "RCPT TO:<c@example.com>" not in transport.commands
        assert transport.commands[-1] == "QUIT"
        assert mailer.state == SessionState.CLOSED
        assert hooks.events[-2][0] == "error"
        assert hooks.events[-2][1].to[1] == "b@example.com"
        assert hooks.events[-1] == ("close", exc_info.value)

    @pytest.mark.asyncio
    async def test_mail_from_rejected(self, make_mailer, transport, email_options):
        transport.reply(GREETING, EHLO_PLAIN, "553 5.7.1 Sender rejected\r\n")
        mailer = make_mailer()
        await mailer.open()

        with pytest.raises(SmtpCommandError) as exc_info:
            await mailer.send_one(email_options)

        assert exc_info.value.command == "MAIL FROM"
        assert exc_info.value.response == "553 5.7.1 Sender rejected"

    @pytest.mark.asyncio
    async def test_data_requires_intermediate_reply(
        self, make_mailer, transport, email_options
    ):
        transport.reply(
            GREETING, EHLO_PLAIN, "250 OK\r\n", "250 OK\r\n", "250 OK\r\n"
        )
        mailer = make_mailer()
        await mailer.open()

        with pytest.raises(SmtpCommandError) as exc_info:
            await mailer.send_one(email_options)

        assert exc_info.value.command == "DATA"
        assert not any(w.startswith(b"MIME-Version") for w in transport.written)

    @pytest.mark.asyncio
    async def test_message_rejected(self, make_mailer, transport, email_options):
        transport.reply(
            GREETING,
            EHLO_PLAIN,
            "250 OK\r\n",
            "250 OK\r\n",
            "354 go ahead\r\n",
            "554 5.7.1 Message rejected as spam\r\n",
        )
        mailer = make_mailer()
        await mailer.open()

        with pytest.raises(SmtpCommandError) as exc_info:
            await mailer.send_one(email_options)

        assert "spam" in str(exc_info.value)
        assert mailer.state == SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_validation_error_keeps_session(
        self, make_mailer, transport, email_options
    ):
        transport.reply(GREETING, EHLO_PLAIN, *TRANSACTION)
        mailer = make_mailer()
        await mailer.open()
        written = len(transport.written)

        with pytest.raises(InvalidContentError):
            await mailer.send_one({**email_options, "text": None})

        assert len(transport.written) == written
        assert mailer.state == SessionState.READY
        assert await mailer.send_one(email_options)

    @pytest.mark.asyncio
    async def test_requires_ready_session(self, make_mailer, email_options):
        mailer = make_mailer()

        with pytest.raises(SmtpConnectionError):
            await mailer.send_one(email_options)

    @pytest.mark.asyncio
    async def test_multiple_sends_on_one_session(
        self, make_mailer, transport, email_options
    ):
        transport.reply(GREETING, EHLO_PLAIN, *TRANSACTION, *TRANSACTION)
        mailer = make_mailer()
        await mailer.open()

        await mailer.send_one(email_options)
        await mailer.send_one({**email_options, "subject": "Second"})

        assert transport.commands.count("DATA") == 2


class TestDsn:
    """Tests for delivery status notification parameters."""

    EHLO_DSN = "250-smtp.example.com\r\n250 DSN\r\n"

    @pytest.mark.asyncio
    async def test_dsn_parameters(self, make_mailer, transport, email_options):
        transport.reply(GREETING, self.EHLO_DSN, *TRANSACTION)
        mailer = make_mailer(
            dsn=DsnOptions(
                ret=DsnRet(full=True),
                notify=DsnNotify(success=True, failure=True),
            )
        )
        await mailer.open()

        await mailer.send_one(
            {**email_options, "dsn_override": {"envelope_id": "batch 1"}}
        )

        assert transport.commands[1:3] == [
            "MAIL FROM:<sender@example.com> RET=FULL ENVID=batch+201",
            "RCPT TO:<to@example.com> NOTIFY=SUCCESS,FAILURE",
        ]

    @pytest.mark.asyncio
    async def test_override_wins(self, make_mailer, transport, email_options):
        transport.reply(GREETING, self.EHLO_DSN, *TRANSACTION)
        mailer = make_mailer(
            dsn={"ret": {"full": True}, "notify": {"success": True}}
        )
        await mailer.open()

        await mailer.send_one(
            {
                **email_options,
                "dsn_override": {
                    "ret": {"headers": True},
                    "notify": {"success": False, "failure": False, "delay": False},
                },
            }
        )

        assert transport.commands[1:3] == [
            "MAIL FROM:<sender@example.com> RET=HDRS",
            "RCPT TO:<to@example.com> NOTIFY=NEVER",
        ]

    @pytest.mark.asyncio
    async def test_ignored_without_server_support(
        self, make_mailer, transport, email_options
    ):
        transport.reply(GREETING, EHLO_PLAIN, *TRANSACTION)
        mailer = make_mailer(dsn={"ret": {"full": True}})
        await mailer.open()

        await mailer.send_one(email_options)

        assert transport.commands[1] == "MAIL FROM:<sender@example.com>"


class TestLifecycle:
    """Tests for close, hooks and the one-shot helpers."""

    @pytest.mark.asyncio
    async def test_send_classmethod(
        self, transport, transport_factory, composer, email_options
    ):
        transport.reply(GREETING, EHLO_PLAIN, *TRANSACTION, "221 Bye\r\n")
        hooks = RecordingHooks()

        response = await WorkerMailer.send(
            {"host": "smtp.example.com", "hooks": hooks},
            email_options,
            transport_factory=transport_factory,
            composer=composer,
        )

        assert response == "250 2.0.0 Ok: queued as ABC123"
        assert transport.commands[-1] == "QUIT"
        assert transport.closed
        assert hooks.events == [
            ("connect",),
            ("sent", "Hello", "250 2.0.0 Ok: queued as ABC123"),
            ("close", None),
        ]

    @pytest.mark.asyncio
    async def test_connect_classmethod(self, transport, transport_factory):
        transport.reply(GREETING, EHLO_PLAIN)

        mailer = await WorkerMailer.connect(
            {"host": "smtp.example.com"}, transport_factory=transport_factory
        )

        assert mailer.state == SessionState.READY

    @pytest.mark.asyncio
    async def test_context_manager(self, make_mailer, transport, email_options):
        transport.reply(GREETING, EHLO_PLAIN, *TRANSACTION, "221 Bye\r\n")

        async with make_mailer() as mailer:
            await mailer.send_one(email_options)

        assert mailer.state == SessionState.CLOSED
        assert transport.commands[-1] == "QUIT"

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, make_mailer, transport):
        transport.reply(GREETING, EHLO_PLAIN, "221 Bye\r\n")
        hooks = RecordingHooks()
        mailer = make_mailer(hooks=hooks)
        await mailer.open()

        await mailer.close()
        await mailer.close()

        assert hooks.events.count(("close", None)) == 1
        assert transport.commands.count("QUIT") == 1

    @pytest.mark.asyncio
    async def test_close_hook_fires_when_never_connected(self, make_mailer):
        hooks = RecordingHooks()
        mailer = make_mailer(hooks=hooks)

        await mailer.close()

        assert hooks.events == [("close", None)]
        assert mailer.state == SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_connect_failure_reported(self, make_mailer, transport):
        transport.reply("554 go away\r\n")
        hooks = RecordingHooks()
        mailer = make_mailer(hooks=hooks)

        with pytest.raises(SmtpConnectionError) as exc_info:
            await mailer.open()

        assert hooks.events == [
            ("error", None, exc_info.value),
            ("close", exc_info.value),
        ]

    @pytest.mark.asyncio
    async def test_failing_hook_is_ignored(
        self, make_mailer, transport, email_options
    ):
        class BrokenHooks(WorkerMailerHooks):
            def on_sent(self, email_options, response):
                raise RuntimeError("observer exploded")

        transport.reply(GREETING, EHLO_PLAIN, *TRANSACTION)
        mailer = make_mailer(hooks=BrokenHooks())
        await mailer.open()

        response = await mailer.send_one(email_options)

        assert response.startswith("250")
        assert mailer.state == SessionState.READY

    @pytest.mark.asyncio
    async def test_auth_payload_not_logged(self, make_mailer, transport, caplog):
        transport.reply(GREETING, "250 AUTH PLAIN\r\n", "235 ok\r\n")
        mailer = make_mailer(credentials=CREDENTIALS, log_level="debug")

        with caplog.at_level("DEBUG", logger="workermailer"):
            await mailer.open()

        assert "[WorkerMailer:smtp.example.com:587] C: AUTH PLAIN ********" in (
            caplog.messages
        )
        assert b64("\0user\0secret") not in caplog.text

    @pytest.mark.asyncio
    async def test_log_level_none_silences_session(
        self, make_mailer, transport, caplog
    ):
        transport.reply(GREETING, EHLO_PLAIN)
        mailer = make_mailer(log_level="none")

        with caplog.at_level("DEBUG", logger="workermailer"):
            await mailer.open()

        assert not [m for m in caplog.messages if m.startswith("[WorkerMailer")]
