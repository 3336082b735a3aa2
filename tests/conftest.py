"""
Pytest fixtures for workermailer tests.

This module provides a scripted in-memory transport, a seeded random source
and a fixed clock so that sessions and rendered messages are reproducible.
"""

import asyncio
import os
import random
import sys
from collections import deque
from datetime import datetime, timezone
from typing import Optional

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from workermailer.common.models import WorkerMailerOptions  # noqa: E402
from workermailer.smtp.composer import EmailComposer  # noqa: E402
from workermailer.smtp.sender import WorkerMailer  # noqa: E402
from workermailer.smtp.transport import SmtpTransport  # noqa: E402

GREETING = "220 smtp.example.com ESMTP ready\r\n"
EHLO_PLAIN = "250-smtp.example.com Hello\r\n250 SIZE 10485760\r\n"
FIXED_NOW = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

# Script marker: the read never completes.
HANG = object()


class FakeTransport(SmtpTransport):
    """
    In-memory transport replaying scripted server chunks.

    Each read returns the next scripted chunk, or EOF once the script is
    exhausted. Everything written is recorded. A TLS upgrade returns a new
    transport sharing the same script and write log.
    """

    def __init__(
        self,
        script: Optional[deque] = None,
        written: Optional[list[bytes]] = None,
        tls: bool = False,
    ) -> None:
        self.script = script if script is not None else deque()
        self.written = written if written is not None else []
        self.tls = tls
        self.closed = False
        self.upgraded_to: Optional["FakeTransport"] = None
        self.tls_hostname: Optional[str] = None
        self.tls_verify: Optional[bool] = None

    def reply(self, *chunks) -> "FakeTransport":
        """Append server chunks to the script."""
        for chunk in chunks:
            if isinstance(chunk, str):
                chunk = chunk.encode("utf-8")
            self.script.append(chunk)
        return self

    @property
    def commands(self) -> list[str]:
        """Command lines written so far, without the message document."""
        lines = []
        for chunk in self.written:
            text = chunk.decode("utf-8")
            if text.endswith("\r\n") and text.count("\r\n") == 1:
                lines.append(text[:-2])
        return lines

    async def read(self, size: int = 4096) -> bytes:
        if not self.script:
            return b""
        chunk = self.script.popleft()
        if chunk is HANG:
            await asyncio.sleep(3600)
        return chunk

    async def write(self, data: bytes) -> None:
        if self.closed:
            raise ConnectionResetError("transport is closed")
        self.written.append(bytes(data))

    async def close(self) -> None:
        self.closed = True

    async def start_tls(
        self, server_hostname: str, verify: bool = True
    ) -> "FakeTransport":
        self.tls_hostname = server_hostname
        self.tls_verify = verify
        self.closed = True
        self.upgraded_to = FakeTransport(
            script=self.script, written=self.written, tls=True
        )
        return self.upgraded_to


@pytest.fixture
def transport():
    """Provide a FakeTransport with an empty script."""
    return FakeTransport()


@pytest.fixture
def random_bytes():
    """Provide a seeded random byte source."""
    return random.Random(0).randbytes


@pytest.fixture
def clock():
    """Provide a clock frozen at FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
def composer(random_bytes, clock):
    """Provide a deterministic EmailComposer."""
    return EmailComposer(random_bytes=random_bytes, clock=clock)


@pytest.fixture
def transport_factory(transport):
    """Provide a transport factory that hands out the fake transport."""

    async def factory(host, port, **kwargs):
        transport.opened_with = (host, port, kwargs)
        return transport

    return factory


@pytest.fixture
def make_mailer(transport_factory, composer):
    """Provide a factory for unopened sessions over the fake transport."""

    def factory(**overrides) -> WorkerMailer:
        options = WorkerMailerOptions(
            **{"host": "smtp.example.com", "port": 587, **overrides}
        )
        return WorkerMailer(
            options, transport_factory=transport_factory, composer=composer
        )

    return factory


@pytest.fixture
def email_options():
    """Provide minimal valid email options."""
    return {
        "from": "sender@example.com",
        "to": ["to@example.com"],
        "subject": "Hello",
        "text": "Hello there",
    }
