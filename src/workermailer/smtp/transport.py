"""
Byte stream transports for the SMTP session.

The session only sees the abstract SmtpTransport: read, write, close and a
TLS upgrade that hands back a new transport. StreamTransport implements it on
top of asyncio streams.
"""

import asyncio
import logging
import ssl
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096


def create_ssl_context(verify: bool = True) -> ssl.SSLContext:
    """
    Create the client SSL context.

    Args:
        verify: Whether to verify the server certificate and hostname.

    Returns:
        A default client context, optionally without verification.
    """
    context = ssl.create_default_context()
    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


class SmtpTransport(ABC):
    """Bidirectional byte stream consumed by the SMTP session."""

    @abstractmethod
    async def read(self, size: int = READ_CHUNK_SIZE) -> bytes:
        """Read up to ``size`` bytes; ``b""`` means the peer closed."""

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """Write all of ``data``."""

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying connection."""

    @abstractmethod
    async def start_tls(
        self, server_hostname: str, verify: bool = True
    ) -> "SmtpTransport":
        """
        Upgrade the stream to TLS.

        The receiver must not be used afterwards; all traffic goes through
        the returned transport.
        """


class StreamTransport(SmtpTransport):
    """SmtpTransport over an asyncio StreamReader/StreamWriter pair."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        tls: bool = False,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self.tls = tls

    async def read(self, size: int = READ_CHUNK_SIZE) -> bytes:
        return await self._reader.read(size)

    async def write(self, data: bytes) -> None:
        self._writer.write(data)
        await self._writer.drain()

    async def close(self) -> None:
        if self._writer.is_closing():
            return
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionError, ssl.SSLError) as e:
            logger.debug("Error while closing transport: %s", e)

    async def start_tls(
        self, server_hostname: str, verify: bool = True
    ) -> "StreamTransport":
        try:
            await self._writer.start_tls(
                create_ssl_context(verify), server_hostname=server_hostname
            )
        except BaseException:
            await self.close()
            raise
        return StreamTransport(self._reader, self._writer, tls=True)


async def open_transport(
    host: str,
    port: int,
    *,
    secure: bool = False,
    timeout: Optional[float] = None,
    verify_tls: bool = True,
) -> SmtpTransport:
    """
    Open a TCP connection, TLS from the first byte when ``secure``.

    Args:
        host: Server host name.
        port: Server port.
        secure: Wrap the connection in TLS immediately (implicit TLS).
        timeout: Connect deadline in seconds.
        verify_tls: Whether to verify the server certificate.

    Returns:
        A connected StreamTransport.

    Raises:
        OSError: If the connection cannot be established.
        asyncio.TimeoutError: If the connect deadline expires.
    """
    ssl_context = create_ssl_context(verify_tls) if secure else None
    reader, writer = await asyncio.wait_for(
        asyncio.open_connection(host, port, ssl=ssl_context),
        timeout=timeout,
    )
    logger.debug("Connected to %s:%d (tls=%s)", host, port, secure)
    return StreamTransport(reader, writer, tls=secure)
