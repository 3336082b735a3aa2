"""
Session logging for workermailer.

Every session logs through a MailerLogger, which tags records with the server
it talks to and applies the session's own log level on top of the standard
logging configuration.
"""

import logging
from typing import Any, MutableMapping

from .models import LogLevel

LEVELS: dict[LogLevel, int] = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.NONE: logging.CRITICAL + 10,
}


class MailerLogger(logging.LoggerAdapter):
    """
    Logger adapter prefixing messages with ``[WorkerMailer:host:port]``.

    Records below ``log_level`` are dropped even when the underlying logger
    would accept them; ``LogLevel.NONE`` silences the session entirely.
    """

    def __init__(
        self,
        logger: logging.Logger,
        host: str,
        port: int,
        log_level: LogLevel = LogLevel.INFO,
    ) -> None:
        super().__init__(logger, {"smtp_host": host, "smtp_port": port})
        self.prefix = f"[WorkerMailer:{host}:{port}]"
        self.threshold = LEVELS[LogLevel(log_level)]

    def isEnabledFor(self, level: int) -> bool:
        if level < self.threshold:
            return False
        return self.logger.isEnabledFor(level)

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs.setdefault("extra", {}).update(self.extra)
        return f"{self.prefix} {msg}", kwargs
