"""
Queue adapter for workermailer.

Emails travel through an external message broker as QueueEmailMessage
payloads. process_batch runs one SMTP session per message and acks or retries
each message; redelivery and backoff are left to the broker.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol

from pydantic import BaseModel, ValidationError

from ..common.models import EmailOptions, WorkerMailerOptions
from .sender import WorkerMailer

logger = logging.getLogger(__name__)

SendFunction = Callable[[WorkerMailerOptions, EmailOptions], Awaitable[str]]


class QueueEmailMessage(BaseModel):
    """Payload of one queued email."""

    mailer_options: WorkerMailerOptions
    email_options: EmailOptions

    def to_payload(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict for the broker."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


@dataclass
class QueueProcessResult:
    """Outcome of processing one queued email."""

    success: bool
    email_options: Optional[EmailOptions] = None
    response: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "response": self.response,
            "error": self.error,
            "error_code": self.error_code,
            "email_options": (
                self.email_options.model_dump(mode="json", by_alias=True)
                if self.email_options
                else None
            ),
        }


class QueueMessage(Protocol):
    """A message delivered by the broker."""

    body: Any

    def ack(self) -> Any:
        ...

    def retry(self) -> Any:
        ...


class EmailQueue(Protocol):
    """Producer side of the broker."""

    def send(self, body: Any) -> Awaitable[Any]:
        ...

    def send_batch(self, bodies: list[Any]) -> Awaitable[Any]:
        ...


async def _settle(result: Any) -> None:
    """Await ack/retry results from brokers with async acknowledgement."""
    if inspect.isawaitable(result):
        await result


def _parse_message(body: Any) -> QueueEmailMessage:
    if isinstance(body, QueueEmailMessage):
        return body
    return QueueEmailMessage.model_validate(body)


async def process_batch(
    messages: Iterable[QueueMessage],
    send: SendFunction = WorkerMailer.send,
) -> list[QueueProcessResult]:
    """
    Deliver a batch of queued emails, one session per message.

    Messages are processed sequentially. A delivered message is acked; any
    failure, including an unreadable payload, retries the message.

    Args:
        messages: Broker messages whose body is a QueueEmailMessage.
        send: Coroutine delivering one email.

    Returns:
        One result per message, in order.
    """
    results: list[QueueProcessResult] = []

    for message in messages:
        try:
            payload = _parse_message(message.body)
        except ValidationError as e:
            logger.error("Unreadable queue payload, scheduling retry: %s", e)
            await _settle(message.retry())
            results.append(
                QueueProcessResult(
                    success=False,
                    error=str(e),
                    error_code="INVALID_PAYLOAD",
                )
            )
            continue

        try:
            response = await send(payload.mailer_options, payload.email_options)
        except Exception as e:
            logger.warning(
                "Queued email to %s:%d failed, scheduling retry: %s",
                payload.mailer_options.host,
                payload.mailer_options.port,
                e,
            )
            await _settle(message.retry())
            results.append(
                QueueProcessResult(
                    success=False,
                    email_options=payload.email_options,
                    error=str(e),
                    error_code=getattr(e, "code", type(e).__name__),
                )
            )
            continue

        await _settle(message.ack())
        results.append(
            QueueProcessResult(
                success=True,
                email_options=payload.email_options,
                response=response,
            )
        )

    succeeded = sum(1 for r in results if r.success)
    logger.info(
        "Processed batch: %d sent, %d retried",
        succeeded,
        len(results) - succeeded,
    )
    return results


async def enqueue_email(queue: EmailQueue, message: QueueEmailMessage) -> None:
    """Put one email on the queue."""
    await queue.send(message.to_payload())


async def enqueue_emails(
    queue: EmailQueue, messages: Iterable[QueueEmailMessage]
) -> None:
    """Put several emails on the queue in one batch."""
    await queue.send_batch([m.to_payload() for m in messages])
