from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
import logging

from app.domain.contracts import EventPublisher, MessageSource
from app.domain.error_taxonomy import classify_error, error_code_for
from app.domain.lifecycle import dead_letter_channel, is_dead_letter_channel
from app.domain.models import HandleResult, InboundMessage

MessageHandler = Callable[[InboundMessage], Awaitable[HandleResult]]
logger = logging.getLogger("runtime")


@dataclass
class WorkerLoop:
    role: str
    channels: tuple[str, ...]
    source: MessageSource
    publisher: EventPublisher
    process: MessageHandler

    async def run_once(self) -> bool:
        for channel in self.channels:
            message = await self.source.poll(channel)
            if message is None:
                continue
            await self._handle(message)
            # Unacked messages come back once their lease runs out.
            await self.source.ack(message)
            return True
        return False

    async def _handle(self, message: InboundMessage) -> None:
        try:
            result = await self.process(message)
        except Exception as exc:
            error_code = error_code_for(exc)
            retry_classification = classify_error(error_code)
            extra = {
                "event_type": message.event_type,
                "channel": message.channel,
                "attempt": message.attempt,
                "key_id": message.payload.get("id"),
                "error_code": error_code,
                "retry_classification": retry_classification,
            }
            if retry_classification == "terminal":
                # Acknowledged: redelivering would fail the same way.
                logger.warning("key event rejected", extra=extra)
                return

            if error_code == "internal_error":
                logger.exception("key event failed unexpectedly", extra=extra)
            else:
                logger.warning("key event failed", extra=extra)
            if is_dead_letter_channel(message.channel):
                # Redeliveries count against the dead-letter budget.
                message = replace(message, attempt=message.attempt + 1)
            await self.publisher.dead_letter(message, dead_letter_channel(message.event_type))
            return

        logger.info(
            "key event handled",
            extra={
                "event_type": message.event_type,
                "channel": message.channel,
                "attempt": message.attempt,
                "key_id": message.payload.get("id"),
                "state": result.record.state if result.record is not None else None,
            },
        )
