from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field, replace

from app.domain.ids import new_token_value
from app.domain.models import (
    ClaimReason,
    CreateKeyOutcome,
    CreateKeyResult,
    InboundMessage,
    KeyEventType,
    KeyRecord,
    KeyType,
)


@dataclass
class StubDirectoryGateway:
    """In-process directory double.

    ``failures`` maps a method name to the exception it raises until removed;
    ``delays`` maps a method name to seconds slept before answering.
    """

    create_outcome: CreateKeyOutcome = CreateKeyOutcome.OWN
    calls: list[tuple[str, str]] = field(default_factory=list)
    failures: dict[str, Exception] = field(default_factory=dict)
    delays: dict[str, float] = field(default_factory=dict)

    async def create_key(self, record: KeyRecord) -> CreateKeyResult:
        await self._call("create_key", record.id)
        value = None
        if record.value is None and record.key_type is KeyType.TOKEN:
            value = new_token_value()
        return CreateKeyResult(outcome=self.create_outcome, value=value)

    async def delete_key(self, record: KeyRecord) -> None:
        await self._call("delete_key", record.id)

    async def close_claim(self, claim_id: str, reason: ClaimReason | None) -> None:
        del reason
        await self._call("close_claim", claim_id)

    async def deny_claim(self, claim_id: str, reason: ClaimReason | None) -> None:
        del reason
        await self._call("deny_claim", claim_id)

    async def cancel_portability_claim(self, claim_id: str, reason: ClaimReason | None) -> None:
        del reason
        await self._call("cancel_portability_claim", claim_id)

    async def confirm_portability_claim(self, claim_id: str, reason: ClaimReason | None) -> None:
        del reason
        await self._call("confirm_portability_claim", claim_id)

    def calls_to(self, method: str) -> list[str]:
        return [target for name, target in self.calls if name == method]

    async def _call(self, method: str, target: str) -> None:
        self.calls.append((method, target))
        delay = self.delays.get(method)
        if delay:
            await asyncio.sleep(delay)
        failure = self.failures.get(method)
        if failure is not None:
            raise failure


@dataclass
class InMemoryEventBus:
    """Event publisher and message source backed by per-channel queues.

    Stands in for the postgres queue when no database is configured; nothing
    crosses process boundaries.
    """

    emitted: list[tuple[KeyEventType, dict[str, str]]] = field(default_factory=list)
    dead_letters: list[tuple[InboundMessage, str]] = field(default_factory=list)
    acked: list[InboundMessage] = field(default_factory=list)
    queues: dict[str, deque[InboundMessage]] = field(default_factory=dict)

    async def emit(self, event_type: KeyEventType, payload: dict[str, str]) -> None:
        self.emitted.append((event_type, dict(payload)))

    async def dead_letter(self, message: InboundMessage, channel: str) -> None:
        self.dead_letters.append((message, channel))
        self.publish(replace(message, channel=channel))

    async def poll(self, channel: str) -> InboundMessage | None:
        queue = self.queues.get(channel)
        if not queue:
            return None
        return queue.popleft()

    async def ack(self, message: InboundMessage) -> None:
        self.acked.append(message)

    async def enqueue(self, message: InboundMessage) -> None:
        self.publish(message)

    def publish(self, message: InboundMessage) -> None:
        self.queues.setdefault(message.channel, deque()).append(message)

    def emitted_types(self) -> list[KeyEventType]:
        return [event_type for event_type, _ in self.emitted]

    def pending(self, channel: str) -> int:
        return len(self.queues.get(channel, ()))
