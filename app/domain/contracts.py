from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from app.domain.models import (
    Claim,
    ClaimReason,
    CreateKeyResult,
    InboundMessage,
    KeyEventType,
    KeyRecord,
    KeyState,
)


@runtime_checkable
class KeyRecordStore(Protocol):
    async def get_by_id(self, key_id: str) -> KeyRecord | None: ...

    async def get_by_value(self, value: str) -> list[KeyRecord]: ...

    async def get_by_value_excluding_states(
        self,
        value: str,
        states: Sequence[KeyState],
    ) -> list[KeyRecord]: ...

    async def list_by_states(self, states: Sequence[KeyState]) -> list[KeyRecord]: ...

    async def update(self, record: KeyRecord) -> KeyRecord: ...


@runtime_checkable
class ClaimStore(Protocol):
    async def get_claim_by_id(self, claim_id: str) -> Claim | None: ...

    async def update_claim(self, claim: Claim) -> Claim: ...


@runtime_checkable
class KeyRepository(KeyRecordStore, ClaimStore, Protocol):
    """Record and claim persistence with an atomic multi-row commit.

    ``commit`` must write every record and claim in one transaction: the P2P
    branches mutate two records and a claim, and a partial write is not
    allowed.
    """

    async def create(self, record: KeyRecord) -> KeyRecord: ...

    async def create_claim(self, claim: Claim) -> Claim: ...

    async def commit(
        self,
        *,
        records: Sequence[KeyRecord],
        claims: Sequence[Claim] = (),
    ) -> None: ...


@runtime_checkable
class DirectoryGateway(Protocol):
    """External directory calls.

    Every method raises GatewayUnavailableError on transient failure and
    GatewayRejectedError when the directory refuses the request.
    """

    async def create_key(self, record: KeyRecord) -> CreateKeyResult: ...

    async def delete_key(self, record: KeyRecord) -> None: ...

    async def close_claim(self, claim_id: str, reason: ClaimReason | None) -> None: ...

    async def deny_claim(self, claim_id: str, reason: ClaimReason | None) -> None: ...

    async def cancel_portability_claim(self, claim_id: str, reason: ClaimReason | None) -> None: ...

    async def confirm_portability_claim(self, claim_id: str, reason: ClaimReason | None) -> None: ...


@runtime_checkable
class EventPublisher(Protocol):
    async def emit(self, event_type: KeyEventType, payload: dict[str, str]) -> None: ...

    async def dead_letter(self, message: InboundMessage, channel: str) -> None: ...


@runtime_checkable
class MessageSource(Protocol):
    """Inbound side of the bus, one logical channel per consumer."""

    async def poll(self, channel: str) -> InboundMessage | None: ...

    async def ack(self, message: InboundMessage) -> None: ...


@runtime_checkable
class MessageSink(Protocol):
    """Accepts inbound triggers for the consumer side of the bus."""

    async def enqueue(self, message: InboundMessage) -> None: ...
