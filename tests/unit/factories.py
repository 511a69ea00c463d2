from __future__ import annotations

from app.clients.stub import InMemoryEventBus, StubDirectoryGateway
from app.domain.models import (
    Claim,
    ClaimReason,
    ClaimStatus,
    ClaimType,
    InboundMessage,
    KeyEventType,
    KeyRecord,
    KeyState,
    KeyType,
)
from app.repositories.stub import InMemoryKeyRepository
from app.workers.handlers.deps import WorkerDeps

VALUE = "+5511999990000"


def make_record(
    key_id: str = "key-1",
    *,
    state: KeyState,
    value: str | None = VALUE,
    owner_id: str = "owner-1",
    claim_id: str | None = None,
    key_type: KeyType = KeyType.PHONE,
) -> KeyRecord:
    return KeyRecord(
        id=key_id,
        key_type=key_type,
        owner_id=owner_id,
        state=state,
        value=value,
        claim_id=claim_id,
    )


def make_claim(
    claim_id: str = "claim-1",
    *,
    key_value: str = VALUE,
    claim_type: ClaimType = ClaimType.OWNERSHIP,
    status: ClaimStatus = ClaimStatus.OPEN,
) -> Claim:
    return Claim(id=claim_id, key_value=key_value, type=claim_type, status=status)


def make_message(
    event_type: KeyEventType,
    record: KeyRecord,
    *,
    reason: ClaimReason | None = None,
    attempt: int = 1,
    channel: str = "key-events",
) -> InboundMessage:
    payload: dict[str, object] = {"id": record.id, "owner_id": record.owner_id, "state": record.state.value}
    if reason is not None:
        payload["reason"] = reason.value
    return InboundMessage(event_type=event_type, payload=payload, attempt=attempt, channel=channel)


def build_deps(
    *records: KeyRecord,
    claims: tuple[Claim, ...] = (),
    gateway: StubDirectoryGateway | None = None,
) -> tuple[WorkerDeps, InMemoryKeyRepository, StubDirectoryGateway, InMemoryEventBus]:
    repository = InMemoryKeyRepository()
    for record in records:
        repository.records[record.id] = record
    for claim in claims:
        repository.claims[claim.id] = claim
    gateway = gateway or StubDirectoryGateway()
    bus = InMemoryEventBus()
    deps = WorkerDeps(repository=repository, gateway=gateway, publisher=bus)
    return deps, repository, gateway, bus
