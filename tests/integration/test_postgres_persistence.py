from __future__ import annotations

import asyncio

import pytest

from app.clients.stub import InMemoryEventBus, StubDirectoryGateway
from app.domain.errors import ConsistencyError
from app.domain.ids import new_claim_id, new_key_id
from app.domain.lifecycle import RELEASED_STATES
from app.domain.models import (
    Claim,
    ClaimStatus,
    ClaimType,
    CreateKeyOutcome,
    InboundMessage,
    KeyEventType,
    KeyRecord,
    KeyState,
    KeyType,
)
from app.repositories.postgres import AsyncpgPoolManager, PostgresKeyRepository
from app.workers.handlers import claim_closing
from app.workers.handlers.deps import WorkerDeps
from tests.integration.postgres_test_utils import (
    apply_migration,
    fresh_repository,
    require_postgres,
    reset_public_schema,
)


def _record(state: KeyState, value: str, *, claim_id: str | None = None) -> KeyRecord:
    return KeyRecord(
        id=new_key_id(),
        key_type=KeyType.PHONE,
        owner_id="owner-1",
        state=state,
        value=value,
        claim_id=claim_id,
    )


@pytest.mark.integration
def test_migration_up_down_up() -> None:
    dsn = require_postgres()

    async def _run() -> None:
        await reset_public_schema(dsn=dsn)
        await apply_migration(dsn=dsn, direction="up")
        manager = AsyncpgPoolManager(dsn=dsn)
        await manager.startup()
        try:
            repo = PostgresKeyRepository(pool_manager=manager)
            assert await repo.get_by_id("key_missing") is None
            assert await repo.get_claim_by_id("clm_missing") is None
        finally:
            await manager.shutdown()

        await apply_migration(dsn=dsn, direction="down")
        await apply_migration(dsn=dsn, direction="up")

    asyncio.run(_run())


@pytest.mark.integration
def test_value_lookups_skip_released_records() -> None:
    dsn = require_postgres()

    async def _run() -> None:
        async with fresh_repository(dsn) as repo:
            active = await repo.create(_record(KeyState.READY, "+5511988887777"))
            await repo.create(_record(KeyState.DELETED, "+5511988887777"))
            await repo.create(_record(KeyState.CLAIM_CLOSED, "+5511900000000"))

            holders = await repo.get_by_value_excluding_states("+5511988887777", RELEASED_STATES)
            closed = await repo.list_by_states([KeyState.CLAIM_CLOSED])

            assert [item.id for item in holders] == [active.id]
            assert len(await repo.get_by_value("+5511988887777")) == 2
            assert [item.value for item in closed] == ["+5511900000000"]

            with pytest.raises(ConsistencyError):
                await repo.create(active)

    asyncio.run(_run())


@pytest.mark.integration
def test_commit_is_all_or_nothing() -> None:
    dsn = require_postgres()

    async def _run() -> None:
        async with fresh_repository(dsn) as repo:
            record = await repo.create(_record(KeyState.CLAIM_DENIED, "+5511977776666"))
            ghost = Claim(
                id=new_claim_id(),
                key_value="+5511977776666",
                type=ClaimType.OWNERSHIP,
                status=ClaimStatus.DENIED,
            )

            with pytest.raises(ConsistencyError):
                await repo.commit(records=[record.with_state(KeyState.READY)], claims=[ghost])

            stored = await repo.get_by_id(record.id)
            assert stored is not None
            assert stored.state is KeyState.CLAIM_DENIED

    asyncio.run(_run())


@pytest.mark.integration
def test_p2p_claim_closing_persists_both_records_and_claim() -> None:
    dsn = require_postgres()
    value = "+5511966665555"

    async def _run() -> None:
        async with fresh_repository(dsn) as repo:
            claim = await repo.create_claim(
                Claim(id=new_claim_id(), key_value=value, type=ClaimType.OWNERSHIP, status=ClaimStatus.OPEN)
            )
            donor = await repo.create(_record(KeyState.CLAIM_CLOSING, value, claim_id=claim.id))
            claimer = await repo.create(_record(KeyState.OWNERSHIP_WAITING, value, claim_id=claim.id))
            bus = InMemoryEventBus()
            deps = WorkerDeps(
                repository=repo,
                gateway=StubDirectoryGateway(create_outcome=CreateKeyOutcome.OWN),
                publisher=bus,
            )

            await claim_closing.process_message(
                deps,
                message=InboundMessage(
                    event_type=KeyEventType.CLAIM_CLOSING,
                    payload={"id": donor.id, "owner_id": donor.owner_id, "state": "CLAIM_CLOSING"},
                ),
            )

            stored_donor = await repo.get_by_id(donor.id)
            stored_claimer = await repo.get_by_id(claimer.id)
            stored_claim = await repo.get_claim_by_id(claim.id)
            assert stored_donor is not None and stored_donor.state is KeyState.CLAIM_CLOSED
            assert stored_claimer is not None and stored_claimer.state is KeyState.OWNERSHIP_READY
            assert stored_claim is not None and stored_claim.status is ClaimStatus.CLOSED
            assert bus.emitted_types() == [KeyEventType.OWNERSHIP_READY, KeyEventType.CLAIM_CLOSED]

    asyncio.run(_run())
