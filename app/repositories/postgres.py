from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
import importlib
import json
from typing import Any

from app.domain.errors import ConsistencyError
from app.domain.lifecycle import NOTIFICATIONS_CHANNEL
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
from app.repositories.sql_loader import load_sql

try:
    asyncpg_module = importlib.import_module("asyncpg")
except ModuleNotFoundError:  # pragma: no cover
    asyncpg_module = None  # type: ignore[assignment]


SQL_CREATE_KEY_RECORD = load_sql("create_key_record.sql")
SQL_GET_KEY_RECORD = load_sql("get_key_record.sql")
SQL_LIST_BY_VALUE = load_sql("list_key_records_by_value.sql")
SQL_LIST_BY_VALUE_EXCLUDING_STATES = load_sql("list_key_records_by_value_excluding_states.sql")
SQL_LIST_BY_STATES = load_sql("list_key_records_by_states.sql")
SQL_UPDATE_KEY_RECORD = load_sql("update_key_record.sql")
SQL_CREATE_CLAIM = load_sql("create_claim.sql")
SQL_GET_CLAIM = load_sql("get_claim.sql")
SQL_UPDATE_CLAIM = load_sql("update_claim.sql")
SQL_ENQUEUE_MESSAGE = load_sql("enqueue_message.sql")
SQL_LEASE_NEXT_MESSAGE = load_sql("lease_next_message.sql")
SQL_ACK_MESSAGE = load_sql("ack_message.sql")


def _is_unique_violation(exc: Exception) -> bool:
    return getattr(exc, "sqlstate", None) == "23505"


@dataclass
class AsyncpgPoolManager:
    dsn: str
    pool: Any | None = None

    async def startup(self) -> None:
        if asyncpg_module is None:  # pragma: no cover
            raise RuntimeError("asyncpg is required for postgres repository mode")

        async def _init_connection(conn: Any) -> None:
            await conn.set_type_codec(
                "json",
                encoder=json.dumps,
                decoder=json.loads,
                schema="pg_catalog",
            )
            await conn.set_type_codec(
                "jsonb",
                encoder=json.dumps,
                decoder=json.loads,
                schema="pg_catalog",
            )

        self.pool = await asyncpg_module.create_pool(dsn=self.dsn, min_size=1, max_size=5, init=_init_connection)

    async def shutdown(self) -> None:
        if self.pool is None:
            return
        await self.pool.close()
        self.pool = None


@dataclass
class PostgresKeyRepository:
    pool_manager: AsyncpgPoolManager

    def _pool(self) -> Any:
        if self.pool_manager.pool is None:
            raise RuntimeError("postgres pool is not initialized")
        return self.pool_manager.pool

    async def create(self, record: KeyRecord) -> KeyRecord:
        pool = self._pool()
        async with pool.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    SQL_CREATE_KEY_RECORD,
                    record.id,
                    record.key_type.value,
                    record.owner_id,
                    record.state.value,
                    record.value,
                    record.claim_id,
                )
            except Exception as exc:
                if _is_unique_violation(exc):
                    raise ConsistencyError(f"key {record.id} already exists") from exc
                raise
        return _record_from_row(row)

    async def create_claim(self, claim: Claim) -> Claim:
        pool = self._pool()
        async with pool.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    SQL_CREATE_CLAIM,
                    claim.id,
                    claim.key_value,
                    claim.type.value,
                    claim.status.value,
                    _reason_value(claim.reason),
                )
            except Exception as exc:
                if _is_unique_violation(exc):
                    raise ConsistencyError(f"claim {claim.id} already exists") from exc
                raise
        return _claim_from_row(row)

    async def get_by_id(self, key_id: str) -> KeyRecord | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_GET_KEY_RECORD, key_id)
        if row is None:
            return None
        return _record_from_row(row)

    async def get_by_value(self, value: str) -> list[KeyRecord]:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_LIST_BY_VALUE, value)
        return [_record_from_row(row) for row in rows]

    async def get_by_value_excluding_states(
        self,
        value: str,
        states: Sequence[KeyState],
    ) -> list[KeyRecord]:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_LIST_BY_VALUE_EXCLUDING_STATES, value, [state.value for state in states])
        return [_record_from_row(row) for row in rows]

    async def list_by_states(self, states: Sequence[KeyState]) -> list[KeyRecord]:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_LIST_BY_STATES, [state.value for state in states])
        return [_record_from_row(row) for row in rows]

    async def update(self, record: KeyRecord) -> KeyRecord:
        pool = self._pool()
        async with pool.acquire() as conn:
            return await _update_record(conn, record)

    async def get_claim_by_id(self, claim_id: str) -> Claim | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_GET_CLAIM, claim_id)
        if row is None:
            return None
        return _claim_from_row(row)

    async def update_claim(self, claim: Claim) -> Claim:
        pool = self._pool()
        async with pool.acquire() as conn:
            return await _update_claim(conn, claim)

    async def commit(
        self,
        *,
        records: Sequence[KeyRecord],
        claims: Sequence[Claim] = (),
    ) -> None:
        pool = self._pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                for record in records:
                    await _update_record(conn, record)
                for claim in claims:
                    await _update_claim(conn, claim)


@dataclass
class PostgresMessageBus:
    """Durable channel queue shared by every role pointed at the same database.

    A polled message is leased rather than removed; it becomes visible again
    when the lease runs out without an ack.
    """

    pool_manager: AsyncpgPoolManager
    lease_seconds: int = 30

    def _pool(self) -> Any:
        if self.pool_manager.pool is None:
            raise RuntimeError("postgres pool is not initialized")
        return self.pool_manager.pool

    async def emit(self, event_type: KeyEventType, payload: dict[str, str]) -> None:
        await self._insert(NOTIFICATIONS_CHANNEL, event_type, dict(payload), 1)

    async def dead_letter(self, message: InboundMessage, channel: str) -> None:
        await self._insert(channel, message.event_type, message.payload, message.attempt)

    async def enqueue(self, message: InboundMessage) -> None:
        await self._insert(message.channel, message.event_type, message.payload, message.attempt)

    async def poll(self, channel: str) -> InboundMessage | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(SQL_LEASE_NEXT_MESSAGE, channel, self.lease_seconds)
        if row is None:
            return None
        return InboundMessage(
            event_type=KeyEventType(row["event_type"]),
            payload=dict(row["payload"]),
            attempt=row["attempt"],
            channel=row["channel"],
            message_id=row["id"],
        )

    async def ack(self, message: InboundMessage) -> None:
        if message.message_id is None:
            return
        pool = self._pool()
        async with pool.acquire() as conn:
            await conn.fetchrow(SQL_ACK_MESSAGE, message.message_id)

    async def _insert(
        self,
        channel: str,
        event_type: KeyEventType,
        payload: dict[str, object],
        attempt: int,
    ) -> int:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_ENQUEUE_MESSAGE, channel, event_type.value, payload, attempt)
        return int(row["id"])


async def _update_record(conn: Any, record: KeyRecord) -> KeyRecord:
    row = await conn.fetchrow(
        SQL_UPDATE_KEY_RECORD,
        record.id,
        record.state.value,
        record.value,
        record.claim_id,
    )
    if row is None:
        raise ConsistencyError(f"key {record.id} does not exist")
    return _record_from_row(row)


async def _update_claim(conn: Any, claim: Claim) -> Claim:
    row = await conn.fetchrow(SQL_UPDATE_CLAIM, claim.id, claim.status.value, _reason_value(claim.reason))
    if row is None:
        raise ConsistencyError(f"claim {claim.id} does not exist")
    return _claim_from_row(row)


def _reason_value(reason: ClaimReason | None) -> str | None:
    return reason.value if reason is not None else None


def _record_from_row(row: Any) -> KeyRecord:
    return KeyRecord(
        id=row["id"],
        key_type=KeyType(row["key_type"]),
        owner_id=row["owner_id"],
        state=KeyState(row["state"]),
        value=row["value"],
        claim_id=row["claim_id"],
    )


def _claim_from_row(row: Any) -> Claim:
    reason = row["reason"]
    return Claim(
        id=row["id"],
        key_value=row["key_value"],
        type=ClaimType(row["type"]),
        status=ClaimStatus(row["status"]),
        reason=ClaimReason(reason) if reason is not None else None,
    )
