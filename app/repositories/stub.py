from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from app.domain.errors import ConsistencyError
from app.domain.models import Claim, KeyRecord, KeyState


@dataclass
class InMemoryKeyRepository:
    """Dict-backed repository used when no DATABASE_URL is configured and in tests."""

    records: dict[str, KeyRecord] = field(default_factory=dict)
    claims: dict[str, Claim] = field(default_factory=dict)
    commits: list[tuple[tuple[KeyRecord, ...], tuple[Claim, ...]]] = field(default_factory=list)
    fail_next_commit: Exception | None = None

    async def create(self, record: KeyRecord) -> KeyRecord:
        if record.id in self.records:
            raise ConsistencyError(f"key {record.id} already exists")
        self.records[record.id] = record
        return record

    async def create_claim(self, claim: Claim) -> Claim:
        if claim.id in self.claims:
            raise ConsistencyError(f"claim {claim.id} already exists")
        self.claims[claim.id] = claim
        return claim

    async def get_by_id(self, key_id: str) -> KeyRecord | None:
        return self.records.get(key_id)

    async def get_by_value(self, value: str) -> list[KeyRecord]:
        return [record for record in self.records.values() if record.value == value]

    async def get_by_value_excluding_states(
        self,
        value: str,
        states: Sequence[KeyState],
    ) -> list[KeyRecord]:
        excluded = set(states)
        return [record for record in await self.get_by_value(value) if record.state not in excluded]

    async def list_by_states(self, states: Sequence[KeyState]) -> list[KeyRecord]:
        wanted = set(states)
        return sorted(
            (record for record in self.records.values() if record.state in wanted),
            key=lambda record: record.id,
        )

    async def update(self, record: KeyRecord) -> KeyRecord:
        if record.id not in self.records:
            raise ConsistencyError(f"key {record.id} does not exist")
        self.records[record.id] = record
        return record

    async def get_claim_by_id(self, claim_id: str) -> Claim | None:
        return self.claims.get(claim_id)

    async def update_claim(self, claim: Claim) -> Claim:
        if claim.id not in self.claims:
            raise ConsistencyError(f"claim {claim.id} does not exist")
        self.claims[claim.id] = claim
        return claim

    async def commit(
        self,
        *,
        records: Sequence[KeyRecord],
        claims: Sequence[Claim] = (),
    ) -> None:
        # Validate everything first so a rejected commit writes nothing.
        if self.fail_next_commit is not None:
            exc, self.fail_next_commit = self.fail_next_commit, None
            raise exc
        for record in records:
            if record.id not in self.records:
                raise ConsistencyError(f"key {record.id} does not exist")
        for claim in claims:
            if claim.id not in self.claims:
                raise ConsistencyError(f"claim {claim.id} does not exist")

        for record in records:
            self.records[record.id] = record
        for claim in claims:
            self.claims[claim.id] = claim
        self.commits.append((tuple(records), tuple(claims)))
