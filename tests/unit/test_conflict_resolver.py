from __future__ import annotations

import asyncio

import pytest

from app.domain.conflict import ConflictResolver
from app.domain.errors import ConsistencyError
from app.domain.models import KeyState
from app.repositories.stub import InMemoryKeyRepository
from tests.unit.factories import VALUE, make_record


def _resolver(*records) -> ConflictResolver:
    repository = InMemoryKeyRepository()
    for record in records:
        repository.records[record.id] = record
    return ConflictResolver(store=repository)


@pytest.mark.unit
def test_counterpart_excludes_origin_and_released_records() -> None:
    resolver = _resolver(
        make_record("key-1", state=KeyState.CONFIRMED),
        make_record("key-2", state=KeyState.DELETED),
        make_record("key-3", state=KeyState.CANCELED),
        make_record("key-4", state=KeyState.READY),
    )

    counterpart = asyncio.run(resolver.find_counterpart(VALUE, "key-1"))

    assert counterpart is not None
    assert counterpart.id == "key-4"


@pytest.mark.unit
def test_no_counterpart_for_unique_or_unassigned_value() -> None:
    resolver = _resolver(make_record("key-1", state=KeyState.CONFIRMED))

    assert asyncio.run(resolver.find_counterpart(VALUE, "key-1")) is None
    assert asyncio.run(resolver.find_counterpart(None, "key-1")) is None


@pytest.mark.unit
def test_several_counterparts_are_a_consistency_violation() -> None:
    resolver = _resolver(
        make_record("key-1", state=KeyState.CONFIRMED),
        make_record("key-2", state=KeyState.READY),
        make_record("key-3", state=KeyState.ERROR),
    )

    with pytest.raises(ConsistencyError, match="key-2, key-3"):
        asyncio.run(resolver.find_counterpart(VALUE, "key-1"))
