from __future__ import annotations

import asyncio

import pytest

from app.clients.stub import StubDirectoryGateway
from app.clients.timeout import TimeoutDirectoryGateway
from app.domain.errors import GatewayUnavailableError
from app.domain.models import CreateKeyOutcome, KeyState
from tests.unit.factories import make_record


@pytest.mark.unit
def test_slow_directory_call_counts_as_unavailable() -> None:
    inner = StubDirectoryGateway(delays={"deny_claim": 0.5})
    gateway = TimeoutDirectoryGateway(inner=inner, timeout_ms=20)

    with pytest.raises(GatewayUnavailableError, match="deny_claim"):
        asyncio.run(gateway.deny_claim("claim-1", None))


@pytest.mark.unit
def test_fast_directory_call_passes_through() -> None:
    inner = StubDirectoryGateway(create_outcome=CreateKeyOutcome.PORTABILITY)
    gateway = TimeoutDirectoryGateway(inner=inner, timeout_ms=1000)

    result = asyncio.run(gateway.create_key(make_record(state=KeyState.CONFIRMED)))

    assert result.outcome is CreateKeyOutcome.PORTABILITY
    assert inner.calls == [("create_key", "key-1")]
