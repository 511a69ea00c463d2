from __future__ import annotations

import asyncio

import pytest

from app.clients.stub import StubDirectoryGateway
from app.domain.errors import GatewayUnavailableError
from app.domain.lifecycle import dead_letter_channel
from app.domain.models import ClaimStatus, HandleResult, InboundMessage, KeyEventType, KeyState
from app.workers.handlers.factory import build_process_handler
from app.workers.loop import WorkerLoop
from app.workers.roles import KEY_EVENTS_CHANNEL, ROLE_TO_CHANNELS
from tests.unit.factories import build_deps, make_claim, make_message, make_record

CANCEL_OPENED_DLQ = dead_letter_channel(KeyEventType.PORTABILITY_REQUEST_CANCEL_OPENED)


def _worker_loops(deps, bus, *, max_attempts: int = 3) -> tuple[WorkerLoop, WorkerLoop]:
    main = WorkerLoop(
        role="worker-key-events",
        channels=ROLE_TO_CHANNELS["worker-key-events"],
        source=bus,
        publisher=bus,
        process=build_process_handler("worker-key-events", deps),
    )
    retry = WorkerLoop(
        role="worker-dead-letter",
        channels=ROLE_TO_CHANNELS["worker-dead-letter"],
        source=bus,
        publisher=bus,
        process=build_process_handler("worker-dead-letter", deps, dead_letter_max_attempts=max_attempts),
    )
    return main, retry


@pytest.mark.unit
def test_dead_letter_channels_cover_every_consumed_event() -> None:
    assert CANCEL_OPENED_DLQ == "key-events.portability_request_cancel_opened.dead-letter"
    assert CANCEL_OPENED_DLQ in ROLE_TO_CHANNELS["worker-dead-letter"]
    assert ROLE_TO_CHANNELS["worker-key-events"] == (KEY_EVENTS_CHANNEL,)


@pytest.mark.unit
def test_redelivery_succeeds_once_directory_recovers() -> None:
    record = make_record(state=KeyState.PORTABILITY_REQUEST_CANCEL_OPENED, claim_id="claim-1")
    gateway = StubDirectoryGateway(failures={"cancel_portability_claim": GatewayUnavailableError("offline")})
    deps, repository, _, bus = build_deps(record, claims=(make_claim("claim-1"),), gateway=gateway)
    main, retry = _worker_loops(deps, bus)
    bus.publish(make_message(KeyEventType.PORTABILITY_REQUEST_CANCEL_OPENED, record))

    async def _run() -> None:
        assert await main.run_once() is True
        assert repository.records["key-1"].state is KeyState.PORTABILITY_REQUEST_CANCEL_OPENED
        assert bus.pending(CANCEL_OPENED_DLQ) == 1

        gateway.failures.clear()
        assert await retry.run_once() is True
        assert await retry.run_once() is False

    asyncio.run(_run())

    assert repository.records["key-1"].state is KeyState.PORTABILITY_REQUEST_CANCEL_STARTED
    assert bus.emitted_types() == [KeyEventType.PORTABILITY_REQUEST_CANCEL_STARTED]
    assert [message.channel for message in bus.acked] == [KEY_EVENTS_CHANNEL, CANCEL_OPENED_DLQ]


@pytest.mark.unit
def test_exhausted_redelivery_parks_record_in_error() -> None:
    record = make_record(state=KeyState.PORTABILITY_REQUEST_CANCEL_OPENED, claim_id="claim-1")
    gateway = StubDirectoryGateway(failures={"cancel_portability_claim": GatewayUnavailableError("offline")})
    deps, repository, _, bus = build_deps(record, claims=(make_claim("claim-1"),), gateway=gateway)
    main, retry = _worker_loops(deps, bus, max_attempts=3)
    bus.publish(make_message(KeyEventType.PORTABILITY_REQUEST_CANCEL_OPENED, record))

    async def _run() -> None:
        await main.run_once()
        while await retry.run_once():
            pass

    asyncio.run(_run())

    attempts = [message.attempt for message, _ in bus.dead_letters]
    assert attempts == [1, 2, 3]
    assert len(gateway.calls_to("cancel_portability_claim")) == 3
    assert repository.records["key-1"].state is KeyState.ERROR
    assert repository.claims["claim-1"].status is ClaimStatus.CANCELED
    assert bus.emitted_types() == [KeyEventType.ERROR]


@pytest.mark.unit
def test_terminal_errors_are_acknowledged_without_dead_letter() -> None:
    record = make_record(state=KeyState.READY)
    deps, repository, _, bus = build_deps(record)
    main, _ = _worker_loops(deps, bus)
    bus.publish(make_message(KeyEventType.CLAIM_CLOSING, record))

    did_work = asyncio.run(main.run_once())

    assert did_work is True
    assert bus.dead_letters == []
    assert bus.pending(KEY_EVENTS_CHANNEL) == 0
    assert len(bus.acked) == 1
    assert repository.records["key-1"].state is KeyState.READY


@pytest.mark.unit
def test_invalid_payload_is_rejected_as_validation_error() -> None:
    deps, _, _, bus = build_deps()
    main, _ = _worker_loops(deps, bus)
    bus.publish(InboundMessage(event_type=KeyEventType.CONFIRMED, payload={"id": "", "state": "NOPE"}))

    asyncio.run(main.run_once())

    assert bus.dead_letters == []
    assert bus.emitted == []


@pytest.mark.unit
def test_unexpected_failures_are_routed_to_retry_channel() -> None:
    deps, _, _, bus = build_deps()

    async def _explode(message: InboundMessage) -> HandleResult:
        raise RuntimeError(f"boom on {message.event_type}")

    loop = WorkerLoop(
        role="worker-key-events",
        channels=(KEY_EVENTS_CHANNEL,),
        source=bus,
        publisher=bus,
        process=_explode,
    )
    record = make_record(state=KeyState.CONFIRMED)
    bus.publish(make_message(KeyEventType.CONFIRMED, record))

    asyncio.run(loop.run_once())

    assert [(message.attempt, channel) for message, channel in bus.dead_letters] == [
        (1, dead_letter_channel(KeyEventType.CONFIRMED))
    ]


@pytest.mark.unit
def test_idle_loop_reports_no_work() -> None:
    deps, _, _, bus = build_deps()
    main, retry = _worker_loops(deps, bus)

    assert asyncio.run(main.run_once()) is False
    assert asyncio.run(retry.run_once()) is False


@pytest.mark.unit
def test_unknown_role_has_no_handler() -> None:
    deps, _, _, _ = build_deps()

    with pytest.raises(ValueError, match="No worker handler"):
        build_process_handler("worker-unknown", deps)


@pytest.mark.unit
def test_exhausted_message_for_a_record_that_moved_on_is_dropped() -> None:
    record = make_record(state=KeyState.READY)
    deps, repository, gateway, bus = build_deps(record)
    _, retry = _worker_loops(deps, bus, max_attempts=3)
    stale = make_record(state=KeyState.PORTABILITY_REQUEST_CANCEL_OPENED)
    bus.publish(
        make_message(KeyEventType.PORTABILITY_REQUEST_CANCEL_OPENED, stale, attempt=3, channel=CANCEL_OPENED_DLQ)
    )

    assert asyncio.run(retry.run_once()) is True

    assert repository.records["key-1"].state is KeyState.READY
    assert repository.commits == []
    assert bus.emitted == []
    assert bus.dead_letters == []
    assert gateway.calls == []
    assert len(bus.acked) == 1


@pytest.mark.unit
def test_key_events_handler_also_redelivers_dead_letter_channels() -> None:
    record = make_record(state=KeyState.PORTABILITY_REQUEST_CANCEL_OPENED, claim_id="claim-1")
    deps, repository, _, bus = build_deps(record, claims=(make_claim("claim-1"),))
    loop = WorkerLoop(
        role="worker-key-events",
        channels=(KEY_EVENTS_CHANNEL, CANCEL_OPENED_DLQ),
        source=bus,
        publisher=bus,
        process=build_process_handler("worker-key-events", deps, dead_letter_max_attempts=1),
    )
    bus.publish(
        make_message(KeyEventType.PORTABILITY_REQUEST_CANCEL_OPENED, record, attempt=1, channel=CANCEL_OPENED_DLQ)
    )

    asyncio.run(loop.run_once())

    assert repository.records["key-1"].state is KeyState.ERROR
    assert repository.claims["claim-1"].status is ClaimStatus.CANCELED


@pytest.mark.unit
def test_message_stays_unacknowledged_when_dead_letter_publish_fails() -> None:
    record = make_record(state=KeyState.CONFIRMED)
    deps, _, _, bus = build_deps(record)

    class _BrokenPublisher:
        async def emit(self, event_type: KeyEventType, payload: dict[str, str]) -> None:
            del event_type, payload

        async def dead_letter(self, message: InboundMessage, channel: str) -> None:
            raise ConnectionError(f"queue offline for {channel}")

    async def _explode(message: InboundMessage) -> HandleResult:
        raise RuntimeError(f"boom on {message.event_type}")

    loop = WorkerLoop(
        role="worker-key-events",
        channels=(KEY_EVENTS_CHANNEL,),
        source=bus,
        publisher=_BrokenPublisher(),
        process=_explode,
    )
    bus.publish(make_message(KeyEventType.CONFIRMED, record))

    with pytest.raises(ConnectionError):
        asyncio.run(loop.run_once())

    assert bus.acked == []
