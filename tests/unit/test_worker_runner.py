from __future__ import annotations

import asyncio
import logging

import pytest

from app.workers.handlers.factory import build_process_handler
from app.workers.loop import WorkerLoop
from app.workers.runner import (
    WorkerRuntimeSettings,
    WorkerRuntimeState,
    run_worker_until_stopped,
    worker_runtime_settings_from_env,
)
from app.domain.models import KeyEventType, KeyState
from tests.unit.factories import build_deps, make_message, make_record


@pytest.mark.unit
def test_settings_from_env_fall_back_on_bad_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORKER_POLL_INTERVAL_MS", "50")
    monkeypatch.setenv("WORKER_IDLE_BACKOFF_MS", "not-a-number")
    monkeypatch.setenv("DIRECTORY_GATEWAY_TIMEOUT_MS", "-1")
    monkeypatch.setenv("DEAD_LETTER_MAX_ATTEMPTS", "7")
    monkeypatch.setenv("MESSAGE_LEASE_SECONDS", "90")

    settings = worker_runtime_settings_from_env()

    assert settings.poll_interval_ms == 50
    assert settings.idle_backoff_ms == 1000
    assert settings.gateway_timeout_ms == 5000
    assert settings.dead_letter_max_attempts == 7
    assert settings.message_lease_seconds == 90


@pytest.mark.unit
def test_runner_processes_queue_until_stopped() -> None:
    record = make_record(state=KeyState.CONFIRMED)
    deps, repository, _, bus = build_deps(record)
    bus.publish(make_message(KeyEventType.CONFIRMED, record))
    loop = WorkerLoop(
        role="worker-key-events",
        channels=("key-events",),
        source=bus,
        publisher=bus,
        process=build_process_handler("worker-key-events", deps),
    )
    state = WorkerRuntimeState()

    async def _run() -> None:
        stop_event = asyncio.Event()
        task = asyncio.create_task(
            run_worker_until_stopped(
                worker_loop=loop,
                role="worker-key-events",
                run_id="run-1",
                stop_event=stop_event,
                settings=WorkerRuntimeSettings(poll_interval_ms=1, idle_backoff_ms=1, error_backoff_ms=1),
                logger=logging.getLogger("runtime"),
                state=state,
            )
        )
        for _ in range(200):
            if repository.records["key-1"].state is KeyState.ADD_KEY_READY:
                break
            await asyncio.sleep(0.01)
        stop_event.set()
        await task

    asyncio.run(_run())

    assert repository.records["key-1"].state is KeyState.ADD_KEY_READY
    assert state.started is True
    assert state.stopped is True
    assert state.messages_total == 1
    assert state.errors_total == 0
