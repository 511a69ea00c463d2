from __future__ import annotations

import asyncio
from dataclasses import dataclass, fields
import logging
import os

from app.workers.loop import WorkerLoop

# Settings field -> environment variable.
_SETTINGS_ENV = {
    "poll_interval_ms": "WORKER_POLL_INTERVAL_MS",
    "idle_backoff_ms": "WORKER_IDLE_BACKOFF_MS",
    "error_backoff_ms": "WORKER_ERROR_BACKOFF_MS",
    "gateway_timeout_ms": "DIRECTORY_GATEWAY_TIMEOUT_MS",
    "dead_letter_max_attempts": "DEAD_LETTER_MAX_ATTEMPTS",
    "message_lease_seconds": "MESSAGE_LEASE_SECONDS",
}


@dataclass(frozen=True)
class WorkerRuntimeSettings:
    poll_interval_ms: int = 200
    idle_backoff_ms: int = 1000
    error_backoff_ms: int = 2000
    gateway_timeout_ms: int = 5000
    dead_letter_max_attempts: int = 5
    message_lease_seconds: int = 30


@dataclass
class WorkerRuntimeState:
    started: bool = False
    stopped: bool = False
    ticks_total: int = 0
    messages_total: int = 0
    idle_ticks_total: int = 0
    errors_total: int = 0

    def record_tick(self, *, did_work: bool) -> None:
        self.ticks_total += 1
        if did_work:
            self.messages_total += 1
        else:
            self.idle_ticks_total += 1

    def record_error(self) -> None:
        self.ticks_total += 1
        self.errors_total += 1


def worker_runtime_settings_from_env() -> WorkerRuntimeSettings:
    """Read settings from the environment; unset, malformed or non-positive values keep the default."""
    defaults = WorkerRuntimeSettings()
    values = {
        item.name: _env_int(_SETTINGS_ENV[item.name], getattr(defaults, item.name))
        for item in fields(WorkerRuntimeSettings)
    }
    return WorkerRuntimeSettings(**values)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


async def _wait_or_stop(stop_event: asyncio.Event, delay_ms: int) -> None:
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=delay_ms / 1000)
    except TimeoutError:
        pass


async def run_worker_until_stopped(
    *,
    worker_loop: WorkerLoop,
    role: str,
    run_id: str,
    stop_event: asyncio.Event,
    settings: WorkerRuntimeSettings,
    logger: logging.Logger,
    state: WorkerRuntimeState | None = None,
) -> None:
    state = state if state is not None else WorkerRuntimeState()
    context = {"role": role, "service": role, "run_id": run_id, "channel": ",".join(worker_loop.channels)}
    state.started = True
    logger.info("worker loop started", extra=context)

    while not stop_event.is_set():
        try:
            did_work = await worker_loop.run_once()
        except Exception:
            # A tick only fails when the bus or the repository itself is broken.
            state.record_error()
            logger.exception("worker tick error", extra=context)
            await _wait_or_stop(stop_event, settings.error_backoff_ms)
            continue

        state.record_tick(did_work=did_work)
        await _wait_or_stop(stop_event, settings.poll_interval_ms if did_work else settings.idle_backoff_ms)

    state.stopped = True
    logger.info("worker loop stopped", extra=context)
