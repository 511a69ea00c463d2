from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging
import os

from app.api.handlers.deps import ApiDeps
from app.clients.stub import InMemoryEventBus, StubDirectoryGateway
from app.clients.timeout import TimeoutDirectoryGateway
from app.domain.contracts import DirectoryGateway, KeyRepository, MessageSink
from app.repositories.postgres import AsyncpgPoolManager, PostgresKeyRepository, PostgresMessageBus
from app.repositories.stub import InMemoryKeyRepository
from app.roles import RuntimeRole
from app.workers.handlers.deps import WorkerDeps
from app.workers.handlers.factory import build_process_handler
from app.workers.loop import WorkerLoop
from app.workers.roles import DEAD_LETTER_CHANNELS, KEY_EVENTS_CHANNEL, ROLE_TO_CHANNELS
from app.workers.runner import WorkerRuntimeSettings, worker_runtime_settings_from_env

logger = logging.getLogger("runtime")


@dataclass
class RuntimeContainer:
    repository: KeyRepository
    gateway: DirectoryGateway
    bus: InMemoryEventBus | PostgresMessageBus
    settings: WorkerRuntimeSettings
    api_deps: ApiDeps
    worker_loop: WorkerLoop | None
    on_startup: Callable[[], Awaitable[None]] | None
    on_shutdown: Callable[[], Awaitable[None]] | None


def build_runtime_container(role: RuntimeRole) -> RuntimeContainer:
    database_url = os.getenv("DATABASE_URL")
    settings = worker_runtime_settings_from_env()
    on_startup: Callable[[], Awaitable[None]] | None = None
    on_shutdown: Callable[[], Awaitable[None]] | None = None
    repository: KeyRepository
    bus: InMemoryEventBus | PostgresMessageBus
    channels = ROLE_TO_CHANNELS.get(role.name, ())
    if database_url:
        pool_manager = AsyncpgPoolManager(dsn=database_url)
        repository = PostgresKeyRepository(pool_manager=pool_manager)
        bus = PostgresMessageBus(pool_manager=pool_manager, lease_seconds=settings.message_lease_seconds)
        on_startup = pool_manager.startup
        on_shutdown = pool_manager.shutdown
    else:
        repository = InMemoryKeyRepository()
        bus = InMemoryEventBus()
        if KEY_EVENTS_CHANNEL in channels:
            # Without a shared queue no other process can see this bus, so retries stay here.
            channels = channels + DEAD_LETTER_CHANNELS
            logger.info(
                "no DATABASE_URL; dead-letter channels are polled in-process",
                extra={"role": role.name, "channel": ",".join(channels)},
            )
    gateway = TimeoutDirectoryGateway(inner=StubDirectoryGateway(), timeout_ms=settings.gateway_timeout_ms)

    # An in-memory inbox is only useful to a worker in the same process.
    inbox: MessageSink | None = bus if database_url or KEY_EVENTS_CHANNEL in channels else None
    api_deps = ApiDeps(repository=repository, gateway=gateway, publisher=bus, inbox=inbox)

    worker_loop: WorkerLoop | None = None
    if role.runs_worker:
        worker_deps = WorkerDeps(repository=repository, gateway=gateway, publisher=bus)
        worker_loop = WorkerLoop(
            role=role.name,
            channels=channels,
            source=bus,
            publisher=bus,
            process=build_process_handler(
                role.name,
                worker_deps,
                dead_letter_max_attempts=settings.dead_letter_max_attempts,
            ),
        )

    return RuntimeContainer(
        repository=repository,
        gateway=gateway,
        bus=bus,
        settings=settings,
        api_deps=api_deps,
        worker_loop=worker_loop,
        on_startup=on_startup,
        on_shutdown=on_shutdown,
    )
