from __future__ import annotations

from contextlib import asynccontextmanager
import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
import logging

from fastapi import FastAPI, HTTPException

from app.api.handlers.deps import ApiDeps
from app.api.handlers.internal import publish_event_handler, reconcile_handler
from app.api.handlers.keys import (
    cancel_ownership_handler,
    cancel_portability_handler,
    dismiss_key_handler,
    get_key_handler,
)
from app.api.schemas import (
    CancelOwnershipRequest,
    CancelPortabilityRequest,
    DismissKeyRequest,
    ErrorResponse,
    HealthResponse,
    KeyCommandResponse,
    KeyEventBody,
    KeyRecordResponse,
    PublishEventResponse,
    ReadyResponse,
    ReconcileResponse,
    WorkerMetrics,
)
from app.domain.error_taxonomy import ErrorCode, error_code_for
from app.domain.errors import DomainError
from app.domain.models import KeyEventType
from app.workers.loop import WorkerLoop
from app.workers.runner import (
    WorkerRuntimeSettings,
    WorkerRuntimeState,
    run_worker_until_stopped,
    worker_runtime_settings_from_env,
)

ERROR_STATUS_CODES: dict[ErrorCode, int] = {
    "validation_error": 422,
    "missing_data": 409,
    "invalid_state": 409,
    "key_not_found": 404,
    "claim_not_found": 404,
    "consistency_violation": 500,
    "directory_unavailable": 503,
    "directory_rejected": 502,
    "internal_error": 500,
}

_ERROR_RESPONSES = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def _http_error(exc: DomainError) -> HTTPException:
    error_code = error_code_for(exc)
    return HTTPException(status_code=ERROR_STATUS_CODES[error_code], detail=str(exc))


@dataclass
class BackgroundWorker:
    """Worker loop task owned by the app lifespan."""

    loop: WorkerLoop
    settings: WorkerRuntimeSettings
    state: WorkerRuntimeState = field(default_factory=WorkerRuntimeState)
    task: asyncio.Task[None] | None = None
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)

    def start(self, *, role: str, run_id: str, logger: logging.Logger) -> None:
        self.task = asyncio.create_task(
            run_worker_until_stopped(
                worker_loop=self.loop,
                role=role,
                run_id=run_id,
                stop_event=self.stop_event,
                settings=self.settings,
                logger=logger,
                state=self.state,
            )
        )

    async def stop(self) -> None:
        self.stop_event.set()
        if self.task is not None:
            await self.task

    @property
    def running(self) -> bool:
        return self.state.started and self.task is not None and not self.task.done()

    def metrics(self) -> WorkerMetrics:
        return WorkerMetrics.model_validate(asdict(self.state))


def build_app(
    role: str,
    run_id: str,
    worker_loop: WorkerLoop | None = None,
    worker_runtime_settings: WorkerRuntimeSettings | None = None,
    api_deps: ApiDeps | None = None,
    on_startup: Callable[[], Awaitable[None]] | None = None,
    on_shutdown: Callable[[], Awaitable[None]] | None = None,
) -> FastAPI:
    logger = logging.getLogger("runtime")
    context = {"role": role, "service": role, "run_id": run_id}
    worker: BackgroundWorker | None = None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal worker
        del app
        logger.info("role started", extra=context)
        if on_startup is not None:
            await on_startup()
        if worker_loop is not None:
            worker = BackgroundWorker(
                loop=worker_loop,
                settings=worker_runtime_settings or worker_runtime_settings_from_env(),
            )
            worker.start(role=role, run_id=run_id, logger=logger)

        yield

        if worker is not None:
            await worker.stop()
        if on_shutdown is not None:
            await on_shutdown()
        logger.info("role stopped", extra=context)

    app = FastAPI(title="directory-key-lifecycle", version="0.1.0", lifespan=lifespan)

    def _deps() -> ApiDeps:
        if api_deps is None:
            raise HTTPException(status_code=503, detail="api dependencies are not available")
        return api_deps

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", role=role)

    @app.get("/ready", response_model=ReadyResponse, tags=["System"])
    async def ready() -> ReadyResponse:
        if worker_loop is None:
            return ReadyResponse(status="ready", role=role, worker_loop_enabled=False, worker_loop_ready=True)
        return ReadyResponse(
            status="ready",
            role=role,
            worker_loop_enabled=True,
            worker_loop_ready=worker is not None and worker.running,
            worker_metrics=worker.metrics() if worker is not None else WorkerMetrics(),
        )

    @app.get("/keys/{key_id}", response_model=KeyRecordResponse, responses=_ERROR_RESPONSES, tags=["Keys"])
    async def get_key(key_id: str) -> KeyRecordResponse:
        try:
            return await get_key_handler(_deps(), key_id=key_id)
        except DomainError as exc:
            raise _http_error(exc) from exc

    @app.post(
        "/keys/portability/cancel",
        response_model=KeyCommandResponse,
        responses=_ERROR_RESPONSES,
        tags=["Keys"],
    )
    async def cancel_portability(request: CancelPortabilityRequest) -> KeyCommandResponse:
        try:
            return await cancel_portability_handler(_deps(), value=request.value, reason=request.reason)
        except DomainError as exc:
            raise _http_error(exc) from exc

    @app.post(
        "/keys/{key_id}/ownership/cancel",
        response_model=KeyCommandResponse,
        responses=_ERROR_RESPONSES,
        tags=["Keys"],
    )
    async def cancel_ownership(key_id: str, request: CancelOwnershipRequest) -> KeyCommandResponse:
        try:
            return await cancel_ownership_handler(_deps(), key_id=key_id, reason=request.reason)
        except DomainError as exc:
            raise _http_error(exc) from exc

    @app.post(
        "/keys/{key_id}/dismiss",
        response_model=KeyCommandResponse,
        responses=_ERROR_RESPONSES,
        tags=["Keys"],
    )
    async def dismiss_key(key_id: str, request: DismissKeyRequest) -> KeyCommandResponse:
        try:
            return await dismiss_key_handler(_deps(), key_id=key_id, owner_id=request.owner_id)
        except DomainError as exc:
            raise _http_error(exc) from exc

    @app.post("/internal/reconcile", response_model=ReconcileResponse, tags=["Internal"])
    async def reconcile() -> ReconcileResponse:
        return await reconcile_handler(_deps())

    @app.post(
        "/internal/events/{event_type}",
        response_model=PublishEventResponse,
        status_code=202,
        tags=["Internal"],
    )
    async def publish_event(event_type: KeyEventType, body: KeyEventBody) -> PublishEventResponse:
        deps = _deps()
        if deps.inbox is None:
            raise HTTPException(status_code=503, detail="no shared message queue; set DATABASE_URL")
        return await publish_event_handler(deps, event_type=event_type, body=body)

    return app
