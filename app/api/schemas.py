from __future__ import annotations

from pydantic import BaseModel, Field

from app.domain.models import ClaimReason, KeyEventType, KeyState, KeyType


class ErrorResponse(BaseModel):
    detail: str


class WorkerMetrics(BaseModel):
    started: bool = False
    stopped: bool = False
    ticks_total: int = 0
    messages_total: int = 0
    idle_ticks_total: int = 0
    errors_total: int = 0


class HealthResponse(BaseModel):
    status: str
    role: str


class ReadyResponse(BaseModel):
    status: str
    role: str
    worker_loop_enabled: bool
    worker_loop_ready: bool
    worker_metrics: WorkerMetrics = Field(default_factory=WorkerMetrics)


class KeyRecordResponse(BaseModel):
    id: str
    key_type: KeyType
    owner_id: str
    state: KeyState
    value: str | None = None
    claim_id: str | None = None


class KeyCommandResponse(BaseModel):
    key: KeyRecordResponse
    changed: bool
    detail: str


class CancelPortabilityRequest(BaseModel):
    value: str = Field(min_length=1, max_length=256)
    reason: ClaimReason | None = None


class CancelOwnershipRequest(BaseModel):
    reason: ClaimReason | None = None


class DismissKeyRequest(BaseModel):
    owner_id: str = Field(min_length=1, max_length=128)


class ReconcileResponse(BaseModel):
    scanned: int
    repaired: list[str]
    ambiguous: list[str]
    inconsistent: list[str]


class KeyEventBody(BaseModel):
    id: str = Field(min_length=1)
    owner_id: str = Field(min_length=1)
    state: KeyState
    reason: ClaimReason | None = None


class PublishEventResponse(BaseModel):
    event_type: KeyEventType
    channel: str
    accepted: bool
