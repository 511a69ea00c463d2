from __future__ import annotations

from app.api.handlers.deps import ApiDeps
from app.api.schemas import KeyCommandResponse, KeyRecordResponse
from app.domain.errors import KeyNotFoundError
from app.domain.models import ClaimReason, HandleResult, KeyRecord
from app.workers.handlers import dismiss, ownership_cancel_process, portability_cancel_process

COMPONENT_ID_GET = "api.get_key"
COMPONENT_ID_PORTABILITY_CANCEL = "api.cancel_portability"
COMPONENT_ID_OWNERSHIP_CANCEL = "api.cancel_ownership"
COMPONENT_ID_DISMISS = "api.dismiss_key"


async def get_key_handler(deps: ApiDeps, *, key_id: str) -> KeyRecordResponse:
    record = await deps.repository.get_by_id(key_id)
    if record is None:
        raise KeyNotFoundError(f"key {key_id} not found")
    return key_response(record)


async def cancel_portability_handler(
    deps: ApiDeps,
    *,
    value: str,
    reason: ClaimReason | None,
) -> KeyCommandResponse:
    result = await portability_cancel_process.process_command(deps.worker_deps, value=value, reason=reason)
    return _command_response(result)


async def cancel_ownership_handler(
    deps: ApiDeps,
    *,
    key_id: str,
    reason: ClaimReason | None,
) -> KeyCommandResponse:
    result = await ownership_cancel_process.process_command(deps.worker_deps, key_id=key_id, reason=reason)
    return _command_response(result)


async def dismiss_key_handler(deps: ApiDeps, *, key_id: str, owner_id: str) -> KeyCommandResponse:
    result = await dismiss.process_command(deps.worker_deps, key_id=key_id, owner_id=owner_id)
    return _command_response(result)


def key_response(record: KeyRecord) -> KeyRecordResponse:
    return KeyRecordResponse(
        id=record.id,
        key_type=record.key_type,
        owner_id=record.owner_id,
        state=record.state,
        value=record.value,
        claim_id=record.claim_id,
    )


def _command_response(result: HandleResult) -> KeyCommandResponse:
    if result.record is None:
        raise RuntimeError("key command finished without a record")
    return KeyCommandResponse(
        key=key_response(result.record),
        changed=result.changed,
        detail=result.detail,
    )
