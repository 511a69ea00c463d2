from __future__ import annotations

from collections.abc import Awaitable
import logging

from app.domain.errors import ClaimNotFoundError, GatewayUnavailableError, KeyNotFoundError, MissingDataError
from app.domain.lifecycle import dead_letter_channel
from app.domain.models import Claim, Decision, HandleResult, InboundMessage, KeyRecord
from app.domain.state_machine import Guard, KeyOperation
from app.workers.handlers.deps import WorkerDeps

logger = logging.getLogger("runtime")


async def load_record(deps: WorkerDeps, key_id: str) -> KeyRecord:
    record = await deps.repository.get_by_id(key_id)
    if record is None:
        raise KeyNotFoundError(f"key {key_id} not found")
    return record


async def load_claim(deps: WorkerDeps, record: KeyRecord, *, required: bool) -> Claim | None:
    if record.claim_id is None:
        if required:
            raise MissingDataError(f"key {record.id} has no claim reference")
        return None
    claim = await deps.repository.get_claim_by_id(record.claim_id)
    if claim is None:
        raise ClaimNotFoundError(f"claim {record.claim_id} referenced by key {record.id} not found")
    return claim


async def load_counterpart_claim(deps: WorkerDeps, counterpart: KeyRecord | None) -> Claim | None:
    # A dangling reference on the other side does not block this record.
    if counterpart is None or counterpart.claim_id is None:
        return None
    return await deps.repository.get_claim_by_id(counterpart.claim_id)


def short_circuit(deps: WorkerDeps, operation: KeyOperation, record: KeyRecord) -> HandleResult | None:
    """Return a result when the stored state already answers the trigger."""
    verdict = deps.machine.guard(operation, record)
    if verdict is Guard.PROCEED:
        return None
    logger.info(
        "key event skipped",
        extra={"key_id": record.id, "state": record.state, "operation": operation, "guard": verdict},
    )
    return HandleResult(success=True, detail=f"{operation} {verdict}", record=record)


async def decide_and_apply(
    deps: WorkerDeps,
    *,
    message: InboundMessage,
    decide: Awaitable[Decision],
) -> HandleResult:
    try:
        decision = await decide
    except GatewayUnavailableError as exc:
        return await dead_letter(deps, message=message, exc=exc)
    return await apply_decision(deps, decision)


async def apply_decision(deps: WorkerDeps, decision: Decision) -> HandleResult:
    if not decision.changed:
        return HandleResult(success=True, detail="no change", record=decision.record)

    records = [decision.record]
    if decision.counterpart is not None:
        records.append(decision.counterpart)
    await deps.repository.commit(records=records, claims=decision.claims)

    for event in decision.events:
        await deps.publisher.emit(event.event_type, event.payload())

    logger.info(
        "key transitioned",
        extra={
            "key_id": decision.record.id,
            "state": decision.next_state,
            "event_type": ",".join(event.event_type for event in decision.events),
        },
    )
    return HandleResult(
        success=True,
        detail=f"moved to {decision.next_state}",
        record=decision.record,
        changed=True,
    )


async def dead_letter(deps: WorkerDeps, *, message: InboundMessage, exc: Exception) -> HandleResult:
    channel = dead_letter_channel(message.event_type)
    await deps.publisher.dead_letter(message, channel)
    logger.warning(
        "directory unavailable, message dead-lettered",
        extra={
            "event_type": message.event_type,
            "channel": channel,
            "attempt": message.attempt,
            "error_code": "directory_unavailable",
        },
    )
    return HandleResult(success=False, detail=str(exc), dead_lettered=True)
