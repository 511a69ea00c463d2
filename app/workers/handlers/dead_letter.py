from __future__ import annotations

from dataclasses import replace
import logging

from app.domain.errors import DomainValidationError
from app.domain.models import HandleResult, InboundMessage
from app.workers.handlers.common import apply_decision, load_record
from app.workers.handlers.deps import WorkerDeps
from app.workers.loop import MessageHandler
from app.workers.roles import EVENT_OPERATIONS
from app.workers.schemas import parse_payload

COMPONENT_ID = "worker.dead_letter.process_message"
logger = logging.getLogger("runtime")


async def process_message(
    deps: WorkerDeps,
    *,
    message: InboundMessage,
    dispatch: MessageHandler,
    max_attempts: int,
) -> HandleResult:
    """Redeliver a dead-lettered message to the handler of its event type.

    The handler dead-letters again on another transient failure, carrying the
    bumped attempt. Once the budget is spent the record is parked in ERROR and
    its open claim is canceled, unless the record has meanwhile left the state
    the message was aimed at.
    """
    if message.attempt >= max_attempts:
        return await _exhaust(deps, message=message)
    return await dispatch(replace(message, attempt=message.attempt + 1))


async def _exhaust(deps: WorkerDeps, *, message: InboundMessage) -> HandleResult:
    operation = EVENT_OPERATIONS.get(message.event_type)
    if operation is None:
        raise DomainValidationError(f"No key event handler for '{message.event_type}'")
    payload = parse_payload(message)
    record = await load_record(deps, payload.id)
    extra = {
        "key_id": record.id,
        "event_type": message.event_type,
        "channel": message.channel,
        "attempt": message.attempt,
        "state": record.state,
        "operation": operation,
    }

    if not deps.machine.accepts(operation, record):
        logger.info("stale dead-letter message dropped", extra=extra)
        return HandleResult(success=True, detail=f"stale {operation} for state {record.state}", record=record)

    claim = None
    if record.claim_id is not None:
        # A dangling reference must not keep the record out of ERROR.
        claim = await deps.repository.get_claim_by_id(record.claim_id)
    logger.error("dead-letter attempts exhausted", extra={**extra, "error_code": "directory_unavailable"})
    result = await apply_decision(deps, deps.machine.fail(record, claim=claim, reason=payload.reason))
    return replace(result, success=False, detail=f"gave up after {message.attempt} attempts")
