from __future__ import annotations

from app.domain.errors import ConsistencyError, KeyNotFoundError
from app.domain.models import ClaimReason, HandleResult, KeyRecord, KeyState
from app.domain.state_machine import GUARDS, Guard, KeyOperation
from app.workers.handlers.common import apply_decision, load_claim, short_circuit
from app.workers.handlers.deps import WorkerDeps

COMPONENT_ID = "worker.portability_cancel_process.process_command"


async def process_command(
    deps: WorkerDeps,
    *,
    value: str,
    reason: ClaimReason | None = None,
) -> HandleResult:
    """Administrative cancel of a portability claim, addressed by key value."""
    record = await _resolve_by_value(deps, value)
    skipped = short_circuit(deps, KeyOperation.PORTABILITY_CANCEL_PROCESS, record)
    if skipped is not None:
        return skipped

    claim = await load_claim(deps, record, required=True)
    return await apply_decision(
        deps,
        deps.machine.portability_cancel_process(record, claim=claim, reason=reason),
    )


async def _resolve_by_value(deps: WorkerDeps, value: str) -> KeyRecord:
    holders = await deps.repository.get_by_value_excluding_states(value, (KeyState.CANCELED,))
    if not holders:
        raise KeyNotFoundError("no active key holds the requested value")

    # A P2P pair shares the value; only one side can be in a portability state.
    table = GUARDS[KeyOperation.PORTABILITY_CANCEL_PROCESS]
    candidates = [record for record in holders if table[record.state] is not Guard.INVALID]
    if len(candidates) > 1:
        joined_ids = ", ".join(sorted(record.id for record in candidates))
        raise ConsistencyError(f"value is in portability on more than one record: {joined_ids}")
    if candidates:
        return candidates[0]
    return sorted(holders, key=lambda record: record.id)[0]
