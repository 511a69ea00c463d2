from __future__ import annotations

from app.domain.errors import KeyNotFoundError
from app.domain.models import HandleResult
from app.workers.handlers.common import apply_decision, load_record
from app.workers.handlers.deps import WorkerDeps

COMPONENT_ID = "worker.dismiss.process_command"


async def process_command(deps: WorkerDeps, *, key_id: str, owner_id: str) -> HandleResult:
    """Owner acknowledges an outcome and the key settles into its resting state."""
    record = await load_record(deps, key_id)
    if record.owner_id != owner_id:
        # Foreign keys are indistinguishable from missing ones.
        raise KeyNotFoundError(f"key {key_id} not found")
    return await apply_decision(deps, deps.machine.dismiss(record))
