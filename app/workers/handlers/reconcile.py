from __future__ import annotations

from dataclasses import dataclass, field
import logging

from app.domain.errors import ConsistencyError
from app.domain.models import KeyState
from app.workers.handlers.common import apply_decision, load_counterpart_claim
from app.workers.handlers.deps import WorkerDeps

COMPONENT_ID = "worker.reconcile.reconcile_p2p_pairs"
logger = logging.getLogger("runtime")


@dataclass
class ReconcileReport:
    scanned: int = 0
    repaired: list[str] = field(default_factory=list)
    ambiguous: list[str] = field(default_factory=list)
    inconsistent: list[str] = field(default_factory=list)


async def reconcile_p2p_pairs(deps: WorkerDeps) -> ReconcileReport:
    """Find P2P pairs left half-applied and finish the ones that are unambiguous.

    A CLAIM_CLOSED donor whose counterpart still waits can only mean the
    counterpart write was lost, so the counterpart is completed. A READY
    record next to a waiting counterpart may be a lost denial or a fresh
    claim, so it is only reported.
    """
    report = ReconcileReport()
    candidates = await deps.repository.list_by_states((KeyState.CLAIM_CLOSED, KeyState.READY))
    for record in candidates:
        report.scanned += 1
        try:
            counterpart = await deps.resolver.find_counterpart(record.value, record.id)
        except ConsistencyError:
            logger.warning(
                "reconcile found more than one counterpart",
                extra={"key_id": record.id, "error_code": "consistency_violation"},
            )
            report.inconsistent.append(record.id)
            continue
        if counterpart is None or counterpart.state is not KeyState.OWNERSHIP_WAITING:
            continue

        if record.state is KeyState.READY:
            report.ambiguous.append(record.id)
            continue

        counterpart_claim = await load_counterpart_claim(deps, counterpart)
        decision = deps.machine.complete_transfer(
            record,
            counterpart=counterpart,
            counterpart_claim=counterpart_claim,
        )
        await apply_decision(deps, decision)
        report.repaired.append(counterpart.id)

    logger.info(
        "reconcile finished",
        extra={"operation": "reconcile_p2p_pairs"},
    )
    return report
