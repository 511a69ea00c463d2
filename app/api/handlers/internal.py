from __future__ import annotations

from app.api.handlers.deps import ApiDeps
from app.api.schemas import KeyEventBody, PublishEventResponse, ReconcileResponse
from app.domain.models import InboundMessage, KeyEventType
from app.workers.handlers.reconcile import reconcile_p2p_pairs
from app.workers.roles import CONSUMED_EVENT_TYPES, KEY_EVENTS_CHANNEL

COMPONENT_ID_RECONCILE = "api.reconcile_p2p_pairs"
COMPONENT_ID_PUBLISH = "api.publish_key_event"


async def reconcile_handler(deps: ApiDeps) -> ReconcileResponse:
    report = await reconcile_p2p_pairs(deps.worker_deps)
    return ReconcileResponse(
        scanned=report.scanned,
        repaired=report.repaired,
        ambiguous=report.ambiguous,
        inconsistent=report.inconsistent,
    )


async def publish_event_handler(
    deps: ApiDeps,
    *,
    event_type: KeyEventType,
    body: KeyEventBody,
) -> PublishEventResponse:
    """Queue a directory notification for the key events worker."""
    if event_type not in CONSUMED_EVENT_TYPES:
        return PublishEventResponse(event_type=event_type, channel=KEY_EVENTS_CHANNEL, accepted=False)
    if deps.inbox is None:
        raise RuntimeError("no message inbox is configured")
    await deps.inbox.enqueue(
        InboundMessage(
            event_type=event_type,
            payload=body.model_dump(mode="json", exclude_none=True),
            channel=KEY_EVENTS_CHANNEL,
        )
    )
    return PublishEventResponse(event_type=event_type, channel=KEY_EVENTS_CHANNEL, accepted=True)
