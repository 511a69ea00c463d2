from __future__ import annotations

from app.domain.lifecycle import dead_letter_channel
from app.domain.models import KeyEventType
from app.domain.state_machine import KeyOperation

KEY_EVENTS_CHANNEL = "key-events"

# Inbound triggers consumed from the directory feed and the operation each one drives.
EVENT_OPERATIONS: dict[KeyEventType, KeyOperation] = {
    KeyEventType.CONFIRMED: KeyOperation.CONFIRM,
    KeyEventType.CLAIM_CLOSING: KeyOperation.CLAIM_CLOSING,
    KeyEventType.CLAIM_DENIED: KeyOperation.CLAIM_DENIED,
    KeyEventType.PORTABILITY_REQUEST_CANCEL_OPENED: KeyOperation.PORTABILITY_REQUEST_CANCEL_OPENED,
    KeyEventType.PORTABILITY_REQUEST_CANCEL_STARTED: KeyOperation.PORTABILITY_REQUEST_CANCEL_STARTED,
    KeyEventType.PORTABILITY_REQUEST_CONFIRM_OPENED: KeyOperation.PORTABILITY_REQUEST_CONFIRM_OPENED,
    KeyEventType.PORTABILITY_REQUEST_CONFIRM_STARTED: KeyOperation.PORTABILITY_REQUEST_CONFIRM_STARTED,
}

CONSUMED_EVENT_TYPES: tuple[KeyEventType, ...] = tuple(EVENT_OPERATIONS)

DEAD_LETTER_CHANNELS: tuple[str, ...] = tuple(dead_letter_channel(event_type) for event_type in CONSUMED_EVENT_TYPES)

ROLE_TO_CHANNELS: dict[str, tuple[str, ...]] = {
    "worker-key-events": (KEY_EVENTS_CHANNEL,),
    "worker-dead-letter": DEAD_LETTER_CHANNELS,
}
