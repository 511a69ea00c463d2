from __future__ import annotations

from app.domain.models import ClaimStatus, KeyEventType, KeyState

TERMINAL_STATES: frozenset[KeyState] = frozenset(
    {
        KeyState.DELETED,
        KeyState.CANCELED,
        KeyState.ERROR,
    }
)

# Records in these states no longer hold their value in the directory.
RELEASED_STATES: tuple[KeyState, ...] = (KeyState.CANCELED, KeyState.DELETED)

CLAIM_STATES: frozenset[KeyState] = frozenset(
    state
    for state in KeyState
    if state.value.startswith(("CLAIM_", "PORTABILITY_", "OWNERSHIP_"))
)

READY_STATES: frozenset[KeyState] = frozenset({KeyState.ADD_KEY_READY, KeyState.READY})


# Claim status implied by each transition that settles a claim.
# A transition listed here must update the claim in the same commit.
CLAIM_SETTLEMENTS: dict[tuple[KeyState, KeyState], ClaimStatus] = {
    (KeyState.CLAIM_CLOSING, KeyState.CLAIM_CLOSED): ClaimStatus.CLOSED,
    (KeyState.CLAIM_DENIED, KeyState.READY): ClaimStatus.DENIED,
    (KeyState.PORTABILITY_STARTED, KeyState.PORTABILITY_CANCELED): ClaimStatus.CANCELED,
    (KeyState.PORTABILITY_CONFIRMED, KeyState.PORTABILITY_CANCELED): ClaimStatus.CANCELED,
    (KeyState.PORTABILITY_REQUEST_CANCEL_STARTED, KeyState.READY): ClaimStatus.CANCELED,
    (KeyState.PORTABILITY_REQUEST_CONFIRM_STARTED, KeyState.CANCELED): ClaimStatus.CONFIRMED,
    (KeyState.OWNERSHIP_WAITING, KeyState.OWNERSHIP_READY): ClaimStatus.CONFIRMED,
    (KeyState.OWNERSHIP_STARTED, KeyState.OWNERSHIP_CANCELED): ClaimStatus.CANCELED,
    (KeyState.OWNERSHIP_WAITING, KeyState.OWNERSHIP_CANCELED): ClaimStatus.CANCELED,
    (KeyState.OWNERSHIP_CONFIRMED, KeyState.OWNERSHIP_CANCELED): ClaimStatus.CANCELED,
}

# Parking a record in ERROR abandons whatever claim it was working on.
CLAIM_SETTLEMENTS.update({(state, KeyState.ERROR): ClaimStatus.CANCELED for state in CLAIM_STATES})


# Outbox for emitted notifications; relayed to the directory feed outside this service.
NOTIFICATIONS_CHANNEL = "key-notifications"


# Notification emitted when a record lands in a state.
STATE_EVENTS: dict[KeyState, KeyEventType] = {
    KeyState.ADD_KEY_READY: KeyEventType.ADD_READY,
    KeyState.READY: KeyEventType.READY,
    KeyState.CANCELED: KeyEventType.CANCELED,
    KeyState.DELETED: KeyEventType.DELETED,
    KeyState.ERROR: KeyEventType.ERROR,
    KeyState.CLAIM_PENDING: KeyEventType.CLAIM_PENDING,
    KeyState.CLAIM_CLOSED: KeyEventType.CLAIM_CLOSED,
    KeyState.PORTABILITY_PENDING: KeyEventType.PORTABILITY_PENDING,
    KeyState.PORTABILITY_CANCELED: KeyEventType.PORTABILITY_CANCELED,
    KeyState.PORTABILITY_REQUEST_CANCEL_STARTED: KeyEventType.PORTABILITY_REQUEST_CANCEL_STARTED,
    KeyState.PORTABILITY_REQUEST_CONFIRM_STARTED: KeyEventType.PORTABILITY_REQUEST_CONFIRM_STARTED,
    KeyState.OWNERSHIP_PENDING: KeyEventType.OWNERSHIP_PENDING,
    KeyState.OWNERSHIP_CANCELED: KeyEventType.OWNERSHIP_CANCELED,
    KeyState.OWNERSHIP_READY: KeyEventType.OWNERSHIP_READY,
    KeyState.OWNERSHIP_CONFLICT: KeyEventType.OWNERSHIP_CONFLICT,
}


def settled_claim_status(from_state: KeyState, to_state: KeyState) -> ClaimStatus | None:
    return CLAIM_SETTLEMENTS.get((from_state, to_state))


def event_for_state(state: KeyState) -> KeyEventType:
    event_type = STATE_EVENTS.get(state)
    if event_type is None:
        raise KeyError(f"no notification is defined for state {state}")
    return event_type


def dead_letter_channel(event_type: KeyEventType) -> str:
    return f"key-events.{event_type.value.lower()}.dead-letter"


def is_dead_letter_channel(channel: str) -> bool:
    return channel.endswith(".dead-letter")
