from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import StrEnum


# Canonical key lifecycle states.
#
# IMPORTANT:
# - Keep this enum synchronized with app/domain/lifecycle.py
#   (state groups and CLAIM_SETTLEMENTS) and with every guard table in
#   app/domain/state_machine.py; a missing entry fails at import time.
# - Keep this enum synchronized with the DB state CHECK constraint in
#   db/migrations/000001_bootstrap.up.sql.
class KeyState(StrEnum):
    # Registration states.
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    NOT_CONFIRMED = "NOT_CONFIRMED"

    # Ready states.
    ADD_KEY_READY = "ADD_KEY_READY"
    READY = "READY"

    # Ownership claim, donor side.
    CLAIM_PENDING = "CLAIM_PENDING"
    CLAIM_NOT_CONFIRMED = "CLAIM_NOT_CONFIRMED"
    CLAIM_CLOSING = "CLAIM_CLOSING"
    CLAIM_CLOSED = "CLAIM_CLOSED"
    CLAIM_DENIED = "CLAIM_DENIED"

    # Portability, claimer side.
    PORTABILITY_PENDING = "PORTABILITY_PENDING"
    PORTABILITY_OPENED = "PORTABILITY_OPENED"
    PORTABILITY_STARTED = "PORTABILITY_STARTED"
    PORTABILITY_CONFIRMED = "PORTABILITY_CONFIRMED"
    PORTABILITY_CANCELING = "PORTABILITY_CANCELING"
    PORTABILITY_CANCELED = "PORTABILITY_CANCELED"
    PORTABILITY_READY = "PORTABILITY_READY"

    # Portability, donor side.
    PORTABILITY_REQUEST_PENDING = "PORTABILITY_REQUEST_PENDING"
    PORTABILITY_REQUEST_AUTO_CONFIRMED = "PORTABILITY_REQUEST_AUTO_CONFIRMED"
    PORTABILITY_REQUEST_CANCEL_OPENED = "PORTABILITY_REQUEST_CANCEL_OPENED"
    PORTABILITY_REQUEST_CANCEL_STARTED = "PORTABILITY_REQUEST_CANCEL_STARTED"
    PORTABILITY_REQUEST_CONFIRM_OPENED = "PORTABILITY_REQUEST_CONFIRM_OPENED"
    PORTABILITY_REQUEST_CONFIRM_STARTED = "PORTABILITY_REQUEST_CONFIRM_STARTED"

    # Ownership claim, claimer side.
    OWNERSHIP_PENDING = "OWNERSHIP_PENDING"
    OWNERSHIP_OPENED = "OWNERSHIP_OPENED"
    OWNERSHIP_STARTED = "OWNERSHIP_STARTED"
    OWNERSHIP_WAITING = "OWNERSHIP_WAITING"
    OWNERSHIP_CONFIRMED = "OWNERSHIP_CONFIRMED"
    OWNERSHIP_CANCELING = "OWNERSHIP_CANCELING"
    OWNERSHIP_CANCELED = "OWNERSHIP_CANCELED"
    OWNERSHIP_READY = "OWNERSHIP_READY"
    OWNERSHIP_CONFLICT = "OWNERSHIP_CONFLICT"

    # Removal and terminal states.
    DELETING = "DELETING"
    DELETED = "DELETED"
    CANCELED = "CANCELED"
    ERROR = "ERROR"


class KeyType(StrEnum):
    PHONE = "PHONE"
    EMAIL = "EMAIL"
    DOCUMENT = "DOCUMENT"
    TOKEN = "TOKEN"


class ClaimType(StrEnum):
    OWNERSHIP = "OWNERSHIP"
    PORTABILITY = "PORTABILITY"


class ClaimStatus(StrEnum):
    OPEN = "OPEN"
    CONFIRMED = "CONFIRMED"
    CANCELED = "CANCELED"
    CLOSED = "CLOSED"
    DENIED = "DENIED"


class ClaimReason(StrEnum):
    USER_REQUESTED = "USER_REQUESTED"
    ACCOUNT_CLOSURE = "ACCOUNT_CLOSURE"
    FRAUD = "FRAUD"
    DEFAULT_OPERATION = "DEFAULT_OPERATION"


class CreateKeyOutcome(StrEnum):
    OWN = "OWN"
    PORTABILITY = "PORTABILITY"
    THIRD_PARTY = "THIRD_PARTY"


# Event names shared by inbound triggers and outbound notifications.
class KeyEventType(StrEnum):
    ERROR = "ERROR"
    READY = "READY"
    ADD_READY = "ADD_READY"
    DELETED = "DELETED"
    CANCELED = "CANCELED"
    CONFIRMED = "CONFIRMED"
    CLAIM_PENDING = "CLAIM_PENDING"
    CLAIM_DENIED = "CLAIM_DENIED"
    CLAIM_CLOSING = "CLAIM_CLOSING"
    CLAIM_CLOSED = "CLAIM_CLOSED"
    PORTABILITY_PENDING = "PORTABILITY_PENDING"
    PORTABILITY_CANCELED = "PORTABILITY_CANCELED"
    PORTABILITY_REQUEST_CANCEL_OPENED = "PORTABILITY_REQUEST_CANCEL_OPENED"
    PORTABILITY_REQUEST_CANCEL_STARTED = "PORTABILITY_REQUEST_CANCEL_STARTED"
    PORTABILITY_REQUEST_CONFIRM_OPENED = "PORTABILITY_REQUEST_CONFIRM_OPENED"
    PORTABILITY_REQUEST_CONFIRM_STARTED = "PORTABILITY_REQUEST_CONFIRM_STARTED"
    OWNERSHIP_PENDING = "OWNERSHIP_PENDING"
    OWNERSHIP_CANCELED = "OWNERSHIP_CANCELED"
    OWNERSHIP_READY = "OWNERSHIP_READY"
    OWNERSHIP_CONFLICT = "OWNERSHIP_CONFLICT"


@dataclass(frozen=True)
class KeyRecord:
    id: str
    key_type: KeyType
    owner_id: str
    state: KeyState
    value: str | None = None
    claim_id: str | None = None

    def with_state(self, state: KeyState) -> KeyRecord:
        return replace(self, state=state)


@dataclass(frozen=True)
class Claim:
    id: str
    key_value: str
    type: ClaimType
    status: ClaimStatus
    reason: ClaimReason | None = None

    def with_status(self, status: ClaimStatus, reason: ClaimReason | None = None) -> Claim:
        return replace(self, status=status, reason=reason or self.reason)


@dataclass(frozen=True)
class CreateKeyResult:
    outcome: CreateKeyOutcome
    value: str | None = None


@dataclass(frozen=True)
class KeyEvent:
    """Outbound notification describing a record after a transition."""

    event_type: KeyEventType
    key_id: str
    owner_id: str
    state: KeyState
    reason: ClaimReason | None = None

    def payload(self) -> dict[str, str]:
        body = {"id": self.key_id, "owner_id": self.owner_id, "state": self.state.value}
        if self.reason is not None:
            body["reason"] = self.reason.value
        return body


@dataclass(frozen=True)
class InboundMessage:
    event_type: KeyEventType
    payload: dict[str, object]
    attempt: int = 1
    channel: str = "key-events"
    # Queue row id; set only for messages read from a durable queue.
    message_id: int | None = None


@dataclass(frozen=True)
class Decision:
    """Outcome of one state machine operation.

    ``record`` always holds the next state of the record the operation was
    invoked for. ``counterpart`` and ``claims`` are set only when they must be
    written together with the record. ``side_effects`` lists the directory
    calls that were performed while deciding.
    """

    record: KeyRecord
    counterpart: KeyRecord | None = None
    claims: tuple[Claim, ...] = ()
    side_effects: tuple[str, ...] = ()
    events: tuple[KeyEvent, ...] = field(default_factory=tuple)
    changed: bool = True

    @property
    def next_state(self) -> KeyState:
        return self.record.state


@dataclass(frozen=True)
class HandleResult:
    success: bool
    detail: str = ""
    record: KeyRecord | None = None
    dead_lettered: bool = False
    changed: bool = False
