from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from enum import StrEnum

from app.domain.contracts import DirectoryGateway
from app.domain.errors import ConsistencyError, InvalidStateError
from app.domain.lifecycle import READY_STATES, TERMINAL_STATES, event_for_state, settled_claim_status
from app.domain.models import (
    Claim,
    ClaimReason,
    ClaimStatus,
    CreateKeyOutcome,
    Decision,
    KeyEvent,
    KeyRecord,
    KeyState,
)

COMPONENT_ID = "domain.key_state_machine"


class KeyOperation(StrEnum):
    CONFIRM = "confirm"
    CLAIM_CLOSING = "claim_closing"
    CLAIM_DENIED = "claim_denied"
    PORTABILITY_CANCEL_PROCESS = "portability_cancel_process"
    PORTABILITY_REQUEST_CANCEL_OPENED = "portability_request_cancel_opened"
    PORTABILITY_REQUEST_CANCEL_STARTED = "portability_request_cancel_started"
    PORTABILITY_REQUEST_CONFIRM_OPENED = "portability_request_confirm_opened"
    PORTABILITY_REQUEST_CONFIRM_STARTED = "portability_request_confirm_started"
    OWNERSHIP_CANCEL_PROCESS = "ownership_cancel_process"
    DISMISS = "dismiss"
    FAIL = "fail"
    COMPLETE_TRANSFER = "complete_transfer"


class Guard(StrEnum):
    # Run the operation.
    PROCEED = "proceed"
    # Already in the target state: return the record untouched.
    NOOP = "noop"
    # Replayed or stale trigger: drop it silently.
    IGNORE = "ignore"
    # Surface InvalidStateError.
    INVALID = "invalid"


def _guard_table(
    *,
    otherwise: Guard,
    proceed: Iterable[KeyState],
    noop: Iterable[KeyState] = (),
) -> dict[KeyState, Guard]:
    proceed_set = frozenset(proceed)
    noop_set = frozenset(noop)
    if proceed_set & noop_set:
        raise ValueError("a state cannot both proceed and be a no-op")
    table: dict[KeyState, Guard] = {}
    for state in KeyState:
        if state in proceed_set:
            table[state] = Guard.PROCEED
        elif state in noop_set:
            table[state] = Guard.NOOP
        else:
            table[state] = otherwise
    return table


# Where each dismissible state lands.
DISMISS_TARGETS: dict[KeyState, KeyState] = {
    KeyState.PORTABILITY_READY: KeyState.READY,
    KeyState.OWNERSHIP_READY: KeyState.READY,
    KeyState.ADD_KEY_READY: KeyState.READY,
    KeyState.PORTABILITY_CANCELED: KeyState.CANCELED,
    KeyState.OWNERSHIP_CANCELED: KeyState.CANCELED,
    KeyState.DELETED: KeyState.CANCELED,
    KeyState.NOT_CONFIRMED: KeyState.CANCELED,
    KeyState.CLAIM_NOT_CONFIRMED: KeyState.CLAIM_PENDING,
}

CREATE_KEY_OUTCOMES: dict[CreateKeyOutcome, KeyState] = {
    CreateKeyOutcome.OWN: KeyState.ADD_KEY_READY,
    CreateKeyOutcome.PORTABILITY: KeyState.PORTABILITY_PENDING,
    CreateKeyOutcome.THIRD_PARTY: KeyState.OWNERSHIP_PENDING,
}


GUARDS: dict[KeyOperation, dict[KeyState, Guard]] = {
    KeyOperation.CONFIRM: _guard_table(
        otherwise=Guard.INVALID,
        proceed={KeyState.CONFIRMED},
        noop={KeyState.ADD_KEY_READY},
    ),
    KeyOperation.CLAIM_CLOSING: _guard_table(
        otherwise=Guard.INVALID,
        proceed={KeyState.CLAIM_CLOSING},
    ),
    KeyOperation.CLAIM_DENIED: _guard_table(
        otherwise=Guard.INVALID,
        proceed={KeyState.CLAIM_DENIED},
        noop={KeyState.READY},
    ),
    KeyOperation.PORTABILITY_CANCEL_PROCESS: _guard_table(
        otherwise=Guard.INVALID,
        proceed={KeyState.PORTABILITY_STARTED, KeyState.PORTABILITY_CONFIRMED},
        noop={KeyState.PORTABILITY_CANCELED},
    ),
    KeyOperation.PORTABILITY_REQUEST_CANCEL_OPENED: _guard_table(
        otherwise=Guard.IGNORE,
        proceed={KeyState.PORTABILITY_REQUEST_CANCEL_OPENED},
    ),
    KeyOperation.PORTABILITY_REQUEST_CANCEL_STARTED: _guard_table(
        otherwise=Guard.IGNORE,
        proceed={KeyState.PORTABILITY_REQUEST_CANCEL_STARTED},
    ),
    KeyOperation.PORTABILITY_REQUEST_CONFIRM_OPENED: _guard_table(
        otherwise=Guard.IGNORE,
        proceed={KeyState.PORTABILITY_REQUEST_CONFIRM_OPENED},
    ),
    KeyOperation.PORTABILITY_REQUEST_CONFIRM_STARTED: _guard_table(
        otherwise=Guard.IGNORE,
        proceed={KeyState.PORTABILITY_REQUEST_CONFIRM_STARTED},
    ),
    KeyOperation.OWNERSHIP_CANCEL_PROCESS: _guard_table(
        otherwise=Guard.INVALID,
        proceed={KeyState.OWNERSHIP_STARTED, KeyState.OWNERSHIP_WAITING, KeyState.OWNERSHIP_CONFIRMED},
        noop={KeyState.OWNERSHIP_CANCELED},
    ),
    KeyOperation.DISMISS: _guard_table(
        otherwise=Guard.INVALID,
        proceed=DISMISS_TARGETS.keys(),
    ),
    KeyOperation.FAIL: _guard_table(
        otherwise=Guard.PROCEED,
        proceed=(),
        noop=TERMINAL_STATES,
    ),
    KeyOperation.COMPLETE_TRANSFER: _guard_table(
        otherwise=Guard.IGNORE,
        proceed={KeyState.OWNERSHIP_WAITING},
    ),
}


def _assert_exhaustive(guards: dict[KeyOperation, dict[KeyState, Guard]]) -> None:
    missing_operations = [operation for operation in KeyOperation if operation not in guards]
    if missing_operations:
        raise RuntimeError(f"guard table missing for operations: {missing_operations}")
    for operation, table in guards.items():
        missing_states = [state for state in KeyState if state not in table]
        if missing_states:
            raise RuntimeError(f"guard table for {operation} misses states: {missing_states}")


_assert_exhaustive(GUARDS)


@dataclass(frozen=True)
class KeyStateMachine:
    """Decision logic for every key lifecycle trigger.

    Operations never touch persistence. Directory calls happen while deciding,
    before anything is written, so a failing call leaves no trace: the caller
    simply does not commit the returned Decision. Counterparts and claims are
    resolved by the caller and passed in explicitly.
    """

    gateway: DirectoryGateway

    def guard(self, operation: KeyOperation, record: KeyRecord) -> Guard:
        verdict = GUARDS[operation][record.state]
        if verdict is Guard.INVALID:
            raise InvalidStateError(key_id=record.id, state=record.state, operation=operation)
        return verdict

    def accepts(self, operation: KeyOperation, record: KeyRecord) -> bool:
        """True when ``operation`` would act on the record as it is stored now."""
        return GUARDS[operation][record.state] is Guard.PROCEED

    async def confirm(self, record: KeyRecord, *, counterpart: KeyRecord | None) -> Decision:
        if self.guard(KeyOperation.CONFIRM, record) is not Guard.PROCEED:
            return _unchanged(record)

        if counterpart is not None:
            # P2P: the directory is not involved while both holders are local.
            if counterpart.state in READY_STATES:
                next_record = record.with_state(KeyState.OWNERSHIP_PENDING)
            else:
                next_record = record.with_state(KeyState.OWNERSHIP_CONFLICT)
            return Decision(record=next_record, events=(_event(next_record),))

        result = await self.gateway.create_key(record)
        next_record = replace(
            record,
            state=CREATE_KEY_OUTCOMES[result.outcome],
            value=record.value or result.value,
        )
        return Decision(record=next_record, side_effects=("create_key",), events=(_event(next_record),))

    async def claim_closing(
        self,
        record: KeyRecord,
        *,
        claim: Claim,
        counterpart: KeyRecord | None,
        counterpart_claim: Claim | None = None,
        reason: ClaimReason | None = None,
    ) -> Decision:
        if self.guard(KeyOperation.CLAIM_CLOSING, record) is not Guard.PROCEED:
            return _unchanged(record)
        _check_claim(record, claim)

        next_record = record.with_state(KeyState.CLAIM_CLOSED)
        claims = _settle(claim, record.state, next_record.state, reason)

        if counterpart is not None and counterpart.state is KeyState.OWNERSHIP_WAITING:
            await self.gateway.delete_key(counterpart)
            await self.gateway.create_key(record)
            next_counterpart = counterpart.with_state(KeyState.OWNERSHIP_READY)
            claims += _settle_other(counterpart_claim, claim, counterpart.state, next_counterpart.state)
            return Decision(
                record=next_record,
                counterpart=next_counterpart,
                claims=claims,
                side_effects=("delete_key", "create_key"),
                events=(_event(next_counterpart), _event(next_record, reason)),
            )

        await self.gateway.close_claim(claim.id, reason)
        return Decision(
            record=next_record,
            claims=claims,
            side_effects=("close_claim",),
            events=(_event(next_record, reason),),
        )

    async def claim_denied(
        self,
        record: KeyRecord,
        *,
        claim: Claim,
        counterpart: KeyRecord | None,
        counterpart_claim: Claim | None = None,
        reason: ClaimReason | None = None,
    ) -> Decision:
        if self.guard(KeyOperation.CLAIM_DENIED, record) is not Guard.PROCEED:
            return _unchanged(record)
        _check_claim(record, claim)

        next_record = record.with_state(KeyState.READY)
        claims = _settle(claim, record.state, next_record.state, reason)

        if counterpart is not None and counterpart.state is KeyState.OWNERSHIP_WAITING:
            next_counterpart = counterpart.with_state(KeyState.OWNERSHIP_CANCELED)
            claims += _settle_other(counterpart_claim, claim, counterpart.state, next_counterpart.state)
            return Decision(
                record=next_record,
                counterpart=next_counterpart,
                claims=claims,
                events=(_event(next_counterpart), _event(next_record)),
            )

        await self.gateway.deny_claim(claim.id, reason)
        return Decision(
            record=next_record,
            claims=claims,
            side_effects=("deny_claim",),
            events=(_event(next_record),),
        )

    def portability_cancel_process(
        self,
        record: KeyRecord,
        *,
        claim: Claim,
        reason: ClaimReason | None = None,
    ) -> Decision:
        if self.guard(KeyOperation.PORTABILITY_CANCEL_PROCESS, record) is not Guard.PROCEED:
            return _unchanged(record)
        _check_claim(record, claim)

        next_record = record.with_state(KeyState.PORTABILITY_CANCELED)
        return Decision(
            record=next_record,
            claims=_settle(claim, record.state, next_record.state, reason),
            events=(_event(next_record, reason),),
        )

    async def portability_request_cancel_opened(
        self,
        record: KeyRecord,
        *,
        claim: Claim,
        reason: ClaimReason | None = None,
    ) -> Decision:
        if self.guard(KeyOperation.PORTABILITY_REQUEST_CANCEL_OPENED, record) is not Guard.PROCEED:
            return _unchanged(record)
        _check_claim(record, claim)

        await self.gateway.cancel_portability_claim(claim.id, reason)
        next_record = record.with_state(KeyState.PORTABILITY_REQUEST_CANCEL_STARTED)
        return Decision(
            record=next_record,
            side_effects=("cancel_portability_claim",),
            events=(_event(next_record, reason),),
        )

    async def portability_request_confirm_opened(
        self,
        record: KeyRecord,
        *,
        claim: Claim,
        reason: ClaimReason | None = None,
    ) -> Decision:
        if self.guard(KeyOperation.PORTABILITY_REQUEST_CONFIRM_OPENED, record) is not Guard.PROCEED:
            return _unchanged(record)
        _check_claim(record, claim)

        await self.gateway.confirm_portability_claim(claim.id, reason)
        next_record = record.with_state(KeyState.PORTABILITY_REQUEST_CONFIRM_STARTED)
        return Decision(
            record=next_record,
            side_effects=("confirm_portability_claim",),
            events=(_event(next_record, reason),),
        )

    def portability_request_cancel_started(
        self,
        record: KeyRecord,
        *,
        claim: Claim | None,
        reason: ClaimReason | None = None,
    ) -> Decision:
        return self._settle_started(
            KeyOperation.PORTABILITY_REQUEST_CANCEL_STARTED,
            record,
            claim=claim,
            next_state=KeyState.READY,
            reason=reason,
        )

    def portability_request_confirm_started(
        self,
        record: KeyRecord,
        *,
        claim: Claim | None,
        reason: ClaimReason | None = None,
    ) -> Decision:
        # The donor hands the key over, so the local record ends CANCELED.
        return self._settle_started(
            KeyOperation.PORTABILITY_REQUEST_CONFIRM_STARTED,
            record,
            claim=claim,
            next_state=KeyState.CANCELED,
            reason=reason,
        )

    def ownership_cancel_process(
        self,
        record: KeyRecord,
        *,
        claim: Claim | None,
        reason: ClaimReason | None = None,
    ) -> Decision:
        if self.guard(KeyOperation.OWNERSHIP_CANCEL_PROCESS, record) is not Guard.PROCEED:
            return _unchanged(record)
        if claim is not None:
            _check_claim(record, claim)

        next_record = record.with_state(KeyState.OWNERSHIP_CANCELED)
        return Decision(
            record=next_record,
            claims=_settle(claim, record.state, next_record.state, reason),
            events=(_event(next_record, reason),),
        )

    def dismiss(self, record: KeyRecord) -> Decision:
        if self.guard(KeyOperation.DISMISS, record) is not Guard.PROCEED:
            return _unchanged(record)
        next_record = record.with_state(DISMISS_TARGETS[record.state])
        return Decision(record=next_record, events=(_event(next_record),))

    def fail(
        self,
        record: KeyRecord,
        *,
        claim: Claim | None = None,
        reason: ClaimReason | None = None,
    ) -> Decision:
        if self.guard(KeyOperation.FAIL, record) is not Guard.PROCEED:
            return _unchanged(record)
        next_record = record.with_state(KeyState.ERROR)
        return Decision(
            record=next_record,
            claims=_settle(claim, record.state, next_record.state, reason),
            events=(_event(next_record, reason),),
        )

    def complete_transfer(
        self,
        record: KeyRecord,
        *,
        counterpart: KeyRecord,
        counterpart_claim: Claim | None = None,
    ) -> Decision:
        """Finish a P2P closing whose counterpart write never landed."""
        if record.state is not KeyState.CLAIM_CLOSED:
            raise InvalidStateError(key_id=record.id, state=record.state, operation=KeyOperation.COMPLETE_TRANSFER)
        if self.guard(KeyOperation.COMPLETE_TRANSFER, counterpart) is not Guard.PROCEED:
            return _unchanged(record)
        next_counterpart = counterpart.with_state(KeyState.OWNERSHIP_READY)
        return Decision(
            record=record,
            counterpart=next_counterpart,
            claims=_settle(counterpart_claim, counterpart.state, next_counterpart.state),
            events=(_event(next_counterpart),),
        )

    def _settle_started(
        self,
        operation: KeyOperation,
        record: KeyRecord,
        *,
        claim: Claim | None,
        next_state: KeyState,
        reason: ClaimReason | None = None,
    ) -> Decision:
        if self.guard(operation, record) is not Guard.PROCEED:
            return _unchanged(record)
        if claim is not None:
            _check_claim(record, claim)

        next_record = record.with_state(next_state)
        return Decision(
            record=next_record,
            claims=_settle(claim, record.state, next_record.state, reason),
            events=(_event(next_record, reason),),
        )


def _unchanged(record: KeyRecord) -> Decision:
    return Decision(record=record, changed=False)


def _event(record: KeyRecord, reason: ClaimReason | None = None) -> KeyEvent:
    return KeyEvent(
        event_type=event_for_state(record.state),
        key_id=record.id,
        owner_id=record.owner_id,
        state=record.state,
        reason=reason,
    )


def _check_claim(record: KeyRecord, claim: Claim) -> None:
    if record.claim_id is not None and claim.id != record.claim_id:
        raise ConsistencyError(f"claim {claim.id} is not the claim referenced by key {record.id}")
    if record.value is not None and claim.key_value != record.value:
        raise ConsistencyError(f"claim {claim.id} value does not match key {record.id}")


def _settle(
    claim: Claim | None,
    from_state: KeyState,
    to_state: KeyState,
    reason: ClaimReason | None = None,
) -> tuple[Claim, ...]:
    # Only open claims are settled; a terminated claim never changes again.
    if claim is None or claim.status is not ClaimStatus.OPEN:
        return ()
    status = settled_claim_status(from_state, to_state)
    if status is None:
        return ()
    return (claim.with_status(status, reason),)


def _settle_other(
    other: Claim | None,
    primary: Claim,
    from_state: KeyState,
    to_state: KeyState,
) -> tuple[Claim, ...]:
    # Both sides may point at the same claim; the primary record's settlement wins.
    if other is None or other.id == primary.id:
        return ()
    return _settle(other, from_state, to_state)
