from __future__ import annotations

from app.domain.errors import DomainValidationError
from app.domain.lifecycle import is_dead_letter_channel
from app.domain.models import HandleResult, InboundMessage, KeyEventType
from app.workers.handlers import (
    claim_closing,
    claim_denied,
    confirmed,
    dead_letter,
    portability_request_cancel,
    portability_request_confirm,
)
from app.workers.handlers.deps import WorkerDeps
from app.workers.loop import MessageHandler
from app.workers.roles import ROLE_TO_CHANNELS


def build_event_handlers(deps: WorkerDeps) -> dict[KeyEventType, MessageHandler]:
    async def _confirmed(message: InboundMessage) -> HandleResult:
        return await confirmed.process_message(deps, message=message)

    async def _claim_closing(message: InboundMessage) -> HandleResult:
        return await claim_closing.process_message(deps, message=message)

    async def _claim_denied(message: InboundMessage) -> HandleResult:
        return await claim_denied.process_message(deps, message=message)

    async def _cancel_opened(message: InboundMessage) -> HandleResult:
        return await portability_request_cancel.process_opened(deps, message=message)

    async def _cancel_started(message: InboundMessage) -> HandleResult:
        return await portability_request_cancel.process_started(deps, message=message)

    async def _confirm_opened(message: InboundMessage) -> HandleResult:
        return await portability_request_confirm.process_opened(deps, message=message)

    async def _confirm_started(message: InboundMessage) -> HandleResult:
        return await portability_request_confirm.process_started(deps, message=message)

    return {
        confirmed.EVENT_TYPE: _confirmed,
        claim_closing.EVENT_TYPE: _claim_closing,
        claim_denied.EVENT_TYPE: _claim_denied,
        portability_request_cancel.OPENED_EVENT_TYPE: _cancel_opened,
        portability_request_cancel.STARTED_EVENT_TYPE: _cancel_started,
        portability_request_confirm.OPENED_EVENT_TYPE: _confirm_opened,
        portability_request_confirm.STARTED_EVENT_TYPE: _confirm_started,
    }


def build_dispatcher(deps: WorkerDeps) -> MessageHandler:
    handlers = build_event_handlers(deps)

    async def _dispatch(message: InboundMessage) -> HandleResult:
        handler = handlers.get(message.event_type)
        if handler is None:
            raise DomainValidationError(f"No key event handler for '{message.event_type}'")
        return await handler(message)

    return _dispatch


def build_process_handler(role: str, deps: WorkerDeps, *, dead_letter_max_attempts: int = 5) -> MessageHandler:
    dispatch = build_dispatcher(deps)

    async def _dead_letter(message: InboundMessage) -> HandleResult:
        return await dead_letter.process_message(
            deps,
            message=message,
            dispatch=dispatch,
            max_attempts=dead_letter_max_attempts,
        )

    async def _route(message: InboundMessage) -> HandleResult:
        if is_dead_letter_channel(message.channel):
            return await _dead_letter(message)
        return await dispatch(message)

    if role not in ROLE_TO_CHANNELS:
        raise ValueError(f"No worker handler for role '{role}'")
    return _route
