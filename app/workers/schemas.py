from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.domain.errors import DomainValidationError
from app.domain.models import ClaimReason, InboundMessage, KeyState


class KeyEventPayload(BaseModel):
    """Body of every inbound key event.

    ``state`` is informational only: handlers always re-read the stored record.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(min_length=1)
    owner_id: str = Field(min_length=1)
    state: KeyState
    reason: ClaimReason | None = None


def parse_payload(message: InboundMessage) -> KeyEventPayload:
    try:
        return KeyEventPayload.model_validate(message.payload)
    except ValidationError as exc:
        raise DomainValidationError(
            f"invalid {message.event_type} payload: {exc.error_count()} validation error(s)"
        ) from exc
