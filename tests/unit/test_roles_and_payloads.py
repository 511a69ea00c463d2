from __future__ import annotations

import pytest

from app.domain.errors import DomainValidationError
from app.domain.models import ClaimReason, InboundMessage, KeyEventType, KeyState
from app.repositories.sql_loader import load_sql
from app.roles import SUPPORTED_ROLES, validate_role
from app.workers.roles import ROLE_TO_CHANNELS
from app.workers.schemas import parse_payload


@pytest.mark.unit
def test_every_worker_role_is_supported() -> None:
    assert set(ROLE_TO_CHANNELS) <= set(SUPPORTED_ROLES)
    assert validate_role("worker-dead-letter").name == "worker-dead-letter"
    with pytest.raises(ValueError, match="Unknown runtime role"):
        validate_role("migrator")


@pytest.mark.unit
def test_payload_parsing_accepts_optional_reason_and_extra_fields() -> None:
    message = InboundMessage(
        event_type=KeyEventType.CLAIM_DENIED,
        payload={"id": "key-1", "owner_id": "owner-1", "state": "CLAIM_DENIED", "reason": "FRAUD", "trace": "x"},
    )

    payload = parse_payload(message)

    assert payload.state is KeyState.CLAIM_DENIED
    assert payload.reason is ClaimReason.FRAUD


@pytest.mark.unit
def test_payload_parsing_rejects_unknown_state() -> None:
    message = InboundMessage(
        event_type=KeyEventType.CONFIRMED,
        payload={"id": "key-1", "owner_id": "owner-1", "state": "SOMEWHERE"},
    )

    with pytest.raises(DomainValidationError, match="CONFIRMED"):
        parse_payload(message)


@pytest.mark.unit
def test_sql_queries_are_packaged_as_single_statements() -> None:
    query = load_sql("update_key_record.sql")

    assert query.startswith("UPDATE key_records")
    assert not query.endswith(";")
    with pytest.raises(FileNotFoundError):
        load_sql("missing.sql")
