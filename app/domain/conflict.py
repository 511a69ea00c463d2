from __future__ import annotations

from dataclasses import dataclass

from app.domain.contracts import KeyRecordStore
from app.domain.errors import ConsistencyError
from app.domain.lifecycle import RELEASED_STATES
from app.domain.models import KeyRecord

COMPONENT_ID = "domain.conflict.find_counterpart"


@dataclass(frozen=True)
class ConflictResolver:
    """Finds the local record currently sharing a key value (the P2P counterpart)."""

    store: KeyRecordStore

    async def find_counterpart(self, value: str | None, exclude_id: str) -> KeyRecord | None:
        if not value:
            return None

        holders = await self.store.get_by_value_excluding_states(value, RELEASED_STATES)
        others = [item for item in holders if item.id != exclude_id]
        if not others:
            return None
        if len(others) > 1:
            joined_ids = ", ".join(sorted(item.id for item in others))
            raise ConsistencyError(f"value is held by more than one active record: {joined_ids}")
        return others[0]
