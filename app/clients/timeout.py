from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass
import logging
from typing import TypeVar

from app.domain.contracts import DirectoryGateway
from app.domain.errors import GatewayUnavailableError
from app.domain.models import ClaimReason, CreateKeyResult, KeyRecord

T = TypeVar("T")
logger = logging.getLogger("runtime")


@dataclass(frozen=True)
class TimeoutDirectoryGateway:
    """Bounds every directory call; a timeout counts as the directory being unavailable."""

    inner: DirectoryGateway
    timeout_ms: int = 5000

    async def create_key(self, record: KeyRecord) -> CreateKeyResult:
        return await self._bounded("create_key", self.inner.create_key(record))

    async def delete_key(self, record: KeyRecord) -> None:
        await self._bounded("delete_key", self.inner.delete_key(record))

    async def close_claim(self, claim_id: str, reason: ClaimReason | None) -> None:
        await self._bounded("close_claim", self.inner.close_claim(claim_id, reason))

    async def deny_claim(self, claim_id: str, reason: ClaimReason | None) -> None:
        await self._bounded("deny_claim", self.inner.deny_claim(claim_id, reason))

    async def cancel_portability_claim(self, claim_id: str, reason: ClaimReason | None) -> None:
        await self._bounded("cancel_portability_claim", self.inner.cancel_portability_claim(claim_id, reason))

    async def confirm_portability_claim(self, claim_id: str, reason: ClaimReason | None) -> None:
        await self._bounded("confirm_portability_claim", self.inner.confirm_portability_claim(claim_id, reason))

    async def _bounded(self, method: str, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=max(self.timeout_ms, 1) / 1000)
        except TimeoutError as exc:
            logger.warning(
                "directory call timed out",
                extra={"error_code": "directory_unavailable", "operation": method},
            )
            raise GatewayUnavailableError(f"directory call {method} timed out after {self.timeout_ms}ms") from exc
