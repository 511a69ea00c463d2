from __future__ import annotations

from dataclasses import dataclass

from app.domain.conflict import ConflictResolver
from app.domain.contracts import DirectoryGateway, EventPublisher, KeyRepository
from app.domain.state_machine import KeyStateMachine


@dataclass(frozen=True)
class WorkerDeps:
    repository: KeyRepository
    gateway: DirectoryGateway
    publisher: EventPublisher

    @property
    def machine(self) -> KeyStateMachine:
        return KeyStateMachine(gateway=self.gateway)

    @property
    def resolver(self) -> ConflictResolver:
        return ConflictResolver(store=self.repository)
