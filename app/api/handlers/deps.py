from __future__ import annotations

from dataclasses import dataclass

from app.domain.contracts import DirectoryGateway, EventPublisher, KeyRepository, MessageSink
from app.workers.handlers.deps import WorkerDeps


@dataclass(frozen=True)
class ApiDeps:
    repository: KeyRepository
    gateway: DirectoryGateway
    publisher: EventPublisher
    inbox: MessageSink | None = None

    @property
    def worker_deps(self) -> WorkerDeps:
        return WorkerDeps(repository=self.repository, gateway=self.gateway, publisher=self.publisher)
