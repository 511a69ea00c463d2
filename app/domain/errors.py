from __future__ import annotations


class DomainError(Exception):
    pass


class DomainValidationError(DomainError):
    pass


class DomainInvariantError(DomainError):
    pass


class InvalidStateError(DomainInvariantError):
    def __init__(self, *, key_id: str, state: str, operation: str) -> None:
        super().__init__(f"key {key_id} in state {state} cannot handle {operation}")
        self.key_id = key_id
        self.state = state
        self.operation = operation


class MissingDataError(DomainValidationError):
    pass


class NotFoundError(DomainError):
    pass


class KeyNotFoundError(NotFoundError):
    pass


class ClaimNotFoundError(NotFoundError):
    pass


class ConsistencyError(DomainInvariantError):
    pass


class DomainDependencyError(DomainError):
    pass


class GatewayUnavailableError(DomainDependencyError):
    pass


class GatewayRejectedError(DomainDependencyError):
    pass
