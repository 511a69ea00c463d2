from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RuntimeRole:
    name: str
    default_port: int
    runs_worker: bool = False


ROLES: dict[str, RuntimeRole] = {
    role.name: role
    for role in (
        RuntimeRole(name="api", default_port=8000),
        RuntimeRole(name="worker-key-events", default_port=8100, runs_worker=True),
        RuntimeRole(name="worker-dead-letter", default_port=8101, runs_worker=True),
    )
}

SUPPORTED_ROLES: tuple[str, ...] = tuple(ROLES)


def validate_role(name: str) -> RuntimeRole:
    role = ROLES.get(name)
    if role is None:
        # Schema migrations run outside the app; there is no migrator role.
        raise ValueError(f"Unknown runtime role {name!r}; expected one of: {', '.join(SUPPORTED_ROLES)}")
    return role
