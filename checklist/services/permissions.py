"""
Role lookup for checklist operations.
Roles are read once per request into an ActorContext; the engine never reads global state.
"""
import uuid
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional

from ..models.models import User


ADMIN = "admin"
COORDINATOR = "coordinator"
DEPARTMENT_WORKER = "department-worker"
SITE_WORKER = "site-worker"

DOMAIN_ROLES = (ADMIN, COORDINATOR, DEPARTMENT_WORKER, SITE_WORKER)

MANAGER_ROLES = frozenset({ADMIN, COORDINATOR})
WORKER_ROLES = frozenset({DEPARTMENT_WORKER, SITE_WORKER})


@dataclass(frozen=True)
class CoordinationPermissions:
    can_move_anywhere: bool = False
    is_worker: bool = False
    is_manager: bool = False


@dataclass(frozen=True)
class ActorContext:
    user_id: Optional[uuid.UUID]
    roles: FrozenSet[str] = field(default_factory=frozenset)
    can_manage: bool = True
    can_delete: bool = False
    coordination: CoordinationPermissions = field(default_factory=CoordinationPermissions)

    @property
    def role(self) -> Optional[str]:
        """Most privileged domain role, for logs."""
        for name in DOMAIN_ROLES:
            if name in self.roles:
                return name
        return None

    def has_any(self, *names: str) -> bool:
        return bool(self.roles & set(names))

    # Movement matrix, only consulted when strict role moves are enabled
    @property
    def can_move_from_departments(self) -> bool:
        return self.has_any(DEPARTMENT_WORKER, ADMIN)

    @property
    def can_move_to_coordination(self) -> bool:
        return self.has_any(COORDINATOR, DEPARTMENT_WORKER, ADMIN)

    @property
    def can_move_from_coordination(self) -> bool:
        return self.has_any(COORDINATOR, SITE_WORKER, ADMIN)

    @property
    def can_move_warehouses(self) -> bool:
        return self.has_any(COORDINATOR, SITE_WORKER, ADMIN)


def coordination_permissions(roles: Iterable[str]) -> CoordinationPermissions:
    names = frozenset(roles)
    is_manager = bool(names & MANAGER_ROLES)
    is_worker = bool(names & WORKER_ROLES)
    return CoordinationPermissions(
        can_move_anywhere=is_manager or is_worker,
        is_worker=is_worker,
        is_manager=is_manager,
    )


def build_actor(user_id: Optional[uuid.UUID], roles: Iterable[str], is_active: bool = True) -> ActorContext:
    names = frozenset((r or "").lower() for r in roles)
    return ActorContext(
        user_id=user_id,
        roles=names,
        can_manage=is_active,
        can_delete=bool(names & MANAGER_ROLES),
        coordination=coordination_permissions(names),
    )


def actor_context(user: User) -> ActorContext:
    """Build the acting user's context from their roles."""
    return build_actor(user.id, [r.name for r in user.roles], is_active=bool(user.is_active))

