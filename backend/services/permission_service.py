import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional
from sqlalchemy.orm import Session
from models.models import PermissionType, User, UserPermission, UserRole

logger = logging.getLogger(__name__)

_ALL = frozenset(PermissionType)

ROLE_PERMISSIONS: Dict[UserRole, FrozenSet[PermissionType]] = {
    UserRole.owner: _ALL,
    UserRole.manager: _ALL,
    UserRole.member: frozenset({
        PermissionType.note_create,
        PermissionType.note_read,
        PermissionType.note_update,
    }),
    UserRole.viewer: frozenset({PermissionType.note_read}),
}


@dataclass(frozen=True)
class Actor:
    """Authenticated caller, resolved once per request and passed explicitly."""
    id: str
    name: str
    email: str
    role: UserRole

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(id=user.id, name=user.name, email=user.email, role=user.role)

    @property
    def is_admin(self) -> bool:
        return self.role in (UserRole.owner, UserRole.manager)


def role_grants(role: UserRole, permission: PermissionType) -> bool:
    return permission in ROLE_PERMISSIONS.get(role, frozenset())


def has_permission(db: Session, actor: Optional[Actor], permission: PermissionType) -> bool:
    if actor is None:
        return False
    if role_grants(actor.role, permission):
        return True
    grant = db.query(UserPermission.id).filter(
        UserPermission.user_id == actor.id,
        UserPermission.permission == permission,
    ).first()
    return grant is not None
