from __future__ import annotations

from typing import Optional

from flask_jwt_extended import get_jwt_identity

from extensions import db
from models import ADMIN_ROLE_NAME, PERMISSION_LABELS, Permission, Role, User


def current_user() -> Optional[User]:
    """Return the active user behind the request's JWT, if any."""

    try:
        user_id = int(get_jwt_identity())
    except (TypeError, ValueError):
        return None
    user = db.session.get(User, user_id)
    if user is None or not user.active:
        return None
    return user


def has_permission(*names: str, user: Optional[User] = None) -> bool:
    """``True`` when the user is an admin or holds any of ``names``."""

    user = user or current_user()
    if user is None:
        return False
    if user.is_admin:
        return True
    granted = user.permission_names()
    return any(name in granted for name in names)


def seed_permissions() -> tuple[int, Role]:
    """Create missing catalogue permissions and give them all to the admin role."""

    existing = {permission.name: permission for permission in Permission.query.all()}
    created = 0
    for name, label in PERMISSION_LABELS.items():
        permission = existing.get(name)
        if permission is None:
            permission = Permission(name=name, label=label)
            db.session.add(permission)
            existing[name] = permission
            created += 1
        elif permission.label != label:
            permission.label = label

    admin_role = Role.query.filter_by(name=ADMIN_ROLE_NAME).first()
    if admin_role is None:
        admin_role = Role(name=ADMIN_ROLE_NAME, description="Full access")
        db.session.add(admin_role)
    admin_role.permissions = [existing[name] for name in PERMISSION_LABELS]
    db.session.commit()
    return created, admin_role


__all__ = ["current_user", "has_permission", "seed_permissions"]
