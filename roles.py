"""Role ladder for the portal: Administrator > Supervisor > Company."""

import enum
from functools import wraps

from flask import abort, current_app
from flask_login import current_user


class Role(enum.Enum):
    ADMIN = ("Administrator", 0)
    SUPERVISOR = ("Supervisor", 1)
    COMPANY = ("Company", 2)

    def __init__(self, role_name, rank):
        self.role_name = role_name
        self.rank = rank

    def __str__(self):
        return self.role_name

    @classmethod
    def from_name(cls, name):
        """Return the Role called `name`, or None if there is no such role."""
        if isinstance(name, cls):
            return name
        for role in cls:
            if role.role_name == name:
                return role
        return None


# Highest privilege first
ROLES = sorted(Role, key=lambda r: r.rank)


def subordinated_roles(role):
    """
    Roles strictly below `role` in the ladder, highest first.

    Unknown role names resolve to an empty list, same as the lowest role.
    """
    reference = Role.from_name(role)
    if reference is None:
        return []
    return [r for r in ROLES if r.rank > reference.rank]


def subordinated_roles_for_user(user):
    if user is None or not getattr(user, "is_authenticated", False):
        return []
    primary = user.primary_role
    if primary is None:
        return []
    return subordinated_roles(primary)


def user_role(user):
    if user is None or not getattr(user, "is_authenticated", False):
        return None
    return Role.from_name(user.primary_role)


def is_admin(user, only_super_admin=False):
    role = user_role(user)
    if role is Role.ADMIN:
        return True
    if only_super_admin:
        return False
    return role is Role.SUPERVISOR


def can_manage(manager, user):
    """Whether `manager` may edit `user` (approve, change role)."""
    if manager is None or user is None or manager.id == user.id:
        return False
    target = Role.from_name(user.primary_role)
    if target is None:
        return is_admin(manager)
    return target in subordinated_roles_for_user(manager)


def roles_required(*roles):
    allowed = {Role.from_name(r) for r in roles}

    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            if not current_user.is_authenticated:
                return current_app.login_manager.unauthorized()
            if user_role(current_user) not in allowed:
                abort(403)
            return view(*args, **kwargs)
        return wrapped
    return decorator


def admin_required(view):
    return roles_required(Role.ADMIN, Role.SUPERVISOR)(view)
