"""Role-to-permission policy for container memberships.

The table is the only place that decides what a role may do. Every
membership write goes through :func:`ensure_assignable_role` and
:func:`ensure_mutable_membership` before touching storage, which is what
keeps the ``owner`` membership unique and immutable.
"""

from __future__ import annotations

from typing import Protocol

from universo.constants import MemberRole, Permission
from universo.exceptions import InvalidRoleError, OwnerImmutableError

_CONTENT_PERMISSIONS = frozenset(
    {
        Permission.CREATE_CONTENT,
        Permission.EDIT_CONTENT,
        Permission.DELETE_CONTENT,
    }
)

ROLE_PERMISSIONS: dict[MemberRole, frozenset[Permission]] = {
    MemberRole.OWNER: frozenset(Permission),
    MemberRole.ADMIN: frozenset(Permission),
    MemberRole.EDITOR: _CONTENT_PERMISSIONS,
    MemberRole.MEMBER: frozenset(),
}

ASSIGNABLE_ROLES = frozenset({MemberRole.ADMIN, MemberRole.EDITOR, MemberRole.MEMBER})


class _HasRole(Protocol):
    role: str | None


def normalize_role(value: str | None) -> MemberRole:
    """Turn a stored role string into a :class:`MemberRole`.

    A missing role means ``member``. This is the single place that rule lives.
    Unknown strings raise :class:`InvalidRoleError`, which is also a ``ValueError``.
    """
    if not value:
        return MemberRole.MEMBER
    try:
        return MemberRole(value)
    except ValueError:
        raise InvalidRoleError(value) from None


def permissions_for(role: str | None) -> frozenset[Permission]:
    return ROLE_PERMISSIONS[normalize_role(role)]


def has_permission(role: str | None, permission: Permission | str) -> bool:
    return Permission(permission) in permissions_for(role)


def ensure_assignable_role(role: str | None) -> MemberRole:
    """Validate a role requested for invite/update. ``owner`` is never assignable."""
    normalized = normalize_role(role)
    if normalized == MemberRole.OWNER:
        raise OwnerImmutableError("The owner role cannot be assigned")
    return normalized


def ensure_mutable_membership(membership: _HasRole) -> None:
    """Reject any change to or removal of an ``owner`` membership."""
    if normalize_role(membership.role) == MemberRole.OWNER:
        raise OwnerImmutableError()


def permission_map(role: str | None) -> dict[str, bool]:
    """Every permission name mapped to whether ``role`` holds it."""
    granted = permissions_for(role)
    return {permission.value: permission in granted for permission in Permission}
