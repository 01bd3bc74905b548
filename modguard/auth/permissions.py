"""Role-based access control for the moderation API.

Role hierarchy: admin > moderator > member
"""

from __future__ import annotations

from typing import Iterable

from fastapi import HTTPException, status

from modguard.auth.models import Role, User


def resolve_role(roles: Iterable[str], email: str = "", admin_emails: Iterable[str] = ()) -> Role:
    """Pick the highest known role from *roles*.

    Emails listed in *admin_emails* are always admins.
    """
    if email and email.lower() in {e.strip().lower() for e in admin_emails if e.strip()}:
        return Role.admin
    best = Role.member
    for name in roles:
        try:
            role = Role(str(name).strip().lower())
        except ValueError:
            continue
        if role.level > best.level:
            best = role
    return best


def has_permission(user: User, required_role: Role) -> bool:
    """True if the user's role level is at least *required_role*'s."""
    return user.role.level >= required_role.level


def require_role(user: User, role: Role) -> None:
    """Raise ``HTTPException(403)`` if *user* lacks *role*.

    Usage in a router::

        @router.put("/config")
        async def put_config(user: User = Depends(get_current_user)):
            require_role(user, Role.admin)
            ...
    """
    if not has_permission(user, role):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Requires role '{role.value}' or higher",
        )
