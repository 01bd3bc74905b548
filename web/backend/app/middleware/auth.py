"""Auth middleware -- FastAPI dependencies for extracting the current user.

Supports two identity sources:
1. ``X-MS-CLIENT-PRINCIPAL`` -- base64 JSON principal injected by the
   hosting platform's auth layer (``userId``, ``userDetails``, ``userRoles``)
2. ``X-User-Id`` / ``X-User-Email`` / ``X-User-Roles`` headers set by a
   trusted gateway
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Optional

from fastapi import Header, HTTPException, status

from modguard.auth.models import Role, User
from modguard.auth.permissions import require_role, resolve_role
from modguard.settings import Settings

_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the singleton Settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def _decode_principal(raw: str) -> Optional[dict]:
    try:
        data = json.loads(base64.b64decode(raw, validate=False).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


async def get_current_user(
    x_ms_client_principal: Optional[str] = Header(None, alias="X-MS-CLIENT-PRINCIPAL"),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    x_user_email: Optional[str] = Header(None, alias="X-User-Email"),
    x_user_roles: Optional[str] = Header(None, alias="X-User-Roles"),
) -> User:
    """FastAPI dependency that resolves the calling user.

    Raises ``401 Unauthorized`` if no identity is present.
    """
    admin_emails = get_settings().admin_emails

    # 1. Platform principal
    if x_ms_client_principal:
        principal = _decode_principal(x_ms_client_principal)
        if principal and principal.get("userId"):
            email = str(principal.get("userDetails") or "")
            roles = principal.get("userRoles") or []
            return User(
                id=str(principal["userId"]),
                email=email,
                display_name=email,
                role=resolve_role(roles if isinstance(roles, list) else [], email, admin_emails),
            )

    # 2. Gateway headers
    if x_user_id:
        email = x_user_email or ""
        roles = [r for r in (x_user_roles or "").split(",") if r.strip()]
        return User(
            id=x_user_id,
            email=email,
            display_name=email,
            role=resolve_role(roles, email, admin_emails),
        )

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
    )


def require_admin(user: User) -> None:
    """Raise 403 unless *user* is an admin."""
    require_role(user, Role.admin)


def require_moderator(user: User) -> None:
    """Raise 403 unless *user* can review queue items."""
    require_role(user, Role.moderator)
