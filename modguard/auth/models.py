"""Caller identity for moderation requests."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Role hierarchy: admin > moderator > member."""

    admin = "admin"
    moderator = "moderator"
    member = "member"

    @property
    def level(self) -> int:
        """Return numeric level for comparison (higher = more privileges)."""
        return {
            Role.admin: 30,
            Role.moderator: 20,
            Role.member: 10,
        }[self]


@dataclass
class User:
    """An authenticated caller, as reported by the identity provider."""

    id: str
    email: str = ""
    display_name: str = ""
    role: Role = Role.member

    def __post_init__(self) -> None:
        if isinstance(self.role, str):
            self.role = Role(self.role)

    @property
    def audit_name(self) -> str:
        """Identity recorded in ``reviewedBy`` / ``updatedBy`` fields."""
        return self.email or self.id
