"""Per-user violation tracking and admin blocking.

Every blocked submission with a known user id is recorded in
``~/.modguard/moderation/violations.json``.  Admins can block a user
outright; a blocked user's submissions are refused before any tier runs.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from modguard.moderation.errors import StoreCorruptedError, ValidationError
from modguard.moderation.models import BlockEvent, UserModerationStatus, ViolationRecord
from modguard.moderation.urls import defang_text

logger = logging.getLogger(__name__)

SNIPPET_LENGTH = 100


def make_snippet(content: str) -> str:
    """First 100 chars of *content* with URLs defanged."""
    text = content or ""
    snippet = text[:SNIPPET_LENGTH] + ("..." if len(text) > SNIPPET_LENGTH else "")
    return defang_text(snippet)


class UserModerationStore:
    """File-backed per-user moderation state."""

    def __init__(self, base_dir: str | Path | None = None) -> None:
        self._base = Path(base_dir) if base_dir else Path.home() / ".modguard" / "moderation"
        self._base.mkdir(parents=True, exist_ok=True)
        self._violations_path = self._base / "violations.json"
        self._lock = threading.Lock()

    # -- persistence ---------------------------------------------------------

    def _load_all(self) -> dict:
        if not self._violations_path.exists():
            return {}
        try:
            data = json.loads(self._violations_path.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            logger.error("Could not read %s: %s", self._violations_path, exc)
            raise StoreCorruptedError(str(self._violations_path), str(exc)) from exc
        if not isinstance(data, dict):
            logger.error("%s does not hold a user map", self._violations_path)
            raise StoreCorruptedError(str(self._violations_path), "expected an object keyed by user id")
        return data

    def _save_all(self, data: dict) -> None:
        tmp = self._violations_path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(data, indent=2))
        os.replace(tmp, self._violations_path)

    def _load_user(self, data: dict, user_id: str) -> UserModerationStatus:
        entry = data.get(user_id)
        if not isinstance(entry, dict):
            return UserModerationStatus(user_id=user_id)
        return UserModerationStatus(
            user_id=user_id,
            violation_count=entry.get("violation_count", 0),
            is_blocked=entry.get("is_blocked", False),
            block_reason=entry.get("block_reason", ""),
            blocked_at=entry.get("blocked_at"),
            blocked_by=entry.get("blocked_by"),
            violations=[ViolationRecord(**v) for v in entry.get("violations", [])],
            block_history=[BlockEvent(**e) for e in entry.get("block_history", [])],
        )

    def _store_user(self, data: dict, status: UserModerationStatus) -> None:
        entry = asdict(status)
        entry.pop("user_id")
        data[status.user_id] = entry
        self._save_all(data)

    # -- queries -------------------------------------------------------------

    def get_user_status(self, user_id: str) -> UserModerationStatus:
        """Return the moderation status for *user_id* (empty if unknown)."""
        return self._load_user(self._load_all(), user_id)

    def is_blocked(self, user_id: str) -> bool:
        if not user_id:
            return False
        return self.get_user_status(user_id).is_blocked

    def list_blocked(self) -> list[UserModerationStatus]:
        data = self._load_all()
        statuses = [self._load_user(data, uid) for uid in data]
        return [s for s in statuses if s.is_blocked]

    # -- mutations -----------------------------------------------------------

    def record_violation(
        self, user_id: str, reason: str, workflow: str = "", content: str = ""
    ) -> UserModerationStatus:
        """Append a violation for *user_id*."""
        with self._lock:
            data = self._load_all()
            status = self._load_user(data, user_id)
            status.violation_count += 1
            status.violations.append(
                ViolationRecord(
                    timestamp=datetime.now(timezone.utc).isoformat(),
                    reason=reason,
                    workflow=workflow,
                    snippet=make_snippet(content),
                )
            )
            self._store_user(data, status)
        logger.info("Recorded violation %s for user %s (total %d)", reason, user_id, status.violation_count)
        return status

    def set_block_status(
        self,
        user_id: str,
        blocked: bool,
        reason: str = "",
        admin: Optional[str] = None,
    ) -> UserModerationStatus:
        """Block or unblock *user_id*.  A reason is required to block."""
        reason = (reason or "").strip()
        if blocked and not reason:
            raise ValidationError(["reason is required when blocking a user"])

        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            data = self._load_all()
            status = self._load_user(data, user_id)
            status.is_blocked = blocked
            status.block_reason = reason if blocked else ""
            status.blocked_at = now if blocked else None
            status.blocked_by = admin if blocked else None
            status.block_history.append(
                BlockEvent(timestamp=now, blocked=blocked, reason=reason, admin=admin or "")
            )
            self._store_user(data, status)
        logger.info("User %s %s by %s", user_id, "blocked" if blocked else "unblocked", admin or "system")
        return status
