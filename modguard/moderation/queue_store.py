"""File-based moderation queue.

Flagged submissions wait here for a human decision, backed by
``~/.modguard/moderation/queue.json``.  A review is a compare-and-swap on
``status == pending``: of two reviewers racing on the same item exactly one
wins and the other gets ``AlreadyReviewedError``.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from modguard.moderation.errors import AlreadyReviewedError, NotFoundError, StoreCorruptedError
from modguard.moderation.models import (
    BulkReviewResult,
    ModerationStats,
    QueueItem,
    QueueStatus,
)

logger = logging.getLogger(__name__)

REVIEW_ACTIONS = (QueueStatus.approved, QueueStatus.rejected)


class ModerationQueue:
    """File-based storage for moderation queue items.

    Storage path: ``~/.modguard/moderation/`` with:
    - ``queue.json`` -- list of queue item dicts (camelCase)
    """

    def __init__(self, base_dir: str | Path | None = None) -> None:
        self._base = Path(base_dir) if base_dir else Path.home() / ".modguard" / "moderation"
        self._base.mkdir(parents=True, exist_ok=True)
        self._queue_path = self._base / "queue.json"
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_json(self) -> list[dict]:
        """Load the stored items.

        An unreadable file raises ``StoreCorruptedError`` rather than
        reading as empty, so the next write cannot replace the audit
        history with a single item.
        """
        if not self._queue_path.exists():
            return []
        try:
            data = json.loads(self._queue_path.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            logger.error("Moderation queue %s is unreadable: %s", self._queue_path, exc)
            raise StoreCorruptedError(str(self._queue_path), str(exc)) from exc
        if not isinstance(data, list):
            logger.error("Moderation queue %s does not hold a list", self._queue_path)
            raise StoreCorruptedError(str(self._queue_path), "expected a list of items")
        return data

    def _write_json(self, data: list[dict]) -> None:
        tmp = self._queue_path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(data, indent=2, default=str))
        os.replace(tmp, self._queue_path)

    def _items(self) -> list[QueueItem]:
        return [QueueItem.from_dict(d) for d in self._read_json() if isinstance(d, dict) and "id" in d]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def enqueue(self, item: QueueItem) -> str:
        """Insert *item* as ``pending`` and return its generated id."""
        item.id = str(uuid.uuid4())
        item.status = QueueStatus.pending
        item.created_at = datetime.now(timezone.utc).isoformat()
        item.reviewed_at = None
        item.reviewed_by = None
        item.notes = None
        with self._lock:
            data = self._read_json()
            data.append(item.to_dict())
            self._write_json(data)
        logger.info(
            "Enqueued %s for review (workflow=%s, priority=%s)",
            item.id, item.workflow, item.priority.value,
        )
        return item.id

    def get(self, item_id: str) -> QueueItem:
        for item in self._items():
            if item.id == item_id:
                return item
        raise NotFoundError(item_id)

    def list(
        self,
        status: Optional[str] = QueueStatus.pending.value,
        workflow: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[QueueItem]:
        """Return items filtered by *status* (``all`` or None for every item), newest first."""
        # Storage order is insertion order; reversing it is newest first.
        items = list(reversed(self._items()))
        if status and status != "all":
            wanted = QueueStatus(status)
            items = [i for i in items if i.status is wanted]
        if workflow:
            items = [i for i in items if i.workflow == workflow]
        if limit is not None:
            items = items[:limit]
        return items

    def review(
        self,
        item_id: str,
        action: QueueStatus | str,
        reviewer: str,
        notes: Optional[str] = None,
    ) -> QueueItem:
        """Move a pending item to ``approved`` or ``rejected``.

        Raises ``NotFoundError`` for an unknown id and
        ``AlreadyReviewedError`` if the item has left ``pending``.
        """
        action = QueueStatus(action)
        if action not in REVIEW_ACTIONS:
            raise ValueError(f"Review action must be approved or rejected, not '{action.value}'")

        with self._lock:
            data = self._read_json()
            for index, raw in enumerate(data):
                if not isinstance(raw, dict) or raw.get("id") != item_id:
                    continue
                item = QueueItem.from_dict(raw)
                if item.status is not QueueStatus.pending:
                    raise AlreadyReviewedError(item_id, item.status.value)
                item.status = action
                item.reviewed_at = datetime.now(timezone.utc).isoformat()
                item.reviewed_by = reviewer
                item.notes = notes
                data[index] = item.to_dict()
                self._write_json(data)
                break
            else:
                raise NotFoundError(item_id)

        logger.info("Queue item %s %s by %s", item_id, action.value, reviewer)
        return item

    def bulk_review(
        self,
        item_ids: Iterable[str],
        action: QueueStatus | str,
        reviewer: str,
        notes: Optional[str] = None,
    ) -> list[BulkReviewResult]:
        """Review each id independently; one failure never aborts the rest."""
        results: list[BulkReviewResult] = []
        for item_id in item_ids:
            try:
                item = self.review(item_id, action, reviewer, notes)
            except (NotFoundError, AlreadyReviewedError) as exc:
                results.append(BulkReviewResult(id=item_id, ok=False, error=str(exc)))
            else:
                results.append(BulkReviewResult(id=item_id, ok=True, item=item))
        return results

    def stats(self) -> ModerationStats:
        """Counts per status plus items created today (UTC)."""
        today = datetime.now(timezone.utc).date().isoformat()
        stats = ModerationStats()
        for item in self._items():
            if item.status is QueueStatus.pending:
                stats.pending += 1
            elif item.status is QueueStatus.approved:
                stats.approved += 1
            elif item.status is QueueStatus.rejected:
                stats.rejected += 1
            if item.created_at.startswith(today):
                stats.today_total += 1
        return stats
