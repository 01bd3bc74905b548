"""Pydantic models for API request/response serialization.

Fields are snake_case in Python and camelCase on the wire, matching the
JSON documents the moderation stores persist and the admin console reads.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = {"populate_by_name": True, "alias_generator": to_camel}


ReviewAction = Literal["approved", "rejected"]

MAX_IMAGE_BYTES = 4 * 1024 * 1024


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


class AnalyzeRequest(CamelModel):
    """A submission to moderate (or dry-run with ``dryRun``).

    At least one of ``text`` and ``image`` (base64, optionally as a
    ``data:`` URL) is required.
    """

    text: str = ""
    image: Optional[str] = None
    type: str = "message"
    workflow: str = "community"
    content_type: str = "text"
    content_id: str = ""
    channel_id: str = ""
    group_id: str = ""
    dry_run: bool = False

    @field_validator("image")
    @classmethod
    def validate_image(cls, v):
        if v is None:
            return v
        if v.startswith("data:") and "," in v:
            v = v.split(",", 1)[1]
        try:
            raw = base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("image must be base64-encoded") from exc
        if not raw:
            raise ValueError("image is empty")
        if len(raw) > MAX_IMAGE_BYTES:
            raise ValueError("image exceeds 4 MB")
        return v

    @model_validator(mode="after")
    def require_content(self):
        if not self.text and not self.image:
            raise ValueError("text or image is required")
        return self


class DecisionResponse(CamelModel):
    """Mirrors modguard.moderation.models.Decision."""

    allowed: bool
    action: str
    reason: str
    workflow: str
    tier_flow: list[dict[str, Any]] = Field(default_factory=list)
    needs_review: bool = False
    priority: Optional[str] = None
    queue_item_id: Optional[str] = None
    show_pending_message: bool = False
    pending_message_text: Optional[str] = None


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------


class QueueItemResponse(CamelModel):
    """Mirrors modguard.moderation.models.QueueItem."""

    id: str
    workflow: str
    content: str
    safe_content: str
    type: str = "message"
    content_type: str = "text"
    content_id: str = ""
    user_id: str = ""
    user_email: str = ""
    channel_id: str = ""
    group_id: str = ""
    tier1_result: Optional[dict[str, Any]] = None
    security_result: Optional[dict[str, Any]] = None
    tier2_result: Optional[dict[str, Any]] = None
    tier3_result: Optional[dict[str, Any]] = None
    image_result: Optional[dict[str, Any]] = None
    tier_flow: list[dict[str, Any]] = Field(default_factory=list)
    priority: str = "low"
    overall_action: str = "review"
    status: str = "pending"
    created_at: str = ""
    reviewed_at: Optional[str] = None
    reviewed_by: Optional[str] = None
    notes: Optional[str] = None


class QueueListResponse(CamelModel):
    items: list[QueueItemResponse] = Field(default_factory=list)
    total: int = 0


class ReviewRequest(CamelModel):
    action: ReviewAction
    notes: Optional[str] = None


class BulkReviewRequest(CamelModel):
    ids: list[str] = Field(min_length=1)
    action: ReviewAction
    notes: Optional[str] = None


class BulkReviewItemResponse(CamelModel):
    id: str
    ok: bool
    item: Optional[QueueItemResponse] = None
    error: Optional[str] = None


class BulkReviewResponse(CamelModel):
    results: list[BulkReviewItemResponse] = Field(default_factory=list)


class StatsResponse(CamelModel):
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    today_total: int = 0


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class BlocklistRequest(CamelModel):
    terms: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserStatusResponse(CamelModel):
    """Mirrors modguard.moderation.models.UserModerationStatus."""

    user_id: str
    violation_count: int = 0
    is_blocked: bool = False
    block_reason: str = ""
    blocked_at: Optional[str] = None
    blocked_by: Optional[str] = None
    violations: list[dict[str, Any]] = Field(default_factory=list)
    block_history: list[dict[str, Any]] = Field(default_factory=list)


class BlockUserRequest(CamelModel):
    reason: str = ""


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditEntryResponse(CamelModel):
    """Mirrors modguard.security.audit_log.AuditEntry."""

    id: str
    timestamp: str
    actor: str
    action: str
    resource_type: str
    resource_id: str
    details: dict[str, Any] = Field(default_factory=dict)
    success: bool = True
