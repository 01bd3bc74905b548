"""Moderation router -- analysis, configuration, review queue, users, audit."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from modguard.auth.models import User
from modguard.moderation.errors import AlreadyReviewedError, NotFoundError, ValidationError
from modguard.moderation.models import QueueItem, SubmissionContext, UserModerationStatus
from modguard.security.audit_log import AuditAction
from modguard.services import ModerationServices, build_services
from web.backend.app.middleware.auth import (
    get_current_user,
    get_settings,
    require_admin,
    require_moderator,
)
from web.backend.app.models.api import (
    AnalyzeRequest,
    AuditEntryResponse,
    BlocklistRequest,
    BlockUserRequest,
    BulkReviewItemResponse,
    BulkReviewRequest,
    BulkReviewResponse,
    DecisionResponse,
    QueueItemResponse,
    QueueListResponse,
    ReviewRequest,
    StatsResponse,
    UserStatusResponse,
)

router = APIRouter(prefix="/moderation", tags=["moderation"])


# ---------------------------------------------------------------------------
# Service singleton
# ---------------------------------------------------------------------------

_services: ModerationServices | None = None


def _get_services() -> ModerationServices:
    global _services
    if _services is None:
        _services = build_services(get_settings())
    return _services


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _queue_item_response(item: QueueItem) -> QueueItemResponse:
    return QueueItemResponse(**item.to_dict())


def _user_response(status_: UserModerationStatus) -> UserStatusResponse:
    return UserStatusResponse(**status_.to_dict())


def _validation_failed(exc: ValidationError) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={"errors": exc.errors},
    )


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


@router.post(
    "/analyze",
    response_model=DecisionResponse,
    summary="Moderate a submission (or dry-run it)",
)
async def analyze(body: AnalyzeRequest, user: User = Depends(get_current_user)):
    """Run the tier pipeline over ``text`` and ``image`` for ``workflow``.

    With ``dryRun`` the current config is tested without enqueueing or
    recording violations; that path is restricted to admins.
    """
    services = _get_services()
    context = SubmissionContext(
        user_id=user.id,
        user_email=user.email,
        type=body.type,
        content_type=body.content_type,
        content_id=body.content_id,
        channel_id=body.channel_id,
        group_id=body.group_id,
    )
    if body.dry_run:
        require_admin(user)
        decision = await services.config.test_evaluate(
            body.text, body.workflow, services.pipeline, context, image=body.image
        )
    else:
        decision = await services.pipeline.moderate(
            body.text, body.workflow, services.config.get(), context, image=body.image
        )
    return DecisionResponse(**decision.to_dict())


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@router.get(
    "/config",
    response_model=dict[str, Any],
    summary="Get the moderation configuration",
)
async def get_config(user: User = Depends(get_current_user)):
    require_admin(user)
    return _get_services().config.get().to_dict()


@router.put(
    "/config",
    response_model=dict[str, Any],
    summary="Replace the moderation configuration",
)
async def put_config(
    body: dict[str, Any] = Body(...),
    user: User = Depends(get_current_user),
):
    """Validate and atomically replace the whole configuration document."""
    require_admin(user)
    services = _get_services()
    try:
        config = services.config.put(body, updated_by=user.audit_name)
    except ValidationError as exc:
        raise _validation_failed(exc) from exc
    services.audit.log_event(
        actor=user.audit_name,
        action=AuditAction.CONFIG_UPDATE,
        resource_type="moderation_config",
        resource_id="config",
        details={"version": config.version},
    )
    return config.to_dict()


@router.post(
    "/blocklist",
    response_model=dict[str, Any],
    summary="Replace the Tier 1 blocklist",
)
async def replace_blocklist(body: BlocklistRequest, user: User = Depends(get_current_user)):
    require_admin(user)
    services = _get_services()
    try:
        config = services.config.replace_blocklist(body.terms, updated_by=user.audit_name)
    except ValidationError as exc:
        raise _validation_failed(exc) from exc
    services.audit.log_event(
        actor=user.audit_name,
        action=AuditAction.BLOCKLIST_REPLACE,
        resource_type="moderation_config",
        resource_id="config",
        details={"terms": len(config.tier1.blocklist), "version": config.version},
    )
    return config.to_dict()


# ---------------------------------------------------------------------------
# Review queue
# ---------------------------------------------------------------------------


@router.get(
    "/queue",
    response_model=QueueListResponse,
    summary="List queue items",
)
async def list_queue(
    status_filter: str = Query("pending", alias="status", pattern="^(pending|approved|rejected|all)$"),
    workflow: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    user: User = Depends(get_current_user),
):
    """Return queue items for the given status, newest first."""
    require_moderator(user)
    items = _get_services().queue.list(status=status_filter, workflow=workflow, limit=limit)
    return QueueListResponse(items=[_queue_item_response(i) for i in items], total=len(items))


@router.put(
    "/queue/bulk",
    response_model=BulkReviewResponse,
    summary="Approve or reject several queue items",
)
async def bulk_review(body: BulkReviewRequest, user: User = Depends(get_current_user)):
    """Review each id independently and report per-id outcomes."""
    require_moderator(user)
    services = _get_services()
    results = services.queue.bulk_review(body.ids, body.action, user.audit_name, body.notes)
    for result in results:
        details = {"action": body.action, "bulk": True}
        if result.error:
            details["error"] = result.error
        services.audit.log_event(
            actor=user.audit_name,
            action=AuditAction.QUEUE_REVIEW,
            resource_type="queue_item",
            resource_id=result.id,
            details=details,
            success=result.ok,
        )
    return BulkReviewResponse(results=[
        BulkReviewItemResponse(
            id=r.id,
            ok=r.ok,
            item=_queue_item_response(r.item) if r.item is not None else None,
            error=r.error or None,
        )
        for r in results
    ])


@router.put(
    "/queue/{item_id}",
    response_model=QueueItemResponse,
    summary="Approve or reject a queue item",
)
async def review_item(item_id: str, body: ReviewRequest, user: User = Depends(get_current_user)):
    require_moderator(user)
    services = _get_services()
    try:
        item = services.queue.review(item_id, body.action, user.audit_name, body.notes)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except AlreadyReviewedError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    services.audit.log_event(
        actor=user.audit_name,
        action=AuditAction.QUEUE_REVIEW,
        resource_type="queue_item",
        resource_id=item_id,
        details={"action": body.action},
    )
    return _queue_item_response(item)


@router.get(
    "/stats",
    response_model=StatsResponse,
    summary="Queue counts",
)
async def get_stats(user: User = Depends(get_current_user)):
    require_moderator(user)
    stats = _get_services().queue.stats()
    return StatsResponse(
        pending=stats.pending,
        approved=stats.approved,
        rejected=stats.rejected,
        today_total=stats.today_total,
    )


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.get(
    "/users/{user_id}",
    response_model=UserStatusResponse,
    summary="Get a user's moderation status",
)
async def get_user_status(user_id: str, user: User = Depends(get_current_user)):
    require_moderator(user)
    return _user_response(_get_services().users.get_user_status(user_id))


@router.put(
    "/users/{user_id}/block",
    response_model=UserStatusResponse,
    summary="Block a user from posting",
)
async def block_user(user_id: str, body: BlockUserRequest, user: User = Depends(get_current_user)):
    require_admin(user)
    services = _get_services()
    try:
        result = services.users.set_block_status(user_id, True, body.reason, user.audit_name)
    except ValidationError as exc:
        raise _validation_failed(exc) from exc
    services.audit.log_event(
        actor=user.audit_name,
        action=AuditAction.USER_BLOCK,
        resource_type="user",
        resource_id=user_id,
        details={"reason": result.block_reason},
    )
    return _user_response(result)


@router.put(
    "/users/{user_id}/unblock",
    response_model=UserStatusResponse,
    summary="Lift a user's block",
)
async def unblock_user(user_id: str, user: User = Depends(get_current_user)):
    require_admin(user)
    services = _get_services()
    result = services.users.set_block_status(user_id, False, admin=user.audit_name)
    services.audit.log_event(
        actor=user.audit_name,
        action=AuditAction.USER_UNBLOCK,
        resource_type="user",
        resource_id=user_id,
    )
    return _user_response(result)


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


@router.get(
    "/audit",
    response_model=list[AuditEntryResponse],
    summary="Recent moderation admin actions",
)
async def get_audit(
    action: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    user: User = Depends(get_current_user),
):
    require_admin(user)
    entries = _get_services().audit.get_events(action=action, limit=limit)
    return [
        AuditEntryResponse(
            id=e.id,
            timestamp=e.timestamp,
            actor=e.actor,
            action=e.action,
            resource_type=e.resource_type,
            resource_id=e.resource_id,
            details=e.details,
            success=e.success,
        )
        for e in entries
    ]
