"""Decision aggregator for the tiered moderation pipeline.

Tiers run cheapest first: blocklist, security scanner, link safety, AI
classification.  The first tier that blocks stops the run.  Otherwise the
strongest requested action wins (review over flag over allow), and
reviewable outcomes are written to the moderation queue.

Tier 1.5 (security scanner) is a floor: it runs on any text whenever
moderation and the workflow are enabled, whatever the tier switches say.
An attached image is graded after the text tiers, against the Tier 3
thresholds, wherever Tier 3 applies.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

from modguard.moderation import ai_classifier, blocklist, link_safety, security_scanner
from modguard.moderation.content_safety import ContentClassifier
from modguard.moderation.models import (
    Decision,
    DecisionAction,
    ModerationConfig,
    Priority,
    QueueItem,
    RiskLevel,
    Severity,
    SubmissionContext,
    TierId,
    TierResult,
    TierTraceEntry,
    WorkflowConfig,
)
from modguard.moderation.queue_store import ModerationQueue
from modguard.moderation.reputation import ReputationService
from modguard.moderation.urls import defang_text
from modguard.moderation.violations import UserModerationStore

logger = logging.getLogger(__name__)

MAX_QUEUED_CONTENT = 1000

TIER_ORDER: tuple[TierId, ...] = (TierId.tier1, TierId.security, TierId.tier2, TierId.tier3, TierId.image)
TEXT_TIERS = frozenset(TIER_ORDER[:4])

TIER_NAMES: dict[TierId, str] = {
    TierId.tier1: blocklist.TIER_NAME,
    TierId.security: security_scanner.TIER_NAME,
    TierId.tier2: link_safety.TIER_NAME,
    TierId.tier3: ai_classifier.TIER_NAME,
    TierId.image: ai_classifier.IMAGE_TIER_NAME,
}

BLOCK_REASONS: dict[TierId, str] = {
    TierId.tier1: "tier1_keyword_match",
    TierId.security: "security_pattern_match",
    TierId.tier2: "tier2_malicious_link",
    TierId.tier3: "tier3_ai_violation",
    TierId.image: "tier3_image_violation",
}


def resolve_workflow(config: ModerationConfig, workflow: str) -> Optional[WorkflowConfig]:
    """Return the workflow's tier switches, or None if it is not configured."""
    return config.workflows.get(workflow)


def applicable_tiers(
    config: ModerationConfig, workflow: WorkflowConfig, *, text: bool = True, image: bool = False
) -> list[TierId]:
    """Tiers that run for *workflow*, in execution order.

    The text tiers are left out when the submission carries only an image.
    """
    ai = workflow.tier3 and config.tier3.enabled
    switches = {
        TierId.tier1: workflow.tier1 and config.tier1.enabled,
        TierId.security: True,
        TierId.tier2: workflow.tier2 and config.tier2.enabled,
        TierId.tier3: ai,
        TierId.image: ai and image,
    }
    return [
        tier for tier in TIER_ORDER
        if switches[tier] and (text or tier not in TEXT_TIERS)
    ]


def block_reason(result: TierResult) -> str:
    if result.tier is TierId.tier1 and result.matches and all(m.type == "domain" for m in result.matches):
        return "tier1_domain_match"
    return BLOCK_REASONS[result.tier]


def derive_priority(results: dict[TierId, TierResult]) -> Priority:
    """Review priority from the worst evidence any tier produced."""
    security = results.get(TierId.security)
    if security and any(m.severity is Severity.critical for m in security.security_matches):
        return Priority.critical
    links = results.get(TierId.tier2)
    if links and any(u.risk_level is RiskLevel.malicious for u in links.urls):
        return Priority.critical
    for tier in (TierId.tier3, TierId.image):
        ai = results.get(tier)
        if ai and ai.passed is False:
            return Priority.high
    keywords = results.get(TierId.tier1)
    if keywords and keywords.passed is False:
        return Priority.medium
    return Priority.low


class ModerationPipeline:
    """Runs the tiers for one submission and returns a :class:`Decision`.

    Parameters
    ----------
    queue : ModerationQueue | None
        Where reviewable submissions are enqueued.  Without one nothing is
        persisted.
    reputation : ReputationService | None
        URL reputation lookup for Tier 2.
    classifier : ContentClassifier | None
        Content-safety classifier for Tier 3; without one Tier 3 is skipped.
    users : UserModerationStore | None
        Per-user violations and admin blocks.
    """

    def __init__(
        self,
        queue: Optional[ModerationQueue] = None,
        reputation: Optional[ReputationService] = None,
        classifier: Optional[ContentClassifier] = None,
        users: Optional[UserModerationStore] = None,
        reputation_timeout: float = 5.0,
        classifier_timeout: float = 10.0,
    ) -> None:
        self.queue = queue
        self.reputation = reputation
        self.classifier = classifier
        self.users = users
        self.reputation_timeout = reputation_timeout
        self.classifier_timeout = classifier_timeout

    # -- tier dispatch -------------------------------------------------------

    async def run_tier(
        self, tier: TierId, content: str, config: ModerationConfig, image: Optional[str] = None
    ) -> TierResult:
        """Run a single tier.  Tiers 2 and 3 never raise; they degrade."""
        if tier is TierId.tier1:
            return blocklist.evaluate(content, config.tier1)
        if tier is TierId.security:
            return security_scanner.evaluate(content)
        if tier is TierId.tier2:
            try:
                return await link_safety.evaluate(
                    content, config.tier2, self.reputation, self.reputation_timeout
                )
            except Exception:
                logger.exception("Link safety failed; retrying with pattern analysis only")
                result = await link_safety.evaluate(content, config.tier2, None)
                result.degraded = True
                return result
        if tier in (TierId.tier3, TierId.image):
            try:
                if tier is TierId.image:
                    return await ai_classifier.evaluate_image(
                        image or "", config.tier3, self.classifier, self.classifier_timeout
                    )
                return await ai_classifier.evaluate(
                    content, config.tier3, self.classifier, self.classifier_timeout
                )
            except Exception:
                logger.exception("AI classification failed; skipping tier")
                return TierResult(
                    tier=tier,
                    name=TIER_NAMES[tier],
                    passed=None,
                    action=DecisionAction.skip,
                    message="Content classifier failed; tier skipped",
                    degraded=True,
                )
        raise ValueError(f"Not a runnable tier: {tier}")

    # -- aggregation ---------------------------------------------------------

    async def moderate(
        self,
        content: str,
        workflow: str,
        config: ModerationConfig,
        context: Optional[SubmissionContext] = None,
        *,
        image: Optional[str] = None,
        enqueue: bool = True,
    ) -> Decision:
        """Evaluate *content* (and an optional base64 *image*) for *workflow*.

        With ``enqueue=False`` (dry run) nothing is written: no queue item,
        no violation record.
        """
        context = context or SubmissionContext()
        content = content or ""
        has_text = bool(content.strip()) or not image
        if image:
            context = replace(context, content_type="mixed" if has_text else "image")

        if not config.enabled:
            return self._gate(workflow, "moderation_disabled", "Moderation is disabled")
        wf = resolve_workflow(config, workflow)
        if wf is None:
            logger.warning("No moderation settings for workflow %s; skipping", workflow)
        if wf is None or not wf.enabled:
            return self._gate(workflow, "workflow_disabled", f"Moderation is disabled for '{workflow}'")

        if context.user_id and self.users is not None and self.users.is_blocked(context.user_id):
            logger.info("Refusing submission from blocked user %s (workflow=%s)", context.user_id, workflow)
            return Decision(
                allowed=False,
                action=DecisionAction.block,
                reason="user_blocked",
                workflow=workflow,
                tier_flow=[TierTraceEntry(
                    tier=TierId.gate,
                    name="User Status",
                    action=DecisionAction.block,
                    passed=False,
                    message="User is blocked from posting",
                )],
            )

        tiers = applicable_tiers(config, wf, text=has_text, image=bool(image))
        results: dict[TierId, TierResult] = {}
        trace: list[TierTraceEntry] = []
        blocker: Optional[TierResult] = None

        for index, tier in enumerate(tiers):
            result = await self.run_tier(tier, content, config, image)
            results[tier] = result
            trace.append(TierTraceEntry.from_result(result))
            if result.action is DecisionAction.block:
                blocker = result
                skipped = tiers[index + 1:]
                trace.append(TierTraceEntry(
                    tier=TierId.decision,
                    name="Short-circuit",
                    action=DecisionAction.block,
                    passed=False,
                    message=(
                        f"Blocked by {result.name}"
                        + (f"; skipped {', '.join(TIER_NAMES[t] for t in skipped)}" if skipped else "")
                    ),
                    evidence={"skipped": [t.value for t in skipped]} if skipped else {},
                ))
                break

        if blocker is not None:
            decision = Decision(
                allowed=False,
                action=DecisionAction.block,
                reason=block_reason(blocker),
                workflow=workflow,
                tier_flow=trace,
                results=results,
            )
            logger.info(
                "Blocked submission (workflow=%s, reason=%s, tier=%s)",
                workflow, decision.reason, blocker.tier.value,
            )
            if enqueue and context.user_id and self.users is not None:
                self.users.record_violation(context.user_id, decision.reason, workflow, content)
            return decision

        actions = {r.action for r in results.values()}
        if DecisionAction.review in actions:
            decision = Decision(
                allowed=False,
                action=DecisionAction.review,
                reason="pending_review",
                workflow=workflow,
                tier_flow=trace,
                needs_review=True,
                priority=derive_priority(results),
                show_pending_message=config.show_pending_message,
                pending_message_text=config.pending_message_text if config.show_pending_message else None,
                results=results,
            )
        elif DecisionAction.flag in actions:
            decision = Decision(
                allowed=True,
                action=DecisionAction.flag,
                reason="flagged",
                workflow=workflow,
                tier_flow=trace,
                needs_review=True,
                priority=derive_priority(results),
                results=results,
            )
        else:
            return Decision(
                allowed=True,
                action=DecisionAction.allow,
                reason="passed",
                workflow=workflow,
                tier_flow=trace,
                results=results,
            )

        if enqueue and self.queue is not None:
            decision.queue_item_id = self.queue.enqueue(self._queue_item(content, workflow, context, decision))
        return decision

    # -- helpers -------------------------------------------------------------

    @staticmethod
    def _gate(workflow: str, reason: str, message: str) -> Decision:
        return Decision(
            allowed=True,
            action=DecisionAction.skip,
            reason=reason,
            workflow=workflow,
            tier_flow=[TierTraceEntry(
                tier=TierId.gate,
                name="Moderation",
                action=DecisionAction.skip,
                passed=None,
                message=message,
            )],
        )

    @staticmethod
    def _queue_item(
        content: str, workflow: str, context: SubmissionContext, decision: Decision
    ) -> QueueItem:
        def result_dict(tier: TierId) -> Optional[dict]:
            result = decision.results.get(tier)
            return result.to_dict() if result is not None else None

        stored = "[image]" if context.content_type == "image" else content[:MAX_QUEUED_CONTENT]
        return QueueItem(
            id="",
            workflow=workflow,
            content=stored,
            safe_content=defang_text(stored),
            type=context.type,
            content_type=context.content_type,
            content_id=context.content_id,
            user_id=context.user_id,
            user_email=context.user_email,
            channel_id=context.channel_id,
            group_id=context.group_id,
            tier1_result=result_dict(TierId.tier1),
            security_result=result_dict(TierId.security),
            tier2_result=result_dict(TierId.tier2),
            tier3_result=result_dict(TierId.tier3),
            image_result=result_dict(TierId.image),
            tier_flow=[entry.to_dict() for entry in decision.tier_flow],
            priority=decision.priority or Priority.low,
            overall_action=decision.action,
        )
