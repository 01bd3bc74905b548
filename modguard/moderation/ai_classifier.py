"""Tier 3 -- AI content classification against per-category thresholds."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Optional

from modguard.moderation.content_safety import ContentClassifier, normalize_category
from modguard.moderation.errors import ConfigurationError, DependencyUnavailableError
from modguard.moderation.models import (
    TIER3_CATEGORIES,
    CategoryScore,
    DecisionAction,
    TierAction,
    Tier3Config,
    TierCheck,
    TierId,
    TierResult,
)

logger = logging.getLogger(__name__)

TIER_NAME = "AI Content Analysis"
IMAGE_TIER_NAME = "AI Image Analysis"

_NAMES = {TierId.tier3: TIER_NAME, TierId.image: IMAGE_TIER_NAME}

_LABELS = {"hate": "Hate", "sexual": "Sexual", "violence": "Violence", "selfHarm": "Self-harm"}


def _skipped(message: str, tier: TierId = TierId.tier3) -> TierResult:
    return TierResult(
        tier=tier,
        name=_NAMES[tier],
        passed=None,
        action=DecisionAction.skip,
        message=message,
        degraded=True,
    )


def breach_action(config: Tier3Config) -> DecisionAction:
    """Action for a threshold breach; ``autoBlock`` off never blocks."""
    if config.action is TierAction.block and config.auto_block:
        return DecisionAction.block
    return DecisionAction.review


def score(severities: dict[str, int], config: Tier3Config, tier: TierId = TierId.tier3) -> TierResult:
    """Compare classifier *severities* with the configured thresholds."""
    result = TierResult(tier=tier, name=_NAMES[tier])
    prefix = "image_" if tier is TierId.image else ""
    normalized: dict[str, int] = {}
    for key, value in severities.items():
        category = normalize_category(key)
        if category:
            normalized[category] = max(normalized.get(category, 0), int(value))

    thresholds = {normalize_category(k) or k: v for k, v in config.thresholds.items()}
    breached: list[CategoryScore] = []
    for category in TIER3_CATEGORIES:
        severity = normalized.get(category, 0)
        threshold = thresholds.get(category)
        if threshold is None:
            continue
        passed = severity < threshold
        entry = CategoryScore(category=category, severity=severity, threshold=threshold, passed=passed)
        result.categories.append(entry)
        result.checks.append(TierCheck(
            name=f"{prefix}{category}_check",
            passed=passed,
            message=f"{_LABELS[category]}: severity {severity} (threshold {threshold})",
            target=category,
        ))
        if not passed:
            breached.append(entry)

    if breached:
        result.passed = False
        result.action = breach_action(config)
        result.message = "Threshold exceeded: " + ", ".join(
            f"{_LABELS[c.category]} {c.severity}>={c.threshold}" for c in breached
        )
    else:
        result.message = "All categories below threshold"
    return result


async def evaluate(
    content: str,
    config: Tier3Config,
    classifier: Optional[ContentClassifier] = None,
    timeout: float = 10.0,
) -> TierResult:
    """Run the AI classification tier.

    An absent, unconfigured, failing or slow classifier skips the tier
    instead of blocking.
    """
    if classifier is None:
        return _skipped("Content classifier not configured; tier skipped")
    return await _grade(classifier.classify(content or ""), config, TierId.tier3, timeout)


async def evaluate_image(
    image: str,
    config: Tier3Config,
    classifier: Optional[ContentClassifier] = None,
    timeout: float = 10.0,
) -> TierResult:
    """Grade a base64 image against the same thresholds as text.

    Classifiers without ``classify_image`` skip the check.
    """
    classify_image = getattr(classifier, "classify_image", None)
    if classify_image is None:
        return _skipped("Image classifier not configured; check skipped", TierId.image)
    return await _grade(classify_image(image), config, TierId.image, timeout)


async def _grade(
    pending: Awaitable[dict[str, int]], config: Tier3Config, tier: TierId, timeout: float
) -> TierResult:
    name = _NAMES[tier]
    try:
        severities = await asyncio.wait_for(pending, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("%s timed out after %.1fs; skipping", name, timeout)
        return _skipped("Content classifier timed out; tier skipped", tier)
    except ConfigurationError as exc:
        logger.info("%s skipped: %s", name, exc)
        return _skipped(f"{exc}; tier skipped", tier)
    except DependencyUnavailableError as exc:
        logger.warning("%s unavailable: %s", name, exc)
        return _skipped(f"{exc}; tier skipped", tier)

    return score(severities, config, tier)
