"""Tiered content moderation.

Submissions pass through a keyword blocklist, a security signature floor,
link safety analysis and AI content classification; reviewable outcomes
land in a human moderation queue.
"""

from modguard.moderation.config_store import ConfigStore
from modguard.moderation.errors import (
    AlreadyReviewedError,
    ConfigurationError,
    DependencyUnavailableError,
    ModerationError,
    NotFoundError,
    ValidationError,
)
from modguard.moderation.models import Decision, ModerationConfig, QueueItem, SubmissionContext
from modguard.moderation.pipeline import ModerationPipeline
from modguard.moderation.queue_store import ModerationQueue
from modguard.moderation.violations import UserModerationStore

__all__ = [
    "AlreadyReviewedError",
    "ConfigStore",
    "ConfigurationError",
    "Decision",
    "DependencyUnavailableError",
    "ModerationConfig",
    "ModerationError",
    "ModerationPipeline",
    "ModerationQueue",
    "NotFoundError",
    "QueueItem",
    "SubmissionContext",
    "UserModerationStore",
    "ValidationError",
]
