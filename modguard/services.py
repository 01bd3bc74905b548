"""Wiring: build the stores, clients and pipeline from :class:`Settings`."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from modguard.moderation.config_store import ConfigStore
from modguard.moderation.content_safety import build_classifier
from modguard.moderation.pipeline import ModerationPipeline
from modguard.moderation.queue_store import ModerationQueue
from modguard.moderation.reputation import VirusTotalClient
from modguard.moderation.violations import UserModerationStore
from modguard.security.audit_log import AuditLogger
from modguard.settings import Settings

logger = logging.getLogger(__name__)


@dataclass
class ModerationServices:
    settings: Settings
    config: ConfigStore
    queue: ModerationQueue
    users: UserModerationStore
    audit: AuditLogger
    pipeline: ModerationPipeline


def build_services(settings: Optional[Settings] = None) -> ModerationServices:
    """Create every moderation collaborator rooted at ``settings.home``."""
    settings = settings or Settings.from_env()
    queue = ModerationQueue(settings.moderation_dir)
    users = UserModerationStore(settings.moderation_dir)

    reputation = None
    if settings.virustotal_api_key:
        reputation = VirusTotalClient(
            api_key=settings.virustotal_api_key,
            api_url=settings.virustotal_api_url,
            timeout=settings.reputation_timeout,
        )
    else:
        logger.info("Reputation lookups disabled: VIRUSTOTAL_API_KEY not set")

    classifier = build_classifier(
        settings.classifier,
        endpoint=settings.content_safety_endpoint,
        api_key=settings.content_safety_key,
        anthropic_api_key=settings.anthropic_api_key,
        timeout=settings.classifier_timeout,
    )

    pipeline = ModerationPipeline(
        queue=queue,
        reputation=reputation,
        classifier=classifier,
        users=users,
        reputation_timeout=settings.reputation_timeout,
        classifier_timeout=settings.classifier_timeout,
    )
    return ModerationServices(
        settings=settings,
        config=ConfigStore(settings.moderation_dir),
        queue=queue,
        users=users,
        audit=AuditLogger(settings.audit_dir),
        pipeline=pipeline,
    )
