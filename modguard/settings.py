"""Process settings read from the environment.

These are deployment knobs (credentials, storage location, timeouts).  The
moderation policy itself lives in the persisted config document managed by
:class:`~modguard.moderation.config_store.ConfigStore`.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from modguard.moderation.reputation import DEFAULT_API_URL

logger = logging.getLogger(__name__)


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key, "")
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", key, raw, default)
        return default
    return value if value > 0 else default


@dataclass
class Settings:
    """Deployment settings for the moderation service."""

    home: Path = field(default_factory=lambda: Path.home() / ".modguard")
    virustotal_api_key: str = ""
    virustotal_api_url: str = DEFAULT_API_URL
    content_safety_endpoint: str = ""
    content_safety_key: str = ""
    classifier: str = "azure"
    anthropic_api_key: str = ""
    reputation_timeout: float = 5.0
    classifier_timeout: float = 10.0
    log_level: str = "INFO"
    admin_emails: list[str] = field(default_factory=list)

    @property
    def moderation_dir(self) -> Path:
        return self.home / "moderation"

    @property
    def audit_dir(self) -> Path:
        return self.home / "audit_logs"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> Settings:
        env = os.environ if env is None else env
        home = env.get("MODGUARD_HOME", "")
        return cls(
            home=Path(home).expanduser() if home else Path.home() / ".modguard",
            virustotal_api_key=env.get("VIRUSTOTAL_API_KEY", ""),
            virustotal_api_url=env.get("VIRUSTOTAL_API_URL", "") or DEFAULT_API_URL,
            content_safety_endpoint=env.get("CONTENT_SAFETY_ENDPOINT", ""),
            content_safety_key=env.get("CONTENT_SAFETY_KEY", ""),
            classifier=(env.get("MODGUARD_CLASSIFIER", "") or "azure").lower(),
            anthropic_api_key=env.get("ANTHROPIC_API_KEY", ""),
            reputation_timeout=_float(env, "MODGUARD_REPUTATION_TIMEOUT", 5.0),
            classifier_timeout=_float(env, "MODGUARD_CLASSIFIER_TIMEOUT", 10.0),
            log_level=(env.get("MODGUARD_LOG_LEVEL", "") or "INFO").upper(),
            admin_emails=[e.strip() for e in env.get("MODGUARD_ADMIN_EMAILS", "").split(",") if e.strip()],
        )
