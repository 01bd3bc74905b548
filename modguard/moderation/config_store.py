"""Persistent moderation configuration.

The whole policy lives in one JSON document at
``~/.modguard/moderation/config.json``.  It is created with defaults on
first read, replaced only as a whole through :meth:`ConfigStore.put`
after validation, and written atomically (temp file + ``os.replace``) so a
concurrent reader never sees half an update.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Optional

from modguard.moderation.content_safety import normalize_category
from modguard.moderation.errors import ValidationError
from modguard.moderation.models import (
    DEFAULT_THRESHOLDS,
    SEVERITY_LEVELS,
    Decision,
    ModerationConfig,
    SubmissionContext,
)
from modguard.moderation.urls import normalize_domain

if TYPE_CHECKING:
    from modguard.moderation.pipeline import ModerationPipeline

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_BLOCKLIST: list[str] = [
    # Hate speech and slurs
    "n*gger", "n1gger", "nigga", "sp*c", "spic", "w*tback", "wetback",
    "ch*nk", "chink", "g**k", "gook", "k*ke", "kike", "f*ggot", "faggot",
    "tr*nny", "tranny", "ret*rd", "retard",
    "white power", "heil hitler", "sieg heil", "1488", "14/88",
    "race war", "gas the jews",
    # Violent threats
    "i will kill you", "gonna kill you", "kill yourself", "kys", "go die",
    "hope you die", "stab you", "murder you", "shoot you dead",
    "shoot up the school",
    # Self-harm encouragement
    "go cut yourself", "hang yourself", "drink bleach", "end your life",
    "slit your wrists", "suicide method",
    # Sexual exploitation
    "child porn", "cp links", "jailbait", "rape you", "molest", "pedophile",
    # Harassment
    "doxx", "doxxing", "swatting", "found your house", "i know where you live", "post your nudes",
    # Spam
    "free bitcoin", "crypto giveaway", "double your bitcoin", "send btc",
    "nigerian prince", "click here to claim",
    # Profanity aimed at someone
    "f*ck you", "go f*ck yourself", "c*nt", "cunt", "wh*re", "whore", "b*tch",
    "stfu", "gtfo",
]

DEFAULT_SAFE_DOMAINS: list[str] = [
    "google.com", "youtube.com", "facebook.com", "twitter.com",
    "instagram.com", "linkedin.com", "github.com", "microsoft.com",
    "azure.com", "zoom.us", "slack.com",
]

DEFAULT_PENDING_MESSAGE = "Your message is being reviewed before posting."

_TIER1_ACTIONS = ("block", "review", "flag")
_TIER2_ACTIONS = ("block", "review")
_TIER3_ACTIONS = ("block", "review")


def default_config() -> dict[str, Any]:
    """Return the default configuration document (camelCase)."""
    return {
        "enabled": True,
        "tier1": {
            "enabled": True,
            "blocklist": list(DEFAULT_BLOCKLIST),
            "blockedDomains": [],
            "caseSensitive": False,
            "matchWholeWord": True,
            "action": "block",
        },
        "tier2": {
            "enabled": True,
            "useReputationService": True,
            "usePatternAnalysis": True,
            "blockMalicious": True,
            "flagSuspicious": True,
            "safeDomains": list(DEFAULT_SAFE_DOMAINS),
            "action": "block",
        },
        "tier3": {
            "enabled": True,
            "thresholds": dict(DEFAULT_THRESHOLDS),
            "autoBlock": True,
            "notifyAdmins": True,
            "action": "review",
        },
        "workflows": {
            "community": {
                "enabled": True,
                "name": "Online Community",
                "description": "Public community chat channels",
                "tier1": True, "tier2": True, "tier3": True,
            },
            "groups": {
                "enabled": True,
                "name": "Group Messages",
                "description": "Private group chats and messages",
                "tier1": True, "tier2": True, "tier3": False,
            },
            "events": {
                "enabled": True,
                "name": "Event Agent",
                "description": "AI event assistant messages",
                "tier1": True, "tier2": False, "tier3": False,
            },
            "notifications": {
                "enabled": False,
                "name": "Notifications",
                "description": "System and admin notifications",
                "tier1": False, "tier2": False, "tier3": False,
            },
        },
        "showPendingMessage": True,
        "pendingMessageText": DEFAULT_PENDING_MESSAGE,
    }


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def normalize_terms(terms: Iterable[Any], case_sensitive: bool = False) -> list[str]:
    """Trim, drop empties, lowercase unless *case_sensitive*, de-duplicate."""
    seen: dict[str, None] = {}
    for term in terms:
        if not isinstance(term, str):
            continue
        value = term.strip()
        if not value:
            continue
        seen.setdefault(value if case_sensitive else value.lower(), None)
    return list(seen)


def _check_bools(section: dict, path: str, keys: Iterable[str], errors: list[str]) -> None:
    for key in keys:
        if key in section and not isinstance(section[key], bool):
            errors.append(f"{path}.{key} must be a boolean")


def _check_action(section: dict, path: str, allowed: tuple[str, ...], errors: list[str]) -> None:
    if "action" in section and section["action"] not in allowed:
        errors.append(f"{path}.action must be one of {', '.join(allowed)} (got {section['action']!r})")


def _check_string_list(
    section: dict, path: str, key: str, errors: list[str], normalize
) -> None:
    if key not in section:
        return
    values = section[key]
    if not isinstance(values, list):
        errors.append(f"{path}.{key} must be a list of strings")
        return
    seen: dict[str, str] = {}
    for index, value in enumerate(values):
        if not isinstance(value, str):
            errors.append(f"{path}.{key}[{index}] must be a string")
            continue
        if not value.strip():
            errors.append(f"{path}.{key}[{index}] must not be empty")
            continue
        norm = normalize(value)
        if norm in seen:
            errors.append(f"{path}.{key} has duplicate entry {value!r} (same as {seen[norm]!r})")
        else:
            seen[norm] = value


def validate_config(doc: Any) -> list[str]:
    """Return every problem with *doc*; an empty list means valid."""
    if not isinstance(doc, dict):
        return ["config must be a JSON object"]

    errors: list[str] = []
    _check_bools(doc, "config", ("enabled", "showPendingMessage"), errors)
    if "pendingMessageText" in doc and not isinstance(doc["pendingMessageText"], (str, type(None))):
        errors.append("config.pendingMessageText must be a string")

    sections = {}
    for name in ("tier1", "tier2", "tier3", "workflows"):
        section = doc.get(name)
        if not isinstance(section, dict):
            errors.append(f"{name} is required and must be an object")
            section = {}
        sections[name] = section

    tier1 = sections["tier1"]
    _check_bools(tier1, "tier1", ("enabled", "caseSensitive", "matchWholeWord"), errors)
    _check_action(tier1, "tier1", _TIER1_ACTIONS, errors)
    case_sensitive = tier1.get("caseSensitive") is True
    _check_string_list(
        tier1, "tier1", "blocklist", errors,
        (lambda v: v.strip()) if case_sensitive else (lambda v: v.strip().lower()),
    )
    _check_string_list(tier1, "tier1", "blockedDomains", errors, normalize_domain)

    tier2 = sections["tier2"]
    _check_bools(
        tier2, "tier2",
        ("enabled", "useReputationService", "useVirusTotal", "usePatternAnalysis",
         "blockMalicious", "flagSuspicious"),
        errors,
    )
    _check_action(tier2, "tier2", _TIER2_ACTIONS, errors)
    _check_string_list(tier2, "tier2", "safeDomains", errors, normalize_domain)

    tier3 = sections["tier3"]
    _check_bools(tier3, "tier3", ("enabled", "autoBlock", "notifyAdmins"), errors)
    _check_action(tier3, "tier3", _TIER3_ACTIONS, errors)
    if "thresholds" in tier3:
        thresholds = tier3["thresholds"]
        if not isinstance(thresholds, dict):
            errors.append("tier3.thresholds must be an object")
        else:
            seen_categories: set[str] = set()
            for key, value in thresholds.items():
                category = normalize_category(key)
                if category is None:
                    errors.append(f"tier3.thresholds has unknown category {key!r}")
                elif category in seen_categories:
                    errors.append(f"tier3.thresholds lists {category} more than once")
                else:
                    seen_categories.add(category)
                if isinstance(value, bool) or not isinstance(value, int) or value not in SEVERITY_LEVELS:
                    errors.append(
                        f"tier3.thresholds.{key} must be one of "
                        f"{', '.join(str(s) for s in SEVERITY_LEVELS)} (got {value!r})"
                    )

    for name, workflow in sections["workflows"].items():
        path = f"workflows.{name}"
        if not isinstance(workflow, dict):
            errors.append(f"{path} must be an object")
            continue
        _check_bools(workflow, path, ("enabled", "tier1", "tier2", "tier3"), errors)
        for key in ("name", "description"):
            if key in workflow and not isinstance(workflow[key], str):
                errors.append(f"{path}.{key} must be a string")

    return errors


def _canonical(doc: dict) -> dict:
    """Normalize a validated document for storage."""
    doc = copy.deepcopy(doc)
    for key in ("version", "createdAt", "updatedAt", "updatedBy"):
        doc.pop(key, None)
    tier2 = doc["tier2"]
    if "useVirusTotal" in tier2:
        tier2.setdefault("useReputationService", tier2.pop("useVirusTotal"))
    thresholds = doc["tier3"].get("thresholds")
    if isinstance(thresholds, dict):
        doc["tier3"]["thresholds"] = {normalize_category(k): v for k, v in thresholds.items()}
    return doc


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ConfigStore:
    """File-backed singleton moderation configuration."""

    def __init__(self, base_dir: str | Path | None = None) -> None:
        self._base = Path(base_dir) if base_dir else Path.home() / ".modguard" / "moderation"
        self._base.mkdir(parents=True, exist_ok=True)
        self._config_path = self._base / "config.json"
        self._lock = threading.Lock()

    def _read_json(self) -> Optional[dict]:
        if not self._config_path.exists():
            return None
        try:
            data = json.loads(self._config_path.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            logger.error("Moderation config unreadable, using defaults: %s", exc)
            return None
        return data if isinstance(data, dict) else None

    def _write_json(self, data: dict) -> None:
        tmp = self._config_path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(data, indent=2))
        os.replace(tmp, self._config_path)

    def get_document(self) -> dict[str, Any]:
        """Return the stored document, creating it with defaults on first use."""
        data = self._read_json()
        if data is not None:
            return data
        with self._lock:
            if not self._config_path.exists():
                now = datetime.now(timezone.utc).isoformat()
                data = default_config()
                data.update({"version": 1, "createdAt": now, "updatedAt": now, "updatedBy": "system"})
                self._write_json(data)
                logger.info("Created default moderation config at %s", self._config_path)
                return data
        return self._read_json() or default_config()

    def get(self) -> ModerationConfig:
        return ModerationConfig.from_dict(self.get_document())

    def put(self, config: ModerationConfig | dict[str, Any], updated_by: str = "") -> ModerationConfig:
        """Replace the whole configuration.

        Raises ``ValidationError`` listing every violation; nothing is
        written in that case.
        """
        doc = config.to_dict() if isinstance(config, ModerationConfig) else config
        errors = validate_config(doc)
        if errors:
            logger.warning("Rejected moderation config with %d error(s)", len(errors))
            raise ValidationError(errors)

        doc = _canonical(doc)
        with self._lock:
            current = self._read_json() or {}
            now = datetime.now(timezone.utc).isoformat()
            version = current.get("version", 0)
            doc["version"] = (version if isinstance(version, int) else 0) + 1
            doc["createdAt"] = current.get("createdAt") or now
            doc["updatedAt"] = now
            doc["updatedBy"] = updated_by
            self._write_json(doc)
        logger.info("Moderation config updated to version %d by %s", doc["version"], updated_by or "unknown")
        return ModerationConfig.from_dict(doc)

    def replace_blocklist(self, terms: Iterable[Any], updated_by: str = "") -> ModerationConfig:
        """Swap in a new Tier 1 blocklist through the validated :meth:`put`."""
        doc = copy.deepcopy(self.get_document())
        tier1 = doc.get("tier1") if isinstance(doc.get("tier1"), dict) else {}
        tier1["blocklist"] = normalize_terms(terms, tier1.get("caseSensitive") is True)
        doc["tier1"] = tier1
        return self.put(doc, updated_by)

    async def test_evaluate(
        self,
        content: str,
        workflow: str,
        pipeline: ModerationPipeline,
        context: Optional[SubmissionContext] = None,
        image: Optional[str] = None,
    ) -> Decision:
        """Dry-run *content* against the current stored config (no enqueue)."""
        return await pipeline.moderate(content, workflow, self.get(), context, image=image, enqueue=False)
