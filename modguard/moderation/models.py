"""Data models for the tiered content moderation pipeline.

Configuration documents and queue items are persisted as camelCase JSON so
the admin console can read them unchanged; the dataclasses here use
snake_case attributes and convert at the edges with ``to_dict`` /
``from_dict``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Any, Optional


class TierAction(str, Enum):
    """Action a tier requests when its check fails."""

    block = "block"
    review = "review"
    flag = "flag"


class DecisionAction(str, Enum):
    """Action carried by a tier result, a trace entry or a final decision."""

    allow = "allow"
    block = "block"
    review = "review"
    flag = "flag"
    skip = "skip"


class QueueStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class Priority(str, Enum):
    critical = "critical"
    high = "high"
    medium = "medium"
    low = "low"


class Severity(str, Enum):
    """Severity of a security signature."""

    critical = "critical"
    high = "high"
    medium = "medium"
    low = "low"

    @property
    def rank(self) -> int:
        return {
            Severity.critical: 40,
            Severity.high: 30,
            Severity.medium: 20,
            Severity.low: 10,
        }[self]


class RiskLevel(str, Enum):
    """Per-URL risk classification (higher rank = worse)."""

    safe = "safe"
    suspicious = "suspicious"
    malicious = "malicious"

    @property
    def rank(self) -> int:
        return {RiskLevel.safe: 0, RiskLevel.suspicious: 1, RiskLevel.malicious: 2}[self]


class TierId(str, Enum):
    """Identifies an entry in the tier-flow trace."""

    gate = "gate"
    tier1 = "tier1"
    security = "tier1_5"
    tier2 = "tier2"
    tier3 = "tier3"
    image = "tier3_image"
    decision = "decision"


TIER3_CATEGORIES: tuple[str, ...] = ("hate", "sexual", "violence", "selfHarm")
SEVERITY_LEVELS: tuple[int, ...] = (0, 2, 4, 6)
DEFAULT_THRESHOLDS: dict[str, int] = {"hate": 2, "sexual": 2, "violence": 4, "selfHarm": 2}


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def camel(name: str) -> str:
    """``tier_flow`` -> ``tierFlow``."""
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def to_wire(value: Any) -> Any:
    """Recursively convert dataclasses/enums into camelCase JSON-ready data."""
    if is_dataclass(value) and not isinstance(value, type):
        return {camel(f.name): to_wire(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_wire(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_wire(v) for v in value]
    return value


def _bool(data: dict, key: str, default: bool) -> bool:
    value = data.get(key, default)
    return value if isinstance(value, bool) else default


def _str(data: dict, key: str, default: str = "") -> str:
    value = data.get(key, default)
    return value if isinstance(value, str) else default


def _str_list(data: dict, key: str) -> list[str]:
    value = data.get(key)
    if not isinstance(value, (list, tuple, set)):
        return []
    return [v for v in value if isinstance(v, str)]


def _enum(enum_cls, value: Any, default):
    try:
        return enum_cls(value)
    except ValueError:
        return default


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class Tier1Config:
    """Keyword and domain blocklist."""

    enabled: bool = True
    blocklist: list[str] = field(default_factory=list)
    blocked_domains: list[str] = field(default_factory=list)
    case_sensitive: bool = False
    match_whole_word: bool = False
    action: TierAction = TierAction.block

    @classmethod
    def from_dict(cls, data: Any) -> Tier1Config:
        if not isinstance(data, dict):
            return cls(enabled=False)
        return cls(
            enabled=_bool(data, "enabled", True),
            blocklist=_str_list(data, "blocklist"),
            blocked_domains=_str_list(data, "blockedDomains"),
            case_sensitive=_bool(data, "caseSensitive", False),
            match_whole_word=_bool(data, "matchWholeWord", False),
            action=_enum(TierAction, data.get("action"), TierAction.block),
        )


@dataclass
class Tier2Config:
    """Link safety: reputation lookup plus URL heuristics."""

    enabled: bool = True
    use_reputation_service: bool = True
    use_pattern_analysis: bool = True
    block_malicious: bool = True
    flag_suspicious: bool = True
    safe_domains: list[str] = field(default_factory=list)
    action: TierAction = TierAction.block

    @classmethod
    def from_dict(cls, data: Any) -> Tier2Config:
        if not isinstance(data, dict):
            return cls(enabled=False)
        # Older documents call the reputation switch ``useVirusTotal``.
        use_reputation = data.get("useReputationService", data.get("useVirusTotal", True))
        action = _enum(TierAction, data.get("action"), TierAction.block)
        if action is TierAction.flag:
            action = TierAction.review
        return cls(
            enabled=_bool(data, "enabled", True),
            use_reputation_service=use_reputation if isinstance(use_reputation, bool) else True,
            use_pattern_analysis=_bool(data, "usePatternAnalysis", True),
            block_malicious=_bool(data, "blockMalicious", True),
            flag_suspicious=_bool(data, "flagSuspicious", True),
            safe_domains=_str_list(data, "safeDomains"),
            action=action,
        )


@dataclass
class Tier3Config:
    """AI content-safety classification thresholds."""

    enabled: bool = True
    thresholds: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_THRESHOLDS))
    auto_block: bool = True
    notify_admins: bool = True
    action: TierAction = TierAction.review

    @classmethod
    def from_dict(cls, data: Any) -> Tier3Config:
        if not isinstance(data, dict):
            return cls(enabled=False)
        raw = data.get("thresholds")
        thresholds = dict(DEFAULT_THRESHOLDS)
        if isinstance(raw, dict):
            for key, value in raw.items():
                if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
                    thresholds[key] = value
        action = _enum(TierAction, data.get("action"), TierAction.review)
        if action is TierAction.flag:
            action = TierAction.review
        return cls(
            enabled=_bool(data, "enabled", True),
            thresholds=thresholds,
            auto_block=_bool(data, "autoBlock", True),
            notify_admins=_bool(data, "notifyAdmins", True),
            action=action,
        )


@dataclass
class WorkflowConfig:
    """Which tiers apply to one submission surface."""

    enabled: bool = True
    name: str = ""
    description: str = ""
    tier1: bool = True
    tier2: bool = True
    tier3: bool = True

    @classmethod
    def from_dict(cls, data: Any) -> WorkflowConfig:
        if not isinstance(data, dict):
            return cls(enabled=False, tier1=False, tier2=False, tier3=False)
        return cls(
            enabled=_bool(data, "enabled", True),
            name=_str(data, "name"),
            description=_str(data, "description"),
            tier1=_bool(data, "tier1", False),
            tier2=_bool(data, "tier2", False),
            tier3=_bool(data, "tier3", False),
        )


@dataclass
class ModerationConfig:
    """The singleton moderation configuration document."""

    enabled: bool = True
    tier1: Tier1Config = field(default_factory=Tier1Config)
    tier2: Tier2Config = field(default_factory=Tier2Config)
    tier3: Tier3Config = field(default_factory=Tier3Config)
    workflows: dict[str, WorkflowConfig] = field(default_factory=dict)
    show_pending_message: bool = True
    pending_message_text: str = "Your message is being reviewed before posting."
    version: int = 0
    created_at: str = ""
    updated_at: str = ""
    updated_by: str = ""

    def to_dict(self) -> dict[str, Any]:
        return to_wire(self)

    @classmethod
    def from_dict(cls, data: Any) -> ModerationConfig:
        """Build a config from a stored document, treating holes as empty."""
        if not isinstance(data, dict):
            data = {}
        raw_workflows = data.get("workflows")
        workflows = {}
        if isinstance(raw_workflows, dict):
            workflows = {
                str(name): WorkflowConfig.from_dict(wf) for name, wf in raw_workflows.items()
            }
        version = data.get("version", 0)
        return cls(
            enabled=_bool(data, "enabled", True),
            tier1=Tier1Config.from_dict(data.get("tier1")),
            tier2=Tier2Config.from_dict(data.get("tier2")),
            tier3=Tier3Config.from_dict(data.get("tier3")),
            workflows=workflows,
            show_pending_message=_bool(data, "showPendingMessage", True),
            pending_message_text=_str(
                data, "pendingMessageText", "Your message is being reviewed before posting."
            ),
            version=version if isinstance(version, int) and not isinstance(version, bool) else 0,
            created_at=_str(data, "createdAt"),
            updated_at=_str(data, "updatedAt"),
            updated_by=_str(data, "updatedBy"),
        )


# ---------------------------------------------------------------------------
# Tier results
# ---------------------------------------------------------------------------


@dataclass
class TierCheck:
    """One named check performed inside a tier."""

    name: str
    passed: bool
    message: str
    target: str = ""  # defanged URL or category the check applies to


@dataclass
class TermMatch:
    """A blocklist hit.  ``type`` is ``keyword`` or ``domain``."""

    term: str
    type: str


@dataclass
class SecurityMatch:
    """A security signature hit."""

    signature: str
    category: str
    severity: Severity
    description: str = ""


@dataclass
class UrlVerdict:
    """Risk assessment for a single URL."""

    url: str
    defanged_url: str
    domain: str = ""
    safe: bool = True
    risk_level: RiskLevel = RiskLevel.safe
    trusted: bool = False
    threats: list[dict[str, Any]] = field(default_factory=list)
    reputation: Optional[dict[str, Any]] = None
    reputation_checked: bool = False


@dataclass
class CategoryScore:
    """Classifier severity for one category compared to its threshold."""

    category: str
    severity: int
    threshold: int
    passed: bool


@dataclass
class TierResult:
    """Outcome of running one tier over a piece of content.

    ``passed`` is ``None`` when the tier could not produce a verdict
    (e.g. classifier unavailable).  Only the evidence list relevant to the
    tier is populated.
    """

    tier: TierId
    name: str
    passed: Optional[bool] = True
    action: DecisionAction = DecisionAction.allow
    message: str = ""
    checks: list[TierCheck] = field(default_factory=list)
    matches: list[TermMatch] = field(default_factory=list)
    security_matches: list[SecurityMatch] = field(default_factory=list)
    urls: list[UrlVerdict] = field(default_factory=list)
    categories: list[CategoryScore] = field(default_factory=list)
    degraded: bool = False

    def evidence(self) -> dict[str, Any]:
        """Return the non-empty, tier-specific evidence in wire form."""
        data: dict[str, Any] = {}
        if self.matches:
            data["matches"] = to_wire(self.matches)
        if self.security_matches:
            data["securityMatches"] = to_wire(self.security_matches)
        if self.urls:
            data["urls"] = to_wire(self.urls)
        if self.categories:
            data["categories"] = to_wire(self.categories)
        if self.degraded:
            data["degraded"] = True
        return data

    def to_dict(self) -> dict[str, Any]:
        data = {
            "tier": self.tier.value,
            "name": self.name,
            "passed": self.passed,
            "action": self.action.value,
            "message": self.message,
            "checks": to_wire(self.checks),
        }
        data.update(self.evidence())
        return data


@dataclass
class TierTraceEntry:
    """One entry in a decision's ordered tier-flow trace."""

    tier: TierId
    name: str
    action: DecisionAction
    passed: Optional[bool] = None
    message: str = ""
    checks: list[TierCheck] = field(default_factory=list)
    evidence: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_result(cls, result: TierResult) -> TierTraceEntry:
        return cls(
            tier=result.tier,
            name=result.name,
            action=result.action,
            passed=result.passed,
            message=result.message,
            checks=list(result.checks),
            evidence=result.evidence(),
        )

    @property
    def evaluated(self) -> bool:
        """True for entries describing a tier that actually ran."""
        return self.tier not in (TierId.gate, TierId.decision)

    def to_dict(self) -> dict[str, Any]:
        data = {
            "tier": self.tier.value,
            "name": self.name,
            "action": self.action.value,
            "passed": self.passed,
            "message": self.message,
            "checks": to_wire(self.checks),
        }
        data.update(self.evidence)
        return data


# ---------------------------------------------------------------------------
# Decisions and queue items
# ---------------------------------------------------------------------------


@dataclass
class SubmissionContext:
    """Who submitted the content and where it is headed."""

    user_id: str = ""
    user_email: str = ""
    type: str = "message"
    content_type: str = "text"
    content_id: str = ""
    channel_id: str = ""
    group_id: str = ""


@dataclass
class Decision:
    """The synchronous result of moderating one submission."""

    allowed: bool
    action: DecisionAction
    reason: str
    workflow: str
    tier_flow: list[TierTraceEntry] = field(default_factory=list)
    needs_review: bool = False
    priority: Optional[Priority] = None
    queue_item_id: Optional[str] = None
    show_pending_message: bool = False
    pending_message_text: Optional[str] = None
    results: dict[TierId, TierResult] = field(default_factory=dict, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "action": self.action.value,
            "reason": self.reason,
            "workflow": self.workflow,
            "tierFlow": [entry.to_dict() for entry in self.tier_flow],
            "needsReview": self.needs_review,
            "priority": self.priority.value if self.priority else None,
            "queueItemId": self.queue_item_id,
            "showPendingMessage": self.show_pending_message,
            "pendingMessageText": self.pending_message_text,
        }


@dataclass
class QueueItem:
    """A flagged submission awaiting (or having received) human review."""

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
    tier_flow: list[dict[str, Any]] = field(default_factory=list)
    priority: Priority = Priority.low
    overall_action: DecisionAction = DecisionAction.review
    status: QueueStatus = QueueStatus.pending
    created_at: str = ""
    reviewed_at: Optional[str] = None
    reviewed_by: Optional[str] = None
    notes: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return to_wire(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueItem:
        def _opt_dict(key: str) -> Optional[dict[str, Any]]:
            value = data.get(key)
            return value if isinstance(value, dict) else None

        tier_flow = data.get("tierFlow")
        return cls(
            id=data["id"],
            workflow=_str(data, "workflow"),
            content=_str(data, "content"),
            safe_content=_str(data, "safeContent"),
            type=_str(data, "type", "message"),
            content_type=_str(data, "contentType", "text"),
            content_id=_str(data, "contentId"),
            user_id=_str(data, "userId"),
            user_email=_str(data, "userEmail"),
            channel_id=_str(data, "channelId"),
            group_id=_str(data, "groupId"),
            tier1_result=_opt_dict("tier1Result"),
            security_result=_opt_dict("securityResult"),
            tier2_result=_opt_dict("tier2Result"),
            tier3_result=_opt_dict("tier3Result"),
            image_result=_opt_dict("imageResult"),
            tier_flow=tier_flow if isinstance(tier_flow, list) else [],
            priority=_enum(Priority, data.get("priority"), Priority.low),
            overall_action=_enum(DecisionAction, data.get("overallAction"), DecisionAction.review),
            status=_enum(QueueStatus, data.get("status"), QueueStatus.pending),
            created_at=_str(data, "createdAt"),
            reviewed_at=data.get("reviewedAt"),
            reviewed_by=data.get("reviewedBy"),
            notes=data.get("notes"),
        )


@dataclass
class BulkReviewResult:
    """Per-id outcome of a bulk review."""

    id: str
    ok: bool
    item: Optional[QueueItem] = None
    error: str = ""


@dataclass
class ModerationStats:
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    today_total: int = 0


# ---------------------------------------------------------------------------
# Per-user moderation state
# ---------------------------------------------------------------------------


@dataclass
class ViolationRecord:
    """A single blocked submission attributed to a user."""

    timestamp: str
    reason: str
    workflow: str = ""
    snippet: str = ""  # first 100 chars, URLs defanged


@dataclass
class BlockEvent:
    """An admin block or unblock of a user."""

    timestamp: str
    blocked: bool
    reason: str = ""
    admin: str = ""


@dataclass
class UserModerationStatus:
    """Moderation state for a user."""

    user_id: str
    violation_count: int = 0
    is_blocked: bool = False
    block_reason: str = ""
    blocked_at: Optional[str] = None
    blocked_by: Optional[str] = None
    violations: list[ViolationRecord] = field(default_factory=list)
    block_history: list[BlockEvent] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return to_wire(self)
