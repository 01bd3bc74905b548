"""Tests for the decision aggregator."""

import asyncio
import base64
import tempfile

from modguard.moderation.models import (
    DecisionAction,
    ModerationConfig,
    Priority,
    SubmissionContext,
    TierAction,
    TierId,
    WorkflowConfig,
)
from modguard.moderation.pipeline import ModerationPipeline, derive_priority
from modguard.moderation.queue_store import ModerationQueue
from modguard.moderation.reputation import ReputationReport
from modguard.moderation.violations import UserModerationStore


class FakeClassifier:
    def __init__(self, scores=None):
        self.scores = scores or {}
        self.calls = 0

    async def classify(self, text):
        self.calls += 1
        return dict(self.scores)


class FakeImageClassifier(FakeClassifier):
    def __init__(self, scores=None, image_scores=None):
        super().__init__(scores)
        self.image_scores = image_scores or {}
        self.images = 0

    async def classify_image(self, image):
        self.images += 1
        return dict(self.image_scores)


PNG = base64.b64encode(b"\x89PNG\r\n\x1a\n" + b"\x00" * 24).decode()


class FakeReputation:
    def __init__(self):
        self.calls = 0

    async def lookup(self, url):
        self.calls += 1
        return ReputationReport(url=url, harmless=70)


class SlowReputation:
    async def lookup(self, url):
        await asyncio.sleep(5)
        return ReputationReport(url=url)


class ExplodingReputation:
    async def lookup(self, url):
        raise RuntimeError("unexpected client bug")


def _config(**tier_overrides) -> ModerationConfig:
    config = ModerationConfig()
    config.workflows = {
        "community": WorkflowConfig(name="Community", tier1=True, tier2=True, tier3=True),
        "events": WorkflowConfig(name="Events", tier1=True, tier2=False, tier3=False),
        "notifications": WorkflowConfig(enabled=False),
    }
    config.tier2.safe_domains = ["github.com"]
    for key, value in tier_overrides.items():
        section, attr = key.split("__")
        setattr(getattr(config, section), attr, value)
    return config


def _moderate(pipeline, content, workflow="community", config=None, **kwargs):
    return asyncio.run(pipeline.moderate(content, workflow, config or _config(), **kwargs))


def _evaluated(decision):
    return [e.tier for e in decision.tier_flow if e.evaluated]


def test_clean_content_is_allowed():
    pipeline = ModerationPipeline(reputation=FakeReputation(), classifier=FakeClassifier({"hate": 0}))
    decision = _moderate(pipeline, "see you at https://github.com/org/repo tonight")
    assert decision.allowed is True
    assert decision.action == DecisionAction.allow
    assert decision.reason == "passed"
    assert _evaluated(decision) == [TierId.tier1, TierId.security, TierId.tier2, TierId.tier3]


def test_blocklist_match_blocks_and_short_circuits():
    classifier = FakeClassifier()
    reputation = FakeReputation()
    pipeline = ModerationPipeline(reputation=reputation, classifier=classifier)
    decision = _moderate(pipeline, "you kys now https://example.org", config=_config(tier1__blocklist=["kys"]))

    assert decision.allowed is False
    assert decision.action == DecisionAction.block
    assert decision.reason == "tier1_keyword_match"
    assert _evaluated(decision) == [TierId.tier1]
    assert decision.tier_flow[-1].tier == TierId.decision
    assert decision.tier_flow[-1].evidence["skipped"] == ["tier1_5", "tier2", "tier3"]
    assert classifier.calls == 0
    assert reputation.calls == 0
    tier1 = decision.tier_flow[0]
    assert tier1.passed is False
    assert tier1.evidence["matches"] == [{"term": "kys", "type": "keyword"}]


def test_blocked_domain_blocks():
    pipeline = ModerationPipeline()
    decision = _moderate(pipeline, "visit https://bit.ly/x", config=_config(tier1__blocked_domains=["bit.ly"]))
    assert decision.action == DecisionAction.block
    assert decision.reason == "tier1_domain_match"


def test_security_floor_runs_with_tier1_disabled():
    pipeline = ModerationPipeline()
    decision = _moderate(pipeline, "<script>alert(1)</script>", config=_config(tier1__enabled=False))
    assert decision.action == DecisionAction.block
    assert decision.reason == "security_pattern_match"
    assert _evaluated(decision) == [TierId.security]


def test_ai_breach_without_auto_block_is_queued_high():
    with tempfile.TemporaryDirectory() as tmpdir:
        queue = ModerationQueue(tmpdir)
        pipeline = ModerationPipeline(queue=queue, classifier=FakeClassifier({"hate": 6}))
        config = _config(
            tier3__thresholds={"hate": 4},
            tier3__auto_block=False,
            tier3__action=TierAction.block,
        )
        context = SubmissionContext(user_id="u1", user_email="u1@example.com", channel_id="general")
        decision = _moderate(pipeline, "some hateful text", config=config, context=context)

        assert decision.action == DecisionAction.review
        assert decision.allowed is False
        assert decision.needs_review is True
        assert decision.priority == Priority.high
        assert decision.show_pending_message is True
        assert decision.pending_message_text

        item = queue.get(decision.queue_item_id)
        assert item.priority == Priority.high
        assert item.overall_action == DecisionAction.review
        assert item.user_id == "u1"
        assert item.channel_id == "general"
        assert item.tier3_result["passed"] is False
        assert [e["tier"] for e in item.tier_flow] == ["tier1", "tier1_5", "tier2", "tier3"]


def test_ai_breach_with_auto_block_blocks():
    pipeline = ModerationPipeline(classifier=FakeClassifier({"violence": 6}))
    config = _config(tier3__action=TierAction.block)
    decision = _moderate(pipeline, "text", config=config)
    assert decision.action == DecisionAction.block
    assert decision.reason == "tier3_ai_violation"


def test_classifier_unavailable_never_blocks():
    pipeline = ModerationPipeline(classifier=None)
    decision = _moderate(pipeline, "hello there")
    assert decision.action == DecisionAction.allow
    tier3 = decision.tier_flow[-1]
    assert tier3.tier == TierId.tier3
    assert tier3.action == DecisionAction.skip
    assert tier3.passed is None


def test_reputation_timeout_completes_without_error():
    pipeline = ModerationPipeline(reputation=SlowReputation(), reputation_timeout=0.05)
    decision = _moderate(pipeline, "read https://example.org/article")
    assert decision.action == DecisionAction.allow
    tier2 = next(e for e in decision.tier_flow if e.tier == TierId.tier2)
    assert tier2.evidence["degraded"] is True


def test_unexpected_reputation_failure_degrades():
    pipeline = ModerationPipeline(reputation=ExplodingReputation())
    decision = _moderate(pipeline, "read https://example.org/article")
    assert decision.action == DecisionAction.allow
    tier2 = next(e for e in decision.tier_flow if e.tier == TierId.tier2)
    assert tier2.evidence["degraded"] is True


def test_flag_action_allows_and_enqueues():
    with tempfile.TemporaryDirectory() as tmpdir:
        queue = ModerationQueue(tmpdir)
        pipeline = ModerationPipeline(queue=queue)
        config = _config(tier1__blocklist=["spam"], tier1__action=TierAction.flag)
        decision = _moderate(pipeline, "buy spam", workflow="events", config=config)

        assert decision.allowed is True
        assert decision.action == DecisionAction.flag
        assert decision.priority == Priority.medium
        assert queue.get(decision.queue_item_id).priority == Priority.medium


def test_queued_content_is_defanged_and_truncated():
    with tempfile.TemporaryDirectory() as tmpdir:
        queue = ModerationQueue(tmpdir)
        pipeline = ModerationPipeline(queue=queue)
        config = _config(tier1__blocklist=["spam"], tier1__action=TierAction.review)
        content = "spam https://evil.example/x " + "y" * 2000
        decision = _moderate(pipeline, content, workflow="events", config=config)

        item = queue.get(decision.queue_item_id)
        assert len(item.content) == 1000
        assert "hxxps[://]evil[.]example/x" in item.safe_content
        assert "https://" not in item.safe_content


def test_disabled_workflow_is_skipped():
    pipeline = ModerationPipeline()
    decision = _moderate(pipeline, "<script>x</script>", workflow="notifications")
    assert decision.allowed is True
    assert decision.action == DecisionAction.skip
    assert decision.reason == "workflow_disabled"


def test_global_kill_switch():
    config = _config(tier1__blocklist=["kys"])
    config.enabled = False
    decision = _moderate(ModerationPipeline(), "kys", config=config)
    assert decision.action == DecisionAction.skip
    assert decision.reason == "moderation_disabled"


def test_unknown_workflow_is_skipped():
    classifier = FakeClassifier({"hate": 6})
    pipeline = ModerationPipeline(classifier=classifier)
    decision = _moderate(pipeline, "<script>x</script>", workflow="brand-new-surface")
    assert decision.allowed is True
    assert decision.action == DecisionAction.skip
    assert decision.reason == "workflow_disabled"
    assert [e.tier for e in decision.tier_flow] == [TierId.gate]
    assert "brand-new-surface" in decision.tier_flow[0].message
    assert classifier.calls == 0


def test_workflow_tier_switches_respected():
    classifier = FakeClassifier({"hate": 6})
    pipeline = ModerationPipeline(classifier=classifier)
    decision = _moderate(pipeline, "hello", workflow="events")
    assert _evaluated(decision) == [TierId.tier1, TierId.security]
    assert classifier.calls == 0


def test_repeated_evaluation_is_stable():
    pipeline = ModerationPipeline(classifier=FakeClassifier({"hate": 2}))
    config = _config()
    actions = {_moderate(pipeline, "same text", config=config, enqueue=False).action for _ in range(3)}
    assert actions == {DecisionAction.review}


def test_block_records_violation_and_blocked_user_is_refused():
    with tempfile.TemporaryDirectory() as tmpdir:
        users = UserModerationStore(tmpdir)
        pipeline = ModerationPipeline(users=users)
        config = _config(tier1__blocklist=["kys"])
        context = SubmissionContext(user_id="u9")

        _moderate(pipeline, "kys https://x.example", config=config, context=context)
        status = users.get_user_status("u9")
        assert status.violation_count == 1
        assert status.violations[0].reason == "tier1_keyword_match"
        assert "hxxps[://]x[.]example" in status.violations[0].snippet

        users.set_block_status("u9", True, reason="repeat offender", admin="admin")
        decision = _moderate(pipeline, "hello", config=config, context=context)
        assert decision.allowed is False
        assert decision.reason == "user_blocked"
        assert _evaluated(decision) == []


def test_dry_run_records_nothing():
    with tempfile.TemporaryDirectory() as tmpdir:
        users = UserModerationStore(tmpdir)
        pipeline = ModerationPipeline(users=users)
        config = _config(tier1__blocklist=["kys"])
        _moderate(pipeline, "kys", config=config, context=SubmissionContext(user_id="u1"), enqueue=False)
        assert users.get_user_status("u1").violation_count == 0


def test_priority_rules():
    pipeline = ModerationPipeline()
    config = _config(tier2__action=TierAction.review, tier2__use_reputation_service=False)
    decision = _moderate(pipeline, "get https://files.example.net/setup.exe", config=config, enqueue=False)
    assert decision.action == DecisionAction.review
    assert derive_priority(decision.results) == Priority.critical

    ssn = _moderate(pipeline, "my ssn is 123-45-6789", config=_config(), enqueue=False)
    assert ssn.action == DecisionAction.review
    assert ssn.priority == Priority.low


def test_image_violation_blocks():
    classifier = FakeImageClassifier({"hate": 0}, {"sexual": 6})
    pipeline = ModerationPipeline(classifier=classifier)
    config = _config(tier3__action=TierAction.block)
    decision = _moderate(pipeline, "look at this", config=config, image=PNG)
    assert decision.allowed is False
    assert decision.reason == "tier3_image_violation"
    assert _evaluated(decision) == [TierId.tier1, TierId.security, TierId.tier2, TierId.tier3, TierId.image]
    assert classifier.images == 1


def test_text_block_skips_image_check():
    classifier = FakeImageClassifier({"hate": 0}, {"sexual": 6})
    pipeline = ModerationPipeline(classifier=classifier)
    decision = _moderate(pipeline, "<script>alert(1)</script>", image=PNG)
    assert decision.reason == "security_pattern_match"
    assert decision.tier_flow[-1].evidence["skipped"] == ["tier2", "tier3", "tier3_image"]
    assert classifier.images == 0


def test_image_only_submission_is_queued_as_image():
    with tempfile.TemporaryDirectory() as tmpdir:
        queue = ModerationQueue(tmpdir)
        classifier = FakeImageClassifier(image_scores={"violence": 6})
        pipeline = ModerationPipeline(queue=queue, classifier=classifier)
        decision = _moderate(pipeline, "", image=PNG)

        assert decision.action == DecisionAction.review
        assert decision.priority == Priority.high
        assert _evaluated(decision) == [TierId.image]
        assert classifier.calls == 0
        item = queue.get(decision.queue_item_id)
        assert item.content_type == "image"
        assert item.content == "[image]"
        assert item.image_result["passed"] is False


def test_text_with_image_is_mixed():
    with tempfile.TemporaryDirectory() as tmpdir:
        queue = ModerationQueue(tmpdir)
        pipeline = ModerationPipeline(queue=queue, classifier=FakeImageClassifier(image_scores={"hate": 6}))
        decision = _moderate(pipeline, "caption", image=PNG, context=SubmissionContext(user_id="u1"))
        assert queue.get(decision.queue_item_id).content_type == "mixed"


def test_image_check_follows_tier3_switch():
    classifier = FakeImageClassifier(image_scores={"sexual": 6})
    decision = _moderate(ModerationPipeline(classifier=classifier), "hi", workflow="events", image=PNG)
    assert decision.action == DecisionAction.allow
    assert classifier.images == 0
