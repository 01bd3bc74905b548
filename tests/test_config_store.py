"""Tests for the moderation configuration store."""

import asyncio
import copy
import json
import tempfile
from pathlib import Path

import pytest

from modguard.moderation.config_store import (
    DEFAULT_BLOCKLIST,
    ConfigStore,
    default_config,
    normalize_terms,
    validate_config,
)
from modguard.moderation.errors import ValidationError
from modguard.moderation.models import DecisionAction, TierAction
from modguard.moderation.pipeline import ModerationPipeline
from modguard.moderation.queue_store import ModerationQueue


def test_first_get_creates_defaults():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ConfigStore(tmpdir)
        config = store.get()

        assert config.enabled is True
        assert config.version == 1
        assert config.tier1.blocklist == DEFAULT_BLOCKLIST
        assert config.tier3.thresholds == {"hate": 2, "sexual": 2, "violence": 4, "selfHarm": 2}
        assert config.tier3.action == TierAction.review
        assert set(config.workflows) == {"community", "groups", "events", "notifications"}
        assert config.workflows["notifications"].enabled is False
        assert (Path(tmpdir) / "config.json").exists()


def test_default_config_is_valid():
    assert validate_config(default_config()) == []


def test_default_blocklist_has_no_duplicates():
    assert len(normalize_terms(DEFAULT_BLOCKLIST)) == len(DEFAULT_BLOCKLIST)


def test_put_replaces_and_bumps_version():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ConfigStore(tmpdir)
        doc = store.get().to_dict()
        doc["tier1"]["blocklist"] = ["kys"]
        doc["tier3"]["autoBlock"] = False

        updated = store.put(doc, updated_by="admin@example.com")
        assert updated.version == 2
        assert updated.updated_by == "admin@example.com"

        reread = ConfigStore(tmpdir).get()
        assert reread.tier1.blocklist == ["kys"]
        assert reread.tier3.auto_block is False
        assert reread.version == 2


def test_put_accepts_config_object():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ConfigStore(tmpdir)
        config = store.get()
        config.tier2.block_malicious = False
        assert store.put(config).tier2.block_malicious is False


def test_put_reports_every_violation():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ConfigStore(tmpdir)
        doc = copy.deepcopy(default_config())
        doc["tier1"]["action"] = "explode"
        doc["tier1"]["blocklist"] = ["Spam", "spam ", "ok"]
        doc["tier2"]["action"] = "flag"
        doc["tier3"]["thresholds"] = {"hate": 3, "violence": -2, "gore": 4}
        doc["workflows"]["community"]["tier2"] = "yes"

        with pytest.raises(ValidationError) as excinfo:
            store.put(doc)

        errors = excinfo.value.errors
        assert any("tier1.action" in e for e in errors)
        assert any("duplicate" in e for e in errors)
        assert any("tier2.action" in e for e in errors)
        assert any("tier3.thresholds.hate" in e for e in errors)
        assert any("tier3.thresholds.violence" in e for e in errors)
        assert any("gore" in e for e in errors)
        assert any("workflows.community.tier2" in e for e in errors)
        assert len(errors) == 7
        assert store.get().version == 1


def test_case_sensitive_blocklist_allows_case_variants():
    doc = default_config()
    doc["tier1"]["caseSensitive"] = True
    doc["tier1"]["blocklist"] = ["Spam", "spam"]
    assert validate_config(doc) == []


def test_duplicate_domains_after_normalization():
    doc = default_config()
    doc["tier1"]["blockedDomains"] = ["evil.com", "https://www.EVIL.com/"]
    errors = validate_config(doc)
    assert len(errors) == 1
    assert "blockedDomains" in errors[0]


def test_missing_sections_rejected():
    errors = validate_config({"enabled": True})
    assert len(errors) == 4


def test_legacy_reputation_key_is_canonicalized():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ConfigStore(tmpdir)
        doc = default_config()
        del doc["tier2"]["useReputationService"]
        doc["tier2"]["useVirusTotal"] = False
        store.put(doc)

        stored = json.loads((Path(tmpdir) / "config.json").read_text())
        assert stored["tier2"]["useReputationService"] is False
        assert "useVirusTotal" not in stored["tier2"]
        assert store.get().tier2.use_reputation_service is False


def test_replace_blocklist_normalizes_terms():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ConfigStore(tmpdir)
        config = store.replace_blocklist(["  KYS ", "kys", "", "Go Die"], updated_by="admin")
        assert config.tier1.blocklist == ["kys", "go die"]


def test_corrupt_file_falls_back_to_defaults():
    with tempfile.TemporaryDirectory() as tmpdir:
        (Path(tmpdir) / "config.json").write_text("{not json")
        config = ConfigStore(tmpdir).get()
        assert config.tier1.enabled is True


def test_test_evaluate_never_enqueues():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ConfigStore(tmpdir)
        queue = ModerationQueue(tmpdir)
        doc = default_config()
        doc["tier1"]["action"] = "review"
        store.put(doc)

        pipeline = ModerationPipeline(queue=queue)
        decision = asyncio.run(store.test_evaluate("kys", "community", pipeline))
        assert decision.action == DecisionAction.review
        assert decision.queue_item_id is None
        assert queue.list("all") == []


EVERYDAY_CHAT = [
    "I love spicy food",
    "the death toll rose again overnight",
    "great skill all round from the team",
    "we should go diet together in January",
    "I'll shoot you a message after lunch",
    "don't cut yourself on that new knife",
    "you can double your recipe for a bigger crowd",
    "I'm learning javascript: any tips for a beginner?",
    "Select * from the menu what you like",
]


def test_default_config_allows_everyday_chat():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ConfigStore(tmpdir)
        pipeline = ModerationPipeline(queue=ModerationQueue(tmpdir))
        for text in EVERYDAY_CHAT:
            decision = asyncio.run(store.test_evaluate(text, "community", pipeline))
            assert decision.action == DecisionAction.allow, (text, decision.reason)


def test_default_config_still_blocks_threats():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ConfigStore(tmpdir)
        pipeline = ModerationPipeline()
        for text in ["you should just kys", "I know where you live", "Go die already"]:
            decision = asyncio.run(store.test_evaluate(text, "community", pipeline))
            assert decision.reason == "tier1_keyword_match", text
