"""Tests for the Tier 1 blocklist matcher and shared URL helpers."""

from modguard.moderation.blocklist import evaluate, find_terms
from modguard.moderation.models import DecisionAction, Tier1Config, TierAction
from modguard.moderation.urls import (
    defang_text,
    defang_url,
    domain_matches,
    extract_domain,
    extract_urls,
    refang_url,
)


def test_keyword_match_blocks():
    result = evaluate("you kys now", Tier1Config(blocklist=["kys"]))
    assert result.passed is False
    assert result.action == DecisionAction.block
    assert [(m.term, m.type) for m in result.matches] == [("kys", "keyword")]


def test_clean_content_passes():
    result = evaluate("hello friends", Tier1Config(blocklist=["kys", "spam"]))
    assert result.passed is True
    assert result.action == DecisionAction.allow
    assert result.matches == []


def test_whole_word_does_not_match_inside_words():
    config = Tier1Config(blocklist=["ass"], match_whole_word=True)
    assert evaluate("can you assist me", config).passed is True
    assert evaluate("what an ass", config).passed is False


def test_substring_mode_matches_inside_words():
    config = Tier1Config(blocklist=["ass"], match_whole_word=False)
    assert evaluate("can you assist me", config).passed is False


def test_whole_word_handles_punctuated_terms():
    config = Tier1Config(blocklist=["14/88"], match_whole_word=True)
    assert evaluate("they wrote 14/88 again", config).passed is False
    assert evaluate("see 214/889", config).passed is True


def test_case_insensitive_by_default():
    assert find_terms("FREE BITCOIN here", Tier1Config(blocklist=["free bitcoin"]))


def test_case_sensitive_respected():
    config = Tier1Config(blocklist=["Spam"], case_sensitive=True)
    assert find_terms("spam spam", config) == []
    assert [m.term for m in find_terms("Spam", config)] == ["Spam"]


def test_reports_every_match_once():
    config = Tier1Config(blocklist=["kys", "go die", "KYS"])
    result = evaluate("kys, kys and go die", config)
    assert sorted(m.term for m in result.matches) == ["go die", "kys"]


def test_blocked_domain_match():
    config = Tier1Config(blocked_domains=["bit.ly"])
    result = evaluate("visit https://bit.ly/x", config)
    assert result.passed is False
    assert result.action == DecisionAction.block
    assert [(m.term, m.type) for m in result.matches] == [("bit.ly", "domain")]


def test_blocked_domain_matches_subdomains_only_on_label_boundary():
    config = Tier1Config(blocked_domains=["evil.com"])
    assert evaluate("https://cdn.evil.com/a", config).passed is False
    assert evaluate("https://notevil.com/a", config).passed is True


def test_configured_action_is_used():
    result = evaluate("kys", Tier1Config(blocklist=["kys"], action=TierAction.flag))
    assert result.passed is False
    assert result.action == DecisionAction.flag


def test_missing_lists_are_empty_not_errors():
    config = Tier1Config.from_dict({"enabled": True})
    result = evaluate("anything at all https://example.com", config)
    assert result.passed is True


def test_extract_urls_strips_trailing_punctuation():
    urls = extract_urls("see https://example.com/a, and (http://foo.org/b).")
    assert urls == ["https://example.com/a", "http://foo.org/b"]


def test_extract_domain_lowercases():
    assert extract_domain("https://WWW.Example.COM/path") == "www.example.com"


def test_domain_matches_strips_www_and_scheme():
    assert domain_matches("example.com", ["https://www.example.com/"]) == "https://www.example.com/"
    assert domain_matches("example.org", ["example.com"]) is None


def test_defang_and_refang():
    defanged = defang_url("https://evil.com/x")
    assert defanged == "hxxps[://]evil[.]com/x"
    assert refang_url(defanged) == "https://evil.com/x"


def test_defang_text_keeps_surrounding_text():
    assert defang_text("go to http://a.io now.") == "go to hxxp[://]a[.]io now."
