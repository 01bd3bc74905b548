"""Tier 1 -- keyword and domain blocklist matching.

Pure function over the current config.  Holes in the configuration (no
blocklist, no blocked domains) mean nothing to match against, never an
error; any actual match fails the tier and every match is reported.
"""

from __future__ import annotations

import re

from modguard.moderation.models import (
    DecisionAction,
    TermMatch,
    Tier1Config,
    TierCheck,
    TierId,
    TierResult,
)
from modguard.moderation.urls import domain_matches, extract_domain, extract_urls

TIER_NAME = "Keyword Filter"


def _term_pattern(term: str, whole_word: bool, case_sensitive: bool) -> re.Pattern[str]:
    # Lookarounds instead of \b so terms that start or end with punctuation
    # ("14/88", "f*ck you") still anchor on word edges.
    body = re.escape(term)
    if whole_word:
        body = rf"(?<!\w){body}(?!\w)"
    return re.compile(body, 0 if case_sensitive else re.IGNORECASE)


def find_terms(content: str, config: Tier1Config) -> list[TermMatch]:
    """Return every blocklist term present in *content*."""
    matches: list[TermMatch] = []
    seen: set[str] = set()
    text = content if config.case_sensitive else content.lower()
    for raw in config.blocklist or []:
        term = raw.strip()
        if not term:
            continue
        needle = term if config.case_sensitive else term.lower()
        if needle in seen:
            continue
        if config.match_whole_word:
            hit = _term_pattern(needle, True, config.case_sensitive).search(text) is not None
        else:
            hit = needle in text
        if hit:
            seen.add(needle)
            matches.append(TermMatch(term=term, type="keyword"))
    return matches


def find_domains(content: str, config: Tier1Config) -> list[TermMatch]:
    """Return every blocked domain referenced by a URL in *content*."""
    blocked = config.blocked_domains or []
    if not blocked:
        return []
    matches: list[TermMatch] = []
    seen: set[str] = set()
    for url in extract_urls(content):
        entry = domain_matches(extract_domain(url), blocked)
        if entry is not None and entry not in seen:
            seen.add(entry)
            matches.append(TermMatch(term=entry, type="domain"))
    return matches


def evaluate(content: str, config: Tier1Config) -> TierResult:
    """Run the blocklist tier over *content*."""
    result = TierResult(tier=TierId.tier1, name=TIER_NAME)
    content = content or ""

    terms = find_terms(content, config)
    result.checks.append(
        TierCheck(
            name="blocklist_check",
            passed=not terms,
            message=(
                f"Found {len(terms)} blocked term(s): {', '.join(m.term for m in terms)}"
                if terms
                else f"Checked against {len(config.blocklist or [])} terms - no matches"
            ),
        )
    )

    domains = find_domains(content, config)
    result.checks.append(
        TierCheck(
            name="blocked_domain_check",
            passed=not domains,
            message=(
                f"Links to blocked domain(s): {', '.join(m.term for m in domains)}"
                if domains
                else f"Checked against {len(config.blocked_domains or [])} blocked domains - no matches"
            ),
        )
    )

    result.matches = terms + domains
    if result.matches:
        result.passed = False
        result.action = DecisionAction(config.action.value)
        result.message = f"{len(result.matches)} blocklist violation(s)"
    else:
        result.message = "No blocked terms or domains"
    return result
