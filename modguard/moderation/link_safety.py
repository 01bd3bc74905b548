"""Tier 2 -- link safety.

Every URL in the submission is classified ``safe``, ``suspicious`` or
``malicious`` from two independent sources: URL heuristics and an external
reputation service.  Trusted domains short-circuit both.  A reputation
lookup that fails or times out never escalates a verdict; the URL is
marked unchecked and the tier falls back to the heuristics alone.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlsplit

from modguard.moderation.errors import ConfigurationError, DependencyUnavailableError
from modguard.moderation.models import (
    DecisionAction,
    RiskLevel,
    TierAction,
    Tier2Config,
    TierCheck,
    TierId,
    TierResult,
    UrlVerdict,
)
from modguard.moderation.reputation import ReputationService
from modguard.moderation.urls import defang_url, domain_matches, extract_domain, extract_urls

logger = logging.getLogger(__name__)

TIER_NAME = "Link Safety"

# ---------------------------------------------------------------------------
# Heuristic tables
# ---------------------------------------------------------------------------

URL_SHORTENERS: frozenset[str] = frozenset({
    "bit.ly", "tinyurl.com", "t.co", "goo.gl", "ow.ly", "is.gd", "buff.ly",
    "cutt.ly", "rebrand.ly", "shorturl.at", "rb.gy", "t.ly", "tiny.cc",
})

HIGH_RISK_TLDS: frozenset[str] = frozenset({
    "tk", "ml", "ga", "cf", "gq", "pw", "cc", "ws", "top", "xyz", "click", "link",
    "work", "date", "racing", "download", "stream", "cricket", "science", "party",
    "win", "bid", "trade", "webcam", "review", "accountant", "faith", "loan", "men",
})

SUSPICIOUS_KEYWORDS: tuple[str, ...] = (
    "password", "passwd", "credential", "login", "signin", "verify", "confirm",
    "update", "secure", "account", "bank", "wallet", "crypto", "bitcoin", "prize",
    "winner", "lottery", "free", "claim", "urgent", "suspended", "limited",
    "expire", "alert",
)

EXECUTABLE_EXTENSIONS: tuple[str, ...] = (
    ".exe", ".scr", ".bat", ".cmd", ".msi", ".apk", ".jar", ".vbs",
    ".ps1", ".dll", ".pif", ".hta",
)

_PHISHING_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"login\.(secure|verify|update)-?[a-z]+\.(com|net|org)", re.IGNORECASE),
    re.compile(r"(paypal|apple|google|microsoft|amazon|facebook|instagram|twitter|netflix|steam)[a-z0-9-]*\.(tk|ml|ga|cf|gq|xyz|top)\b", re.IGNORECASE),
)

_IP_HOST_RE = re.compile(r"^\d{1,3}(\.\d{1,3}){3}$")
_EMBEDDED_SCHEME_RE = re.compile(r"(?:javascript|vbscript|data):", re.IGNORECASE)
_LONG_URL = 200


@dataclass
class PatternAnalysis:
    """Heuristic verdict for a single URL."""

    risk_level: RiskLevel = RiskLevel.safe
    threats: list[dict[str, Any]] = field(default_factory=list)
    checks: list[TierCheck] = field(default_factory=list)

    def raise_to(self, level: RiskLevel) -> None:
        if level.rank > self.risk_level.rank:
            self.risk_level = level


def analyze_url(url: str) -> PatternAnalysis:
    """Classify *url* from its shape alone."""
    analysis = PatternAnalysis()
    target = defang_url(url)
    domain = extract_domain(url) or ""
    lower = url.lower()
    path = urlsplit(url).path.lower()
    tld = domain.rsplit(".", 1)[-1] if "." in domain else ""

    def check(name: str, hit: bool, message: str, level: RiskLevel) -> None:
        analysis.checks.append(TierCheck(name=name, passed=not hit, message=message, target=target))
        if hit:
            analysis.threats.append({"type": name, "severity": level.value, "message": message})
            analysis.raise_to(level)

    is_shortener = domain_matches(domain, URL_SHORTENERS) is not None
    check("url_shortener", is_shortener,
          "Link shortener hides the destination" if is_shortener else "Not a link shortener",
          RiskLevel.suspicious)

    is_ip = bool(_IP_HOST_RE.match(domain))
    check("ip_address", is_ip,
          "URL uses an IP address instead of a domain name" if is_ip else "Uses a domain name",
          RiskLevel.suspicious)

    phishing = any(p.search(url) for p in _PHISHING_PATTERNS)
    check("phishing_pattern", phishing,
          "Matches a known phishing pattern" if phishing else "No phishing patterns",
          RiskLevel.malicious)

    embedded = bool(_EMBEDDED_SCHEME_RE.search(url))
    check("embedded_script_scheme", embedded,
          "Carries a javascript:/data: payload" if embedded else "No embedded script scheme",
          RiskLevel.malicious)

    risky_tld = tld in HIGH_RISK_TLDS
    keywords = [kw for kw in SUSPICIOUS_KEYWORDS if kw in lower]
    check("high_risk_tld", risky_tld,
          f"High-risk top-level domain .{tld}" if risky_tld else "Top-level domain is not high risk",
          RiskLevel.suspicious)

    if risky_tld and keywords:
        check("keyword_tld_combo", True,
              f"Lure keyword(s) {', '.join(keywords)} on a .{tld} domain", RiskLevel.malicious)
    elif len(keywords) >= 2:
        check("suspicious_keywords", True, f"Contains: {', '.join(keywords)}", RiskLevel.suspicious)
    else:
        analysis.checks.append(TierCheck(
            name="suspicious_keywords",
            passed=True,
            message=f"Contains: {keywords[0]}" if keywords else "No suspicious keywords found",
            target=target,
        ))

    executable = path.endswith(EXECUTABLE_EXTENSIONS)
    check("executable_download", executable,
          "Links directly to an executable file" if executable else "No executable download",
          RiskLevel.malicious)

    homograph = bool(domain) and (not domain.isascii() or "xn--" in domain)
    check("homograph", homograph,
          "Domain contains non-ASCII characters (possible homograph attack)"
          if homograph else "No homograph attack indicators",
          RiskLevel.malicious)

    analysis.checks.append(TierCheck(
        name="url_length",
        passed=len(url) <= _LONG_URL,
        message=(f"URL is unusually long ({len(url)} characters)"
                 if len(url) > _LONG_URL else "URL length is normal"),
        target=target,
    ))
    return analysis


def _apply_patterns(verdict: UrlVerdict, result: TierResult) -> None:
    analysis = analyze_url(verdict.url)
    if analysis.risk_level.rank > verdict.risk_level.rank:
        verdict.risk_level = analysis.risk_level
    verdict.threats.extend(analysis.threats)
    result.checks.extend(analysis.checks)


async def _lookup(
    service: ReputationService, url: str, timeout: float
) -> tuple[Optional[dict[str, Any]], Optional[RiskLevel], str]:
    """Return ``(report, risk, error)``; ``error`` is set when unchecked."""
    try:
        report = await asyncio.wait_for(service.lookup(url), timeout=timeout)
    except asyncio.TimeoutError:
        return None, None, "reputation lookup timed out"
    except (DependencyUnavailableError, ConfigurationError) as exc:
        return None, None, str(exc)
    return report.to_dict(), report.risk_level, ""


async def evaluate(
    content: str,
    config: Tier2Config,
    reputation: Optional[ReputationService] = None,
    timeout: float = 5.0,
) -> TierResult:
    """Run the link-safety tier over *content*."""
    result = TierResult(tier=TierId.tier2, name=TIER_NAME)
    urls = extract_urls(content or "")
    if not urls:
        result.checks.append(TierCheck(name="link_detection", passed=True, message="No links detected in content"))
        result.message = "No links"
        return result

    result.checks.append(TierCheck(
        name="link_detection", passed=True, message=f"Found {len(urls)} link(s) to analyze"
    ))

    verdicts: list[UrlVerdict] = []
    to_lookup: list[UrlVerdict] = []
    for url in dict.fromkeys(urls):
        domain = extract_domain(url) or ""
        verdict = UrlVerdict(url=url, defanged_url=defang_url(url), domain=domain)
        verdicts.append(verdict)

        if domain_matches(domain, config.safe_domains or []):
            verdict.trusted = True
            result.checks.append(TierCheck(
                name="trusted_domain", passed=True,
                message=f"{domain} is in trusted domains list", target=verdict.defanged_url,
            ))
            continue

        if config.use_pattern_analysis:
            _apply_patterns(verdict, result)

        if config.use_reputation_service:
            to_lookup.append(verdict)

    unchecked: list[UrlVerdict] = []
    if to_lookup:
        if reputation is None:
            unchecked = list(to_lookup)
            for v in to_lookup:
                result.checks.append(TierCheck(
                    name="reputation_scan", passed=True,
                    message="Reputation service not configured", target=v.defanged_url,
                ))
        else:
            outcomes = await asyncio.gather(*(_lookup(reputation, v.url, timeout) for v in to_lookup))
            for verdict, (report, risk, error) in zip(to_lookup, outcomes):
                if error:
                    logger.warning("Reputation lookup degraded for %s: %s", verdict.defanged_url, error)
                    unchecked.append(verdict)
                    result.checks.append(TierCheck(
                        name="reputation_scan", passed=True,
                        message=f"Unchecked: {error}", target=verdict.defanged_url,
                    ))
                    continue
                verdict.reputation = report
                verdict.reputation_checked = True
                if risk is not None and risk.rank > verdict.risk_level.rank:
                    verdict.risk_level = risk
                if risk is not None and risk is not RiskLevel.safe:
                    verdict.threats.append({
                        "type": "reputation",
                        "severity": risk.value,
                        "message": report["message"],
                    })
                result.checks.append(TierCheck(
                    name="reputation_scan",
                    passed=risk in (None, RiskLevel.safe),
                    message=report["message"],
                    target=verdict.defanged_url,
                ))

    if not config.use_pattern_analysis:
        # A URL the reputation service could not vouch for still gets the heuristics.
        for verdict in unchecked:
            _apply_patterns(verdict, result)

    for verdict in verdicts:
        verdict.safe = verdict.risk_level is RiskLevel.safe

    result.urls = verdicts
    result.degraded = bool(unchecked)

    malicious = [v for v in verdicts if v.risk_level is RiskLevel.malicious]
    suspicious = [v for v in verdicts if v.risk_level is RiskLevel.suspicious]

    result.passed = not malicious and (not config.flag_suspicious or not suspicious)
    if malicious and config.block_malicious:
        result.action = (
            DecisionAction.review if config.action is TierAction.review else DecisionAction.block
        )
    elif (malicious or suspicious) and config.flag_suspicious:
        result.action = DecisionAction.review

    parts = [f"{len(verdicts)} link(s) analyzed"]
    if malicious:
        parts.append(f"{len(malicious)} malicious")
    if suspicious:
        parts.append(f"{len(suspicious)} suspicious")
    if unchecked:
        parts.append(
            f"reputation unavailable for {len(unchecked)} link(s); verdict from pattern analysis only"
        )
    result.message = ", ".join(parts)
    return result
