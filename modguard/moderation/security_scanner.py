"""Tier 1.5 -- signature-based detection of attack payloads.

A fixed catalog of named signatures, grouped by category, is matched
against every submission.  This is a security floor rather than a content
policy: it is not configurable, and any ``critical`` or ``high`` hit blocks
the submission regardless of how the policy tiers are set up.  Lower
severity hits send the submission to human review.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from modguard.moderation.models import (
    DecisionAction,
    SecurityMatch,
    Severity,
    TierCheck,
    TierId,
    TierResult,
)

TIER_NAME = "Security Pattern Scanner"


@dataclass(frozen=True)
class Signature:
    """A named attack signature.

    ``pattern`` must match; when ``requires`` is set it must match as well,
    which lets a signature express "keyword AND quote-breaking sequence"
    style heuristics.
    """

    name: str
    category: str
    severity: Severity
    pattern: re.Pattern[str]
    requires: Optional[re.Pattern[str]] = None
    description: str = ""

    def matches(self, text: str) -> bool:
        if not self.pattern.search(text):
            return False
        return self.requires is None or bool(self.requires.search(text))


def _sig(
    name: str,
    category: str,
    severity: Severity,
    pattern: str,
    description: str,
    requires: Optional[str] = None,
) -> Signature:
    return Signature(
        name=name,
        category=category,
        severity=severity,
        pattern=re.compile(pattern, re.IGNORECASE),
        requires=re.compile(requires, re.IGNORECASE) if requires else None,
        description=description,
    )


_CRIT, _HIGH, _MED, _LOW = Severity.critical, Severity.high, Severity.medium, Severity.low

_SQL_KEYWORDS = r"\b(select|insert|update|delete|drop|union|where|from|exec)\b"

# ---------------------------------------------------------------------------
# Signature catalog
# ---------------------------------------------------------------------------

SIGNATURES: tuple[Signature, ...] = (
    # -- SQL injection -------------------------------------------------------
    _sig("sqli_tautology", "sql_injection", _CRIT,
         r"['\"]\s*(or|and)\s+['\"]?\w+['\"]?\s*=\s*['\"]?\w+",
         "Quote-breaking boolean tautology"),
    _sig("sqli_union_select", "sql_injection", _HIGH,
         r"\bunion\s+(all\s+)?select\b", "UNION-based extraction"),
    _sig("sqli_stacked_query", "sql_injection", _CRIT,
         r";\s*(drop|delete|insert|update|alter|truncate)\s+(table|from|into|database)\b",
         "Stacked destructive statement"),
    _sig("sqli_comment_terminator", "sql_injection", _HIGH,
         r"['\"]\s*(--|#|/\*)", "Quote followed by SQL comment", requires=_SQL_KEYWORDS),
    _sig("sqli_time_based", "sql_injection", _HIGH,
         r"(\band|\bor|\bselect|;|\|\|)\s*(sleep|benchmark|pg_sleep)\s*\(\s*\d|\bwaitfor\s+delay\s+'",
         "Time-based blind injection"),
    _sig("sqli_select_star", "sql_injection", _MED,
         r"\bselect\s+\*\s+from\s+\w+\s*(;|\bwhere\b|--|$)", "Raw SELECT statement",
         requires=r"['\"`;]|\bwhere\b"),
    # -- Cross-site scripting ------------------------------------------------
    _sig("xss_script_tag", "xss", _CRIT, r"<\s*script[\s>/]", "Script tag"),
    _sig("xss_event_handler", "xss", _HIGH,
         r"<[^>]+\bon(error|load|click|mouseover|focus|submit|toggle)\s*=", "Inline event handler"),
    _sig("xss_javascript_uri", "xss", _HIGH,
         r"\b(href|src|action|formaction|data|xlink:href)\s*=\s*['\"]?\s*javascript\s*:|\bjavascript:[\w.$]+\(",
         "javascript: URI in an attribute or calling a function"),
    _sig("xss_embedded_frame", "xss", _HIGH, r"<\s*(iframe|object|embed)[\s>/]", "Embedded frame/object"),
    _sig("xss_cookie_access", "xss", _MED, r"\bdocument\.cookie\b", "Cookie access from script"),
    # -- Command injection ---------------------------------------------------
    _sig("cmd_chained_command", "command_injection", _CRIT,
         r"(;|&&|\|\||\||`)\s*(rm\s+-|wget\s+https?|curl\s+https?|nc\s+-|bash\s+-|sh\s+-c|chmod\s+[0-7+]|cat\s+/etc/)",
         "Shell metacharacter followed by a command"),
    _sig("cmd_substitution", "command_injection", _HIGH,
         r"\$\(\s*(curl|wget|whoami|id|cat|uname|bash|sh)\b", "Command substitution"),
    _sig("cmd_recursive_delete", "command_injection", _CRIT, r"\brm\s+-rf\s+/", "Recursive root delete"),
    _sig("cmd_reverse_shell", "command_injection", _CRIT, r"/dev/tcp/\d", "Reverse shell redirect"),
    # -- Path traversal ------------------------------------------------------
    _sig("path_dot_dot", "path_traversal", _HIGH, r"(\.\./){2,}|(\.\.\\){2,}", "Repeated parent-directory hops"),
    _sig("path_encoded_dot_dot", "path_traversal", _HIGH, r"%2e%2e(%2f|%5c|/|\\)", "URL-encoded traversal"),
    _sig("path_sensitive_file", "path_traversal", _HIGH,
         r"/etc/(passwd|shadow)\b|c:\\windows\\system32|\bboot\.ini\b", "Well-known sensitive file"),
    # -- XML external entities -----------------------------------------------
    _sig("xxe_system_entity", "xxe", _CRIT, r"<!ENTITY\s+\S+\s+SYSTEM\b", "External SYSTEM entity"),
    _sig("xxe_inline_doctype", "xxe", _HIGH, r"<!DOCTYPE[^>]*\[\s*<!ENTITY", "DOCTYPE with inline entities"),
    # -- NoSQL injection -----------------------------------------------------
    _sig("nosql_operator", "nosql_injection", _HIGH,
         r"[\"']?\$(where|ne|gt|gte|lt|lte|regex|nin|exists|expr)[\"']?\s*:", "Query operator injection"),
    # -- Template injection --------------------------------------------------
    _sig("ssti_object_walk", "template_injection", _CRIT,
         r"\{\{[^}]*(__class__|__globals__|__import__|__builtins__|config\.|request\.)", "Template object traversal"),
    _sig("ssti_arithmetic_eval", "template_injection", _MED,
         r"\{\{\s*\d+\s*\*\s*\d+\s*\}\}|\$\{\s*\d+\s*\*\s*\d+\s*\}", "Template arithmetic evaluation"),
    _sig("ssti_jndi_lookup", "template_injection", _CRIT, r"\$\{\s*jndi\s*:", "JNDI lookup string"),
    # -- LDAP injection ------------------------------------------------------
    _sig("ldap_filter_break", "ldap_injection", _HIGH,
         r"\*\)\s*\(\s*[|&]|\)\s*\(\s*\|\s*\(\s*\w+\s*=\s*\*", "LDAP filter break-out"),
    # -- Protocol / scheme abuse ---------------------------------------------
    _sig("scheme_dangerous", "protocol_abuse", _HIGH,
         r"\b(gopher|dict|expect|php|jar|vbscript)://|\b(href|src|action)\s*=\s*['\"]?\s*vbscript\s*:", "Dangerous URL scheme"),
    _sig("scheme_data_html", "protocol_abuse", _HIGH, r"\bdata:text/html[;,]", "HTML data URI"),
    _sig("scheme_local_file", "protocol_abuse", _MED, r"\bfile:///", "Local file URI"),
    # -- Header / CRLF injection ---------------------------------------------
    _sig("crlf_header", "header_injection", _HIGH,
         r"(%0d%0a|%0a|%0d|\\r\\n)\s*(set-cookie|location|content-type|content-length|x-[\w-]+)\s*:",
         "Encoded CRLF followed by a header"),
    # -- Prompt injection ----------------------------------------------------
    _sig("prompt_ignore_instructions", "prompt_injection", _HIGH,
         r"(ignore|disregard|forget)\s+(all\s+)?(of\s+)?(your\s+|the\s+)?(previous|prior|above|earlier)\s+(instructions|prompts|rules|directions)",
         "Instruction override"),
    _sig("prompt_jailbreak_mode", "prompt_injection", _HIGH,
         r"\b(enable|enter|activate|switch\s+to)\s+(dan|jailbreak|unrestricted|unfiltered)\s+mode\b"
         r"|\byou('re|\s+are)\s+now\s+in\s+(developer|dan|jailbreak|unrestricted|unfiltered)\s+mode\b"
         r"|\b(dan|jailbreak)\s+mode\s+(enabled|activated|on)\b"
         r"|\byou\s+can\s+do\s+anything\s+now\b|\bdo\s+anything\s+now\s*\(\s*dan\s*\)",
         "Jailbreak persona"),
    _sig("prompt_role_override", "prompt_injection", _MED,
         r"pretend\s+(that\s+)?you\s+(are|have)\s+no\s+(rules|restrictions|filters)|act\s+as\s+(a\s+|an\s+)?unrestricted",
         "Role-play restriction bypass"),
    _sig("prompt_policy_override", "prompt_injection", _HIGH,
         r"(override|bypass|disable)\s+(your\s+)?(system|safety|content)\s*(prompt|filter|policy|instructions|guidelines)",
         "Safety policy override"),
    _sig("prompt_delimiter_spoof", "prompt_injection", _HIGH,
         r"<\|?(system|im_start|im_end)\|?>|\[/?INST\]|^\s*###\s*system\s*:", "Chat-template delimiter spoofing"),
    # -- Insecure output handling --------------------------------------------
    _sig("output_markdown_exfil", "output_injection", _HIGH,
         r"!\[[^\]]*\]\(https?://[^)\s]+\?[^)]*(data|q|secret|token|prompt)=", "Markdown image exfiltration"),
    _sig("output_script_request", "output_injection", _MED,
         r"(respond|reply|answer|output)\s+(only\s+)?(with|in)\s+(raw\s+)?(html|javascript)\b.{0,40}<",
         "Request to emit executable markup"),
    # -- Training data extraction --------------------------------------------
    _sig("extract_training_data", "training_data_extraction", _HIGH,
         r"(reveal|show|print|dump|list|recite)\s+(me\s+)?(your\s+)?(training\s+(data|examples|set)|memori[sz]ed\s+(text|data))",
         "Training data extraction"),
    _sig("extract_divergence_repeat", "training_data_extraction", _MED,
         r"repeat\s+(the\s+)?(word|phrase)\s+\S+\s+forever", "Repetition divergence attack"),
    # -- Resource exhaustion -------------------------------------------------
    _sig("exhaust_unbounded_generation", "resource_exhaustion", _MED,
         r"(repeat|write|generate|say|print)\s+.{0,40}?\b(\d{5,}|a\s+million|a\s+billion|infinitely)\s+times",
         "Unbounded generation request"),
    _sig("exhaust_char_flood", "resource_exhaustion", _LOW, r"(.)\1{300,}", "Long single-character flood"),
    # -- Supply chain / plugin abuse -----------------------------------------
    _sig("supply_remote_plugin", "supply_chain", _HIGH,
         r"(install|load|import|enable)\s+(this\s+|the\s+following\s+)?(plugin|extension|package|tool)\s+from\s+https?://",
         "Plugin from an arbitrary URL"),
    _sig("supply_pipe_to_shell", "supply_chain", _HIGH,
         r"(curl|wget)\s+[^|\n]+\|\s*(sudo\s+)?(ba)?sh\b|pip\s+install\s+(--index-url|-i|--extra-index-url)\s+https?://",
         "Remote installer piped to a shell"),
    # -- Sensitive data disclosure -------------------------------------------
    _sig("disclose_system_prompt", "data_disclosure", _HIGH,
         r"(reveal|print|output|show|repeat)\s+(me\s+)?(your\s+)?(system\s+prompt|initial\s+instructions|hidden\s+instructions)",
         "System prompt disclosure"),
    _sig("disclose_other_users", "data_disclosure", _HIGH,
         r"(show|give|list|dump)\s+(me\s+)?(all\s+)?(the\s+)?(other\s+)?users?('s)?\s+(emails?|passwords?|addresses|phone\s+numbers|personal\s+data)",
         "Other users' personal data"),
    _sig("disclose_private_key", "data_disclosure", _HIGH,
         r"-----BEGIN\s+(RSA\s+|EC\s+|OPENSSH\s+)?PRIVATE\s+KEY-----", "Private key material"),
    _sig("disclose_aws_key", "data_disclosure", _HIGH, r"\bAKIA[0-9A-Z]{16}\b", "AWS access key id"),
    _sig("disclose_ssn", "data_disclosure", _MED, r"\b\d{3}-\d{2}-\d{4}\b", "US social security number"),
    _sig("disclose_card_number", "data_disclosure", _MED, r"\b(?:\d{4}[-\s]?){3}\d{4}\b", "Payment card number"),
    # -- Excessive agency ----------------------------------------------------
    _sig("agency_mass_delete", "excessive_agency", _HIGH,
         r"(delete|drop|wipe|erase|purge)\s+(all|every)\s+(the\s+)?(users?|accounts|messages|records|data)\s+"
         r"(in|from|on)\s+(the\s+|this\s+|your\s+)?(database|db|server|system|platform)\b",
         "Mass destructive action"),
    _sig("agency_privilege_grant", "excessive_agency", _HIGH,
         r"(grant|give|make)\s+(me|my\s+account)\s+(an?\s+)?(admin|administrator|root|superuser)\b",
         "Privilege escalation request"),
    _sig("agency_server_exec", "excessive_agency", _HIGH,
         r"(execute|run)\s+(this\s+)?(shell\s+)?(command|code|script)\s+(on|in)\s+(the\s+)?(server|system|host)",
         "Server-side execution request"),
    _sig("agency_funds_transfer", "excessive_agency", _MED,
         r"(transfer|send|wire)\s+(all\s+)?(the\s+)?(funds|money|balance)\s+to\b", "Funds transfer request"),
    # -- Social engineering framing ------------------------------------------
    _sig("social_authority_claim", "social_engineering", _MED,
         r"(i\s+am|i'm|this\s+is)\s+(the|an|your)\s+(admin|administrator|developer|moderator|owner)\b.{0,60}\b(authori[sz]e|override|bypass|disable)",
         "Claimed authority to bypass controls"),
    _sig("social_credential_urgency", "social_engineering", _MED,
         r"(urgent|immediately|emergency).{0,40}(verify|confirm)\s+your\s+(password|account|identity|credentials)",
         "Urgent credential verification"),
    _sig("social_hypothetical_harm", "social_engineering", _HIGH,
         r"(educational|hypothetical|fictional)\s+(purposes?|exercise|story|scenario).{0,80}how\s+to\s+(make|build|create)\s+(a\s+|an\s+)?(bomb|weapon|malware|explosive)",
         "Fictional framing for harmful instructions"),
    # -- Model extraction ----------------------------------------------------
    _sig("model_weights_request", "model_extraction", _MED,
         r"(tell\s+me|reveal|what\s+are|give\s+me)\s+(your|the)\s+(model\s+weights|weights|hyperparameters|model\s+architecture)",
         "Request for model internals"),
    _sig("model_logit_harvest", "model_extraction", _MED,
         r"(output|return|give)\s+(me\s+)?(the\s+)?(logits|log\s*probs|token\s+probabilities)\s+for", "Logit harvesting"),
)

CATEGORIES: tuple[str, ...] = tuple(dict.fromkeys(sig.category for sig in SIGNATURES))


def scan(content: str) -> list[SecurityMatch]:
    """Return a match for every signature found in *content*."""
    if not content:
        return []
    return [
        SecurityMatch(
            signature=sig.name,
            category=sig.category,
            severity=sig.severity,
            description=sig.description,
        )
        for sig in SIGNATURES
        if sig.matches(content)
    ]


def highest_severity(matches: list[SecurityMatch]) -> Optional[Severity]:
    if not matches:
        return None
    return max((m.severity for m in matches), key=lambda s: s.rank)


def evaluate(content: str) -> TierResult:
    """Run the security floor over *content*."""
    result = TierResult(tier=TierId.security, name=TIER_NAME)
    matches = scan(content or "")
    result.security_matches = matches

    hit_categories = {m.category for m in matches}
    for category in CATEGORIES:
        result.checks.append(
            TierCheck(
                name=category,
                passed=category not in hit_categories,
                message=(
                    ", ".join(m.signature for m in matches if m.category == category)
                    if category in hit_categories
                    else "clean"
                ),
            )
        )

    top = highest_severity(matches)
    if top is None:
        result.message = f"No attack signatures found ({len(SIGNATURES)} checked)"
        return result

    result.passed = False
    if top in (Severity.critical, Severity.high):
        result.action = DecisionAction.block
    else:
        result.action = DecisionAction.review
    result.message = (
        f"{len(matches)} attack signature(s) matched, highest severity {top.value}: "
        + ", ".join(sorted(hit_categories))
    )
    return result
