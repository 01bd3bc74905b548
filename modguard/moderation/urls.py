"""URL helpers shared by the blocklist and link-safety tiers."""

from __future__ import annotations

import re
from typing import Iterable, Optional
from urllib.parse import urlsplit

_URL_RE = re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+", re.IGNORECASE)
_TRAILING_PUNCT_RE = re.compile(r"[.,;:!?)\]]+$")


def extract_urls(text: str) -> list[str]:
    """Return every http(s) URL in *text*, in order, without trailing punctuation."""
    if not text:
        return []
    urls = []
    for match in _URL_RE.findall(text):
        url = _TRAILING_PUNCT_RE.sub("", match)
        if url:
            urls.append(url)
    return urls


def extract_domain(url: str) -> Optional[str]:
    """Return the lowercased host of *url*, or None when it cannot be parsed."""
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return None
    return host.lower().rstrip(".") if host else None


def normalize_domain(domain: str) -> str:
    """Lowercase a configured domain and strip any scheme, path or ``www.``."""
    value = domain.strip().lower()
    if "://" in value:
        value = extract_domain(value) or ""
    value = value.split("/", 1)[0].rstrip(".")
    if value.startswith("www."):
        value = value[4:]
    return value


def domain_matches(domain: Optional[str], candidates: Iterable[str]) -> Optional[str]:
    """Return the entry of *candidates* that *domain* equals or is a subdomain of."""
    if not domain:
        return None
    for candidate in candidates:
        entry = normalize_domain(candidate)
        if not entry:
            continue
        if domain == entry or domain.endswith("." + entry):
            return candidate
    return None


def defang_url(url: str) -> str:
    """``https://evil.com`` -> ``hxxps[://]evil[.]com`` for safe display."""
    if not url:
        return ""
    defanged = re.sub(r"^http", "hxxp", url, flags=re.IGNORECASE)
    defanged = defanged.replace(".", "[.]")
    return defanged.replace("://", "[://]")


def refang_url(defanged: str) -> str:
    """Reverse :func:`defang_url`."""
    if not defanged:
        return ""
    url = re.sub(r"^hxxp", "http", defanged, flags=re.IGNORECASE)
    url = url.replace("[.]", ".")
    return url.replace("[://]", "://")


def defang_text(text: str) -> str:
    """Replace every URL in *text* with its defanged form."""
    if not text:
        return text
    return _URL_RE.sub(lambda m: _defang_match(m.group(0)), text)


def _defang_match(raw: str) -> str:
    url = _TRAILING_PUNCT_RE.sub("", raw)
    return defang_url(url) + raw[len(url):]
