"""URL reputation lookups against the VirusTotal v3 API.

Any failure to get an answer (missing key, timeout, transport error,
unexpected status, malformed body) raises ``DependencyUnavailableError`` or
``ConfigurationError``; the link-safety tier turns those into a degraded,
pattern-only verdict.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

import httpx

from modguard.moderation.errors import ConfigurationError, DependencyUnavailableError
from modguard.moderation.models import RiskLevel

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://www.virustotal.com/api/v3"
SERVICE_NAME = "virustotal"

# More than this many engines flagging a URL as malicious makes it malicious.
MALICIOUS_ENGINE_LIMIT = 2
# More than this many "suspicious" votes makes a URL suspicious.
SUSPICIOUS_ENGINE_LIMIT = 3


@dataclass
class ReputationReport:
    """Engine vote counts for one URL."""

    url: str
    status: str = "analyzed"  # "analyzed" | "submitted"
    malicious: int = 0
    suspicious: int = 0
    harmless: int = 0
    undetected: int = 0
    extra: dict = field(default_factory=dict)

    @property
    def total_engines(self) -> int:
        return self.malicious + self.suspicious + self.harmless + self.undetected

    @property
    def threat_score(self) -> float:
        total = self.total_engines
        if total == 0:
            return 0.0
        return round((self.malicious * 2 + self.suspicious) / total * 100, 2)

    @property
    def risk_level(self) -> RiskLevel:
        if self.status == "submitted":
            # Unknown to the service: hold for review until results exist.
            return RiskLevel.suspicious
        if self.malicious > MALICIOUS_ENGINE_LIMIT:
            return RiskLevel.malicious
        if self.malicious > 0 or self.suspicious > SUSPICIOUS_ENGINE_LIMIT:
            return RiskLevel.suspicious
        return RiskLevel.safe

    @property
    def message(self) -> str:
        if self.status == "submitted":
            return "URL submitted for analysis - pending results"
        if self.malicious:
            return f"{self.malicious} engines detected malicious content"
        if self.suspicious:
            return f"{self.suspicious} engines flagged as suspicious"
        return "No threats detected"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "malicious": self.malicious,
            "suspicious": self.suspicious,
            "harmless": self.harmless,
            "totalEngines": self.total_engines,
            "score": self.threat_score,
            "message": self.message,
        }


class ReputationService(Protocol):
    """Anything that can look up a URL's reputation."""

    async def lookup(self, url: str) -> ReputationReport: ...


def url_id(url: str) -> str:
    """VirusTotal URL identifier: unpadded urlsafe base64 of the URL."""
    return base64.urlsafe_b64encode(url.encode()).decode().rstrip("=")


class VirusTotalClient:
    """Thin async wrapper around the VirusTotal URL endpoints.

    Parameters
    ----------
    api_key : str
        VirusTotal API key.  When empty every lookup raises
        ``ConfigurationError``.
    timeout : float
        Seconds allowed for each HTTP exchange.
    transport : httpx.AsyncBaseTransport | None
        Optional transport override (used by tests).
    """

    def __init__(
        self,
        api_key: str = "",
        api_url: str = DEFAULT_API_URL,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            headers={"x-apikey": self.api_key, "Accept": "application/json"},
            timeout=self.timeout,
            transport=self._transport,
        )

    async def lookup(self, url: str) -> ReputationReport:
        if not self.configured:
            raise ConfigurationError("VirusTotal API key not configured")

        try:
            async with self._client() as client:
                resp = await client.get(f"/urls/{url_id(url)}")
                if resp.status_code == 404:
                    submit = await client.post("/urls", data={"url": url})
                    if submit.status_code >= 400:
                        raise DependencyUnavailableError(
                            SERVICE_NAME, f"submission failed with HTTP {submit.status_code}"
                        )
                    return ReputationReport(url=url, status="submitted")
                if resp.status_code >= 400:
                    raise DependencyUnavailableError(SERVICE_NAME, f"HTTP {resp.status_code}")
                payload = resp.json()
        except httpx.TimeoutException as exc:
            raise DependencyUnavailableError(SERVICE_NAME, "timed out") from exc
        except httpx.HTTPError as exc:
            raise DependencyUnavailableError(SERVICE_NAME, str(exc) or type(exc).__name__) from exc
        except ValueError as exc:
            raise DependencyUnavailableError(SERVICE_NAME, "malformed response body") from exc

        if not isinstance(payload, dict):
            raise DependencyUnavailableError(SERVICE_NAME, "malformed response body")
        try:
            attributes = (payload.get("data") or {}).get("attributes") or {}
            stats = attributes.get("last_analysis_stats") or {}
            report = ReputationReport(
                url=url,
                malicious=int(stats.get("malicious", 0) or 0),
                suspicious=int(stats.get("suspicious", 0) or 0),
                harmless=int(stats.get("harmless", 0) or 0),
                undetected=int(stats.get("undetected", 0) or 0),
            )
        except (AttributeError, TypeError, ValueError) as exc:
            raise DependencyUnavailableError(SERVICE_NAME, "unexpected analysis stats") from exc
        logger.debug("Reputation for %s: %s", url, report.message)
        return report
