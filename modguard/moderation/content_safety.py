"""Content-safety classifiers used by Tier 3.

Two backends share the :class:`ContentClassifier` protocol:

* :class:`AzureContentSafetyClient` -- the Azure AI Content Safety
  ``text:analyze`` and ``image:analyze`` REST endpoints, called over httpx.
* :class:`AnthropicContentClassifier` -- asks a Claude model to grade the
  same four categories on the same 0/2/4/6 scale.

Both return ``{category: severity}`` keyed by the canonical category names
in :data:`~modguard.moderation.models.TIER3_CATEGORIES`.  Any failure
raises ``DependencyUnavailableError`` (or ``ConfigurationError`` when no
credentials are set) so the tier can skip instead of failing the request.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from typing import Any, Optional, Protocol

import anthropic
import httpx

from modguard.moderation.errors import ConfigurationError, DependencyUnavailableError
from modguard.moderation.models import SEVERITY_LEVELS, TIER3_CATEGORIES

logger = logging.getLogger(__name__)

AZURE_API_VERSION = "2023-10-01"
MAX_TEXT_LENGTH = 10_000

DEFAULT_MODEL = "claude-3-5-haiku-20241022"

AZURE_CATEGORIES = ["Hate", "Sexual", "Violence", "SelfHarm"]

_CATEGORY_ALIASES: dict[str, str] = {
    "hate": "hate",
    "sexual": "sexual",
    "violence": "violence",
    "selfharm": "selfHarm",
}


def normalize_category(name: str) -> Optional[str]:
    """``SelfHarm`` / ``self-harm`` / ``self_harm`` -> ``selfHarm``."""
    key = re.sub(r"[\s_-]", "", str(name)).lower()
    return _CATEGORY_ALIASES.get(key)


def snap_severity(value: Any) -> int:
    """Clamp *value* onto the 0/2/4/6 scale, rounding down between levels."""
    try:
        number = int(value)
    except (TypeError, ValueError):
        return 0
    number = max(SEVERITY_LEVELS[0], min(SEVERITY_LEVELS[-1], number))
    return max(level for level in SEVERITY_LEVELS if level <= number)


class ContentClassifier(Protocol):
    """Anything that can grade text per harm category.

    Classifiers that also grade images add ``classify_image(image)``.
    """

    async def classify(self, text: str) -> dict[str, int]: ...


_IMAGE_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"\x89PNG", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF8", "image/gif"),
)


def image_media_type(image: str) -> Optional[str]:
    """Sniff the media type of a base64 image from its leading bytes."""
    try:
        head = base64.b64decode(image[:16])
    except (binascii.Error, ValueError):
        return None
    for magic, media_type in _IMAGE_SIGNATURES:
        if head.startswith(magic):
            return media_type
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    return None


# ---------------------------------------------------------------------------
# Azure AI Content Safety
# ---------------------------------------------------------------------------


class AzureContentSafetyClient:
    """Async client for the Azure AI Content Safety text and image endpoints.

    Parameters
    ----------
    endpoint : str
        Resource endpoint, e.g. ``https://myres.cognitiveservices.azure.com``.
    api_key : str
        Subscription key sent as ``Ocp-Apim-Subscription-Key``.
    timeout : float
        Seconds allowed for the HTTP exchange.
    transport : httpx.AsyncBaseTransport | None
        Optional transport override (used by tests).
    """

    service_name = "content-safety"

    def __init__(
        self,
        endpoint: str = "",
        api_key: str = "",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.endpoint and self.api_key)

    async def classify(self, text: str) -> dict[str, int]:
        return await self._analyze("text:analyze", {
            "text": (text or "")[:MAX_TEXT_LENGTH],
            "categories": AZURE_CATEGORIES,
            "outputType": "FourSeverityLevels",
        })

    async def classify_image(self, image: str) -> dict[str, int]:
        """Grade a base64-encoded image with ``image:analyze``."""
        return await self._analyze("image:analyze", {
            "image": {"content": image},
            "categories": AZURE_CATEGORIES,
            "outputType": "FourSeverityLevels",
        })

    async def _analyze(self, operation: str, body: dict[str, Any]) -> dict[str, int]:
        if not self.configured:
            raise ConfigurationError("Content Safety endpoint or key not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    f"{self.endpoint}/contentsafety/{operation}",
                    params={"api-version": AZURE_API_VERSION},
                    headers={
                        "Ocp-Apim-Subscription-Key": self.api_key,
                        "Content-Type": "application/json",
                    },
                    json=body,
                )
            if resp.status_code >= 400:
                raise DependencyUnavailableError(self.service_name, f"HTTP {resp.status_code}")
            payload = resp.json()
        except httpx.TimeoutException as exc:
            raise DependencyUnavailableError(self.service_name, "timed out") from exc
        except httpx.HTTPError as exc:
            raise DependencyUnavailableError(self.service_name, str(exc) or type(exc).__name__) from exc
        except ValueError as exc:
            raise DependencyUnavailableError(self.service_name, "malformed response body") from exc

        analysis = payload.get("categoriesAnalysis") if isinstance(payload, dict) else None
        if not isinstance(analysis, list):
            raise DependencyUnavailableError(self.service_name, "response missing categoriesAnalysis")

        scores = {category: 0 for category in TIER3_CATEGORIES}
        for entry in analysis:
            if not isinstance(entry, dict):
                continue
            category = normalize_category(entry.get("category", ""))
            if category:
                scores[category] = snap_severity(entry.get("severity", 0))
        return scores


# ---------------------------------------------------------------------------
# Anthropic-backed classifier
# ---------------------------------------------------------------------------

CLASSIFY_SYSTEM_PROMPT = """\
You are a content-safety grader for a community platform.  Rate the user \
content on four harm categories using only the severity levels 0, 2, 4 or 6:
- 0: safe
- 2: low (mild or ambiguous)
- 4: medium (clearly harmful)
- 6: high (severe, explicit or threatening)

Categories: hate, sexual, violence, selfHarm.

Return ONLY a JSON object, for example:
{"hate": 0, "sexual": 0, "violence": 2, "selfHarm": 0}
"""

CLASSIFY_PROMPT = """\
Content to rate:
---
{content}
---
"""

CLASSIFY_IMAGE_PROMPT = "Rate the attached image."

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


class AnthropicContentClassifier:
    """Grades content with a Claude model.

    Parameters
    ----------
    api_key : str
        Anthropic API key.  When empty every call raises
        ``ConfigurationError``.
    model : str
        Model identifier to use.
    timeout : float
        Seconds allowed for the API call.
    """

    service_name = "anthropic"

    def __init__(
        self,
        api_key: str = "",
        model: str = DEFAULT_MODEL,
        timeout: float = 10.0,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        if self.api_key:
            self._async_client = anthropic.AsyncAnthropic(api_key=self.api_key, timeout=timeout)
        else:
            self._async_client = None  # type: ignore[assignment]

    @property
    def configured(self) -> bool:
        return self._async_client is not None

    async def classify(self, text: str) -> dict[str, int]:
        return await self._grade(CLASSIFY_PROMPT.format(content=(text or "")[:MAX_TEXT_LENGTH]))

    async def classify_image(self, image: str) -> dict[str, int]:
        """Grade a base64-encoded PNG, JPEG, GIF or WebP image."""
        media_type = image_media_type(image)
        if media_type is None:
            raise DependencyUnavailableError(self.service_name, "unsupported image format")
        return await self._grade([
            {"type": "image", "source": {"type": "base64", "media_type": media_type, "data": image}},
            {"type": "text", "text": CLASSIFY_IMAGE_PROMPT},
        ])

    async def _grade(self, content: Any) -> dict[str, int]:
        if not self.configured:
            raise ConfigurationError("Anthropic classifier not configured. Set ANTHROPIC_API_KEY.")

        try:
            response = await self._async_client.messages.create(
                model=self.model,
                max_tokens=256,
                temperature=0,
                system=CLASSIFY_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": content}],
            )
        except anthropic.APIError as exc:
            raise DependencyUnavailableError(self.service_name, str(exc)) from exc

        raw = response.content[0].text if response.content else ""
        return parse_scores(raw, self.service_name)


def parse_scores(raw: str, service: str = "classifier") -> dict[str, int]:
    """Extract a ``{category: severity}`` map from a model reply."""
    match = _JSON_OBJECT_RE.search(raw or "")
    if not match:
        raise DependencyUnavailableError(service, "reply contained no JSON object")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise DependencyUnavailableError(service, "reply was not valid JSON") from exc
    if not isinstance(data, dict):
        raise DependencyUnavailableError(service, "reply was not a JSON object")

    scores = {category: 0 for category in TIER3_CATEGORIES}
    for key, value in data.items():
        category = normalize_category(key)
        if category:
            scores[category] = snap_severity(value)
    return scores


def build_classifier(
    backend: str,
    *,
    endpoint: str = "",
    api_key: str = "",
    anthropic_api_key: str = "",
    timeout: float = 10.0,
) -> Optional[ContentClassifier]:
    """Return the classifier named by *backend*, or None when it has no credentials."""
    backend = (backend or "azure").lower()
    if backend == "anthropic":
        if not anthropic_api_key:
            logger.info("Tier 3 classifier disabled: ANTHROPIC_API_KEY not set")
            return None
        return AnthropicContentClassifier(api_key=anthropic_api_key, timeout=timeout)
    if backend == "azure":
        if not (endpoint and api_key):
            logger.info("Tier 3 classifier disabled: Content Safety endpoint/key not set")
            return None
        return AzureContentSafetyClient(endpoint=endpoint, api_key=api_key, timeout=timeout)
    raise ConfigurationError(f"Unknown classifier backend '{backend}'")
