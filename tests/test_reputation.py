"""Tests for the VirusTotal reputation client."""

import asyncio

import httpx
import pytest

from modguard.moderation.errors import ConfigurationError, DependencyUnavailableError
from modguard.moderation.models import RiskLevel
from modguard.moderation.reputation import ReputationReport, VirusTotalClient, url_id


def _client(handler):
    return VirusTotalClient(api_key="test-key", transport=httpx.MockTransport(handler))


def _stats_response(**stats):
    return httpx.Response(200, json={"data": {"attributes": {"last_analysis_stats": stats}}})


def test_url_id_is_unpadded_urlsafe_base64():
    assert url_id("https://a.io") == "aHR0cHM6Ly9hLmlv"
    assert "=" not in url_id("https://example.com/x")


def test_lookup_parses_stats_and_sends_key():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["key"] = request.headers.get("x-apikey")
        return _stats_response(malicious=4, suspicious=1, harmless=60, undetected=5)

    report = asyncio.run(_client(handler).lookup("https://a.io"))
    assert seen["path"].endswith(f"/urls/{url_id('https://a.io')}")
    assert seen["key"] == "test-key"
    assert report.malicious == 4
    assert report.total_engines == 70
    assert report.risk_level == RiskLevel.malicious


def test_unknown_url_is_submitted():
    methods = []

    def handler(request):
        methods.append(request.method)
        if request.method == "GET":
            return httpx.Response(404, json={"error": {"code": "NotFoundError"}})
        return httpx.Response(200, json={"data": {"id": "analysis-1"}})

    report = asyncio.run(_client(handler).lookup("https://new.example"))
    assert methods == ["GET", "POST"]
    assert report.status == "submitted"
    assert report.risk_level == RiskLevel.suspicious


def test_server_error_raises_dependency_unavailable():
    client = _client(lambda request: httpx.Response(503))
    with pytest.raises(DependencyUnavailableError):
        asyncio.run(client.lookup("https://a.io"))


def test_transport_error_raises_dependency_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(DependencyUnavailableError):
        asyncio.run(_client(handler).lookup("https://a.io"))


def test_malformed_body_raises_dependency_unavailable():
    client = _client(lambda request: httpx.Response(200, content=b"not json"))
    with pytest.raises(DependencyUnavailableError):
        asyncio.run(client.lookup("https://a.io"))



def test_list_shaped_data_raises_dependency_unavailable():
    client = _client(lambda request: httpx.Response(200, json={"data": [{"id": "x"}]}))
    with pytest.raises(DependencyUnavailableError):
        asyncio.run(client.lookup("https://a.io"))


def test_non_numeric_counts_raise_dependency_unavailable():
    client = _client(lambda request: _stats_response(malicious="many", harmless=3))
    with pytest.raises(DependencyUnavailableError):
        asyncio.run(client.lookup("https://a.io"))


def test_list_shaped_stats_raise_dependency_unavailable():
    response = httpx.Response(200, json={"data": {"attributes": {"last_analysis_stats": [1, 2]}}})
    with pytest.raises(DependencyUnavailableError):
        asyncio.run(_client(lambda request: response).lookup("https://a.io"))

def test_missing_key_raises_configuration_error():
    with pytest.raises(ConfigurationError):
        asyncio.run(VirusTotalClient(api_key="").lookup("https://a.io"))


def test_risk_thresholds():
    assert ReputationReport(url="u", malicious=3).risk_level == RiskLevel.malicious
    assert ReputationReport(url="u", malicious=2).risk_level == RiskLevel.suspicious
    assert ReputationReport(url="u", malicious=1).risk_level == RiskLevel.suspicious
    assert ReputationReport(url="u", suspicious=4).risk_level == RiskLevel.suspicious
    assert ReputationReport(url="u", suspicious=3).risk_level == RiskLevel.safe
    assert ReputationReport(url="u", harmless=80).risk_level == RiskLevel.safe
