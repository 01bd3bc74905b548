"""Tests for the moderation REST API."""

import base64
import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from modguard.services import build_services
from modguard.settings import Settings
from web.backend.app.main import app
from web.backend.app.routers import moderation

ADMIN = {"X-User-Id": "a1", "X-User-Email": "admin@example.com", "X-User-Roles": "admin"}
MODERATOR = {"X-User-Id": "m1", "X-User-Email": "mod@example.com", "X-User-Roles": "moderator"}
MEMBER = {"X-User-Id": "u1", "X-User-Email": "member@example.com"}


@pytest.fixture
def services(tmp_path: Path, monkeypatch):
    built = build_services(Settings(home=tmp_path))
    monkeypatch.setattr(moderation, "_services", built)
    return built


@pytest.fixture
def client(services):
    return TestClient(app)


def _set_blocklist(client, terms, action="block"):
    doc = client.get("/moderation/config", headers=ADMIN).json()
    doc["tier1"]["blocklist"] = terms
    doc["tier1"]["action"] = action
    response = client.put("/moderation/config", json=doc, headers=ADMIN)
    assert response.status_code == 200
    return response.json()


def _queue_one(client, text="please review spam"):
    _set_blocklist(client, ["spam"], action="review")
    body = client.post("/moderation/analyze", json={"text": text}, headers=MEMBER).json()
    assert body["action"] == "review"
    return body["queueItemId"]


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_anonymous_request_rejected(client):
    assert client.post("/moderation/analyze", json={"text": "hi"}).status_code == 401


def test_platform_principal_header(client):
    principal = base64.b64encode(json.dumps({
        "userId": "p1", "userDetails": "p1@example.com", "userRoles": ["authenticated"],
    }).encode()).decode()
    response = client.post(
        "/moderation/analyze", json={"text": "hello"}, headers={"X-MS-CLIENT-PRINCIPAL": principal}
    )
    assert response.status_code == 200
    assert response.json()["allowed"] is True


def test_analyze_clean_text(client):
    body = client.post("/moderation/analyze", json={"text": "hello world"}, headers=MEMBER).json()
    assert body["allowed"] is True
    assert body["action"] == "allow"
    assert [e["tier"] for e in body["tierFlow"]] == ["tier1", "tier1_5", "tier2", "tier3"]


def test_analyze_block_records_violation(client):
    _set_blocklist(client, ["kys"])
    body = client.post("/moderation/analyze", json={"text": "you kys now"}, headers=MEMBER).json()
    assert body["allowed"] is False
    assert body["reason"] == "tier1_keyword_match"

    status = client.get("/moderation/users/u1", headers=MODERATOR).json()
    assert status["violationCount"] == 1
    assert status["violations"][0]["reason"] == "tier1_keyword_match"


def test_dry_run_requires_admin_and_never_enqueues(client):
    _set_blocklist(client, ["spam"], action="review")
    payload = {"text": "spam", "dryRun": True}
    assert client.post("/moderation/analyze", json=payload, headers=MEMBER).status_code == 403

    body = client.post("/moderation/analyze", json=payload, headers=ADMIN).json()
    assert body["action"] == "review"
    assert body["queueItemId"] is None
    assert client.get("/moderation/queue", headers=ADMIN).json()["total"] == 0


def test_config_requires_admin(client):
    assert client.get("/moderation/config", headers=MODERATOR).status_code == 403


def test_invalid_config_lists_every_error(client, services):
    doc = client.get("/moderation/config", headers=ADMIN).json()
    doc["tier1"]["action"] = "explode"
    doc["tier3"]["thresholds"]["hate"] = 5
    response = client.put("/moderation/config", json=doc, headers=ADMIN)
    assert response.status_code == 422
    assert len(response.json()["detail"]["errors"]) == 2
    assert services.config.get().version == 1


def test_config_update_is_audited(client):
    updated = _set_blocklist(client, ["kys"])
    assert updated["version"] == 2
    assert updated["updatedBy"] == "admin@example.com"

    entries = client.get("/moderation/audit", headers=ADMIN).json()
    assert entries[0]["action"] == "moderation.config.update"
    assert entries[0]["actor"] == "admin@example.com"


def test_replace_blocklist(client):
    response = client.post("/moderation/blocklist", json={"terms": ["Foo", "foo", " bar "]}, headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["tier1"]["blocklist"] == ["foo", "bar"]


def test_queue_review_flow(client):
    item_id = _queue_one(client)

    listed = client.get("/moderation/queue", headers=MODERATOR).json()
    assert listed["total"] == 1
    assert listed["items"][0]["id"] == item_id
    assert listed["items"][0]["priority"] == "medium"

    response = client.put(f"/moderation/queue/{item_id}", json={"action": "approved"}, headers=MODERATOR)
    assert response.status_code == 200
    assert response.json()["status"] == "approved"
    assert response.json()["reviewedBy"] == "mod@example.com"

    again = client.put(f"/moderation/queue/{item_id}", json={"action": "rejected"}, headers=MODERATOR)
    assert again.status_code == 409

    stats = client.get("/moderation/stats", headers=MODERATOR).json()
    assert stats == {"pending": 0, "approved": 1, "rejected": 0, "todayTotal": 1}


def test_queue_requires_moderator(client):
    assert client.get("/moderation/queue", headers=MEMBER).status_code == 403


def test_review_unknown_item(client):
    response = client.put("/moderation/queue/nope", json={"action": "approved"}, headers=MODERATOR)
    assert response.status_code == 404


def test_review_rejects_unknown_action(client):
    item_id = _queue_one(client)
    response = client.put(f"/moderation/queue/{item_id}", json={"action": "pending"}, headers=MODERATOR)
    assert response.status_code == 422


def test_bulk_review_reports_each_id(client):
    first = _queue_one(client, "spam one")
    second = _queue_one(client, "spam two")
    client.put(f"/moderation/queue/{second}", json={"action": "approved"}, headers=MODERATOR)

    response = client.put(
        "/moderation/queue/bulk",
        json={"ids": [first, second, "missing"], "action": "rejected", "notes": "cleanup"},
        headers=MODERATOR,
    )
    assert response.status_code == 200
    results = response.json()["results"]
    assert [r["ok"] for r in results] == [True, False, False]
    assert results[0]["item"]["status"] == "rejected"
    assert results[2]["item"] is None


def test_block_and_unblock_user(client):
    assert client.put("/moderation/users/u1/block", json={}, headers=ADMIN).status_code == 422

    blocked = client.put("/moderation/users/u1/block", json={"reason": "spam wave"}, headers=ADMIN).json()
    assert blocked["isBlocked"] is True
    assert blocked["blockedBy"] == "admin@example.com"

    body = client.post("/moderation/analyze", json={"text": "hello"}, headers=MEMBER).json()
    assert body["reason"] == "user_blocked"

    unblocked = client.put("/moderation/users/u1/unblock", headers=ADMIN).json()
    assert unblocked["isBlocked"] is False
    assert len(unblocked["blockHistory"]) == 2

    actions = [e["action"] for e in client.get("/moderation/audit", headers=ADMIN).json()]
    assert "moderation.user.block" in actions
    assert "moderation.user.unblock" in actions


def test_block_user_requires_admin(client):
    response = client.put("/moderation/users/u1/block", json={"reason": "x"}, headers=MODERATOR)
    assert response.status_code == 403


def test_corrupt_queue_file_reports_unavailable(client, services, tmp_path):
    _queue_one(client)
    path = tmp_path / "moderation" / "queue.json"
    damaged = path.read_text()[:-5]
    path.write_text(damaged)

    assert client.get("/moderation/queue", headers=MODERATOR).status_code == 503
    response = client.post("/moderation/analyze", json={"text": "more spam"}, headers=MEMBER)
    assert response.status_code == 503
    assert path.read_text() == damaged


PNG = base64.b64encode(b"\x89PNG\r\n\x1a\n" + b"\x00" * 24).decode()


def test_analyze_image_only(client):
    body = client.post("/moderation/analyze", json={"image": PNG}, headers=MEMBER).json()
    assert body["allowed"] is True
    assert [e["tier"] for e in body["tierFlow"]] == ["tier3_image"]


def test_analyze_accepts_data_url(client):
    payload = {"text": "caption", "image": f"data:image/png;base64,{PNG}"}
    assert client.post("/moderation/analyze", json=payload, headers=MEMBER).status_code == 200


def test_analyze_requires_text_or_image(client):
    assert client.post("/moderation/analyze", json={}, headers=MEMBER).status_code == 422
    response = client.post("/moderation/analyze", json={"image": "%%%"}, headers=MEMBER)
    assert response.status_code == 422
