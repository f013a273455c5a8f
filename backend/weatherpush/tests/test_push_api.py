"""Tests for the /push subscription API and the ad-hoc summary trigger."""

from fastapi.testclient import TestClient

import weatherpush.api.push as push_api
from weatherpush.api.deps import get_coordinator
from weatherpush.main import app
from weatherpush.push.errors import StoreError

ENDPOINT = "https://fcm.googleapis.com/fcm/send/device-1"


def _subscribe_body(browser, endpoint: str = ENDPOINT) -> dict:
    return {"endpoint": endpoint, "p256dh": browser.p256dh, "auth": browser.auth}


class TestSubscribe:
    def test_subscribe_stores_subscription(self, client: TestClient, store, make_browser):
        browser = make_browser()
        resp = client.post("/push/subscribe", json=_subscribe_body(browser))
        assert resp.status_code == 200
        assert resp.json()["ok"] is True

        saved = store.get(ENDPOINT)
        assert saved is not None
        assert saved.p256dh == browser.p256dh
        assert saved.auth == browser.auth

    def test_resubscribe_same_endpoint_does_not_duplicate(self, client: TestClient, store, make_browser):
        first, second = make_browser(), make_browser()
        client.post("/push/subscribe", json=_subscribe_body(first))
        resp = client.post("/push/subscribe", json=_subscribe_body(second))
        assert resp.status_code == 200

        rows = store.list_all()
        assert len(rows) == 1
        assert rows[0].p256dh == second.p256dh

    def test_missing_field_is_400(self, client: TestClient, make_browser):
        body = _subscribe_body(make_browser())
        del body["auth"]
        resp = client.post("/push/subscribe", json=body)
        assert resp.status_code == 400
        assert resp.json()["ok"] is False
        assert "auth" in resp.json()["error"]

    def test_invalid_json_is_400(self, client: TestClient):
        resp = client.post(
            "/push/subscribe",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400

    def test_non_url_endpoint_is_400(self, client: TestClient, store, make_browser):
        resp = client.post("/push/subscribe", json=_subscribe_body(make_browser(), endpoint="javascript:alert(1)"))
        assert resp.status_code == 400
        assert store.list_all() == []

    def test_control_character_in_endpoint_is_400(self, client: TestClient, store, make_browser):
        body = _subscribe_body(make_browser(), endpoint="https://fcm.googleapis.com/fcm/send/bad\x01x")
        resp = client.post("/push/subscribe", json=body)
        assert resp.status_code == 400
        assert "endpoint" in resp.json()["error"]
        assert store.list_all() == []

    def test_stray_character_in_key_is_400(self, client: TestClient, store, make_browser):
        body = _subscribe_body(make_browser())
        body["p256dh"] = body["p256dh"][:20] + "!" + body["p256dh"][20:]
        resp = client.post("/push/subscribe", json=body)
        assert resp.status_code == 400
        assert store.list_all() == []

    def test_bad_public_key_is_400(self, client: TestClient, store, make_browser):
        body = _subscribe_body(make_browser())
        body["p256dh"] = "bm90LWEta2V5"
        resp = client.post("/push/subscribe", json=body)
        assert resp.status_code == 400
        assert "p256dh" in resp.json()["error"]
        assert store.list_all() == []

    def test_bad_auth_secret_is_400(self, client: TestClient, make_browser):
        body = _subscribe_body(make_browser())
        body["auth"] = "c2hvcnQ"
        resp = client.post("/push/subscribe", json=body)
        assert resp.status_code == 400

    def test_welcome_push_sent_when_enabled(self, client: TestClient, push_service, make_browser, monkeypatch):
        monkeypatch.setattr(push_api.settings, "PUSH_SEND_WELCOME", True)
        resp = client.post("/push/subscribe", json=_subscribe_body(make_browser()))
        assert resp.status_code == 200
        assert len(push_service.sent_to(ENDPOINT)) == 1

    def test_no_welcome_push_by_default_in_tests(self, client: TestClient, push_service, make_browser):
        client.post("/push/subscribe", json=_subscribe_body(make_browser()))
        assert push_service.requests == []

    def test_store_failure_is_503(self, client: TestClient, store, make_browser, monkeypatch):
        def broken(subscription):
            raise StoreError("database is locked")

        monkeypatch.setattr(store, "put", broken)
        resp = client.post("/push/subscribe", json=_subscribe_body(make_browser()))
        assert resp.status_code == 503
        assert resp.json()["ok"] is False


class TestUnsubscribe:
    def test_unsubscribe_removes(self, client: TestClient, store, make_browser):
        client.post("/push/subscribe", json=_subscribe_body(make_browser()))
        resp = client.post("/push/unsubscribe", json={"endpoint": ENDPOINT})
        assert resp.status_code == 200
        assert resp.json()["ok"] is True
        assert store.list_all() == []

    def test_unsubscribe_unknown_endpoint_is_ok_and_changes_nothing(self, client: TestClient, store, make_browser):
        client.post("/push/subscribe", json=_subscribe_body(make_browser()))
        resp = client.post("/push/unsubscribe", json={"endpoint": "https://fcm.googleapis.com/fcm/send/other"})
        assert resp.status_code == 200
        assert resp.json()["ok"] is True
        assert [s.endpoint for s in store.list_all()] == [ENDPOINT]

    def test_unsubscribe_twice_is_ok(self, client: TestClient, make_browser):
        client.post("/push/subscribe", json=_subscribe_body(make_browser()))
        assert client.post("/push/unsubscribe", json={"endpoint": ENDPOINT}).status_code == 200
        assert client.post("/push/unsubscribe", json={"endpoint": ENDPOINT}).status_code == 200

    def test_blank_endpoint_is_400(self, client: TestClient):
        resp = client.post("/push/unsubscribe", json={"endpoint": "  "})
        assert resp.status_code == 400

    def test_missing_endpoint_is_400(self, client: TestClient):
        resp = client.post("/push/unsubscribe", json={})
        assert resp.status_code == 400


class TestTestSummary:
    def test_zero_subscriptions_is_ok(self, client: TestClient, push_service):
        resp = client.post("/push/test-summary")
        assert resp.status_code == 200
        assert resp.json()["ok"] is True
        assert push_service.requests == []

    def test_one_subscription_delivered(self, client: TestClient, store, push_service, make_browser):
        client.post("/push/subscribe", json=_subscribe_body(make_browser()))

        resp = client.post("/push/test-summary")

        assert resp.status_code == 200
        data = resp.json()
        assert data["ok"] is True
        assert data["delivered"] == 1
        rows = store.list_all()
        assert len(rows) == 1
        assert rows[0].last_success_at is not None

    def test_all_failed_is_not_ok(self, client: TestClient, push_service, make_browser):
        client.post("/push/subscribe", json=_subscribe_body(make_browser()))
        push_service.statuses[ENDPOINT] = 503

        data = client.post("/push/test-summary").json()

        assert data["ok"] is False
        assert data["transient"] == 1

    def test_gone_subscription_pruned(self, client: TestClient, store, push_service, make_browser):
        client.post("/push/subscribe", json=_subscribe_body(make_browser()))
        push_service.statuses[ENDPOINT] = 410

        data = client.post("/push/test-summary").json()

        assert data["pruned"] == 1
        assert store.list_all() == []

    def test_store_failure_is_503(self, client: TestClient, store, monkeypatch):
        def broken():
            raise StoreError("no such table")

        monkeypatch.setattr(store, "list_all", broken)
        resp = client.post("/push/test-summary")
        assert resp.status_code == 503

    def test_push_not_configured(self, client: TestClient, make_browser):
        client.post("/push/subscribe", json=_subscribe_body(make_browser()))
        app.dependency_overrides[get_coordinator] = lambda: None

        data = client.post("/push/test-summary").json()

        assert data["ok"] is False
        assert "not configured" in data["error"]


def test_vapid_public_key(client: TestClient, signer):
    resp = client.get("/push/vapid-public-key")
    assert resp.status_code == 200
    assert resp.json() == {"key": signer.public_key_b64}


def test_health(client: TestClient):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
