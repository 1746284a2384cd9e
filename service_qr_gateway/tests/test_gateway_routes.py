"""
Route-level tests for the QR gateway service.
"""

import pytest
from fastapi.testclient import TestClient

from service_qr_gateway.app.main import QRGatewayService, create_app
from shared.config import ConfigurationError
from shared.errors import UpstreamServiceError
from shared.test_helpers import (
    TEST_QR_TOKEN,
    FakeClock,
    FakeSessionStore,
    RecordingNotifier,
    make_test_config,
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return FakeSessionStore(clock)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def config():
    return make_test_config()


@pytest.fixture
def client(config, store, notifier, clock):
    app = create_app(config, session_store=store, notifier=notifier, clock=clock)
    with TestClient(app) as test_client:
        yield test_client


def _open_session(client):
    response = client.post("/validate", json={"qrToken": TEST_QR_TOKEN})
    assert response.status_code == 200
    data = response.json()
    return data["session"], {"x-session-token": data["token"]}


def _create_request(client, headers, session_id, request_type="housekeeping"):
    response = client.post(
        "/request",
        json={"sessionId": session_id, "requestType": request_type, "requestData": {"notes": "Towels"}},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()


class TestServiceConstruction:
    """Test cases for startup configuration checks."""

    def test_production_refuses_default_secret(self, store):
        config = make_test_config(
            env="production",
            session_token_secret="dev-only-session-secret-change-me",
            store_url="https://store.example.com",
            store_service_key="key",
        )

        with pytest.raises(ConfigurationError):
            QRGatewayService(config, session_store=store)

    def test_production_accepts_explicit_secret(self, store):
        config = make_test_config(
            env="production",
            store_url="https://store.example.com",
            store_service_key="key",
        )

        service = QRGatewayService(config, session_store=store)

        assert service.app.state.gateway_service is service


class TestValidateRoute:
    """Test cases for POST /validate."""

    def test_issues_session_and_token(self, client, store):
        response = client.post("/validate", json={
            "qrToken": TEST_QR_TOKEN,
            "deviceInfo": {"userAgent": "<Mobile>", "fingerprint": "drop-me"},
        })

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["session"]["sessionId"] == "sess-abcdef"
        assert data["session"]["hotelName"] == "Harbour View Hotel"
        assert len(data["token"].split(".")) == 3
        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.headers["X-RateLimit-Remaining"] == "9"
        assert store.calls == ["validate_and_create_session"]

    def test_unknown_qr_token(self, client):
        response = client.post("/validate", json={"qrToken": "zzzzzzzzzzzz"})

        assert response.status_code == 404
        assert response.json() == {"error": "Invalid or expired QR code"}

    def test_already_expired_session_rejected(self, client, store, clock):
        store.valid_tokens[TEST_QR_TOKEN]["expires_at"] = "2001-01-01T00:00:00+00:00"

        response = client.post("/validate", json={"qrToken": TEST_QR_TOKEN})

        assert response.status_code == 404

    def test_schema_violation(self, client, store):
        response = client.post("/validate", json={"qrToken": "bad token!"})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Validation failed"
        assert body["details"][0].startswith("qrToken")
        assert store.calls == []

    def test_invalid_json(self, client):
        response = client.post("/validate", content=b"{not json", headers={"content-type": "application/json"})

        assert response.status_code == 400
        assert response.json()["details"] == ["body: must be valid JSON"]

    def test_store_failure_is_opaque(self, client, store):
        store.fail_with = UpstreamServiceError("session_store", "connection refused to 10.0.0.5")

        response = client.post("/validate", json={"qrToken": TEST_QR_TOKEN})

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}

    def test_unexpected_error_is_opaque(self, client, store):
        store.fail_with = RuntimeError("boom")

        response = client.post("/validate", json={"qrToken": TEST_QR_TOKEN})

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}


class TestRequestRoutes:
    """Test cases for request creation routes."""

    def test_create_request_without_token(self, client, store):
        data = _create_request(client, {}, "sess-abcdef")

        assert data["success"] is True
        assert data["trackingNumber"] == "QR-00001"
        assert data["requestId"] in store.requests
        assert data["createdAt"]

    def test_create_request_sanitizes_request_data(self, client, store):
        session, headers = _open_session(client)

        response = client.post("/request", headers=headers, json={
            "sessionId": session["sessionId"],
            "requestType": "room_service",
            "requestData": {"items": [{"name": "<b>Soup</b>", "quantity": 1}], "isAdmin": True},
            "priority": "urgent",
        })

        assert response.status_code == 201
        stored = store.requests[response.json()["requestId"]]
        assert stored["request_data"] == {"items": [{"name": "bSoup/b", "quantity": 1}]}
        assert stored["priority"] == "urgent"

    def test_invalid_token_rejected_before_store(self, client, store):
        response = client.post("/request", headers={"x-session-token": "a.b.c"}, json={
            "sessionId": "sess-abcdef",
            "requestType": "housekeeping",
            "requestData": {},
        })

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid or expired session token"}
        assert "create_request" not in store.calls

    def test_token_must_match_body_session(self, client):
        _, headers = _open_session(client)

        response = client.post("/request", headers=headers, json={
            "sessionId": "sess-other",
            "requestType": "housekeeping",
            "requestData": {},
        })

        assert response.status_code == 401

    def test_token_required_when_configured(self, store, clock):
        app = create_app(make_test_config(require_session_token_for_requests=True), session_store=store, clock=clock)

        with TestClient(app) as client:
            response = client.post("/request", json={
                "sessionId": "sess-abcdef",
                "requestType": "housekeeping",
                "requestData": {},
            })

        assert response.status_code == 401

    def test_service_shortcut_uses_token_session(self, client, store):
        session, headers = _open_session(client)

        response = client.post("/request/wifi-request", headers=headers, json={"requestData": {"deviceType": "laptop"}})

        assert response.status_code == 201
        stored = store.requests[response.json()["requestId"]]
        assert stored["request_type"] == "wifi_support"
        assert stored["session_id"] == session["sessionId"]

    def test_service_shortcut_needs_a_session(self, client):
        response = client.post("/request/housekeeping", json={"requestData": {}})

        assert response.status_code == 400
        assert response.json()["details"] == ["sessionId: Field required"]

    def test_unknown_service_shortcut(self, client):
        response = client.post("/request/spa", json={"sessionId": "sess-abcdef"})

        assert response.status_code == 404

    def test_notification_failure_does_not_fail_request(self, store, clock):
        app = create_app(make_test_config(), session_store=store, notifier=RecordingNotifier(fail=True), clock=clock)

        with TestClient(app) as client:
            response = client.post("/request", json={
                "sessionId": "sess-abcdef",
                "requestType": "maintenance",
                "requestData": {"issueType": "leak"},
            })

        assert response.status_code == 201

    def test_staff_notified_with_department(self, store, notifier, clock):
        app = create_app(make_test_config(), session_store=store, notifier=notifier, clock=clock)

        with TestClient(app) as client:
            session, headers = _open_session(client)
            _create_request(client, headers, session["sessionId"], request_type="maintenance")

        # Shutdown drains in-flight deliveries.
        assert notifier.notifications[0]["department"] == "Maintenance"
        assert notifier.notifications[0]["tenant_id"] == "tenant-1"

    def test_add_message(self, client, store):
        session, headers = _open_session(client)
        created = _create_request(client, headers, session["sessionId"])

        response = client.post(
            f"/request/{created['requestId']}/messages",
            headers=headers,
            json={"message": "Please knock <loudly>", "payload": {"replyTo": "m-1", "html": "x"}},
        )

        assert response.status_code == 201
        assert response.json()["requestId"] == created["requestId"]
        assert store.messages[0]["message"] == "Please knock loudly"
        assert store.messages[0]["payload"] == {"replyTo": "m-1"}

    def test_add_message_to_unknown_request(self, client):
        _, headers = _open_session(client)

        response = client.post("/request/req-missing/messages", headers=headers, json={"message": "Hi"})

        assert response.status_code == 404


class TestPaymentRoute:
    """Test cases for POST /payment/charge."""

    def test_payment_submitted_for_verification(self, client, store):
        _, headers = _open_session(client)

        response = client.post("/payment/charge", headers=headers, json={
            "amount": 35.5,
            "paymentMethod": "card",
            "reference": "<REF-1>",
        })

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "pending"
        assert data["isVerified"] is False
        assert data["message"] == "Payment submitted for verification"
        assert store.payments[0]["tenant_id"] == "tenant-1"
        assert store.payments[0]["reference"] == "REF-1"

    def test_payment_requires_token(self, client, store):
        response = client.post("/payment/charge", json={"amount": 10, "paymentMethod": "cash"})

        assert response.status_code == 401
        assert store.payments == []

    def test_payment_rate_limited(self, store, clock):
        app = create_app(make_test_config(rate_limit_payment_requests=2), session_store=store, clock=clock)

        with TestClient(app) as client:
            _, headers = _open_session(client)
            statuses = [
                client.post("/payment/charge", headers=headers, json={"amount": 1, "paymentMethod": "cash"})
                for _ in range(3)
            ]

        assert [r.status_code for r in statuses] == [201, 201, 429]
        assert statuses[-1].headers["Retry-After"] == "60"
        assert statuses[-1].json()["error"] == "Rate limit exceeded"
        assert statuses[-1].json()["resetAt"].endswith("Z")


class TestReadRoutes:
    """Test cases for the read-only routes."""

    def test_get_request(self, client):
        session, headers = _open_session(client)
        created = _create_request(client, headers, session["sessionId"])

        response = client.get(f"/request/{created['requestId']}", headers=headers)

        assert response.status_code == 200
        assert response.json()["tracking_number"] == created["trackingNumber"]

    def test_other_tenants_request_is_not_found(self, client, store):
        session, headers = _open_session(client)
        created = _create_request(client, headers, session["sessionId"])
        store.requests[created["requestId"]]["tenant_id"] = "tenant-2"

        response = client.get(f"/request/{created['requestId']}", headers=headers)

        assert response.status_code == 404

    def test_reads_require_token(self, client):
        assert client.get("/request/req-1").status_code == 401

    def test_session_requests_scoped_to_token(self, client):
        session, headers = _open_session(client)
        _create_request(client, headers, session["sessionId"])

        own = client.get(f"/session/{session['sessionId']}/requests", headers=headers)
        other = client.get("/session/sess-other/requests", headers=headers)

        assert own.status_code == 200
        assert len(own.json()["requests"]) == 1
        assert other.status_code == 404

    def test_qr_analytics(self, client):
        session, headers = _open_session(client)

        response = client.get(f"/analytics/qr/{session['qrCodeId']}", headers=headers)

        assert response.status_code == 200
        assert response.json()["scan_count"] == 12
        assert client.get("/analytics/qr/qr-999", headers=headers).status_code == 404


class TestCommonBehaviour:
    """Test cases for headers, preflight and unmatched routes."""

    def test_security_and_cors_headers(self, client):
        response = client.post("/validate", json={"qrToken": "zzzzzzzzzzzz"})

        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert "x-session-token" in response.headers["Access-Control-Allow-Headers"]
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "X-Request-ID" in response.headers

    def test_preflight(self, client, store):
        response = client.options("/payment/charge")

        assert response.status_code == 200
        assert response.content == b""
        assert response.headers["Access-Control-Allow-Methods"] == "GET, POST, OPTIONS"
        assert store.calls == []

    @pytest.mark.parametrize("method, path", [
        ("get", "/nowhere"),
        ("get", "/validate"),
        ("delete", "/request/req-1"),
    ])
    def test_unmatched_routes_are_not_found(self, client, method, path):
        response = getattr(client, method)(path)

        assert response.status_code == 404
        assert response.json() == {"error": "Not found"}
        assert response.headers["X-Frame-Options"] == "DENY"

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "qr-gateway"
        assert data["dependencies"]["session_store"] == "ok"
        assert data["dependencies"]["notifier"] == "configured"

    def test_metrics(self, client):
        client.post("/validate", json={"qrToken": TEST_QR_TOKEN})

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text
        assert 'endpoint="/validate"' in response.text
