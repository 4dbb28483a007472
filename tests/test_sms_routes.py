"""
Tests for the outbound SMS, settings, health and metrics routes.
"""

from datetime import timedelta

from sms_confirm.main import app, get_provider_client
from sms_confirm.provider import JustCallClient

from conftest import AUTH_HEADERS, CUSTOMER, SENDER


def send(client, **overrides):
    body = {
        "contact_number": CUSTOMER,
        "body": "Hi [customer_name]",
        "templateData": {"customer_name": "Ola"},
        "justcall_number": SENDER,
    }
    body.update(overrides)
    return client.post("/api/sms/send", json=body, headers=AUTH_HEADERS)


class TestSendRoute:
    """POST /api/sms/send"""

    def test_requires_token(self, client):
        response = client.post("/api/sms/send", json={"contact_number": CUSTOMER, "body": "Hi"})
        assert response.status_code == 401

    def test_wrong_token(self, client):
        response = client.post(
            "/api/sms/send",
            json={"contact_number": CUSTOMER, "body": "Hi"},
            headers={"Authorization": "Bearer nope"},
        )
        assert response.status_code == 401

    def test_send_and_fetch_record(self, client):
        response = send(client)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["message_id"] == "1001"
        assert data["recorded"] is True
        assert data["rendered_body"] == "Hi Ola"

        record = client.get(f"/api/sms/records/{data['record_id']}", headers=AUTH_HEADERS)
        assert record.status_code == 200
        assert record.json()["rendered_body"] == "Hi Ola"
        assert record.json()["confirmation_state"] == "sent"
        assert record.json()["recipient_address"] == CUSTOMER

    def test_no_sender_configured(self, client, justcall):
        response = send(client, justcall_number=None)
        assert response.status_code == 400
        assert response.json() == {"detail": "sender number required"}
        assert justcall.requests == []

    def test_uses_global_sender_setting(self, client, justcall):
        put = client.put("/api/sms-settings", json={"senderNumber": "+4733333333"}, headers=AUTH_HEADERS)
        assert put.status_code == 200
        assert put.json() == {"senderNumber": "+4733333333"}

        response = send(client, justcall_number=None)

        assert response.status_code == 200
        record = client.get(f"/api/sms/records/{response.json()['record_id']}", headers=AUTH_HEADERS)
        assert record.json()["sender_address"] == "+4733333333"

    def test_invalid_contact_number(self, client):
        response = send(client, contact_number="99999999")
        assert response.status_code == 422

    def test_body_too_long(self, client):
        response = send(client, body="x" * 1601)
        assert response.status_code == 422

    def test_provider_error(self, client, justcall):
        justcall.status_code = 500
        justcall.payload = {"error": "upstream down"}
        response = send(client)
        assert response.status_code == 502

    def test_provider_client_error_passes_through(self, client, justcall):
        justcall.status_code = 422
        justcall.payload = {"message": "Invalid contact number"}
        response = send(client)
        assert response.status_code == 422
        assert response.json() == {"detail": "Invalid contact number"}

    def test_provider_missing_id(self, client, justcall):
        justcall.payload = {"status": "success"}
        response = send(client)
        assert response.status_code == 502

    def test_provider_timeout(self, client, justcall):
        justcall.timeout = True
        response = send(client)
        assert response.status_code == 504

    def test_credentials_not_configured(self, client):
        app.dependency_overrides[get_provider_client] = lambda: JustCallClient(
            "https://api.justcall.test/v2.1", api_key=None, api_secret=None
        )
        response = send(client)
        assert response.status_code == 503


class TestRecordsRoutes:
    """GET /api/sms/records"""

    def test_list_newest_first(self, client, make_outbound):
        older = make_outbound(ago=timedelta(days=1))
        newer = make_outbound(ago=timedelta(hours=1))

        response = client.get("/api/sms/records", headers=AUTH_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert [r["id"] for r in data["data"]] == [newer.id, older.id]

    def test_filter_confirmed(self, client, make_outbound):
        make_outbound(ago=timedelta(hours=3))
        confirmed = make_outbound(ago=timedelta(hours=1))
        client.post("/api/webhook/justcall-sms", json={
            "id": "r1",
            "contact_number": CUSTOMER,
            "body": "OK",
            "direction": "inbound",
        })

        only_confirmed = client.get("/api/sms/records?confirmed=true", headers=AUTH_HEADERS).json()
        only_open = client.get("/api/sms/records?confirmed=false", headers=AUTH_HEADERS).json()

        assert [r["id"] for r in only_confirmed["data"]] == [confirmed.id]
        assert only_open["total"] == 1

    def test_record_not_found(self, client):
        response = client.get("/api/sms/records/missing", headers=AUTH_HEADERS)
        assert response.status_code == 404

    def test_status_lookup(self, client, justcall):
        justcall.payload = {"data": {"id": 1001, "delivery_status": "delivered"}}
        response = client.get("/api/sms/status/1001", headers=AUTH_HEADERS)
        assert response.status_code == 200
        assert response.json()["data"]["data"]["delivery_status"] == "delivered"

    def test_history(self, client, justcall):
        justcall.payload = {"data": [{"id": 1001, "body": "Hi Ola"}]}

        response = client.get(
            "/api/sms/history?limit=10&offset=5&start_date=2025-01-01&from=%2B4722222222",
            headers=AUTH_HEADERS,
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "data": [{"id": 1001, "body": "Hi Ola"}],
            "pagination": {"limit": 10, "offset": 5},
        }
        params = dict(justcall.requests[0].url.params)
        assert params == {"limit": "10", "offset": "5", "start_date": "2025-01-01", "from": "+4722222222"}

    def test_history_requires_token(self, client):
        assert client.get("/api/sms/history").status_code == 401

    def test_history_provider_error(self, client, justcall):
        justcall.status_code = 500
        justcall.payload = {"error": "upstream down"}
        response = client.get("/api/sms/history", headers=AUTH_HEADERS)
        assert response.status_code == 502


class TestSettingsRoutes:

    def test_empty_settings(self, client):
        response = client.get("/api/sms-settings", headers=AUTH_HEADERS)
        assert response.json() == {"senderNumber": ""}

    def test_invalid_sender_number(self, client):
        response = client.put("/api/sms-settings", json={"senderNumber": "12345"}, headers=AUTH_HEADERS)
        assert response.status_code == 422


class TestHealthAndMetrics:

    def test_live(self, client):
        assert client.get("/health/live").json() == {"status": "ok", "reason": None}

    def test_ready(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_metrics(self, client):
        send(client)
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "sms_send_total" in response.text
        assert "webhook_requests_total" in response.text
