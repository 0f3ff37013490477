"""Tests for the HTTP API."""

from identity_service.api.deps import get_reconciliation_service
from identity_service.main import app
from identity_service.settings import settings


class TestIdentifyEndpoint:
    """Tests for POST /identify."""

    async def test_new_contact(self, client):
        response = await client.post(
            "/identify", json={"email": "doc@zamazon.com", "phoneNumber": "1234567890"}
        )

        assert response.status_code == 200
        contact = response.json()["contact"]
        assert contact == {
            "primaryContactId": contact["primaryContactId"],
            "emails": ["doc@zamazon.com"],
            "phoneNumbers": ["1234567890"],
            "secondaryContactIds": [],
        }

    async def test_links_second_observation(self, client):
        first = await client.post(
            "/identify", json={"email": "lorraine@hillvalley.edu", "phoneNumber": "1234567890"}
        )
        second = await client.post(
            "/identify", json={"email": "mcfly@hillvalley.edu", "phoneNumber": "1234567890"}
        )

        contact = second.json()["contact"]
        assert contact["primaryContactId"] == first.json()["contact"]["primaryContactId"]
        assert contact["emails"] == ["lorraine@hillvalley.edu", "mcfly@hillvalley.edu"]
        assert len(contact["secondaryContactIds"]) == 1

    async def test_merges_two_primaries(self, client):
        george = await client.post("/identify", json={"email": "george@hillvalley.edu", "phoneNumber": "9191919191"})
        biff = await client.post("/identify", json={"email": "biffsucks@hillvalley.edu", "phoneNumber": "7177171717"})

        response = await client.post(
            "/identify", json={"email": "george@hillvalley.edu", "phoneNumber": "7177171717"}
        )

        contact = response.json()["contact"]
        assert contact["primaryContactId"] == george.json()["contact"]["primaryContactId"]
        assert contact["emails"] == ["george@hillvalley.edu", "biffsucks@hillvalley.edu"]
        assert contact["phoneNumbers"] == ["9191919191", "7177171717"]
        assert contact["secondaryContactIds"] == [biff.json()["contact"]["primaryContactId"]]

    async def test_integer_phone_number(self, client):
        response = await client.post("/identify", json={"phoneNumber": 1234567890})

        assert response.status_code == 200
        assert response.json()["contact"]["phoneNumbers"] == ["1234567890"]

    async def test_null_email(self, client):
        response = await client.post("/identify", json={"email": None, "phoneNumber": "1234567890"})

        assert response.status_code == 200
        assert response.json()["contact"]["emails"] == []

    async def test_invalid_phone_number(self, client):
        response = await client.post("/identify", json={"email": "a@x.com", "phoneNumber": "abc"})

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_PHONE_NUMBER"

    async def test_missing_contact_info(self, client):
        response = await client.post("/identify", json={"email": "", "phoneNumber": ""})

        assert response.status_code == 400
        assert response.json()["code"] == "MISSING_CONTACT_INFO"

    async def test_empty_body(self, client):
        response = await client.post("/identify", json={})

        assert response.status_code == 400
        assert response.json()["code"] == "MISSING_CONTACT_INFO"

    async def test_malformed_email(self, client):
        response = await client.post("/identify", json={"email": "not-an-email"})

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid email format", "code": "VALIDATION_ERROR"}

    async def test_wrong_field_type(self, client):
        response = await client.post("/identify", json={"phoneNumber": [1234567890]})

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid request format", "code": "VALIDATION_ERROR"}

    async def test_rate_limited(self, client, monkeypatch):
        monkeypatch.setattr(settings, "rate_limit_requests", 2)

        for _ in range(2):
            response = await client.post("/identify", json={"email": "a@x.com"})
            assert response.status_code == 200
        response = await client.post("/identify", json={"email": "a@x.com"})

        assert response.status_code == 429
        assert response.json()["code"] == "RATE_LIMIT_EXCEEDED"
        assert "Retry-After" in response.headers


class TestAdminStatus:
    """Tests for GET /admin/status."""

    async def test_empty_store(self, client):
        response = await client.get("/admin/status")

        assert response.status_code == 200
        data = response.json()
        assert data["database"] == "operational"
        assert data["contacts"] == 0
        assert data["lastUpdate"] is None

    async def test_counts_after_linking(self, client):
        await client.post("/identify", json={"email": "a@x.com", "phoneNumber": "1234567890"})
        await client.post("/identify", json={"email": "b@x.com", "phoneNumber": "1234567890"})

        data = (await client.get("/admin/status")).json()

        assert data["contacts"] == 2
        assert data["primaryContacts"] == 1
        assert data["secondaryContacts"] == 1
        assert data["lastUpdate"] is not None


class TestHealthAndRequestId:
    """Tests for health check and request correlation."""

    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "operational"
        assert response.json()["service"] == "contact-management"

    async def test_request_id_echoed(self, client):
        response = await client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"

    async def test_request_id_generated(self, client):
        response = await client.get("/health")

        assert response.headers["X-Request-ID"]


class TestErrorResponses:
    """Tests for JSON error bodies outside the routes' own handling."""

    async def test_unknown_path(self, client):
        response = await client.get("/contacts/42")

        assert response.status_code == 404
        assert response.json() == {"error": "Endpoint not found", "code": "NOT_FOUND"}

    async def test_unexpected_error_carries_request_id(self, client):
        class BrokenService:
            async def identify(self, email, phone):
                raise RuntimeError("boom")

        app.dependency_overrides[get_reconciliation_service] = lambda: BrokenService()

        response = await client.post(
            "/identify", json={"email": "a@x.com"}, headers={"X-Request-ID": "req-500"}
        )

        assert response.status_code == 500
        assert response.json() == {
            "error": "Internal server error",
            "code": "UNKNOWN_ERROR",
            "requestId": "req-500",
        }
        assert response.headers["X-Request-ID"] == "req-500"
