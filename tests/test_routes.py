import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.services.email import EmailSendError
from app.services.otp import get_otp_service


@pytest.fixture
def client(service):
    app.dependency_overrides[get_otp_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_generate_then_validate_once(client, notifier):
    response = client.post(
        "/api/otp/generate", json={"identity": "a@x.com", "purpose": "signup"}
    )
    assert response.status_code == 200
    assert response.json() == {"message": "OTP sent", "expires_in_seconds": 300}
    assert "042391" in notifier.sent[0][2]

    payload = {"identity": "a@x.com", "purpose": "signup", "code": "042391"}
    first = client.post("/api/otp/validate", json=payload)
    assert first.status_code == 200
    assert first.json() == {"message": "OTP verified", "valid": True}

    second = client.post("/api/otp/validate", json=payload)
    assert second.status_code == 400
    assert second.json()["detail"] == "Invalid or expired OTP"


def test_delivery_failure_maps_to_bad_gateway(client, notifier):
    notifier.fail_with = EmailSendError("Failed to send OTP email")

    response = client.post(
        "/api/otp/generate", json={"identity": "a@x.com", "purpose": "signup"}
    )

    assert response.status_code == 502
    assert response.json()["detail"] == "Failed to send OTP email"


def test_delete_removes_pending_code(client, store):
    client.post("/api/otp/generate", json={"identity": "a@x.com", "purpose": "reset"})

    response = client.delete(
        "/api/otp", params={"identity": "a@x.com", "purpose": "reset"}
    )

    assert response.status_code == 200
    assert response.json() == {"message": "OTP deleted"}
    assert store.find_by_identity_and_purpose("a@x.com", "reset") is None


def test_rejects_malformed_generate_request(client):
    response = client.post("/api/otp/generate", json={"identity": "a", "purpose": ""})

    assert response.status_code == 422


@pytest.mark.parametrize(
    "identity",
    [
        "victim@x.com\r\nBcc: attacker@evil.com",
        "victim@x.com\nSubject: hi",
        "not-an-address",
        "a@x.com, b@y.com",
    ],
)
def test_generate_rejects_header_breaking_identity(client, notifier, identity):
    response = client.post(
        "/api/otp/generate", json={"identity": identity, "purpose": "signup"}
    )

    assert response.status_code == 422
    assert notifier.sent == []


def test_validate_rejects_header_breaking_identity(client):
    response = client.post(
        "/api/otp/validate",
        json={
            "identity": "a@x.com\r\nBcc: b@y.com",
            "purpose": "signup",
            "code": "042391",
        },
    )

    assert response.status_code == 422


def test_delete_rejects_header_breaking_identity(client):
    response = client.delete(
        "/api/otp", params={"identity": "a@x.com\r\nBcc: b@y.com", "purpose": "reset"}
    )

    assert response.status_code == 422
