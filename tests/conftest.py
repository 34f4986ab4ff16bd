"""
Pytest configuration and shared fixtures.

Every test gets its own application and relay service, so ledger and
directory state never leaks between tests. The provider client is replaced
by an in-memory fake.
"""

import pytest
from fastapi.testclient import TestClient

# Clear settings cache before any app imports to ensure test env vars are used
from wa_relay.config import Settings, get_settings
get_settings.cache_clear()

from wa_relay.errors import UpstreamError
from wa_relay.main import create_app


TEST_VERIFY_TOKEN = "test-verify-token"


class FakeSender:
    """In-memory stand-in for the Cloud API client."""

    def __init__(self):
        self.sent = []
        self.error = None

    async def send(self, to: str, text: str) -> str:
        if self.error is not None:
            raise self.error
        self.sent.append((to, text))
        return f"wamid.out{len(self.sent)}"

    def fail_with(self, details):
        self.error = UpstreamError("Failed to send message", details=details)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        LOG_LEVEL="INFO",
        WEBHOOK_VERIFY_TOKEN=TEST_VERIFY_TOKEN,
        STATIC_DIR="",
    )


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def app(settings, sender):
    return create_app(settings=settings, sender=sender)


@pytest.fixture
def client(app):
    """Create test client with a fresh relay service for each test."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def configured_client(client):
    """Client whose relay already holds provider credentials."""
    response = client.post(
        "/api/config",
        json={"phoneNumberId": "123456789012", "accessToken": "EAAG-test-token"},
    )
    assert response.status_code == 200
    return client


def message_payload(
    sender: str,
    message_id: str,
    body: str = None,
    timestamp: str = "1700000000",
    profile_name: str = None,
) -> dict:
    """Build a provider webhook payload carrying one inbound message."""
    message = {"from": sender, "id": message_id, "timestamp": timestamp}
    if body is not None:
        message["type"] = "text"
        message["text"] = {"body": body}
    else:
        message["type"] = "image"
        message["image"] = {"id": "media-1", "mime_type": "image/jpeg"}

    value = {"messaging_product": "whatsapp", "messages": [message]}
    if profile_name is not None:
        value["contacts"] = [{"profile": {"name": profile_name}, "wa_id": sender}]

    return {
        "object": "whatsapp_business_account",
        "entry": [{"id": "WABA_ID", "changes": [{"field": "messages", "value": value}]}],
    }


def status_payload(*statuses) -> dict:
    """Build a provider webhook payload carrying (id, status) delivery updates."""
    value = {
        "messaging_product": "whatsapp",
        "statuses": [
            {"id": message_id, "status": status, "timestamp": "1700000100", "recipient_id": "15551234567"}
            for message_id, status in statuses
        ],
    }
    return {
        "object": "whatsapp_business_account",
        "entry": [{"id": "WABA_ID", "changes": [{"field": "messages", "value": value}]}],
    }
