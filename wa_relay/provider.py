"""
Outbound client for the WhatsApp Cloud API.

The relay only depends on the MessageSender protocol, so tests can swap
the network client for an in-memory fake.
"""

import logging
from typing import Optional, Protocol

import httpx

from wa_relay.credentials import CredentialStore
from wa_relay.errors import NotConfiguredError, UpstreamError

logger = logging.getLogger(__name__)


class MessageSender(Protocol):
    async def send(self, to: str, text: str) -> str:
        """Send a text message and return the provider-assigned message id."""
        ...


class WhatsAppCloudClient:
    """
    Sends text messages via
    POST {base_url}/{api_version}/{phone_number_id}/messages

    Credentials are read from the shared CredentialStore on every call so
    runtime updates from the dashboard take effect immediately.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        base_url: str = "https://graph.facebook.com",
        api_version: str = "v18.0",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.timeout = timeout
        self._transport = transport

    def messages_url(self) -> str:
        return f"{self.base_url}/{self.api_version}/{self.credentials.phone_number_id}/messages"

    async def send(self, to: str, text: str) -> str:
        if not self.credentials.configured:
            raise NotConfiguredError("WhatsApp API not configured")

        headers = {
            "Authorization": f"Bearer {self.credentials.access_token}",
            "Content-Type": "application/json",
        }
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": text},
        }

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                r = await client.post(self.messages_url(), headers=headers, json=payload)
            except httpx.TimeoutException:
                logger.error(f"Cloud API request timed out after {self.timeout}s")
                raise UpstreamError(
                    "Failed to send message",
                    details=f"Request timed out after {self.timeout} seconds",
                )
            except httpx.RequestError as e:
                logger.exception("Cloud API request failed")
                raise UpstreamError("Failed to send message", details=str(e))

        try:
            data = r.json()
        except ValueError:
            data = {"raw": r.text}

        if r.status_code >= 400:
            logger.error(f"Cloud API error {r.status_code}: {data}")
            raise UpstreamError("Failed to send message", details=data)

        # Typical success returns: {"messages":[{"id":"wamid.HBgM..."}]}
        try:
            message_id = data["messages"][0]["id"]
        except (KeyError, IndexError, TypeError):
            message_id = None

        if not isinstance(message_id, str) or not message_id:
            logger.error(f"Cloud API response carries no message id: {data}")
            raise UpstreamError("Failed to send message", details=data)

        logger.info(f"Cloud API accepted message: {message_id}")
        return message_id
