import logging
import threading
from typing import Any, Callable, Optional

from wa_relay.config import Settings
from wa_relay.credentials import CredentialStore
from wa_relay.directory import ContactDirectory
from wa_relay.errors import NotConfiguredError, UpstreamError, ValidationError
from wa_relay.ledger import MessageLedger
from wa_relay.metrics import record_outbound_message
from wa_relay.models import ContactSummary, MessageRecord
from wa_relay.provider import MessageSender, WhatsAppCloudClient
from wa_relay.reconcile import ReconcileReport, ReconciliationEngine
from wa_relay.utils import now_ms

logger = logging.getLogger(__name__)


class RelayService:
    """
    Owns all relay state: credentials, ledger, directory and the
    reconciliation engine. One instance per application; request handlers
    reach it through app.state.

    A single lock guards the ledger and directory together.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        sender: Optional[MessageSender] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.credentials = credentials
        self.sender = sender or WhatsAppCloudClient(credentials)
        self.lock = threading.Lock()
        self.ledger = MessageLedger(clock=clock)
        self.directory = ContactDirectory()
        self.engine = ReconciliationEngine(self.ledger, self.directory, self.lock, clock=clock)

    @classmethod
    def from_settings(cls, settings: Settings, sender: Optional[MessageSender] = None) -> "RelayService":
        credentials = CredentialStore(
            verify_token=settings.WEBHOOK_VERIFY_TOKEN,
            phone_number_id=settings.WHATSAPP_PHONE_NUMBER_ID,
            access_token=settings.WHATSAPP_ACCESS_TOKEN,
        )
        if sender is None:
            sender = WhatsAppCloudClient(
                credentials,
                base_url=settings.GRAPH_API_BASE_URL,
                api_version=settings.GRAPH_API_VERSION,
                timeout=settings.SEND_TIMEOUT_SECONDS,
            )
        return cls(credentials, sender=sender)

    async def send_message(self, to: Optional[str], text: Optional[str]) -> MessageRecord:
        """
        Forward a text message to the provider and record it.

        Nothing is recorded when the provider call fails.

        Raises:
            NotConfiguredError: credentials have not been set
            ValidationError: recipient or message text missing
            UpstreamError: provider call failed or timed out
        """
        if not self.credentials.configured:
            record_outbound_message("not_configured")
            raise NotConfiguredError("WhatsApp API not configured")
        if not to or not text:
            raise ValidationError("Missing to or message")

        logger.info(f"Sending message to {to}")
        try:
            provider_message_id = await self.sender.send(to, text)
        except UpstreamError:
            record_outbound_message("failed")
            raise

        if not isinstance(provider_message_id, str) or not provider_message_id:
            record_outbound_message("failed")
            raise UpstreamError(
                "Failed to send message",
                details=f"Provider returned no message id: {provider_message_id!r}",
            )

        with self.lock:
            record = self.ledger.append_sent(to, text, provider_message_id)
            self.directory.upsert_from_send(to, text, record.timestamp)

        record_outbound_message("sent")
        logger.info(f"Message sent successfully: {provider_message_id}")
        return record

    def handle_webhook(self, payload: Any) -> ReconcileReport:
        return self.engine.apply(payload)

    def messages_for(self, number: str) -> list[MessageRecord]:
        with self.lock:
            return self.ledger.list_for(number)

    def contacts(self) -> list[ContactSummary]:
        with self.lock:
            return self.directory.list()

    def mark_read(self, number: str) -> None:
        with self.lock:
            self.directory.mark_read(number)

    def rename_contact(self, number: str, name: Optional[str]) -> ContactSummary:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Missing name")
        with self.lock:
            return self.directory.rename(number, name)
