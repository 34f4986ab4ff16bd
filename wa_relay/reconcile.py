"""
Reconciliation of inbound webhook payloads.

A payload is a batch of batches:

    {"object": "whatsapp_business_account",
     "entry": [{"changes": [{"field": "messages",
                             "value": {"messages": [...],
                                       "statuses": [...],
                                       "contacts": [...]}}]}]}

Every event present is applied independently. A malformed event, change or
entry is skipped and counted; it never aborts the rest of the payload.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

from wa_relay.directory import ContactDirectory
from wa_relay.errors import WebhookParseError
from wa_relay.ledger import MessageLedger
from wa_relay.metrics import record_webhook_event
from wa_relay.models import MEDIA_PLACEHOLDER, DeliveryStatus
from wa_relay.utils import now_ms

logger = logging.getLogger(__name__)

BUSINESS_ACCOUNT_OBJECT = "whatsapp_business_account"
MESSAGES_FIELD = "messages"

# Provider status strings that map onto a delivery status
PROVIDER_STATUSES = {
    "sent": DeliveryStatus.SENT,
    "delivered": DeliveryStatus.DELIVERED,
    "read": DeliveryStatus.READ,
    "failed": DeliveryStatus.FAILED,
}


@dataclass
class ReconcileReport:
    """Counters describing what one payload did to the ledger and directory."""
    messages: int = 0
    statuses: int = 0
    unmatched: int = 0
    duplicates: int = 0
    skipped: int = 0
    ignored: bool = False

    def as_log_data(self) -> dict:
        return {
            "messages": self.messages,
            "statuses": self.statuses,
            "unmatched": self.unmatched,
            "duplicates": self.duplicates,
            "skipped": self.skipped,
        }


def _as_list(value: Any) -> list:
    """Optional batch containers: absent means empty, wrong type means nothing usable."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return []


class ReconciliationEngine:
    """
    Applies webhook events to the ledger and directory.

    A new message is written to the ledger and the directory under one lock
    acquisition so readers never see one without the other.
    """

    def __init__(
        self,
        ledger: MessageLedger,
        directory: ContactDirectory,
        lock: threading.Lock,
        clock: Callable[[], int] = now_ms,
    ):
        self.ledger = ledger
        self.directory = directory
        self.lock = lock
        self._clock = clock

    def apply(self, payload: Any) -> ReconcileReport:
        """
        Apply every event in a webhook payload.

        Raises:
            WebhookParseError: the payload is not an object or has no entry list
        """
        if not isinstance(payload, dict):
            raise WebhookParseError("Webhook payload must be a JSON object")

        report = ReconcileReport()
        if payload.get("object") != BUSINESS_ACCOUNT_OBJECT:
            logger.info(f"Ignoring webhook for object type: {payload.get('object')}")
            report.ignored = True
            return report

        entries = payload.get("entry")
        if not isinstance(entries, list):
            raise WebhookParseError("Webhook payload has no entry list")

        for entry in entries:
            changes = entry.get("changes") if isinstance(entry, dict) else None
            if not isinstance(changes, list):
                logger.warning("Skipping webhook entry without a changes list")
                report.skipped += 1
                continue
            for change in changes:
                self._apply_change(change, report)

        logger.info(
            f"Webhook reconciled: {report.as_log_data()}",
            extra={"ledger_size": self.ledger.count()},
        )
        return report

    def _apply_change(self, change: Any, report: ReconcileReport) -> None:
        if not isinstance(change, dict) or not isinstance(change.get("value"), dict):
            logger.warning("Skipping malformed webhook change")
            report.skipped += 1
            return
        if change.get("field") != MESSAGES_FIELD:
            logger.debug(f"Ignoring webhook change field: {change.get('field')}")
            return

        value = change["value"]
        profile_names = self._profile_names(value)

        # Messages before statuses so a status for a message in the same
        # batch still finds its record.
        for message in _as_list(value.get("messages")):
            self._apply_message(message, profile_names, report)
        for status in _as_list(value.get("statuses")):
            self._apply_status(status, report)

    def _profile_names(self, value: dict) -> dict[str, str]:
        names = {}
        for contact in _as_list(value.get("contacts")):
            if not isinstance(contact, dict):
                continue
            profile = contact.get("profile")
            wa_id = contact.get("wa_id")
            if isinstance(profile, dict) and wa_id and profile.get("name"):
                names[str(wa_id)] = str(profile["name"])
        return names

    def _apply_status(self, event: Any, report: ReconcileReport) -> None:
        if not isinstance(event, dict):
            self._skip(report, "status", "event is not an object")
            return
        message_id = event.get("id")
        new_status = PROVIDER_STATUSES.get(event.get("status"))
        if not message_id or new_status is None:
            self._skip(report, "status", f"id={message_id!r} status={event.get('status')!r}")
            return

        with self.lock:
            record = self.ledger.update_status(str(message_id), new_status)

        if record is None:
            report.unmatched += 1
            record_webhook_event("status", "unmatched")
            return
        report.statuses += 1
        record_webhook_event("status", "applied")
        logger.info(f"Delivery status updated: id={message_id}, status={new_status.value}")

    def _apply_message(
        self, event: Any, profile_names: dict[str, str], report: ReconcileReport
    ) -> None:
        if not isinstance(event, dict):
            self._skip(report, "message", "event is not an object")
            return
        sender = event.get("from")
        message_id = event.get("id")
        if not sender or not message_id:
            self._skip(report, "message", f"from={sender!r} id={message_id!r}")
            return
        sender = str(sender)
        message_id = str(message_id)

        timestamp_seconds = self._timestamp_seconds(event.get("timestamp"))
        if timestamp_seconds is None:
            self._skip(report, "message", f"timestamp={event.get('timestamp')!r}")
            return

        text = self._message_text(event)
        profile_name: Optional[str] = profile_names.get(sender)

        with self.lock:
            if self.ledger.contains(message_id):
                duplicate = True
            else:
                duplicate = False
                record = self.ledger.append_received(sender, text, timestamp_seconds, message_id)
                self.directory.upsert_from_receive(sender, text, record.timestamp, profile_name)

        if duplicate:
            logger.info(f"Duplicate inbound message ignored: {message_id}")
            report.duplicates += 1
            record_webhook_event("message", "duplicate")
            return
        report.messages += 1
        record_webhook_event("message", "created")
        logger.info(f"Received message from {sender}: id={message_id}")

    def _timestamp_seconds(self, raw: Any) -> Optional[int]:
        if raw is None or raw == "":
            return self._clock() // 1000
        try:
            return int(raw)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _message_text(event: dict) -> str:
        text = event.get("text")
        if isinstance(text, dict) and text.get("body"):
            return str(text["body"])
        return MEDIA_PLACEHOLDER

    @staticmethod
    def _skip(report: ReconcileReport, kind: str, reason: str) -> None:
        logger.warning(f"Skipping malformed {kind} event: {reason}")
        report.skipped += 1
        record_webhook_event(kind, "skipped")
