import logging
from typing import Optional

from wa_relay.models import ContactSummary

logger = logging.getLogger(__name__)


class ContactDirectory:
    """
    One ContactSummary per phone number.

    Summaries are created by the first message for a number or by an
    explicit rename, and are never deleted. Dict insertion order is the
    creation order used to break ties when listing.
    """

    def __init__(self):
        self._contacts: dict[str, ContactSummary] = {}

    def get(self, number: str) -> Optional[ContactSummary]:
        return self._contacts.get(number)

    def upsert_from_send(self, number: str, text: str, timestamp: int) -> ContactSummary:
        contact = self._contacts.get(number)
        if contact is None:
            contact = ContactSummary(number=number, display_name=number)
            self._contacts[number] = contact
            logger.debug(f"Contact created from send: {number}")
        contact.last_message_text = text
        contact.last_message_time = timestamp
        return contact

    def upsert_from_receive(
        self,
        number: str,
        text: str,
        timestamp: int,
        profile_name: Optional[str] = None,
    ) -> ContactSummary:
        """
        Update a summary for an inbound message.

        The provider profile name only names a contact at creation time;
        later messages never overwrite a known contact's display name.
        """
        contact = self._contacts.get(number)
        if contact is None:
            contact = ContactSummary(number=number, display_name=profile_name or number)
            self._contacts[number] = contact
            logger.debug(f"Contact created from inbound message: {number}")
        contact.last_message_text = text
        contact.last_message_time = timestamp
        contact.unread_count += 1
        return contact

    def mark_read(self, number: str) -> None:
        contact = self._contacts.get(number)
        if contact is not None:
            contact.unread_count = 0

    def rename(self, number: str, name: str) -> ContactSummary:
        # Renaming an unknown number registers it with no history
        contact = self._contacts.get(number)
        if contact is None:
            contact = ContactSummary(number=number, display_name=name)
            self._contacts[number] = contact
            logger.debug(f"Contact registered by rename: {number}")
        else:
            contact.display_name = name
        return contact

    def list(self) -> list[ContactSummary]:
        """Summaries by most recent activity first; contacts without messages last."""
        return sorted(
            self._contacts.values(),
            key=lambda c: c.last_message_time if c.last_message_time is not None else -1,
            reverse=True,
        )
