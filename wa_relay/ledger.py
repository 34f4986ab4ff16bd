import logging
from typing import Callable, Optional

from wa_relay.models import DeliveryStatus, Direction, MessageRecord
from wa_relay.utils import now_ms

logger = logging.getLogger(__name__)


class MessageLedger:
    """
    Append-only message history keyed by contact number.

    Records are never reordered or deleted. A secondary index maps each
    provider message id to its (number, position) so status callbacks,
    which carry no contact number, resolve without scanning every contact.
    """

    def __init__(self, clock: Callable[[], int] = now_ms):
        self._clock = clock
        self._messages: dict[str, list[MessageRecord]] = {}
        self._index: dict[str, tuple[str, int]] = {}

    def _append(self, number: str, record: MessageRecord) -> MessageRecord:
        sequence = self._messages.setdefault(number, [])
        sequence.append(record)
        if record.provider_message_id:
            self._index[record.provider_message_id] = (number, len(sequence) - 1)
        return record

    def append_sent(self, number: str, text: str, provider_message_id: str) -> MessageRecord:
        """
        Record an outbound message after the provider accepted it.

        Args:
            number: Recipient phone number
            text: Message body as sent
            provider_message_id: Id assigned by the provider

        Returns:
            The appended MessageRecord
        """
        record = MessageRecord(
            direction=Direction.SENT,
            text=text,
            timestamp=self._clock(),
            provider_message_id=provider_message_id,
            delivery_status=DeliveryStatus.SENT,
        )
        logger.debug(f"Ledger append sent: to={number}, id={provider_message_id}")
        return self._append(number, record)

    def append_received(
        self,
        number: str,
        text: str,
        provider_timestamp_seconds: int,
        provider_message_id: str,
    ) -> MessageRecord:
        """
        Record an inbound message from a webhook event.

        Args:
            number: Sender phone number
            text: Message body, or the media placeholder
            provider_timestamp_seconds: Provider timestamp in seconds
            provider_message_id: Id assigned by the provider

        Returns:
            The appended MessageRecord, flagged as new
        """
        record = MessageRecord(
            direction=Direction.RECEIVED,
            text=text,
            timestamp=int(provider_timestamp_seconds) * 1000,
            provider_message_id=provider_message_id,
            delivery_status=DeliveryStatus.RECEIVED,
            is_new=True,
        )
        logger.debug(f"Ledger append received: from={number}, id={provider_message_id}")
        return self._append(number, record)

    def contains(self, provider_message_id: str) -> bool:
        return provider_message_id in self._index

    def find_by_provider_message_id(self, provider_message_id: str) -> Optional[MessageRecord]:
        location = self._index.get(provider_message_id)
        if location is None:
            return None
        number, position = location
        return self._messages[number][position]

    def update_status(
        self, provider_message_id: str, new_status: DeliveryStatus
    ) -> Optional[MessageRecord]:
        """
        Set the delivery status of the record with the given provider id.

        Unknown ids are ignored: callbacks may reference messages this
        process never tracked.

        Returns:
            The updated record, or None if the id is unknown
        """
        record = self.find_by_provider_message_id(provider_message_id)
        if record is None:
            logger.debug(f"Status update for untracked message ignored: {provider_message_id}")
            return None
        record.delivery_status = new_status
        logger.debug(f"Ledger status update: id={provider_message_id}, status={new_status.value}")
        return record

    def list_for(self, number: str) -> list[MessageRecord]:
        return list(self._messages.get(number, []))

    def count(self) -> int:
        return len(self._index)
