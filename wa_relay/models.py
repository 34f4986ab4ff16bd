"""
In-memory domain records for the message ledger and contact directory.

For Pydantic request/response schemas, see schemas.py.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


MEDIA_PLACEHOLDER = "[Media message]"


class Direction(str, Enum):
    SENT = "sent"
    RECEIVED = "received"


class DeliveryStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"
    RECEIVED = "received"


@dataclass
class MessageRecord:
    """
    One sent or received message.

    Only delivery_status changes after creation, and only through
    status reconciliation.
    """
    direction: Direction
    text: str
    timestamp: int  # ms since epoch
    provider_message_id: str
    delivery_status: DeliveryStatus
    is_new: bool = False


@dataclass
class ContactSummary:
    """Per-number summary derived from ledger activity."""
    number: str
    display_name: str
    last_message_text: Optional[str] = None
    last_message_time: Optional[int] = None
    unread_count: int = 0
