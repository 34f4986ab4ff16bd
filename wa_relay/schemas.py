"""
Pydantic schemas for request/response validation.

Request fields are optional at the schema level so that a missing field is
reported by the relay as a 400 ValidationError rather than a schema error.
Response fields serialize in the camelCase the dashboard expects.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from wa_relay.models import DeliveryStatus, Direction


# =============================================================================
# Pydantic Request Models
# =============================================================================

class ConfigRequest(BaseModel):
    """Body of POST /api/config."""
    phone_number_id: Optional[str] = Field(
        None,
        alias="phoneNumberId",
        description="WhatsApp Business phone number id"
    )
    access_token: Optional[str] = Field(
        None,
        alias="accessToken",
        description="Cloud API access token"
    )

    model_config = ConfigDict(populate_by_name=True)


class SendMessageRequest(BaseModel):
    """Body of POST /api/send-message."""
    to: Optional[str] = Field(None, description="Recipient phone number")
    message: Optional[str] = Field(None, description="Text to send")

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [{"to": "15551234567", "message": "hi"}]
        }
    )


class RenameContactRequest(BaseModel):
    """Body of POST /api/contacts/{phone_number}/update."""
    name: Optional[str] = Field(None, description="New display name")


# =============================================================================
# Pydantic Response Models
# =============================================================================

class SuccessResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None


class ConfigStatusResponse(BaseModel):
    """Configuration status; the access token is never returned."""
    configured: bool
    phone_number_id: Optional[str] = Field(
        None,
        serialization_alias="phoneNumberId",
        description="Phone number id masked to its last four characters"
    )


class SendMessageResponse(BaseModel):
    success: bool = True
    message_id: str = Field(..., serialization_alias="messageId")


class MessageResponse(BaseModel):
    """A single ledger record."""
    direction: Direction
    text: str
    timestamp: int = Field(..., description="Milliseconds since epoch")
    provider_message_id: str = Field(..., serialization_alias="messageId")
    delivery_status: DeliveryStatus = Field(..., serialization_alias="deliveryStatus")
    is_new: bool = Field(False, serialization_alias="isNew")

    model_config = ConfigDict(from_attributes=True)


class MessagesListResponse(BaseModel):
    messages: list[MessageResponse] = Field(default_factory=list)


class ContactResponse(BaseModel):
    """A single contact summary."""
    number: str
    display_name: str = Field(..., serialization_alias="name")
    last_message_text: Optional[str] = Field(None, serialization_alias="lastMessage")
    last_message_time: Optional[int] = Field(None, serialization_alias="lastMessageTime")
    unread_count: int = Field(0, ge=0, serialization_alias="unreadCount")

    model_config = ConfigDict(from_attributes=True)


class ContactsListResponse(BaseModel):
    contacts: list[ContactResponse] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    error: str = Field(..., description="Error description")
    details: Optional[Any] = Field(None, description="Provider error details, passed through")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
