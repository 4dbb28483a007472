"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for the outbound SMS and settings routes
- Response models for API responses
- Models for the two JustCall inbound webhook payload shapes
"""

import re
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")


def _validate_e164(value: str, field_name: str) -> str:
    if not E164_PATTERN.match(value):
        raise ValueError(f"{field_name} must be in international format (e.g., +4799999999)")
    return value


# =============================================================================
# Pydantic Request Models
# =============================================================================

class SendSmsRequest(BaseModel):
    """
    Request body for POST /api/sms/send.

    Validates:
    - contact_number / justcall_number: E.164 (+ then 2-15 digits)
    - body: non-empty, at most 1600 characters
    - restrict_once: "Yes" or "No"
    """
    contact_number: str = Field(..., description="Recipient number in E.164 format")
    body: str = Field(..., min_length=1, max_length=1600, description="Message text or template")
    justcall_number: Optional[str] = Field(None, description="Sender number; defaults to the configured sender")
    media_url: Optional[str] = Field(None, description="Comma-separated media URLs")
    restrict_once: str = Field("No", pattern="^(Yes|No)$")
    schedule_at: Optional[str] = Field(None, description="YYYY-MM-DD HH:mm:ss")
    template_data: Optional[Dict[str, Any]] = Field(
        None,
        alias="templateData",
        description="Placeholder values, e.g. {\"customer_name\": \"Ola\"}",
    )
    owner_id: Optional[str] = Field(None, description="Id of the user sending the message")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("contact_number", "justcall_number")
    @classmethod
    def validate_e164_format(cls, v: Optional[str], info) -> Optional[str]:
        if v is None:
            return v
        return _validate_e164(v, info.field_name)


class SmsSettingsRequest(BaseModel):
    """Request body for PUT /api/sms-settings."""
    sender_number: str = Field(..., alias="senderNumber")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("sender_number")
    @classmethod
    def validate_e164_format(cls, v: str) -> str:
        return _validate_e164(v, "senderNumber")


# =============================================================================
# Pydantic Response Models
# =============================================================================

class OutboundMessageResponse(BaseModel):
    """A stored outbound message."""
    id: str
    provider_message_id: str
    recipient_address: str
    sender_address: str
    rendered_body: str
    template_body: str
    sent_at: datetime
    confirmation_state: str
    confirmed_at: Optional[datetime] = None
    confirmation_reply_body: Optional[str] = None
    confirmation_reply_provider_id: Optional[str] = None
    provider_status: Optional[str] = None
    owner_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class SendSmsResponse(BaseModel):
    """
    Response for a successful send.

    `recorded` is False when the SMS went out but the local record could not
    be written; `record_id` is then None.
    """
    success: bool = True
    message_id: str = Field(..., description="Provider message id")
    status: str
    record_id: Optional[str] = None
    recorded: bool
    rendered_body: str
    justcall_response: Any = None


class OutboundMessagesListResponse(BaseModel):
    data: list[OutboundMessageResponse] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    limit: int = Field(..., ge=1, le=1000)
    offset: int = Field(..., ge=0)


class SmsSettingsResponse(BaseModel):
    sender_number: str = Field("", serialization_alias="senderNumber")


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the provider for every handled webhook."""
    status: str = Field(default="ok")
    result: str
    confirmed: bool = False
    outbound_message_id: Optional[str] = None


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")


# =============================================================================
# JustCall Webhook Payloads
# =============================================================================

def _coerce_str(v: Any) -> Any:
    # JustCall sends numeric ids in some payloads
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(int(v))
    return v


class SmsInfo(BaseModel):
    body: Optional[str] = ""

    model_config = ConfigDict(extra="ignore")


class StructuredSmsData(BaseModel):
    """`data` object of the structured (type + data) webhook shape."""
    id: str
    contact_number: str
    justcall_number: Optional[str] = None
    direction: str
    sms_date: Optional[str] = None
    sms_time: Optional[str] = None
    sms_info: Optional[SmsInfo] = None
    delivery_status: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("id", "contact_number", "justcall_number", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Any:
        return _coerce_str(v)


class StructuredWebhookPayload(BaseModel):
    type: Optional[str] = None
    data: StructuredSmsData

    model_config = ConfigDict(extra="ignore")


class LegacyWebhookPayload(BaseModel):
    """Flat webhook shape: message fields at the top level."""
    id: str
    contact_number: str
    justcall_number: Optional[str] = None
    body: Optional[str] = ""
    direction: str
    status: Optional[str] = None
    created_at: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("id", "contact_number", "justcall_number", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Any:
        return _coerce_str(v)
