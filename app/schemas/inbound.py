"""
Inbound message schemas.

POST /webhooks/messages → InboundMessageRequest / InboundMessageResponse
"""
from typing import Optional
from pydantic import BaseModel, Field, field_validator


class InboundMessageRequest(BaseModel):
    from_number: str = Field(
        min_length=1,
        max_length=48,
        description='Sender address, with or without the "whatsapp:" prefix.',
        examples=["whatsapp:+5511988887777"],
    )
    body: str = Field(min_length=1, max_length=4096, description="Message text.")
    external_id: Optional[str] = Field(
        default=None,
        max_length=64,
        description="Channel message id (Twilio MessageSid). Deduplication key.",
        examples=["SM0123456789abcdef"],
    )
    profile_name: Optional[str] = Field(default=None, max_length=256)

    @field_validator("body")
    @classmethod
    def body_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("body must not be blank")
        return v.strip()


class InboundMessageResponse(BaseModel):
    success: bool
    duplicate: bool = False
    intent: Optional[str] = Field(
        default=None,
        description='"emergency" | "social" | "question" | "checkin_response" | "off_topic"',
    )
    route: Optional[str] = Field(
        default=None,
        description='"escalate" | "onboarding" | "social" | "checkin" | "conversation" | "registration"',
    )
    error: Optional[str] = None
