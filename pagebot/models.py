from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class WebhookParty(BaseModel):
    """Sender or recipient of a messaging event (PSID or page id)."""
    id: str


class WebhookMessage(BaseModel):
    """Message part of a messaging event; echoes are page-sent messages."""
    mid: Optional[str] = None
    text: Optional[str] = None
    is_echo: bool = False
    metadata: Optional[str] = None
    app_id: Optional[int] = None


class WebhookPostback(BaseModel):
    """Button postback from a Menu/Carousel template."""
    title: Optional[str] = None
    payload: Optional[str] = None


class MessagingEvent(BaseModel):
    sender: WebhookParty
    recipient: WebhookParty
    timestamp: Optional[int] = None
    message: Optional[WebhookMessage] = None
    postback: Optional[WebhookPostback] = None


class WebhookEntry(BaseModel):
    id: Optional[str] = None
    time: Optional[int] = None
    messaging: List[MessagingEvent] = Field(default_factory=list)


class WebhookPayload(BaseModel):
    """Top-level Messenger webhook body."""
    object: str
    entry: List[WebhookEntry] = Field(default_factory=list)


class InboundMessage(BaseModel):
    """Decoded user message handed to the workflow."""
    sender_id: str
    text: str
