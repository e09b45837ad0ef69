"""Messenger/Instagram webhook payload schemas.

Only the fields the ingress reads are modelled; everything else Facebook
sends is ignored.
"""

from typing import Any

from pydantic import Field

from chatorder.schemas.common import BaseSchema


class MessengerParticipant(BaseSchema):
    id: str


class MessengerAttachment(BaseSchema):
    type: str
    payload: dict[str, Any] | None = None


class MessengerMessage(BaseSchema):
    mid: str | None = None
    text: str | None = None
    attachments: list[MessengerAttachment] = Field(default_factory=list)
    is_echo: bool = False


class MessengerPostback(BaseSchema):
    payload: str
    title: str | None = None


class MessagingEvent(BaseSchema):
    """One ``messaging`` item: a message, an attachment or a postback."""

    sender: MessengerParticipant
    recipient: MessengerParticipant | None = None
    timestamp: int | None = None
    message: MessengerMessage | None = None
    postback: MessengerPostback | None = None


class MessengerEntry(BaseSchema):
    """One ``entry``: all events for a single page or Instagram account."""

    id: str
    time: int | None = None
    messaging: list[MessagingEvent] = Field(default_factory=list)


class MessengerWebhookPayload(BaseSchema):
    object: str
    entry: list[MessengerEntry] = Field(default_factory=list)


class WebhookAck(BaseSchema):
    status: str = "EVENT_RECEIVED"
