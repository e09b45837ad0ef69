"""Conversation schemas for the admin API."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from chatorder.models.conversation import ConversationIntent, ConversationStatus
from chatorder.models.message import MessageSender
from chatorder.schemas.common import BaseSchema


class MessageResponse(BaseSchema):
    id: UUID
    conversation_id: UUID
    sender: MessageSender
    text: str
    position: int
    external_id: str | None = None
    extra_data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class ConversationResponse(BaseSchema):
    id: UUID
    store_id: UUID
    customer_id: UUID
    channel_conversation_id: str
    status: ConversationStatus
    intent: ConversationIntent | None = None
    is_manual_mode: bool
    message_count: int
    last_activity: datetime


class ManualModeUpdate(BaseSchema):
    is_manual_mode: bool = Field(alias="isManualMode")


class ConversationStatusUpdate(BaseSchema):
    status: ConversationStatus


class AdminMessageCreate(BaseSchema):
    text: str = Field(min_length=1, max_length=2000)
