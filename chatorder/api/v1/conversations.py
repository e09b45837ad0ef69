"""Admin endpoints for conversations (manual mode, status, operator replies)."""

import logging
from typing import Annotated
from uuid import UUID

import httpx
from fastapi import APIRouter, Depends, HTTPException, status

from chatorder.core.deps import CurrentUser, DBSession, Locks, Notifier
from chatorder.core.exceptions import ConfigurationError, LockNotAcquiredError
from chatorder.models.conversation import Conversation
from chatorder.models.store import Store
from chatorder.schemas.conversation import (
    AdminMessageCreate,
    ConversationResponse,
    ConversationStatusUpdate,
    ManualModeUpdate,
    MessageResponse,
)
from chatorder.services.conversation_service import ConversationAdminService

logger = logging.getLogger(__name__)

router = APIRouter()


def get_admin_service(db: DBSession, locks: Locks, notifier: Notifier) -> ConversationAdminService:
    return ConversationAdminService(db, locks, notifier)


AdminService = Annotated[ConversationAdminService, Depends(get_admin_service)]


async def _get_conversation(db: DBSession, conversation_id: UUID) -> Conversation:
    conversation = await db.get(Conversation, conversation_id)
    if conversation is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Conversation not found")
    return conversation


def _busy() -> HTTPException:
    return HTTPException(status.HTTP_409_CONFLICT, "Conversation is busy, try again")


@router.patch("/{conversation_id}/manual-mode", response_model=ConversationResponse)
async def update_manual_mode(
    conversation_id: UUID,
    data: ManualModeUpdate,
    db: DBSession,
    service: AdminService,
    _user: CurrentUser,
) -> Conversation:
    """Hand the conversation to a human operator, or give it back to the bot."""
    conversation = await _get_conversation(db, conversation_id)
    try:
        return await service.set_manual_mode(conversation, data.is_manual_mode)
    except LockNotAcquiredError as e:
        raise _busy() from e


@router.put("/{conversation_id}/status", response_model=ConversationResponse)
async def update_status(
    conversation_id: UUID,
    data: ConversationStatusUpdate,
    db: DBSession,
    service: AdminService,
    _user: CurrentUser,
) -> Conversation:
    conversation = await _get_conversation(db, conversation_id)
    try:
        return await service.set_status(conversation, data.status)
    except LockNotAcquiredError as e:
        raise _busy() from e


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: UUID,
    data: AdminMessageCreate,
    db: DBSession,
    service: AdminService,
    _user: CurrentUser,
) -> MessageResponse:
    """Send a message to the customer as the page."""
    conversation = await _get_conversation(db, conversation_id)
    store = await db.get(Store, conversation.store_id)
    if store is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Store not found")

    try:
        message = await service.send_admin_message(store, conversation, data.text)
    except ConfigurationError as e:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(e)) from e
    except LockNotAcquiredError as e:
        raise _busy() from e
    except httpx.HTTPError as e:
        logger.warning("Admin message to conversation %s failed: %s", conversation_id, e)
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, "Message could not be delivered") from e

    return MessageResponse.model_validate(message)
