"""Messenger / Instagram webhook: verification handshake and event intake."""

import json
import logging

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from chatorder.core.config import settings
from chatorder.core.logging_config import request_id_var
from chatorder.integrations.messenger.webhooks import verify_signature
from chatorder.schemas.messenger import MessengerWebhookPayload, WebhookAck
from chatorder.workers.tasks.messenger import process_entry

logger = logging.getLogger(__name__)

router = APIRouter()

SUPPORTED_OBJECTS = {"page", "instagram"}


@router.get("", response_class=PlainTextResponse)
async def verify_webhook(
    mode: str | None = Query(default=None, alias="hub.mode"),
    token: str | None = Query(default=None, alias="hub.verify_token"),
    challenge: str | None = Query(default=None, alias="hub.challenge"),
) -> PlainTextResponse:
    """Subscription handshake: echo the challenge when the verify token matches."""
    if not mode or not token or challenge is None:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Missing verification parameters")

    if mode != "subscribe" or token != settings.facebook_verify_token:
        logger.warning("Webhook verification failed (mode=%s)", mode)
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Verification failed")

    logger.info("Webhook verified")
    return PlainTextResponse(challenge)


@router.post("", response_model=WebhookAck)
async def receive_webhook(request: Request) -> WebhookAck:
    """Acknowledge immediately; each entry is processed by a Celery task."""
    body = await request.body()
    signature = request.headers.get("X-Hub-Signature-256", "")

    if not verify_signature(body, signature, settings.facebook_app_secret):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid webhook signature")

    try:
        payload = MessengerWebhookPayload.model_validate(json.loads(body))
    except (ValueError, ValidationError) as e:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Malformed webhook payload") from e

    if payload.object not in SUPPORTED_OBJECTS:
        raise HTTPException(status.HTTP_404_NOT_FOUND, f"Unsupported object {payload.object}")

    request_id = request_id_var.get("")
    for entry in payload.entry:
        process_entry.delay(entry.model_dump(mode="json"), request_id)

    logger.info("Queued %d %s webhook entries", len(payload.entry), payload.object)
    return WebhookAck()
