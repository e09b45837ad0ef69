"""API v1 router combining all route modules."""

from fastapi import APIRouter

from chatorder.api.v1 import conversations, health, orders, sync
from chatorder.api.v1.webhooks import messenger as messenger_webhooks

api_router = APIRouter()

# Include health check routes (no prefix)
api_router.include_router(health.router)

# Messenger / Instagram webhooks (no auth - verified via X-Hub-Signature-256)
api_router.include_router(
    messenger_webhooks.router,
    prefix="/webhooks/messenger",
    tags=["webhooks"],
)

# Catalog sync from Google Sheets
api_router.include_router(
    sync.router,
    prefix="/sync",
    tags=["sync"],
)

# Conversation admin (manual mode, status, operator replies)
api_router.include_router(
    conversations.router,
    prefix="/conversations",
    tags=["conversations"],
)

# Order admin
api_router.include_router(
    orders.router,
    prefix="/orders",
    tags=["orders"],
)
