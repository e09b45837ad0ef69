"""Facebook Graph API (Messenger Send API) client using httpx."""

import logging
from typing import Any

import httpx

from chatorder.core.config import settings

logger = logging.getLogger(__name__)

UNKNOWN_USER = "Unknown User"


class MessengerClient:
    """Async client for sending Messenger/Instagram messages as a page."""

    def __init__(self, page_access_token: str) -> None:
        self.base_url = f"https://graph.facebook.com/{settings.graph_api_version}"
        self.params = {"access_token": page_access_token}
        self.timeout = settings.messenger_timeout_seconds

    async def send_message(self, recipient_id: str, text: str) -> dict[str, Any]:
        """Send a text message. Raises on HTTP errors."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.base_url}/me/messages",
                params=self.params,
                json={
                    "recipient": {"id": recipient_id},
                    "message": {"text": text},
                    "messaging_type": "RESPONSE",
                },
            )
            response.raise_for_status()
            data: dict[str, Any] = response.json()
            return data

    async def send_typing(self, recipient_id: str, on: bool = True) -> None:
        """Toggle the typing indicator. Best effort, never raises."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/me/messages",
                    params=self.params,
                    json={
                        "recipient": {"id": recipient_id},
                        "sender_action": "typing_on" if on else "typing_off",
                    },
                )
                if not response.is_success:
                    logger.warning(
                        "Typing indicator failed for %s: %s",
                        recipient_id,
                        response.status_code,
                    )
        except httpx.HTTPError as e:
            logger.warning("Typing indicator failed for %s: %s", recipient_id, e)

    async def get_user_profile(self, user_id: str) -> dict[str, Any]:
        """Fetch the sender's public profile; falls back to a placeholder name."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.base_url}/{user_id}",
                    params={**self.params, "fields": "first_name,last_name,name"},
                )
                response.raise_for_status()
                data: dict[str, Any] = response.json()
        except httpx.HTTPError as e:
            logger.warning("Failed to fetch profile for %s: %s", user_id, e)
            return {"name": UNKNOWN_USER}

        name = data.get("name") or " ".join(
            part for part in (data.get("first_name"), data.get("last_name")) if part
        )
        return {**data, "name": name or UNKNOWN_USER}
