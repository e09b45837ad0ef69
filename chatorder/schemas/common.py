"""Shared schema base and the dashboard event envelope."""

from typing import Any

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Reads ORM objects and accepts both field names and camelCase aliases."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class EventEnvelope(BaseSchema):
    """One pub/sub message for the dashboard.

    ``room`` scopes the event to a conversation; ``None`` means every
    listener of the store.
    """

    event: str
    room: str | None = None
    data: dict[str, Any]
