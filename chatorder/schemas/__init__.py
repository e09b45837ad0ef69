"""Pydantic schemas for request/response validation."""

from chatorder.schemas.common import BaseSchema, EventEnvelope

__all__ = [
    "BaseSchema",
    "EventEnvelope",
]
