"""Normalized realtime service events.

Every push path (transport listeners, MQTT) converts its input into a
:class:`ServiceEvent`. Only the reconciler hands them to the store.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ServiceEventType(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    PATCHED = "patched"
    REMOVED = "removed"

    @property
    def is_removal(self) -> bool:
        return self is ServiceEventType.REMOVED


class ServiceEvent(BaseModel):
    """A record-level change pushed by the server."""

    model_config = ConfigDict(frozen=True)

    type: ServiceEventType
    record: dict[str, Any] = Field(..., description="The record as sent with the event")
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("record")
    @classmethod
    def _require_record(cls, value: dict[str, Any]) -> dict[str, Any]:
        if not value:
            raise ValueError("event record must be a non-empty object")
        return value

    @field_validator("observed_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value
