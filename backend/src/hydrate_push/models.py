from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

_HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def format_iso_utc(value: datetime) -> str:
    """Render a timestamp the way browsers do: ``2026-01-01T08:00:00.000Z``."""
    as_utc = coerce_utc(value)
    return as_utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def coerce_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_hhmm(value: str) -> str:
    match = _HHMM_RE.match(value.strip())
    if match is None:
        raise ValueError("time must use HH:MM")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError("time must be between 00:00 and 23:59")
    return f"{hour:02d}:{minute:02d}"


class PushSubscription(BaseModel):
    """Browser push subscription as produced by ``PushManager.subscribe()``."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    endpoint: str = Field(min_length=1)
    keys: dict[str, str] = Field(default_factory=dict)
    expiration_time: float | None = Field(default=None, alias="expirationTime")

    @field_validator("endpoint")
    @classmethod
    def _normalize_endpoint(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("endpoint cannot be blank")
        return normalized

    def to_subscription_info(self) -> dict[str, Any]:
        return {"endpoint": self.endpoint, "keys": dict(self.keys)}


class Reminder(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    time: str
    timezone_offset_minutes: int = Field(default=0, alias="timezoneOffsetMinutes")
    repeat_every_minutes: int = Field(default=0, alias="repeatEveryMinutes")
    repeat_until: str | None = Field(default=None, alias="repeatUntil")
    last_sent_at: datetime | None = Field(default=None, alias="lastSentISO")

    @field_validator("timezone_offset_minutes", "repeat_every_minutes", mode="before")
    @classmethod
    def _null_as_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("last_sent_at")
    @classmethod
    def _normalize_last_sent(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return coerce_utc(value)

    @field_serializer("last_sent_at")
    def _serialize_last_sent(self, value: datetime | None) -> str | None:
        if value is None:
            return None
        return format_iso_utc(value)


class User(BaseModel):
    id: str
    subscription: PushSubscription
    reminders: list[Reminder] = Field(default_factory=list)


class StoreDocument(BaseModel):
    users: list[User] = Field(default_factory=list)


class ReminderSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    time: str
    timezone_offset_minutes: int = Field(default=0, ge=-24 * 60, le=24 * 60, alias="timezoneOffsetMinutes")
    repeat_every_minutes: int = Field(default=0, ge=0, le=24 * 60, alias="repeatEveryMinutes")
    repeat_until: str | None = Field(default=None, alias="repeatUntil")

    @field_validator("timezone_offset_minutes", "repeat_every_minutes", mode="before")
    @classmethod
    def _null_as_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("time")
    @classmethod
    def _normalize_time(cls, value: str) -> str:
        return normalize_hhmm(value)

    @field_validator("repeat_until", mode="before")
    @classmethod
    def _normalize_repeat_until(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        if isinstance(value, str):
            return normalize_hhmm(value)
        return value


class AddReminderRequest(ReminderSpec):
    subscription: PushSubscription

    def to_spec(self) -> ReminderSpec:
        return ReminderSpec(
            time=self.time,
            timezone_offset_minutes=self.timezone_offset_minutes,
            repeat_every_minutes=self.repeat_every_minutes,
            repeat_until=self.repeat_until,
        )


class DeleteReminderRequest(BaseModel):
    id: str = Field(min_length=1)


class NotificationPayload(BaseModel):
    """Push message body; extra keys are forwarded to the service worker untouched."""

    model_config = ConfigDict(extra="allow")

    title: str = "Hydrate"
    body: str = "Time to drink water 💧"
    url: str | None = None


class BroadcastRequest(BaseModel):
    payload: NotificationPayload | None = None


class SubscribeResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    user_id: str = Field(alias="userId")


class SuccessResponse(BaseModel):
    success: bool = True


class RemindersResponse(BaseModel):
    success: bool = True
    reminders: list[Reminder]


class BroadcastResult(BaseModel):
    endpoint: str
    success: bool
    error: str | int | None = None


class BroadcastResponse(BaseModel):
    success: bool = True
    results: list[BroadcastResult]


class UserSummary(BaseModel):
    id: str
    reminders: int


class SubsResponse(BaseModel):
    count: int
    users: list[UserSummary]


class HealthResponse(BaseModel):
    ok: bool
    time: int
