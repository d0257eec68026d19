"""UserNotificationPreferences aggregate.

Changed only through the explicit update functions below, each of which
emits a ``UserNotificationPreferencesUpdatedEvent``.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..utils import utcnow
from .events import UserNotificationPreferencesUpdatedEvent
from .values import Channel

if TYPE_CHECKING:
    from .events import DomainEvent


class DoNotDisturbWindow(BaseModel):
    """A daily quiet period in the user's local time.

    ``start`` is inclusive and ``end`` exclusive. A window whose start is
    after its end wraps midnight (22:00 → 07:00). Equal bounds mean an empty
    window.
    """

    model_config = ConfigDict(frozen=True)

    start: time
    end: time
    timezone: str = "UTC"

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        ZoneInfo(value)
        return value

    def _local(self, at: datetime) -> datetime:
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        return at.astimezone(ZoneInfo(self.timezone))

    def contains(self, at: datetime) -> bool:
        current = self._local(at).time().replace(tzinfo=None)
        if self.start == self.end:
            return False
        if self.start < self.end:
            return self.start <= current < self.end
        return current >= self.start or current < self.end

    def ends_after(self, at: datetime) -> datetime:
        """End of the window containing *at*, as an aware UTC datetime."""
        local = self._local(at)
        end = datetime.combine(local.date(), self.end, tzinfo=local.tzinfo)
        if self.start > self.end and local.time().replace(tzinfo=None) >= self.start:
            end = datetime.combine(
                local.date() + timedelta(days=1), self.end, tzinfo=local.tzinfo
            )
        return end.astimezone(timezone.utc)


class FrequencyLimit(BaseModel):
    """At most ``max_count`` sends of one notification type per sliding window."""

    model_config = ConfigDict(frozen=True)

    max_count: int = Field(ge=1)
    window: timedelta

    @field_validator("window")
    @classmethod
    def _positive_window(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("window must be positive")
        return value


class UserNotificationPreferences(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    channel_settings: dict[str, dict[Channel, bool]] = Field(default_factory=dict)
    do_not_disturb: DoNotDisturbWindow | None = None
    frequency_limits: dict[str, FrequencyLimit] = Field(default_factory=dict)
    version: int = 0
    updated_at: datetime = Field(default_factory=utcnow)

    def is_channel_enabled(self, notification_type: str, channel: Channel) -> bool:
        """Channels are enabled unless the user opted out."""
        return self.channel_settings.get(notification_type, {}).get(channel, True)

    def frequency_limit_for(self, notification_type: str) -> FrequencyLimit | None:
        return self.frequency_limits.get(notification_type)


def _updated(
    preferences: UserNotificationPreferences,
    changes: dict[str, Any],
    summary: dict[str, Any],
    now: datetime | None,
) -> tuple[UserNotificationPreferences, list[DomainEvent]]:
    now = now or utcnow()
    updated = preferences.model_copy(update={**changes, "updated_at": now})
    event = UserNotificationPreferencesUpdatedEvent(
        aggregate_id=preferences.user_id,
        user_id=preferences.user_id,
        changes=summary,
        occurred_at=now,
    )
    return updated, [event]


def set_channel_enabled(
    preferences: UserNotificationPreferences,
    notification_type: str,
    channel: Channel,
    enabled: bool,
    *,
    now: datetime | None = None,
) -> tuple[UserNotificationPreferences, list[DomainEvent]]:
    settings = {k: dict(v) for k, v in preferences.channel_settings.items()}
    settings.setdefault(notification_type, {})[channel] = enabled
    return _updated(
        preferences,
        {"channel_settings": settings},
        {
            "channel_settings": {
                notification_type: {channel.value: enabled},
            }
        },
        now,
    )


def set_do_not_disturb(
    preferences: UserNotificationPreferences,
    window: DoNotDisturbWindow | None,
    *,
    now: datetime | None = None,
) -> tuple[UserNotificationPreferences, list[DomainEvent]]:
    """Set, or clear with ``None``, the do-not-disturb window."""
    summary = window.model_dump(mode="json") if window is not None else None
    return _updated(
        preferences,
        {"do_not_disturb": window},
        {"do_not_disturb": summary},
        now,
    )


def set_frequency_limit(
    preferences: UserNotificationPreferences,
    notification_type: str,
    limit: FrequencyLimit | None,
    *,
    now: datetime | None = None,
) -> tuple[UserNotificationPreferences, list[DomainEvent]]:
    """Set, or remove with ``None``, the limit for one notification type."""
    limits = dict(preferences.frequency_limits)
    if limit is None:
        limits.pop(notification_type, None)
    else:
        limits[notification_type] = limit
    summary = limit.model_dump(mode="json") if limit is not None else None
    return _updated(
        preferences,
        {"frequency_limits": limits},
        {"frequency_limits": {notification_type: summary}},
        now,
    )
