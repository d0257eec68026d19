"""PreferencesService — explicit update operations on UserNotificationPreferences."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .domain.preferences import (
    UserNotificationPreferences,
    set_channel_enabled,
    set_do_not_disturb,
    set_frequency_limit,
)
from .primitives.exceptions import ConcurrencyConflict
from .utils import utcnow

if TYPE_CHECKING:
    from collections.abc import Callable

    from .domain.events import DomainEvent
    from .domain.preferences import DoNotDisturbWindow, FrequencyLimit
    from .domain.values import Channel
    from .outbox.writer import OutboxWriter
    from .ports.repository import IPreferencesRepository
    from .ports.unit_of_work import UnitOfWork
    from .utils import Clock

    Update = Callable[
        [UserNotificationPreferences],
        tuple[UserNotificationPreferences, list[DomainEvent]],
    ]

logger = logging.getLogger("notification_dispatch.preferences")


class PreferencesService:
    """
    Reads and updates per-user notification preferences.

    Users without stored preferences get the defaults: every channel
    enabled, no quiet hours, no frequency limits. Each update is a
    read-modify-write saved with a version check and retried on conflict.
    """

    def __init__(
        self,
        repository: IPreferencesRepository,
        *,
        outbox: OutboxWriter,
        uow_factory: Callable[[], UnitOfWork],
        clock: Clock = utcnow,
        max_retries: int = 3,
    ) -> None:
        self._repository = repository
        self._outbox = outbox
        self._uow_factory = uow_factory
        self._clock = clock
        self._max_retries = max_retries

    async def get(self, user_id: str) -> UserNotificationPreferences:
        stored = await self._repository.load(user_id)
        return stored or UserNotificationPreferences(user_id=user_id)

    async def _update(
        self, user_id: str, update: Update
    ) -> UserNotificationPreferences:
        for _ in range(self._max_retries):
            current = await self.get(user_id)
            updated, events = update(current)
            try:
                async with self._uow_factory() as uow:
                    saved = await self._repository.save(
                        updated, current.version, uow=uow
                    )
                    await self._outbox.append(events, uow)
            except ConcurrencyConflict:
                logger.debug(
                    "Preferences of %s changed concurrently, retrying", user_id
                )
                continue
            logger.info("Updated preferences of %s (v%d)", user_id, saved.version)
            return saved
        raise ConcurrencyConflict(
            "UserNotificationPreferences",
            user_id,
            reason=f"update gave up after {self._max_retries} attempts",
        )

    async def set_channel_enabled(
        self,
        user_id: str,
        notification_type: str,
        channel: Channel,
        enabled: bool,
    ) -> UserNotificationPreferences:
        """Opt in to, or out of, one channel for one notification type."""
        return await self._update(
            user_id,
            lambda p: set_channel_enabled(
                p, notification_type, channel, enabled, now=self._clock()
            ),
        )

    async def set_do_not_disturb(
        self, user_id: str, window: DoNotDisturbWindow
    ) -> UserNotificationPreferences:
        return await self._update(
            user_id, lambda p: set_do_not_disturb(p, window, now=self._clock())
        )

    async def clear_do_not_disturb(self, user_id: str) -> UserNotificationPreferences:
        return await self._update(
            user_id, lambda p: set_do_not_disturb(p, None, now=self._clock())
        )

    async def set_frequency_limit(
        self,
        user_id: str,
        notification_type: str,
        limit: FrequencyLimit | None,
    ) -> UserNotificationPreferences:
        """Set the limit for one type; ``None`` removes it."""
        return await self._update(
            user_id,
            lambda p: set_frequency_limit(
                p, notification_type, limit, now=self._clock()
            ),
        )
