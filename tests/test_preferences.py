"""Tests for PreferencesService."""

from __future__ import annotations

from datetime import time, timedelta

import pytest

from notification_dispatch.domain import (
    Channel,
    DoNotDisturbWindow,
    FrequencyLimit,
)
from notification_dispatch.primitives.exceptions import ConcurrencyConflict


class TestDefaults:
    @pytest.mark.asyncio
    async def test_unknown_user_gets_defaults(self, harness) -> None:
        prefs = await harness.preferences.get("new-user")

        assert prefs.version == 0
        assert prefs.is_channel_enabled("Anything", Channel.SMS)
        assert prefs.do_not_disturb is None
        assert prefs.frequency_limit_for("Anything") is None
        assert len(harness.preference_repo) == 0


class TestUpdates:
    @pytest.mark.asyncio
    async def test_each_update_bumps_version_and_emits_one_event(
        self, harness
    ) -> None:
        await harness.preferences.set_channel_enabled(
            "u1", "Marketing", Channel.EMAIL, False
        )
        await harness.preferences.set_do_not_disturb(
            "u1", DoNotDisturbWindow(start=time(22), end=time(7))
        )
        prefs = await harness.preferences.set_frequency_limit(
            "u1", "Marketing", FrequencyLimit(max_count=3, window=timedelta(days=1))
        )

        assert prefs.version == 3
        assert not prefs.is_channel_enabled("Marketing", Channel.EMAIL)
        assert prefs.is_channel_enabled("Marketing", Channel.SMS)
        assert prefs.do_not_disturb.start == time(22)
        assert prefs.frequency_limit_for("Marketing").max_count == 3
        assert harness.event_types() == [
            "UserNotificationPreferencesUpdatedEvent"
        ] * 3

    @pytest.mark.asyncio
    async def test_event_describes_the_change(self, harness) -> None:
        await harness.preferences.set_channel_enabled(
            "u1", "Marketing", Channel.SMS, False
        )

        [event] = harness.events_of("UserNotificationPreferencesUpdatedEvent")
        assert event["aggregate_id"] == "u1"
        assert event["changes"] == {"channel_settings": {"Marketing": {"sms": False}}}

    @pytest.mark.asyncio
    async def test_clear_settings(self, harness) -> None:
        await harness.preferences.set_do_not_disturb(
            "u1", DoNotDisturbWindow(start=time(22), end=time(7))
        )
        await harness.preferences.set_frequency_limit(
            "u1", "Marketing", FrequencyLimit(max_count=1, window=timedelta(hours=1))
        )

        await harness.preferences.clear_do_not_disturb("u1")
        prefs = await harness.preferences.set_frequency_limit("u1", "Marketing", None)

        assert prefs.do_not_disturb is None
        assert prefs.frequency_limit_for("Marketing") is None

    @pytest.mark.asyncio
    async def test_conflicting_writer_is_retried(self, harness) -> None:
        original_save = harness.preference_repo.save
        calls = 0

        async def flaky_save(preferences, expected_version, uow=None):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConcurrencyConflict(
                    "UserNotificationPreferences", preferences.user_id
                )
            return await original_save(preferences, expected_version, uow=uow)

        harness.preference_repo.save = flaky_save  # type: ignore[method-assign]
        prefs = await harness.preferences.set_channel_enabled(
            "u1", "Marketing", Channel.PUSH, False
        )

        assert calls == 2
        assert prefs.version == 1
        assert len(harness.event_types()) == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, harness) -> None:
        async def always_conflicts(preferences, expected_version, uow=None):
            raise ConcurrencyConflict("UserNotificationPreferences", "u1")

        harness.preference_repo.save = always_conflicts  # type: ignore[method-assign]
        with pytest.raises(ConcurrencyConflict, match="gave up"):
            await harness.preferences.set_channel_enabled(
                "u1", "Marketing", Channel.PUSH, False
            )
        assert harness.event_types() == []
