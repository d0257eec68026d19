"""Tests for the pure policy evaluator."""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone

from conftest import T0, make_command

from notification_dispatch.domain import (
    Channel,
    DoNotDisturbWindow,
    FrequencyLimit,
    RecipientContact,
    Urgency,
    UserNotificationPreferences,
)
from notification_dispatch.domain.preferences import (
    set_channel_enabled,
    set_do_not_disturb,
    set_frequency_limit,
)
from notification_dispatch.domain.request import create_request
from notification_dispatch.policy import (
    Allow,
    Block,
    Defer,
    count_recent,
    evaluate,
    evaluation_time,
)

NIGHT = DoNotDisturbWindow(start=time(22, 0), end=time(7, 0))


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 5, 1, hour, minute, tzinfo=timezone.utc)


def _request(urgency: Urgency = Urgency.MEDIUM, channels=None, addresses=None):
    command = make_command(
        urgency=urgency,
        channels=channels or [Channel.EMAIL, Channel.SMS],
        recipients=[
            RecipientContact(
                user_id="u1",
                addresses=addresses
                or {Channel.EMAIL: "a@x.io", Channel.SMS: "+15550100"},
            )
        ],
    )
    request, _ = create_request(command, request_id="req-1", now=T0)
    return request


def _prefs(**changes) -> UserNotificationPreferences:
    return UserNotificationPreferences(user_id="u1", **changes)


class TestChannels:
    def test_defaults_allow_every_channel_in_order(self) -> None:
        request = _request()
        decision = evaluate(request, request.recipients[0], _prefs(), at=T0)

        assert decision == Allow(channels=(Channel.EMAIL, Channel.SMS))

    def test_channel_without_address_is_dropped(self) -> None:
        request = _request(addresses={Channel.SMS: "+15550100"})
        decision = evaluate(request, request.recipients[0], _prefs(), at=T0)

        assert decision == Allow(channels=(Channel.SMS,))

    def test_opted_out_channel_is_dropped(self) -> None:
        request = _request()
        prefs, _ = set_channel_enabled(_prefs(), "OrderConfirmed", Channel.EMAIL, False)
        decision = evaluate(request, request.recipients[0], prefs, at=T0)

        assert decision == Allow(channels=(Channel.SMS,))

    def test_opt_out_is_per_notification_type(self) -> None:
        request = _request()
        prefs, _ = set_channel_enabled(_prefs(), "Newsletter", Channel.EMAIL, False)
        decision = evaluate(request, request.recipients[0], prefs, at=T0)

        assert decision == Allow(channels=(Channel.EMAIL, Channel.SMS))

    def test_block_when_nothing_survives(self) -> None:
        request = _request(channels=[Channel.EMAIL, Channel.PUSH])
        prefs, _ = set_channel_enabled(_prefs(), "OrderConfirmed", Channel.EMAIL, False)
        decision = evaluate(request, request.recipients[0], prefs, at=T0)

        assert isinstance(decision, Block)
        assert decision.dropped == {"email": "opted out", "push": "no address"}
        assert "email: opted out" in decision.reason


class TestDoNotDisturb:
    def test_inside_window_defers_until_window_end(self) -> None:
        request = _request()
        prefs, _ = set_do_not_disturb(_prefs(), NIGHT)
        decision = evaluate(request, request.recipients[0], prefs, at=_at(23))

        assert decision == Defer(
            until=datetime(2024, 5, 2, 7, 0, tzinfo=timezone.utc)
        )

    def test_after_midnight_defers_until_same_morning(self) -> None:
        request = _request()
        prefs, _ = set_do_not_disturb(_prefs(), NIGHT)
        decision = evaluate(request, request.recipients[0], prefs, at=_at(6, 59))

        assert decision == Defer(until=_at(7))

    def test_window_end_is_exclusive(self) -> None:
        request = _request()
        prefs, _ = set_do_not_disturb(_prefs(), NIGHT)
        decision = evaluate(request, request.recipients[0], prefs, at=_at(7))

        assert isinstance(decision, Allow)

    def test_high_urgency_overrides_quiet_hours(self) -> None:
        request = _request(urgency=Urgency.HIGH)
        prefs, _ = set_do_not_disturb(_prefs(), NIGHT)
        decision = evaluate(request, request.recipients[0], prefs, at=_at(23))

        assert decision == Allow(channels=(Channel.EMAIL, Channel.SMS))

    def test_window_uses_user_timezone(self) -> None:
        window = DoNotDisturbWindow(
            start=time(22, 0), end=time(7, 0), timezone="Europe/Athens"
        )
        # 20:00 UTC is 23:00 in Athens (UTC+3 in May).
        assert window.contains(_at(20))
        assert not window.contains(_at(12))
        next_morning = datetime(2024, 5, 2, 4, 0, tzinfo=timezone.utc)
        assert window.ends_after(_at(20)) == next_morning

    def test_empty_window_never_applies(self) -> None:
        window = DoNotDisturbWindow(start=time(9), end=time(9))
        assert not window.contains(_at(9))


class TestFrequencyLimit:
    def _limited(self) -> UserNotificationPreferences:
        prefs, _ = set_frequency_limit(
            _prefs(),
            "OrderConfirmed",
            FrequencyLimit(max_count=2, window=timedelta(hours=1)),
        )
        return prefs

    def test_below_limit_allows(self) -> None:
        request = _request()
        decision = evaluate(
            request,
            request.recipients[0],
            self._limited(),
            at=T0,
            recent_sends=[T0 - timedelta(minutes=10)],
        )
        assert isinstance(decision, Allow)

    def test_at_limit_blocks(self) -> None:
        request = _request()
        decision = evaluate(
            request,
            request.recipients[0],
            self._limited(),
            at=T0,
            recent_sends=[T0 - timedelta(minutes=10), T0 - timedelta(minutes=20)],
        )
        assert isinstance(decision, Block)
        assert set(decision.dropped.values()) == {"frequency limit reached"}

    def test_window_slides(self) -> None:
        request = _request()
        decision = evaluate(
            request,
            request.recipients[0],
            self._limited(),
            at=T0,
            recent_sends=[T0 - timedelta(minutes=10), T0 - timedelta(minutes=61)],
        )
        assert isinstance(decision, Allow)

    def test_count_recent_is_inclusive(self) -> None:
        stamps = [T0 - timedelta(hours=1), T0, T0 + timedelta(seconds=1)]
        assert count_recent(stamps, T0 - timedelta(hours=1), T0) == 2


class TestEvaluationTime:
    def test_later_of_now_and_schedule(self) -> None:
        later = T0 + timedelta(hours=2)
        assert evaluation_time(T0, None) == T0
        assert evaluation_time(T0, later) == later
        assert evaluation_time(later, T0) == later

    def test_is_deterministic(self) -> None:
        request = _request()
        prefs, _ = set_do_not_disturb(_prefs(), NIGHT)
        first = evaluate(request, request.recipients[0], prefs, at=_at(23))
        second = evaluate(request, request.recipients[0], prefs, at=_at(23))
        assert first == second
