"""PolicyEvaluator — decides which channels a recipient may be reached on.

``evaluate`` is a pure function of its arguments: it performs no I/O and
reads no clock, so the same inputs always yield the same decision. The
caller supplies the evaluation time and the recipient's recent send times.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Union

from ..domain.values import Urgency

if TYPE_CHECKING:
    from ..domain.preferences import UserNotificationPreferences
    from ..domain.request import NotificationRequest, Recipient
    from ..domain.values import Channel


@dataclass(frozen=True)
class Allow:
    """Dispatch on ``channels``, in preference order."""

    channels: tuple[Channel, ...]


@dataclass(frozen=True)
class Defer:
    """Every deliverable channel is inside do-not-disturb until ``until``."""

    until: datetime


@dataclass(frozen=True)
class Block:
    """No channel survived. ``dropped`` maps each channel to why it was dropped."""

    reason: str
    dropped: dict[str, str] = field(default_factory=dict)


PolicyDecision = Union[Allow, Defer, Block]

NO_ADDRESS = "no address"
OPTED_OUT = "opted out"
FREQUENCY_LIMIT = "frequency limit reached"


def evaluation_time(now: datetime, scheduled_at: datetime | None) -> datetime:
    """Policy is evaluated at the later of now and the scheduled time."""
    if scheduled_at is None or scheduled_at < now:
        return now
    return scheduled_at


def count_recent(sent_at: Sequence[datetime], since: datetime, at: datetime) -> int:
    """Sends inside the sliding window ``[since, at]``."""
    return sum(1 for ts in sent_at if since <= ts <= at)


def evaluate(
    request: NotificationRequest,
    recipient: Recipient,
    preferences: UserNotificationPreferences,
    *,
    at: datetime,
    recent_sends: Sequence[datetime] = (),
) -> PolicyDecision:
    """Evaluate policy for one recipient.

    Args:
        request: The request being processed.
        recipient: One of ``request.recipients``.
        preferences: The recipient's preferences (defaults when unset).
        at: Evaluation time, see :func:`evaluation_time`.
        recent_sends: Times of earlier successful sends of this notification
            type to this recipient. Only those inside the frequency window
            ending at *at* count.
    """
    notification_type = request.notification_type
    dnd = preferences.do_not_disturb
    in_quiet_hours = dnd is not None and dnd.contains(at)

    limit = preferences.frequency_limit_for(notification_type)
    over_limit = limit is not None and (
        count_recent(recent_sends, at - limit.window, at) >= limit.max_count
    )

    allowed: list[Channel] = []
    quiet: list[Channel] = []
    dropped: dict[str, str] = {}

    for channel in request.channel_preferences:
        if recipient.address_for(channel) is None:
            dropped[channel.value] = NO_ADDRESS
            continue
        if not preferences.is_channel_enabled(notification_type, channel):
            dropped[channel.value] = OPTED_OUT
            continue
        if over_limit:
            dropped[channel.value] = FREQUENCY_LIMIT
            continue
        if in_quiet_hours and request.urgency is not Urgency.HIGH:
            quiet.append(channel)
            continue
        allowed.append(channel)

    if allowed:
        return Allow(channels=tuple(allowed))
    if quiet and dnd is not None:
        return Defer(until=dnd.ends_after(at))
    reason = "; ".join(f"{k}: {v}" for k, v in dropped.items()) or "no channels"
    return Block(reason=reason, dropped=dropped)
