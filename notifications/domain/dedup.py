from datetime import UTC, datetime, timedelta
from typing import Iterable

from .entities import Notification


def _as_utc(moment: datetime) -> datetime:
    return moment.replace(tzinfo=UTC) if moment.tzinfo is None else moment


def should_admit(
    candidate: Notification,
    recent_history: Iterable[Notification],
    cooldown: timedelta,
    now: datetime | None = None,
) -> bool:
    """Decide whether `candidate` may be persisted.

    Only the most recent history entry sharing the candidate's dedup key is
    considered. The candidate is rejected when that entry is unread and was
    created within `cooldown` of `now`.

    Parameters
    ----------
    candidate : Notification
        Notification about to be dispatched.
    recent_history : Iterable[Notification]
        Recipient's recent notifications, in any order.
    cooldown : timedelta
        Suppression window.
    now : datetime | None, optional
        Reference time, defaults to the current UTC time.

    Returns
    -------
    bool
        True if the candidate should be persisted.
    """
    now = _as_utc(now or datetime.now(UTC))

    latest = max(
        (
            entry
            for entry in recent_history
            if entry.dedup_key == candidate.dedup_key and entry.created_at is not None
        ),
        key=lambda entry: _as_utc(entry.created_at),
        default=None,
    )
    if latest is None or latest.is_read:
        return True

    return now - _as_utc(latest.created_at) >= cooldown
