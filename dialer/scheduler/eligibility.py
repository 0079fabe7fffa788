"""
Eligibility & quota filter.

Decides, per user and per run, whether calls may be scheduled at all:
complete settings, inside the user's local calling window, and quota left.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session, selectinload

from dialer.clock import UTC, resolve_timezone
from dialer.config import config
from dialer.db_models import DBUser, DBSubscription, SubscriptionStatus

# Skip reasons
MISSING_SETTINGS = "missing_settings"
INVALID_WINDOW = "invalid_window"
OUTSIDE_WINDOW = "outside_window"
NO_SUBSCRIPTION = "no_subscription"
QUOTA_EXHAUSTED = "quota_exhausted"


@dataclass
class Eligibility:
    """Result of evaluating one user for the current run."""
    eligible: bool
    reason: Optional[str] = None
    calls_left: int = 0
    tz: ZoneInfo = UTC


def load_user_page(db: Session, batch_size: int) -> List[DBUser]:
    """Active-subscription users, least recently processed first."""
    return (
        db.query(DBUser)
        .join(DBUser.subscription)
        .filter(DBSubscription.status == SubscriptionStatus.ACTIVE)
        .options(
            selectinload(DBUser.subscription).selectinload(DBSubscription.plan),
            selectinload(DBUser.advanced_setting),
            selectinload(DBUser.script_setting),
            selectinload(DBUser.agent_setting),
        )
        .order_by(DBUser.last_processed_at.asc().nulls_first(), DBUser.id.asc())
        .limit(batch_size)
        .all()
    )


def has_complete_settings(user: DBUser) -> bool:
    return all([user.advanced_setting, user.script_setting, user.agent_setting])


def calling_window(user: DBUser, now: datetime) -> Tuple[Optional[datetime], Optional[datetime], ZoneInfo]:
    """
    Today's calling window in the user's timezone.

    Args:
        user: user with an advanced setting loaded
        now: naive UTC

    Returns:
        (start, end, tz) with aware start/end, or (None, None, tz) when a bound is missing
    """
    advanced = user.advanced_setting
    tz = resolve_timezone(advanced.time_zone)
    if advanced.start_at is None or advanced.end_at is None:
        return None, None, tz

    today = now.replace(tzinfo=timezone.utc).astimezone(tz).date()
    start = datetime.combine(today, advanced.start_at, tzinfo=tz)
    end = datetime.combine(today, advanced.end_at, tzinfo=tz)
    return start, end, tz


def calls_left_for(subscription: DBSubscription, hard_cap: int) -> int:
    """Remaining calls for this run: min(plan.per_day - daily_used, hard_cap)."""
    per_day = subscription.plan.per_day if subscription.plan else 0
    return min((per_day or 0) - (subscription.daily_used or 0), hard_cap)


def evaluate_user(user: DBUser, now: datetime, hard_cap: Optional[int] = None) -> Eligibility:
    """Run every eligibility check for `user` at naive-UTC time `now`."""
    if hard_cap is None:
        hard_cap = config.HARD_CALL_CAP

    if not has_complete_settings(user):
        return Eligibility(False, MISSING_SETTINGS)

    start, end, tz = calling_window(user, now)
    if start is None or start >= end:
        return Eligibility(False, INVALID_WINDOW, tz=tz)

    now_local = now.replace(tzinfo=timezone.utc).astimezone(tz)
    if now_local < start or now_local >= end:
        return Eligibility(False, OUTSIDE_WINDOW, tz=tz)

    subscription = user.subscription
    if subscription is None:
        return Eligibility(False, NO_SUBSCRIPTION, tz=tz)

    calls_left = calls_left_for(subscription, hard_cap)
    if calls_left <= 0 or (subscription.minutes_left or 0) <= 0:
        return Eligibility(False, QUOTA_EXHAUSTED, calls_left=max(calls_left, 0), tz=tz)

    return Eligibility(True, calls_left=calls_left, tz=tz)
