"""
Temporal distributor.

Spreads a user's ranked prospects across the distribution window and builds
the call job for each one.
"""

from datetime import datetime, timedelta
from typing import List, Optional

from dialer.config import config
from dialer.db_models import DBProspect, DBUser, ProspectStatus
from dialer.models import AgentSettings, CallJob

DEFAULT_INITIAL_SCRIPT = "Hello, this is a test call."
DEFAULT_FOLLOW_UP_SCRIPT = "Hi, calling back as requested."
DEFAULT_LANGUAGE = "en"
DEFAULT_VOICE = "female"


def select_script(user: DBUser, prospect: DBProspect) -> str:
    """Follow-up script once a prospect has been rescheduled, initial script otherwise."""
    scripts = user.script_setting
    if (prospect.rescheduled_count or 0) > 0:
        return scripts.follow_up or DEFAULT_FOLLOW_UP_SCRIPT
    return scripts.initial or DEFAULT_INITIAL_SCRIPT


def build_agent_settings(user: DBUser, prospect: DBProspect) -> AgentSettings:
    agent = user.agent_setting
    return AgentSettings(
        language=agent.language or DEFAULT_LANGUAGE,
        voice=agent.voice or DEFAULT_VOICE,
        first_message=agent.first_message or f"Hi {prospect.name}",
    )


def scheduled_time_for(prospect: DBProspect, index: int, now: datetime, interval: timedelta) -> datetime:
    # A due (or overdue) callback keeps its requested time; the dispatcher clamps the delay at zero.
    if prospect.status == ProspectStatus.RESCHEDULED and isinstance(prospect.rescheduled_for, datetime):
        return prospect.rescheduled_for
    return now + index * interval


def distribute_calls(
    user: DBUser,
    prospects: List[DBProspect],
    now: datetime,
    window: Optional[timedelta] = None,
) -> List[CallJob]:
    """
    Build one timed call job per prospect, in rank order.

    Args:
        user: user with script and agent settings loaded
        prospects: ranked prospects (highest priority first)
        now: naive UTC start of the window
        window: distribution window (defaults to DISTRIBUTION_WINDOW_MINUTES)

    Returns:
        List of CallJob, same order as `prospects`
    """
    if not prospects:
        return []

    if window is None:
        window = timedelta(minutes=config.DISTRIBUTION_WINDOW_MINUTES)
    interval = window / len(prospects)

    jobs = []
    for i, prospect in enumerate(prospects):
        jobs.append(
            CallJob(
                user_id=user.id,
                prospect_id=prospect.id,
                script=select_script(user, prospect),
                agent_settings=build_agent_settings(user, prospect),
                scheduled_time=scheduled_time_for(prospect, i, now, interval),
                variables={"prospectName": prospect.name},
            )
        )
    return jobs
