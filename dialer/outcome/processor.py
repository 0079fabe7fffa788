"""
Outcome state machine.

Applies call lifecycle events to Conversation, Prospect, Subscription and
Appointment rows. Every event is one transaction; events for the same
conversation are serialized, and events arriving after the conversation is
COMPLETED are acknowledged without effect.
"""

import math
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, Optional, Tuple

from sqlalchemy.orm import Session

from dialer import metrics
from dialer.clock import start_of_day
from dialer.context import EngineContext
from dialer.db_models import (
    ConversationResult,
    ConversationStatus,
    DBAppointment,
    DBConversation,
    DBProspect,
    DBSubscription,
    InterestLevel,
    ProspectStatus,
)
from dialer.exceptions import DialerError
from dialer.models import CallEvent, EventType, OutcomeType

# Dispositions returned by OutcomeProcessor.process
APPLIED = "applied"
LOGGED = "logged"
NOT_FOUND = "not_found"
INCOMPLETE = "incomplete"
ALREADY_COMPLETED = "already_completed"
UNHANDLED = "unhandled"

OUTCOME_TRANSITIONS: Dict[OutcomeType, Tuple[ConversationResult, ProspectStatus]] = {
    OutcomeType.APPOINTMENT_SET: (ConversationResult.PASSED, ProspectStatus.BOOKED),
    OutcomeType.CALLBACK_REQUESTED: (ConversationResult.RESCHEDULED, ProspectStatus.RESCHEDULED),
    OutcomeType.NOT_INTERESTED: (ConversationResult.FAILED, ProspectStatus.NOTINTERESTED),
    OutcomeType.FAILED: (ConversationResult.FAILED, ProspectStatus.FAILED),
    OutcomeType.NO_RESPONSE: (ConversationResult.NOTRESPONDED, ProspectStatus.NOTRESPONDED),
}
FALLBACK_TRANSITION = (ConversationResult.NOTRESPONDED, ProspectStatus.NOTRESPONDED)


def transition_for(outcome_type: OutcomeType) -> Tuple[ConversationResult, ProspectStatus]:
    """(conversation result, prospect status) for an outcome; unrecognized outcomes count as no response."""
    return OUTCOME_TRANSITIONS.get(outcome_type, FALLBACK_TRANSITION)


def billable_minutes(duration_seconds: float) -> int:
    return math.ceil(duration_seconds / 60)


class KeyedLocks:
    """Per-key mutual exclusion inside one process. Idle keys are dropped."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[object, list] = {}

    @contextmanager
    def lock(self, key) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)


_conversation_locks = KeyedLocks()


class OutcomeProcessor:
    """Stateless handler for call outcome events, keyed by conversation id."""

    def __init__(self, ctx: EngineContext, locks: Optional[KeyedLocks] = None):
        self.ctx = ctx
        self.locks = locks or _conversation_locks

    def process(self, event: CallEvent) -> str:
        """
        Apply one event.

        Returns:
            Disposition string (APPLIED, LOGGED, NOT_FOUND, INCOMPLETE, ALREADY_COMPLETED, UNHANDLED)

        Raises:
            Any store error; the transaction is rolled back first.
        """
        log = self.ctx.logger.bind(conversation_id=event.conversation_id, event_type=event.event_type.value)
        metrics.outcome_events_total.labels(event_type=event.event_type.value).inc()

        with self.locks.lock(event.conversation_id):
            db = self.ctx.session_factory()
            try:
                with db.begin():
                    return self._apply(db, event, log)
            except Exception as e:
                log.error("call_outcome_processing_failed", error=str(e))
                raise
            finally:
                db.close()

    def _apply(self, db: Session, event: CallEvent, log) -> str:
        conversation = (
            db.query(DBConversation)
            .filter(DBConversation.id == event.conversation_id)
            .with_for_update()
            .one_or_none()
        )
        prospect = None
        if conversation is not None:
            prospect = (
                db.query(DBProspect)
                .filter(DBProspect.id == conversation.prospect_id)
                .with_for_update()
                .one_or_none()
            )
        if conversation is None or prospect is None:
            log.warning("conversation_or_prospect_not_found")
            return NOT_FOUND

        event_time = event.timestamp or self.ctx.now()

        if event.event_type == EventType.CALL_CONNECTED:
            log.info("call_connected")
            return LOGGED

        if event.event_type == EventType.UNKNOWN:
            log.warning("unknown_event_type")
            return UNHANDLED

        if event.event_type == EventType.CALL_COMPLETED and not event.is_complete():
            log.warning(
                "completed_call_missing_data",
                has_duration=event.duration is not None,
                has_transcript=bool(event.transcript),
                has_outcome=event.outcome is not None,
            )
            return INCOMPLETE

        if conversation.status == ConversationStatus.COMPLETED:
            log.info("conversation_already_completed", result=conversation.result.value if conversation.result else None)
            return ALREADY_COMPLETED

        if event.event_type == EventType.CALL_STARTED:
            conversation.call_start_at = event_time
            conversation.status = ConversationStatus.INPROGRESS
            log.info("call_started_processed")
            return APPLIED

        if event.event_type == EventType.CALL_COMPLETED:
            self._apply_completed(db, event, conversation, prospect, event_time)
            log.info("call_completed_processed", outcome=event.outcome.type.value, duration=event.duration)
            return APPLIED

        # EventType.CALL_FAILED
        conversation.call_end_at = event_time
        conversation.result = ConversationResult.FAILED
        conversation.status = ConversationStatus.COMPLETED
        conversation.notes = f"Failed: {event.failure_reason or 'Unknown reason'}"
        prospect.status = ProspectStatus.FAILED
        prospect.last_contacted = event_time
        log.info("call_failed_processed", failure_reason=event.failure_reason)
        return APPLIED

    def _apply_completed(
        self,
        db: Session,
        event: CallEvent,
        conversation: DBConversation,
        prospect: DBProspect,
        event_time: datetime,
    ) -> None:
        outcome = event.outcome
        result, prospect_status = transition_for(outcome.type)

        subscription = (
            db.query(DBSubscription)
            .filter(DBSubscription.user_id == prospect.user_id)
            .with_for_update()
            .one_or_none()
        )
        if subscription is None:
            raise DialerError(f"no subscription for user {prospect.user_id}")

        conversation.call_end_at = event_time
        conversation.duration = int(round(event.duration))
        conversation.transcript = event.transcript
        conversation.result = result
        conversation.status = ConversationStatus.COMPLETED
        conversation.notes = outcome.notes or "Call completed"

        prospect.status = prospect_status
        prospect.last_contacted = event_time
        if outcome.type == OutcomeType.CALLBACK_REQUESTED and outcome.callback_time is not None:
            prospect.rescheduled_for = outcome.callback_time
            prospect.rescheduled_count = (prospect.rescheduled_count or 0) + 1

        # Relative updates; minutes_left is allowed to go negative.
        subscription.minutes_left = DBSubscription.minutes_left - billable_minutes(event.duration)
        subscription.daily_used = DBSubscription.daily_used + 1
        subscription.last_used_date = start_of_day(event_time)

        if outcome.type == OutcomeType.APPOINTMENT_SET and outcome.appointment_time is not None:
            db.add(
                DBAppointment(
                    prospect_id=prospect.id,
                    scheduled_for=outcome.appointment_time,
                    interest_level=InterestLevel.MEDIUM,
                    notes=outcome.notes or "Appointment set from call",
                )
            )
