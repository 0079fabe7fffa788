"""Data models for queue payloads and webhook events."""

import enum
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from dialer.clock import to_naive_utc

_datetime_adapter = TypeAdapter(datetime)


class EventType(str, enum.Enum):
    """Call lifecycle events delivered by the calling provider."""
    CALL_STARTED = "call.started"
    CALL_CONNECTED = "call.connected"
    CALL_COMPLETED = "call.completed"
    CALL_FAILED = "call.failed"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value):
        return cls.UNKNOWN


class OutcomeType(str, enum.Enum):
    """Classified result of a completed call."""
    APPOINTMENT_SET = "APPOINTMENT_SET"
    CALLBACK_REQUESTED = "CALLBACK_REQUESTED"
    NOT_INTERESTED = "NOT_INTERESTED"
    FAILED = "FAILED"
    NO_RESPONSE = "NO_RESPONSE"
    UNRECOGNIZED = "UNRECOGNIZED"

    @classmethod
    def _missing_(cls, value):
        return cls.UNRECOGNIZED


def _lenient_datetime(value: Any) -> Optional[datetime]:
    """Parse a timestamp, returning None for anything unparseable."""
    if value is None or value == "":
        return None
    try:
        return to_naive_utc(_datetime_adapter.validate_python(value))
    except ValidationError:
        return None


class AgentSettings(BaseModel):
    """Voice agent settings carried on each call job."""
    language: str
    voice: str
    first_message: str


class CallJob(BaseModel):
    """A queued, time-delayed request to execute one call."""
    user_id: int
    prospect_id: int
    script: str
    agent_settings: AgentSettings
    scheduled_time: datetime
    variables: Dict[str, str] = Field(default_factory=dict)


class CallOutcome(BaseModel):
    """Outcome block of a `call.completed` event."""
    model_config = ConfigDict(populate_by_name=True)

    type: OutcomeType
    appointment_time: Optional[datetime] = Field(default=None, alias="appointmentTime")
    callback_time: Optional[datetime] = Field(default=None, alias="callbackTime")
    notes: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value):
        return OutcomeType(value)

    @field_validator("appointment_time", "callback_time", mode="before")
    @classmethod
    def _parse_optional_time(cls, value):
        # An invalid time is treated as absent, it never rejects the event.
        return _lenient_datetime(value)


class CallEvent(BaseModel):
    """Webhook event for one conversation."""
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: int = Field(alias="conversationId")
    event_type: EventType = Field(alias="eventType")
    call_id: Optional[str] = Field(default=None, alias="callId")
    timestamp: Optional[datetime] = None
    duration: Optional[float] = Field(default=None, ge=0)
    transcript: Optional[str] = None
    outcome: Optional[CallOutcome] = None
    failure_reason: Optional[str] = Field(default=None, alias="failureReason")

    @field_validator("event_type", mode="before")
    @classmethod
    def _coerce_event_type(cls, value):
        return EventType(value)

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value):
        return to_naive_utc(value) if value is not None else None

    def is_complete(self) -> bool:
        """Whether a `call.completed` event carries everything needed to apply it."""
        return self.duration is not None and bool(self.transcript) and self.outcome is not None
