"""
SQLAlchemy database models.
Users, their subscription and settings, the prospects they call, and the
records produced by each call.
"""

from sqlalchemy import Column, Integer, String, DateTime, Time, ForeignKey, Text, Enum as SQLEnum
from sqlalchemy.orm import relationship
import enum

from dialer.clock import utcnow
from dialer.database import Base


class SubscriptionStatus(str, enum.Enum):
    """Subscription status enum."""
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class ProspectStatus(str, enum.Enum):
    """Prospect status enum. Written only by the outcome processor."""
    INITIAL = "INITIAL"
    NOTRESPONDED = "NOTRESPONDED"
    RESCHEDULED = "RESCHEDULED"
    FAILED = "FAILED"
    BOOKED = "BOOKED"
    NOTINTERESTED = "NOTINTERESTED"


class ConversationStatus(str, enum.Enum):
    """Conversation status enum. COMPLETED is terminal."""
    INPROGRESS = "INPROGRESS"
    COMPLETED = "COMPLETED"


class ConversationResult(str, enum.Enum):
    """Conversation result enum."""
    NOTRESPONDED = "NOTRESPONDED"
    PASSED = "PASSED"
    RESCHEDULED = "RESCHEDULED"
    FAILED = "FAILED"


class InterestLevel(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class DBUser(Base):
    """User database model - the account prospects are called on behalf of."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False)
    name = Column(String(255))

    # Fairness rotation: oldest processed first. NULL sorts first (never processed).
    last_processed_at = Column(DateTime, nullable=True, index=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    subscription = relationship("DBSubscription", back_populates="user", uselist=False, cascade="all, delete-orphan")
    advanced_setting = relationship("DBAdvancedSetting", uselist=False, cascade="all, delete-orphan")
    script_setting = relationship("DBScriptSetting", uselist=False, cascade="all, delete-orphan")
    agent_setting = relationship("DBAgentSetting", uselist=False, cascade="all, delete-orphan")
    prospects = relationship("DBProspect", back_populates="user", cascade="all, delete-orphan")


class DBAdvancedSetting(Base):
    """Calling window bounds, expressed as local time of day in `time_zone`."""
    __tablename__ = "advanced_settings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    time_zone = Column(String(64), default="UTC")
    start_at = Column(Time, nullable=True)
    end_at = Column(Time, nullable=True)


class DBScriptSetting(Base):
    """Script templates for first contact and follow-ups."""
    __tablename__ = "script_settings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    initial = Column(Text)
    follow_up = Column(Text)


class DBAgentSetting(Base):
    """Voice agent settings passed through to the calling provider."""
    __tablename__ = "agent_settings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    language = Column(String(16))
    voice = Column(String(64))
    first_message = Column(Text)


class DBPlan(Base):
    """Plan database model."""
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    per_day = Column(Integer, nullable=False, default=0)


class DBSubscription(Base):
    """
    Subscription - calling quota of a user.
    minutes_left may go negative when a call runs over; it is never clamped.
    """
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False)
    status = Column(SQLEnum(SubscriptionStatus), default=SubscriptionStatus.ACTIVE, index=True)

    minutes_left = Column(Integer, nullable=False, default=0)
    daily_used = Column(Integer, nullable=False, default=0)
    last_used_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    user = relationship("DBUser", back_populates="subscription")
    plan = relationship("DBPlan")


class DBProspect(Base):
    """Prospect database model - a contact called on behalf of a user."""
    __tablename__ = "prospects"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(50))
    status = Column(SQLEnum(ProspectStatus), default=ProspectStatus.INITIAL, index=True)

    last_contacted = Column(DateTime, nullable=True)
    rescheduled_for = Column(DateTime, nullable=True)
    rescheduled_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    user = relationship("DBUser", back_populates="prospects")
    conversations = relationship("DBConversation", back_populates="prospect", cascade="all, delete-orphan")
    appointments = relationship("DBAppointment", back_populates="prospect", cascade="all, delete-orphan")


class DBConversation(Base):
    """
    Conversation - one call attempt.
    Created by the call worker, completed by the outcome processor.
    """
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, index=True)
    prospect_id = Column(Integer, ForeignKey("prospects.id"), nullable=False, index=True)
    call_id = Column(String(100), nullable=True, index=True)  # Provider call identifier

    status = Column(SQLEnum(ConversationStatus), default=ConversationStatus.INPROGRESS)
    result = Column(SQLEnum(ConversationResult), default=ConversationResult.NOTRESPONDED)

    call_start_at = Column(DateTime, nullable=True)
    call_end_at = Column(DateTime, nullable=True)
    duration = Column(Integer, nullable=True)  # seconds
    transcript = Column(Text, default="")
    notes = Column(Text)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    prospect = relationship("DBProspect", back_populates="conversations")


class DBAppointment(Base):
    """Appointment - created when a call ends with an appointment set."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    prospect_id = Column(Integer, ForeignKey("prospects.id"), nullable=False, index=True)
    scheduled_for = Column(DateTime, nullable=False)
    interest_level = Column(SQLEnum(InterestLevel), default=InterestLevel.MEDIUM)
    notes = Column(Text)

    created_at = Column(DateTime, default=utcnow)

    # Relationships
    prospect = relationship("DBProspect", back_populates="appointments")


class DBRunLease(Base):
    """Single-flight lease for periodic runs, keyed by run name."""
    __tablename__ = "run_leases"

    name = Column(String(100), primary_key=True)
    holder = Column(String(100), nullable=False)
    expires_at = Column(DateTime, nullable=False)
