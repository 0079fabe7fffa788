import os

# The app engine is created on import; keep it in memory for the whole test run.
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, time

import pytest
import structlog
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from dialer.context import EngineContext
from dialer.database import init_db
from dialer.db_models import (
    ConversationStatus,
    DBAdvancedSetting,
    DBAgentSetting,
    DBConversation,
    DBPlan,
    DBProspect,
    DBScriptSetting,
    DBSubscription,
    DBUser,
    ProspectStatus,
    SubscriptionStatus,
)

# capture_logs only sees loggers that are not cached.
structlog.configure(cache_logger_on_first_use=False)

# Monday 15:00 UTC
NOW = datetime(2026, 3, 2, 15, 0, 0)


@pytest.fixture(autouse=True)
def _safe_test_config(monkeypatch):
    """Force deterministic, offline-safe config for tests.

    The repo loads .env on import; these overrides prevent real network calls
    and keep retry delays out of the test run.
    """
    from dialer.config import config, Config

    overrides = {
        "HARD_CALL_CAP": 10,
        "BATCH_SIZE": 50,
        "DISTRIBUTION_WINDOW_MINUTES": 30,
        "RESCHEDULE_LOOKAHEAD_MINUTES": 30,
        "RECONTACT_AFTER_HOURS": 24,
        "PRIORITIZE_ATTEMPTS": 3,
        "PRIORITIZE_RETRY_DELAY_SECONDS": 1.0,
        "CALL_JOB_ATTEMPTS": 3,
        "CALL_JOB_BACKOFF_SECONDS": 60,
        "RUN_LEASE_SECONDS": 120,
        "RUN_SOFT_DEADLINE_SECONDS": 0,
        "ULTRAVOX_API_KEY": "",
        "BASE_URL": "http://dialer.test",
    }
    for name, value in overrides.items():
        monkeypatch.setattr(Config, name, value, raising=False)
        # Keep the instance in sync for any code that reads instance attributes directly.
        monkeypatch.setattr(config, name, value, raising=False)

    return config


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


class FakeQueue:
    """Records submitted jobs; raises for prospect ids listed in `fail_for`."""

    def __init__(self):
        self.jobs = []
        self.fail_for = set()

    def add(self, name, payload, options):
        if payload["prospect_id"] in self.fail_for:
            raise ConnectionError("queue unavailable")
        self.jobs.append((name, payload, options))


@pytest.fixture
def fake_queue():
    return FakeQueue()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def ctx(session_factory, fake_queue, sleeps):
    return EngineContext(
        session_factory=session_factory,
        queue=fake_queue,
        clock=lambda: NOW,
        sleep=sleeps.append,
        logger=structlog.get_logger("dialer.tests"),
    )


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make_user(
        *,
        per_day=50,
        daily_used=0,
        minutes_left=100,
        time_zone="UTC",
        start_at=time(9, 0),
        end_at=time(17, 0),
        with_settings=True,
        status=SubscriptionStatus.ACTIVE,
        initial="Initial script",
        follow_up="Follow-up script",
        last_processed_at=None,
        with_subscription=True,
    ):
        counter["n"] += 1
        user = DBUser(email=f"user{counter['n']}@example.com", name=f"User {counter['n']}", last_processed_at=last_processed_at)
        db.add(user)
        db.flush()

        if with_subscription:
            plan = DBPlan(name="basic", per_day=per_day)
            db.add(plan)
            db.flush()
            db.add(
                DBSubscription(
                    user_id=user.id,
                    plan_id=plan.id,
                    status=status,
                    minutes_left=minutes_left,
                    daily_used=daily_used,
                )
            )

        if with_settings:
            db.add(DBAdvancedSetting(user_id=user.id, time_zone=time_zone, start_at=start_at, end_at=end_at))
            db.add(DBScriptSetting(user_id=user.id, initial=initial, follow_up=follow_up))
            db.add(DBAgentSetting(user_id=user.id, language="en", voice="female", first_message="Hello there"))

        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_prospect(db):
    counter = {"n": 0}

    def _make_prospect(user, *, status=ProspectStatus.INITIAL, updated_at=None, **fields):
        counter["n"] += 1
        fields.setdefault("name", f"Prospect {counter['n']}")
        fields.setdefault("phone", f"+1555000{counter['n']:04d}")
        prospect = DBProspect(user_id=user.id, status=status, **fields)
        if updated_at is not None:
            prospect.updated_at = updated_at
        db.add(prospect)
        db.commit()
        db.refresh(prospect)
        return prospect

    return _make_prospect


@pytest.fixture
def make_conversation(db):
    def _make_conversation(prospect, *, status=ConversationStatus.INPROGRESS):
        conversation = DBConversation(prospect_id=prospect.id, status=status, transcript="", notes="Call initiated")
        db.add(conversation)
        db.commit()
        db.refresh(conversation)
        return conversation

    return _make_conversation
