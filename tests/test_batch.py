"""Tests for the batch orchestrator and its single-flight guard."""

from datetime import datetime, time, timedelta

import pytest
from sqlalchemy import event

from dialer.db_models import DBRunLease, DBSubscription, DBUser, ProspectStatus
from dialer.scheduler import batch as batch_module
from dialer.scheduler.batch import process_batch, run_scheduling_batch
from dialer.scheduler.guard import RunGuard

from conftest import NOW


def _reload(db, model, pk):
    db.expire_all()
    return db.get(model, pk)


def test_eligible_user_gets_timed_jobs(ctx, db, fake_queue, make_user, make_prospect):
    user = make_user(per_day=50, daily_used=47)
    prospects = [make_prospect(user) for _ in range(5)]

    stats = process_batch(ctx)

    # calls_left = min(50 - 47, 10) = 3
    assert stats.jobs_queued == 3
    assert stats.users_processed == 1
    assert len(fake_queue.jobs) == 3
    assert {payload["prospect_id"] for _, payload, _ in fake_queue.jobs} <= {p.id for p in prospects}
    delays = [options.delay_ms for _, _, options in fake_queue.jobs]
    assert delays == [0, 600000, 1200000]


def test_user_outside_window_gets_nothing(ctx, db, fake_queue, make_user, make_prospect):
    user = make_user(time_zone="Asia/Karachi", start_at=time(9, 0), end_at=time(17, 0), minutes_left=42)
    make_prospect(user)

    stats = process_batch(ctx)

    assert fake_queue.jobs == []
    assert stats.skipped == {"outside_window": 1}
    subscription = db.query(DBSubscription).filter_by(user_id=user.id).one()
    db.refresh(subscription)
    assert subscription.minutes_left == 42


def test_visited_users_are_rotated(ctx, db, make_user, make_prospect):
    eligible = make_user(last_processed_at=datetime(2026, 1, 1))
    make_prospect(eligible)
    outside = make_user(time_zone="Asia/Karachi", last_processed_at=datetime(2026, 1, 2))

    process_batch(ctx)

    assert _reload(db, DBUser, eligible.id).last_processed_at == NOW
    assert _reload(db, DBUser, outside.id).last_processed_at == NOW


def test_rotation_advances_when_every_submission_fails(ctx, db, fake_queue, make_user, make_prospect):
    user = make_user()
    prospect = make_prospect(user)
    fake_queue.fail_for = {prospect.id}

    stats = process_batch(ctx)

    assert stats.jobs_failed == 1
    assert stats.jobs_queued == 0
    assert _reload(db, DBUser, user.id).last_processed_at == NOW


def test_batch_size_pages_oldest_first(ctx, db, fake_queue, make_user, make_prospect):
    old = make_user(last_processed_at=datetime(2026, 1, 1))
    new = make_user(last_processed_at=datetime(2026, 2, 1))
    make_prospect(old)
    make_prospect(new)

    stats = process_batch(ctx, batch_size=1)

    assert stats.users_seen == 1
    assert [payload["user_id"] for _, payload, _ in fake_queue.jobs] == [old.id]

    # The next run picks up the user this one did not reach.
    fake_queue.jobs.clear()
    process_batch(ctx, batch_size=1)
    assert [payload["user_id"] for _, payload, _ in fake_queue.jobs] == [new.id]


def test_one_user_failure_does_not_block_others(ctx, db, fake_queue, make_user, make_prospect, monkeypatch):
    broken = make_user(last_processed_at=datetime(2026, 1, 1))
    healthy = make_user(last_processed_at=datetime(2026, 1, 2))
    make_prospect(broken)
    make_prospect(healthy)

    real_prioritize = batch_module.prioritize_prospects

    def _prioritize(ctx_, user_id, batch_size):
        if user_id == broken.id:
            raise RuntimeError("unexpected")
        return real_prioritize(ctx_, user_id, batch_size)

    monkeypatch.setattr(batch_module, "prioritize_prospects", _prioritize)

    stats = process_batch(ctx)

    assert stats.user_errors == 1
    assert [payload["user_id"] for _, payload, _ in fake_queue.jobs] == [healthy.id]
    assert _reload(db, DBUser, broken.id).last_processed_at == NOW


def test_rescheduled_prospect_dispatched_at_callback_time(ctx, fake_queue, make_user, make_prospect):
    user = make_user()
    make_prospect(user, last_contacted=NOW - timedelta(days=3))
    callback = make_prospect(
        user,
        status=ProspectStatus.RESCHEDULED,
        rescheduled_for=NOW + timedelta(minutes=25),
        rescheduled_count=1,
    )

    process_batch(ctx)

    first_name, first_payload, first_options = fake_queue.jobs[0]
    assert first_payload["prospect_id"] == callback.id
    assert first_payload["script"] == "Follow-up script"
    assert first_options.delay_ms == 25 * 60 * 1000


def test_soft_deadline_stops_run(ctx, fake_queue, make_user, make_prospect, monkeypatch):
    from dialer.config import Config, config

    for _ in range(3):
        make_prospect(make_user())
    monkeypatch.setattr(Config, "RUN_SOFT_DEADLINE_SECONDS", 5, raising=False)
    monkeypatch.setattr(config, "RUN_SOFT_DEADLINE_SECONDS", 5, raising=False)

    ticks = iter([0.0, 1.0, 2.0, 10.0, 10.0, 10.0])
    monkeypatch.setattr(batch_module, "monotonic", lambda: next(ticks))

    stats = process_batch(ctx)

    assert stats.deadline_reached is True
    assert stats.users_seen == 2


def test_run_is_single_flight(ctx, session_factory, fake_queue, make_user, make_prospect):
    make_prospect(make_user())
    guard = RunGuard(session_factory, clock=lambda: NOW)
    other_worker = RunGuard(session_factory, clock=lambda: NOW)

    assert other_worker.acquire() is True
    try:
        stats = run_scheduling_batch(ctx, guard=guard)
    finally:
        other_worker.release()

    assert stats.run_skipped is True
    assert fake_queue.jobs == []

    stats = run_scheduling_batch(ctx, guard=guard)
    assert stats.run_skipped is False
    assert stats.jobs_queued == 1


def test_guard_blocks_reentry_in_same_process(session_factory):
    guard = RunGuard(session_factory, clock=lambda: NOW)

    with guard.hold() as first:
        with guard.hold() as second:
            assert first is True
            assert second is False

    with guard.hold() as again:
        assert again is True


def test_guard_releases_lease_after_run(db, session_factory):
    guard = RunGuard(session_factory, clock=lambda: NOW)

    with guard.hold():
        assert db.query(DBRunLease).count() == 1

    db.expire_all()
    assert db.query(DBRunLease).count() == 0


def test_expired_lease_is_taken_over(session_factory):
    clock = {"now": NOW}
    crashed = RunGuard(session_factory, lease_seconds=60, clock=lambda: clock["now"])
    assert crashed.acquire() is True  # never released

    successor = RunGuard(session_factory, lease_seconds=60, clock=lambda: clock["now"])
    assert successor.acquire() is False

    clock["now"] = NOW + timedelta(seconds=61)
    assert successor.acquire() is True
    successor.release()


def test_guard_released_when_run_raises(ctx, session_factory, monkeypatch):
    guard = RunGuard(session_factory, clock=lambda: NOW)

    def _boom(ctx_, **kwargs):
        raise RuntimeError("database down")

    monkeypatch.setattr(batch_module, "process_batch", _boom)

    with pytest.raises(RuntimeError):
        run_scheduling_batch(ctx, guard=guard)

    assert guard.acquire() is True
    guard.release()


def test_rotation_commits_keep_the_preloaded_page(ctx, engine, make_user, make_prospect):
    for _ in range(3):
        make_prospect(make_user())
    make_user(time_zone="Asia/Karachi")

    statements = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(engine, "before_cursor_execute", _record)
    try:
        process_batch(ctx)
    finally:
        event.remove(engine, "before_cursor_execute", _record)

    settings_loads = [s for s in statements if "FROM advanced_settings" in s]
    assert len(settings_loads) == 1


def test_lease_is_renewed_while_the_run_progresses(ctx, db, session_factory, make_user, make_prospect):
    make_prospect(make_user())
    clock = {"now": NOW}
    guard = RunGuard(session_factory, lease_seconds=120, clock=lambda: clock["now"])
    assert guard.acquire() is True

    clock["now"] = NOW + timedelta(seconds=100)
    try:
        process_batch(ctx, heartbeat=guard.renew)
        lease = db.query(DBRunLease).one()
        assert lease.expires_at == NOW + timedelta(seconds=220)
    finally:
        guard.release()


def test_renew_fails_once_the_lease_is_taken_over(session_factory):
    clock = {"now": NOW}
    slow = RunGuard(session_factory, lease_seconds=60, clock=lambda: clock["now"])
    assert slow.acquire() is True

    clock["now"] = NOW + timedelta(seconds=61)
    successor = RunGuard(session_factory, lease_seconds=60, clock=lambda: clock["now"])
    assert successor.acquire() is True

    assert slow.renew() is False
    assert successor.renew() is True
    successor.release()


def test_run_stops_when_the_lease_is_lost(ctx, db, fake_queue, make_user, make_prospect):
    user = make_user(last_processed_at=datetime(2026, 1, 1))
    make_prospect(user)

    stats = process_batch(ctx, heartbeat=lambda: False)

    assert stats.users_seen == 0
    assert fake_queue.jobs == []
    assert _reload(db, DBUser, user.id).last_processed_at == datetime(2026, 1, 1)
