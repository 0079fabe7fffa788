"""
Single-flight guard for scheduling runs.

A process-local lock stops overlapping runs inside one worker; a lease row in
`run_leases` stops overlapping runs across workers. The holder renews the
lease as it goes, so the TTL only has to cover the gap between renewals and a
killed run stops blocking scheduling soon after.
"""

import os
import socket
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Iterator, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from dialer.clock import utcnow
from dialer.config import config
from dialer.db_models import DBRunLease
from dialer.logging_config import get_logger

logger = get_logger(__name__)


class RunGuard:
    """Mutual exclusion for a named periodic run."""

    def __init__(
        self,
        session_factory: sessionmaker,
        name: str = "scheduling-batch",
        lease_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.name = name
        self.lease_seconds = lease_seconds if lease_seconds is not None else config.RUN_LEASE_SECONDS
        self.clock = clock
        self.holder = f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"
        self._lock = threading.Lock()

    def acquire(self) -> bool:
        if not self._lock.acquire(blocking=False):
            return False
        try:
            acquired = self._acquire_lease()
        except Exception:
            self._lock.release()
            raise
        if not acquired:
            self._lock.release()
        return acquired

    def release(self) -> None:
        db = self.session_factory()
        try:
            db.query(DBRunLease).filter(
                DBRunLease.name == self.name,
                DBRunLease.holder == self.holder,
            ).delete(synchronize_session=False)
            db.commit()
        finally:
            db.close()
            self._lock.release()

    def renew(self) -> bool:
        """Push the lease expiry forward; False when the lease is no longer ours."""
        expires_at = self.clock() + timedelta(seconds=self.lease_seconds)
        db = self.session_factory()
        try:
            renewed = (
                db.query(DBRunLease)
                .filter(DBRunLease.name == self.name, DBRunLease.holder == self.holder)
                .update({"expires_at": expires_at}, synchronize_session=False)
            )
            db.commit()
        finally:
            db.close()
        if not renewed:
            logger.warning("run_lease_lost", name=self.name, holder=self.holder)
        return bool(renewed)

    @contextmanager
    def hold(self) -> Iterator[bool]:
        """Yield True when the run may proceed; the guard is released on exit."""
        acquired = self.acquire()
        try:
            yield acquired
        finally:
            if acquired:
                self.release()

    def _acquire_lease(self) -> bool:
        now = self.clock()
        expires_at = now + timedelta(seconds=self.lease_seconds)
        db = self.session_factory()
        try:
            # Take over an expired lease.
            taken = (
                db.query(DBRunLease)
                .filter(DBRunLease.name == self.name, DBRunLease.expires_at <= now)
                .update({"holder": self.holder, "expires_at": expires_at}, synchronize_session=False)
            )
            if taken:
                db.commit()
                logger.debug("run_lease_acquired", name=self.name, holder=self.holder, takeover=True)
                return True

            if db.get(DBRunLease, self.name) is not None:
                db.rollback()
                return False

            db.add(DBRunLease(name=self.name, holder=self.holder, expires_at=expires_at))
            db.commit()
            logger.debug("run_lease_acquired", name=self.name, holder=self.holder, takeover=False)
            return True
        except IntegrityError:
            # Another worker inserted the lease first.
            db.rollback()
            return False
        finally:
            db.close()
