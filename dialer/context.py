"""Explicit dependencies handed to each engine component."""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy.orm import sessionmaker

from dialer.clock import utcnow
from dialer.logging_config import get_logger


@dataclass
class EngineContext:
    """
    Store, queue, clock and logger used by one scheduling run or one
    outcome event. Tests build their own instead of patching globals.
    """
    session_factory: sessionmaker
    queue: Optional[Any] = None
    clock: Callable[[], datetime] = utcnow
    sleep: Callable[[float], None] = time.sleep
    logger: Any = field(default_factory=lambda: get_logger("dialer"))

    def now(self) -> datetime:
        return self.clock()


def default_context() -> EngineContext:
    """Context wired to the process-wide database and Celery queue."""
    from dialer.database import SessionLocal
    from dialer.scheduler.dispatcher import CeleryJobQueue

    return EngineContext(session_factory=SessionLocal, queue=CeleryJobQueue())
