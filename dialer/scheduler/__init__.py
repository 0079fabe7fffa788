"""Scheduling run: eligibility, prioritization, distribution and dispatch."""

from dialer.scheduler.batch import BatchStats, process_batch, run_scheduling_batch

__all__ = ["BatchStats", "process_batch", "run_scheduling_batch"]
