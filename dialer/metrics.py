"""Prometheus metrics."""

from prometheus_client import Counter

batch_runs_total = Counter('batch_runs_total', 'Scheduling batch runs', ['result'])
call_jobs_queued_total = Counter('call_jobs_queued_total', 'Call jobs submitted to the queue')
call_jobs_failed_total = Counter('call_jobs_failed_total', 'Call job submissions that failed')
outcome_events_total = Counter('outcome_events_total', 'Outcome webhook events received', ['event_type'])
