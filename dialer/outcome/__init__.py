"""Outcome reconciliation: webhook and state machine."""

from dialer.outcome.processor import OutcomeProcessor

__all__ = ["OutcomeProcessor"]
