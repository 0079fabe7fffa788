"""Outbound call campaign engine."""
