"""Ingestion layer.

Turns raw telemetry rows from the query service into normalized,
time-ordered points for the telemetry store.
"""

__all__: list[str] = []
