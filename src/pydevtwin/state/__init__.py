"""State layer.

Owns the cached twin document, the per-field reconciliation state machine,
the telemetry series, and the chart window.  Service results are merged
here and nowhere else.
"""
