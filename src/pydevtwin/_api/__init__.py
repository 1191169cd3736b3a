"""Service endpoint modules (twin document and telemetry query)."""
