"""Client configuration for pydevtwin."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pydevtwin.exceptions import TwinConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_metrics(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


@dataclasses.dataclass(frozen=True)
class DevTwinConfig:
    """Client configuration.

    Parameters
    ----------
    thing_name : str
        Name of the thing whose twin (shadow) document is polled and updated.
    device_id : str
        Device identifier used by the telemetry service.
    twin_base_url : str
        Base URL of the twin REST service (``/things/{thing}/shadow`` is
        appended).
    telemetry_url : str
        GraphQL endpoint of the telemetry service.
    twin_poll_interval : float
        Seconds between twin polls.
    telemetry_interval : float
        Seconds between telemetry queries.
    telemetry_limit : int
        Number of most recent points requested per telemetry query.  Each
        query replaces the stored series, so this is also the series cap.
    convergence_timeout : float
        Seconds a command may stay Pending before it is marked Expired.
    request_timeout : float
        Total timeout for a single HTTP request.
    telemetry_metrics : tuple[str, ...]
        Metric field names selected from the telemetry service.
    credentials_ttl : float
        Seconds a bearer token from the token provider is reused before the
        provider is asked again.  ``0`` asks on every session start only.
    api_trace_enabled : bool
        Log redacted request/response bodies at DEBUG level.
    """

    thing_name: str
    device_id: str
    twin_base_url: str = "http://localhost:8443"
    telemetry_url: str = "http://localhost:8080/graphql"
    twin_poll_interval: float = 5.0
    telemetry_interval: float = 5.0
    telemetry_limit: int = 50
    convergence_timeout: float = 30.0
    request_timeout: float = 10.0
    telemetry_metrics: tuple[str, ...] = ("temperature", "humidity")
    credentials_ttl: float = 3600.0
    api_trace_enabled: bool = False

    def validate(self) -> None:
        """Raise :class:`TwinConfigError` if the configuration is unusable."""
        if not self.thing_name.strip():
            raise TwinConfigError("thing_name must be non-empty")
        if not self.device_id.strip():
            raise TwinConfigError("device_id must be non-empty")
        for name in ("twin_poll_interval", "telemetry_interval", "convergence_timeout", "request_timeout"):
            if getattr(self, name) <= 0:
                raise TwinConfigError(f"{name} must be positive, got {getattr(self, name)}")
        if self.telemetry_limit < 1:
            raise TwinConfigError(f"telemetry_limit must be >= 1, got {self.telemetry_limit}")
        if not self.telemetry_metrics:
            raise TwinConfigError("telemetry_metrics must name at least one metric")

    @classmethod
    def from_env(cls, **overrides: Any) -> DevTwinConfig:
        """Create configuration from environment variables.

        Reads ``DEVTWIN_THING_NAME``, ``DEVTWIN_DEVICE_ID`` and the optional
        ``DEVTWIN_*`` variables listed below.  Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        DevTwinConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "DEVTWIN_THING_NAME": "thing_name",
            "DEVTWIN_DEVICE_ID": "device_id",
            "DEVTWIN_TWIN_BASE_URL": "twin_base_url",
            "DEVTWIN_TELEMETRY_URL": "telemetry_url",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_FLOAT_MAP = {
            "DEVTWIN_TWIN_POLL_INTERVAL": "twin_poll_interval",
            "DEVTWIN_TELEMETRY_INTERVAL": "telemetry_interval",
            "DEVTWIN_CONVERGENCE_TIMEOUT": "convergence_timeout",
            "DEVTWIN_REQUEST_TIMEOUT": "request_timeout",
            "DEVTWIN_CREDENTIALS_TTL": "credentials_ttl",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                try:
                    config_kwargs[field_name] = float(val)
                except ValueError as exc:
                    raise TwinConfigError(f"{env_key} must be a number, got {val!r}") from exc

        limit_env = env.get("DEVTWIN_TELEMETRY_LIMIT")
        if limit_env is not None and "telemetry_limit" not in overrides:
            try:
                config_kwargs["telemetry_limit"] = int(limit_env)
            except ValueError as exc:
                raise TwinConfigError(f"DEVTWIN_TELEMETRY_LIMIT must be an integer, got {limit_env!r}") from exc

        metrics_env = env.get("DEVTWIN_TELEMETRY_METRICS")
        if metrics_env is not None and "telemetry_metrics" not in overrides:
            config_kwargs["telemetry_metrics"] = _env_metrics(metrics_env)

        if "api_trace_enabled" not in overrides:
            config_kwargs["api_trace_enabled"] = _env_bool(
                env.get("DEVTWIN_API_TRACE_ENABLED"),
                False,
            )

        config_kwargs.update(overrides)
        if "telemetry_metrics" in config_kwargs:
            config_kwargs["telemetry_metrics"] = tuple(config_kwargs["telemetry_metrics"])

        missing = [name for name in ("thing_name", "device_id") if name not in config_kwargs]
        if missing:
            raise TwinConfigError(f"missing required configuration: {', '.join(missing)}")

        return cls(**config_kwargs)
