#!/usr/bin/env python3
"""Watch a device twin and its telemetry, or send a command.

Usage
-----
Set environment variables and run::

    export DEVTWIN_THING_NAME="pump-01"
    export DEVTWIN_DEVICE_ID="pump-01"
    export DEVTWIN_ACCESS_TOKEN="..."
    python scripts/monitor.py status
    python scripts/monitor.py watch --duration 60
    python scripts/monitor.py set pump ON --wait

Subcommands::

    status               Fetch twin and telemetry once and print them
    watch                Poll both and print every change
    set FIELD VALUE      Write desired FIELD=VALUE (--wait blocks until settled)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pydevtwin import (  # noqa: E402
    DevTwinClient,
    DevTwinConfig,
    DevTwinError,
    FieldStatus,
    FieldTransition,
    TwinAuthError,
)


async def _token_from_env() -> str:
    token = os.environ.get("DEVTWIN_ACCESS_TOKEN", "").strip()
    if not token:
        raise TwinAuthError("DEVTWIN_ACCESS_TOKEN is not set")
    return token


def _section(title: str) -> str:
    line = "=" * 60
    return f"\n{line}\n  {title}\n{line}"


def _format_status(status: FieldStatus) -> str:
    marker = ""
    if status.is_loading:
        marker = "  (pending)"
    elif status.is_unconfirmed:
        marker = "  (unconfirmed)"
    return f"  {status.field:<10} reported={status.display_value!r:<8} desired={status.desired!r:<8} {status.state}{marker}"


def _print_twin(client: DevTwinClient) -> None:
    print(_section(f"TWIN {client.config.thing_name} (version {client.twin.version})"))
    for status in client.reconciler.snapshot().values():
        print(_format_status(status))


def _print_telemetry(client: DevTwinClient) -> None:
    store = client.telemetry
    print(_section(f"TELEMETRY {client.config.device_id} [{store.status}]"))
    if store.latest is None:
        print("  waiting for data")
        return
    for metric in store.metrics:
        print(f"  {metric:<12} {store.latest_value(metric)!r}")
    extent = store.extent()
    if extent is not None:
        print(f"  points       {len(store)} ({extent[0]} .. {extent[1]})")


def _parse_value(raw: str) -> Any:
    """Interpret CLI input as JSON when possible (``5``, ``true``), else as a string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


async def _status(client: DevTwinClient) -> int:
    await client.refresh_twin()
    await client.refresh_telemetry()
    _print_twin(client)
    _print_telemetry(client)
    return 0


async def _watch(client: DevTwinClient, duration: float | None) -> int:
    client.start_polling()
    try:
        if duration is None:
            await client.run()
        else:
            await asyncio.wait_for(client.run(), duration)
    except TimeoutError:
        pass
    finally:
        await client.stop_polling()
    _print_twin(client)
    _print_telemetry(client)
    return 0


async def _set(client: DevTwinClient, field_name: str, value: Any, wait: bool) -> int:
    await client.refresh_twin()
    command = await client.dispatch(field_name, value)
    print(f"desired {command.field}={command.target_value!r} written (generation {command.generation})")
    if not wait:
        return 0
    client.start_polling()
    try:
        status = await client.wait_for_settled(field_name)
    finally:
        await client.stop_polling()
    if status is None:
        print("gave up waiting for the device", file=sys.stderr)
        return 1
    print(_format_status(status))
    return 0 if not status.is_unconfirmed else 1


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Monitor a device twin and its telemetry.")
    parser.add_argument("--thing", help="Thing name (default: DEVTWIN_THING_NAME)")
    parser.add_argument("--device", help="Telemetry device id (default: DEVTWIN_DEVICE_ID)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Fetch once and print")

    watch = sub.add_parser("watch", help="Poll and print transitions")
    watch.add_argument("--duration", type=float, help="Stop after this many seconds")

    set_cmd = sub.add_parser("set", help="Write one desired field")
    set_cmd.add_argument("field")
    set_cmd.add_argument("value")
    set_cmd.add_argument("--wait", action="store_true", help="Wait until the field converges or expires")
    return parser.parse_args()


async def _run(args: argparse.Namespace) -> int:
    overrides: dict[str, Any] = {}
    if args.thing:
        overrides["thing_name"] = args.thing
    if args.device:
        overrides["device_id"] = args.device
    config = DevTwinConfig.from_env(**overrides)

    def _on_transition(transition: FieldTransition) -> None:
        print(f"  {transition.field}: {transition.previous} -> {transition.current}")

    async with DevTwinClient(config, token_provider=_token_from_env, on_transition=_on_transition) as client:
        if args.command == "status":
            return await _status(client)
        if args.command == "watch":
            return await _watch(client, args.duration)
        return await _set(client, args.field, _parse_value(args.value), args.wait)


def main() -> int:
    args = _parse_args()
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)
    try:
        return asyncio.run(_run(args))
    except DevTwinError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
