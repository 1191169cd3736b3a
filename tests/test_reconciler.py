from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from pydevtwin.models.commands import FieldState, PendingCommand
from pydevtwin.models.twin import TwinDocument
from pydevtwin.state.events import FieldTransition
from pydevtwin.state.reconciler import Reconciler
from pydevtwin.state.twin_cache import TwinCache

T0 = datetime(2026, 1, 1, tzinfo=UTC)


def _doc(desired: dict[str, Any], reported: dict[str, Any], version: int = 1) -> TwinDocument:
    return TwinDocument.from_api({"state": {"desired": desired, "reported": reported}, "version": version})


def _reconciler(timeout: float = 30.0) -> Reconciler:
    return Reconciler(TwinCache(clock=lambda: T0), convergence_timeout=timedelta(seconds=timeout), clock=lambda: T0)


def _command(field: str, value: Any, generation: int = 1, at: datetime = T0) -> PendingCommand:
    return PendingCommand(field=field, target_value=value, issued_at=at, generation=generation)


def test_pending_until_reported_matches() -> None:
    rec = _reconciler()
    rec.mark_pending(_command("pump", "ON"))

    rec.apply(_doc({"pump": "ON"}, {"pump": "OFF"}), T0 + timedelta(seconds=5))
    assert rec.state("pump") is FieldState.PENDING

    transitions = rec.apply(_doc({"pump": "ON"}, {"pump": "ON"}), T0 + timedelta(seconds=10))
    assert rec.state("pump") is FieldState.CONVERGED
    assert [t.current for t in transitions] == [FieldState.CONVERGED]
    assert rec.pending() == {}


def test_expires_exactly_once() -> None:
    rec = _reconciler(timeout=30.0)
    rec.mark_pending(_command("pump", "ON"))

    assert rec.expire(T0 + timedelta(seconds=30)) == []
    first = rec.expire(T0 + timedelta(seconds=31))
    second = rec.expire(T0 + timedelta(seconds=60))

    assert [t.current for t in first] == [FieldState.EXPIRED]
    assert second == []
    assert rec.status("pump").is_unconfirmed


def test_expired_stays_sticky_until_next_dispatch() -> None:
    rec = _reconciler(timeout=1.0)
    rec.mark_pending(_command("pump", "ON"))
    rec.expire(T0 + timedelta(seconds=5))

    # A late confirmation does not silently revive the field.
    rec.apply(_doc({"pump": "ON"}, {"pump": "ON"}), T0 + timedelta(seconds=6))
    assert rec.state("pump") is FieldState.EXPIRED

    rec.mark_pending(_command("pump", "OFF", generation=2, at=T0 + timedelta(seconds=7)))
    assert rec.state("pump") is FieldState.PENDING


def test_first_poll_already_in_sync_is_converged() -> None:
    rec = _reconciler()

    rec.apply(_doc({"pump": "OFF", "interval": 10}, {"pump": "OFF", "interval": 5}))

    assert rec.state("pump") is FieldState.CONVERGED
    assert rec.state("interval") is FieldState.IDLE
    assert rec.pending() == {}


def test_field_only_reported_is_idle() -> None:
    rec = _reconciler()

    rec.apply(_doc({}, {"firmware": "1.2.0"}))

    assert rec.state("firmware") is FieldState.IDLE
    assert rec.status("firmware").reported == "1.2.0"
    assert rec.status("firmware").desired is None


def test_stale_desired_does_not_settle_newer_command() -> None:
    rec = _reconciler()
    rec.mark_pending(_command("pump", "ON", generation=1))
    rec.mark_pending(_command("pump", "OFF", generation=2))

    # The poll still shows the first command's desired value, matched by reported.
    rec.apply(_doc({"pump": "ON"}, {"pump": "ON"}))
    assert rec.state("pump") is FieldState.PENDING
    assert rec.pending()["pump"].target_value == "OFF"

    rec.apply(_doc({"pump": "OFF"}, {"pump": "OFF"}))
    assert rec.state("pump") is FieldState.CONVERGED


def test_float_encoded_interval_report_converges() -> None:
    rec = _reconciler()
    rec.mark_pending(_command("interval", 10))

    rec.apply(_doc({"interval": 10}, {"interval": 10.0}))

    assert rec.state("interval") is FieldState.CONVERGED


def test_boolean_target_does_not_match_integer() -> None:
    rec = _reconciler()
    rec.mark_pending(_command("reset", True))

    rec.apply(_doc({"reset": True, "legacy": 1}, {"reset": True, "legacy": True}))

    assert rec.state("reset") is FieldState.CONVERGED
    assert rec.state("legacy") is FieldState.IDLE


def test_rollback_restores_previous_state() -> None:
    rec = _reconciler()
    rec.apply(_doc({"pump": "OFF"}, {"pump": "OFF"}))
    rec.mark_pending(_command("pump", "ON", generation=1))

    assert rec.rollback("pump", 1) is True
    assert rec.state("pump") is FieldState.CONVERGED
    assert rec.pending() == {}


def test_rollback_of_superseded_command_is_ignored() -> None:
    rec = _reconciler()
    rec.mark_pending(_command("pump", "ON", generation=1))
    rec.mark_pending(_command("pump", "OFF", generation=2))

    assert rec.rollback("pump", 1) is False
    assert rec.pending()["pump"].generation == 2


def test_rollback_of_newer_command_restores_superseded_one() -> None:
    rec = _reconciler()
    rec.mark_pending(_command("pump", "ON", generation=1))
    rec.mark_pending(_command("pump", "OFF", generation=2))

    assert rec.rollback("pump", 2) is True
    assert rec.state("pump") is FieldState.PENDING
    assert rec.pending()["pump"].generation == 1


def test_older_generation_cannot_replace_pending() -> None:
    rec = _reconciler()
    rec.mark_pending(_command("pump", "ON", generation=2))

    with pytest.raises(ValueError):
        rec.mark_pending(_command("pump", "OFF", generation=1))


def test_listeners_receive_transitions_and_can_unsubscribe() -> None:
    rec = _reconciler()
    seen: list[FieldTransition] = []
    remove = rec.add_listener(seen.append)

    rec.mark_pending(_command("pump", "ON"))
    rec.apply(_doc({"pump": "ON"}, {"pump": "ON"}))
    remove()
    rec.mark_pending(_command("pump", "OFF", generation=2))

    assert [(t.previous, t.current) for t in seen] == [
        (FieldState.IDLE, FieldState.PENDING),
        (FieldState.PENDING, FieldState.CONVERGED),
    ]
    assert seen[1].settled
    assert seen[1].target_value == "ON"


def test_failing_listener_does_not_break_reconciliation() -> None:
    rec = _reconciler()

    def _boom(_transition: FieldTransition) -> None:
        raise RuntimeError("listener failed")

    rec.add_listener(_boom)
    rec.mark_pending(_command("pump", "ON"))

    assert rec.state("pump") is FieldState.PENDING


def test_display_value_is_reported_not_optimistic() -> None:
    rec = _reconciler()
    rec.apply(_doc({"pump": "OFF"}, {"pump": "OFF"}))
    rec.mark_pending(_command("pump", "ON"))
    rec.apply(_doc({"pump": "ON"}, {"pump": "OFF"}))

    status = rec.status("pump")
    assert status.display_value == "OFF"
    assert status.desired == "ON"
    assert status.is_loading
