"""Pending/convergence state machine.

This is the only component allowed to change a field's reconciliation
state.  Per field::

    Idle -> Pending -> {Converged | Expired}

Fields without a pending command follow the cached twin: Converged when
``desired == reported``, Idle otherwise.  Expired is sticky until the next
command for the field.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from pydevtwin.models._base import utcnow
from pydevtwin.models.commands import FieldState, FieldStatus, PendingCommand
from pydevtwin.models.twin import TwinDocument
from pydevtwin.state.events import FieldTransition
from pydevtwin.state.policy import MISSING, has_converged, is_expired, is_in_sync
from pydevtwin.state.twin_cache import TwinCache

_logger = logging.getLogger(__name__)

TransitionListener = Callable[[FieldTransition], None]


@dataclass(slots=True)
class _FieldEntry:
    state: FieldState = FieldState.IDLE
    pending: PendingCommand | None = None
    changed_at: datetime | None = None
    # What a rollback restores: the entry as it was before the last dispatch.
    prior_state: FieldState = FieldState.IDLE
    prior_pending: PendingCommand | None = None


class Reconciler:
    """Compares polled twin documents against outstanding commands.

    Deterministic: given the same sequence of commands, documents and clock
    readings it produces the same transitions.
    """

    def __init__(
        self,
        cache: TwinCache,
        *,
        convergence_timeout: timedelta = timedelta(seconds=30),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._cache = cache
        self._timeout = convergence_timeout
        self._clock = clock
        self._entries: dict[str, _FieldEntry] = {}
        self._listeners: list[TransitionListener] = []

    @property
    def cache(self) -> TwinCache:
        return self._cache

    @property
    def convergence_timeout(self) -> timedelta:
        return self._timeout

    def add_listener(self, listener: TransitionListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _entry(self, field: str) -> _FieldEntry:
        entry = self._entries.get(field)
        if entry is None:
            entry = _FieldEntry()
            self._entries[field] = entry
        return entry

    def _move(
        self,
        field: str,
        entry: _FieldEntry,
        state: FieldState,
        now: datetime,
        *,
        pending: PendingCommand | None = None,
    ) -> FieldTransition:
        previous = entry.state
        reference = pending or entry.pending
        entry.state = state
        entry.pending = pending
        entry.changed_at = now
        transition = FieldTransition(
            field=field,
            previous=previous,
            current=state,
            target_value=reference.target_value if reference is not None else None,
            generation=reference.generation if reference is not None else None,
            observed_at=now,
        )
        _logger.debug("Field %s: %s -> %s", field, previous, state)
        return transition

    def _notify(self, transitions: list[FieldTransition]) -> None:
        for transition in transitions:
            for listener in list(self._listeners):
                try:
                    listener(transition)
                except Exception:
                    _logger.debug("Transition listener failed for %s", transition.field, exc_info=True)

    def mark_pending(self, command: PendingCommand) -> FieldTransition:
        """Record *command* as the field's outstanding command.

        A command already pending for the same field is replaced
        (last-write-wins); nothing is sent to cancel it.
        """
        entry = self._entry(command.field)
        if entry.pending is not None and entry.pending.generation > command.generation:
            raise ValueError(
                f"command generation {command.generation} is older than pending {entry.pending.generation}"
            )
        entry.prior_state = entry.state
        entry.prior_pending = entry.pending
        transition = self._move(command.field, entry, FieldState.PENDING, self._clock(), pending=command)
        self._notify([transition])
        return transition

    def rollback(self, field: str, generation: int) -> bool:
        """Undo the Pending mark of the command with *generation*.

        Only the field's current command can be rolled back, so a failed
        superseded command never clears a newer one.  Returns whether
        anything changed.
        """
        entry = self._entries.get(field)
        if entry is None or entry.pending is None or entry.pending.generation != generation:
            return False
        prior_state, prior_pending = entry.prior_state, entry.prior_pending
        entry.prior_state, entry.prior_pending = FieldState.IDLE, None
        if prior_state is FieldState.PENDING and prior_pending is None:
            prior_state = FieldState.IDLE
        transition = self._move(field, entry, prior_state, self._clock(), pending=prior_pending)
        self._notify([transition])
        return True

    def apply(self, document: TwinDocument, now: datetime | None = None) -> list[FieldTransition]:
        """Refresh the cache from a poll result and settle converged commands."""
        current = now if now is not None else self._clock()
        self._cache.replace(document)

        transitions: list[FieldTransition] = []
        for field in sorted(self._cache.field_names() | set(self._entries)):
            desired = self._cache.desired(field)
            reported = self._cache.reported(field)
            entry = self._entries.get(field)

            if entry is not None and entry.state is FieldState.PENDING and entry.pending is not None:
                if has_converged(target=entry.pending.target_value, desired=desired, reported=reported):
                    transitions.append(self._move(field, entry, FieldState.CONVERGED, current))
                continue

            if entry is not None and entry.state is FieldState.EXPIRED:
                continue

            if desired is MISSING and reported is MISSING:
                continue

            target_state = FieldState.CONVERGED if is_in_sync(desired, reported) else FieldState.IDLE
            entry = self._entry(field)
            if entry.state is not target_state:
                transitions.append(self._move(field, entry, target_state, current))

        self._notify(transitions)
        return transitions

    def expire(self, now: datetime | None = None) -> list[FieldTransition]:
        """Move every Pending field older than the timeout to Expired.

        A field expires exactly once; Expired never re-enters Pending on
        its own.
        """
        current = now if now is not None else self._clock()
        transitions: list[FieldTransition] = []
        for field, entry in sorted(self._entries.items()):
            if entry.state is not FieldState.PENDING or entry.pending is None:
                continue
            if is_expired(current, entry.pending.issued_at, self._timeout):
                _logger.info(
                    "No confirmation for %s=%r after %.0fs",
                    field,
                    entry.pending.target_value,
                    self._timeout.total_seconds(),
                )
                transitions.append(self._move(field, entry, FieldState.EXPIRED, current, pending=entry.pending))
        self._notify(transitions)
        return transitions

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def state(self, field: str) -> FieldState:
        entry = self._entries.get(field)
        return entry.state if entry is not None else FieldState.IDLE

    def pending(self) -> dict[str, PendingCommand]:
        """Outstanding commands keyed by field."""
        return {
            field: entry.pending
            for field, entry in self._entries.items()
            if entry.state is FieldState.PENDING and entry.pending is not None
        }

    def status(self, field: str) -> FieldStatus:
        entry = self._entries.get(field)
        desired = self._cache.desired(field)
        reported = self._cache.reported(field)
        return FieldStatus(
            field=field,
            state=entry.state if entry is not None else FieldState.IDLE,
            desired=None if desired is MISSING else desired,
            reported=None if reported is MISSING else reported,
            pending=entry.pending if entry is not None else None,
            changed_at=entry.changed_at if entry is not None else None,
        )

    def snapshot(self) -> dict[str, FieldStatus]:
        fields = self._cache.field_names() | set(self._entries)
        return {field: self.status(field) for field in sorted(fields)}
