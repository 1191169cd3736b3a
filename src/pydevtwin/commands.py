"""Command dispatch.

A command never goes to the device directly: it is written into the twin's
``desired`` map and marked Pending locally.  Confirmation arrives later,
when a twin poll shows ``reported`` caught up (see
:class:`pydevtwin.state.reconciler.Reconciler`).
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime
from typing import Any

from pydevtwin.exceptions import DevTwinError, DispatchError, TwinAuthError, TwinValidationError
from pydevtwin.models._base import JsonScalar, utcnow
from pydevtwin.models.commands import DEFAULT_FIELD_RULES, ChoiceRule, FieldRule, PendingCommand
from pydevtwin.models.twin import TwinAck
from pydevtwin.state.policy import MISSING
from pydevtwin.state.reconciler import Reconciler

_logger = logging.getLogger(__name__)

DesiredWriter = Callable[[dict[str, Any]], Awaitable[TwinAck]]
"""Async callable merging a ``{field: value}`` delta into ``desired``."""


class CommandDispatcher:
    """Validates commands, marks them Pending, and writes ``desired``."""

    def __init__(
        self,
        reconciler: Reconciler,
        write_desired: DesiredWriter,
        *,
        rules: Mapping[str, FieldRule] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._reconciler = reconciler
        self._write_desired = write_desired
        self._rules: Mapping[str, FieldRule] = rules if rules is not None else DEFAULT_FIELD_RULES
        self._clock = clock
        self._generations = itertools.count(1)

    @property
    def rules(self) -> Mapping[str, FieldRule]:
        return self._rules

    def validate(self, field: str, value: Any) -> JsonScalar:
        """Canonical value for *field*; raises before any network call."""
        rule = self._rules.get(field)
        if rule is None:
            known = ", ".join(sorted(self._rules)) or "none"
            raise TwinValidationError(f"unknown field {field!r} (known: {known})", field=field)
        return rule.coerce(field, value)

    async def dispatch(self, field: str, value: Any) -> PendingCommand:
        """Write ``desired[field] = value`` and mark the field Pending.

        The Pending mark is set before the update call is awaited.  If the
        call fails the mark is rolled back; auth failures propagate as-is,
        everything else is raised as :class:`DispatchError`.
        """
        target = self.validate(field, value)
        command = PendingCommand(
            field=field,
            target_value=target,
            issued_at=self._clock(),
            generation=next(self._generations),
        )
        self._reconciler.mark_pending(command)
        _logger.info("Dispatching %s=%r (generation %d)", field, target, command.generation)

        try:
            await self._write_desired({field: target})
        except TwinAuthError:
            self._reconciler.rollback(field, command.generation)
            raise
        except asyncio.CancelledError:
            self._reconciler.rollback(field, command.generation)
            raise
        except DevTwinError as exc:
            self._reconciler.rollback(field, command.generation)
            _logger.warning("Command %s=%r not sent, pending mark rolled back: %s", field, target, exc)
            raise DispatchError(
                f"failed to write desired {field}={target!r}: {exc}",
                field=field,
                value=target,
            ) from exc
        return command

    async def toggle(self, field: str) -> PendingCommand:
        """Flip a two-choice field based on the last reported value.

        Falls back to ``desired`` when nothing has been reported yet.
        """
        rule = self._rules.get(field)
        if not isinstance(rule, ChoiceRule) or len(rule.choices) != 2:
            raise TwinValidationError(f"{field} is not a two-choice field", field=field)
        cache = self._reconciler.cache
        current = cache.reported(field)
        if current is MISSING:
            current = cache.desired(field)
        return await self.dispatch(field, rule.other(current))
