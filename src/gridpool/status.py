"""Work status state machine.

Legal lifecycle::

    Pending -> Assigned -> InProgress -> Completed
                                      -> Failed

Completed and Failed are terminal. Every stored status change goes through
``transition()``, which raises ``TransitionError`` for any edge not in
``TRANSITIONS`` and never mutates anything itself.
"""

from __future__ import annotations

from enum import Enum

from gridpool.errors import SerializationError, TransitionError


class WorkStatus(str, Enum):
    """Status of a work unit. Values are the wire names."""

    PENDING = "Pending"
    ASSIGNED = "Assigned"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkStatus.COMPLETED, WorkStatus.FAILED)

    @property
    def is_held(self) -> bool:
        """True while a worker holds the chunk (Assigned or InProgress)."""
        return self in (WorkStatus.ASSIGNED, WorkStatus.IN_PROGRESS)

    @classmethod
    def parse(cls, value: str) -> WorkStatus:
        """Return the member for wire name *value*.

        Raises:
            SerializationError: If *value* is not a known status name.
        """
        try:
            return cls(value)
        except ValueError as exc:
            known = ", ".join(s.value for s in cls)
            raise SerializationError(
                f"Unknown work status {value!r} (expected one of: {known})"
            ) from exc


TRANSITIONS: dict[WorkStatus, frozenset[WorkStatus]] = {
    WorkStatus.PENDING: frozenset({WorkStatus.ASSIGNED}),
    WorkStatus.ASSIGNED: frozenset({WorkStatus.IN_PROGRESS}),
    WorkStatus.IN_PROGRESS: frozenset({WorkStatus.COMPLETED, WorkStatus.FAILED}),
    WorkStatus.COMPLETED: frozenset(),
    WorkStatus.FAILED: frozenset(),
}


def can_transition(current: WorkStatus, target: WorkStatus) -> bool:
    """Return True if *current* -> *target* is a legal edge."""
    return target in TRANSITIONS[current]


def transition(current: WorkStatus, target: WorkStatus, chunk_id: str = "") -> WorkStatus:
    """Validate the edge *current* -> *target* and return *target*.

    Args:
        current: Status the chunk is in now.
        target: Requested status.
        chunk_id: Used only to make the error message actionable.

    Raises:
        TransitionError: If the edge is not in ``TRANSITIONS``.
    """
    if not can_transition(current, target):
        where = f" for {chunk_id}" if chunk_id else ""
        allowed = ", ".join(sorted(s.value for s in TRANSITIONS[current])) or "none (terminal)"
        raise TransitionError(
            f"Illegal status transition{where}: {current.value} -> {target.value} "
            f"(allowed from {current.value}: {allowed})"
        )
    return target
