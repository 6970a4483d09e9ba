"""States and events of a sync cycle and the transitions between them.

:func:`transition` is pure: it only answers "which state follows this
one on that event".  Running a cycle (fetching, merging, pushing,
waiting for the user) is the job of :class:`ledger_sync.sync.engine.SyncEngine`.

A cycle goes::

    idle -> fetching -> merging -> pushing -> success -> idle

with a detour when true conflicts are found::

    merging -> conflict -> awaiting_resolution -> merging

A cycle with nothing to write still passes through ``pushing`` and ends
in ``success``.

Any failure leads to ``error``, which, like ``success``, returns to
``idle`` once reported.
"""

from __future__ import annotations

from enum import StrEnum

from ledger_sync.errors import InvalidTransitionError


class SyncState(StrEnum):
    IDLE = "idle"
    FETCHING = "fetching"
    MERGING = "merging"
    CONFLICT = "conflict"
    AWAITING_RESOLUTION = "awaiting_resolution"
    PUSHING = "pushing"
    SUCCESS = "success"
    ERROR = "error"


class SyncEvent(StrEnum):
    SYNC = "sync"
    FETCHED = "fetched"
    FETCH_FAILED = "fetch_failed"
    MERGED_CLEAN = "merged_clean"
    CONFLICTS_FOUND = "conflicts_found"
    CONFLICTS_REPORTED = "conflicts_reported"
    RESOLVED = "resolved"
    MERGE_FAILED = "merge_failed"
    PUSHED = "pushed"
    IN_SYNC = "in_sync"
    PUSH_FAILED = "push_failed"
    CANCEL = "cancel"
    RESET = "reset"


_TRANSITIONS: dict[SyncState, dict[SyncEvent, SyncState]] = {
    SyncState.IDLE: {
        SyncEvent.SYNC: SyncState.FETCHING,
    },
    SyncState.FETCHING: {
        SyncEvent.FETCHED: SyncState.MERGING,
        SyncEvent.FETCH_FAILED: SyncState.ERROR,
    },
    SyncState.MERGING: {
        SyncEvent.MERGED_CLEAN: SyncState.PUSHING,
        SyncEvent.CONFLICTS_FOUND: SyncState.CONFLICT,
        SyncEvent.MERGE_FAILED: SyncState.ERROR,
    },
    SyncState.CONFLICT: {
        SyncEvent.CONFLICTS_REPORTED: SyncState.AWAITING_RESOLUTION,
    },
    SyncState.AWAITING_RESOLUTION: {
        SyncEvent.RESOLVED: SyncState.MERGING,
    },
    SyncState.PUSHING: {
        SyncEvent.PUSHED: SyncState.SUCCESS,
        SyncEvent.IN_SYNC: SyncState.SUCCESS,
        SyncEvent.PUSH_FAILED: SyncState.ERROR,
    },
    SyncState.SUCCESS: {
        SyncEvent.RESET: SyncState.IDLE,
    },
    SyncState.ERROR: {
        SyncEvent.RESET: SyncState.IDLE,
    },
}

# Cancel only aborts a cycle that has not started writing.
_CANCELLABLE = frozenset(
    {
        SyncState.FETCHING,
        SyncState.MERGING,
        SyncState.CONFLICT,
        SyncState.AWAITING_RESOLUTION,
    }
)

BUSY_STATES = frozenset(SyncState) - {SyncState.IDLE}


def transition(state: SyncState, event: SyncEvent) -> SyncState:
    """Return the state that follows *state* on *event*.

    ``cancel`` is accepted everywhere: it returns a cancellable state to
    ``idle`` and leaves every other state unchanged.

    Raises:
        InvalidTransitionError: If *state* does not accept *event*.
    """
    if event is SyncEvent.CANCEL:
        return SyncState.IDLE if state in _CANCELLABLE else state

    try:
        return _TRANSITIONS[state][event]
    except KeyError:
        raise InvalidTransitionError(
            f"event {event.value!r} is not valid in state {state.value!r}"
        ) from None


def is_cancellable(state: SyncState) -> bool:
    return state in _CANCELLABLE
