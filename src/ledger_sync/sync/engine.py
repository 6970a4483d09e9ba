"""Sync engine running one fetch / merge / push cycle at a time.

Coordinates the whole workflow: reading the local store, fetching the
remote partitions, merging, waiting for the caller to settle true
conflicts, committing the changed partitions and finally persisting
the merged set locally.  State changes go through
:func:`ledger_sync.sync.machine.transition`; the engine only drives it.

The engine is owned by its caller.  Blocking work (HTTP, file I/O) runs
in worker threads via ``asyncio.to_thread``.  Local writes made while a
cycle is suspended (e.g. a CLI ``add`` during a conflict prompt) are
read back before the store is replaced and stay pending for the next
cycle.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from ledger_sync.config import Settings
from ledger_sync.converter import export_csv, export_settings
from ledger_sync.errors import (
    InvalidTransitionError,
    MalformedRecordError,
    PartitionFormatError,
    RemoteError,
    StorageError,
)
from ledger_sync.models import AppSettings, Record
from ledger_sync.store import LocalRecordStore
from ledger_sync.sync.hashes import ContentHashStore
from ledger_sync.sync.instruments import merge_settings
from ledger_sync.sync.machine import SyncEvent, SyncState, is_cancellable, transition
from ledger_sync.sync.merge import (
    DEFAULT_CONFLICT_THRESHOLD_MS,
    ConflictResolution,
    MergeResult,
    TrueConflict,
    merge_records,
    sort_newest_first,
)
from ledger_sync.sync.partitions import (
    SETTINGS_PATH,
    day_key_from_filename,
    extend_window,
    filename_for_day,
    group_by_day,
    in_window,
    window_start,
)
from ledger_sync.sync.remote import (
    CommitResult,
    FileUpload,
    RemoteLedger,
    RemoteSnapshot,
    commit_message,
)
from ledger_sync.sync.tracker import ChangeTracker, PendingChanges
from ledger_sync.sync.window import SyncWindowStore

logger = logging.getLogger(__name__)

_RECOVERABLE = (RemoteError, StorageError, PartitionFormatError)


# ------------------------------------------------------------------
# Result / callback models
# ------------------------------------------------------------------


class SyncOutcomeStatus(StrEnum):
    SUCCESS = "success"
    IN_SYNC = "in_sync"
    CANCELLED = "cancelled"
    ERROR = "error"
    REJECTED = "rejected"


@dataclass
class SyncOutcome:
    """What a call to :meth:`SyncEngine.sync` ended with."""

    status: SyncOutcomeStatus
    merge_result: MergeResult | None = None
    commit_result: CommitResult | None = None
    error: BaseException | None = None


@dataclass
class SyncCallbacks:
    """Hooks invoked during a cycle.  Each may be a plain function or a
    coroutine function.

    Attributes:
        on_conflict: Receives the list of true conflicts.  The cycle then
            waits, without a timeout, for :meth:`SyncEngine.resolve_conflicts`
            or :meth:`SyncEngine.cancel`.
        on_success: Receives the merge result and the commit result.
        on_in_sync: Receives the merge result when nothing needed pushing.
        on_error: Receives the exception that ended the cycle.
        on_state_change: Receives the old and new state on every change.
    """

    on_conflict: Callable[[list[TrueConflict]], Any] | None = None
    on_success: Callable[[MergeResult, CommitResult], Any] | None = None
    on_in_sync: Callable[[MergeResult], Any] | None = None
    on_error: Callable[[BaseException], Any] | None = None
    on_state_change: Callable[[SyncState, SyncState], Any] | None = None


async def _invoke(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


@dataclass
class _PushPlan:
    uploads: list[FileUpload] = field(default_factory=list)
    deletions: list[str] = field(default_factory=list)
    records: list[Record] = field(default_factory=list)
    settings: AppSettings | None = None
    # Files the remote already holds with exactly this content.
    confirmed: dict[str, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.uploads and not self.deletions


class _Cancelled(Exception):
    """Raised inside a cycle when a cancel request has been honored."""


# ------------------------------------------------------------------
# Engine
# ------------------------------------------------------------------


class SyncEngine:
    """Runs sync cycles between a local store and a remote ledger.

    Only one cycle runs at a time: a :meth:`sync` or :meth:`load_more`
    call made while a cycle is in flight returns immediately with status
    ``rejected``.

    Args:
        remote: The remote ledger to fetch from and commit to.
        store: The local record store.
        hashes: Content hashes of the last confirmed upload per file.
        tracker: Pending local change bookkeeping.
        conflict_threshold_ms: See :func:`ledger_sync.sync.merge.merge_records`.
        initial_days: Window used when neither the caller nor a previous
            cycle chose one.  ``None`` fetches the whole history.
        include_settings: Also merge and push ``settings.json``.
        window_store: Where the window of the last completed cycle is
            kept between processes.  Without one it lives in memory only.
    """

    def __init__(
        self,
        remote: RemoteLedger,
        store: LocalRecordStore,
        hashes: ContentHashStore,
        tracker: ChangeTracker,
        *,
        conflict_threshold_ms: int = DEFAULT_CONFLICT_THRESHOLD_MS,
        initial_days: int | None = None,
        include_settings: bool = False,
        window_store: SyncWindowStore | None = None,
    ) -> None:
        self._remote = remote
        self._store = store
        self._hashes = hashes
        self._tracker = tracker
        self._threshold_ms = conflict_threshold_ms
        self._initial_days = initial_days
        self._include_settings = include_settings
        self._window_store = window_store

        self._state = SyncState.IDLE
        self._lock = asyncio.Lock()
        self._callbacks = SyncCallbacks()
        self._cancel_requested = False
        self._resolution: asyncio.Future[list[ConflictResolution]] | None = None
        self._pending_conflicts: list[TrueConflict] = []
        self._window_known = False
        self._oldest_day: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings, remote: RemoteLedger) -> SyncEngine:
        """Build an engine whose local files live in ``settings.data_dir``."""
        return cls(
            remote,
            LocalRecordStore(settings.ledger_file),
            ContentHashStore(settings.hashes_file),
            ChangeTracker(settings.pending_file),
            conflict_threshold_ms=settings.conflict_threshold_ms,
            initial_days=settings.initial_days,
            include_settings=settings.sync_settings,
            window_store=SyncWindowStore(settings.window_file),
        )

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def oldest_day(self) -> str | None:
        """First day covered by the last completed cycle (``None`` means
        the whole history, or that no cycle has completed yet)."""
        return self._oldest_day

    @property
    def pending_conflicts(self) -> list[TrueConflict]:
        return list(self._pending_conflicts)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def sync(
        self,
        local_records: Sequence[Record] | None = None,
        callbacks: SyncCallbacks | None = None,
        since_days: int | None = None,
    ) -> SyncOutcome:
        """Run one full cycle.

        Args:
            local_records: Local replica to merge; read from the store
                when omitted.
            callbacks: Hooks for this cycle.
            since_days: Fetch only the last *since_days* days.  When
                omitted the window of the previous cycle is reused, or
                the configured initial window on the first cycle.

        Returns:
            The outcome.  Recoverable failures are reported through
            ``on_error`` and returned with status ``error``.

        Raises:
            MalformedRecordError: If either replica holds malformed
                records; reported through ``on_error`` first.
        """
        if since_days is not None:
            oldest_day = window_start(since_days)
            return await self._run_exclusive(local_records, callbacks, lambda: oldest_day)
        return await self._run_exclusive(local_records, callbacks, self._current_window)

    async def load_more(
        self,
        days: int,
        callbacks: SyncCallbacks | None = None,
    ) -> SyncOutcome:
        """Extend the window *days* further into the past and run a full
        cycle over the extended set."""
        if days < 1:
            raise ValueError(f"cannot extend a window by {days} days")

        def extended() -> str | None:
            current = self._current_window()
            oldest_day = None if current is None else extend_window(current, days)
            logger.info(
                "Loading more history: window now starts at %s", oldest_day or "the beginning"
            )
            return oldest_day

        return await self._run_exclusive(None, callbacks, extended)

    def cancel(self) -> bool:
        """Abort the running cycle if it has not started pushing.

        Returns:
            ``True`` if the cancel request was accepted.  An accepted
            request always ends the cycle without any write.
        """
        if not is_cancellable(self._state):
            if self._state is SyncState.PUSHING:
                logger.info("Cancel ignored: push already in progress")
            return False
        self._cancel_requested = True
        if self._resolution is not None and not self._resolution.done():
            self._resolution.cancel()
        logger.info("Sync cancel requested in state %s", self._state)
        return True

    def resolve_conflicts(self, resolutions: Iterable[ConflictResolution]) -> None:
        """Settle the conflicts the suspended cycle is waiting on.

        Raises:
            InvalidTransitionError: If no cycle is waiting for resolutions.
            ValueError: If a pending conflict has no resolution.
        """
        if self._resolution is None or self._resolution.done():
            raise InvalidTransitionError("no conflicts are awaiting resolution")
        chosen = list(resolutions)
        missing = {c.record_id for c in self._pending_conflicts} - {
            r.record_id for r in chosen
        }
        if missing:
            raise ValueError(f"unresolved conflicts: {', '.join(sorted(missing))}")
        self._resolution.set_result(chosen)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def _current_window(self) -> str | None:
        if not self._window_known and self._window_store is not None:
            saved = self._window_store.load()
            if saved.known:
                self._window_known = True
                self._oldest_day = saved.oldest_day
        if self._window_known:
            return self._oldest_day
        if self._initial_days is None:
            return None
        return window_start(self._initial_days)

    async def _run_exclusive(
        self,
        local_records: Sequence[Record] | None,
        callbacks: SyncCallbacks | None,
        resolve_window: Callable[[], str | None],
    ) -> SyncOutcome:
        if self._lock.locked() or self._state is not SyncState.IDLE:
            logger.info("Sync request rejected: a cycle is already running (%s)", self._state)
            return SyncOutcome(status=SyncOutcomeStatus.REJECTED)

        async with self._lock:
            self._callbacks = callbacks or SyncCallbacks()
            self._cancel_requested = False
            try:
                return await self._run_cycle(local_records, resolve_window)
            except _Cancelled:
                await self._transition(SyncEvent.CANCEL)
                logger.info("Sync cancelled")
                return SyncOutcome(status=SyncOutcomeStatus.CANCELLED)
            finally:
                self._resolution = None
                self._pending_conflicts = []
                if self._state is not SyncState.IDLE:
                    logger.warning("Cycle interrupted in state %s; resetting to idle", self._state)
                    self._state = SyncState.IDLE

    async def _run_cycle(
        self,
        local_records: Sequence[Record] | None,
        resolve_window: Callable[[], str | None],
    ) -> SyncOutcome:
        await self._transition(SyncEvent.SYNC)

        # Fetch
        try:
            oldest_day = await asyncio.to_thread(resolve_window)
            if local_records is None:
                local_records = await asyncio.to_thread(self._store.get_all)
            pending = await asyncio.to_thread(self._tracker.load_pending_changes)
            snapshot = await asyncio.to_thread(
                self._remote.fetch_all_partitions,
                oldest_day=oldest_day,
                extra_days=self._dirty_days(local_records, oldest_day, pending),
                include_settings=self._include_settings,
            )
        except _RECOVERABLE as exc:
            return await self._fail(SyncEvent.FETCH_FAILED, exc)
        self._raise_if_cancelled()
        await self._transition(SyncEvent.FETCHED)

        # Merge
        windowed = [r for r in local_records if snapshot.covers(r.day_key)]
        carried = [r for r in local_records if not snapshot.covers(r.day_key)]
        result = await self._merge(windowed, snapshot.records)
        logger.info("Merged: %s", result.summary())
        self._raise_if_cancelled()

        if result.has_conflicts:
            resolutions = await self._await_resolution(result)
            self._raise_if_cancelled()
            await self._transition(SyncEvent.RESOLVED)
            result = await self._merge(windowed, snapshot.records, resolutions)
            logger.info("Merged with resolutions: %s", result.summary())

        try:
            plan = await asyncio.to_thread(self._plan_push, result, carried, snapshot)
        except StorageError as exc:
            return await self._fail(SyncEvent.MERGE_FAILED, exc)
        self._raise_if_cancelled()
        await self._transition(SyncEvent.MERGED_CLEAN)

        # Push
        commit: CommitResult | None = None
        try:
            if not plan.is_empty:
                commit = await asyncio.to_thread(
                    self._remote.commit_changes,
                    plan.uploads,
                    plan.deletions,
                    commit_message(plan.uploads, plan.deletions),
                    expected_head=snapshot.head_sha,
                )
            await asyncio.to_thread(self._persist, plan, snapshot, local_records, pending)
        except _RECOVERABLE as exc:
            return await self._fail(SyncEvent.PUSH_FAILED, exc)
        self._remember_window(snapshot)

        if commit is None:
            await self._transition(SyncEvent.IN_SYNC)
            logger.info("Already in sync; nothing to push")
            await _invoke(self._callbacks.on_in_sync, result)
            status = SyncOutcomeStatus.IN_SYNC
        else:
            await self._transition(SyncEvent.PUSHED)
            await _invoke(self._callbacks.on_success, result, commit)
            status = SyncOutcomeStatus.SUCCESS
        await self._transition(SyncEvent.RESET)
        return SyncOutcome(status=status, merge_result=result, commit_result=commit)

    async def _merge(
        self,
        local: Sequence[Record],
        remote: Sequence[Record],
        resolutions: Sequence[ConflictResolution] | None = None,
    ) -> MergeResult:
        try:
            return merge_records(
                local, remote, resolutions, conflict_threshold_ms=self._threshold_ms
            )
        except MalformedRecordError as exc:
            await self._fail(SyncEvent.MERGE_FAILED, exc)
            raise

    async def _await_resolution(self, result: MergeResult) -> list[ConflictResolution]:
        await self._transition(SyncEvent.CONFLICTS_FOUND)
        self._pending_conflicts = list(result.true_conflicts)
        self._resolution = asyncio.get_running_loop().create_future()
        logger.info("%d conflict(s) need resolution", len(result.true_conflicts))

        await _invoke(self._callbacks.on_conflict, list(result.true_conflicts))
        self._raise_if_cancelled()
        await self._transition(SyncEvent.CONFLICTS_REPORTED)

        try:
            return await self._resolution
        except asyncio.CancelledError:
            if self._cancel_requested:
                raise _Cancelled() from None
            raise

    def _raise_if_cancelled(self) -> None:
        if self._cancel_requested:
            raise _Cancelled()

    # ------------------------------------------------------------------
    # Push planning and local persistence
    # ------------------------------------------------------------------

    def _plan_push(
        self,
        result: MergeResult,
        carried: list[Record],
        snapshot: RemoteSnapshot,
    ) -> _PushPlan:
        """Work out which partitions changed and must be written.

        Partitions outside the fetched window are never touched.
        """
        plan = _PushPlan(records=sort_newest_first(result.merged + carried))
        by_day = group_by_day(result.merged)

        for day_key in sorted(by_day):
            path = filename_for_day(day_key)
            if not snapshot.covers(day_key):
                logger.warning("Not writing %s: outside the fetched window", path)
                continue
            self._add_upload(plan, path, export_csv(by_day[day_key]), snapshot)

        for path in sorted(snapshot.partition_paths):
            day_key = day_key_from_filename(path)
            if day_key is not None and snapshot.covers(day_key) and day_key not in by_day:
                plan.deletions.append(path)

        if self._include_settings:
            local_settings = self._store.get_settings()
            plan.settings = merge_settings(local_settings, snapshot.settings)
            if plan.settings is not None:
                self._add_upload(plan, SETTINGS_PATH, export_settings(plan.settings), snapshot)

        logger.debug(
            "Push plan: %d upload(s), %d deletion(s)", len(plan.uploads), len(plan.deletions)
        )
        return plan

    def _add_upload(
        self,
        plan: _PushPlan,
        path: str,
        content: str,
        snapshot: RemoteSnapshot,
    ) -> None:
        # A recorded hash never skips a file whose fetched content differs.
        if snapshot.contents.get(path) != content:
            plan.uploads.append(FileUpload(path=path, content=content))
            return
        if self._hashes.should_upload(path, content):
            # Pulled from another device: the remote already holds it.
            plan.confirmed[path] = content
        logger.debug("Skipping unchanged %s", path)

    def _persist(
        self,
        plan: _PushPlan,
        snapshot: RemoteSnapshot,
        cycle_input: Sequence[Record],
        pending: PendingChanges,
    ) -> None:
        if self._window_store is not None:
            self._window_store.save(snapshot.oldest_day)
        records, late = self._with_concurrent_changes(plan.records, cycle_input)

        # Hashes and the tracker only move once the local store holds the
        # merged set.
        self._store.replace_all(records, settings=plan.settings)
        confirmed = dict(plan.confirmed)
        confirmed.update((u.path, u.content) for u in plan.uploads)
        self._hashes.record_many(confirmed)
        self._hashes.forget(plan.deletions)

        self._tracker.discard(pending)
        touched = pending.added | pending.edited | pending.deleted
        for record in late:
            if record.id in touched:
                self._tracker.track_edit(record.id)

    def _with_concurrent_changes(
        self,
        records: list[Record],
        cycle_input: Sequence[Record],
    ) -> tuple[list[Record], list[Record]]:
        """Fold in local writes made while the cycle was running.

        The store is read again.  A record the cycle never saw, or one whose
        ``updated_at`` moved past the version the cycle read, replaces the
        merged copy; it reaches the remote on the next cycle.

        Returns:
            The records to store and the late records among them.
        """
        seen = {r.id: r for r in cycle_input}
        late = [
            r
            for r in self._store.get_all()
            if r.id not in seen or r.updated_at > seen[r.id].updated_at
        ]
        if not late:
            return records, []
        logger.info("Keeping %d local change(s) made during the sync", len(late))
        by_id = {r.id: r for r in records}
        by_id.update((r.id, r) for r in late)
        return sort_newest_first(list(by_id.values())), late

    def _dirty_days(
        self,
        records: Sequence[Record],
        oldest_day: str | None,
        pending: PendingChanges,
    ) -> set[str]:
        """Days before the window that hold local changes not yet pushed."""
        if oldest_day is None:
            return set()
        touched = pending.added | pending.edited | pending.deleted
        return {
            r.day_key
            for r in records
            if r.id in touched and not in_window(r.day_key, oldest_day)
        }

    def _remember_window(self, snapshot: RemoteSnapshot) -> None:
        self._window_known = True
        self._oldest_day = snapshot.oldest_day

    # ------------------------------------------------------------------
    # State handling
    # ------------------------------------------------------------------

    async def _transition(self, event: SyncEvent) -> None:
        old = self._state
        new = transition(old, event)
        self._state = new
        if new is not old:
            logger.debug("Sync state %s -> %s (%s)", old, new, event)
            await _invoke(self._callbacks.on_state_change, old, new)

    async def _fail(self, event: SyncEvent, error: BaseException) -> SyncOutcome:
        await self._transition(event)
        logger.error("Sync failed: %s", error)
        await _invoke(self._callbacks.on_error, error)
        await self._transition(SyncEvent.RESET)
        return SyncOutcome(status=SyncOutcomeStatus.ERROR, error=error)
