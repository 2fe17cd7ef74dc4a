"""Background revalidation and mutation entry points.

SyncController is the only component that talks to the transport. Per board
key it runs IDLE -> FETCHING -> FRESH/STALE, polls stale boards on scheduler
ticks and on focus regained, and routes every write through BoardCache's
optimistic protocol (apply, write, commit or roll back).
"""
from __future__ import annotations
import functools
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, TypeVar
from cache import BoardCache
from drag import TaskPatch, parse_drop_target, resolve_drop
from errors import Expired, KanbinError, NotFound, ValidationFailed, is_retryable
from models import STATUSES, Board, BoardSnapshot, Task
from positions import needs_rebalance, rebalance_patches

log = logging.getLogger(__name__)

T = TypeVar('T')

POLL_INTERVAL = 10.0
STALE_TIME = 5.0
READ_RETRIES = 3
WRITE_RETRIES = 1
READ_RETRY_DELAY = 1.0
WRITE_RETRY_DELAY = 2.0
MAX_RETRY_DELAY = 30.0

TITLE_MAX = 255
DESCRIPTION_MAX = 10000
TASK_LIMIT = 100
EDITABLE_FIELDS = ("title", "description", "status", "position")


class SyncState(Enum):
    IDLE = 'idle'
    FETCHING = 'fetching'
    FRESH = 'fresh'
    STALE = 'stale'


# -------------------- scheduling --------------------
class Scheduler:
    """Timer source owned by the controller (ticks, focus events, sleeps)."""

    def now(self) -> float:
        raise NotImplementedError

    def schedule_tick(self, interval: float, callback: Callable[[], None]) -> None:
        raise NotImplementedError

    def on_focus_regained(self, callback: Callable[[], None]) -> None:
        raise NotImplementedError

    def cancel(self) -> None:
        raise NotImplementedError

    def sleep(self, seconds: float) -> None:
        raise NotImplementedError


@dataclass
class _Tick:
    interval: float
    due: float
    callback: Callable[[], None]


class ManualScheduler(Scheduler):
    """Virtual clock: time only moves through advance() and sleep()."""

    def __init__(self, start: float = 0.0):
        self._now = start
        self._ticks: List[_Tick] = []
        self._focus: List[Callable[[], None]] = []

    def now(self) -> float:
        return self._now

    def schedule_tick(self, interval: float, callback: Callable[[], None]) -> None:
        self._ticks.append(_Tick(interval, self.now() + interval, callback))

    def on_focus_regained(self, callback: Callable[[], None]) -> None:
        self._focus.append(callback)

    def focus_regained(self) -> None:
        for cb in list(self._focus):
            cb()

    def cancel(self) -> None:
        self._ticks.clear()
        self._focus.clear()

    def sleep(self, seconds: float) -> None:
        self._now += seconds

    def advance(self, seconds: float) -> None:
        self._now += seconds
        self.run_pending()

    def run_pending(self) -> None:
        """Fire every tick that has come due, once per tick."""
        now = self.now()
        for tick in list(self._ticks):
            if tick.due <= now:
                tick.due = now + tick.interval
                tick.callback()


class SystemScheduler(ManualScheduler):
    """Wall-clock variant for the terminal: the REPL calls run_pending()."""

    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


# -------------------- results --------------------
@dataclass
class MutationResult:
    """What a mutation entry point hands back to the UI.

    applied_snapshot is the predicted board shown immediately; confirm and
    rollback settle the optimistic change (both are idempotent).
    """
    applied_snapshot: BoardSnapshot
    confirm: Callable[[], None]
    rollback: Callable[[], None]
    task: Optional[Task] = None


def validate_task_fields(title: Optional[str] = None, description: Optional[str] = None,
                         status: Optional[str] = None) -> None:
    if title is not None:
        if not title.strip():
            raise ValidationFailed('Title is required')
        if len(title) > TITLE_MAX:
            raise ValidationFailed(f'Title must be {TITLE_MAX} characters or fewer')
    if description is not None and len(description) > DESCRIPTION_MAX:
        raise ValidationFailed(f'Description must be {DESCRIPTION_MAX:,} characters or fewer')
    if status is not None and status not in STATUSES:
        raise ValidationFailed('Status must be one of: ' + ', '.join(STATUSES))


def _put_task(snapshot: BoardSnapshot, task: Task) -> BoardSnapshot:
    if snapshot.task(task.id) is None:
        return snapshot.with_tasks(snapshot.tasks + (task,))
    return snapshot.with_tasks(task if t.id == task.id else t for t in snapshot.tasks)


class SyncController:
    def __init__(self, transport, cache: Optional[BoardCache] = None,
                 scheduler: Optional[Scheduler] = None,
                 poll_interval: float = POLL_INTERVAL, stale_time: float = STALE_TIME,
                 read_retries: int = READ_RETRIES, write_retries: int = WRITE_RETRIES):
        self.transport = transport
        self.scheduler = scheduler or SystemScheduler()
        self.cache = cache or BoardCache.create(clock=self.scheduler.now)
        self.stale_time = stale_time
        self.read_retries = read_retries
        self.write_retries = write_retries
        self.errors: Dict[str, KanbinError] = {}
        self._states: Dict[str, SyncState] = {}
        self._fresh_until: Dict[str, float] = {}
        self._dirty: Set[str] = set()
        self._watched: Set[str] = set()
        self.scheduler.schedule_tick(poll_interval, self._on_tick)
        self.scheduler.on_focus_regained(self._on_focus)

    # -------------------- state machine --------------------
    def state(self, key: str) -> SyncState:
        state = self._states.get(key, SyncState.IDLE)
        if state is SyncState.FRESH and self.scheduler.now() >= self._fresh_until.get(key, 0.0):
            state = self._states[key] = SyncState.STALE
        return state

    def mark_stale(self, key: str) -> None:
        if self._states.get(key) is SyncState.FETCHING:
            self._dirty.add(key)
        elif key in self._states:
            self._states[key] = SyncState.STALE

    def watch(self, key: str) -> BoardSnapshot:
        """Start showing a board: first load plus background polling."""
        self._watched.add(key)
        return self.revalidate(key)

    def unwatch(self, key: str) -> None:
        """Board view torn down: stop polling and drop any read in flight."""
        self._watched.discard(key)
        self.cache.cancel(key)
        if self._states.get(key) is SyncState.FETCHING:
            self._states[key] = SyncState.STALE

    def close(self) -> None:
        for key in list(self._watched):
            self.unwatch(key)
        self.scheduler.cancel()
        self.cache.dispose()

    def revalidate(self, key: str, force: bool = False) -> BoardSnapshot:
        """Bring `key` up to date unless it is fresh or already being fetched.

        Transient read failures are retried with backoff; on a final failure
        the cached snapshot is left as it was and the error propagates.
        """
        cached = self.cache.read(key)
        state = self.state(key)
        if cached is not None and (state is SyncState.FETCHING or (state is SyncState.FRESH and not force)):
            return cached
        self._states[key] = SyncState.FETCHING
        self._dirty.discard(key)
        generation = self.cache.begin_read(key)
        try:
            snapshot = self._retrying(lambda: self.cache.fetch(key, self.transport),
                                      self.read_retries, READ_RETRY_DELAY)
        except Exception:
            self._states[key] = SyncState.STALE if self.cache.read(key) is not None else SyncState.IDLE
            raise
        self.errors.pop(key, None)
        if not self.cache.is_current(key, generation) or key in self._dirty:
            # a write landed meanwhile; the next tick reconciles it
            self._states[key] = SyncState.STALE
            self._dirty.discard(key)
        else:
            self._states[key] = SyncState.FRESH
            self._fresh_until[key] = self.scheduler.now() + self.stale_time
        return snapshot

    def _on_tick(self) -> None:
        for key in sorted(self._watched):
            if self.cache.has_pending(key):
                continue
            if self.state(key) in (SyncState.STALE, SyncState.IDLE):
                self._refresh_in_background(key)
        self.cache.collect()

    def _on_focus(self) -> None:
        for key in sorted(self._watched):
            if self.state(key) is SyncState.FRESH:
                self._states[key] = SyncState.STALE
            if not self.cache.has_pending(key):
                self._refresh_in_background(key)

    def _refresh_in_background(self, key: str) -> None:
        try:
            self.revalidate(key)
        except KanbinError as exc:
            self.errors[key] = exc
            log.warning('refresh of board %s failed: %s', key, exc.message)
            if isinstance(exc, (NotFound, Expired)):
                self._watched.discard(key)
                self.cache.evict(key)

    # -------------------- mutations --------------------
    def begin_mutation(self, key: str, transform: Callable[[BoardSnapshot], BoardSnapshot]) -> MutationResult:
        handle = self.cache.apply_optimistic(key, transform)
        return MutationResult(
            applied_snapshot=handle.applied,
            confirm=lambda: self.cache.commit(handle),
            rollback=lambda: self.cache.rollback(handle),
        )

    def _mutate(self, key: str, transform: Callable[[BoardSnapshot], BoardSnapshot],
                write: Callable[[], T]) -> Tuple[MutationResult, T]:
        result = self.begin_mutation(key, transform)
        try:
            response = write()
        except Exception:
            result.rollback()
            raise
        result.confirm()
        self.mark_stale(key)
        return result, response

    def _require_task(self, key: str, task_id: str) -> Task:
        snapshot = self.cache.read(key) or self.revalidate(key)
        task = snapshot.task(task_id)
        if task is None:
            raise NotFound(f'Task {task_id} not found')
        return task

    def drop(self, key: str, active_id: str, raw_target: Any) -> Optional[MutationResult]:
        """Drag-and-drop entry point; returns None for gestures that change nothing."""
        snapshot = self.cache.read(key)
        if snapshot is None:
            return None
        patch = resolve_drop(active_id, parse_drop_target(raw_target), snapshot)
        if patch.is_noop:
            return None
        return self.move_task(key, active_id, patch)

    def move_task(self, key: str, task_id: str, patch: TaskPatch) -> Optional[MutationResult]:
        """Write one task's status/position, then renumber its column if it got crowded.

        A failed renumbering is raised to the caller. The move itself has
        already been confirmed by then and stays in place.
        """
        if patch.is_noop:
            return None
        result = self._write_patch(key, task_id, patch.to_payload())
        self._rebalance_column(key, result.task.status)
        return result

    def update_task(self, key: str, task_id: str, **fields: Any) -> MutationResult:
        """Edit title/description (or status/position) of one task."""
        unknown = sorted(set(fields) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationFailed('Cannot update: ' + ', '.join(unknown))
        if not fields:
            raise ValidationFailed('Nothing to update')
        validate_task_fields(fields.get('title'), fields.get('description'), fields.get('status'))
        return self._write_patch(key, task_id, fields)

    def _write_patch(self, key: str, task_id: str, fields: Dict[str, Any]) -> MutationResult:
        self._require_task(key, task_id)
        result, task = self._mutate(
            key,
            lambda snap: snap.replace_task(task_id, **fields),
            lambda: Task.from_dict(self._write(lambda: self.transport.update_task(task_id, fields, key))),
        )
        result.task = task
        self.cache.merge(key, lambda snap: _put_task(snap, task))
        return result

    def _rebalance_column(self, key: str, status: str) -> None:
        """Renumber a crowded column as one optimistic change.

        The PUTs go out in rebalance_patches() order, so the server's column
        keeps its order whichever PUT fails. On failure the whole column is
        rolled back and the board marked stale for the next refresh.
        """
        snapshot = self.cache.read(key)
        if snapshot is None:
            return
        column = snapshot.column(status)
        if not needs_rebalance(column):
            return
        patches = rebalance_patches(column)
        log.info('rebalancing %s column of board %s (%d writes)', status, key, len(patches))

        def renumber(snap: BoardSnapshot) -> BoardSnapshot:
            return snap.with_tasks(replace(t, position=patches[t.id]) if t.id in patches else t
                                   for t in snap.tasks)

        def write_all() -> List[Task]:
            return [Task.from_dict(self._write(functools.partial(
                        self.transport.update_task, task_id, {'position': position}, key)))
                    for task_id, position in patches.items()]

        try:
            _, written = self._mutate(key, renumber, write_all)
        except Exception:
            log.warning('rebalance of board %s failed, column rolled back', key)
            self.mark_stale(key)
            raise
        self.cache.merge(key, lambda snap: functools.reduce(_put_task, written, snap))

    def create_task(self, key: str, title: str, description: str = '', status: str = 'TODO') -> Task:
        """Create a task; the server assigns its id and position.

        There is no optimistic insert (the client cannot invent an id); the
        created task is merged into the cache once the server returns it.
        """
        validate_task_fields(title, description, status)
        snapshot = self.cache.read(key)
        if snapshot is not None and len(snapshot.tasks) >= TASK_LIMIT:
            raise ValidationFailed(f'Task limit reached ({TASK_LIMIT})')
        task = Task.from_dict(self._write(lambda: self.transport.create_task(key, title, description, status)))
        self.cache.merge(key, lambda snap: _put_task(snap, task))
        self.mark_stale(key)
        return task

    def delete_task(self, key: str, task_id: str) -> MutationResult:
        self._require_task(key, task_id)
        result, _ = self._mutate(
            key,
            lambda snap: snap.without_task(task_id),
            lambda: self._write(lambda: self.transport.delete_task(task_id, key)),
        )
        return result

    def create_board(self, title: str) -> Board:
        validate_task_fields(title=title)
        return Board.from_dict(self._write(lambda: self.transport.create_board(title)))

    def delete_board(self, key: str) -> None:
        self._write(lambda: self.transport.delete_board(key))
        self._watched.discard(key)
        self._states.pop(key, None)
        self.errors.pop(key, None)
        self.cache.evict(key)

    # -------------------- retries --------------------
    def _write(self, call: Callable[[], T]) -> T:
        return self._retrying(call, self.write_retries, WRITE_RETRY_DELAY)

    def _retrying(self, call: Callable[[], T], retries: int, base_delay: float) -> T:
        attempt = 0
        while True:
            try:
                return call()
            except KanbinError as exc:
                if not is_retryable(exc) or attempt >= retries:
                    raise
                delay = min(base_delay * (2 ** attempt), MAX_RETRY_DELAY)
                attempt += 1
                log.info('transient failure (%s), retry %d/%d in %.0fs', exc.message, attempt, retries, delay)
                self.scheduler.sleep(delay)
