"""In-memory store of board snapshots, one entry per board key.

Rules kept here:
- a snapshot is replaced as a whole, never edited (readers may hold it);
- a read started before an optimistic write (or a cancel) for the same key
  is stale and its result is dropped;
- rollback puts back the exact object captured by apply_optimistic.
"""
from __future__ import annotations
import logging
import time
from typing import Callable, Dict, List, Optional
from errors import Transient
from models import BoardSnapshot, PendingMutation

log = logging.getLogger(__name__)

DEFAULT_IDLE_HORIZON = 300.0

Listener = Callable[[str, Optional[BoardSnapshot]], None]


class BoardCache:
    def __init__(self, clock: Callable[[], float] = time.monotonic,
                 idle_horizon: float = DEFAULT_IDLE_HORIZON):
        self.clock = clock
        self.idle_horizon = idle_horizon
        self._entries: Dict[str, BoardSnapshot] = {}
        self._generations: Dict[str, int] = {}
        self._last_used: Dict[str, float] = {}
        self._pending: Dict[str, int] = {}
        self._listeners: List[Listener] = []

    @classmethod
    def create(cls, clock: Callable[[], float] = time.monotonic,
               idle_horizon: float = DEFAULT_IDLE_HORIZON) -> "BoardCache":
        return cls(clock=clock, idle_horizon=idle_horizon)

    def dispose(self) -> None:
        self._entries.clear()
        self._generations.clear()
        self._last_used.clear()
        self._pending.clear()
        self._listeners.clear()

    # -------------------- reads --------------------
    def read(self, key: str) -> Optional[BoardSnapshot]:
        snap = self._entries.get(key)
        if snap is not None:
            self._last_used[key] = self.clock()
        return snap

    def keys(self) -> List[str]:
        return list(self._entries)

    def begin_read(self, key: str) -> int:
        """Token for a read about to start; pass it back to store()."""
        return self._generations.get(key, 0)

    def has_pending(self, key: str) -> bool:
        """True while an optimistic change on `key` awaits commit or rollback."""
        return bool(self._pending.get(key))

    def is_current(self, key: str, generation: int) -> bool:
        return generation == self._generations.get(key, 0)

    def store(self, key: str, snapshot: BoardSnapshot, generation: Optional[int] = None) -> Optional[BoardSnapshot]:
        """Install a server snapshot unless the read it came from is stale.

        Returns whatever the cache holds for `key` afterwards.
        """
        if generation is not None and not self.is_current(key, generation):
            log.debug('dropping superseded read for board %s', key)
            return self._entries.get(key)
        self._replace(key, snapshot)
        return snapshot

    def fetch(self, key: str, transport) -> BoardSnapshot:
        """Conditional read of `key` through `transport.get_board(key, etag)`.

        304 returns the cached object itself. A 304 with nothing cached means
        the validator is useless locally, so it is dropped and the board is
        read once more without it.
        """
        generation = self.begin_read(key)
        current = self._entries.get(key)
        etag = current.validator if current is not None else None
        result = transport.get_board(key, etag)
        if result.not_modified:
            current = self._entries.get(key)
            if current is not None:
                self._last_used[key] = self.clock()
                return current
            log.info('board %s: 304 without a cached copy, refetching unconditionally', key)
            result = transport.get_board(key, None)
            if result.not_modified:
                raise Transient(f'Server answered 304 to an unconditional read of board {key}')
        snapshot = BoardSnapshot.from_payload(result.payload or {}, validator=result.etag,
                                              fetched_at=self.clock())
        stored = self.store(key, snapshot, generation)
        return stored if stored is not None else snapshot

    # -------------------- optimistic writes --------------------
    def apply_optimistic(self, key: str,
                         transform: Callable[[BoardSnapshot], BoardSnapshot]) -> PendingMutation:
        current = self._entries.get(key)
        if current is None:
            raise KeyError(f'board {key} is not cached')
        applied = transform(current)
        gen = self._generations.get(key, 0) + 1
        self._generations[key] = gen
        self._pending[key] = self._pending.get(key, 0) + 1
        self._replace(key, applied)
        return PendingMutation(key=key, previous=current, applied=applied,
                               applied_at=self.clock(), generation=gen)

    def commit(self, handle: PendingMutation) -> None:
        if handle.settled:
            return
        handle.settled = True
        self._release(handle.key)

    def rollback(self, handle: PendingMutation) -> None:
        if handle.settled:
            return
        handle.settled = True
        self._release(handle.key)
        if handle.key not in self._entries:
            return
        log.info('rolling back optimistic change on board %s', handle.key)
        self._replace(handle.key, handle.previous)

    def merge(self, key: str, transform: Callable[[BoardSnapshot], BoardSnapshot]) -> Optional[BoardSnapshot]:
        """Fold a confirmed server result into the cached snapshot.

        Does not bump the generation: the data came from the server.
        """
        current = self._entries.get(key)
        if current is None:
            return None
        updated = transform(current)
        self._replace(key, updated)
        return updated

    # -------------------- lifecycle --------------------
    def cancel(self, key: str) -> None:
        """Make any read in flight for `key` land as stale."""
        self._generations[key] = self._generations.get(key, 0) + 1

    def evict(self, key: str) -> None:
        self.cancel(key)
        self._last_used.pop(key, None)
        if self._entries.pop(key, None) is not None:
            self._notify(key, None)

    def collect(self, now: Optional[float] = None) -> List[str]:
        """Evict entries idle for longer than idle_horizon; returns evicted keys."""
        now = self.clock() if now is None else now
        idle = [k for k, used in self._last_used.items()
                if now - used > self.idle_horizon and not self._pending.get(k)]
        for key in idle:
            self.evict(key)
        return idle

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    # -------------------- internals --------------------
    def _replace(self, key: str, snapshot: BoardSnapshot) -> None:
        previous = self._entries.get(key)
        self._entries[key] = snapshot
        self._last_used[key] = self.clock()
        if previous is not snapshot:
            self._notify(key, snapshot)

    def _release(self, key: str) -> None:
        left = self._pending.get(key, 0) - 1
        if left > 0:
            self._pending[key] = left
        else:
            self._pending.pop(key, None)

    def _notify(self, key: str, snapshot: Optional[BoardSnapshot]) -> None:
        for listener in list(self._listeners):
            listener(key, snapshot)
