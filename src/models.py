"""Data models for the kanbin terminal client.

Status keys are the server's: "TODO", "IN_PROGRESS", "DONE". Column ids are
the same strings, so a drop onto a column and a task's status compare
directly. All models are frozen; a changed board is a new snapshot.
"""
from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, List, Mapping, Optional, Tuple

STATUSES: Tuple[str, ...] = ("TODO", "IN_PROGRESS", "DONE")


def sorted_column(tasks: Iterable[Task]) -> List[Task]:
    # sorted() is stable: equal positions keep input order
    return sorted(tasks, key=lambda t: t.position)


@dataclass(frozen=True)
class Board:
    """A board as seen by the client.

    Fields:
        id: Internal server id (never shown to users).
        key: Public, shareable handle used in every URL.
        title: Board title.
        created_at / expires_at: ISO timestamps from the server.
    """
    id: str
    key: str
    title: str
    created_at: str = ""
    expires_at: str = ""

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Board":
        return cls(
            id=str(raw.get('id', '')),
            key=str(raw.get('key', '')),
            title=str(raw.get('title', '')),
            created_at=str(raw.get('created_at') or ''),
            expires_at=str(raw.get('expires_at') or ''),
        )


@dataclass(frozen=True)
class Task:
    """A single task card.

    Fields:
        id: Server-issued id; the client never invents one.
        board_id: Owning board id (the server may omit it).
        status: One of STATUSES.
        position: Ordering key within the status column.
    """
    id: str
    title: str
    status: str = "TODO"
    position: int = 0
    description: str = ""
    board_id: str = ""
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Task":
        return cls(
            id=str(raw['id']),
            title=str(raw.get('title', '')),
            status=str(raw.get('status') or 'TODO'),
            position=int(raw.get('position') or 0),
            description=str(raw.get('description') or ''),
            board_id=str(raw.get('board_id') or ''),
            created_at=str(raw.get('created_at') or ''),
            updated_at=str(raw.get('updated_at') or ''),
        )


@dataclass(frozen=True)
class BoardSnapshot:
    """Cached view of one board: board metadata, its tasks and the validator
    (ETag) the server sent with them. Owned by BoardCache; readers must not
    try to change it.
    """
    board: Board
    tasks: Tuple[Task, ...] = ()
    validator: Optional[str] = None
    fetched_at: float = 0.0

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], validator: Optional[str] = None,
                     fetched_at: float = 0.0) -> "BoardSnapshot":
        tasks = tuple(Task.from_dict(t) for t in payload.get('tasks') or ())
        return cls(board=Board.from_dict(payload), tasks=tasks,
                   validator=validator, fetched_at=fetched_at)

    @property
    def key(self) -> str:
        return self.board.key

    def task(self, task_id: str) -> Optional[Task]:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    def column(self, status: str) -> List[Task]:
        """Tasks in `status`, ordered by position (ties keep insertion order)."""
        return sorted_column(t for t in self.tasks if t.status == status)

    def with_tasks(self, tasks: Iterable[Task]) -> "BoardSnapshot":
        return replace(self, tasks=tuple(tasks))

    def replace_task(self, task_id: str, **changes: Any) -> "BoardSnapshot":
        return self.with_tasks(replace(t, **changes) if t.id == task_id else t for t in self.tasks)

    def without_task(self, task_id: str) -> "BoardSnapshot":
        return self.with_tasks(t for t in self.tasks if t.id != task_id)


@dataclass
class PendingMutation:
    """Rollback record for one optimistic change.

    Created by BoardCache.apply_optimistic, settled exactly once by commit or
    rollback; later calls on a settled handle do nothing.
    """
    key: str
    previous: BoardSnapshot
    applied: BoardSnapshot
    applied_at: float
    generation: int
    settled: bool = field(default=False)
