"""Turn a drag gesture (active card + drop target) into a task patch.

The drop target is parsed once at the edge into ColumnTarget, CardTarget or
NO_TARGET; resolve_drop never looks at raw ids. Ambiguous or stale input
(unknown card, drop on itself) resolves to an empty patch instead of an error.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
from models import STATUSES, BoardSnapshot
from positions import GAP, between

COLUMN_ALIASES: Dict[str, str] = {
    't': 'TODO',
    'todo': 'TODO',
    'ip': 'IN_PROGRESS',
    'in-progress': 'IN_PROGRESS',
    'in_progress': 'IN_PROGRESS',
    'd': 'DONE',
    'done': 'DONE',
}


@dataclass(frozen=True)
class ColumnTarget:
    status: str


@dataclass(frozen=True)
class CardTarget:
    task_id: str


@dataclass(frozen=True)
class NoTarget:
    pass


NO_TARGET = NoTarget()
DropTarget = Union[ColumnTarget, CardTarget, NoTarget]


def parse_drop_target(raw: Optional[Any]) -> DropTarget:
    """Classify an untyped drop id: column name/alias, card id or nothing."""
    if raw is None:
        return NO_TARGET
    text = str(raw).strip()
    if not text:
        return NO_TARGET
    if text in STATUSES:
        return ColumnTarget(text)
    alias = COLUMN_ALIASES.get(text.lower())
    if alias:
        return ColumnTarget(alias)
    return CardTarget(text)


@dataclass(frozen=True)
class TaskPatch:
    status: Optional[str] = None
    position: Optional[int] = None

    @property
    def is_noop(self) -> bool:
        return self.status is None and self.position is None

    def to_payload(self) -> Dict[str, Any]:
        """Request body for PUT /tasks/{id}: only the fields being changed."""
        payload: Dict[str, Any] = {}
        if self.status is not None:
            payload['status'] = self.status
        if self.position is not None:
            payload['position'] = self.position
        return payload


NOOP = TaskPatch()


def resolve_drop(active_id: str, target: DropTarget, snapshot: BoardSnapshot) -> TaskPatch:
    """Compute the status/position change for dropping `active_id` on `target`.

    Column drop: append after the column's last card (GAP in an empty
    column). Card drop in the same column: land after the target when moving
    down, before it when moving up. Card drop from another column: land
    before the target card.
    """
    active = snapshot.task(active_id)
    if active is None or isinstance(target, NoTarget):
        return NOOP

    over = None
    if isinstance(target, CardTarget):
        if target.task_id == active_id:
            return NOOP
        over = snapshot.task(target.task_id)
        if over is None:
            return NOOP
        target_status = over.status
    else:
        target_status = target.status
        if target_status not in STATUSES:
            return NOOP

    column = snapshot.column(target_status)
    same_column = target_status == active.status

    if over is None:
        if not column:
            position = GAP
        elif same_column and column[-1].id == active.id:
            # already the last card: appending leaves it where it is
            position = active.position
        else:
            position = max(t.position for t in column) + GAP
    elif same_column:
        ids = [t.id for t in column]
        active_idx, over_idx = ids.index(active.id), ids.index(over.id)
        if active_idx < over_idx:
            nxt = column[over_idx + 1] if over_idx + 1 < len(column) else None
            position = between(over.position, nxt.position if nxt else None)
        else:
            prev = column[over_idx - 1] if over_idx > 0 else None
            position = between(prev.position if prev else None, over.position)
    else:
        # active is not in `column` yet; it lands just before the target
        over_idx = [t.id for t in column].index(over.id)
        prev = column[over_idx - 1] if over_idx > 0 else None
        position = between(prev.position if prev else None, over.position)

    return TaskPatch(
        status=target_status if target_status != active.status else None,
        position=position if position != active.position else None,
    )
