"""Ordering keys for tasks inside a status column.

Positions are integers spaced GAP apart. A move writes a single task's
position (the midpoint of its new neighbours); only when neighbours get
closer than MIN_GAP is the column renumbered.
"""
from dataclasses import replace
from typing import Dict, Iterable, List, Optional
from models import Task, sorted_column

GAP = 1000
MIN_GAP = 10


def between(before: Optional[int] = None, after: Optional[int] = None) -> int:
    """Position for a task inserted between `before` and `after`.

    Either neighbour may be missing (head or tail of the column). When the
    integer gap has collapsed the result can equal a neighbour; callers
    detect that with needs_rebalance.
    """
    if before is None and after is None:
        return GAP
    if before is None:
        return after // 2
    if after is None:
        return before + GAP
    return (before + after) // 2


def needs_rebalance(tasks: Iterable[Task]) -> bool:
    ordered = sorted_column(tasks)
    return any(b.position - a.position < MIN_GAP for a, b in zip(ordered, ordered[1:]))


def rebalance(tasks: Iterable[Task]) -> List[Task]:
    """Renumber one column to GAP, 2*GAP, ... keeping the current order."""
    return [replace(t, position=(i + 1) * GAP) for i, t in enumerate(sorted_column(tasks))]


def rebalance_patches(tasks: Iterable[Task]) -> Dict[str, int]:
    """task id -> new position, for only the tasks rebalance() would change.

    The dict is in a safe write order: applied one entry at a time, every
    intermediate column keeps its relative order. Tasks moving down the
    number line go first, head to tail; tasks moving up follow, tail to head.
    """
    ordered = sorted_column(tasks)
    renumbered = rebalance(ordered)
    lower = [(new.id, new.position) for old, new in zip(ordered, renumbered) if new.position < old.position]
    higher = [(new.id, new.position) for old, new in zip(ordered, renumbered) if new.position > old.position]
    return dict(lower + higher[::-1])
