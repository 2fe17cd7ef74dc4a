"""Terminal rendering of a board snapshot: three wrapped, colored columns.

Cards are numbered 1..n in display order (TODO, IN_PROGRESS, DONE, each by
position). The numbers are per-render handles the REPL maps back to task ids;
they are never sent to the server.
"""
from typing import Dict, List, Mapping, Optional, Tuple
from models import STATUSES, BoardSnapshot, Task
from theme import color, HEADER_COLOR, STATUS_COLOR, ID_COLOR, EMPTY_COLOR, BOLD
import re, shutil

HEADER_TITLES: Dict[str, str] = {"TODO": "TO DO", "IN_PROGRESS": "IN PROGRESS", "DONE": "DONE"}
MIN_COL_WIDTH = 18
SEP = " | "
ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")


class BoardView:
    def __init__(self, snapshot: BoardSnapshot):
        self.snapshot = snapshot
        self.columns: Dict[str, List[Task]] = {s: snapshot.column(s) for s in STATUSES}
        self.handles: Dict[int, str] = {}
        self._numbers: Dict[str, int] = {}
        n = 1
        for status in STATUSES:
            for task in self.columns[status]:
                self.handles[n] = task.id
                self._numbers[task.id] = n
                n += 1

    # -------------------- handle lookup --------------------
    def task_id(self, number: int) -> Optional[str]:
        return self.handles.get(number)

    def number(self, task_id: str) -> Optional[int]:
        return self._numbers.get(task_id)

    # -------------------- display --------------------
    def header(self) -> List[str]:
        board = self.snapshot.board
        expires = board.expires_at.split('T')[0] if board.expires_at else '?'
        return [
            color(board.title or '<untitled board>', HEADER_COLOR, BOLD),
            f"Key: {color(board.key, ID_COLOR)}  |  Expires: {expires}",
        ]

    def render(self, term_width: Optional[int] = None) -> List[str]:
        if term_width is None:
            term_width = shutil.get_terminal_size((120, 30)).columns
        widths = self._compute_column_widths(term_width)
        wrapped = self._wrap_all_columns(widths)
        return self.header() + [''] + self._render(widths, wrapped)

    def display(self) -> None:
        for line in self.render():
            print(line)

    # ---- width calculation ----
    def _compute_column_widths(self, term_width: int) -> Dict[str, int]:
        sep_total = len(SEP) * (len(STATUSES) - 1)
        desired: Dict[str, int] = {}
        for status in STATUSES:
            longest = len(HEADER_TITLES[status]) + 4
            for t in self.columns[status]:
                prefix, title_text = self._task_segments(t)
                longest = max(longest, len(prefix) + len(title_text))
            desired[status] = max(MIN_COL_WIDTH, longest)
        widths = dict(desired)
        total = sum(widths.values()) + sep_total
        if total > term_width:
            target_space = max(term_width - sep_total, len(STATUSES) * MIN_COL_WIDTH)
            while sum(widths.values()) > target_space:
                widest = max(STATUSES, key=lambda s: widths[s])
                if widths[widest] <= MIN_COL_WIDTH:
                    break
                widths[widest] -= 1
        else:
            extra = term_width - total
            i = 0
            while extra > 0:
                widths[STATUSES[i % len(STATUSES)]] += 1
                extra -= 1
                i += 1
        return widths

    # ---- wrapping ----
    def _wrap_all_columns(self, widths: Mapping[str, int]) -> Dict[str, List[str]]:
        wrapped: Dict[str, List[str]] = {}
        for status in STATUSES:
            if not self.columns[status]:
                wrapped[status] = [color('(empty)', EMPTY_COLOR)]
                continue
            acc: List[str] = []
            for t in self.columns[status]:
                acc.extend(self._wrap_task(t, widths[status]))
            wrapped[status] = acc
        return wrapped

    def _task_segments(self, task: Task) -> Tuple[str, str]:
        prefix = f"{self._numbers[task.id]}. "
        return prefix, task.title if task.title else '<untitled>'

    def _wrap_task(self, task: Task, col_width: int) -> List[str]:
        prefix, title_text = self._task_segments(task)
        limit = max(1, col_width - len(prefix))
        lines_raw: List[str] = []
        current = ''
        for w in title_text.split():
            # hard-split words longer than the column
            while len(w) > limit:
                if current:
                    lines_raw.append(current)
                    current = ''
                lines_raw.append(w[:limit])
                w = w[limit:]
            candidate = w if not current else current + ' ' + w
            if len(candidate) <= limit:
                current = candidate
            else:
                lines_raw.append(current)
                current = w
        if current:
            lines_raw.append(current)
        status_col = STATUS_COLOR.get(task.status, '')
        prefix_colored = color(prefix.rstrip(), ID_COLOR, BOLD) + ' '
        indent = ' ' * len(prefix)
        colored = [(prefix_colored if i == 0 else indent) + color(line, status_col)
                   for i, line in enumerate(lines_raw)]
        return colored if colored else [prefix_colored + color('<empty>', status_col)]

    # ---- rendering ----
    def _render(self, widths: Mapping[str, int], wrapped_lines: Mapping[str, List[str]]) -> List[str]:
        out: List[str] = []
        rows = max(len(wrapped_lines[s]) for s in STATUSES)
        header_cells: List[str] = []
        for s in STATUSES:
            title = f"{HEADER_TITLES[s]} ({len(self.columns[s])})"
            header_cells.append(self._pad(color(title, HEADER_COLOR, BOLD), widths[s]))
        out.append(SEP.join(header_cells))
        out.append(SEP.join(color('-' * widths[s], HEADER_COLOR) for s in STATUSES))
        for r in range(rows):
            row_cells: List[str] = []
            for s in STATUSES:
                col_lines = wrapped_lines[s]
                row_cells.append(self._pad(col_lines[r], widths[s]) if r < len(col_lines) else ' ' * widths[s])
            out.append(SEP.join(row_cells).rstrip())
        return out

    def _pad(self, text: str, width: int) -> str:
        pad = width - self._visible_len(text)
        return text + ' ' * pad if pad > 0 else text

    @staticmethod
    def _visible_len(s: str) -> int:
        return len(ANSI_RE.sub('', s))

    def __str__(self) -> str:
        return (f'Todo: {len(self.columns["TODO"])} tasks, '
                f'In-Progress: {len(self.columns["IN_PROGRESS"])} tasks, '
                f'Done: {len(self.columns["DONE"])} tasks')
