"""Command-line interface: one-shot commands and the interactive board shell.

Every redraw of the shell counts as the board regaining focus, so a stale
board is revalidated (cheaply, with If-None-Match) before it is shown.
"""
from __future__ import annotations
import functools
import logging
import os
import sys
from dataclasses import dataclass
from typing import Callable, List, Optional
import click
from board import BoardView
from cache import BoardCache
from client import ApiClient
from config import ConfigStore, Settings, load_settings
from drag import COLUMN_ALIASES
from errors import Expired, KanbinError, NotFound
from models import STATUSES
from sync import SyncController, SystemScheduler
from theme import ERROR_COLOR, color

log = logging.getLogger(__name__)

# --- terminal control helpers ---
# ESC[3J (scrollback), ESC[H (home), ESC[2J (screen), ESC[H (home); 3J first
# is more reliable in some terminals.
def _clear_screen() -> None:
    print("\033[3J\033[H\033[2J\033[H", end="", flush=True)


def _truthy_env(value: Optional[str], default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off", ""}


def _enter_alt_screen() -> None:
    print("\033[?1049h", end="", flush=True)


def _leave_alt_screen() -> None:
    print("\033[?1049l", end="", flush=True)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def describe(error: KanbinError) -> str:
    if isinstance(error, Expired):
        if "expired" in error.message.lower():
            return error.message
        return f"Board has expired ({error.message})"
    if isinstance(error, NotFound):
        return f"Not found: {error.message}"
    return error.message


def surface_errors(func: Callable) -> Callable:
    """Turn KanbinError into a click error (message on stderr, exit code 1)."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except KanbinError as exc:
            log.debug("command failed", exc_info=True)
            raise click.ClickException(describe(exc)) from exc
    return wrapper


@dataclass
class AppContext:
    settings: Settings
    store: ConfigStore
    controller_factory: Callable[[Settings], SyncController]
    _controller: Optional[SyncController] = None

    @property
    def controller(self) -> SyncController:
        if self._controller is None:
            self._controller = self.controller_factory(self.settings)
        return self._controller

    def resolve_key(self, key: Optional[str]) -> str:
        key = key or self.store.load().get('last_board')
        if not key:
            raise click.UsageError("Board key is required (no board opened before).")
        return key


def build_controller(settings: Settings) -> SyncController:
    scheduler = SystemScheduler()
    return SyncController(
        ApiClient(settings.server_url, settings.timeout),
        cache=BoardCache.create(clock=scheduler.now, idle_horizon=settings.idle_horizon),
        scheduler=scheduler,
        poll_interval=settings.poll_interval,
        stale_time=settings.stale_time,
    )


def parse_status(value: str) -> str:
    status = value if value in STATUSES else COLUMN_ALIASES.get(value.lower())
    if not status:
        raise click.BadParameter(f"unknown status {value!r}; use TODO, IN_PROGRESS, DONE (or t/ip/d)")
    return status


# -------------------- one-shot commands --------------------
@click.group()
@click.option('--server', '-s', default=None, help='Backend server URL (overrides KANBIN_URL).')
@click.option('--verbose', '-v', count=True, help='-v for info, -vv for debug logging.')
@click.pass_context
def kanbin(ctx: click.Context, server: Optional[str], verbose: int) -> None:
    """Kanbin: ephemeral key-based kanban boards in the terminal."""
    if ctx.obj is None:
        store = ConfigStore()
        settings = load_settings(server_url=server, store=store)
        ctx.obj = AppContext(settings, store, build_controller)
    level = {0: ctx.obj.settings.log_level, 1: 'INFO'}.get(verbose, 'DEBUG')
    configure_logging(level)


@kanbin.group()
def board() -> None:
    """Manage boards."""


@board.command('create')
@click.argument('title')
@click.pass_obj
@surface_errors
def board_create(app: AppContext, title: str) -> None:
    created = app.controller.create_board(title)
    app.store.update(last_board=created.key)
    click.echo("Board created successfully!")
    click.echo(f"Title:   {created.title}")
    click.echo(f"Key:     {created.key}")
    click.echo(f"Expires: {created.expires_at}")


@board.command('view')
@click.argument('key', required=False)
@click.pass_obj
@surface_errors
def board_view(app: AppContext, key: Optional[str]) -> None:
    key = app.resolve_key(key)
    snapshot = app.controller.watch(key)
    for line in BoardView(snapshot).render():
        click.echo(line)


@board.command('delete')
@click.argument('key')
@click.option('--yes', is_flag=True, help='Do not ask for confirmation.')
@click.pass_obj
@surface_errors
def board_delete(app: AppContext, key: str, yes: bool) -> None:
    if not yes:
        click.confirm("This deletes the board and all its tasks immediately. Continue?", abort=True)
    app.controller.delete_board(key)
    data = app.store.load()
    if data.get("last_board") == key:
        del data["last_board"]
        app.store.save(data)
    click.echo(f"Board {key} deleted.")


@kanbin.group()
def task() -> None:
    """Manage tasks on a board."""


@task.command('add')
@click.argument('title')
@click.option('--board', 'key', default=None, help='Board key (defaults to the last board).')
@click.option('--description', '-d', default='', help='Optional description.')
@click.option('--status', default='TODO', help='TODO, IN_PROGRESS or DONE.')
@click.pass_obj
@surface_errors
def task_add(app: AppContext, title: str, key: Optional[str], description: str, status: str) -> None:
    key = app.resolve_key(key)
    created = app.controller.create_task(key, title, description, parse_status(status))
    click.echo(f"Task [{created.id}] added: {created.title}")


@task.command('list')
@click.option('--board', 'key', default=None, help='Board key (defaults to the last board).')
@click.pass_obj
@surface_errors
def task_list(app: AppContext, key: Optional[str]) -> None:
    key = app.resolve_key(key)
    snapshot = app.controller.watch(key)
    if not snapshot.tasks:
        click.echo("No tasks on this board.")
        return
    for status in STATUSES:
        for t in snapshot.column(status):
            click.echo(f"[{t.status}] {t.id} | {t.title}")


@task.command('move')
@click.argument('task_id')
@click.argument('target')
@click.option('--board', 'key', default=None, help='Board key (defaults to the last board).')
@click.pass_obj
@surface_errors
def task_move(app: AppContext, task_id: str, target: str, key: Optional[str]) -> None:
    """Drop TASK_ID onto TARGET: a column (TODO/IN_PROGRESS/DONE, t/ip/d) or another task id."""
    key = app.resolve_key(key)
    app.controller.watch(key)
    result = app.controller.drop(key, task_id, target)
    if result is None:
        click.echo("Nothing to move.")
        return
    moved = result.task
    click.echo(f"Task {task_id} moved to {moved.status} (position {moved.position}).")


@task.command('delete')
@click.argument('task_id')
@click.option('--board', 'key', default=None, help='Board key (defaults to the last board).')
@click.pass_obj
@surface_errors
def task_delete(app: AppContext, task_id: str, key: Optional[str]) -> None:
    key = app.resolve_key(key)
    app.controller.watch(key)
    app.controller.delete_task(key, task_id)
    click.echo(f"Task {task_id} deleted.")


@kanbin.command('open')
@click.argument('key', required=False)
@click.pass_obj
@surface_errors
def open_board(app: AppContext, key: Optional[str]) -> None:
    """Open the interactive board shell."""
    key = app.resolve_key(key)
    app.controller.watch(key)
    app.store.update(last_board=key)
    BoardShell(app.controller, key).run()


# -------------------- interactive shell --------------------
class BoardShell:
    def __init__(self, controller: SyncController, key: str):
        self.controller = controller
        self.key = key
        self.view: Optional[BoardView] = None
        self.message: Optional[str] = None
        # Alt screen default ON; disable with KANBIN_ALT_SCREEN=0 (or false/no/off)
        self.alt_screen: bool = _truthy_env(os.getenv("KANBIN_ALT_SCREEN"), True)

    def run(self) -> None:
        """REPL loop; the board is cleared and redrawn each cycle."""
        exit_message: Optional[str] = None
        if self.alt_screen:
            _enter_alt_screen()
        try:
            while True:
                if not self._redraw():
                    exit_message = self.message
                    break
                line = input("\n: ").strip()
                if not line:
                    continue
                lower = line.lower()
                if lower == 'help':
                    _clear_screen()
                    self._help()
                    input("\nPress Enter to return to the board...")
                    continue
                if lower == 'exit':
                    exit_message = "Goodbye."
                    break
                self.message = None
                try:
                    self._handle_command(line)
                except KanbinError as exc:
                    self.message = color(f"Error: {describe(exc)}", ERROR_COLOR)
        except (KeyboardInterrupt, EOFError):
            exit_message = "Interrupted. Goodbye."
        finally:
            self.controller.unwatch(self.key)
            if self.alt_screen:
                _leave_alt_screen()
            if exit_message:
                print(exit_message)

    def _redraw(self) -> bool:
        """Revalidate and paint; False once the board is gone."""
        scheduler = self.controller.scheduler
        scheduler.run_pending()
        scheduler.focus_regained()
        snapshot = self.controller.cache.read(self.key)
        if snapshot is None:
            error = self.controller.errors.get(self.key)
            self.message = describe(error) if error else f"Board {self.key} is no longer available."
            return False
        self.view = BoardView(snapshot)
        _clear_screen()
        self.view.display()
        stale = self.controller.errors.get(self.key)
        if stale is not None:
            print(color(f"(offline: showing cached board; {describe(stale)})", ERROR_COLOR))
        if self.message:
            print("\n" + self.message)
        return True

    # -------------------- command dispatch --------------------
    def _handle_command(self, line: str) -> None:
        tokens = line.split()
        cmd = tokens[0].lower()
        if cmd == 'mv':
            self._cmd_mv(tokens)
        elif cmd == 'add':
            self._cmd_add(tokens)
        elif cmd == 'rm':
            self._cmd_rm(tokens)
        elif cmd == 'edit':
            self._cmd_edit(tokens)
        elif cmd == 'refresh':
            self.controller.revalidate(self.key, force=True)
        else:
            self.message = "Unknown command. Type 'help' for instructions."

    def _card(self, token: str) -> Optional[str]:
        raw = token.rstrip('.')
        if not raw.isdigit() or self.view is None:
            return None
        return self.view.task_id(int(raw))

    def _cmd_mv(self, tokens: List[str]) -> None:
        if len(tokens) != 3:
            self.message = "Usage: mv <n> <column|n>; columns: t/ip/d"
            return
        active = self._card(tokens[1])
        if active is None:
            self.message = f"No card {tokens[1]}."
            return
        target = tokens[2]
        if target.rstrip('.').isdigit():
            target = self._card(target)
            if target is None:
                self.message = f"No card {tokens[2]}."
                return
        if self.controller.drop(self.key, active, target) is None:
            self.message = "Nothing to move."

    def _cmd_add(self, tokens: List[str]) -> None:
        title = ' '.join(tokens[1:]).strip()
        if not title:
            title = input("Enter task title: ").strip()
        if not title:
            self.message = "Title required."
            return
        self.controller.create_task(self.key, title)

    def _cmd_rm(self, tokens: List[str]) -> None:
        if len(tokens) != 2:
            self.message = "Usage: rm <n>"
            return
        task_id = self._card(tokens[1])
        if task_id is None:
            self.message = f"No card {tokens[1]}."
            return
        self.controller.delete_task(self.key, task_id)

    def _cmd_edit(self, tokens: List[str]) -> None:
        if len(tokens) < 3:
            self.message = "Usage: edit <n> <new title>"
            return
        task_id = self._card(tokens[1])
        if task_id is None:
            self.message = f"No card {tokens[1]}."
            return
        self.controller.update_task(self.key, task_id, title=' '.join(tokens[2:]))

    def _help(self) -> None:
        print("Commands:")
        print("  add <title...>      Add a task to TO DO (prompts when no title given)")
        print("  mv <n> <column>     Drop card n at the end of a column: t, ip, d")
        print("  mv <n> <m>          Drop card n onto card m (before it, or after it when moving down)")
        print("  rm <n>              Delete card n")
        print("  edit <n> <title>    Rename card n")
        print("  refresh             Reload the board from the server")
        print("  help                Show this help (press Enter to return)")
        print("  exit                Leave the board")
