import pytest
from click.testing import CliRunner
from cli import AppContext, kanbin
from config import ConfigStore, Settings
from errors import Expired
from fakes import BOARD, FakeTransport, task
from sync import ManualScheduler, SyncController

KEY = BOARD['key']


@pytest.fixture
def transport():
    return FakeTransport([task('T1', position=1000), task('T2', position=2000)])


@pytest.fixture
def app(tmp_path, transport):
    def factory(settings):
        return SyncController(transport, scheduler=ManualScheduler())
    return AppContext(Settings(), ConfigStore(tmp_path / 'config.json'), factory)


@pytest.fixture
def run(app, monkeypatch):
    monkeypatch.setenv('KANBIN_ALT_SCREEN', '0')
    runner = CliRunner()

    def invoke(*args, input=None):
        return runner.invoke(kanbin, list(args), obj=app, input=input)
    return invoke


def test_board_create_remembers_key(run, app):
    result = run('board', 'create', 'Sprint 12')
    assert result.exit_code == 0, result.output
    assert f'Key:     {KEY}' in result.output
    assert app.store.load()['last_board'] == KEY


def test_task_list_uses_last_board(run, app):
    app.store.update(last_board=KEY)
    result = run('task', 'list')
    assert result.exit_code == 0, result.output
    assert '[TODO] T1 | task T1' in result.output


def test_missing_board_key_is_a_usage_error(run):
    result = run('task', 'list')
    assert result.exit_code == 2


def test_task_move_onto_column(run, transport):
    result = run('task', 'move', 'T2', 'ip', '--board', KEY)
    assert result.exit_code == 0, result.output
    assert 'moved to IN_PROGRESS (position 1000)' in result.output
    assert transport.tasks['T2']['status'] == 'IN_PROGRESS'


def test_task_move_noop(run, transport):
    result = run('task', 'move', 'T1', 'T1', '--board', KEY)
    assert 'Nothing to move.' in result.output
    assert transport.updates == []


def test_task_add_rejects_unknown_status(run, transport):
    result = run('task', 'add', 'Hello', '--board', KEY, '--status', 'blocked')
    assert result.exit_code != 0
    assert transport.count('create_task') == 0


def test_expired_board_is_reported(run, transport):
    transport.failures['get_board'] = [Expired('Board has expired', 410)]
    result = run('board', 'view', KEY)
    assert result.exit_code == 1
    assert 'Board has expired' in result.output


def test_board_delete_forgets_last_board(run, app, transport):
    app.store.update(last_board=KEY)
    result = run('board', 'delete', KEY, '--yes')
    assert result.exit_code == 0, result.output
    assert 'last_board' not in app.store.load()
    assert transport.count('delete_board') == 1


def test_shell_moves_and_adds_cards(run, transport):
    result = run('open', KEY, input='mv 2 ip\nadd Book venue\nexit\n')
    assert result.exit_code == 0, result.output
    assert transport.tasks['T2']['status'] == 'IN_PROGRESS'
    assert any(t['title'] == 'Book venue' for t in transport.tasks.values())
    assert 'Goodbye.' in result.output


def test_shell_reports_errors_and_keeps_running(run, transport):
    transport.failures['update_task'] = [Expired('Board has expired', 410)]
    result = run('open', KEY, input='mv 1 d\nexit\n')
    assert result.exit_code == 0, result.output
    assert 'Error: Board has expired' in result.output
    assert transport.tasks['T1']['status'] == 'TODO'
