"""In-memory stand-in for the kanbin API, shaped like client.ApiClient."""
import itertools
from client import FetchResult
from errors import NotFound

BOARD = {
    'id': 'b-1',
    'key': 'abc123',
    'title': 'Launch plan',
    'created_at': '2026-10-01T09:00:00Z',
    'expires_at': '2026-10-08T09:00:00Z',
}


def task(task_id, status='TODO', position=1000, title=None):
    return {
        'id': task_id,
        'title': title or f'task {task_id}',
        'description': '',
        'status': status,
        'position': position,
        'created_at': '2026-10-01T09:00:00Z',
        'updated_at': '2026-10-01T09:00:00Z',
    }


class FakeTransport:
    """Server of record for tests.

    failures: call name -> list of exceptions raised, one per call; a None
    entry lets that call through. on_get: run once while a board read is in flight,
    after the response has been prepared.
    """

    def __init__(self, tasks=()):
        self.board = dict(BOARD)
        self.tasks = {t['id']: dict(t) for t in tasks}
        self.version = 1
        self.calls = []
        self.updates = []
        self.failures = {}
        self.on_get = None
        self._ids = itertools.count(1)

    @property
    def etag(self):
        return f'"v{self.version}"'

    def _enter(self, name):
        self.calls.append(name)
        queue = self.failures.get(name)
        if queue:
            failure = queue.pop(0)
            if failure is not None:
                raise failure

    def count(self, name):
        return self.calls.count(name)

    def get_board(self, key, etag=None):
        self._enter('get_board')
        if key != self.board['key']:
            raise NotFound('Board not found', 404)
        if etag == self.etag:
            result = FetchResult(None, self.etag, not_modified=True)
        else:
            payload = dict(self.board, tasks=[dict(t) for t in self.tasks.values()])
            result = FetchResult(payload, self.etag)
        if self.on_get is not None:
            hook, self.on_get = self.on_get, None
            hook()
        return result

    def create_board(self, title):
        self._enter('create_board')
        return dict(self.board, title=title)

    def delete_board(self, key):
        self._enter('delete_board')
        self.tasks.clear()
        return {'message': 'deleted'}

    def create_task(self, key, title, description='', status='TODO'):
        self._enter('create_task')
        new = task(f'new-{next(self._ids)}', status=status, position=len(self.tasks), title=title)
        new['description'] = description
        self.tasks[new['id']] = new
        self.version += 1
        return dict(new)

    def update_task(self, task_id, fields, board_key):
        self._enter('update_task')
        self.updates.append((task_id, dict(fields), board_key))
        if task_id not in self.tasks or board_key != self.board['key']:
            raise NotFound('Forbidden', 403)
        self.tasks[task_id].update(fields)
        self.tasks[task_id]['updated_at'] = f'2026-10-02T00:00:{self.version:02d}Z'
        self.version += 1
        return dict(self.tasks[task_id])

    def delete_task(self, task_id, board_key):
        self._enter('delete_task')
        if task_id not in self.tasks:
            raise NotFound('Forbidden', 403)
        del self.tasks[task_id]
        self.version += 1
        return {'message': 'deleted'}
