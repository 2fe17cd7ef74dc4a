import pytest
import requests
from client import ApiClient
from errors import Expired, NotFound, Transient, ValidationFailed


class FakeResponse:
    def __init__(self, status_code, body=None, headers=None):
        self.status_code = status_code
        self._body = body
        self.headers = headers or {}

    def json(self):
        if self._body is None:
            raise ValueError('no body')
        return self._body


class FakeSession:
    def __init__(self, *responses):
        self.headers = {}
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, timeout=None, **kwargs):
        self.requests.append((method, url, timeout, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def client_with(*responses):
    session = FakeSession(*responses)
    return ApiClient('http://kanbin.test/api/', timeout=3, session=session), session


class TestBoards:
    def test_get_board_returns_payload_and_etag(self):
        api, session = client_with(FakeResponse(200, {'key': 'abc', 'tasks': []}, {'ETag': '"e1"'}))
        result = api.get_board('abc')
        assert result.payload == {'key': 'abc', 'tasks': []}
        assert result.etag == '"e1"'
        assert not result.not_modified
        method, url, timeout, kwargs = session.requests[0]
        assert (method, url, timeout) == ('GET', 'http://kanbin.test/api/boards/abc', 3)
        assert kwargs['headers'] == {}

    def test_conditional_get_sends_validator_verbatim(self):
        api, session = client_with(FakeResponse(304, headers={'ETag': 'W/"e1"'}))
        result = api.get_board('abc', etag='W/"e1"')
        assert session.requests[0][3]['headers'] == {'If-None-Match': 'W/"e1"'}
        assert result.not_modified
        assert result.payload is None
        assert result.etag == 'W/"e1"'

    def test_create_board_posts_title(self):
        api, session = client_with(FakeResponse(201, {'key': 'k1', 'title': 'Sprint'}))
        assert api.create_board('Sprint')['key'] == 'k1'
        assert session.requests[0][3]['json'] == {'title': 'Sprint'}
        assert session.headers['Content-Type'] == 'application/json'


class TestTasks:
    def test_update_sends_only_given_fields_and_board_key(self):
        api, session = client_with(FakeResponse(200, {'id': 't1', 'status': 'DONE'}))
        api.update_task('t1', {'status': 'DONE'}, 'abc')
        method, url, _, kwargs = session.requests[0]
        assert (method, url) == ('PUT', 'http://kanbin.test/api/tasks/t1')
        assert kwargs['json'] == {'status': 'DONE'}
        assert kwargs['headers'] == {'X-Board-Key': 'abc'}

    def test_delete_sends_board_key(self):
        api, session = client_with(FakeResponse(200, {'message': 'deleted'}))
        api.delete_task('t1', 'abc')
        assert session.requests[0][0] == 'DELETE'
        assert session.requests[0][3]['headers'] == {'X-Board-Key': 'abc'}

    def test_create_task_body(self):
        api, session = client_with(FakeResponse(201, {'id': 't9'}))
        api.create_task('abc', 'Write docs', 'soon')
        assert session.requests[0][1].endswith('/boards/abc/tasks')
        assert session.requests[0][3]['json'] == {'title': 'Write docs', 'description': 'soon', 'status': 'TODO'}


class TestErrors:
    @pytest.mark.parametrize('status,error', [
        (404, NotFound), (403, NotFound), (410, Expired), (400, ValidationFailed),
        (422, ValidationFailed), (500, Transient), (503, Transient), (429, Transient),
    ])
    def test_status_mapping(self, status, error):
        api, _ = client_with(FakeResponse(status, {'error': 'boom'}))
        with pytest.raises(error) as info:
            api.get_board('abc')
        assert info.value.message == 'boom'
        assert info.value.status == status

    def test_success_with_unreadable_body_is_transient(self):
        api, _ = client_with(FakeResponse(200))
        with pytest.raises(Transient, match='Malformed response body'):
            api.update_task('t1', {'status': 'DONE'}, 'abc')

    def test_error_without_envelope(self):
        api, _ = client_with(FakeResponse(502))
        with pytest.raises(Transient, match='HTTP 502'):
            api.delete_board('abc')

    @pytest.mark.parametrize('exc', [requests.ConnectionError('refused'), requests.Timeout('slow')])
    def test_network_failures_are_transient(self, exc):
        api, _ = client_with(exc)
        with pytest.raises(Transient):
            api.get_board('abc')
