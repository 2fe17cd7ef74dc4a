"""HTTP transport for the kanbin API (requests based).

Every call returns parsed JSON or raises a KanbinError subclass; the rest of
the client never sees requests exceptions. The board ETag is treated as an
opaque string and sent back verbatim in If-None-Match.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
import requests
from errors import Transient, from_status

log = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.kanbin.app/api"
DEFAULT_TIMEOUT = 10.0


@dataclass(frozen=True)
class FetchResult:
    """Outcome of a conditional board read.

    not_modified=True means the server answered 304 and `payload` is None.
    """
    payload: Optional[Dict[str, Any]]
    etag: Optional[str]
    not_modified: bool = False


class ApiClient:
    def __init__(self, base_url: str = DEFAULT_BASE_URL, timeout: float = DEFAULT_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({'Content-Type': 'application/json'})

    # -------------------- boards --------------------
    def create_board(self, title: str) -> Dict[str, Any]:
        return _json(self._request('POST', '/boards', json={'title': title}))

    def get_board(self, key: str, etag: Optional[str] = None) -> FetchResult:
        headers = {'If-None-Match': etag} if etag else {}
        resp = self._request('GET', f'/boards/{key}', headers=headers)
        new_etag = resp.headers.get('ETag')
        if resp.status_code == 304:
            return FetchResult(payload=None, etag=new_etag or etag, not_modified=True)
        return FetchResult(payload=_json(resp), etag=new_etag)

    def delete_board(self, key: str) -> Dict[str, Any]:
        return _json(self._request('DELETE', f'/boards/{key}'))

    # -------------------- tasks --------------------
    def create_task(self, key: str, title: str, description: str = '', status: str = 'TODO') -> Dict[str, Any]:
        body = {'title': title, 'description': description, 'status': status}
        return _json(self._request('POST', f'/boards/{key}/tasks', json=body))

    def update_task(self, task_id: str, fields: Dict[str, Any], board_key: str) -> Dict[str, Any]:
        """Partial update; only the keys present in `fields` are sent."""
        return _json(self._request('PUT', f'/tasks/{task_id}', json=fields,
                                  headers={'X-Board-Key': board_key}))

    def delete_task(self, task_id: str, board_key: str) -> Dict[str, Any]:
        return _json(self._request('DELETE', f'/tasks/{task_id}', headers={'X-Board-Key': board_key}))

    # -------------------- plumbing --------------------
    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = self.base_url + path
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as exc:
            raise Transient(f'Request timed out: {method} {path}') from exc
        except requests.RequestException as exc:
            raise Transient(f'Network error: {exc}') from exc
        log.debug('%s %s -> %s', method, path, resp.status_code)
        if resp.status_code >= 400:
            raise from_status(resp.status_code, _json_or_none(resp))
        return resp


def _json(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError as exc:
        raise Transient(f'Malformed response body (HTTP {resp.status_code})') from exc


def _json_or_none(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return None
