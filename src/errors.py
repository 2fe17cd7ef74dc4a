"""Error taxonomy for talking to the kanbin API.

NotFound and Expired are terminal and shown to the user as-is.
ValidationFailed means the user has to correct the input. Transient covers
network failures, timeouts and 5xx; only these are ever retried.
"""
from typing import Any, Optional


class KanbinError(Exception):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


class NotFound(KanbinError):
    pass


class Expired(KanbinError):
    pass


class ValidationFailed(KanbinError):
    pass


class Transient(KanbinError):
    pass


def _envelope_message(body: Any) -> Optional[str]:
    if isinstance(body, dict):
        msg = body.get('error')
        if isinstance(msg, str) and msg:
            return msg
    return None


def from_status(status: int, body: Any = None) -> KanbinError:
    """Map a non-2xx, non-304 response to the matching error class."""
    message = _envelope_message(body) or f'API request failed with status HTTP {status}'
    # the server answers 403 for tasks on other boards so as not to reveal they exist
    if status in (403, 404):
        return NotFound(message, status)
    if status == 410:
        return Expired(message, status)
    if status == 429 or status >= 500:
        return Transient(message, status)
    return ValidationFailed(message, status)


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, Transient)
