"""
Tagged results for provider API calls.

Every provider call returns one of:
- Page: the call succeeded (items plus pagination/cursor info)
- CursorInvalid: the stored sync token / history id was rejected
- FetchFailure: the call failed for good (after retries, or a non-retryable error)

Importers branch on the tag instead of catching provider exceptions. A token
that can no longer be refreshed mid-run raises AuthenticationError instead,
since no later call in the run could succeed.
"""
import logging
import socket
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

import httplib2
from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError

from crmsync.services.google_auth import INIT_HINT, AuthenticationError
from crmsync.services.resilience import GOOGLE_API_RETRY, RetryConfig, call_with_retry, is_retryable_status

logger = logging.getLogger(__name__)

# Network-level errors worth retrying
TRANSIENT_ERRORS = (
    ConnectionError,
    TimeoutError,
    socket.timeout,
    httplib2.HttpLib2Error,
)


@dataclass
class Page:
    """One successful provider response."""
    items: list = field(default_factory=list)
    next_page_token: Optional[str] = None
    next_cursor: Optional[str] = None  # sync token / history id, usually on the last page
    data: Any = None  # single-object responses (profile, message, thread)

    @property
    def is_last(self) -> bool:
        return not self.next_page_token


@dataclass
class CursorInvalid:
    """The provider no longer accepts the stored cursor."""
    reason: str = ""


@dataclass
class FetchFailure:
    """A provider call that failed after exhausting retries."""
    message: str
    status: Optional[int] = None


FetchResult = Union[Page, CursorInvalid, FetchFailure]


def http_status(error: Exception) -> Optional[int]:
    """Status code of a googleapiclient HttpError, or None."""
    if isinstance(error, HttpError):
        try:
            return int(error.resp.status)
        except (AttributeError, TypeError, ValueError):
            return None
    return None


def is_transient(error: Exception) -> bool:
    status = http_status(error)
    if status is not None:
        return is_retryable_status(status)
    return isinstance(error, TRANSIENT_ERRORS)


def error_message(error: Exception) -> str:
    """Readable message for an API error."""
    if isinstance(error, HttpError):
        reason = getattr(error, "reason", "") or str(error)
        return f"HTTP {http_status(error)}: {reason}"
    return f"{type(error).__name__}: {error}"


def fetch(
    request: Callable[[], Any],
    to_page: Callable[[Any], Page],
    description: str,
    cursor_invalid_statuses: tuple = (),
    empty_statuses: tuple = (),
    retry_config: Optional[RetryConfig] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> FetchResult:
    """
    Execute a provider request and classify the outcome.

    Args:
        request: Zero-argument callable performing the API call
        to_page: Converts the raw response into a Page
        description: Used in logs and failure messages
        cursor_invalid_statuses: HTTP statuses meaning "cursor rejected"
        empty_statuses: HTTP statuses meaning "nothing there" (e.g. deleted message)
        retry_config: Retry budget (default GOOGLE_API_RETRY)
        sleep: Sleep function for backoff (injected in tests)

    Raises:
        AuthenticationError: The OAuth token expired or was revoked mid-run
    """
    try:
        response = call_with_retry(
            request,
            config=retry_config or GOOGLE_API_RETRY,
            should_retry=is_transient,
            sleep=sleep,
            description=description,
        )
    except HttpError as e:
        status = http_status(e)
        if status in cursor_invalid_statuses:
            logger.warning(f"{description}: cursor rejected ({error_message(e)})")
            return CursorInvalid(reason=error_message(e))
        if status in empty_statuses:
            return Page()
        logger.error(f"{description} failed: {error_message(e)}")
        return FetchFailure(message=f"{description} failed: {error_message(e)}", status=status)
    except TRANSIENT_ERRORS as e:
        logger.error(f"{description} failed: {error_message(e)}")
        return FetchFailure(message=f"{description} failed: {error_message(e)}")
    except RefreshError as e:
        logger.error(f"{description}: token refresh failed: {e}")
        raise AuthenticationError(f"token refresh failed (may be revoked): {e}. {INIT_HINT}") from e

    return to_page(response)
