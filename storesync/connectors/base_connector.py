"""
Base connector class for all data sources

A connector turns a credential plus a unit of work (a calendar day, or a
tenant for whole-catalog pulls) into the provider's raw records. Pages are
fetched one at a time with a fixed delay before each follow-up request;
individual requests are retried with backoff when the failure is transient.
"""
import asyncio
import json
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from storesync.config import get_settings
from storesync.exceptions import AuthError, UpstreamError
from storesync.services.settings_gateway import SyncCredential
from storesync.utils.helpers import sanitize_error
from storesync.utils.logger import log
from storesync.utils.retry import DEFAULT_RETRYABLE_EXCEPTIONS, RetryContext

settings = get_settings()

RETRYABLE_EXCEPTIONS = DEFAULT_RETRYABLE_EXCEPTIONS + (
    aiohttp.ClientConnectionError,
    aiohttp.ServerTimeoutError,
)


@dataclass
class HttpResponse:
    """Fully-read response; the connection is released before parsing."""
    status: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        if not self.body:
            return None
        return json.loads(self.text())


@dataclass
class Page:
    """One page of raw provider records plus the cursor for the next one."""
    records: List[Any] = field(default_factory=list)
    has_next: bool = False
    next_cursor: Any = None


# ── Shared HTTP session ────────────────────────────────

_http_session: Optional[aiohttp.ClientSession] = None
_http_session_loop = None
_http_lock = threading.Lock()


def get_http_session() -> aiohttp.ClientSession:
    """
    Process-wide aiohttp session, created on first use.

    A session is bound to the event loop that created it, so a new one is
    made when called from a different loop or after close_http_session().
    """
    global _http_session, _http_session_loop
    loop = asyncio.get_running_loop()
    with _http_lock:
        if _http_session is None or _http_session.closed or _http_session_loop is not loop:
            _http_session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=settings.http_timeout_seconds)
            )
            _http_session_loop = loop
        return _http_session


async def close_http_session():
    global _http_session, _http_session_loop
    with _http_lock:
        session, _http_session, _http_session_loop = _http_session, None, None
    if session is not None and not session.closed:
        await session.close()


class BaseConnector(ABC):
    """Base class for all data source connectors"""

    provider: str = ""

    def __init__(self, name: str, credential: SyncCredential):
        self.name = name
        self.credential = credential
        self.page_delay = settings.page_delay_seconds
        self.retry_max_attempts = settings.retry_max_attempts
        self.retry_base_delay = settings.retry_base_delay
        self.retry_max_delay = settings.retry_max_delay
        self.request_count = 0

    async def authenticate(self) -> None:
        """Resolve any session credential before the first unit; no-op by default."""

    @abstractmethod
    async def fetch_page(self, unit: Any, cursor: Any = None) -> Page:
        """Fetch one page for `unit`; cursor is None for the first page."""

    async def fetch_all(self, unit: Any) -> List[Any]:
        """
        Follow the cursor until the provider reports no further page.

        On failure the UpstreamError carries every record already received in
        `partial_records`; those pages are a valid partial result.
        """
        records: List[Any] = []
        cursor = None
        pages = 0
        while True:
            if pages > 0 and self.page_delay > 0:
                await asyncio.sleep(self.page_delay)
            try:
                page = await self.fetch_page(unit, cursor)
            except UpstreamError as e:
                e.partial_records = records + list(e.partial_records)
                if records:
                    log.warning(f"{self.name} stopped after {pages} pages ({len(records)} records kept): {e}")
                raise
            pages += 1
            records.extend(page.records)
            if not page.has_next:
                break
            cursor = page.next_cursor

        log.debug(f"{self.name} fetched {len(records)} records in {pages} pages for {unit}")
        return records

    # ── HTTP ───────────────────────────────────────────

    async def _send(self, method: str, url: str, **kwargs) -> HttpResponse:
        """Issue one HTTP request and read the whole body."""
        session = get_http_session()
        async with session.request(method, url, **kwargs) as response:
            body = await response.read()
            return HttpResponse(status=response.status, body=body, headers=dict(response.headers))

    def _raise_for_response(self, response: HttpResponse) -> None:
        """Map an error response to AuthError or UpstreamError."""
        body = response.text()
        if response.status in (401, 403):
            raise AuthError(
                f"{self.name} rejected the credential ({response.status})",
                details=sanitize_error(body, 300),
            )
        raise UpstreamError(
            f"{self.name} API error: {response.status} - {sanitize_error(body, 300)}",
            status_code=response.status,
            body=body,
        )

    async def request(self, method: str, url: str, boundary_statuses: Sequence[int] = (), **kwargs) -> HttpResponse:
        """
        Send a request with retry on transient failures.

        Statuses in `boundary_statuses` are returned to the caller instead of
        raising (providers that signal "past the last page" with an error).
        """
        async def attempt() -> HttpResponse:
            self.request_count += 1
            response = await self._send(method, url, **kwargs)
            if response.ok or response.status in boundary_statuses:
                return response
            self._raise_for_response(response)

        ctx = RetryContext(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            retryable_exceptions=RETRYABLE_EXCEPTIONS,
            operation_name=f"{self.name} {method}",
        )
        try:
            return await ctx.execute(attempt)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamError(f"{self.name} request failed: {type(e).__name__}: {e}")
