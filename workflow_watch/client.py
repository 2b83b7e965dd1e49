"""REST client for the n8n workflow API.

Lists workflows from ``/api/v1/workflows`` and fetches single workflows from
``/api/v1/workflows/<id>``. Handles both response shapes seen across n8n
versions (a bare array, or an object with the array under ``data``) and
follows ``nextCursor`` pagination when the instance returns it.

Example:
    from workflow_watch.auth import AuthConfig
    from workflow_watch.client import WorkflowClient

    with WorkflowClient(
        "http://localhost:5678",
        auth=AuthConfig(api_key="${N8N_API_KEY}"),
    ) as client:
        for workflow in client.list_workflows():
            print(workflow["id"], workflow.get("updatedAt"))
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
import requests_toolbelt
import tenacity
from requests_toolbelt.utils.user_agent import user_agent
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from workflow_watch import __version__
from workflow_watch.auth import AuthConfig, build_auth_headers
from workflow_watch.errors import SourceError

logger = logging.getLogger(__name__)

__all__ = ["WorkflowClient", "WorkflowListing", "extract_workflows", "unwrap_detail"]

WORKFLOWS_PATH = "/api/v1/workflows"
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
DEFAULT_MAX_PAGES = 100

_USER_AGENT = user_agent(
    "workflow-watch",
    __version__,
    extras=[
        ("httpx", getattr(httpx, "__version__", "unknown")),
        ("tenacity", getattr(tenacity, "__version__", "unknown")),
        ("requests-toolbelt", getattr(requests_toolbelt, "__version__", "unknown")),
    ],
)


class WorkflowListing(list):
    """Workflows from one listing.

    ``truncated`` is True when pagination stopped at ``max_pages`` with a
    ``nextCursor`` still pending, so later pages were never fetched.
    """

    truncated: bool = False


def extract_workflows(data: Any) -> List[Any]:
    """Return the workflow list from a listing response.

    Accepts a bare list or a mapping exposing the list under ``data``.
    Any other shape yields an empty list.
    """
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        inner = data.get("data")
        if isinstance(inner, list):
            return inner
    if data is not None:
        logger.warning("Unexpected workflow listing shape: %s", type(data).__name__)
    return []


def unwrap_detail(data: Any) -> Any:
    """Unwrap a ``{"data": {...}}`` envelope around a single workflow."""
    if isinstance(data, dict) and "data" in data and data["data"] is not None:
        return data["data"]
    return data


class WorkflowClient:
    """Synchronous client for the workflow listing and detail endpoints.

    Args:
        base_url: Instance base URL (trailing slashes are ignored)
        timeout_ms: Per-request timeout in milliseconds
        auth: Optional credentials
        headers: Extra request headers
        max_retries: Attempts per request; 1 disables retrying
        backoff_factor: Exponential backoff multiplier between attempts
        page_limit: ``limit`` query param for paginated listings
        max_pages: Upper bound on pages followed in one listing
        transport: Optional httpx transport (used by tests)
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_ms: int = 10000,
        auth: Optional[AuthConfig] = None,
        headers: Optional[Dict[str, str]] = None,
        max_retries: int = 1,
        backoff_factor: float = 0.5,
        page_limit: Optional[int] = None,
        max_pages: int = DEFAULT_MAX_PAGES,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout_ms / 1000.0
        self.max_retries = max(max_retries, 1)
        self.backoff_factor = backoff_factor
        self.page_limit = page_limit
        self.max_pages = max_pages

        self._headers, self._auth = build_auth_headers(auth, extra_headers=headers)
        self._headers.setdefault("User-Agent", _USER_AGENT)

        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self._headers,
            auth=self._auth,
            transport=transport,
        )

    def __enter__(self) -> "WorkflowClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def list_workflows(self) -> WorkflowListing:
        """Fetch every workflow, following ``nextCursor`` pages."""
        params: Dict[str, Any] = {}
        if self.page_limit:
            params["limit"] = self.page_limit

        workflows = WorkflowListing()
        pages = 0

        while True:
            data = self.get_json(WORKFLOWS_PATH, params=params)
            pages += 1
            workflows.extend(extract_workflows(data))

            next_cursor = data.get("nextCursor") if isinstance(data, dict) else None
            if not next_cursor:
                break
            if pages >= self.max_pages:
                logger.warning(
                    "Stopped workflow listing after %d pages (max_pages reached)", pages
                )
                workflows.truncated = True
                break
            params = dict(params, cursor=next_cursor)

        logger.debug("Listed %d workflows in %d page(s)", len(workflows), pages)
        return workflows

    def get_workflow(self, workflow_id: Any) -> Any:
        """Fetch the full definition of one workflow."""
        path = f"{WORKFLOWS_PATH}/{quote(str(workflow_id), safe='')}"
        return unwrap_detail(self.get_json(path))

    def get_json(self, path: str, *, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET ``path`` and decode the JSON body.

        Raises:
            SourceError: On transport errors, non-2xx responses or bad JSON
        """
        try:
            response = self._get_with_retry(path, params or {})
        except httpx.HTTPStatusError as exc:
            raise SourceError(
                f"GET {path} returned HTTP {exc.response.status_code}",
                path=path,
                status_code=exc.response.status_code,
                cause=exc,
            ) from exc
        except httpx.HTTPError as exc:
            raise SourceError(f"GET {path} failed", path=path, cause=exc) from exc

        try:
            return response.json()
        except ValueError as exc:
            raise SourceError(
                f"GET {path} returned a non-JSON body",
                path=path,
                status_code=response.status_code,
                cause=exc,
            ) from exc

    def _get_with_retry(self, path: str, params: Dict[str, Any]) -> httpx.Response:
        @retry(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.backoff_factor, min=0.5, max=30),
            retry=retry_if_exception(self._should_retry),
            reraise=True,
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )
        def do_request() -> httpx.Response:
            logger.debug("Fetching %s with params %s", path, params)
            response = self._client.get(path, params=params)
            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                if exc.response.status_code == 429 and self.max_retries > 1:
                    self._respect_retry_after(exc.response)
                raise
            return response

        return do_request()

    def _should_retry(self, exc: BaseException) -> bool:
        if isinstance(exc, httpx.HTTPStatusError):
            return exc.response.status_code in RETRYABLE_STATUS_CODES
        return isinstance(exc, httpx.TransportError)

    def _respect_retry_after(self, response: httpx.Response) -> None:
        retry_after = response.headers.get("Retry-After")
        if not retry_after:
            return
        try:
            wait_seconds = min(float(retry_after), self.timeout * 6)
        except (TypeError, ValueError):
            return
        if wait_seconds > 0:
            logger.warning(
                "Rate limited by n8n; sleeping %.1f seconds before retrying",
                wait_seconds,
            )
            time.sleep(wait_seconds)
