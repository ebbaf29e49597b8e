from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests

from .errors import HTTPStatusError, MalformedResponseError, NetworkError
from .models import ACTIVE_LOCATIONS, API_ENDPOINT, HIGHLIGHTS_API_ENDPOINT, Document, Location

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER = 60
API_TIMEOUT = (10, 60)


def _to_documents(entries: List[Any]) -> List[Document]:
    try:
        return [Document.from_api(entry) for entry in entries]
    except (KeyError, TypeError, AttributeError, ValueError) as exc:
        raise MalformedResponseError(f"Unexpected document entry in Reader response: {exc!r}") from exc


class AdaptiveRateLimiter:
    """
    Counts calls in a session. If `burst_calls` calls land within
    `burst_window` seconds of the first one, the library is large and every
    later call is spaced at least `delay` seconds apart (Reader allows
    20 requests/minute). The throttle stays on until `reset()`.
    """

    def __init__(
        self,
        burst_calls: int = 5,
        burst_window: float = 20.0,
        delay: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.burst_calls = burst_calls
        self.burst_window = burst_window
        self.delay = delay
        self.clock = clock
        self.sleep = sleep
        self.reset()

    def reset(self) -> None:
        self.call_count = 0
        self.session_start: Optional[float] = None
        self.last_call: Optional[float] = None
        self.throttled = False

    def enable(self) -> None:
        self.throttled = True

    def acquire(self) -> None:
        now = self.clock()
        if self.call_count == 0:
            self.session_start = now
        self.call_count += 1

        if (
            not self.throttled
            and self.call_count == self.burst_calls
            and now - self.session_start < self.burst_window
        ):
            self.throttled = True
            logger.debug(
                "Enabling rate limiting after %s calls in %.1f seconds", self.call_count, now - self.session_start
            )

        if self.throttled and self.last_call is not None:
            wait = self.delay - (now - self.last_call)
            if wait > 0:
                logger.debug("Rate limit delay of %.1f seconds", wait)
                self.sleep(wait)
                now = self.clock()
        self.last_call = now


class ReaderClient:
    """
    Abstract remote reading-list client. Implementations block until the
    call completes and raise `ReaderSyncError` subclasses on failure.
    """

    def list_documents(self, location: str) -> List[Document]:
        raise NotImplementedError

    def list_archived_documents(self, updated_after: Optional[str] = None) -> List[Document]:
        raise NotImplementedError

    def get_document(self, document_id: str) -> Optional[Document]:
        raise NotImplementedError

    def update_location(self, document_id: str, location: str) -> None:
        raise NotImplementedError

    def create_highlights(self, highlights: List[Dict[str, Any]]) -> None:
        raise NotImplementedError

    def reset_session(self) -> None:
        return None

    def archive_document(self, document_id: str) -> None:
        self.update_location(document_id, Location.ARCHIVE.value)

    def list_active_documents(self, excluded_locations: Iterable[str] = ()) -> List[Document]:
        """
        Collect unfinished documents from the active locations, skipping
        excluded locations before any request is made.
        """
        excluded = set(excluded_locations)
        documents: List[Document] = []
        seen = set()
        for location in ACTIVE_LOCATIONS:
            if location.value in excluded:
                logger.debug("Skipping excluded location %s", location.value)
                continue
            for doc in self.list_documents(location.value):
                if doc.reading_progress >= 1 or doc.id in seen:
                    continue
                seen.add(doc.id)
                documents.append(doc)
        logger.debug("Total active documents retrieved: %s", len(documents))
        return documents


class ReadwiseReaderClient(ReaderClient):
    """
    `requests`-based client for the Readwise Reader v3 API and the v2
    highlights endpoint.
    """

    def __init__(
        self,
        access_token: str,
        api_url: str = API_ENDPOINT,
        highlights_api_url: str = HIGHLIGHTS_API_ENDPOINT,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[AdaptiveRateLimiter] = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout=API_TIMEOUT,
    ):
        self.api_url = api_url.rstrip("/")
        self.highlights_api_url = highlights_api_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Token {access_token}",
                "Content-Type": "application/json",
            }
        )
        self.rate_limiter = rate_limiter or AdaptiveRateLimiter(sleep=sleep)
        self.sleep = sleep
        self.timeout = timeout

    def reset_session(self) -> None:
        self.rate_limiter.reset()

    # region transport
    def _send(self, method: str, url: str, params=None, body=None) -> requests.Response:
        self.rate_limiter.acquire()
        try:
            return self.session.request(method, url, params=params, json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.error("Network error calling %s %s: %s", method, url, exc)
            raise NetworkError(f"Network error connecting to Readwise Reader: {exc}") from exc

    def _retry_after(self, response: requests.Response) -> int:
        value = response.headers.get("retry-after")
        try:
            return int(value) if value is not None else DEFAULT_RETRY_AFTER
        except (TypeError, ValueError):
            return DEFAULT_RETRY_AFTER

    def request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Optional[Any]:
        logger.debug("Calling %s %s %s", method, url, params or "")
        response = self._send(method, url, params=params, body=body)

        if response.status_code == 429:
            retry_after = self._retry_after(response)
            self.rate_limiter.enable()
            logger.warning("Hit rate limit, waiting %s seconds before retrying", retry_after)
            self.sleep(retry_after)
            response = self._send(method, url, params=params, body=body)

        if not 200 <= response.status_code < 300:
            logger.error("HTTP error %s calling %s %s", response.status_code, method, url)
            raise HTTPStatusError(response.status_code, getattr(response, "reason", None))

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            logger.error("Invalid JSON response from %s", url)
            raise MalformedResponseError(f"Unable to decode server response from {url}") from exc

    def _paginate(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        results: List[Dict[str, Any]] = []
        cursor: Optional[str] = None
        while True:
            page_params = dict(params)
            if cursor:
                page_params["pageCursor"] = cursor
            payload = self.request("GET", f"{self.api_url}/list/", params=page_params)
            if payload is not None and not isinstance(payload, dict):
                raise MalformedResponseError("Document list response is not an object")
            payload = payload or {}
            page = payload.get("results") or []
            if not isinstance(page, list):
                raise MalformedResponseError("Document list results are not a list")
            results.extend(page)
            next_cursor = payload.get("nextPageCursor")
            cursor = next_cursor if isinstance(next_cursor, str) and next_cursor else None
            logger.debug("Processed page for %s, next cursor: %s", params.get("location"), cursor)
            if not cursor:
                return results

    # endregion

    def list_documents(self, location: str) -> List[Document]:
        raw = self._paginate({"location": location, "withHtmlContent": "true", "withTags": "true"})
        return _to_documents(raw)

    def list_archived_documents(self, updated_after: Optional[str] = None) -> List[Document]:
        params: Dict[str, Any] = {"location": Location.ARCHIVE.value}
        if updated_after:
            params["updatedAfter"] = updated_after
        return _to_documents(self._paginate(params))

    def get_document(self, document_id: str) -> Optional[Document]:
        payload = self.request(
            "GET",
            f"{self.api_url}/list/",
            params={"id": document_id, "withHtmlContent": "true", "withTags": "true"},
        )
        if payload is not None and not isinstance(payload, dict):
            raise MalformedResponseError("Document response is not an object")
        results = (payload or {}).get("results") or []
        if not isinstance(results, list):
            raise MalformedResponseError("Document results are not a list")
        return _to_documents(results[:1])[0] if results else None

    def update_location(self, document_id: str, location: str) -> None:
        self.request("PATCH", f"{self.api_url}/update/{document_id}/", body={"location": location})
        logger.debug("Moved %s to %s", document_id, location)

    def create_highlights(self, highlights: List[Dict[str, Any]]) -> None:
        self.request("POST", f"{self.highlights_api_url}/highlights/", body={"highlights": highlights})
