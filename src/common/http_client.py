"""Shared HTTP helpers used by the remote repository backends.

Each backend owns one HttpClient. Base headers (User-Agent, Accept, auth)
are fixed when the client is built; per-request headers are passed as
arguments and never written back into the session.
"""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Optional, Tuple

import requests

from constants import Constants
from common.cancellation import CancellationToken, check_cancelled
from common.errors import MalformedResponseError, RepositoryTransportError
from common.logging_utils import extra_context, is_debug_enabled, redact, safe_url, Timer

logger = logging.getLogger(__name__)

HEADERS_JSON = {"Accept": "application/json"}
HEADERS_ATOM = {"Accept": "application/atom+xml,application/xml"}


class HttpClient:
    """Blocking HTTP client with retries bound to a single repository."""

    def __init__(
        self,
        *,
        repository: str,
        headers: Optional[Dict[str, str]] = None,
        auth: Optional[Tuple[str, str]] = None,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the client.

        Args:
            repository: Repository name used as log context.
            headers: Base headers applied to every request.
            auth: Optional (user, password) pair for basic auth.
            session: Pre-built session, mainly for tests.
        """
        self.repository = repository
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": Constants.USER_AGENT})
        if headers:
            self._session.headers.update(headers)
        if auth:
            self._session.auth = auth

    def close(self) -> None:
        """Release pooled connections."""
        self._session.close()

    def get(
        self,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Tuple[int, Dict[str, str], str]:
        """Perform a GET with timeout and retries.

        Args:
            url: Target URL.
            headers: Per-request headers merged over the session headers.
            cancel: Checked before every attempt.

        Returns:
            Tuple of (status_code, headers_dict, body_text).

        Raises:
            RepositoryTransportError: when every attempt failed at transport level.
            ResolutionCancelled: when cancellation was requested.
        """
        safe_target = safe_url(url)
        last_exception: Optional[str] = None

        for attempt in range(Constants.HTTP_RETRY_MAX):
            check_cancelled(cancel)
            if attempt:
                time.sleep(Constants.HTTP_RETRY_BASE_DELAY_SEC * (2 ** (attempt - 1)))
            with Timer() as t:
                try:
                    if is_debug_enabled(logger):
                        logger.debug(
                            "HTTP request",
                            extra=extra_context(
                                event="http_request",
                                component="http_client",
                                action="GET",
                                target=safe_target,
                                repository=self.repository,
                                attempt=attempt + 1,
                            ),
                        )
                    response = self._session.get(
                        url,
                        headers=headers,
                        timeout=Constants.REQUEST_TIMEOUT,
                    )
                    if is_debug_enabled(logger):
                        logger.debug(
                            "HTTP response",
                            extra=extra_context(
                                event="http_response",
                                component="http_client",
                                action="GET",
                                outcome="success" if response.status_code < 400 else "http_error",
                                status_code=response.status_code,
                                duration_ms=t.duration_ms(),
                                target=safe_target,
                                repository=self.repository,
                            ),
                        )
                    return response.status_code, dict(response.headers), response.text
                except requests.Timeout:
                    last_exception = f"timed out after {Constants.REQUEST_TIMEOUT} seconds"
                    outcome = "timeout"
                except requests.RequestException as exc:  # includes ConnectionError
                    last_exception = redact(str(exc))
                    outcome = "request_exception"
            if is_debug_enabled(logger):
                logger.debug(
                    "HTTP request failed",
                    extra=extra_context(
                        event="http_exception",
                        component="http_client",
                        action="GET",
                        outcome=outcome,
                        attempt=attempt + 1,
                        target=safe_target,
                        repository=self.repository,
                    ),
                )

        raise RepositoryTransportError(
            f"Request to {safe_target} failed after {Constants.HTTP_RETRY_MAX} attempts: {last_exception}",
            url=url,
        )

    def get_text(
        self,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Optional[str]:
        """GET a body, mapping HTTP status to the resolver's error model.

        Returns:
            Body text, or None when the server answered 404.

        Raises:
            RepositoryTransportError: for 401/403 and any other status >= 400.
        """
        status_code, _, text = self.get(url, headers=headers, cancel=cancel)
        if status_code == 404:
            return None
        if status_code in (401, 403):
            raise RepositoryTransportError(
                f"Unauthorized request to {safe_url(url)} (HTTP {status_code})",
                url=url,
                status_code=status_code,
            )
        if status_code >= 400:
            raise RepositoryTransportError(
                f"Request to {safe_url(url)} returned HTTP {status_code}",
                url=url,
                status_code=status_code,
            )
        return text

    def get_json(
        self,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Optional[Any]:
        """GET and decode a JSON body.

        Returns:
            Parsed JSON, or None when the server answered 404.

        Raises:
            MalformedResponseError: when the body is not valid JSON.
        """
        text = self.get_text(url, headers=headers or HEADERS_JSON, cancel=cancel)
        if text is None:
            return None
        try:
            parsed = json.loads(text)
        except ValueError as exc:
            raise MalformedResponseError(
                f"Response from {safe_url(url)} is not valid JSON",
                url=url,
                detail=str(exc),
            ) from exc
        if is_debug_enabled(logger):
            logger.debug(
                "Parsed JSON response",
                extra=extra_context(
                    event="parse",
                    component="http_client",
                    action="get_json",
                    outcome="success",
                    target=safe_url(url),
                    repository=self.repository,
                ),
            )
        return parsed
