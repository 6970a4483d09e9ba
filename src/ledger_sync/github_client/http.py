"""Shared request plumbing for the GitHub sub-clients.

Turns transport failures and non-2xx responses into :class:`RemoteError`
with a :class:`RemoteErrorCode`, so callers never see raw ``requests``
exceptions.
"""

from __future__ import annotations

from typing import Any

import requests

from ledger_sync.errors import RemoteConflictError, RemoteError, RemoteErrorCode

DEFAULT_TIMEOUT = 30.0


def classify_status(status: int, message: str = "") -> RemoteErrorCode:
    """Map an HTTP status (and GitHub's error message) to an error code."""
    lowered = message.lower()
    if status == 401:
        return RemoteErrorCode.AUTH
    if status == 403:
        return RemoteErrorCode.RATE_LIMIT if "rate limit" in lowered else RemoteErrorCode.PERMISSION
    if status == 404:
        return RemoteErrorCode.NOT_FOUND
    if status == 409:
        return RemoteErrorCode.CONFLICT
    if status == 422 and "fast forward" in lowered:
        return RemoteErrorCode.CONFLICT
    if status == 429:
        return RemoteErrorCode.RATE_LIMIT
    return RemoteErrorCode.UNKNOWN


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict):
        return str(payload.get("message", ""))
    return ""


class ApiClient:
    """Base class holding the session and repository coordinates.

    Args:
        session: An authorized ``requests.Session``.
        api_url: Root of the REST API, e.g. ``https://api.github.com``.
        repo: Repository as ``owner/name``.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        session: requests.Session,
        api_url: str,
        repo: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        owner, _, name = repo.partition("/")
        if not owner or not name:
            raise ValueError(f"Invalid repository format: {repo!r} (expected owner/repo)")
        self._session = session
        self._api_url = api_url.rstrip("/")
        self._repo = f"{owner}/{name}"
        self._timeout = timeout

    @property
    def repo(self) -> str:
        return self._repo

    def _repo_url(self, path: str = "") -> str:
        base = f"{self._api_url}/repos/{self._repo}"
        path = path.lstrip("/")
        return f"{base}/{path}" if path else base

    def _request(
        self,
        method: str,
        url: str,
        operation: str,
        **kwargs: Any,
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Raises:
            RemoteConflictError: On 409, or a rejected non-fast-forward update.
            RemoteError: On any other failure, including transport errors.
        """
        try:
            response = self._session.request(
                method, url, timeout=self._timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise RemoteError(
                f"Network error during '{operation}': {exc}",
                RemoteErrorCode.NETWORK,
            ) from exc

        self._check_response(response, operation)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    @staticmethod
    def _check_response(response: requests.Response, operation: str) -> None:
        """Raise a ``RemoteError`` if the GitHub response indicates failure."""
        if response.ok:
            return
        message = _error_message(response)
        code = classify_status(response.status_code, message)
        text = (
            f"GitHub API error during '{operation}': "
            f"status={response.status_code}, msg={message or response.reason}"
        )
        if code is RemoteErrorCode.CONFLICT:
            raise RemoteConflictError(text, status=response.status_code)
        raise RemoteError(text, code, status=response.status_code)
