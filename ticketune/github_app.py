"""GitHub App authentication and the issue API used to file bug reports."""

from __future__ import annotations

import logging
import os
import threading
import time
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional, Union

import jwt
import requests
from cryptography.hazmat.primitives.serialization import load_pem_private_key

from .config import ConfigError

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
API_VERSION = "2022-11-28"
ISSUE_TIMEOUT = 60
JWT_LIFETIME = 600
JWT_BACKDATE = 60
_DEFAULT_TOKEN_LIFETIME = 3600
_REFRESH_MARGIN = 60

PrivateKey = Union[bytes, str, Any]


class GitHubError(Exception):
    """Raised when the GitHub API cannot be reached or rejects a request."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        rate_limit_remaining: Optional[int] = None,
        timed_out: bool = False,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.rate_limit_remaining = rate_limit_remaining
        self.timed_out = timed_out


def _load_private_key(private_key: PrivateKey) -> Any:
    if isinstance(private_key, str):
        private_key = private_key.encode()
    if isinstance(private_key, bytes):
        try:
            return load_pem_private_key(private_key, password=None)
        except (ValueError, TypeError) as exc:
            raise ValueError(f"invalid GitHub App private key: {exc}") from exc
    return private_key


def create_app_jwt(client_id: str, private_key: PrivateKey, now: Optional[float] = None) -> str:
    """Return a short-lived RS256 token that authenticates as the GitHub App."""
    key = _load_private_key(private_key)
    issued = int(time.time() if now is None else now)
    claims = {
        "iat": issued - JWT_BACKDATE,
        "exp": issued + JWT_LIFETIME,
        "iss": client_id,
    }
    return jwt.encode(claims, key, algorithm="RS256")


def _headers(authorization: str) -> dict[str, str]:
    return {
        "Authorization": authorization,
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": API_VERSION,
    }


def _error_from_response(response: requests.Response, action: str) -> GitHubError:
    remaining_header = response.headers.get("X-RateLimit-Remaining")
    try:
        remaining = int(remaining_header) if remaining_header is not None else None
    except ValueError:
        remaining = None
    detail = response.text
    try:
        decoded = response.json()
        if isinstance(decoded, Mapping) and decoded.get("message"):
            detail = decoded["message"]
    except ValueError:
        pass
    logger.info("GitHub API response body: %s", response.text)
    return GitHubError(
        f"{action} failed with status {response.status_code}: {detail}",
        status=response.status_code,
        rate_limit_remaining=remaining,
    )


def _parse_expiry(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return None


class InstallationTokenSource:
    """Hands out installation access tokens, refreshing them before they expire."""

    def __init__(
        self,
        installation_id: int,
        client_id: str,
        private_key: PrivateKey,
        session: Optional[requests.Session] = None,
        base_url: str = GITHUB_API_URL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.installation_id = installation_id
        self.client_id = client_id
        self._key = _load_private_key(private_key)
        self._session = session if session is not None else requests.Session()
        self._base_url = base_url.rstrip("/")
        self._clock = clock
        self._lock = threading.Lock()
        self._token: Optional[str] = None
        self._expires_at = 0.0

    def token(self) -> str:
        """Return a valid installation token, fetching a new one when needed."""
        with self._lock:
            now = self._clock()
            if self._token is not None and now < self._expires_at - _REFRESH_MARGIN:
                return self._token
            app_jwt = create_app_jwt(self.client_id, self._key, now)
            url = f"{self._base_url}/app/installations/{self.installation_id}/access_tokens"
            try:
                response = self._session.post(
                    url, headers=_headers(f"Bearer {app_jwt}"), timeout=ISSUE_TIMEOUT
                )
            except requests.Timeout as exc:
                raise GitHubError("installation token request timed out", timed_out=True) from exc
            except requests.RequestException as exc:
                raise GitHubError(f"installation token request failed: {exc}") from exc
            if not response.ok:
                raise _error_from_response(response, "installation token request")
            try:
                payload = response.json()
                token = payload["token"]
            except (ValueError, KeyError, TypeError) as exc:
                raise GitHubError("installation token response was malformed") from exc
            expiry = _parse_expiry(payload.get("expires_at"))
            self._token = token
            self._expires_at = expiry if expiry is not None else now + _DEFAULT_TOKEN_LIFETIME
            return token


class GitHubClient:
    """The part of the GitHub REST API the bot needs."""

    def __init__(
        self,
        token_source: Any,
        session: Optional[requests.Session] = None,
        base_url: str = GITHUB_API_URL,
        timeout: float = ISSUE_TIMEOUT,
    ) -> None:
        self._token_source = token_source
        self._session = session if session is not None else requests.Session()
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def create_issue(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str,
        labels: Iterable[str] = (),
        issue_type: Optional[str] = None,
    ) -> dict[str, Any]:
        """Open an issue and return it as GitHub describes it."""
        payload: dict[str, Any] = {"title": title, "body": body, "labels": list(labels)}
        if issue_type:
            payload["type"] = issue_type
        token = self._token_source.token()
        url = f"{self._base_url}/repos/{owner}/{repo}/issues"
        try:
            response = self._session.post(
                url, json=payload, headers=_headers(f"Bearer {token}"), timeout=self._timeout
            )
        except requests.Timeout as exc:
            raise GitHubError("issue creation timed out", timed_out=True) from exc
        except requests.RequestException as exc:
            raise GitHubError(f"issue creation failed: {exc}") from exc
        if not response.ok:
            raise _error_from_response(response, "issue creation")
        try:
            issue = response.json()
        except ValueError as exc:
            raise GitHubError("issue creation returned invalid JSON") from exc
        if not isinstance(issue, dict):
            raise GitHubError("issue creation returned an unexpected payload")
        return issue


def github_client_from_env(environ: Optional[Mapping[str, str]] = None) -> GitHubClient:
    """Build a client authenticated as the app installation named in the environment."""
    environ = os.environ if environ is None else environ
    logger.info("Initializing GitHub client...")
    private_key = environ.get("TICKETUNE_GITHUB_BOT_PKEY", "")
    if not private_key:
        raise ConfigError("TICKETUNE_GITHUB_BOT_PKEY environment variable not set")
    client_id = environ.get("TICKETUNE_GITHUB_CLIENT_ID", "")
    if not client_id:
        raise ConfigError("TICKETUNE_GITHUB_CLIENT_ID environment variable not set")
    try:
        key = _load_private_key(private_key)
    except ValueError as exc:
        raise ConfigError(f"failed to create GitHub App token source: {exc}") from exc
    try:
        installation_id = int(environ.get("TICKETUNE_INSTALL_ID", ""), 10)
    except ValueError as exc:
        raise ConfigError(
            "TICKETUNE_INSTALL_ID environment variable not set or not an integer"
        ) from exc
    client = GitHubClient(InstallationTokenSource(installation_id, client_id, key))
    logger.info("GitHub client initialized.")
    return client