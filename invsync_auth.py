from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import httpx
import structlog
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

logger = structlog.get_logger()

DEFAULT_TOKEN_TTL = 3600
TOKEN_HEADERS = ("authorization", "access-token")


class AuthenticationError(RuntimeError):
    """The remote system rejected the credentials or returned no token."""


class SessionCache:
    """Bearer token and its expiry (epoch seconds), shared by reference."""

    def __init__(self) -> None:
        self.token: str | None = None
        self.expires_at: float | None = None

    def is_valid(self, now: float) -> bool:
        if not self.token:
            return False
        return self.expires_at is None or now < self.expires_at

    def store(self, token: str, expires_at: float | None) -> None:
        self.token = token
        self.expires_at = expires_at

    def clear(self) -> None:
        self.token = None
        self.expires_at = None


_process_cache: SessionCache | None = None


def default_session_cache() -> SessionCache:
    """Return the process-wide cache, creating it on first use."""
    global _process_cache
    if _process_cache is None:
        _process_cache = SessionCache()
    return _process_cache


def _token_from_headers(headers: httpx.Headers) -> str | None:
    for name in TOKEN_HEADERS:
        val = headers.get(name)
        if val:
            return val[len("Bearer ") :] if val.startswith("Bearer ") else val
    return None


class SessionManager:
    def __init__(
        self,
        auth_url: str,
        username: str,
        password: str,
        cache: SessionCache | None = None,
        client: httpx.Client | None = None,
        timeout: float = 10,
        retry_wait: float = 1.0,
        clock: Callable[[], float] = time.time,
    ):
        self.auth_url = auth_url
        self.username = username
        self.password = password
        self.cache = cache if cache is not None else default_session_cache()
        self.client = client or httpx.Client()
        self.timeout = timeout
        self.retry_wait = retry_wait
        self.clock = clock

    @property
    def connected(self) -> bool:
        return self.cache.token is not None

    def authenticate(self) -> str:
        """Log in with form-encoded credentials and cache the returned token.

        The token is taken from the ``access_token`` field when present and
        otherwise recovered from an Authorization/Access-Token response header.
        Raises AuthenticationError on any failure.
        """
        logger.info("Authenticating with remote system", url=self.auth_url)
        try:
            r = self.client.post(
                self.auth_url,
                data={"username": self.username, "password": self.password},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            self.cache.clear()
            logger.error("Auth request error", url=self.auth_url, error=str(e))
            raise AuthenticationError(f"Authentication request failed: {e}") from e

        if not r.is_success:
            self.cache.clear()
            logger.error("Auth failed", status_code=r.status_code, response=r.text[:500])
            raise AuthenticationError(
                f"Authentication failed with status {r.status_code}: {r.text[:200]}"
            )

        try:
            body: Any = r.json()
        except ValueError:
            body = None

        token_val = None
        expires_in: Any = None
        if isinstance(body, dict):
            token_val = body.get("access_token") or body.get("token")
            expires_in = body.get("expires_in")
        if not isinstance(token_val, str) or not token_val:
            token_val = _token_from_headers(r.headers)
        if not token_val:
            self.cache.clear()
            logger.error("No token found in auth response", status_code=r.status_code)
            raise AuthenticationError("Authentication succeeded but no token was returned")

        try:
            ttl = float(expires_in) if expires_in is not None else DEFAULT_TOKEN_TTL
        except (TypeError, ValueError):
            ttl = DEFAULT_TOKEN_TTL
        self.cache.store(token_val, self.clock() + ttl)
        logger.info("Authentication successful", expires_in=ttl)
        return token_val

    def _ensure_token(self) -> str:
        if self.cache.is_valid(self.clock()):
            return self.cache.token  # type: ignore[return-value]
        # One re-attempt per failed call; later calls start over
        for attempt in Retrying(
            stop=stop_after_attempt(2),
            wait=wait_fixed(self.retry_wait),
            retry=retry_if_exception_type(AuthenticationError),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning("Authentication failed, attempting once more")
                return self.authenticate()
        raise AuthenticationError("Authentication failed")  # pragma: no cover

    def get_auth_header(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._ensure_token()}"}

    def invalidate(self) -> None:
        """Forget the cached token so the next header forces a fresh login."""
        self.cache.clear()
