from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from invsync_auth import SessionManager
from invsync_config import EndpointConfig

logger = structlog.get_logger()


class NoWorkingEndpointError(RuntimeError):
    """Every inventory endpoint/method candidate was tried without a usable response."""


def build_url(base: str, path: str, **params: Any) -> str:
    """Build a full URL for the API.

    - Replaces optional "{name}" placeholders in the path from ``params``.
    - Joins the base and path with a single slash.
    """
    for name, value in params.items():
        path = path.replace("{" + name + "}", str(value))
    return f"{base.rstrip('/')}/{path.lstrip('/')}"


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code == 429
    return isinstance(exc, httpx.ConnectError)


def _handle_rate_limit_and_server_error(r: httpx.Response, url: str) -> bool:
    """Common handler for 429 and 5xx responses.

    Returns True if it's a server error (5xx) that caller may handle specially;
    raises for 429 to trigger Tenacity retry.
    """
    if r.status_code == 429:
        logger.warning("Rate limited, backing off", url=url, status_code=r.status_code)
        raise httpx.HTTPStatusError("Rate limited", request=r.request, response=r)
    if r.status_code >= 500:
        logger.error("Server error", url=url, status_code=r.status_code, response=r.text[:500])
        return True
    return False


@retry(
    stop=stop_after_attempt(4),
    wait=wait_exponential_jitter(1, 5),
    retry=retry_if_exception(_is_retryable),
    reraise=True,
)
def http_get_json(client: httpx.Client, url: str, headers: dict[str, str], timeout: float) -> Any:
    """HTTP GET with auth headers, 429 backoff and structured logging.

    Returns parsed JSON, or raises on HTTP errors after retries.
    """
    logger.debug("Making GET request", url=url)
    try:
        r = client.get(url, headers={**headers, "Accept": "application/json"}, timeout=timeout)
        if _handle_rate_limit_and_server_error(r, url):
            raise RuntimeError(f"GET {url} -> {r.status_code}")
        r.raise_for_status()
        return r.json()
    except httpx.HTTPStatusError as e:
        logger.error(
            "HTTP error",
            url=url,
            status_code=e.response.status_code,
            response=e.response.text[:500],
        )
        raise
    except Exception as e:
        logger.error("Request error", url=url, error=str(e))
        raise


def unwrap_inventory(body: Any) -> Any:
    """Pull the record list out of a known envelope; other bodies pass through."""
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        if isinstance(body.get("data"), list):
            return body["data"]
        if isinstance(body.get("items"), list):
            return body["items"]
    return body


def unwrap_list(body: Any) -> list[Any]:
    if isinstance(body, list):
        return body
    if isinstance(body, dict) and isinstance(body.get("data"), list):
        return body["data"]
    return []


@dataclass(frozen=True)
class Candidate:
    url: str
    method: str


class Verdict(str, Enum):
    ACCEPT = "accept"
    REAUTH = "reauth"
    REJECT = "reject"


def build_candidates(api_base: str, endpoints: list[EndpointConfig]) -> list[Candidate]:
    """Expand endpoints x methods into the fixed probing order."""
    return [
        Candidate(build_url(api_base, ep.path), method)
        for ep in endpoints
        for method in ep.methods
    ]


def classify_response(r: httpx.Response | None) -> tuple[Verdict, Any]:
    if r is None:
        return Verdict.REJECT, None
    if r.status_code in (401, 403):
        return Verdict.REAUTH, None
    if not r.is_success:
        return Verdict.REJECT, None
    try:
        body = r.json()
    except ValueError:
        return Verdict.REJECT, None
    return Verdict.ACCEPT, unwrap_inventory(body)


class InventoryProber:
    """Try inventory candidates in order until one yields a usable payload."""

    def __init__(
        self,
        session: SessionManager,
        candidates: list[Candidate],
        client: httpx.Client | None = None,
        timeout: float = 30,
    ):
        if not candidates:
            raise ValueError("at least one inventory candidate is required")
        self.session = session
        self.candidates = candidates
        self.client = client or session.client
        self.timeout = timeout
        self.last_candidate: Candidate | None = None

    def _send(self, candidate: Candidate) -> httpx.Response | None:
        headers = {**self.session.get_auth_header(), "Accept": "application/json"}
        kwargs: dict[str, Any] = {"headers": headers, "timeout": self.timeout}
        if candidate.method != "GET":
            kwargs["json"] = {}
        try:
            return self.client.request(candidate.method, candidate.url, **kwargs)
        except httpx.HTTPError as e:
            logger.info(
                "Inventory candidate unreachable",
                url=candidate.url,
                method=candidate.method,
                error=str(e),
            )
            return None

    def fetch_inventory(self) -> Any:
        for candidate in self.candidates:
            reauthed = False
            while True:
                logger.debug("Trying inventory endpoint", url=candidate.url, method=candidate.method)
                r = self._send(candidate)
                verdict, payload = classify_response(r)
                if verdict is Verdict.ACCEPT:
                    self.last_candidate = candidate
                    logger.info(
                        "Fetched inventory",
                        url=candidate.url,
                        method=candidate.method,
                        count=len(payload) if isinstance(payload, list) else None,
                    )
                    return payload
                if verdict is Verdict.REAUTH and not reauthed:
                    logger.warning(
                        "Unauthorized, re-authenticating",
                        url=candidate.url,
                        method=candidate.method,
                        status_code=r.status_code if r is not None else None,
                    )
                    self.session.invalidate()
                    reauthed = True
                    continue
                logger.info(
                    "Inventory candidate rejected",
                    url=candidate.url,
                    method=candidate.method,
                    status_code=r.status_code if r is not None else None,
                )
                break

        raise NoWorkingEndpointError(
            f"No valid inventory endpoint found after {len(self.candidates)} candidates"
        )


def fetch_histories(
    session: SessionManager, url: str, client: httpx.Client | None = None, timeout: float = 60
) -> list[Any]:
    """GET the full remote history collection from its fixed endpoint."""
    logger.info("Fetching remote histories", url=url)
    body = http_get_json(client or session.client, url, session.get_auth_header(), timeout)
    return unwrap_list(body)


def fetch_item_history(
    session: SessionManager,
    api_base: str,
    path: str,
    remote_item_id: str,
    client: httpx.Client | None = None,
    timeout: float = 30,
) -> list[Any]:
    """GET the remote history of a single remote item."""
    url = build_url(api_base, path, item_id=remote_item_id)
    body = http_get_json(client or session.client, url, session.get_auth_header(), timeout)
    return unwrap_list(body)
