from __future__ import annotations

from functools import partial
from typing import Any

import httpx
import pytest

from invsync_auth import SessionCache, SessionManager
from invsync_config import EndpointConfig
from invsync_db import InventoryStore, RunLedger
from invsync_engine import SyncEngine
from invsync_http import InventoryProber, build_candidates, fetch_histories
from invsync_reconcile import HistorySynchronizer, Reconciler

BASE = "https://remote.test"
AUTH_PATH = "/api/auth/token"
INVENTORY_PATH = "/api/inventory/inventory"
HISTORY_PATH = "/api/inventory/history/all"


class FakeRemote:
    """Routes requests by (method, path) to canned responses and records every call.

    Each route holds a queue of replies; the last reply repeats once the queue is
    drained. A reply is an exception instance (raised) or a dict of
    ``status`` / ``json`` / ``content`` / ``headers``.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Any]] = {}
        self.requests: list[httpx.Request] = []
        self.route("POST", AUTH_PATH, {"json": {"access_token": "tok-1", "expires_in": 3600}})
        self.route("GET", HISTORY_PATH, {"json": []})

    def route(self, method: str, path: str, *replies: Any) -> None:
        self.routes[(method, path)] = list(replies)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"message": "not found"})
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(reply, Exception):
            raise reply
        kwargs: dict[str, Any] = {"headers": reply.get("headers")}
        if "json" in reply:
            kwargs["json"] = reply["json"]
        else:
            kwargs["content"] = reply.get("content", b"")
        return httpx.Response(reply.get("status", 200), **kwargs)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))

    @property
    def calls(self) -> list[tuple[str, str]]:
        return [(r.method, r.url.path) for r in self.requests]

    @property
    def auth_calls(self) -> int:
        return self.calls.count(("POST", AUTH_PATH))

    def calls_excluding_auth(self) -> list[tuple[str, str]]:
        return [c for c in self.calls if c != ("POST", AUTH_PATH)]


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "invsync.sqlite3")


@pytest.fixture
def store(db_path) -> InventoryStore:
    return InventoryStore(db_path)


@pytest.fixture
def ledger(db_path) -> RunLedger:
    return RunLedger(db_path)


@pytest.fixture
def session(remote) -> SessionManager:
    return SessionManager(
        auth_url=BASE + AUTH_PATH,
        username="ops@example.com",
        password="secret",
        cache=SessionCache(),
        client=remote.client(),
        retry_wait=0,
    )


@pytest.fixture
def make_engine(session, store, ledger):
    def _make(endpoints: list[EndpointConfig] | None = None) -> SyncEngine:
        endpoints = endpoints or [EndpointConfig(path=INVENTORY_PATH, methods=["GET"])]
        prober = InventoryProber(session, build_candidates(BASE, endpoints))
        histories = HistorySynchronizer(store, partial(fetch_histories, session, BASE + HISTORY_PATH))
        return SyncEngine(
            session=session,
            prober=prober,
            store=store,
            ledger=ledger,
            reconciler=Reconciler(store),
            histories=histories,
            api_endpoint=BASE,
        )

    return _make
