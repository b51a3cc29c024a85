"""Shared test configuration and fixtures."""

import asyncio
import json
import logging
from collections.abc import Callable

import httpx
import pytest

from boqsync.cli import cleanup_logging
from boqsync.config import BoqSyncConfig
from boqsync.services.approval_api import ApprovalApiClient
from boqsync.storage.queue import SubmissionQueue
from boqsync.sync.cache import ApprovalStateCache

API_URL = "http://testserver/api"


@pytest.fixture(scope="function", autouse=True)
def cleanup_logging_handlers():
    """Automatically cleanup logging handlers after each test to prevent ResourceWarnings."""
    yield
    cleanup_logging()


@pytest.fixture(scope="function", autouse=True)
def reset_logging():
    """Reset logging configuration after each test."""
    yield
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)
    root_logger.setLevel(logging.WARNING)


class FakeApprovalServer:
    """In-memory approval service served through ``httpx.MockTransport``.

    Records carry the server's ``approved`` column: None while pending, True
    once approved and False once rejected.
    """

    def __init__(self):
        self.records: dict[str, dict[str, dict]] = {"shops": {}, "materials": {}}
        self.calls: list[tuple[str, str]] = []
        self.offline = False
        self.error_status: int | None = None
        self.require_auth = False
        self.failing_names: set[str] = set()
        self.held_names: set[str] = set()
        self.held = asyncio.Event()
        self.release = asyncio.Event()
        self.hold: asyncio.Event | None = None
        self.received = asyncio.Event()
        self.auth_headers: list[str | None] = []
        self._next_id = 1

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def seed(self, collection: str, name: str, approved: bool | None = None) -> dict:
        record = {"id": self._new_id(), "name": name, "approved": approved}
        self.records[collection][record["id"]] = record
        return record

    def calls_to(self, method: str, path: str) -> int:
        return sum(1 for call in self.calls if call == (method, path))

    def _new_id(self) -> str:
        record_id = f"srv-{self._next_id}"
        self._next_id += 1
        return record_id

    async def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api")
        self.calls.append((request.method, path))
        self.auth_headers.append(request.headers.get("Authorization"))
        self.received.set()

        if self.hold is not None:
            await self.hold.wait()
        if self.offline:
            msg = "server unreachable"
            raise httpx.ConnectError(msg, request=request)
        if self.error_status is not None:
            return httpx.Response(self.error_status, json={"error": "boom"})
        if self.require_auth and "Authorization" not in request.headers:
            return httpx.Response(401, json={"error": "Authentication required"})

        parts = path.strip("/").split("/")
        collection = parts[0]

        if request.method == "GET" and collection.endswith("-pending-approval"):
            collection = collection.removesuffix("-pending-approval")
            rows = [r for r in self.records[collection].values() if r["approved"] is None]
            return httpx.Response(200, json={collection: rows})

        if collection not in self.records:
            return httpx.Response(404, json={"error": "not found"})
        kind = collection.removesuffix("s")

        if request.method == "GET" and len(parts) == 1:
            rows = [r for r in self.records[collection].values() if r["approved"] is True]
            return httpx.Response(200, json={collection: rows})

        if request.method == "POST" and len(parts) == 1:
            payload = json.loads(request.content or b"{}")
            if payload.get("name") in self.failing_names:
                return httpx.Response(500, json={"error": "create failed"})
            if payload.get("name") in self.held_names:
                self.held.set()
                await self.release.wait()
            record = {**payload, "id": self._new_id(), "approved": None}
            self.records[collection][record["id"]] = record
            return httpx.Response(201, json={"message": "created", kind: record})

        record = self.records[collection].get(parts[1])
        if record is None:
            return httpx.Response(404, json={"error": "not found"})

        if request.method == "DELETE":
            del self.records[collection][parts[1]]
            return httpx.Response(200, json={"message": "deleted"})

        if request.method == "POST" and parts[2:] == ["approve"]:
            record["approved"] = True
            return httpx.Response(200, json={kind: record})

        if request.method == "POST" and parts[2:] == ["reject"]:
            body = json.loads(request.content or b"{}")
            record["approved"] = False
            record["approval_reason"] = body.get("reason")
            return httpx.Response(200, json={kind: record})

        return httpx.Response(405)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCredentials:
    """Stands in for CredentialWatcher without touching the filesystem."""

    def __init__(self, token: str | None = None):
        self.token = token
        self.callback: Callable[[bool], None] | None = None
        self.is_watching = False

    def has_credential(self) -> bool:
        return self.token is not None

    def current_token(self) -> str | None:
        return self.token

    def start(self, callback: Callable[[bool], None]) -> None:
        self.callback = callback
        self.is_watching = True

    def stop(self) -> None:
        self.is_watching = False

    def login(self, token: str = "token-123") -> None:
        self.token = token
        if self.callback:
            self.callback(True)

    def logout(self) -> None:
        self.token = None
        if self.callback:
            self.callback(False)


@pytest.fixture
def config(tmp_path):
    """Create test configuration with everything under tmp_path."""
    return BoqSyncConfig(
        api_base_url=API_URL,
        data_dir=tmp_path / "data",
        log_dir=tmp_path / "logs",
        credential_file=tmp_path / "auth" / "authToken",
    )


@pytest.fixture
def server():
    return FakeApprovalServer()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def credentials():
    return FakeCredentials(token="token-123")


@pytest.fixture
def client(config, server, credentials):
    return ApprovalApiClient(
        config,
        token_provider=credentials.current_token,
        transport=server.transport,
    )


@pytest.fixture
def store(config):
    return SubmissionQueue(config)


@pytest.fixture
def cache(client):
    return ApprovalStateCache(client)
