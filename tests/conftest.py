"""Shared fixtures: an in-process fake of the Yappy API and an in-memory store."""

from collections import deque

import httpx
import pytest
from cryptography.fernet import Fernet

from yappypay.common.db import init_db, make_engine, make_session_factory
from yappypay.services.storage.service import LocalStorage
from yappypay.services.yappy.client import YappyClient
from yappypay.services.yappy.schemas import Credentials

BASE_URL = "https://api.yappy.test/v1"


class FakeYappyApi:
    """Scriptable stand-in for the vendor API behind `httpx.MockTransport`.

    `statuses` is consumed one item per status read; an item may be a status
    string, a `(status_code, json)` error tuple or an exception class to raise.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.open_responses: deque = deque()
        self.open_default = (200, {"body": {"token": "TOKEN-1"}, "status": {"code": "YP-0000"}})
        self.qr_response = (200, {"body": {"transactionId": "TX-1", "hash": "HASH-1", "date": "2024-01-01"}})
        self.statuses: deque = deque()
        self.status_default = "PENDING"
        self.void_response = (200, {"body": {"status": "VOIDED"}})
        self.close_response = (200, {"body": {"status": "CLOSED"}})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method, path = request.method, request.url.path
        if path.endswith("/session/device") and method == "POST":
            item = self.open_responses.popleft() if self.open_responses else self.open_default
            return self._respond(item, request)
        if path.endswith("/session/device") and method == "DELETE":
            return self._respond(self.close_response, request)
        if path.endswith("/qr/generate/DYN"):
            return self._respond(self.qr_response, request)
        if "/transaction/" in path and method == "PUT":
            return self._respond(self.void_response, request)
        if "/transaction/" in path and method == "GET":
            item = self.statuses.popleft() if self.statuses else self.status_default
            if isinstance(item, str):
                item = (200, {"body": {"status": item, "transaction_id": path.rsplit("/", 1)[-1]}})
            return self._respond(item, request)
        return httpx.Response(404, json={"message": "not found"})

    def _respond(self, item, request: httpx.Request) -> httpx.Response:
        if isinstance(item, type) and issubclass(item, Exception):
            raise item("simulated failure", request=request)
        status_code, payload = item
        return httpx.Response(status_code, json=payload)

    def count(self, method: str, path_suffix: str) -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path.endswith(path_suffix))

    def count_prefix(self, method: str, fragment: str) -> int:
        return sum(1 for r in self.requests if r.method == method and fragment in r.url.path)

    def client(self, credentials: Credentials) -> YappyClient:
        return YappyClient(credentials, http_client=httpx.AsyncClient(transport=httpx.MockTransport(self.handler)))


class MemoryTokenStore:
    def __init__(self, token: str | None = None) -> None:
        self.token = token
        self.saved: list[str] = []

    def save_session_token(self, token: str) -> None:
        self.saved.append(token)
        self.token = token

    def get_session_token(self) -> str | None:
        return self.token or None


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(
        api_key="api-key-0123456789",
        secret_key="secret-key-0123456789",
        device_id="CAJA-02",
        group_id="ID-TESTING",
        device_name="Caja",
        device_user="cajero",
        base_url=BASE_URL,
    )


@pytest.fixture
def fake_api() -> FakeYappyApi:
    return FakeYappyApi()


@pytest.fixture
def token_store() -> MemoryTokenStore:
    return MemoryTokenStore()


@pytest.fixture
def storage() -> LocalStorage:
    engine = make_engine("sqlite://")
    init_db(engine)
    return LocalStorage(make_session_factory(engine), Fernet(Fernet.generate_key()))
