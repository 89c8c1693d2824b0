from __future__ import annotations

from typing import Callable, Iterator, List, Optional, Tuple

import httpx
import pytest

from sphere_harvey.clients import ChatRequest, ChatResponse, HarveyClient, SphereClient
from sphere_harvey.config import Settings, get_settings
from sphere_harvey.container import ServiceContainer
from sphere_harvey.rendering import DatasheetIndex


class RecordingStorage:
    def __init__(self, fail_uploads: bool = False, fail_deletes: bool = False) -> None:
        self.uploads: List[Tuple[str, str]] = []
        self.deletes: List[str] = []
        self.fail_uploads = fail_uploads
        self.fail_deletes = fail_deletes

    async def upload_yaml(self, filename: str, content: str) -> None:
        if self.fail_uploads:
            raise OSError("storage unavailable")
        self.uploads.append((filename, content))

    async def delete_yaml(self, filename: str) -> None:
        if self.fail_deletes:
            raise OSError("storage unavailable")
        self.deletes.append(filename)


class FakeAssistant:
    def __init__(self, response: Optional[ChatResponse] = None, error: Optional[Exception] = None) -> None:
        self.response = response or ChatResponse(answer="Here is the answer.")
        self.error = error
        self.requests: List[ChatRequest] = []

    async def chat(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def storage() -> RecordingStorage:
    return RecordingStorage()


@pytest.fixture
def assistant() -> FakeAssistant:
    return FakeAssistant()


@pytest.fixture(autouse=True)
def test_settings(monkeypatch) -> Iterator[Settings]:
    monkeypatch.setenv("HARVEY_BASE_URL", "http://harvey.test")
    monkeypatch.setenv("SPHERE_BASE_URL", "http://sphere.test/api")
    monkeypatch.setenv("SUBSCRIBE_TO_EVENTS", "false")
    monkeypatch.setenv("MAX_RETRY_ATTEMPTS", "2")
    monkeypatch.setenv("RETRY_BACKOFF_SECONDS", "0")
    monkeypatch.delenv("HARVEY_STATIC_DIR", raising=False)
    monkeypatch.delenv("DATASHEETS_DIR", raising=False)
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def make_container(test_settings, storage) -> Callable[..., ServiceContainer]:
    def factory(
        harvey_handler: Optional[Callable[[httpx.Request], httpx.Response]] = None,
        sphere_handler: Optional[Callable[[httpx.Request], httpx.Response]] = None,
        datasheets: Optional[DatasheetIndex] = None,
    ) -> ServiceContainer:
        def unreachable(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"error": "unreachable"})

        return ServiceContainer(
            test_settings,
            harvey_client=HarveyClient(
                base_url="http://harvey.test",
                transport=httpx.MockTransport(harvey_handler or unreachable),
            ),
            sphere_client=SphereClient(
                base_url="http://sphere.test/api",
                transport=httpx.MockTransport(sphere_handler or unreachable),
            ),
            storage=storage,
            datasheets=datasheets,
        )

    return factory
