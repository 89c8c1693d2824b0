from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx

from ..config import get_settings
from ..logging import get_logger
from ..stream import URL_TRANSFORM_EVENT, ResolutionChannel, ResolutionEvent

logger = get_logger(__name__)

YAML_CONTENT_TYPE = "application/yaml"
RETRYABLE_STATUS_CODES = {502, 503, 504}


class HarveyClientError(Exception):
    """Raised when the H.A.R.V.E.Y. API cannot fulfil or process a request."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class ChatRequest:
    question: str
    urls: List[Dict[str, str]] = field(default_factory=list)
    yamls: List[str] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "question": self.question,
            "pricing_urls": [{"id": entry["id"], "url": entry["url"]} for entry in self.urls],
            "pricing_yamls": list(self.yamls),
        }


@dataclass
class ChatResponse:
    answer: Optional[str]
    plan: Optional[Dict[str, Any]] = None
    result: Optional[Dict[str, Any]] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "ChatResponse":
        if not isinstance(payload, dict):
            raise HarveyClientError("Unexpected chat response payload")
        answer = payload.get("answer")
        return cls(
            answer=answer if isinstance(answer, str) else None,
            plan=payload.get("plan") or None,
            result=payload.get("result") or None,
        )


class SseDecoder:
    """Incremental decoder for ``text/event-stream`` lines."""

    def __init__(self) -> None:
        self._event = "message"
        self._data: List[str] = []

    def feed(self, line: str) -> Optional[Tuple[str, str]]:
        line = line.rstrip("\r")
        if not line:
            if not self._data:
                self._event = "message"
                return None
            dispatched = (self._event, "\n".join(self._data))
            self._event = "message"
            self._data = []
            return dispatched
        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        return None


class HarveyClient:
    """Async client for the H.A.R.V.E.Y. assistant API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self._base_url = (base_url or str(settings.harvey_base_url)).rstrip("/")
        self._timeout = timeout_seconds or settings.http_timeout_seconds
        self._chat_timeout = max(settings.chat_timeout_seconds, self._timeout)
        self._max_attempts = max(settings.max_retry_attempts, 1)
        self._backoff = settings.retry_backoff_seconds
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def static_url(self, filename: str) -> str:
        return f"{self._base_url}/static/{filename}"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def chat(self, request: ChatRequest) -> ChatResponse:
        logger.info(
            "harvey.client.chat.request",
            question_length=len(request.question),
            urls=len(request.urls),
            yamls=len(request.yamls),
        )
        try:
            response = await self._client.post(
                "/chat",
                json=request.to_payload(),
                timeout=self._chat_timeout,
            )
        except httpx.HTTPError as exc:
            logger.error("harvey.client.chat.transport_failure", error=str(exc))
            raise HarveyClientError(f"Could not reach H.A.R.V.E.Y.: {exc}") from exc

        self._raise_for_error(response)
        chat_response = ChatResponse.from_payload(response.json())
        logger.info(
            "harvey.client.chat.completed",
            answer_length=len(chat_response.answer or ""),
            has_plan=chat_response.plan is not None,
            has_result=chat_response.result is not None,
        )
        return chat_response

    async def upload_yaml(self, filename: str, content: str) -> None:
        files = {"file": (filename, content.encode("utf-8"), YAML_CONTENT_TYPE)}
        response = await self._send_with_retry("POST", "/upload", files=files)
        self._raise_for_error(response)
        logger.info("harvey.client.upload.completed", filename=filename)

    async def delete_yaml(self, filename: str) -> None:
        response = await self._send_with_retry("DELETE", f"/pricing/{filename}")
        self._raise_for_error(response)
        logger.info("harvey.client.delete.completed", filename=filename)

    async def iter_events(self) -> AsyncIterator[ResolutionEvent]:
        """Yield resolution events from the assistant's server-sent event stream."""

        decoder = SseDecoder()
        async with self._client.stream(
            "GET",
            "/events",
            headers={"Accept": "text/event-stream"},
            timeout=httpx.Timeout(self._timeout, read=None),
        ) as response:
            if response.status_code >= 400:
                await response.aread()
                self._raise_for_error(response)
            logger.info("harvey.client.events.connected")
            async for line in response.aiter_lines():
                decoded = decoder.feed(line)
                if decoded is None:
                    continue
                event_name, data = decoded
                if event_name != URL_TRANSFORM_EVENT:
                    continue
                try:
                    yield ResolutionEvent.from_payload(json.loads(data))
                except (ValueError, TypeError, AttributeError) as exc:
                    logger.warning("harvey.client.events.malformed", error=str(exc))

    async def pump_events(self, channel: ResolutionChannel, reconnect_seconds: float) -> None:
        """Forward the event stream into ``channel``, reconnecting until cancelled."""

        while True:
            try:
                async for event in self.iter_events():
                    await channel.asend(event)
                logger.warning("harvey.client.events.closed")
            except asyncio.CancelledError:
                logger.info("harvey.client.events.cancelled")
                raise
            except (httpx.HTTPError, HarveyClientError) as exc:
                logger.warning("harvey.client.events.disconnected", error=str(exc))
            await asyncio.sleep(reconnect_seconds)

    async def _send_with_retry(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        delay = self._backoff
        for attempt in range(1, self._max_attempts + 1):
            final_attempt = attempt >= self._max_attempts
            try:
                response = await self._client.request(method, path, **kwargs)
            except httpx.TransportError as exc:
                if final_attempt:
                    logger.error("harvey.client.transport_error", path=path, attempts=attempt, error=str(exc))
                    raise HarveyClientError(f"Could not reach H.A.R.V.E.Y.: {exc}") from exc
                logger.warning("harvey.client.transport_retry", path=path, attempt=attempt, sleep=delay)
            else:
                if response.status_code not in RETRYABLE_STATUS_CODES or final_attempt:
                    return response
                logger.warning(
                    "harvey.client.status_retry",
                    path=path,
                    attempt=attempt,
                    status=response.status_code,
                    sleep=delay,
                )
            await asyncio.sleep(delay)
            delay *= 2
        raise HarveyClientError("H.A.R.V.E.Y. request retries exhausted.")

    @staticmethod
    def _raise_for_error(response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        detail: Any = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            detail = body.get("detail") or body.get("error")
        message = str(detail) if detail else f"H.A.R.V.E.Y. responded with status {response.status_code}"
        raise HarveyClientError(message, status_code=response.status_code)
