from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Literal,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    Union,
)

from .clients.harvey import ChatRequest, ChatResponse
from .context import PricingContext
from .file_manager import YamlStorage
from .logging import get_logger
from .models import ChatMessage, ContextInput, ContextItem, PromptPreset, new_id, utcnow
from .stream import ResolutionEvent
from .urls import extract_http_references, extract_pricing_urls, normalize_url

logger = get_logger(__name__)

CycleState = Literal["idle", "detecting", "submitting", "awaiting-response", "settled", "failed"]

NO_RESPONSE_MESSAGE = "No response available."
EMPTY_FILES_MESSAGE = "One or more uploaded files were empty and were skipped."
UNREADABLE_FILE_MESSAGE = "Could not read the uploaded file. Please try again."


class SessionBusyError(RuntimeError):
    """A question/answer cycle is already in flight for this session."""


class SessionNotFoundError(KeyError):
    """No chat session is registered under the requested id."""


class Assistant(Protocol):
    async def chat(self, request: ChatRequest) -> ChatResponse: ...


@dataclass
class ChatSession:
    """Transcript, question draft and pricing context of one conversation."""

    context: PricingContext
    id: str = field(default_factory=new_id)
    messages: List[ChatMessage] = field(default_factory=list)
    question: str = ""
    state: CycleState = "idle"
    created_at: datetime = field(default_factory=utcnow)

    @property
    def in_flight(self) -> bool:
        return self.state != "idle"

    @property
    def is_submit_disabled(self) -> bool:
        return self.in_flight or not self.question.strip()

    def append_message(
        self,
        role: Literal["user", "assistant"],
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ChatMessage:
        message = ChatMessage(role=role, content=content, metadata=metadata)
        self.messages.append(message)
        return message

    def available_detected(self, question: Optional[str] = None) -> List[str]:
        """URLs in the question draft that the context does not track yet."""

        text = self.question if question is None else question
        return self.context.diff_detected_urls(extract_pricing_urls(text))

    def add_url(self, raw_url: str, origin: Literal["user", "detected"] = "user") -> Optional[ContextItem]:
        normalized = normalize_url(raw_url)
        added = self.context.add(
            [
                ContextInput(
                    kind="url",
                    value=normalized,
                    label=normalized,
                    origin=origin,
                    url=normalized,
                    transform="not-started",
                )
            ]
        )
        return added[0] if added else None

    def attach_files(self, files: Sequence[Tuple[str, str]]) -> List[ContextItem]:
        """Add uploaded YAML documents, given as ``(file name, content)`` pairs."""

        inputs = [
            ContextInput(kind="yaml", value=content, label=name, origin="user")
            for name, content in files
            if content.strip()
        ]
        added = self.context.add(inputs) if inputs else []
        if len(inputs) != len(files):
            self.append_message("assistant", EMPTY_FILES_MESSAGE)
        return added

    async def attach_paths(self, paths: Iterable[Union[str, Path]]) -> List[ContextItem]:
        files: List[Tuple[str, str]] = []
        try:
            for path in paths:
                path = Path(path)
                content = await asyncio.to_thread(path.read_text, encoding="utf-8")
                files.append((path.name, content))
        except (OSError, UnicodeDecodeError) as exc:
            logger.error("harvey.session.file_read.failed", session_id=self.id, error=str(exc))
            self.append_message("assistant", UNREADABLE_FILE_MESSAGE)
            return []
        return self.attach_files(files)

    def apply_preset(self, preset: PromptPreset) -> List[ContextItem]:
        self.question = preset.question
        if not preset.context:
            return []
        return self.context.add(
            ContextInput(kind=entry.kind, value=entry.value, label=entry.label, origin="preset")
            for entry in preset.context
        )

    def new_conversation(self) -> None:
        """Clear transcript, draft and context without deleting stored YAML."""

        if self.in_flight:
            raise SessionBusyError("Cannot start a new conversation while a question is in flight.")
        self.messages.clear()
        self.question = ""
        self.context.reset()


class ChatOrchestrator:
    """Drives question/answer cycles between sessions and the assistant."""

    def __init__(self, assistant: Assistant) -> None:
        self._assistant = assistant

    def build_request(self, session: ChatSession, question: str) -> ChatRequest:
        return ChatRequest(
            question=question,
            urls=session.context.url_references(),
            yamls=session.context.unique_yaml_values(),
        )

    async def ask(self, session: ChatSession, question: Optional[str] = None) -> ChatMessage:
        """Run one cycle and return the assistant message it appended."""

        if session.in_flight:
            raise SessionBusyError("A question is already being answered for this session.")
        text = (session.question if question is None else question).strip()
        if not text:
            raise ValueError("Question is required.")

        try:
            session.state = "detecting"
            self._track_detected_urls(session, text)

            session.state = "submitting"
            session.append_message("user", text)
            pending_ids = session.context.mark_urls_pending()
            request = self.build_request(session, text)

            session.state = "awaiting-response"
            logger.info(
                "harvey.chat.submitted",
                session_id=session.id,
                urls=len(request.urls),
                yamls=len(request.yamls),
            )
            try:
                response = await self._assistant.chat(request)
            except Exception as exc:
                session.state = "failed"
                logger.warning("harvey.chat.failed", session_id=session.id, error=str(exc))
                session.context.mark_stalled(pending_ids)
                return session.append_message("assistant", f"Error: {exc}")

            reply = session.append_message(
                "assistant",
                response.answer or NO_RESPONSE_MESSAGE,
                metadata=self._build_metadata(response),
            )
            self._track_agent_references(session, response)
            session.state = "settled"
            logger.info("harvey.chat.settled", session_id=session.id, message_id=reply.id)
            return reply
        finally:
            session.question = ""
            session.state = "idle"

    def _track_detected_urls(self, session: ChatSession, question: str) -> List[ContextItem]:
        fresh = session.context.diff_detected_urls(extract_pricing_urls(question))
        if not fresh:
            return []
        return session.context.add(
            ContextInput(kind="url", value=url, label=url, origin="detected", url=url, transform="pending")
            for url in fresh
        )

    def _track_agent_references(self, session: ChatSession, response: ChatResponse) -> List[ContextItem]:
        discovered = extract_http_references(response.plan) + extract_http_references(response.result)
        fresh = session.context.diff_detected_urls(discovered)
        if not fresh:
            return []
        logger.info("harvey.chat.agent_urls", session_id=session.id, count=len(fresh))
        return session.context.add(
            ContextInput(kind="url", value=url, label=url, origin="agent", url=url, transform="not-started")
            for url in fresh
        )

    @staticmethod
    def _build_metadata(response: ChatResponse) -> Optional[Dict[str, Any]]:
        metadata: Dict[str, Any] = {}
        if response.plan is not None:
            metadata["plan"] = response.plan
        if response.result is not None:
            metadata["result"] = response.result
        return metadata or None


class SessionRegistry:
    """In-memory set of live chat sessions."""

    def __init__(
        self,
        storage_factory: Optional[Callable[[], Optional[YamlStorage]]] = None,
        on_context_update: Optional[Callable[[ChatSession, ContextItem], None]] = None,
    ) -> None:
        self._sessions: Dict[str, ChatSession] = {}
        self._storage_factory = storage_factory
        self._on_context_update = on_context_update

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self) -> ChatSession:
        storage = self._storage_factory() if self._storage_factory else None
        session = ChatSession(context=PricingContext(storage))
        self._sessions[session.id] = session
        logger.info("harvey.session.created", session_id=session.id)
        return session

    def get(self, session_id: str) -> ChatSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(session_id) from None

    def discard(self, session_id: str) -> ChatSession:
        session = self.get(session_id)
        session.context.clear()
        del self._sessions[session_id]
        logger.info("harvey.session.discarded", session_id=session_id)
        return session

    def apply_resolution(self, event: ResolutionEvent) -> List[ContextItem]:
        """Deliver a resolution event to whichever session tracks the item."""

        resolved: List[ContextItem] = []
        for session in list(self._sessions.values()):
            item = session.context.apply_resolution_event(event.id, event.yaml_content)
            if item is None:
                continue
            resolved.append(item)
            if self._on_context_update is not None:
                self._on_context_update(session, item)
        return resolved

    async def flush(self) -> None:
        await asyncio.gather(*(session.context.flush() for session in self._sessions.values()))
