from __future__ import annotations

from dataclasses import asdict
from typing import Annotated, Any, Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sse_starlette import EventSourceResponse, JSONServerSentEvent

from .chat import UNREADABLE_FILE_MESSAGE, ChatSession, SessionBusyError, SessionNotFoundError
from .clients import PricingQuery, SphereError, SphereNotFoundError, SphereUnavailableError
from .container import ServiceContainer, lifespan
from .logging import get_logger
from .models import ContextInput, ContextItem
from .rendering import render_datasheet, render_pricing, render_text
from .stream import ResolutionEvent
from .urls import InvalidUrlError, normalize_url

logger = get_logger(__name__)


class ContextEntry(BaseModel):
    kind: Literal["url", "yaml"]
    value: str
    label: Optional[str] = None
    origin: Literal["user", "preset"] = "user"


class ContextAddRequest(BaseModel):
    items: List[ContextEntry] = Field(min_length=1)


class ContextUrlRequest(BaseModel):
    url: str


class CatalogAddRequest(BaseModel):
    owner: str
    name: str
    sphere_id: str
    collection_name: Optional[str] = None


class QuestionRequest(BaseModel):
    question: str


class NotificationUrlTransform(BaseModel):
    id: str
    yaml_content: str


class DatasheetRenderRequest(BaseModel):
    content: Optional[str] = None
    plan_key: Optional[str] = None
    saas_name: Optional[str] = None


class PricingRenderRequest(BaseModel):
    content: str


class ContextItemsResponse(BaseModel):
    items: List[Dict[str, Any]]


class SessionResponse(BaseModel):
    id: str
    created_at: str
    state: str
    question: str
    messages: List[Dict[str, Any]]
    context: List[Dict[str, Any]]


class QuestionResponse(BaseModel):
    message: Dict[str, Any]
    session: SessionResponse


class RenderResponse(BaseModel):
    text: str
    datasheet: Optional[str] = None


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


container_dependency = Annotated[ServiceContainer, Depends(get_container)]


def _session_or_404(container: ServiceContainer, session_id: str) -> ChatSession:
    try:
        return container.registry.get(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found") from None


def _session_response(session: ChatSession) -> SessionResponse:
    return SessionResponse(
        id=session.id,
        created_at=session.created_at.isoformat(),
        state=session.state,
        question=session.question,
        messages=[message.to_dict() for message in session.messages],
        context=[item.to_dict() for item in session.context],
    )


def _items_response(items: List[ContextItem]) -> ContextItemsResponse:
    return ContextItemsResponse(items=[item.to_dict() for item in items])


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    app = FastAPI(title="SPHERE H.A.R.V.E.Y. Client API", lifespan=lifespan)
    app.state.container = container or ServiceContainer()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "UP"}

    @app.post("/sessions", status_code=status.HTTP_201_CREATED, response_model=SessionResponse)
    async def create_session(container: container_dependency) -> SessionResponse:
        return _session_response(container.registry.create())

    @app.get("/sessions/{session_id}", response_model=SessionResponse)
    async def read_session(session_id: str, container: container_dependency) -> SessionResponse:
        return _session_response(_session_or_404(container, session_id))

    @app.delete("/sessions/{session_id}", status_code=204)
    async def delete_session(session_id: str, container: container_dependency) -> None:
        session = _session_or_404(container, session_id)
        if session.in_flight:
            raise HTTPException(status_code=409, detail="A question is still being answered.")
        container.discard_session(session_id)

    @app.post("/sessions/{session_id}/reset", response_model=SessionResponse)
    async def reset_session(session_id: str, container: container_dependency) -> SessionResponse:
        session = _session_or_404(container, session_id)
        try:
            session.new_conversation()
        except SessionBusyError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return _session_response(session)

    @app.post(
        "/sessions/{session_id}/context",
        status_code=status.HTTP_201_CREATED,
        response_model=ContextItemsResponse,
    )
    async def add_context(
        session_id: str, payload: ContextAddRequest, container: container_dependency
    ) -> ContextItemsResponse:
        session = _session_or_404(container, session_id)
        inputs = []
        for entry in payload.items:
            value = entry.value
            if entry.kind == "url":
                try:
                    value = normalize_url(entry.value)
                except InvalidUrlError as exc:
                    raise HTTPException(status_code=400, detail=str(exc)) from exc
                inputs.append(
                    ContextInput(
                        kind="url",
                        value=value,
                        label=entry.label or value,
                        origin=entry.origin,
                        url=value,
                    )
                )
            else:
                inputs.append(
                    ContextInput(kind="yaml", value=value, label=entry.label or "Pricing YAML", origin=entry.origin)
                )
        return _items_response(session.context.add(inputs))

    @app.post(
        "/sessions/{session_id}/context/url",
        status_code=status.HTTP_201_CREATED,
        response_model=ContextItemsResponse,
    )
    async def add_context_url(
        session_id: str, payload: ContextUrlRequest, container: container_dependency
    ) -> ContextItemsResponse:
        session = _session_or_404(container, session_id)
        try:
            item = session.add_url(payload.url)
        except InvalidUrlError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _items_response([item] if item else [])

    @app.post(
        "/sessions/{session_id}/context/files",
        status_code=status.HTTP_201_CREATED,
        response_model=ContextItemsResponse,
    )
    async def add_context_files(
        session_id: str, files: List[UploadFile], container: container_dependency
    ) -> ContextItemsResponse:
        session = _session_or_404(container, session_id)
        documents = []
        for upload in files:
            raw = await upload.read()
            try:
                documents.append((upload.filename or "pricing.yaml", raw.decode("utf-8")))
            except UnicodeDecodeError:
                logger.warning("harvey.session.file_read.failed", session_id=session_id, filename=upload.filename)
                session.append_message("assistant", UNREADABLE_FILE_MESSAGE)
                raise HTTPException(status_code=400, detail=UNREADABLE_FILE_MESSAGE) from None
        return _items_response(session.attach_files(documents))

    @app.delete("/sessions/{session_id}/context", response_model=ContextItemsResponse)
    async def clear_context(session_id: str, container: container_dependency) -> ContextItemsResponse:
        session = _session_or_404(container, session_id)
        return _items_response(session.context.clear())

    @app.delete("/sessions/{session_id}/context/{item_id}", response_model=ContextItemsResponse)
    async def remove_context_item(
        session_id: str, item_id: str, container: container_dependency
    ) -> ContextItemsResponse:
        session = _session_or_404(container, session_id)
        removed = session.context.remove(item_id)
        if removed is None:
            raise HTTPException(status_code=404, detail=f"Context item {item_id} not found")
        return _items_response([removed])

    @app.post(
        "/sessions/{session_id}/catalog",
        status_code=status.HTTP_201_CREATED,
        response_model=ContextItemsResponse,
    )
    async def add_catalog_version(
        session_id: str, payload: CatalogAddRequest, container: container_dependency
    ) -> ContextItemsResponse:
        session = _session_or_404(container, session_id)
        try:
            item = await container.catalog.add_by_id(
                session.context,
                owner=payload.owner,
                name=payload.name,
                sphere_id=payload.sphere_id,
                collection_name=payload.collection_name,
            )
        except SphereNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except SphereError as exc:
            raise HTTPException(status_code=_sphere_status(exc), detail=str(exc)) from exc
        return _items_response([item] if item else [])

    @app.delete("/sessions/{session_id}/catalog/{sphere_id}", response_model=ContextItemsResponse)
    async def remove_catalog_version(
        session_id: str, sphere_id: str, container: container_dependency
    ) -> ContextItemsResponse:
        session = _session_or_404(container, session_id)
        return _items_response(container.catalog.remove_version(session.context, sphere_id))

    @app.post("/sessions/{session_id}/questions", response_model=QuestionResponse)
    async def ask_question(
        session_id: str, payload: QuestionRequest, container: container_dependency
    ) -> QuestionResponse:
        session = _session_or_404(container, session_id)
        try:
            message = await container.orchestrator.ask(session, payload.question)
        except SessionBusyError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return QuestionResponse(message=message.to_dict(), session=_session_response(session))

    @app.get("/sessions/{session_id}/events")
    async def session_events(session_id: str, container: container_dependency) -> EventSourceResponse:
        _session_or_404(container, session_id)
        broadcaster = container.broadcaster(session_id)

        async def event_generator():
            queue = broadcaster.subscribe()
            try:
                yield JSONServerSentEvent(event="connected", data={"session_id": session_id})
                while True:
                    message = await queue.get()
                    yield JSONServerSentEvent(event=message["event"], data=message["data"])
            finally:
                broadcaster.unsubscribe(queue)
                logger.info("harvey.events.subscriber.closed", session_id=session_id)

        return EventSourceResponse(event_generator(), ping=15)

    @app.post("/transform", status_code=status.HTTP_202_ACCEPTED)
    async def url_done_update(notification: NotificationUrlTransform, container: container_dependency) -> None:
        await container.channel.asend(
            ResolutionEvent(id=notification.id, yaml_content=notification.yaml_content)
        )

    @app.post("/datasheets/render", response_model=RenderResponse)
    async def render_datasheet_view(
        payload: DatasheetRenderRequest, container: container_dependency
    ) -> RenderResponse:
        if payload.content is not None:
            return RenderResponse(text=render_text(render_datasheet(payload.content)))
        if not payload.plan_key:
            raise HTTPException(status_code=400, detail="Provide datasheet content or a plan key.")
        name, content = container.datasheets.find(payload.plan_key, payload.saas_name)
        return RenderResponse(text=render_text(render_datasheet(content)), datasheet=name)

    @app.post("/pricings/render", response_model=RenderResponse)
    async def render_pricing_view(payload: PricingRenderRequest) -> RenderResponse:
        return RenderResponse(text=render_text(render_pricing(payload.content)))

    @app.get("/catalog/pricings")
    async def search_catalog(
        container: container_dependency,
        name: Optional[str] = None,
        sort_by: Optional[str] = Query(default=None, alias="sortBy"),
        sort: Optional[str] = None,
        owners: Optional[List[str]] = Query(default=None),
        limit: int = Query(default=10, ge=1, le=100),
        offset: int = Query(default=0, ge=0),
    ) -> Dict[str, Any]:
        query = PricingQuery(
            name=name,
            sort_by=sort_by,
            sort=sort,
            selected_owners=owners or [],
            limit=limit,
            offset=offset,
        )
        try:
            result = await container.sphere_client.search_pricings(query)
        except SphereError as exc:
            raise HTTPException(status_code=_sphere_status(exc), detail=str(exc)) from exc
        return {
            "total": result.total,
            "currentPage": result.current_page,
            "totalPages": result.total_pages,
            "pricings": [dict(asdict(item), displayName=item.display_name) for item in result.pricings],
        }

    @app.get("/catalog/pricings/{owner}/{name}")
    async def catalog_versions(
        owner: str,
        name: str,
        container: container_dependency,
        collection_name: Optional[str] = Query(default=None, alias="collectionName"),
    ) -> Dict[str, Any]:
        try:
            versions = await container.sphere_client.get_pricing_versions(owner, name, collection_name)
        except SphereError as exc:
            raise HTTPException(status_code=_sphere_status(exc), detail=str(exc)) from exc
        return {
            "name": versions.name,
            "collectionName": versions.collection_name,
            "summary": versions.summary_label,
            "versions": [asdict(version) for version in versions.versions],
        }

    return app


def _sphere_status(exc: SphereError) -> int:
    if isinstance(exc, SphereNotFoundError):
        return 404
    if isinstance(exc, SphereUnavailableError):
        return 503
    return 502


app = create_app()
