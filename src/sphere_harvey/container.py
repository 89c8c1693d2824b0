from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import FastAPI

from .catalog import CatalogSelector
from .chat import ChatOrchestrator, ChatSession, SessionRegistry
from .clients import HarveyClient, SphereClient
from .config import Settings, get_settings
from .file_manager import FileManager, YamlStorage
from .logging import configure_logging, get_logger
from .models import ContextItem
from .rendering import DatasheetIndex
from .stream import EventBroadcaster, ResolutionChannel, dispatch_resolutions

logger = get_logger(__name__)

CONTEXT_UPDATE_EVENT = "context_update"


class ServiceContainer:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        harvey_client: Optional[HarveyClient] = None,
        sphere_client: Optional[SphereClient] = None,
        storage: Optional[YamlStorage] = None,
        datasheets: Optional[DatasheetIndex] = None,
    ) -> None:
        self._settings = settings or get_settings()
        configure_logging(self._settings.log_level, json_output=self._settings.log_json)
        self.harvey_client = harvey_client or HarveyClient()
        self.sphere_client = sphere_client or SphereClient()
        self.storage = storage or self._default_storage()
        self.datasheets = datasheets or self._default_datasheets()
        self.channel = ResolutionChannel()
        self.registry = SessionRegistry(
            storage_factory=lambda: self.storage,
            on_context_update=self._publish_context_update,
        )
        self.orchestrator = ChatOrchestrator(self.harvey_client)
        self.catalog = CatalogSelector(self.sphere_client)
        self._broadcasters: Dict[str, EventBroadcaster] = {}
        self._tasks: List[asyncio.Task] = []

    @property
    def settings(self) -> Settings:
        return self._settings

    def _default_storage(self) -> YamlStorage:
        if self._settings.harvey_static_dir is not None:
            return FileManager(self._settings.harvey_static_dir)
        return self.harvey_client

    def _default_datasheets(self) -> DatasheetIndex:
        if self._settings.datasheets_dir is not None:
            return DatasheetIndex.from_directory(self._settings.datasheets_dir)
        return DatasheetIndex()

    def broadcaster(self, session_id: str) -> EventBroadcaster:
        return self._broadcasters.setdefault(session_id, EventBroadcaster())

    def discard_session(self, session_id: str) -> ChatSession:
        session = self.registry.discard(session_id)
        self._broadcasters.pop(session_id, None)
        return session

    def _publish_context_update(self, session: ChatSession, item: ContextItem) -> None:
        broadcaster = self._broadcasters.get(session.id)
        if broadcaster is None:
            return
        broadcaster.publish(CONTEXT_UPDATE_EVENT, item.to_dict())

    async def start(self) -> None:
        self._tasks.append(asyncio.create_task(dispatch_resolutions(self.channel, self.registry.apply_resolution)))
        if self._settings.subscribe_to_events:
            self._tasks.append(
                asyncio.create_task(
                    self.harvey_client.pump_events(self.channel, self._settings.events_reconnect_seconds)
                )
            )
        logger.info("service.started", subscribed=self._settings.subscribe_to_events)

    async def shutdown(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        await self.registry.flush()
        await self.harvey_client.aclose()
        await self.sphere_client.aclose()
        logger.info("service.stopped")


@asynccontextmanager
async def lifespan(app: FastAPI):
    container: ServiceContainer = app.state.container
    await container.start()
    yield
    await container.shutdown()
