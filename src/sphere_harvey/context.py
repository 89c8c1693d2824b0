from __future__ import annotations

import asyncio
import dataclasses
from typing import (
    Awaitable,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
)

from .file_manager import YamlStorage
from .logging import get_logger
from .models import ContextInput, ContextItem, new_id

logger = get_logger(__name__)

UPLOAD_FAILED_EVENT = "harvey.context.upload.failed"
DELETE_FAILED_EVENT = "harvey.context.delete.failed"


class PricingContext:
    """Ordered, deduplicated collection of the context items of one chat session.

    Mutations are applied synchronously. Uploads and deletes against the
    storage collaborator are scheduled as background tasks on the running
    event loop; their failures are logged and never reach the caller.
    """

    def __init__(self, storage: Optional[YamlStorage] = None) -> None:
        self._storage = storage
        self._items: List[ContextItem] = []
        self._side_effects: Set[asyncio.Task[None]] = set()

    @property
    def items(self) -> Tuple[ContextItem, ...]:
        return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[ContextItem]:
        return iter(tuple(self._items))

    def get(self, item_id: str) -> Optional[ContextItem]:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def add(self, inputs: Iterable[ContextInput]) -> List[ContextItem]:
        """Insert new items, dropping any whose (kind, value) is already tracked."""

        known = {(item.kind, item.value) for item in self._items}
        accepted: List[ContextItem] = []
        for entry in inputs:
            value = (entry.value or "").strip()
            if not value:
                logger.warning("harvey.context.add.blank", kind=entry.kind, origin=entry.origin)
                continue
            if (entry.kind, value) in known:
                logger.debug("harvey.context.add.duplicate", kind=entry.kind, origin=entry.origin)
                continue
            known.add((entry.kind, value))
            accepted.append(self._build_item(entry, value))

        self._items.extend(accepted)
        for item in accepted:
            logger.info("harvey.context.added", id=item.id, kind=item.kind, origin=item.origin)
            if item.is_locally_stored:
                self._schedule_upload(item)
        return accepted

    def remove(self, item_id: str) -> Optional[ContextItem]:
        removed = self.get(item_id)
        if removed is None:
            return None
        self._items = [item for item in self._items if item.id != item_id]
        logger.info("harvey.context.removed", id=removed.id, kind=removed.kind, origin=removed.origin)
        if removed.is_locally_stored:
            self._schedule_delete(removed)
        return removed

    def remove_by_catalog_id(self, catalog_id: str) -> List[ContextItem]:
        """Drop every catalog-sourced item of one SPHERE pricing version."""

        removed = [item for item in self._items if self._matches_catalog(item, catalog_id)]
        if removed:
            self._items = [item for item in self._items if not self._matches_catalog(item, catalog_id)]
            logger.info("harvey.context.catalog.removed", sphere_id=catalog_id, count=len(removed))
        return removed

    def clear(self) -> List[ContextItem]:
        removed = self._items
        self._items = []
        for item in removed:
            stored_yaml = item.kind == "yaml" and item.origin != "sphere"
            resolved_url = item.kind == "url" and item.transform == "done"
            if stored_yaml or resolved_url:
                self._schedule_delete(item)
        logger.info("harvey.context.cleared", count=len(removed))
        return removed

    def reset(self) -> None:
        self._items = []

    def diff_detected_urls(self, detected_urls: Sequence[str]) -> List[str]:
        """Return the detected URLs that no url item tracks yet, in input order."""

        tracked: Set[str] = set()
        for item in self._items:
            if item.kind != "url":
                continue
            tracked.add(item.value)
            if item.url:
                tracked.add(item.url)

        fresh: List[str] = []
        for url in detected_urls:
            if url in tracked:
                continue
            tracked.add(url)
            fresh.append(url)
        return fresh

    def apply_resolution_event(self, item_id: str, yaml_content: str) -> Optional[ContextItem]:
        """Store the YAML a url item resolved to. Unknown ids are ignored."""

        for index, item in enumerate(self._items):
            if item.kind == "url" and item.id == item_id:
                resolved = dataclasses.replace(item, transform="done", value=yaml_content)
                self._items[index] = resolved
                logger.info("harvey.context.url.resolved", id=item_id)
                return resolved
        logger.debug("harvey.context.url.resolution_ignored", id=item_id)
        return None

    def mark_urls_pending(self) -> List[str]:
        marked: List[str] = []
        for index, item in enumerate(self._items):
            if item.kind == "url":
                self._items[index] = dataclasses.replace(item, transform="pending")
                marked.append(item.id)
        return marked

    def mark_stalled(self, item_ids: Iterable[str]) -> List[str]:
        """Move still-pending url items to the ``stalled`` terminal state."""

        targets = set(item_ids)
        stalled: List[str] = []
        for index, item in enumerate(self._items):
            if item.kind == "url" and item.id in targets and item.transform == "pending":
                self._items[index] = dataclasses.replace(item, transform="stalled")
                stalled.append(item.id)
        if stalled:
            logger.warning("harvey.context.url.stalled", ids=stalled)
        return stalled

    def url_references(self) -> List[Dict[str, str]]:
        return [
            {"id": item.id, "url": item.url or item.value}
            for item in self._items
            if item.kind == "url"
        ]

    def unique_yaml_values(self) -> List[str]:
        return list(dict.fromkeys(item.value for item in self._items if item.kind == "yaml"))

    def has_catalog_path(self, yaml_path: str) -> bool:
        return any(
            item.origin == "sphere" and item.sphere is not None and item.sphere.yaml_path == yaml_path
            for item in self._items
        )

    async def flush(self) -> None:
        """Wait until every scheduled upload and delete has finished."""

        while self._side_effects:
            await asyncio.gather(*list(self._side_effects), return_exceptions=True)

    @staticmethod
    def _build_item(entry: ContextInput, value: str) -> ContextItem:
        if entry.kind == "url":
            return ContextItem(
                id=new_id(),
                kind="url",
                origin=entry.origin,
                value=value,
                label=entry.label or value,
                url=(entry.url or value).strip(),
                transform=entry.transform or "not-started",
            )
        return ContextItem(
            id=new_id(),
            kind=entry.kind,
            origin=entry.origin,
            value=value,
            label=entry.label,
            sphere=entry.sphere if entry.origin == "sphere" else None,
        )

    @staticmethod
    def _matches_catalog(item: ContextItem, catalog_id: str) -> bool:
        return item.origin == "sphere" and item.sphere is not None and item.sphere.sphere_id == catalog_id

    def _schedule_upload(self, item: ContextItem) -> None:
        storage = self._storage
        if storage is None:
            return
        filename = item.storage_filename
        content = item.value
        self._schedule(lambda: storage.upload_yaml(filename, content), UPLOAD_FAILED_EVENT, filename)

    def _schedule_delete(self, item: ContextItem) -> None:
        storage = self._storage
        if storage is None:
            return
        filename = item.storage_filename
        self._schedule(lambda: storage.delete_yaml(filename), DELETE_FAILED_EVENT, filename)

    def _schedule(
        self,
        operation: Callable[[], Awaitable[None]],
        failure_event: str,
        filename: str,
    ) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("harvey.context.side_effect.no_loop", filename=filename, failure_event=failure_event)
            return

        async def run() -> None:
            try:
                await operation()
            except Exception as exc:
                logger.warning(failure_event, filename=filename, error=str(exc))

        task = loop.create_task(run())
        self._side_effects.add(task)
        task.add_done_callback(self._side_effects.discard)
