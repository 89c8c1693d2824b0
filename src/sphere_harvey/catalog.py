from __future__ import annotations

from typing import List, Optional

from .clients.sphere import PricingVersion, SphereClient, SphereNotFoundError
from .context import PricingContext
from .logging import get_logger
from .models import ContextInput, ContextItem, SphereReference

logger = get_logger(__name__)


def catalog_label(name: str, collection_name: Optional[str] = None) -> str:
    return f"{collection_name}/{name}" if collection_name else name


class CatalogSelector:
    """Adds SPHERE catalog versions to a pricing context and takes them out again."""

    def __init__(self, client: SphereClient) -> None:
        self._client = client

    async def add_version(
        self,
        context: PricingContext,
        *,
        owner: str,
        name: str,
        version: PricingVersion,
        collection_name: Optional[str] = None,
    ) -> Optional[ContextItem]:
        """Download the version's YAML and track it as a ``sphere`` item.

        Returns ``None`` when the same YAML is already tracked.
        """

        yaml_content = await self._client.fetch_yaml(version.yaml)
        added = context.add(
            [
                ContextInput(
                    kind="yaml",
                    value=yaml_content,
                    label=catalog_label(name, collection_name),
                    origin="sphere",
                    sphere=SphereReference(
                        sphere_id=version.id,
                        owner=owner,
                        yaml_path=version.yaml,
                        pricing_name=name,
                        version=version.version,
                        collection=collection_name,
                    ),
                )
            ]
        )
        if added:
            logger.info("sphere.catalog.added", sphere_id=version.id, owner=owner, name=name)
            return added[0]
        return None

    async def add_by_id(
        self,
        context: PricingContext,
        *,
        owner: str,
        name: str,
        sphere_id: str,
        collection_name: Optional[str] = None,
    ) -> Optional[ContextItem]:
        versions = await self._client.get_pricing_versions(owner, name, collection_name)
        for version in versions.versions:
            if version.id == sphere_id:
                return await self.add_version(
                    context,
                    owner=owner,
                    name=name,
                    version=version,
                    collection_name=collection_name or versions.collection_name,
                )
        raise SphereNotFoundError(f"Pricing version {sphere_id} not found for {owner}/{name}", 404)

    @staticmethod
    def is_included(context: PricingContext, version: PricingVersion) -> bool:
        return context.has_catalog_path(version.yaml)

    @staticmethod
    def remove_version(context: PricingContext, sphere_id: str) -> List[ContextItem]:
        return context.remove_by_catalog_id(sphere_id)
