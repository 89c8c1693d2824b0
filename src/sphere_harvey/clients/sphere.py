from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import httpx
import yaml

from ..config import get_settings
from ..logging import get_logger

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 10


class SphereError(Exception):
    """Raised when the SPHERE API rejects or fails a request."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SphereNotFoundError(SphereError):
    """The requested pricing or version does not exist."""


class SphereUnavailableError(SphereError):
    """SPHERE is missing an external dependency needed for the computation."""


class PricingValidationError(ValueError):
    """A pricing upload was rejected before reaching SPHERE."""


Range = Tuple[Optional[float], Optional[float]]


@dataclass
class PricingQuery:
    name: Optional[str] = None
    sort_by: Optional[str] = None
    sort: Optional[str] = None
    subscriptions: Range = (None, None)
    min_price: Range = (None, None)
    max_price: Range = (None, None)
    selected_owners: List[str] = field(default_factory=list)
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0

    def to_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": self.limit, "offset": self.offset}
        if self.name:
            params["name"] = self.name
        if self.sort_by:
            params["sortBy"] = self.sort_by
        if self.sort:
            params["sort"] = self.sort
        for suffix, (lower, upper) in (
            ("subscription", self.subscriptions),
            ("minPrice", self.min_price),
            ("maxPrice", self.max_price),
        ):
            if lower is not None:
                params[f"min-{suffix}"] = lower
            if upper is not None:
                params[f"max-{suffix}"] = upper
        if self.selected_owners:
            params["selectedOwners"] = ",".join(self.selected_owners)
        return params


@dataclass
class PricingSearchItem:
    name: str
    owner: str
    version: str
    currency: Optional[str] = None
    extraction_date: Optional[str] = None
    collection_name: Optional[str] = None
    analytics: Dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return f"{self.collection_name}/{self.name}" if self.collection_name else self.name

    @property
    def key(self) -> str:
        return f"{self.owner}-{self.name}-{self.version}-{self.collection_name or 'nocollection'}"

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PricingSearchItem":
        # SPHERE has shipped the analytics block under a misspelt key.
        analytics = payload.get("analytics") or payload.get("analytycs") or {}
        return cls(
            name=str(payload.get("name", "")),
            owner=str(payload.get("owner", "")),
            version=str(payload.get("version", "")),
            currency=payload.get("currency"),
            extraction_date=payload.get("extractionDate"),
            collection_name=payload.get("collectionName"),
            analytics=analytics if isinstance(analytics, dict) else {},
        )


@dataclass
class PricingSearchResult:
    total: int
    pricings: List[PricingSearchItem]
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0

    @property
    def current_page(self) -> int:
        return current_page(self.offset, self.limit)

    @property
    def total_pages(self) -> int:
        return total_pages(self.total, self.limit)


@dataclass
class PricingVersion:
    id: str
    version: str
    yaml: str
    url: Optional[str] = None
    private: bool = False
    collection_name: Optional[str] = None
    extraction_date: Optional[str] = None
    owner: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PricingVersion":
        owner = payload.get("owner")
        if isinstance(owner, dict):
            owner = owner.get("username")
        return cls(
            id=str(payload.get("id") or payload.get("_id") or ""),
            version=str(payload.get("version", "")),
            yaml=str(payload.get("yaml", "")),
            url=payload.get("url"),
            private=bool(payload.get("private", False)),
            collection_name=payload.get("collectionName"),
            extraction_date=payload.get("extractionDate"),
            owner=owner,
        )


@dataclass
class PricingVersions:
    name: str
    collection_name: Optional[str]
    versions: List[PricingVersion]

    @property
    def summary_label(self) -> str:
        count = len(self.versions)
        return f"{count} {'version' if count == 1 else 'versions'} available"


def page_to_offset(page: int, limit: int = DEFAULT_PAGE_SIZE) -> int:
    return max(page - 1, 0) * limit


def current_page(offset: int, limit: int = DEFAULT_PAGE_SIZE) -> int:
    return offset // limit + 1 if limit > 0 else 1


def total_pages(total: int, limit: int = DEFAULT_PAGE_SIZE) -> int:
    return math.ceil(total / limit) if limit > 0 else 0


def validate_pricing_yaml(content: str, saas_name: str, version: str) -> Dict[str, Any]:
    """Check a Pricing2Yaml upload declares the identity it is submitted under."""

    if not saas_name or not version:
        raise PricingValidationError("Missing saasName or version in form data.")
    try:
        document = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise PricingValidationError(f"Invalid YAML file: {exc}") from exc
    if not isinstance(document, dict):
        raise PricingValidationError("Invalid YAML file: expected a Pricing2Yaml mapping.")
    if document.get("saasName") != saas_name or str(document.get("version")) != str(version):
        raise PricingValidationError(
            "YAML file contents do not match saasName/version provided in form data."
        )
    return document


class SphereClient:
    """Async client for the SPHERE pricing catalog."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self._base_url = (base_url or str(settings.sphere_base_url)).rstrip("/")
        self._api_token = api_token or settings.sphere_api_token
        self._timeout = timeout_seconds or settings.http_timeout_seconds
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers=self._build_headers(),
            transport=transport,
        )

    def _build_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"
        return headers

    async def aclose(self) -> None:
        await self._client.aclose()

    async def search_pricings(self, query: Optional[PricingQuery] = None) -> PricingSearchResult:
        query = query or PricingQuery()
        logger.info("sphere.pricings.search", name=query.name, offset=query.offset, limit=query.limit)
        payload = await self._request_json("GET", "/pricings", params=query.to_params())
        pricings = payload.get("pricings") or []
        return PricingSearchResult(
            total=int(payload.get("total", len(pricings))),
            pricings=[PricingSearchItem.from_payload(item) for item in pricings if isinstance(item, dict)],
            limit=query.limit,
            offset=query.offset,
        )

    async def get_pricing_versions(
        self,
        owner: str,
        name: str,
        collection_name: Optional[str] = None,
    ) -> PricingVersions:
        params = {"collectionName": collection_name} if collection_name else None
        payload = await self._request_json("GET", f"/pricings/{owner}/{name}", params=params)
        versions = payload.get("versions") or []
        return PricingVersions(
            name=str(payload.get("name", name)),
            collection_name=payload.get("collectionName"),
            versions=[PricingVersion.from_payload(item) for item in versions if isinstance(item, dict)],
        )

    async def fetch_yaml(self, url: str) -> str:
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            raise SphereError(f"Could not download pricing YAML: {exc}") from exc
        if response.status_code >= 400:
            raise self._error_from_response(response)
        return response.text

    async def create_pricing(
        self,
        yaml_content: str,
        saas_name: str,
        version: str,
        collection_id: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> Dict[str, Any]:
        validate_pricing_yaml(yaml_content, saas_name, version)
        data = {"saasName": saas_name, "version": version}
        if collection_id:
            data["collectionId"] = collection_id
        files = {
            "yaml": (filename or f"{version}.yaml", yaml_content.encode("utf-8"), "application/yaml"),
        }
        logger.info("sphere.pricings.create", saas_name=saas_name, version=version)
        return await self._request_json("POST", "/pricings", data=data, files=files)

    async def update_pricing(self, name: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        logger.info("sphere.pricings.update", name=name, fields=sorted(changes))
        return await self._request_json("PUT", f"/pricings/{name}", json=changes)

    async def delete_pricing(self, name: str, version: Optional[str] = None) -> Dict[str, Any]:
        path = f"/pricings/{name}/{version}" if version else f"/pricings/{name}"
        logger.info("sphere.pricings.delete", name=name, version=version)
        return await self._request_json("DELETE", path)

    async def _request_json(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("sphere.request.transport_failure", method=method, path=path, error=str(exc))
            raise SphereError(f"Could not reach SPHERE: {exc}") from exc

        if response.status_code >= 400:
            error = self._error_from_response(response)
            logger.warning(
                "sphere.request.failed",
                method=method,
                path=path,
                status=response.status_code,
                error=str(error),
            )
            raise error

        try:
            payload = response.json()
        except ValueError as exc:
            raise SphereError("SPHERE returned a non-JSON response", response.status_code) from exc
        if isinstance(payload, dict) and "error" in payload:
            raise self._classify(str(payload["error"]), response.status_code)
        if not isinstance(payload, dict):
            return {"data": payload}
        return payload

    def _error_from_response(self, response: httpx.Response) -> SphereError:
        message: Optional[str] = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            message = str(body["error"])
        elif response.text:
            message = response.text
        return self._classify(message or f"SPHERE responded with status {response.status_code}", response.status_code)

    @staticmethod
    def _classify(message: str, status_code: int) -> SphereError:
        if status_code == 404 or "not found" in message.lower():
            return SphereNotFoundError(message, status_code)
        if status_code == 503:
            return SphereUnavailableError(message, status_code)
        return SphereError(message, status_code)
