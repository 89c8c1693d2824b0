from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

ContextKind = Literal["url", "yaml"]
ContextOrigin = Literal["user", "detected", "preset", "agent", "sphere"]
TransformState = Literal["not-started", "pending", "done", "stalled"]
MessageRole = Literal["user", "assistant"]

CONTEXT_KINDS = ("url", "yaml")
CONTEXT_ORIGINS = ("user", "detected", "preset", "agent", "sphere")
LOCALLY_STORED_ORIGINS = frozenset({"user", "preset"})

ORIGIN_LABELS: Dict[str, str] = {
    "user": "Manual",
    "detected": "Detected",
    "preset": "Preset",
    "agent": "Agent",
    "sphere": "SPHERE",
}


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SphereReference:
    """Where a catalog-sourced context item came from."""

    sphere_id: str
    owner: str
    yaml_path: str
    pricing_name: str
    version: str
    collection: Optional[str] = None


@dataclass(frozen=True)
class ContextInput:
    kind: ContextKind
    value: str
    label: str
    origin: ContextOrigin
    url: Optional[str] = None
    transform: Optional[TransformState] = None
    sphere: Optional[SphereReference] = None


@dataclass(frozen=True)
class ContextItem:
    id: str
    kind: ContextKind
    origin: ContextOrigin
    value: str
    label: str
    url: Optional[str] = None
    transform: Optional[TransformState] = None
    sphere: Optional[SphereReference] = None

    @property
    def storage_filename(self) -> str:
        return f"{self.id}.yaml"

    @property
    def is_locally_stored(self) -> bool:
        return self.kind == "yaml" and self.origin in LOCALLY_STORED_ORIGINS

    @property
    def origin_label(self) -> str:
        return ORIGIN_LABELS.get(self.origin, "")

    @property
    def metadata_line(self) -> str:
        line = f"{self.kind.upper()} · {self.origin_label} "
        if self.origin == "sphere" and self.sphere is not None:
            line += f"· {self.sphere.owner} · {self.sphere.version}"
        return line

    @property
    def is_editor_link_enabled(self) -> bool:
        return self.kind == "yaml" or (self.kind == "url" and self.transform == "done")

    def editor_link(self, static_base_url: str) -> str:
        if self.origin == "sphere" and self.sphere is not None:
            yaml_path = self.sphere.yaml_path
        else:
            yaml_path = f"{static_base_url.rstrip('/')}/static/{self.storage_filename}"
        return f"/editor?pricingUrl={yaml_path}"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "kind": self.kind,
            "origin": self.origin,
            "value": self.value,
            "label": self.label,
        }
        if self.kind == "url":
            data["url"] = self.url
            data["transform"] = self.transform
        if self.sphere is not None:
            data.update(
                {
                    "sphereId": self.sphere.sphere_id,
                    "owner": self.sphere.owner,
                    "yamlPath": self.sphere.yaml_path,
                    "pricingName": self.sphere.pricing_name,
                    "version": self.sphere.version,
                    "collection": self.sphere.collection,
                }
            )
        return data


@dataclass(frozen=True)
class ChatMessage:
    role: MessageRole
    content: str
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "createdAt": self.created_at.isoformat(),
        }
        if self.metadata is not None:
            data["metadata"] = self.metadata
        return data


@dataclass(frozen=True)
class PresetContextEntry:
    kind: ContextKind
    label: str
    value: str


@dataclass(frozen=True)
class PromptPreset:
    question: str
    context: List[PresetContextEntry] = field(default_factory=list)
    label: Optional[str] = None
