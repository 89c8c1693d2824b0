from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

import yaml

from ..formatting import format_money_display, scalar_to_text
from ..logging import get_logger
from ..urls import looks_like_url
from .nodes import (
    BulletListNode,
    CardNode,
    ChipNode,
    ChipRowNode,
    DatasheetNode,
    DiagnosticNode,
    FieldNode,
    LinkNode,
    RenderNode,
    StackNode,
    TextNode,
)
from .variants import YamlMapping, YamlNode, YamlScalar, YamlSequence, parse_document, to_plain

logger = get_logger(__name__)

DATASHEET_NOT_FOUND = "Datasheet not found for plan"
DATASHEET_LOAD_ERROR = "Error loading datasheet"
EMPTY_DATASHEET = "No datasheet content."
TITLE_KEYS = ("name", "plan", "title")
SUBTITLE_KEYS = ("subtitle", "type")
HIGHLIGHT_KEYS = ("planReference", "type", "tier", "price", "sla")
DATASHEET_SUFFIXES = (".yml", ".yaml")
COMPACT_PATTERN = re.compile(r"[-_.]")


def render_datasheet(content: Optional[str]) -> RenderNode:
    """Render a single plan datasheet; malformed input becomes diagnostic text."""

    if content is None or not content.strip():
        return DiagnosticNode(EMPTY_DATASHEET)
    if content == DATASHEET_NOT_FOUND or content.startswith("Error"):
        return DiagnosticNode(content)

    try:
        document = parse_document(content)
    except yaml.YAMLError as exc:
        logger.debug("datasheet.parse.failed", error=str(exc))
        return DiagnosticNode(content, raw=True)

    if not isinstance(document, YamlMapping) or not len(document):
        if isinstance(document, YamlScalar) and document.value is not None:
            return TextNode(scalar_to_text(document.value))
        return TextNode(content)

    return DatasheetNode(
        title=_first_text(document, TITLE_KEYS),
        subtitle=_first_text(document, SUBTITLE_KEYS),
        highlights=tuple(
            ChipNode(f"{key}: {_highlight_text(key, document.get(key))}")
            for key in HIGHLIGHT_KEYS
            if key in document.keys()
        ),
        fields=tuple(_top_level_field(key, node) for key, node in document.entries),
    )


def _first_text(document: YamlMapping, keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        node = document.get(key)
        if isinstance(node, YamlScalar) and node.value not in (None, "", False):
            return scalar_to_text(node.value)
    return None


def _highlight_text(key: str, node: Optional[YamlNode]) -> str:
    if node is None:
        return "-"
    if isinstance(node, YamlScalar):
        if node.value is None:
            return "-"
        if key == "price" and not isinstance(node.value, bool):
            return format_money_display(node.value)
        return scalar_to_text(node.value)
    return _compact(node)


def _top_level_field(key: str, node: YamlNode) -> FieldNode:
    if key == "features" and isinstance(node, YamlMapping):
        return FieldNode(key, (ChipRowNode(tuple(ChipNode(name) for name in node.keys())),))
    return FieldNode(key, (_render_value(key, node),))


def _render_value(key: str, node: YamlNode) -> RenderNode:
    if isinstance(node, YamlScalar):
        return _render_primitive(key, node)
    if isinstance(node, YamlSequence):
        return _render_sequence(node)
    if isinstance(node, YamlMapping):
        if key == "associatedSaaS":
            return _associated_saas_chip(node)
        return StackNode(tuple(_nested_field(child_key, child) for child_key, child in node.entries))
    raise TypeError(f"Unsupported YAML node: {type(node).__name__}")


def _nested_field(key: str, node: YamlNode) -> FieldNode:
    if isinstance(node, YamlScalar):
        return FieldNode(key, (_render_primitive(key, node),))
    if isinstance(node, YamlSequence):
        return FieldNode(key, (_render_sequence(node),))
    if isinstance(node, YamlMapping):
        if key == "associatedSaaS":
            return FieldNode(key, (_associated_saas_chip(node),))
        return FieldNode(key, (TextNode(_compact(node)),))
    raise TypeError(f"Unsupported YAML node: {type(node).__name__}")


def _render_primitive(key: str, node: YamlScalar) -> RenderNode:
    value = node.value
    if value is None:
        return TextNode("-", tone="muted")
    if key == "associatedSaaS":
        return ChipNode(scalar_to_text(value))
    if isinstance(value, str) and (key == "url" or looks_like_url(value)):
        return LinkNode(value)
    return TextNode(scalar_to_text(value))


def _render_sequence(node: YamlSequence) -> RenderNode:
    if len(node) and all(isinstance(item, YamlMapping) for item in node):
        return StackNode(tuple(_render_card(item) for item in node if isinstance(item, YamlMapping)))
    return BulletListNode(tuple(_render_bullet(item) for item in node))


def _render_card(record: YamlMapping) -> CardNode:
    fields: List[FieldNode] = []
    for key, value in record.entries:
        if isinstance(value, YamlScalar):
            fields.append(FieldNode(key, (_render_primitive(key, value),)))
        else:
            fields.append(FieldNode(key, (TextNode(_compact(value)),)))
    return CardNode(tuple(fields))


def _render_bullet(item: YamlNode) -> RenderNode:
    if isinstance(item, YamlMapping):
        return TextNode(" · ".join(f"{key}: {_bullet_text(value)}" for key, value in item.entries))
    if isinstance(item, YamlScalar):
        return TextNode(scalar_to_text(item.value) if item.value is not None else "-")
    return TextNode(_compact(item))


def _bullet_text(node: YamlNode) -> str:
    if isinstance(node, YamlScalar):
        return scalar_to_text(node.value)
    return _compact(node)


def _associated_saas_chip(node: YamlMapping) -> ChipNode:
    name = node.get("name")
    url = node.get("url")
    label = scalar_to_text(name.value) if isinstance(name, YamlScalar) and name.value else _compact(node)
    href = url.value if isinstance(url, YamlScalar) and looks_like_url(url.value) else None
    return ChipNode(label, href=href)


def _compact(node: YamlNode) -> str:
    return json.dumps(to_plain(node), ensure_ascii=False, separators=(",", ":"), default=str)


class DatasheetIndex:
    """Datasheet YAML files keyed by file name."""

    def __init__(self, datasheets: Optional[Dict[str, str]] = None) -> None:
        self._datasheets: Dict[str, str] = dict(datasheets or {})

    @classmethod
    def from_directory(cls, directory: Union[str, Path]) -> "DatasheetIndex":
        root = Path(directory)
        datasheets: Dict[str, str] = {}
        if root.is_dir():
            for path in sorted(root.iterdir()):
                if not path.is_file() or path.suffix.lower() not in DATASHEET_SUFFIXES:
                    continue
                try:
                    datasheets[path.name] = path.read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError) as exc:
                    logger.error("datasheet.index.read_failed", path=str(path), error=str(exc))
                    datasheets[path.name] = DATASHEET_LOAD_ERROR
        else:
            logger.warning("datasheet.index.missing_directory", directory=str(root))
        logger.info("datasheet.index.loaded", directory=str(root), count=len(datasheets))
        return cls(datasheets)

    def __len__(self) -> int:
        return len(self._datasheets)

    @property
    def names(self) -> List[str]:
        return list(self._datasheets)

    def match(self, plan_key: str, saas_name: Optional[str] = None) -> Optional[str]:
        """Name of the best datasheet file for a plan, or ``None``."""

        plan = plan_key.lower().replace("_", "-")
        tokens = [token for token in (saas_name or "").lower().split() if token]
        candidates = [(name, name.lower()) for name in self._datasheets]

        for name, lowered in candidates:
            if plan in lowered and any(token in lowered for token in tokens):
                return name
        for name, lowered in candidates:
            if plan in lowered:
                return name

        compact_plan = COMPACT_PATTERN.sub("", plan)
        for name, lowered in candidates:
            base = lowered.rsplit("/", 1)[-1]
            if compact_plan in COMPACT_PATTERN.sub("", base):
                return name
        return None

    def find(self, plan_key: str, saas_name: Optional[str] = None) -> Tuple[Optional[str], str]:
        """Return ``(file name, content)``; content is the not-found sentinel when nothing matches."""

        name = self.match(plan_key, saas_name)
        if name is None:
            logger.warning("datasheet.index.no_match", plan=plan_key, candidates=self.names)
            return None, DATASHEET_NOT_FOUND
        return name, self._datasheets[name]
