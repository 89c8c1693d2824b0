"""Render tree produced by the datasheet and pricing renderers."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Literal, Optional, Tuple, Union

Tone = Literal["default", "muted", "error"]
INDENT = "  "


@dataclass(frozen=True)
class TextNode:
    text: str
    tone: Tone = "default"
    monospace: bool = False


@dataclass(frozen=True)
class LinkNode:
    href: str
    text: Optional[str] = None


@dataclass(frozen=True)
class ChipNode:
    label: str
    href: Optional[str] = None


@dataclass(frozen=True)
class ChipRowNode:
    chips: Tuple[ChipNode, ...]


@dataclass(frozen=True)
class FieldNode:
    label: str
    children: Tuple["RenderNode", ...]


@dataclass(frozen=True)
class CardNode:
    fields: Tuple[FieldNode, ...]
    title: Optional[str] = None


@dataclass(frozen=True)
class BulletListNode:
    items: Tuple["RenderNode", ...]


@dataclass(frozen=True)
class StackNode:
    children: Tuple["RenderNode", ...]


@dataclass(frozen=True)
class SectionNode:
    title: str
    children: Tuple["RenderNode", ...]
    subtitle: Optional[str] = None


@dataclass(frozen=True)
class DiagnosticNode:
    text: str
    raw: bool = False


@dataclass(frozen=True)
class DatasheetNode:
    title: Optional[str]
    subtitle: Optional[str]
    highlights: Tuple[ChipNode, ...] = ()
    fields: Tuple[FieldNode, ...] = field(default_factory=tuple)


RenderNode = Union[
    TextNode,
    LinkNode,
    ChipNode,
    ChipRowNode,
    FieldNode,
    CardNode,
    BulletListNode,
    StackNode,
    SectionNode,
    DiagnosticNode,
    DatasheetNode,
]

INLINE_NODES = (TextNode, LinkNode, ChipNode, ChipRowNode, DiagnosticNode)


def render_text(node: RenderNode) -> str:
    """Serialise a render tree to indented plain text."""

    return "\n".join(_lines(node)).rstrip()


def _inline(node: RenderNode) -> str:
    if isinstance(node, TextNode):
        return node.text
    if isinstance(node, LinkNode):
        if node.text and node.text != node.href:
            return f"{node.text} <{node.href}>"
        return f"<{node.href}>"
    if isinstance(node, ChipNode):
        return f"[{node.label}]" if node.href is None else f"[{node.label}] <{node.href}>"
    if isinstance(node, ChipRowNode):
        return " ".join(_inline(chip) for chip in node.chips)
    if isinstance(node, DiagnosticNode):
        return node.text
    raise TypeError(f"{type(node).__name__} is not an inline node")


def _indent(lines: List[str], prefix: str = INDENT) -> List[str]:
    return [f"{prefix}{line}" if line else line for line in lines]


def _lines(node: RenderNode) -> List[str]:
    if isinstance(node, INLINE_NODES):
        return _inline(node).splitlines() or [""]

    if isinstance(node, FieldNode):
        if len(node.children) == 1 and isinstance(node.children[0], INLINE_NODES):
            inline = _inline(node.children[0])
            if "\n" not in inline:
                return [f"{node.label}: {inline}"]
        lines = [f"{node.label}:"]
        for child in node.children:
            lines.extend(_indent(_lines(child)))
        return lines

    if isinstance(node, CardNode):
        body: List[str] = []
        if node.title:
            body.append(node.title)
        for card_field in node.fields:
            body.extend(_lines(card_field))
        if not body:
            return ["- {}"]
        return [f"- {body[0]}"] + _indent(body[1:])

    if isinstance(node, BulletListNode):
        lines = []
        for item in node.items:
            item_lines = _lines(item)
            lines.append(f"- {item_lines[0]}")
            lines.extend(_indent(item_lines[1:]))
        return lines

    if isinstance(node, StackNode):
        lines = []
        for child in node.children:
            lines.extend(_lines(child))
        return lines

    if isinstance(node, SectionNode):
        lines = [f"## {node.title}"]
        if node.subtitle:
            lines.append(node.subtitle)
        for child in node.children:
            lines.extend(_lines(child))
        lines.append("")
        return lines

    if isinstance(node, DatasheetNode):
        lines = []
        if node.title:
            lines.append(f"# {node.title}")
        if node.subtitle:
            lines.append(node.subtitle)
        if node.highlights:
            lines.append(_inline(ChipRowNode(node.highlights)))
        lines.append("---")
        for datasheet_field in node.fields:
            lines.extend(_lines(datasheet_field))
        return lines

    raise TypeError(f"Unsupported render node: {type(node).__name__}")
