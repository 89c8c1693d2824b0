"""Closed set of parsed-YAML shapes the renderers dispatch over."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, FrozenSet, Iterator, List, Optional, Tuple, Union

import yaml

Primitive = Union[str, int, float, bool, None]


@dataclass(frozen=True)
class YamlScalar:
    value: Primitive


@dataclass(frozen=True)
class YamlSequence:
    items: Tuple["YamlNode", ...]

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator["YamlNode"]:
        return iter(self.items)


@dataclass(frozen=True)
class YamlMapping:
    entries: Tuple[Tuple[str, "YamlNode"], ...]

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, key: str) -> Optional["YamlNode"]:
        for entry_key, node in self.entries:
            if entry_key == key:
                return node
        return None

    def keys(self) -> List[str]:
        return [key for key, _ in self.entries]


YamlNode = Union[YamlScalar, YamlSequence, YamlMapping]

CIRCULAR_REFERENCE = "[circular]"


def to_variant(value: Any, _ancestors: FrozenSet[int] = frozenset()) -> YamlNode:
    """Wrap a ``yaml.safe_load`` result into the variant tree.

    Aliases that point back at an enclosing node become a placeholder scalar.
    """

    if isinstance(value, (dict, list, tuple, set)):
        if id(value) in _ancestors:
            return YamlScalar(CIRCULAR_REFERENCE)
        ancestors = _ancestors | {id(value)}
        if isinstance(value, dict):
            return YamlMapping(tuple((str(key), to_variant(item, ancestors)) for key, item in value.items()))
        return YamlSequence(tuple(to_variant(item, ancestors) for item in value))
    if value is None or isinstance(value, (str, int, float, bool)):
        return YamlScalar(value)
    if isinstance(value, (date, datetime)):
        return YamlScalar(value.isoformat())
    return YamlScalar(str(value))


def to_plain(node: YamlNode) -> Any:
    if isinstance(node, YamlScalar):
        return node.value
    if isinstance(node, YamlSequence):
        return [to_plain(item) for item in node.items]
    if isinstance(node, YamlMapping):
        return {key: to_plain(item) for key, item in node.entries}
    raise TypeError(f"Unsupported YAML node: {type(node).__name__}")


def parse_document(content: str) -> YamlNode:
    """Parse YAML text; raises ``yaml.YAMLError`` on malformed input.

    Nesting too deep to walk and integers too long to convert are reported
    as ``yaml.YAMLError`` as well.
    """

    try:
        return to_variant(yaml.safe_load(content))
    except (RecursionError, ValueError) as exc:
        raise yaml.YAMLError(f"Unprocessable YAML document: {exc}") from exc
