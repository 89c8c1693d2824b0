from .datasheet import DATASHEET_NOT_FOUND, DatasheetIndex, render_datasheet
from .nodes import RenderNode, render_text
from .pricing import render_pricing
from .variants import YamlMapping, YamlNode, YamlScalar, YamlSequence, parse_document, to_variant

__all__ = [
    "DATASHEET_NOT_FOUND",
    "DatasheetIndex",
    "RenderNode",
    "YamlMapping",
    "YamlNode",
    "YamlScalar",
    "YamlSequence",
    "parse_document",
    "render_datasheet",
    "render_pricing",
    "render_text",
    "to_variant",
]
