from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from ..formatting import (
    camel_to_title,
    currency_symbol,
    format_price,
    format_pricing_value,
    format_usage_display,
    scalar_to_text,
)
from ..logging import get_logger
from .nodes import (
    CardNode,
    ChipNode,
    ChipRowNode,
    DiagnosticNode,
    FieldNode,
    LinkNode,
    RenderNode,
    SectionNode,
    StackNode,
    TextNode,
)
from .variants import YamlMapping, parse_document, to_plain

logger = get_logger(__name__)

NOT_A_PRICING = "Pricing document must be a mapping."
ALL_PLANS = "All plans"


def render_pricing(document: Union[str, Mapping[str, Any]]) -> RenderNode:
    """Render a Pricing2Yaml document as header, plan cards and add-on cards.

    ``document`` is either YAML text or an already parsed mapping. Unparsable
    text degrades to a raw diagnostic node.
    """

    if isinstance(document, str):
        try:
            parsed = parse_document(document)
        except yaml.YAMLError as exc:
            logger.debug("pricing.parse.failed", error=str(exc))
            return DiagnosticNode(document, raw=True)
        if not isinstance(parsed, YamlMapping):
            return DiagnosticNode(NOT_A_PRICING)
        pricing = to_plain(parsed)
    elif isinstance(document, Mapping):
        pricing = document
    else:
        return DiagnosticNode(NOT_A_PRICING)

    currency = pricing.get("currency")
    features = _mapping(pricing.get("features"))
    usage_limits = _mapping(pricing.get("usageLimits"))

    sections: List[RenderNode] = [_render_header(pricing)]

    plans = _mapping(pricing.get("plans"))
    if plans:
        sections.append(
            SectionNode(
                "Plans",
                tuple(
                    _render_plan(key, _mapping(plan), currency, features, usage_limits)
                    for key, plan in plans.items()
                ),
            )
        )

    add_ons = _mapping(pricing.get("addOns"))
    if add_ons:
        sections.append(
            SectionNode(
                "Add-Ons",
                tuple(
                    _render_add_on(key, _mapping(add_on), currency, usage_limits)
                    for key, add_on in add_ons.items()
                ),
            )
        )
    return StackNode(tuple(sections))


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _render_header(pricing: Mapping[str, Any]) -> SectionNode:
    title = scalar_to_text(pricing.get("saasName")) or "Pricing"
    details = []
    if pricing.get("version") is not None:
        details.append(f"Version {scalar_to_text(pricing['version'])}")
    symbol = currency_symbol(pricing.get("currency"))
    if symbol:
        details.append(f"Currency {symbol}")

    children: List[RenderNode] = []
    url = pricing.get("url")
    if isinstance(url, str) and url:
        children.append(FieldNode("URL", (LinkNode(url),)))
    if pricing.get("createdAt") is not None:
        children.append(FieldNode("Created", (TextNode(scalar_to_text(pricing["createdAt"])),)))
    return SectionNode(title, tuple(children), subtitle=" · ".join(details) or None)


def _linked_limit(name: Any, limit: Any) -> Dict[Any, Any]:
    linked: Dict[Any, Any] = {"name": name}
    linked.update(_mapping(limit))
    return linked


def _override_value(overrides: Mapping[str, Any], name: str) -> Any:
    override = overrides.get(name)
    if isinstance(override, Mapping):
        return override.get("value")
    return override


def _enabled_feature_chips(
    plan_features: Mapping[str, Any], features: Mapping[str, Any]
) -> List[ChipNode]:
    chips = []
    for name, feature in features.items():
        value = _override_value(plan_features, name)
        if value is None:
            value = _mapping(feature).get("defaultValue")
        if value is True:
            chips.append(ChipNode(camel_to_title(name)))
        elif value not in (None, False, "", []):
            chips.append(ChipNode(f"{camel_to_title(name)}: {scalar_to_text(value)}"))
    return chips


def _render_plan(
    key: str,
    plan: Mapping[str, Any],
    currency: Optional[str],
    features: Mapping[str, Any],
    usage_limits: Mapping[str, Any],
) -> CardNode:
    fields = [FieldNode("Price", (TextNode(format_price(plan.get("price"), currency, plan.get("unit"))),))]
    if plan.get("description"):
        fields.append(FieldNode("Description", (TextNode(scalar_to_text(plan["description"])),)))

    chips = _enabled_feature_chips(_mapping(plan.get("features")), features)
    if chips:
        fields.append(FieldNode("Features", (ChipRowNode(tuple(chips)),)))

    plan_limits = _mapping(plan.get("usageLimits"))
    limit_fields = tuple(
        FieldNode(
            camel_to_title(name),
            (TextNode(format_usage_display(_override_value(plan_limits, name), _linked_limit(name, limit))),),
        )
        for name, limit in usage_limits.items()
    )
    if limit_fields:
        fields.append(FieldNode("Usage limits", limit_fields))

    title = scalar_to_text(plan.get("name")) or str(key)
    return CardNode(tuple(fields), title=title)


def _render_add_on(
    key: str,
    add_on: Mapping[str, Any],
    currency: Optional[str],
    usage_limits: Mapping[str, Any],
) -> CardNode:
    fields = [FieldNode("Price", (TextNode(format_price(add_on.get("price"), currency, add_on.get("unit"))),))]
    if add_on.get("description"):
        fields.append(FieldNode("Description", (TextNode(scalar_to_text(add_on["description"])),)))

    available_for = add_on.get("availableFor")
    if isinstance(available_for, list) and available_for:
        fields.append(
            FieldNode("Available for", (ChipRowNode(tuple(ChipNode(scalar_to_text(plan)) for plan in available_for)),))
        )
    else:
        fields.append(FieldNode("Available for", (TextNode(ALL_PLANS),)))

    add_on_features = _mapping(add_on.get("features"))
    if add_on_features:
        fields.append(
            FieldNode("Features", (ChipRowNode(tuple(ChipNode(camel_to_title(name)) for name in add_on_features)),))
        )

    extensions = _mapping(add_on.get("usageLimitsExtensions"))
    if extensions:
        fields.append(
            FieldNode(
                "Usage limit extensions",
                tuple(
                    FieldNode(
                        camel_to_title(name),
                        (
                            TextNode(
                                scalar_to_text(
                                    format_pricing_value(
                                        _override_value(extensions, name),
                                        _mapping(usage_limits.get(name)).get("unit"),
                                    )
                                )
                            ),
                        ),
                    )
                    for name in extensions
                ),
            )
        )

    title = scalar_to_text(add_on.get("name")) or str(key)
    return CardNode(tuple(fields), title=title)
