import pytest

from sphere_harvey.rendering import (
    DATASHEET_NOT_FOUND,
    DatasheetIndex,
    YamlMapping,
    YamlScalar,
    YamlSequence,
    parse_document,
    render_datasheet,
    render_pricing,
    render_text,
)
from sphere_harvey.rendering.datasheet import DATASHEET_LOAD_ERROR
from sphere_harvey.rendering.nodes import (
    BulletListNode,
    CardNode,
    ChipNode,
    ChipRowNode,
    DatasheetNode,
    DiagnosticNode,
    FieldNode,
    LinkNode,
    StackNode,
    TextNode,
)
from sphere_harvey.rendering.variants import CIRCULAR_REFERENCE

DATASHEET = """
name: Standard S1
type: Dedicated
price: 245.28
sla: 99.9%
associatedSaaS: Azure AI Search
url: https://azure.microsoft.com/pricing/details/search/
features:
  semanticRanker: true
  vectorSearch: true
limits:
  - name: indexes
    value: 50
  - name: storage
    value: {amount: 25, unit: GB}
regions:
  - westeurope
  - eastus
quotas:
  partitions: 12
  replicas:
    max: 12
"""


def field_map(node):
    return {field.label: field.children[0] for field in node.fields}


def test_parse_document_builds_closed_variants():
    document = parse_document("a: [1, {b: null}]\n")
    assert isinstance(document, YamlMapping)
    sequence = document.get("a")
    assert isinstance(sequence, YamlSequence)
    assert sequence.items[0] == YamlScalar(1)
    assert isinstance(sequence.items[1], YamlMapping)


def test_datasheet_header_and_highlights():
    node = render_datasheet(DATASHEET)

    assert isinstance(node, DatasheetNode)
    assert node.title == "Standard S1"
    assert node.subtitle == "Dedicated"
    assert [chip.label for chip in node.highlights] == ["type: Dedicated", "price: 245.28", "sla: 99.9%"]


def test_datasheet_special_keys():
    fields = field_map(render_datasheet(DATASHEET))

    assert fields["url"] == LinkNode("https://azure.microsoft.com/pricing/details/search/")
    assert fields["associatedSaaS"] == ChipNode("Azure AI Search")
    assert fields["features"] == ChipRowNode((ChipNode("semanticRanker"), ChipNode("vectorSearch")))


def test_datasheet_sequences_render_cards_and_bullets():
    fields = field_map(render_datasheet(DATASHEET))

    limits = fields["limits"]
    assert isinstance(limits, StackNode)
    assert all(isinstance(card, CardNode) for card in limits.children)
    storage_card = limits.children[1]
    assert storage_card.fields[1] == FieldNode("value", (TextNode('{"amount":25,"unit":"GB"}'),))

    assert fields["regions"] == BulletListNode((TextNode("westeurope"), TextNode("eastus")))


def test_datasheet_nested_mapping_renders_one_level():
    quotas = field_map(render_datasheet(DATASHEET))["quotas"]

    assert isinstance(quotas, StackNode)
    assert quotas.children[0] == FieldNode("partitions", (TextNode("12"),))
    assert quotas.children[1] == FieldNode("replicas", (TextNode('{"max":12}'),))


def test_datasheet_bullets_for_mixed_sequences():
    node = render_datasheet("tiers:\n  - {name: a, size: 1}\n  - plain\n")

    assert field_map(node)["tiers"] == BulletListNode((TextNode("name: a · size: 1"), TextNode("plain")))


def test_associated_saas_mapping_links_chip():
    node = render_datasheet("associatedSaaS:\n  name: Zoom\n  url: https://zoom.us\n")

    assert field_map(node)["associatedSaaS"] == ChipNode("Zoom", href="https://zoom.us")


@pytest.mark.parametrize(
    "content, expected",
    [
        (DATASHEET_NOT_FOUND, DiagnosticNode(DATASHEET_NOT_FOUND)),
        ("Error loading datasheet", DiagnosticNode("Error loading datasheet")),
        ("key: [unclosed", DiagnosticNode("key: [unclosed", raw=True)),
        ("just text", TextNode("just text")),
        ("- a\n- b\n", TextNode("- a\n- b\n")),
    ],
)
def test_datasheet_degrades_to_diagnostics(content, expected):
    assert render_datasheet(content) == expected


@pytest.mark.parametrize("content", [None, "", "   "])
def test_empty_datasheet(content):
    assert isinstance(render_datasheet(content), DiagnosticNode)


def test_render_text_serialises_datasheet():
    text = render_text(render_datasheet(DATASHEET))

    assert text.startswith("# Standard S1\nDedicated\n[type: Dedicated] [price: 245.28] [sla: 99.9%]\n---")
    assert "url: <https://azure.microsoft.com/pricing/details/search/>" in text
    assert "features: [semanticRanker] [vectorSearch]" in text
    assert "regions:\n  - westeurope\n  - eastus" in text
    assert "limits:\n  - name: indexes\n    value: 50" in text


PRICING = """
saasName: Zoom
version: '2024'
currency: USD
url: https://zoom.us/pricing
features:
  meetings:
    valueType: BOOLEAN
    defaultValue: true
  recording:
    valueType: BOOLEAN
    defaultValue: false
usageLimits:
  maxParticipants:
    valueType: NUMERIC
    unit: participant
    defaultValue: 100
  cloudStorage:
    valueType: NUMERIC
    unit: GB
    defaultValue: 0
    period:
      value: 1
      unit: MONTH
plans:
  BASIC:
    price: 0
    unit: /month
  PRO:
    description: For small teams
    price: 15.99
    unit: /month
    features:
      recording:
        value: true
    usageLimits:
      cloudStorage:
        value: 5
addOns:
  extraStorage:
    price: 10
    unit: /month
    availableFor: [PRO]
    usageLimitsExtensions:
      cloudStorage:
        value: 10
"""


def test_render_pricing_plan_cards():
    node = render_pricing(PRICING)

    header, plans, add_ons = node.children
    assert header.title == "Zoom"
    assert header.subtitle == "Version 2024 · Currency $"

    basic, pro = plans.children
    assert basic.title == "BASIC"
    assert field_map(basic)["Price"] == TextNode("$0 /month")
    assert field_map(pro)["Price"] == TextNode("$15.99 /month")
    assert field_map(pro)["Features"] == ChipRowNode((ChipNode("Meetings"), ChipNode("Recording")))

    usage = {field.label: field for field in pro.fields}["Usage limits"]
    limits = {field.label: field.children[0].text for field in usage.children}
    assert limits == {"Max Participants": "100 participants", "Cloud Storage": "5 GBs / month"}


def test_render_pricing_add_on_cards():
    add_on = render_pricing(PRICING).children[2].children[0]
    fields = {field.label: field for field in add_on.fields}

    assert add_on.title == "extraStorage"
    assert fields["Price"].children[0] == TextNode("$10 /month")
    assert fields["Available for"].children[0] == ChipRowNode((ChipNode("PRO"),))
    assert fields["Usage limit extensions"].children[0] == FieldNode("Cloud Storage", (TextNode("10 GBs"),))


def test_render_pricing_rejects_non_mappings():
    assert render_pricing("key: [unclosed") == DiagnosticNode("key: [unclosed", raw=True)
    assert isinstance(render_pricing("- a"), DiagnosticNode)


def test_datasheet_index_matching():
    index = DatasheetIndex(
        {
            "azure-ai-search-basic.yml": "name: Basic",
            "azure-ai-search-standard-s1.yml": "name: Standard S1",
            "other-standard-s1.yml": "name: Other",
            "storage-opt-l1.yml": "name: L1",
        }
    )

    assert index.find("STANDARD_S1", "Azure AI Search") == ("azure-ai-search-standard-s1.yml", "name: Standard S1")
    assert index.match("basic") == "azure-ai-search-basic.yml"
    assert index.match("storageoptl1") == "storage-opt-l1.yml"
    assert index.find("enterprise", "Azure") == (None, DATASHEET_NOT_FOUND)


def test_datasheet_index_from_directory(tmp_path):
    (tmp_path / "zoom-pro.yaml").write_text("name: Pro\n", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")

    index = DatasheetIndex.from_directory(tmp_path)

    assert index.names == ["zoom-pro.yaml"]
    assert len(DatasheetIndex.from_directory(tmp_path / "missing")) == 0


def test_alias_cycles_become_placeholders():
    document = parse_document("name: Pro\nlimits: &x\n  - *x\n")
    assert document.get("limits") == YamlSequence((YamlScalar(CIRCULAR_REFERENCE),))

    node = render_datasheet("name: Pro\nlimits: &x\n  - *x\n")
    assert isinstance(node, DatasheetNode)
    assert field_map(node)["limits"] == BulletListNode((TextNode(CIRCULAR_REFERENCE),))

    pricing = render_pricing("saasName: Loop\nplans: &p\n  basic: *p\n")
    assert isinstance(pricing, StackNode)
    assert pricing.children[1].children[0].title == "basic"


def test_shared_aliases_are_not_treated_as_cycles():
    document = parse_document("base: &b {unit: GB}\ncopy: *b\n")
    assert document.get("copy") == document.get("base")


def test_datasheet_with_huge_price_still_renders():
    node = render_datasheet("name: Pro\nprice: 1.0e+307\n")

    assert isinstance(node, DatasheetNode)
    assert node.highlights[0].label == "price: 1" + "0" * 307


def test_render_pricing_tolerates_malformed_sections():
    node = render_pricing(
        "saasName: X\n"
        "currency: [USD]\n"
        "usageLimits:\n  seats: 5\n"
        "plans:\n  basic:\n    price: 10\n  broken: nope\n"
    )

    header, plans = node.children
    assert header.subtitle is None
    basic, broken = plans.children
    assert field_map(basic)["Price"] == TextNode("10")
    assert field_map(broken)["Price"] == TextNode("-")
    usage = {field.label: field for field in basic.fields}["Usage limits"]
    assert usage.children == (FieldNode("Seats", (TextNode("Seats"),)),)

    assert render_pricing("saasName: X\nplans: [a, b]\n").children == (header,)


def test_render_pricing_accepts_mappings_with_non_string_keys():
    node = render_pricing({"saasName": "X", "usageLimits": {1: {"unit": "seat"}}, "plans": {2024: {"price": 5}}})

    plan = node.children[1].children[0]
    assert plan.title == "2024"
    usage = {field.label: field for field in plan.fields}["Usage limits"]
    assert usage.children[0].label == "1"


def test_unreadable_datasheet_file_is_reported(tmp_path):
    (tmp_path / "broken.yml").write_bytes(b"\xff\xfe\x00name")

    index = DatasheetIndex.from_directory(tmp_path)

    assert index.find("broken") == ("broken.yml", DATASHEET_LOAD_ERROR)
    assert render_datasheet(DATASHEET_LOAD_ERROR) == DiagnosticNode(DATASHEET_LOAD_ERROR)
