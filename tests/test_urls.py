import pytest

from sphere_harvey.urls import (
    InvalidUrlError,
    extract_http_references,
    extract_pricing_urls,
    looks_like_url,
    normalize_url,
)


def test_normalize_url_canonicalises_scheme_host_and_path():
    assert normalize_url("  HTTPS://Example.COM  ") == "https://example.com/"
    assert normalize_url("http://example.com:80/pricing") == "http://example.com/pricing"
    assert normalize_url("https://example.com:8443/a?b=1") == "https://example.com:8443/a?b=1"


@pytest.mark.parametrize("raw", ["", "   ", "ftp://example.com", "not a url", "https://"])
def test_normalize_url_rejects_unusable_input(raw):
    with pytest.raises(InvalidUrlError):
        normalize_url(raw)


def test_extract_pricing_urls_strips_trailing_punctuation_and_dedupes():
    text = "Compare https://a.com/pricing, and (https://b.io/plans). Also https://a.com/pricing!"
    assert extract_pricing_urls(text) == ["https://a.com/pricing", "https://b.io/plans"]


def test_extract_pricing_urls_without_urls():
    assert extract_pricing_urls("What is the cheapest plan?") == []
    assert extract_pricing_urls("") == []


def test_extract_http_references_walks_nested_payloads():
    plan = {
        "steps": [
            {"action": "iPricing", "pricing_url": "https://zoom.us/pricing"},
            {"notes": ["see http://slack.com/pricing for details"]},
        ],
        "count": 2,
    }
    result = {"source": "https://zoom.us/pricing"}
    assert extract_http_references([plan, result]) == [
        "https://zoom.us/pricing",
        "http://slack.com/pricing",
    ]


def test_looks_like_url():
    assert looks_like_url("https://example.com/x")
    assert not looks_like_url("see https://example.com")
    assert not looks_like_url(42)


def test_normalize_url_keeps_ipv6_brackets():
    assert normalize_url("http://[::1]:8080/x") == "http://[::1]:8080/x"
    assert normalize_url("HTTPS://[2001:DB8::1]/pricing") == "https://[2001:db8::1]/pricing"


@pytest.mark.parametrize(
    "text, expected",
    [
        ("See https://en.wikipedia.org/wiki/Foo_(bar)", ["https://en.wikipedia.org/wiki/Foo_(bar)"]),
        ("(see https://en.wikipedia.org/wiki/Foo_(bar)).", ["https://en.wikipedia.org/wiki/Foo_(bar)"]),
        ("[https://a.com/x]", ["https://a.com/x"]),
    ],
)
def test_extract_pricing_urls_keeps_balanced_brackets(text, expected):
    assert extract_pricing_urls(text) == expected
