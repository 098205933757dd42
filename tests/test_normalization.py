import pytest

from chrome_tracker.normalization import (
    domain_from_url,
    is_valid_hostname,
    matches,
    normalize_domain,
    normalize_domains,
    parse_domain_input,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("WWW.Example.com/", "example.com"),
        ("https://sub.example.com:8443/path", "sub.example.com"),
        ("", ""),
        ("   ", ""),
        ("*", "*"),
        ("*.Example.com", "*.example.com"),
        ("http://www.news.ycombinator.com/item?id=1", "news.ycombinator.com"),
        ("example.com:8080/foo", "example.com"),
        ("localhost:3000", "localhost"),
        ("  reddit.com  ", "reddit.com"),
        (":8080", ""),
    ],
)
def test_normalize_domain(raw, expected):
    assert normalize_domain(raw) == expected


@pytest.mark.parametrize(
    "raw",
    [
        "WWW.Example.com/",
        "https://sub.example.com:8443/path",
        "*.example.com",
        "example.com:8080/foo",
        "http://www.github.com",
        "*",
        "",
    ],
)
def test_normalize_domain_is_idempotent(raw):
    once = normalize_domain(raw)
    assert normalize_domain(once) == once


def test_normalize_domains_keeps_first_seen_order_and_drops_wildcard():
    assert normalize_domains(["B.com", "b.com", "*", "a.com"]) == ["b.com", "a.com"]


def test_normalize_domains_drops_empty_entries():
    assert normalize_domains(["", "  ", "/", "x.org"]) == ["x.org"]


def test_parse_domain_input_splits_commas_and_newlines():
    text = "youtube.com, https://www.reddit.com/r/python\n\n*.tiktok.com,youtube.com"
    assert parse_domain_input(text) == ["youtube.com", "reddit.com", "*.tiktok.com"]


@pytest.mark.parametrize(
    ("domain", "pattern", "expected"),
    [
        ("a.b.example.com", "*.example.com", True),
        ("example.com", "*.example.com", True),
        ("notexample.com", "example.com", False),
        ("x.example.com", "example.com", True),
        ("example.com", "example.com", True),
        ("www.example.com", "example.com", True),
        ("example.com", "x.example.com", False),
        ("anything.org", "*", True),
        ("", "*", False),
        ("example.com", "", False),
        ("notexample.com", "*.example.com", False),
    ],
)
def test_matches(domain, pattern, expected):
    assert matches(domain, pattern) is expected


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://www.youtube.com/watch?v=1", "youtube.com"),
        ("https://Docs.Google.com/document", "docs.google.com"),
        ("chrome://settings", None),
        ("about:blank", None),
        ("file:///Users/me/index.html", None),
        ("javascript:void(0)", None),
        ("not a url", None),
    ],
)
def test_domain_from_url(url, expected):
    assert domain_from_url(url) == expected


def test_is_valid_hostname():
    assert is_valid_hostname("sub-domain.example.com")
    assert not is_valid_hostname("")
    assert not is_valid_hostname("bad_host.com")
    assert not is_valid_hostname("*.example.com")
