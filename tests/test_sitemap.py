from types import SimpleNamespace

import pytest
import requests

from cachewarm.sitemap import (
    discover_sitemaps,
    extract_urls_from_xml,
    filter_urls,
    parse_sitemap,
    validate_url,
)


class FakeSession:
    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def _respond(self, method, url):
        self.calls.append((method, url))
        outcome = self.routes.get((method, url))
        if outcome is None:
            return SimpleNamespace(status_code=404, content=b"")
        if isinstance(outcome, Exception):
            raise outcome
        status, body = outcome
        return SimpleNamespace(status_code=status, content=body)

    def get(self, url, **kwargs):
        return self._respond("GET", url)

    def head(self, url, **kwargs):
        return self._respond("HEAD", url)


URLSET = b"""<?xml version="1.0"?>
<urlset>
  <url><loc> https://example.com/a </loc></url>
  <url><loc>https://example.com/b</loc></url>
</urlset>"""


def test_extract_urls_trims_and_orders():
    content = URLSET.decode()
    assert extract_urls_from_xml(content, "<url>", "</url>", "<loc>", "</loc>") == [
        "https://example.com/a",
        "https://example.com/b",
    ]


def test_extract_urls_skips_empty_loc_and_stops_at_unclosed():
    content = "<url><loc>  </loc></url><url><loc>https://example.com/x</loc></url><url><loc>https://example.com/y</loc>"
    assert extract_urls_from_xml(content, "<url>", "</url>", "<loc>", "</loc>") == [
        "https://example.com/x"
    ]


def test_parse_sitemap_urlset():
    session = FakeSession({("GET", "https://example.com/sitemap.xml"): (200, URLSET)})
    assert parse_sitemap("https://example.com/sitemap.xml", session) == [
        "https://example.com/a",
        "https://example.com/b",
    ]


def test_parse_sitemap_index_follows_children_and_skips_failures():
    index = b"""<sitemapindex>
      <sitemap><loc>https://example.com/one.xml</loc></sitemap>
      <sitemap><loc>https://example.com/broken.xml</loc></sitemap>
      <sitemap><loc>https://example.com/two.xml</loc></sitemap>
    </sitemapindex>"""
    session = FakeSession(
        {
            ("GET", "https://example.com/index.xml"): (200, index),
            ("GET", "https://example.com/one.xml"): (200, b"<url><loc>https://example.com/1</loc></url>"),
            ("GET", "https://example.com/broken.xml"): (500, b""),
            ("GET", "https://example.com/two.xml"): (200, b"<url><loc>https://example.com/2</loc></url>"),
        }
    )
    assert parse_sitemap("https://example.com/index.xml", session) == [
        "https://example.com/1",
        "https://example.com/2",
    ]


def test_parse_sitemap_non_200_raises():
    session = FakeSession({("GET", "https://example.com/sitemap.xml"): (404, b"")})
    with pytest.raises(requests.HTTPError, match="failed to fetch sitemap: 404"):
        parse_sitemap("https://example.com/sitemap.xml", session)


def test_discover_reads_robots_and_dedupes():
    robots = (
        b"User-agent: *\r\n"
        b"Sitemap: https://example.com/s1.xml\r\n"
        b"SITEMAP:https://example.com/s2.xml\n"
        b"sitemap: https://example.com/s1.xml\n"
    )
    session = FakeSession({("GET", "https://example.com/robots.txt"): (200, robots)})
    assert discover_sitemaps("example.com", session) == [
        "https://example.com/s1.xml",
        "https://example.com/s2.xml",
    ]
    assert all(method == "GET" for method, _ in session.calls)


def test_discover_falls_back_to_common_paths():
    session = FakeSession(
        {
            ("GET", "https://example.com/robots.txt"): (404, b""),
            ("HEAD", "https://example.com/sitemap.xml"): requests.ConnectionError("down"),
            ("HEAD", "https://example.com/sitemap_index.xml"): (200, b""),
        }
    )
    assert discover_sitemaps("example.com", session) == ["https://example.com/sitemap_index.xml"]


def test_discover_returns_empty_when_nothing_found():
    session = FakeSession({("GET", "https://example.com/robots.txt"): requests.Timeout("slow")})
    assert discover_sitemaps("example.com", session) == []


def test_filter_urls_without_patterns_keeps_all():
    urls = ["https://example.com/a", "https://example.com/b"]
    assert filter_urls(urls, [], []) == urls


def test_filter_urls_include_and_exclude():
    urls = [
        "https://example.com/blog/one",
        "https://example.com/blog/drafts/two",
        "https://example.com/shop/three",
    ]
    assert filter_urls(urls, ["/blog/"], ["drafts"]) == ["https://example.com/blog/one"]
    assert filter_urls(urls, [], ["/blog/"]) == ["https://example.com/shop/three"]


def test_validate_url_accepts_http_and_https():
    assert validate_url("https://example.com/x") == "https://example.com/x"
    assert validate_url("http://example.com") == "http://example.com"


def test_validate_url_rejects_bad_scheme():
    with pytest.raises(ValueError, match="invalid URL scheme: ftp"):
        validate_url("ftp://example.com/file")


def test_validate_url_rejects_missing_host():
    with pytest.raises(ValueError, match="missing host in URL"):
        validate_url("http:///path")