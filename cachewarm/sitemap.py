"""Sitemap discovery, parsing and URL filtering."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from urllib.parse import urlsplit

import requests

log = logging.getLogger(__name__)

DISCOVERY_TIMEOUT = 5.0
SITEMAP_TIMEOUT = 30.0


def _is_parseable(url: str) -> bool:
    try:
        urlsplit(url)
    except ValueError:
        return False
    return True


def discover_sitemaps(domain: str, session: requests.Session | None = None) -> list[str]:
    """Find sitemap URLs for a domain via robots.txt, then common locations."""
    if session is None:
        with requests.Session() as own:
            own.max_redirects = 10
            return discover_sitemaps(domain, own)

    found: list[str] = []
    try:
        resp = session.get(f"https://{domain}/robots.txt", timeout=DISCOVERY_TIMEOUT)
    except requests.RequestException:
        resp = None
    if resp is not None and resp.status_code == 200:
        text = resp.content.decode("utf-8", errors="replace")
        for line in text.split("\n"):
            line = line.strip()
            if line.lower().startswith("sitemap:"):
                candidate = line[8:].strip()
                if _is_parseable(candidate):
                    found.append(candidate)

    if not found:
        for candidate in (
            f"https://{domain}/sitemap.xml",
            f"https://{domain}/sitemap_index.xml",
        ):
            try:
                head = session.head(candidate, timeout=DISCOVERY_TIMEOUT, allow_redirects=True)
            except requests.RequestException:
                continue
            if head.status_code == 200:
                found.append(candidate)

    return list(dict.fromkeys(found))


def parse_sitemap(sitemap_url: str, session: requests.Session | None = None) -> list[str]:
    """Return the page URLs listed by a sitemap, following sitemap indexes.

    Raises requests.HTTPError when the sitemap is not served with status 200.
    """
    if session is None:
        with requests.Session() as own:
            return parse_sitemap(sitemap_url, own)

    resp = session.get(sitemap_url, timeout=SITEMAP_TIMEOUT)
    if resp.status_code != 200:
        raise requests.HTTPError(f"failed to fetch sitemap: {resp.status_code}", response=resp)

    content = resp.content.decode("utf-8", errors="replace")
    if "<sitemapindex" not in content:
        return extract_urls_from_xml(content, "<url>", "</url>", "<loc>", "</loc>")

    urls: list[str] = []
    for child in extract_urls_from_xml(content, "<sitemap>", "</sitemap>", "<loc>", "</loc>"):
        try:
            urls.extend(parse_sitemap(child, session))
        except requests.RequestException as exc:
            log.warning("Failed to parse child sitemap %s: %s", child, exc)
    return urls


def extract_urls_from_xml(
    content: str, start_tag: str, end_tag: str, loc_start_tag: str, loc_end_tag: str
) -> list[str]:
    """Extract the location text of every start_tag..end_tag section."""
    urls: list[str] = []
    pos = 0
    while True:
        start = content.find(start_tag, pos)
        if start == -1:
            break
        end = content.find(end_tag, start)
        if end == -1:
            break
        section = content[start : end + len(end_tag)]
        loc_start = section.find(loc_start_tag)
        if loc_start != -1:
            loc_end = section.find(loc_end_tag, loc_start)
            if loc_end != -1:
                url = section[loc_start + len(loc_start_tag) : loc_end].strip()
                if url:
                    urls.append(url)
        pos = end + len(end_tag)
    return urls


def filter_urls(
    urls: Iterable[str], include_paths: Iterable[str] = (), exclude_paths: Iterable[str] = ()
) -> list[str]:
    """Keep URLs matching any include pattern and no exclude pattern."""
    includes = list(include_paths)
    excludes = list(exclude_paths)
    if not includes and not excludes:
        return list(urls)
    return [
        url
        for url in urls
        if (not includes or any(pattern in url for pattern in includes))
        and not any(pattern in url for pattern in excludes)
    ]


def validate_url(raw_url: str) -> str:
    """Return raw_url if it is an http(s) URL with a host; raise ValueError otherwise."""
    parsed = urlsplit(raw_url)
    if parsed.scheme not in ("http", "https"):
        raise ValueError(f"invalid URL scheme: {parsed.scheme}")
    if not parsed.netloc:
        raise ValueError("missing host in URL")
    return raw_url