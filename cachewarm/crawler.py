"""HTTP cache-warming crawler."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterable
from urllib.parse import urlsplit

import requests
from requests.adapters import HTTPAdapter

from . import sitemap
from .models import Config, CrawlResult, default_config

log = logging.getLogger(__name__)

CACHE_STATUS_HEADER = "CF-Cache-Status"


class CrawlError(Exception):
    """Raised when warming a URL fails; carries the partial result."""

    def __init__(self, message: str, result: CrawlResult) -> None:
        super().__init__(message)
        self.result = result


class _TimeoutSession(requests.Session):
    """A session that applies a default timeout to every request."""

    def __init__(self, timeout: float) -> None:
        super().__init__()
        self.timeout = timeout

    def request(self, method, url, **kwargs):
        kwargs.setdefault("timeout", self.timeout)
        return super().request(method, url, **kwargs)


def should_retry(error: BaseException | None, status_code: int) -> bool:
    """Whether a request should be retried given its error or status code."""
    if error is not None:
        return True
    return 500 <= status_code < 600 or status_code == 429


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class Crawler:
    """Fetches URLs to warm a CDN cache and reports cache status."""

    def __init__(self, config: Config | None = None, crawler_id: str = "") -> None:
        self.config = config if config is not None else default_config()
        self.crawler_id = crawler_id
        self.user_agent = self.config.user_agent
        if crawler_id:
            self.user_agent = f"{self.config.user_agent} Worker-{crawler_id}"
        self._session = self.create_session(self.config.default_timeout)
        self._session.headers["User-Agent"] = self.user_agent

    def warm_url(self, target_url: str, timeout: float | None = None) -> CrawlResult:
        """Fetch target_url and return its result; raise CrawlError on failure."""
        start = time.monotonic()
        result = CrawlResult(url=target_url, timestamp=int(time.time()))

        if self.config.skip_cached_urls:
            try:
                cache_status = self.check_cache_status(target_url)
            except requests.RequestException:
                cache_status = ""
            if cache_status == "HIT":
                log.debug("URL already cached (HIT), skipping full crawl: %s", target_url)
                result.status_code = 200
                result.cache_status = cache_status
                result.response_time = _elapsed_ms(start)
                result.skipped_crawl = True
                return result

        try:
            parsed = urlsplit(target_url)
        except ValueError as exc:
            result.error = str(exc)
            raise CrawlError(result.error, result) from exc
        if not parsed.scheme or not parsed.netloc:
            result.error = f"invalid URL format: {target_url}"
            raise CrawlError(result.error, result)

        log.debug("Crawler sending request: %s", target_url)
        try:
            response = self._session.get(
                target_url, timeout=timeout if timeout else self.config.default_timeout
            )
        except requests.RequestException as exc:
            result.error = str(exc)
            result.response_time = _elapsed_ms(start)
            raise CrawlError(result.error, result) from exc

        result.status_code = response.status_code
        result.cache_status = response.headers.get(CACHE_STATUS_HEADER, "")
        log.debug(
            "Crawler received response: url=%s status=%d cache=%s",
            target_url,
            response.status_code,
            result.cache_status,
        )
        self._handle_response_type(
            result, response.status_code, response.headers.get("Content-Type", ""), response.content
        )
        result.response_time = _elapsed_ms(start)
        self._validate_cache_status(result)

        if result.error:
            raise CrawlError(result.error, result)
        return result

    @staticmethod
    def _handle_response_type(
        result: CrawlResult, status_code: int, content_type: str, body: bytes
    ) -> None:
        result.content_type = content_type

        if not 200 <= status_code < 300:
            if status_code == 404:
                result.error = "HTTP 404: Page not found"
            elif status_code == 403:
                result.error = "HTTP 403: Access forbidden"
            elif status_code == 401:
                result.error = "HTTP 401: Authentication required"
            elif status_code == 429:
                result.error = "HTTP 429: Too many requests - rate limited"
            elif 500 <= status_code < 600:
                result.error = f"HTTP {status_code}: Server error"
            else:
                result.error = f"HTTP {status_code}: Non-successful status code"
            return

        text = body.decode("utf-8", errors="replace")
        if "text/html" in content_type:
            if len(body) < 100:
                result.warning = "Warning: Unusually small HTML response"
            if "<title>404" in text or "not found" in text or "page doesn't exist" in text:
                result.warning = "Warning: Page content suggests a 404 despite 200 status code"
        elif "application/json" in content_type:
            try:
                document = json.loads(body)
            except ValueError:
                document = None
            if not isinstance(document, dict):
                result.warning = "Warning: Invalid JSON response"
            elif isinstance(document.get("error"), str):
                result.warning = f"Warning: JSON contains error field: {document['error']}"
        elif "text/plain" in content_type:
            lowered = text.lower()
            if "error" in lowered or "not found" in lowered:
                result.warning = "Warning: Text appears to contain error message"

        if not body:
            result.warning = "Warning: Empty response body"

    @staticmethod
    def _validate_cache_status(result: CrawlResult) -> None:
        if result.error:
            return
        status = result.cache_status
        if status == "HIT":
            log.debug("Cache hit confirmed: %s", result.url)
        elif status == "MISS":
            log.debug("Cache miss detected: %s", result.url)
        elif status == "EXPIRED":
            result.warning = "Cache expired - resource needed revalidation"
        elif status == "BYPASS":
            result.warning = "Cache was bypassed - check cache headers"
        elif status == "DYNAMIC":
            result.warning = "Content served dynamically - not cacheable"
        elif status == "":
            result.warning = "No cache status header found - CDN might not be enabled"
        else:
            result.warning = f"Unknown cache status: {status}"

    def check_cache_status(self, target_url: str) -> str:
        """Send a HEAD request and return the CDN cache status header."""
        with requests.Session() as session:
            response = session.head(
                target_url,
                headers={"User-Agent": self.config.user_agent},
                timeout=self.config.default_timeout,
            )
        return response.headers.get(CACHE_STATUS_HEADER, "")

    def create_session(self, timeout: float | None = None) -> requests.Session:
        """Return a pooled session using timeout, or the configured default."""
        session = _TimeoutSession(timeout if timeout else self.config.default_timeout)
        adapter = HTTPAdapter(pool_connections=25, pool_maxsize=50)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        session.headers["Accept-Encoding"] = "identity"
        return session

    def discover_sitemaps(self, domain: str) -> list[str]:
        """Find sitemap URLs for a domain."""
        with self.create_session(sitemap.DISCOVERY_TIMEOUT) as session:
            session.max_redirects = 10
            return sitemap.discover_sitemaps(domain, session)

    def parse_sitemap(self, sitemap_url: str) -> list[str]:
        """Return the page URLs listed by a sitemap."""
        with self.create_session(sitemap.SITEMAP_TIMEOUT) as session:
            return sitemap.parse_sitemap(sitemap_url, session)

    def filter_urls(
        self,
        urls: Iterable[str],
        include_paths: Iterable[str] = (),
        exclude_paths: Iterable[str] = (),
    ) -> list[str]:
        """Filter URLs by include and exclude substrings."""
        return sitemap.filter_urls(urls, include_paths, exclude_paths)