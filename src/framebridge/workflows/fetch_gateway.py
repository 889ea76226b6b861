"""Fetch gateway: validated, deadline-bounded upstream retrieval.

The gateway issues exactly one outbound GET per proxy request with
browser-like headers and redirect following. Non-2xx statuses are returned to
the caller untouched; only validation errors, the deadline and transport
failures raise. Retrying is left to the embedding UI.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Tuple
from urllib.parse import urlparse, urlunparse

import aiohttp
from bs4 import BeautifulSoup

from . import proxy_config
from .proxy_utils import ProxyConfig, idna_normalize, stable_index

logger = logging.getLogger(__name__)


class ProxyError(Exception):
    """Base class for failures the HTTP layer knows how to present."""

    status = 500


class InputValidationError(ProxyError):
    """Missing, unparseable or disallowed-scheme target URL."""

    status = 400


class UpstreamTimeout(ProxyError):
    """The outbound request did not complete before the deadline."""

    status = 504

    def __init__(self, url: str, timeout: float) -> None:
        self.url = url
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:g}s fetching {url}")


class UpstreamFailure(ProxyError):
    """The upstream could not be reached (DNS, TLS, connection reset...)."""

    status = 502

    def __init__(self, url: str, detail: str) -> None:
        self.url = url
        self.detail = detail
        super().__init__(f"Failed to fetch {url}: {detail}")


class RewriteFailure(ProxyError):
    """A single rewriting rule could not process a fragment."""


class RenderEngineUnavailable(ProxyError):
    """The headless browser runtime is missing or could not be launched."""


class RenderNavigationFailure(ProxyError):
    """The headless browser could not load the target page."""


class AcquisitionMode(str, Enum):
    DIRECT_FETCH = "direct-fetch"
    HEADLESS_RENDER = "headless-render"

    @property
    def bridge_name(self) -> str:
        """Name used by the in-page bridge for one-shot loaded/error messages."""

        return "proxy" if self is AcquisitionMode.DIRECT_FETCH else "playwright"


@dataclass
class ProxyRequest:
    """One inbound proxy/render call; discarded once the response is sent."""

    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    mode: AcquisitionMode = AcquisitionMode.DIRECT_FETCH
    depth: int = 0
    removals: Tuple[str, ...] = ()

    @property
    def host(self) -> str:
        return idna_normalize(urlparse(self.url).hostname or "")


@dataclass
class FetchResult:
    """Container for a single upstream acquisition."""

    url: str
    final_url: str
    status: int
    content_type: str
    body: bytes = field(default=b"", repr=False)
    headers: Dict[str, str] = field(default_factory=dict)
    method: str = "aiohttp"
    fetched_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).replace(microsecond=0).isoformat()
    )
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def is_html(self) -> bool:
        ct = self.content_type.lower()
        return "text/html" in ct or "application/xhtml" in ct

    @property
    def is_css(self) -> bool:
        return "text/css" in self.content_type.lower()


class PageAcquirer(Protocol):
    """Common interface of the direct fetcher and the headless renderer."""

    async def fetch(self, request: ProxyRequest) -> FetchResult:
        ...


def validate_target_url(raw: Optional[str]) -> str:
    """Return a normalized absolute http(s) URL or raise InputValidationError."""

    value = (raw or "").strip()
    if not value:
        raise InputValidationError("The url parameter is required")
    try:
        parsed = urlparse(value)
        parsed.port  # noqa: B018 - raises ValueError on a malformed port
    except ValueError as exc:
        raise InputValidationError(f"Invalid URL: {value}") from exc
    scheme = (parsed.scheme or "").lower()
    if not scheme or not parsed.netloc:
        raise InputValidationError(f"Invalid URL: {value}")
    if scheme not in proxy_config.ALLOWED_SCHEMES:
        raise InputValidationError("Only HTTP and HTTPS URLs are allowed")
    if not parsed.hostname:
        raise InputValidationError(f"Invalid URL: {value}")
    return urlunparse(parsed._replace(scheme=scheme, path=parsed.path or "/"))


def pick_user_agent(host: str) -> str:
    """Choose the user agent for ``host``; stable for a given host."""

    agents = proxy_config.USER_AGENTS
    return agents[stable_index(idna_normalize(host), len(agents))]


def build_request_headers(url: str, accept_language: str = proxy_config.ACCEPT_LANGUAGE) -> Dict[str, str]:
    parsed = urlparse(url)
    user_agent = pick_user_agent(parsed.hostname or "")
    headers = {
        "User-Agent": user_agent,
        "Accept": proxy_config.ACCEPT_DOCUMENT,
        "Accept-Language": accept_language,
        "Accept-Encoding": "gzip, deflate",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
        "Referer": f"{parsed.scheme}://{parsed.netloc}/",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Sec-Fetch-User": "?1",
        "Upgrade-Insecure-Requests": "1",
    }
    if "Chrome/" in user_agent:
        headers["Sec-Ch-Ua"] = proxy_config.SEC_CH_UA
        headers["Sec-Ch-Ua-Mobile"] = "?0"
    return headers


class DirectFetcher:
    """Single-shot aiohttp fetcher with a hard cancellation deadline."""

    method = "aiohttp"

    def __init__(
        self,
        config: Optional[ProxyConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.config = config or ProxyConfig()
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "DirectFetcher":
        self._ensure_session()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            # The deadline is enforced with asyncio.wait_for, not aiohttp's timeout.
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None))
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def fetch(self, request: ProxyRequest) -> FetchResult:
        url = validate_target_url(request.url)
        try:
            return await asyncio.wait_for(self._fetch_once(url), timeout=self.config.fetch_timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("Upstream timeout after %.1fs for %s", self.config.fetch_timeout, url)
            raise UpstreamTimeout(url, self.config.fetch_timeout) from exc
        except aiohttp.ClientError as exc:
            logger.warning("Upstream fetch failed for %s: %s", url, exc)
            raise UpstreamFailure(url, str(exc) or exc.__class__.__name__) from exc

    async def _fetch_once(self, url: str) -> FetchResult:
        session = self._ensure_session()
        headers = build_request_headers(url, self.config.accept_language)
        async with session.get(url, headers=headers, allow_redirects=True) as resp:
            raw_content_type = resp.headers.get("Content-Type", "")
            body = await resp.read()
            response_headers = {k: v for k, v in resp.headers.items()}
            final_url = str(resp.url)
            status = resp.status
        if not (200 <= status < 300):
            logger.warning("Upstream returned %s for %s", status, url)
        return FetchResult(
            url=url,
            final_url=final_url,
            status=status,
            content_type=raw_content_type,
            body=body,
            headers=response_headers,
            method=self.method,
            metadata={"user_agent": headers["User-Agent"]},
        )


_JS_INDICATORS = (
    "please enable javascript",
    "javascript is required",
    "you need to enable javascript",
    "__next_data__",
    'id="root"></div>',
    'id="app"></div>',
    'id="__next"></div>',
    "ng-version=",
)


def needs_headless_render(html: str, min_text_length: int = 200) -> bool:
    """Heuristic: does this document depend on client-side scripts to render?"""

    if not html:
        return True
    lowered = html.lower()
    if any(indicator in lowered for indicator in _JS_INDICATORS):
        return True
    soup = BeautifulSoup(html, "lxml")
    body = soup.find("body")
    if body is None:
        return True
    for tag in body.find_all(["script", "style", "noscript", "template"]):
        tag.extract()
    stripped = body.get_text(" ", strip=True)
    return len(stripped) < min_text_length


__all__ = [
    "ProxyError",
    "InputValidationError",
    "UpstreamTimeout",
    "UpstreamFailure",
    "RewriteFailure",
    "RenderEngineUnavailable",
    "RenderNavigationFailure",
    "AcquisitionMode",
    "ProxyRequest",
    "FetchResult",
    "PageAcquirer",
    "validate_target_url",
    "pick_user_agent",
    "build_request_headers",
    "DirectFetcher",
    "needs_headless_render",
]
