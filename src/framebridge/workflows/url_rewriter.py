"""URL resolver: route every outbound reference back through the proxy.

``rewrite_url`` is idempotent: a value that already addresses the proxy (raw or
percent-decoded) is returned as-is, so rewriting a document twice never nests
proxy URLs.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple
from urllib.parse import parse_qs, quote, unquote, urljoin, urlsplit

from . import proxy_config
from .fetch_gateway import AcquisitionMode, RewriteFailure

logger = logging.getLogger(__name__)

_ABSOLUTE_HTTP_RE = re.compile(r"^https?://", re.I)
_SCHEME_RE = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.\-]*):")

CSS_URL_RE = re.compile(r"""url\(\s*(?P<q>["']?)(?P<url>.*?)(?P=q)\s*\)""", re.I | re.S)
CSS_IMPORT_RE = re.compile(r"""@import\s+(?P<q>["'])(?P<url>[^"'\n]+)(?P=q)""", re.I)


@dataclass(frozen=True)
class RewriteContext:
    """Per-response rewriting parameters; immutable for the request's lifetime."""

    base_url: str
    proxy_prefix: str
    render_prefix: str
    origin: str
    scheme: str
    mode: AcquisitionMode = AcquisitionMode.DIRECT_FETCH
    depth: int = 0
    max_depth: int = proxy_config.MAX_RENDER_DEPTH

    @classmethod
    def for_document(
        cls,
        base_url: str,
        proxy_prefix: str = proxy_config.PROXY_PATH,
        render_prefix: str = proxy_config.RENDER_PATH,
        *,
        mode: AcquisitionMode = AcquisitionMode.DIRECT_FETCH,
        depth: int = 0,
        max_depth: int = proxy_config.MAX_RENDER_DEPTH,
    ) -> "RewriteContext":
        parts = urlsplit(base_url)
        scheme = (parts.scheme or "https").lower()
        return cls(
            base_url=base_url,
            proxy_prefix=proxy_prefix,
            render_prefix=render_prefix,
            origin=f"{scheme}://{parts.netloc}",
            scheme=scheme,
            mode=mode,
            depth=depth,
            max_depth=max_depth,
        )

    def with_base(self, base_url: str) -> "RewriteContext":
        """Same proxy settings, different resolution base (e.g. a <base href>)."""

        return RewriteContext.for_document(
            base_url,
            self.proxy_prefix,
            self.render_prefix,
            mode=self.mode,
            depth=self.depth,
            max_depth=self.max_depth,
        )


def _path_of(prefix: str) -> str:
    return urlsplit(prefix).path or prefix


def _proxy_markers(ctx: RewriteContext) -> Tuple[str, ...]:
    markers: List[str] = []
    for prefix in (ctx.proxy_prefix, ctx.render_prefix):
        markers.append(prefix + "?")
        netloc = urlsplit(prefix).netloc
        if netloc:
            # A bare "/proxy?" under an absolute prefix is the target site's own path.
            markers.append(f"//{netloc}{_path_of(prefix)}?")
        else:
            markers.append(_path_of(prefix) + "?")
    return tuple(dict.fromkeys(markers))


def is_proxied(value: str, ctx: RewriteContext) -> bool:
    """True when ``value`` already addresses this proxy (raw or percent-decoded)."""

    candidate = (value or "").strip()
    if not candidate:
        return False
    markers = _proxy_markers(ctx)
    for form in (candidate, unquote(candidate)):
        if form.startswith(markers):
            return True
    return False


def should_skip(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered.startswith(proxy_config.SKIP_PREFIXES):
        return True
    match = _SCHEME_RE.match(lowered)
    if match and match.group(1) not in proxy_config.ALLOWED_SCHEMES:
        return True
    return False


def resolve_url(value: str, ctx: RewriteContext) -> str:
    """Resolve ``value`` to an absolute URL; raises ValueError when it cannot."""

    if value.startswith("//"):
        absolute = f"{ctx.scheme}:{value}"
    elif _ABSOLUTE_HTTP_RE.match(value):
        absolute = value
    else:
        absolute = urljoin(ctx.base_url, value)
    parts = urlsplit(absolute)
    parts.port  # noqa: B018 - raises ValueError on a malformed port
    if not parts.netloc:
        raise ValueError(f"unresolvable reference: {value!r}")
    return absolute


def wrap_url(absolute: str, ctx: RewriteContext, *, frame: bool = False) -> str:
    encoded = quote(absolute, safe="")
    if frame and ctx.mode is AcquisitionMode.HEADLESS_RENDER and ctx.depth + 1 <= ctx.max_depth:
        return f"{ctx.render_prefix}?url={encoded}&depth={ctx.depth + 1}"
    return f"{ctx.proxy_prefix}?url={encoded}"


def rewrite_url(raw: Optional[str], ctx: RewriteContext, *, frame: bool = False) -> Optional[str]:
    """Return the proxy-addressed form of ``raw`` (or ``raw`` when it must not move)."""

    if raw is None:
        return raw
    value = raw.strip()
    if not value or should_skip(value) or is_proxied(value, ctx):
        return raw
    try:
        absolute = resolve_url(value, ctx)
    except ValueError:
        if value.startswith("/"):
            absolute = ctx.origin + value
        else:
            logger.debug("Leaving unresolvable reference untouched: %r", value)
            return raw
    return wrap_url(absolute, ctx, frame=frame)


def decode_proxied_url(value: str) -> Optional[str]:
    """Recover the target URL carried by a proxy-addressed value."""

    try:
        query = urlsplit(value.strip()).query
    except ValueError:
        return None
    params = parse_qs(query, keep_blank_values=True)
    targets = params.get("url")
    return targets[0] if targets else None


def split_srcset(value: str) -> List[Tuple[str, str]]:
    """Split a srcset into (url, descriptor) candidates."""

    candidates: List[Tuple[str, str]] = []
    pos, size = 0, len(value)
    while pos < size:
        while pos < size and (value[pos].isspace() or value[pos] == ","):
            pos += 1
        if pos >= size:
            break
        start = pos
        while pos < size and not value[pos].isspace():
            pos += 1
        url = value[start:pos]
        descriptor = ""
        if url.endswith(","):
            url = url.rstrip(",")
        else:
            desc_start = pos
            while pos < size and value[pos] != ",":
                pos += 1
            descriptor = value[desc_start:pos].strip()
        if url:
            candidates.append((url, descriptor))
    return candidates


def rewrite_srcset(value: str, ctx: RewriteContext) -> str:
    candidates = split_srcset(value)
    if not candidates and value.strip():
        raise RewriteFailure(f"no image candidates in srcset {value!r}")
    parts = []
    for url, descriptor in candidates:
        proxied = rewrite_url(url, ctx) or url
        parts.append(f"{proxied} {descriptor}" if descriptor else proxied)
    return ", ".join(parts)


def _css_url_replacement(match: "re.Match[str]", ctx: RewriteContext) -> str:
    raw = match.group("url").strip()
    if not raw or raw.lower().startswith("data:"):
        return match.group(0)
    proxied = rewrite_url(raw, ctx)
    if proxied == raw:
        return match.group(0)
    return f'url("{proxied}")'


def _css_import_replacement(match: "re.Match[str]", ctx: RewriteContext) -> str:
    raw = match.group("url").strip()
    proxied = rewrite_url(raw, ctx)
    if proxied == raw:
        return match.group(0)
    return f'@import "{proxied}"'


def rewrite_css_urls(text: str, ctx: RewriteContext) -> str:
    """Rewrite ``url(...)`` functions and ``@import`` targets in CSS text.

    Each occurrence is handled on its own; one that cannot be rewritten is left
    as written while the rest of the sheet continues.
    """

    def _guard(func):
        def _replace(match: "re.Match[str]") -> str:
            try:
                return func(match, ctx)
            except Exception as exc:
                logger.debug("CSS reference left untouched (%s): %r", exc, match.group(0)[:120])
                return match.group(0)
        return _replace

    text = CSS_IMPORT_RE.sub(_guard(_css_import_replacement), text)
    return CSS_URL_RE.sub(_guard(_css_url_replacement), text)


__all__ = [
    "RewriteContext",
    "is_proxied",
    "should_skip",
    "resolve_url",
    "wrap_url",
    "rewrite_url",
    "decode_proxied_url",
    "split_srcset",
    "rewrite_srcset",
    "rewrite_css_urls",
    "CSS_URL_RE",
    "CSS_IMPORT_RE",
]
