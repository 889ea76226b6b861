"""Content rewriter: content-type dispatched rewriting of upstream bodies.

HTML goes through an ordered, pattern-based pipeline; CSS gets its ``url()``
and ``@import`` references rewritten against the stylesheet's own URL; every
other body passes through untouched.

The HTML pipeline works on raw markup, not on a parse tree. The document is
first split into markup, comments and raw-text elements (``<script>``,
``<style>``) so attribute passes never see script or style bodies. Each step
runs on its own, and inside a step every tag or reference is rewritten in its
own ``try``: a fragment that cannot be processed is left exactly as written.
"""

from __future__ import annotations

import html as html_lib
import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence
from urllib.parse import urljoin, urlsplit

from . import proxy_config
from .bridge import MessageType, build_bridge_config, render_bridge_script, script_json
from .fetch_gateway import AcquisitionMode, FetchResult, needs_headless_render
from .html_normalize import (
    ATTR_RE,
    START_TAG_RE,
    attr_value,
    decode_bytes_auto,
    find_base_href,
    relax_iframe_attributes,
    strip_base_tags,
    strip_security_meta,
)
from .page_actions import apply_removals
from .proxy_utils import ProxyConfig
from .url_rewriter import RewriteContext, rewrite_css_urls, rewrite_srcset, rewrite_url

logger = logging.getLogger(__name__)

HTML_CONTENT_TYPE = "text/html; charset=utf-8"
CSS_CONTENT_TYPE = "text/css; charset=utf-8"

_OPEN_RE = re.compile(r"<!--|<(?P<raw>script|style)\b(?:[^>\"']|\"[^\"]*\"|'[^']*')*>", re.I)
_CLOSE_RES = {
    "comment": re.compile(r"-->"),
    "script": re.compile(r"</script\s*>", re.I),
    "style": re.compile(r"</style\s*>", re.I),
}
_HEAD_RE = re.compile(r"<head\b(?:[^>\"']|\"[^\"]*\"|'[^']*')*>", re.I)
_HTML_RE = re.compile(r"<html\b(?:[^>\"']|\"[^\"]*\"|'[^']*')*>", re.I)
_DOCTYPE_RE = re.compile(r"^\s*<!doctype\b[^>]*>", re.I)
_LINK_TAG_RE = re.compile(r"<link\b(?:[^>\"']|\"[^\"]*\"|'[^']*')*>", re.I)

URL_ATTRIBUTES = {"href", "src", "action", "formaction", "poster", "background"}
SRCSET_ATTRIBUTES = {"srcset", "imagesrcset"}
FRAME_TAGS = {"iframe", "frame"}
INTEGRITY_TAGS = {"link", "script"}

_DROP = object()


@dataclass
class _Segment:
    kind: str  # "markup" | "comment" | "script" | "style"
    text: str
    body: str = ""
    close: str = ""

    def render(self) -> str:
        return self.text + self.body + self.close


@dataclass
class RewrittenBody:
    """Rewritten (or passed-through) body plus what the HTTP layer needs to serve it."""

    body: bytes
    content_type: str
    kind: str
    render_hint: bool = False


def split_segments(markup: str) -> List[_Segment]:
    segments: List[_Segment] = []
    pos = search_from = 0
    # Kinds whose closing delimiter does not occur again; their openers stay markup.
    unclosed = set()
    while True:
        opener = _OPEN_RE.search(markup, search_from)
        if opener is None:
            break
        kind = (opener.group("raw") or "comment").lower()
        closer = None if kind in unclosed else _CLOSE_RES[kind].search(markup, opener.end())
        if closer is None:
            unclosed.add(kind)
            search_from = opener.start() + 1
            continue
        if opener.start() > pos:
            segments.append(_Segment("markup", markup[pos:opener.start()]))
        if kind == "comment":
            segments.append(_Segment("comment", markup[opener.start():closer.end()]))
        else:
            segments.append(
                _Segment(kind, opener.group(0), markup[opener.end():closer.start()], closer.group(0))
            )
        pos = search_from = closer.end()
    if pos < len(markup):
        segments.append(_Segment("markup", markup[pos:]))
    return segments


def join_segments(segments: Iterable[_Segment]) -> str:
    return "".join(segment.render() for segment in segments)


AttributeRule = Callable[[str, str, str], object]


def map_attributes(tag_markup: str, rule: AttributeRule) -> str:
    """Apply ``rule(tag, name, value)`` to every valued attribute of one start tag.

    ``rule`` returns the new value, ``None`` to keep the attribute as written,
    or ``_DROP`` to delete it.
    """

    match = START_TAG_RE.fullmatch(tag_markup)
    if match is None:
        return tag_markup
    tag = match.group("tag").lower()

    def _one(attr: "re.Match[str]") -> str:
        raw = attr.group("val")
        if raw is None:
            return attr.group(0)
        name = attr.group("name").lower()
        try:
            new_value = rule(tag, name, attr_value(raw))
        except Exception as exc:
            logger.debug("Attribute %s on <%s> left untouched: %s", name, tag, exc)
            return attr.group(0)
        if new_value is None:
            return attr.group(0)
        if new_value is _DROP:
            return ""
        escaped = html_lib.escape(str(new_value), quote=True)
        return f'{attr.group("pre")}{attr.group("name")}="{escaped}"'

    return f"<{match.group('tag')}{ATTR_RE.sub(_one, match.group('attrs'))}>"


def render_diagnostic_page(
    title: str,
    message: str,
    *,
    mode: AcquisitionMode = AcquisitionMode.DIRECT_FETCH,
    status: Optional[int] = None,
    target_url: Optional[str] = None,
) -> str:
    """Self-contained error document that reports itself to the embedding frame."""

    payload = {"type": MessageType.error_for(mode).value, "message": message}
    if status is not None:
        payload["status"] = status
    if target_url:
        payload["url"] = target_url
    safe_title = html_lib.escape(title)
    safe_message = html_lib.escape(message)
    detail = f"<p class=\"target\">{html_lib.escape(target_url)}</p>" if target_url else ""
    return (
        "<!DOCTYPE html>\n"
        "<html><head><meta charset=\"utf-8\">"
        f"<title>{safe_title}</title>"
        "<style>"
        "body{margin:0;font-family:system-ui,sans-serif;background:#f8fafc;color:#0f172a;"
        "display:flex;align-items:center;justify-content:center;min-height:100vh}"
        ".box{max-width:560px;padding:24px 28px;border:1px solid #fecaca;border-radius:8px;background:#fff}"
        "h1{font-size:18px;margin:0 0 8px;color:#b91c1c}"
        "p{margin:4px 0;font-size:14px;line-height:1.5}"
        ".target{color:#64748b;word-break:break-all}"
        "</style></head><body>"
        f"<div class=\"box\"><h1>{safe_title}</h1><p>{safe_message}</p>{detail}</div>"
        "<script>(function(){try{window.parent.postMessage("
        f"{script_json(payload)},'*');}}catch(e){{}}}})();</script>"
        "</body></html>\n"
    )


class ContentRewriter:
    """Shared rewriter for both acquisition modes; the mode travels in the RewriteContext."""

    def __init__(self, config: Optional[ProxyConfig] = None) -> None:
        self.config = config or ProxyConfig()
        self.blocked_patterns = tuple(p.lower() for p in self.config.blocked_patterns)

    # Dispatch -----------------------------------------------------------------

    def rewrite(self, result: FetchResult, ctx: RewriteContext, *, removals: Sequence[str] = ()) -> RewrittenBody:
        if result.is_html:
            text = decode_bytes_auto(result.body, {"content-type": result.content_type})
            hint = ctx.mode is AcquisitionMode.DIRECT_FETCH and needs_headless_render(text)
            html = self.rewrite_html(text, ctx, removals=removals, render_hint=hint)
            return RewrittenBody(html.encode("utf-8"), HTML_CONTENT_TYPE, "html", render_hint=hint)
        if result.is_css:
            text = decode_bytes_auto(result.body, {"content-type": result.content_type})
            return RewrittenBody(self.rewrite_css(text, ctx).encode("utf-8"), CSS_CONTENT_TYPE, "css")
        return RewrittenBody(result.body, result.content_type or "application/octet-stream", "passthrough")

    def rewrite_css(self, css: str, ctx: RewriteContext) -> str:
        return rewrite_css_urls(css, ctx)

    # HTML pipeline --------------------------------------------------------------

    def rewrite_html(
        self,
        html: str,
        ctx: RewriteContext,
        *,
        removals: Sequence[str] = (),
        render_hint: bool = False,
    ) -> str:
        if removals:
            html, removed = apply_removals(html, removals)
            logger.debug("Replayed %d removal(s) on %s", removed, ctx.base_url)

        segments = split_segments(html)
        doc_ctx = self._document_context(segments, ctx)
        steps = (
            ("strip-framing-declarations", self._strip_framing),
            ("replace-base", self._strip_base),
            ("drop-blocked-snippets", self._drop_blocked),
            ("rewrite-url-attributes", self._rewrite_url_attributes),
            ("rewrite-srcset", self._rewrite_srcsets),
            ("rewrite-inline-css", self._rewrite_inline_css),
        )
        for name, step in steps:
            try:
                segments = step(segments, doc_ctx)
            except Exception as exc:
                logger.debug("Rewrite step %s skipped for %s: %s", name, ctx.base_url, exc)
        try:
            segments = self._inject_bridge(segments, doc_ctx, ctx, render_hint)
        except Exception as exc:
            logger.warning("Bridge injection failed for %s: %s", ctx.base_url, exc)
        return join_segments(segments)

    def _document_context(self, segments: List[_Segment], ctx: RewriteContext) -> RewriteContext:
        markup = "".join(s.text for s in segments if s.kind == "markup")
        declared = find_base_href(markup)
        if not declared:
            return ctx
        resolved = urljoin(ctx.base_url, declared)
        if urlsplit(resolved).scheme not in proxy_config.ALLOWED_SCHEMES:
            return ctx
        return ctx.with_base(resolved)

    def _each_start_tag(self, segments: List[_Segment], rule: AttributeRule) -> List[_Segment]:
        def _tag(match: "re.Match[str]") -> str:
            try:
                return map_attributes(match.group(0), rule)
            except Exception as exc:
                logger.debug("Tag left untouched: %s", exc)
                return match.group(0)

        for segment in segments:
            if segment.kind == "markup":
                segment.text = START_TAG_RE.sub(_tag, segment.text)
            elif segment.kind in ("script", "style"):
                segment.text = map_attributes(segment.text, rule)
        return segments

    # 1) framing declarations
    def _strip_framing(self, segments: List[_Segment], ctx: RewriteContext) -> List[_Segment]:
        def _relax(match: "re.Match[str]") -> str:
            return relax_iframe_attributes(match.group(0))

        for segment in segments:
            if segment.kind == "markup":
                segment.text = START_TAG_RE.sub(_relax, strip_security_meta(segment.text))
        return segments

    # 2) base href (the replacement is written by _inject_bridge)
    def _strip_base(self, segments: List[_Segment], ctx: RewriteContext) -> List[_Segment]:
        for segment in segments:
            if segment.kind == "markup":
                segment.text = strip_base_tags(segment.text)
        return segments

    # 3) blocked third-party snippets
    def is_blocked(self, text: str) -> bool:
        lowered = (text or "").lower()
        return any(pattern in lowered for pattern in self.blocked_patterns)

    def _drop_blocked(self, segments: List[_Segment], ctx: RewriteContext) -> List[_Segment]:
        def _link(match: "re.Match[str]") -> str:
            return "" if self.is_blocked(match.group(0)) else match.group(0)

        kept: List[_Segment] = []
        for segment in segments:
            if segment.kind == "script" and self.is_blocked(segment.text + segment.body):
                logger.debug("Dropped blocked script snippet on %s", ctx.base_url)
                continue
            if segment.kind == "markup":
                segment.text = _LINK_TAG_RE.sub(_link, segment.text)
            kept.append(segment)
        return kept

    # 4) url attributes
    def _rewrite_url_attributes(self, segments: List[_Segment], ctx: RewriteContext) -> List[_Segment]:
        def _rule(tag: str, name: str, value: str) -> object:
            if name == "integrity" and tag in INTEGRITY_TAGS:
                return _DROP
            if name == "data" and tag == "object":
                return rewrite_url(value, ctx)
            if name not in URL_ATTRIBUTES:
                return None
            proxied = rewrite_url(value, ctx, frame=(tag in FRAME_TAGS and name == "src"))
            return None if proxied == value else proxied

        return self._each_start_tag(segments, _rule)

    # 5) srcset
    def _rewrite_srcsets(self, segments: List[_Segment], ctx: RewriteContext) -> List[_Segment]:
        def _rule(tag: str, name: str, value: str) -> object:
            if name not in SRCSET_ATTRIBUTES or not value.strip():
                return None
            return rewrite_srcset(value, ctx)

        return self._each_start_tag(segments, _rule)

    # 6) inline styles
    def _rewrite_inline_css(self, segments: List[_Segment], ctx: RewriteContext) -> List[_Segment]:
        def _rule(tag: str, name: str, value: str) -> object:
            if name != "style" or "url(" not in value.lower():
                return None
            return rewrite_css_urls(value, ctx)

        segments = self._each_start_tag(segments, _rule)
        for segment in segments:
            if segment.kind == "style" and segment.body:
                try:
                    segment.body = rewrite_css_urls(segment.body, ctx)
                except Exception as exc:
                    logger.debug("<style> block left untouched: %s", exc)
        return segments

    # 7) bridge
    def _inject_bridge(
        self,
        segments: List[_Segment],
        doc_ctx: RewriteContext,
        ctx: RewriteContext,
        render_hint: bool,
    ) -> List[_Segment]:
        config = build_bridge_config(
            mode=ctx.mode,
            target_url=ctx.base_url,
            depth=ctx.depth,
            max_hops=self.config.max_relay_hops,
            render_hint=render_hint,
        )
        payload = render_bridge_script(config) + f'<base href="{html_lib.escape(doc_ctx.base_url, quote=True)}">'

        markup = [s for s in segments if s.kind == "markup"]
        for segment in markup:
            match = _HEAD_RE.search(segment.text)
            if match:
                segment.text = segment.text[: match.end()] + payload + segment.text[match.end():]
                return segments
        wrapped = f"<head>{payload}</head>"
        for segment in markup:
            match = _HTML_RE.search(segment.text)
            if match:
                segment.text = segment.text[: match.end()] + wrapped + segment.text[match.end():]
                return segments
        if segments and segments[0].kind == "markup":
            first = segments[0]
            doctype = _DOCTYPE_RE.match(first.text)
            cut = doctype.end() if doctype else 0
            first.text = first.text[:cut] + wrapped + first.text[cut:]
            return segments
        return [_Segment("markup", wrapped)] + segments


__all__ = [
    "HTML_CONTENT_TYPE",
    "CSS_CONTENT_TYPE",
    "RewrittenBody",
    "ContentRewriter",
    "split_segments",
    "join_segments",
    "map_attributes",
    "render_diagnostic_page",
]
