"""HTML normalization helpers for proxy-served documents.

Decoding, tolerant parsing, and the markup-level cleanups that must happen
before a third-party document can live inside an embedding frame.
"""

from __future__ import annotations

import html as html_lib
import re
from typing import Mapping, Optional

from bs4 import BeautifulSoup
from charset_normalizer import from_bytes

__all__ = [
    "decode_bytes_auto",
    "parse_document",
    "charset_from_content_type",
    "strip_security_meta",
    "find_base_href",
    "strip_base_tags",
    "relax_iframe_attributes",
    "attr_value",
    "ATTR_RE",
    "START_TAG_RE",
]

START_TAG_RE = re.compile(
    r"<(?P<tag>[a-zA-Z][\w:.\-]*)(?P<attrs>(?:[^>\"']|\"[^\"]*\"|'[^']*')*)>",
    re.S,
)
# ``val`` is None for bare attributes such as ``<iframe sandbox>``.
ATTR_RE = re.compile(
    r"(?P<pre>\s+)(?P<name>[^\s\"'>/=]+)(?:(?P<eq>\s*=\s*)(?P<val>\"[^\"]*\"|'[^']*'|[^\s\"'>]+))?",
    re.S,
)
_RELAXED_IFRAME_ATTRS = {"sandbox", "csp"}
_SECURITY_META_RE = re.compile(
    r"<meta\b(?=(?:[^>\"']|\"[^\"]*\"|'[^']*')*?http-equiv\s*=\s*[\"']?\s*"
    r"(?:content-security-policy(?:-report-only)?|x-frame-options)\b)"
    r"(?:[^>\"']|\"[^\"]*\"|'[^']*')*>",
    re.I | re.S,
)
_BASE_TAG_RE = re.compile(r"<base\b(?:[^>\"']|\"[^\"]*\"|'[^']*')*>", re.I | re.S)


def charset_from_content_type(content_type: str) -> Optional[str]:
    match = re.search(r"charset=([^\s;]+)", content_type or "", re.I)
    if not match:
        return None
    return match.group(1).strip(' "\'').lower() or None


def decode_bytes_auto(body: bytes, headers: Optional[Mapping[str, str]] = None) -> str:
    """Decode HTTP bytes using charset header hints with charset-normalizer fallback."""

    enc = None
    if headers:
        ct = headers.get("content-type") or headers.get("Content-Type") or ""
        enc = charset_from_content_type(ct)
    if enc:
        try:
            return body.decode(enc, errors="replace")
        except LookupError:
            pass
    if not body:
        return ""
    result = from_bytes(body).best()
    if result is None:
        return body.decode("utf-8", errors="replace")
    return str(result)


def parse_document(html: str) -> BeautifulSoup:
    """Parse markup with the most tolerant parser available."""

    for parser in ("lxml", "html.parser"):
        try:
            return BeautifulSoup(html or "", parser)
        except Exception:
            continue
    return BeautifulSoup("", "html.parser")


def attr_value(raw: str) -> str:
    """Unquote and entity-decode an attribute value as written in markup."""

    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in "\"'":
        raw = raw[1:-1]
    return html_lib.unescape(raw)


def strip_security_meta(markup: str) -> str:
    """Remove CSP and frame-options declarations embedded as <meta http-equiv>."""

    return _SECURITY_META_RE.sub("", markup)


def find_base_href(markup: str) -> Optional[str]:
    for match in _BASE_TAG_RE.finditer(markup):
        for attr in ATTR_RE.finditer(match.group(0)):
            if attr.group("name").lower() == "href" and attr.group("val") is not None:
                value = attr_value(attr.group("val")).strip()
                if value:
                    return value
    return None


def strip_base_tags(markup: str) -> str:
    return _BASE_TAG_RE.sub("", markup)


def relax_iframe_attributes(tag_markup: str) -> str:
    """Drop ``sandbox``/``csp`` attributes from a single iframe start tag."""

    match = START_TAG_RE.fullmatch(tag_markup)
    if match is None or match.group("tag").lower() not in {"iframe", "frame"}:
        return tag_markup

    def _drop(attr: "re.Match[str]") -> str:
        return "" if attr.group("name").lower() in _RELAXED_IFRAME_ATTRS else attr.group(0)

    attrs = ATTR_RE.sub(_drop, match.group("attrs"))
    return f"<{match.group('tag')}{attrs}>"
