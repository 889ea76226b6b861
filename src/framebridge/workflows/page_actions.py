"""Server-side element removal, replaying operator ``remove-element`` actions.

Same rules as the in-page bridge: exact selector first, then progressively
shorter suffixes of its ``>`` path; every hit is widened to its enclosing
overlay/consent container when it sits inside one.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional, Tuple

from bs4 import BeautifulSoup
from bs4.element import Tag

from . import proxy_config
from .bridge import split_qualified_selector
from .html_normalize import parse_document
from .selector_engine import Root, count_matches

logger = logging.getLogger(__name__)

_OVERLAY_NAME_RE = re.compile("|".join(re.escape(p) for p in proxy_config.OVERLAY_NAME_PATTERNS), re.I)
_POSITION_RE = re.compile(r"position\s*:\s*(fixed|absolute)", re.I)
_Z_INDEX_RE = re.compile(r"z-index\s*:\s*(\d+)", re.I)


def selector_suffixes(selector: str) -> List[str]:
    """``a > b > c`` -> ``[a > b > c, b > c, c]``."""

    parts = [part.strip() for part in selector.split(" > ") if part.strip()]
    return [" > ".join(parts[i:]) for i in range(len(parts))]


def looks_like_overlay(el: Tag) -> bool:
    """Consent/modal container by name, or a high-stacking fixed/absolute box.

    Only inline styles are visible here; the bridge additionally checks
    computed geometry (at least 30% of the viewport width and 20% of its height).
    """

    classes = el.get("class") or []
    names = " ".join([str(el.get("id") or "")] + list(classes if isinstance(classes, list) else [classes]))
    if names.strip() and _OVERLAY_NAME_RE.search(names):
        return True
    style = el.get("style") or ""
    if _POSITION_RE.search(style):
        match = _Z_INDEX_RE.search(style)
        if match and int(match.group(1)) > proxy_config.OVERLAY_MIN_Z_INDEX:
            return True
    return False


def overlay_container(el: Tag) -> Optional[Tag]:
    """Outermost overlay-looking ancestor-or-self of ``el`` below ``<body>``."""

    found: Optional[Tag] = None
    current: Optional[Tag] = el
    while isinstance(current, Tag) and not isinstance(current, BeautifulSoup):
        if current.name in ("body", "html"):
            break
        if looks_like_overlay(current):
            found = current
        current = current.parent
    return found


def resolve_targets(root: Root, selector: str) -> List[Tag]:
    """Matches for ``selector``, else for the longest suffix matching exactly one element."""

    exact, *suffixes = selector_suffixes(selector) or [selector]
    if count_matches(exact, root):
        return root.select(exact)
    for candidate in suffixes:
        if count_matches(candidate, root) == 1:
            logger.debug("Removal selector %r matched via suffix %r", selector, candidate)
            return root.select(candidate)
    return []


def remove_matching(root: Root, selector: str) -> int:
    """Remove elements for ``selector``; returns how many subtrees were dropped."""

    removed = 0
    for el in resolve_targets(root, selector):
        if el.decomposed:
            continue
        target = overlay_container(el) or el
        if target.decomposed:
            continue
        target.decompose()
        removed += 1
    return removed


def apply_removals(html: str, selectors: Iterable[str]) -> Tuple[str, int]:
    """Apply top-document removals to ``html``; frame-qualified selectors are left to the bridge."""

    local_selectors = []
    for selector in selectors:
        frame_path, local = split_qualified_selector(selector)
        if frame_path:
            logger.debug("Skipping frame-qualified removal %r", selector)
            continue
        if local:
            local_selectors.append(local)
    if not local_selectors:
        return html, 0
    soup = parse_document(html)
    total = sum(remove_matching(soup, selector) for selector in local_selectors)
    return (str(soup) if total else html), total


__all__ = [
    "selector_suffixes",
    "looks_like_overlay",
    "overlay_container",
    "resolve_targets",
    "remove_matching",
    "apply_removals",
]
