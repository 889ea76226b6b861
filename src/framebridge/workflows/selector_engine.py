"""Selector derivation, list classification and suggestion scoring.

Pure functions over a parsed document (BeautifulSoup + soupsieve). The
in-page bridge script implements the same rules against the live DOM; both
must agree, so keep the two in step when changing either.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from bs4 import BeautifulSoup
from bs4.element import Tag
from soupsieve import SelectorSyntaxError

from . import proxy_config
from .bridge import IDENTIFIER_RE, SelectedElement, SelectorSuggestion

logger = logging.getLogger(__name__)

Root = Union[BeautifulSoup, Tag]

_CSS_IDENT_RE = re.compile(r"^-?[_a-zA-Z][_a-zA-Z0-9-]*$")
_BUILD_TOOL_RE = re.compile(
    r"^(?:css|sc|jsx|emotion|styled|svelte|astro|tw|chakra|mui|makeStyles)-"
    r"|__[a-zA-Z0-9_-]{5,}$"
    r"|^_[a-zA-Z0-9]{5,}$",
)
_HEX_RUN_RE = re.compile(r"[0-9a-f]{6,}", re.I)
_MIXED_RE = re.compile(r"[a-zA-Z][0-9][a-zA-Z]|[0-9][a-zA-Z][0-9]")
_POSITIONAL = ":nth-of-type("

SCORE_UNIQUE = 0.95
SCORE_MULTIPLE = 0.6
SCORE_MULTIPLE_POSITIONAL = 0.3
SCORE_NONE = 0.1
SCORE_STRICT_MATCH = 0.55
SCORE_STRICT_NONE = 0.05


@dataclass
class ListInfo:
    is_list: bool
    list_selector: Optional[str] = None
    count: int = 1
    parent_selector: Optional[str] = None


def is_well_formed_id(value: Optional[str]) -> bool:
    return bool(value) and bool(IDENTIFIER_RE.match(value or ""))


def is_hash_like(token: str) -> bool:
    """Heuristic for generated tokens (content hashes, build ids)."""

    digits = sum(ch.isdigit() for ch in token)
    if digits >= 3:
        return True
    if digits and _HEX_RUN_RE.search(token):
        return True
    return len(token) >= 5 and bool(_MIXED_RE.search(token))


def usable_classes(el: Tag) -> List[str]:
    """Class tokens that are valid CSS identifiers (document order)."""

    classes = el.get("class") or []
    if isinstance(classes, str):
        classes = classes.split()
    return [c for c in classes if c and _CSS_IDENT_RE.match(c)]


def stable_classes(el: Tag) -> List[str]:
    return [c for c in usable_classes(el) if not is_hash_like(c) and not _BUILD_TOOL_RE.search(c)]


def _parent_tag(el: Tag) -> Optional[Tag]:
    parent = el.parent
    if isinstance(parent, Tag) and not isinstance(parent, BeautifulSoup):
        return parent
    return None


def _nth_of_type(el: Tag) -> int:
    return 1 + len(el.find_previous_siblings(el.name))


def count_matches(selector: str, root: Root) -> int:
    """Live match count; invalid selectors count as zero."""

    if not selector:
        return 0
    try:
        return len(root.select(selector))
    except (SelectorSyntaxError, ValueError, NotImplementedError) as exc:
        logger.debug("Selector %r not evaluable: %s", selector, exc)
        return 0


def _css_attr_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", " ")


def strict_selector(el: Tag, max_depth: int = proxy_config.STRICT_MAX_DEPTH) -> str:
    """Structural selector from tag, first class and position, bottom-up."""

    parts: List[str] = []
    current: Optional[Tag] = el
    depth = 0
    while current is not None and depth < max_depth:
        part = current.name
        element_id = current.get("id")
        if is_well_formed_id(element_id):
            parts.insert(0, f"{part}#{element_id}")
            break
        classes = usable_classes(current)
        if classes:
            part += f".{classes[0]}"
        nth = _nth_of_type(current)
        if nth > 1:
            part += f":nth-of-type({nth})"
        parts.insert(0, part)
        current = _parent_tag(current)
        depth += 1
    return " > ".join(parts)


def stable_selector(el: Tag, root: Root) -> str:
    """Selector built from attributes likely to survive markup changes."""

    element_id = el.get("id")
    if is_well_formed_id(element_id):
        candidate = f"#{element_id}"
        if count_matches(candidate, root) == 1:
            return candidate
    for attr in proxy_config.STABLE_ATTRIBUTES:
        value = el.get(attr)
        if not isinstance(value, str) or not value.strip():
            continue
        candidate = f'{el.name}[{attr}="{_css_attr_value(value)}"]'
        if count_matches(candidate, root) == 1:
            return candidate
    classes = stable_classes(el)[:2]
    if classes:
        candidate = el.name + "".join(f".{c}" for c in classes)
        if count_matches(candidate, root) == 1:
            return candidate
    return el.name


def element_selector(el: Tag, root: Root) -> str:
    """Stable selector when it is unique, else the strict one."""

    stable = stable_selector(el, root)
    if count_matches(stable, root) == 1:
        return stable
    return strict_selector(el)


def classify_list(el: Tag, root: Root) -> ListInfo:
    parent = _parent_tag(el)
    if parent is None:
        return ListInfo(is_list=False)
    count = len(parent.find_all(el.name, recursive=False))
    if count < 2 and parent.name not in proxy_config.LIST_CONTAINER_TAGS:
        return ListInfo(is_list=False, count=count)
    container = element_selector(parent, root)
    return ListInfo(
        is_list=True,
        list_selector=f"{container} > {el.name}",
        count=count,
        parent_selector=container,
    )


def labelled_control(el: Tag, root: Root) -> Tag:
    """The form control a ``<label>`` stands for, else ``el`` itself."""

    if el.name != "label":
        return el
    target_id = (el.get("for") or "").strip()
    if target_id:
        control = root.find(attrs={"id": target_id})
        if isinstance(control, Tag) and control.name in proxy_config.LABEL_CONTROL_TAGS:
            return control
        return el
    inner = el.find(list(proxy_config.LABEL_CONTROL_TAGS))
    return inner if isinstance(inner, Tag) else el


def select_element(el: Tag, root: Root, frame_path: Sequence[str] = ()) -> SelectedElement:
    """Selection payload for ``el``; list-like elements report the list selector."""

    el = labelled_control(el, root)
    info = classify_list(el, root)
    local = info.list_selector if info.is_list and info.list_selector else element_selector(el, root)
    return SelectedElement(
        local_selector=local,
        tag_name=el.name,
        frame_path=tuple(frame_path),
        text_content=el.get_text(" ", strip=True),
        is_list=info.is_list,
        list_item_count=info.count if info.is_list else None,
        parent_selector=info.parent_selector,
    )


def score_candidate(selector: str, matches: int) -> float:
    if matches == 1:
        return SCORE_UNIQUE
    if matches > 1:
        return SCORE_MULTIPLE_POSITIONAL if _POSITIONAL in selector else SCORE_MULTIPLE
    return SCORE_NONE


def score_strict(matches: int) -> float:
    return SCORE_STRICT_MATCH if matches >= 1 else SCORE_STRICT_NONE


def suggest_selectors(el: Tag, root: Root) -> List[SelectorSuggestion]:
    """Stable, scoped and strict candidates with live match counts."""

    stable = stable_selector(el, root)
    parent = _parent_tag(el)
    scoped = f"{stable_selector(parent, root)} > {el.name}" if parent is not None else stable
    strict = strict_selector(el)

    suggestions = []
    for kind, selector in (("stable", stable), ("scoped", scoped)):
        matches = count_matches(selector, root)
        suggestions.append(SelectorSuggestion(kind, selector, matches, score_candidate(selector, matches)))
    strict_matches = count_matches(strict, root)
    suggestions.append(SelectorSuggestion("strict", strict, strict_matches, score_strict(strict_matches)))
    return suggestions


def find_element(root: Root, selector: str) -> Optional[Tag]:
    try:
        return root.select_one(selector)
    except (SelectorSyntaxError, ValueError, NotImplementedError):
        return None


__all__ = [
    "ListInfo",
    "is_well_formed_id",
    "is_hash_like",
    "usable_classes",
    "stable_classes",
    "count_matches",
    "strict_selector",
    "stable_selector",
    "element_selector",
    "classify_list",
    "labelled_control",
    "select_element",
    "score_candidate",
    "score_strict",
    "suggest_selectors",
    "find_element",
]
