"""Lazily expanded DOM snapshot for the inspector panel.

Node ids are the FramePath-qualified child-index path of the element, so they
are unique within a document tree. Element handles live in a per-snapshot
arena that is rebuilt on ``init``; nothing is shared between documents.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from bs4 import BeautifulSoup
from bs4.element import Tag

from . import proxy_config
from .bridge import (
    FramePath,
    InspectorNode,
    SelectedElement,
    SelectorSuggestion,
    qualify_selector,
)
from .selector_engine import classify_list, element_selector, select_element, suggest_selectors

logger = logging.getLogger(__name__)

SKIPPED_TAGS = {"script", "style", "noscript", "template", "meta", "link", "base"}
_FORM_CONTROLS = {"input", "select", "textarea", "button"}
_HEADINGS = {"h1", "h2", "h3", "h4", "h5", "h6"}


def element_children(el: Tag) -> List[Tag]:
    return [child for child in el.find_all(True, recursive=False) if child.name not in SKIPPED_TAGS]


def local_path(el: Tag) -> str:
    """``html > body:nth-child(2) > ...`` path of ``el`` within its document."""

    parts: List[str] = []
    current: Optional[Tag] = el
    while isinstance(current, Tag) and not isinstance(current, BeautifulSoup):
        parent = current.parent
        if isinstance(parent, Tag) and not isinstance(parent, BeautifulSoup):
            index = parent.find_all(True, recursive=False).index(current) + 1
            parts.insert(0, f"{current.name}:nth-child({index})")
        else:
            parts.insert(0, current.name)
        current = parent
    return " > ".join(parts)


def node_badges(el: Tag, soup: BeautifulSoup) -> List[str]:
    badges: List[str] = []
    if el.name == "a" and el.get("href"):
        badges.append("link")
    if el.name == "li" or classify_list(el, soup).is_list:
        badges.append("list-item")
    if el.name in ("iframe", "frame"):
        badges.append("iframe")
    if el.name in ("img", "picture", "svg"):
        badges.append("image")
    if el.name in _FORM_CONTROLS or el.name == "form":
        badges.append("form")
    if el.name in _HEADINGS:
        badges.append("heading")
    return badges


class InspectorSnapshot:
    """Inspector tree for one parsed document at a given FramePath."""

    def __init__(
        self,
        soup: BeautifulSoup,
        frame_path: Sequence[str] = (),
        *,
        max_children: int = proxy_config.INSPECTOR_MAX_CHILDREN,
        text_limit: int = proxy_config.INSPECTOR_TEXT_LIMIT,
    ) -> None:
        self.soup = soup
        self.frame_path: FramePath = tuple(frame_path)
        self.max_children = max_children
        self.text_limit = text_limit
        self._arena: Dict[str, Tag] = {}

    def __len__(self) -> int:
        return len(self._arena)

    def node_id(self, el: Tag) -> str:
        return qualify_selector(self.frame_path, local_path(el))

    def element(self, node_id: str) -> Optional[Tag]:
        return self._arena.get(node_id)

    def describe(self, el: Tag, parent_id: Optional[str]) -> InspectorNode:
        node_id = self.node_id(el)
        self._arena[node_id] = el
        classes = el.get("class") or []
        return InspectorNode(
            node_id=node_id,
            parent_id=parent_id,
            tag=el.name,
            selector=element_selector(el, self.soup),
            text=el.get_text(" ", strip=True)[: self.text_limit],
            has_children=el.name not in ("iframe", "frame") and bool(element_children(el)),
            badges=tuple(node_badges(el, self.soup)),
            frame_path=self.frame_path,
            element_id=str(el.get("id") or ""),
            class_name=" ".join(classes) if isinstance(classes, list) else str(classes),
        )

    def _level(self, el: Tag, parent_id: str) -> List[InspectorNode]:
        children = element_children(el)
        if len(children) > self.max_children:
            logger.debug("Inspector capped %d children of %s", len(children), parent_id)
        return [self.describe(child, parent_id) for child in children[: self.max_children]]

    def init(self, depth: int = proxy_config.INSPECTOR_INIT_DEPTH) -> List[InspectorNode]:
        """Root plus ``depth`` levels; resets the arena."""

        self._arena.clear()
        root = self.soup.find("html") or self.soup.find(True)
        if root is None:
            return []
        root_node = self.describe(root, None)
        nodes = [root_node]
        frontier = [(root, root_node.node_id)]
        for _ in range(depth):
            next_frontier = []
            for el, node_id in frontier:
                for child in self._level(el, node_id):
                    nodes.append(child)
                    next_frontier.append((self._arena[child.node_id], child.node_id))
            frontier = next_frontier
        return nodes

    def children(self, node_id: str) -> List[InspectorNode]:
        el = self.element(node_id)
        if el is None:
            return []
        return self._level(el, node_id)

    def select(self, node_id: str) -> Optional[SelectedElement]:
        el = self.element(node_id)
        if el is None:
            return None
        return select_element(el, self.soup, self.frame_path)

    def suggestions(self, node_id: str) -> List[SelectorSuggestion]:
        el = self.element(node_id)
        if el is None:
            return []
        return suggest_selectors(el, self.soup)


__all__ = [
    "SKIPPED_TAGS",
    "element_children",
    "local_path",
    "node_badges",
    "InspectorSnapshot",
]
