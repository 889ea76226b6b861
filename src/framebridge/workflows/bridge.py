"""Bridge protocol: message catalog, frame addressing and the controller.

Every proxy-served document carries ``assets/bridge.js``. Frames talk to each
other only through the messages catalogued here, one hop at a time:

* downward commands travel controller -> top frame -> child frames, each frame
  forwarding to the single child whose FramePath prefix matches;
* upward events (``element-select`` and friends) are relayed unmodified by every
  ancestor, with an explicit hop counter bounded by ``max_relay_hops``.

``BridgeController`` is the Python rendition of the embedding surface's state
machine. It owns the authoritative selection and inspector caches and turns
operator intents into outbound command dicts.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import quote

from bs4 import BeautifulSoup
from bs4.element import Tag

from ..core import keys as K
from . import proxy_config
from .fetch_gateway import AcquisitionMode

logger = logging.getLogger(__name__)

FramePath = Tuple[str, ...]
FRAME_SEPARATOR = " >>> "
IDENTIFIER_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9_-]*$")
INTERACTION_MODES = ("select", "remove")


class MessageType(str, Enum):
    SET_FRAME_PATH = "set-frame-path"
    ENABLE_SELECTION = "enable-selection"
    DISABLE_SELECTION = "disable-selection"
    ELEMENT_SELECT = "element-select"
    REMOVE_ELEMENT = "remove-element"
    HIGHLIGHT_SELECTOR = "highlight-selector"
    CLEAR_HIGHLIGHT_SELECTOR = "clear-highlight-selector"
    INSPECTOR_INIT = "inspector:init"
    INSPECTOR_REQUEST_CHILDREN = "inspector:request-children"
    INSPECTOR_CHILDREN = "inspector:children"
    INSPECTOR_HOVER = "inspector:hover"
    INSPECTOR_SELECT = "inspector:select"
    SELECTOR_SUGGESTIONS = "selector:suggestions"
    PAGE_TYPE_DETECTED = "page-type-detected"
    BRIDGE_READY = "bridge-ready"
    PROXY_LOADED = "proxy-loaded"
    PLAYWRIGHT_LOADED = "playwright-loaded"
    PROXY_ERROR = "proxy-error"
    PLAYWRIGHT_ERROR = "playwright-error"

    @classmethod
    def loaded_for(cls, mode: AcquisitionMode) -> "MessageType":
        return cls(f"{mode.bridge_name}-loaded")

    @classmethod
    def error_for(cls, mode: AcquisitionMode) -> "MessageType":
        return cls(f"{mode.bridge_name}-error")


# inspector:hover, inspector:select and selector:suggestions travel both ways
# (request downward, response upward).
UPWARD_TYPES = frozenset({
    MessageType.ELEMENT_SELECT,
    MessageType.INSPECTOR_CHILDREN,
    MessageType.INSPECTOR_HOVER,
    MessageType.INSPECTOR_SELECT,
    MessageType.SELECTOR_SUGGESTIONS,
    MessageType.PAGE_TYPE_DETECTED,
    MessageType.BRIDGE_READY,
    MessageType.PROXY_LOADED,
    MessageType.PLAYWRIGHT_LOADED,
    MessageType.PROXY_ERROR,
    MessageType.PLAYWRIGHT_ERROR,
})
DOWNWARD_TYPES = frozenset({
    MessageType.SET_FRAME_PATH,
    MessageType.ENABLE_SELECTION,
    MessageType.DISABLE_SELECTION,
    MessageType.REMOVE_ELEMENT,
    MessageType.HIGHLIGHT_SELECTOR,
    MessageType.CLEAR_HIGHLIGHT_SELECTOR,
    MessageType.INSPECTOR_INIT,
    MessageType.INSPECTOR_REQUEST_CHILDREN,
    MessageType.INSPECTOR_HOVER,
    MessageType.INSPECTOR_SELECT,
    MessageType.SELECTOR_SUGGESTIONS,
})
ONE_SHOT_TYPES = frozenset({
    MessageType.BRIDGE_READY,
    MessageType.PAGE_TYPE_DETECTED,
    MessageType.PROXY_LOADED,
    MessageType.PLAYWRIGHT_LOADED,
    MessageType.PROXY_ERROR,
    MessageType.PLAYWRIGHT_ERROR,
})


# --------------------------------------------------------------------------- #
# Frame addressing
# --------------------------------------------------------------------------- #


def child_frame_path(parent: Sequence[str], local: str) -> FramePath:
    return tuple(parent) + (local,)


def qualify_selector(frame_path: Sequence[str], local: str) -> str:
    """Join a FramePath and a frame-local selector with ``' >>> '``."""

    if not frame_path:
        return local
    return FRAME_SEPARATOR.join([*frame_path, local])


def split_qualified_selector(selector: str) -> Tuple[FramePath, str]:
    parts = [part.strip() for part in (selector or "").split(FRAME_SEPARATOR.strip())]
    parts = [part for part in parts if part]
    if not parts:
        return (), ""
    return tuple(parts[:-1]), parts[-1]


def is_frame_path(value: Any) -> bool:
    return isinstance(value, (list, tuple)) and all(isinstance(item, str) and item for item in value)


def _css_string(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def iframe_local_selector(iframe: Tag, all_iframes: Sequence[Tag]) -> str:
    """Per-level label of ``iframe`` within its document.

    ``iframe#id`` when the id is unique among the document's iframes, else
    ``iframe[name="..."]`` under the same condition, else the document-order
    ``iframe:nth-of-type(n)`` label, which is unique by construction.
    """

    frame_id = (iframe.get("id") or "").strip()
    if frame_id and sum(1 for other in all_iframes if (other.get("id") or "").strip() == frame_id) == 1:
        if IDENTIFIER_RE.match(frame_id):
            return f"iframe#{frame_id}"
        return f'iframe[id="{_css_string(frame_id)}"]'
    name = (iframe.get("name") or "").strip()
    if name and sum(1 for other in all_iframes if (other.get("name") or "").strip() == name) == 1:
        return f'iframe[name="{_css_string(name)}"]'
    for index, other in enumerate(all_iframes):
        if other is iframe:
            return f"iframe:nth-of-type({index + 1})"
    return "iframe"


def assign_frame_paths(soup: BeautifulSoup, parent: Sequence[str] = ()) -> Dict[str, FramePath]:
    """FramePath for every iframe of a parsed document, keyed by local label."""

    iframes = soup.find_all("iframe")
    paths: Dict[str, FramePath] = {}
    for iframe in iframes:
        local = iframe_local_selector(iframe, iframes)
        paths[local] = child_frame_path(parent, local)
    return paths


# --------------------------------------------------------------------------- #
# Wire types
# --------------------------------------------------------------------------- #


def _truncate(text: Optional[str], limit: int) -> str:
    return (text or "").strip()[:limit].strip()


@dataclass
class SelectedElement:
    """One element picked by the operator, addressed across frames."""

    local_selector: str
    tag_name: str
    frame_path: FramePath = ()
    text_content: str = ""
    is_list: bool = False
    list_item_count: Optional[int] = None
    parent_selector: Optional[str] = None
    selector: str = ""

    def __post_init__(self) -> None:
        self.frame_path = tuple(self.frame_path)
        self.text_content = _truncate(self.text_content, proxy_config.SELECTED_TEXT_LIMIT)
        self.selector = qualify_selector(self.frame_path, self.local_selector)

    @property
    def in_iframe(self) -> bool:
        return bool(self.frame_path)

    def to_wire(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            K.K_SELECTOR: self.selector,
            K.K_LOCAL_SELECTOR: self.local_selector,
            K.K_FRAME_PATH: list(self.frame_path),
            K.K_IN_IFRAME: self.in_iframe,
            K.K_TAG_NAME: self.tag_name,
            K.K_TEXT_CONTENT: self.text_content,
            K.K_IS_LIST: self.is_list,
        }
        if self.list_item_count is not None:
            payload[K.K_LIST_ITEM_COUNT] = self.list_item_count
        if self.parent_selector:
            payload[K.K_PARENT_SELECTOR] = self.parent_selector
        return payload

    @classmethod
    def from_wire(cls, payload: Any) -> Optional["SelectedElement"]:
        """Parse an ``elementInfo`` payload; ``None`` when it is malformed."""

        if not isinstance(payload, Mapping):
            return None
        selector = payload.get(K.K_SELECTOR)
        tag_name = payload.get(K.K_TAG_NAME)
        if not isinstance(selector, str) or not selector or not isinstance(tag_name, str):
            return None
        frame_path = payload.get(K.K_FRAME_PATH) or []
        if not is_frame_path(frame_path):
            return None
        local = payload.get(K.K_LOCAL_SELECTOR)
        if not isinstance(local, str) or not local:
            _, local = split_qualified_selector(selector)
        count = payload.get(K.K_LIST_ITEM_COUNT)
        parent = payload.get(K.K_PARENT_SELECTOR)
        return cls(
            local_selector=local,
            tag_name=tag_name.lower(),
            frame_path=tuple(frame_path),
            text_content=str(payload.get(K.K_TEXT_CONTENT) or ""),
            is_list=bool(payload.get(K.K_IS_LIST)),
            list_item_count=count if isinstance(count, int) and not isinstance(count, bool) else None,
            parent_selector=parent if isinstance(parent, str) and parent else None,
        )

    def to_extraction_rule(self, field_name: str, attribute: str = "text") -> Dict[str, Any]:
        """Extraction rule consumed by the downstream scraping configuration."""

        return {
            "selector": self.local_selector,
            "field": field_name,
            "attribute": attribute,
            "multiple": self.is_list,
            K.K_FRAME_PATH: list(self.frame_path),
        }


@dataclass
class InspectorNode:
    node_id: str
    parent_id: Optional[str]
    tag: str
    selector: str
    text: str = ""
    has_children: bool = False
    badges: Tuple[str, ...] = ()
    frame_path: FramePath = ()
    element_id: str = ""
    class_name: str = ""

    def to_wire(self) -> Dict[str, Any]:
        return {
            K.K_NODE_ID: self.node_id,
            K.K_PARENT_ID: self.parent_id,
            K.K_TAG: self.tag,
            K.K_TEXT: self.text,
            K.K_SELECTOR: self.selector,
            K.K_HAS_CHILDREN: self.has_children,
            K.K_BADGES: list(self.badges),
            K.K_FRAME_PATH: list(self.frame_path),
            K.K_ATTRS: {K.K_ID: self.element_id, K.K_CLASS_NAME: self.class_name},
        }

    @classmethod
    def from_wire(cls, payload: Any) -> Optional["InspectorNode"]:
        if not isinstance(payload, Mapping):
            return None
        node_id = payload.get(K.K_NODE_ID)
        tag = payload.get(K.K_TAG)
        if not isinstance(node_id, str) or not node_id or not isinstance(tag, str):
            return None
        frame_path = payload.get(K.K_FRAME_PATH) or []
        if not is_frame_path(frame_path):
            return None
        attrs = payload.get(K.K_ATTRS) if isinstance(payload.get(K.K_ATTRS), Mapping) else {}
        badges = payload.get(K.K_BADGES) or []
        parent_id = payload.get(K.K_PARENT_ID)
        return cls(
            node_id=node_id,
            parent_id=parent_id if isinstance(parent_id, str) else None,
            tag=tag,
            selector=str(payload.get(K.K_SELECTOR) or ""),
            text=str(payload.get(K.K_TEXT) or ""),
            has_children=bool(payload.get(K.K_HAS_CHILDREN)),
            badges=tuple(str(b) for b in badges if isinstance(b, str)),
            frame_path=tuple(frame_path),
            element_id=str(attrs.get(K.K_ID) or ""),
            class_name=str(attrs.get(K.K_CLASS_NAME) or ""),
        )


@dataclass
class SelectorSuggestion:
    kind: str
    selector: str
    matches: int
    score: float

    def to_wire(self) -> Dict[str, Any]:
        return {K.K_KIND: self.kind, K.K_SELECTOR: self.selector, K.K_MATCHES: self.matches, K.K_SCORE: self.score}

    @classmethod
    def from_wire(cls, payload: Any) -> Optional["SelectorSuggestion"]:
        if not isinstance(payload, Mapping):
            return None
        kind = payload.get(K.K_KIND)
        selector = payload.get(K.K_SELECTOR)
        if kind not in ("stable", "scoped", "strict") or not isinstance(selector, str):
            return None
        try:
            score = min(1.0, max(0.0, float(payload.get(K.K_SCORE) or 0.0)))
            matches = int(payload.get(K.K_MATCHES) or 0)
        except (TypeError, ValueError):
            return None
        return cls(kind=kind, selector=selector, matches=matches, score=score)


_REACT_SCRIPT_RE = re.compile(r"react(?:-dom)?(?:\.production|\.development)?(?:\.min)?\.js", re.I)


@dataclass
class PageType:
    is_react: bool = False
    is_spa: bool = False
    is_ssr: bool = True
    framework: str = "unknown"
    requires_headless: bool = False

    def to_wire(self) -> Dict[str, Any]:
        return {
            K.K_IS_REACT: self.is_react,
            K.K_IS_SPA: self.is_spa,
            K.K_IS_SSR: self.is_ssr,
            K.K_FRAMEWORK: self.framework,
            K.K_REQUIRES_PLAYWRIGHT: self.requires_headless,
        }

    @classmethod
    def from_wire(cls, payload: Any) -> Optional["PageType"]:
        if not isinstance(payload, Mapping):
            return None
        return cls(
            is_react=bool(payload.get(K.K_IS_REACT)),
            is_spa=bool(payload.get(K.K_IS_SPA)),
            is_ssr=bool(payload.get(K.K_IS_SSR)),
            framework=str(payload.get(K.K_FRAMEWORK) or "unknown"),
            requires_headless=bool(payload.get(K.K_REQUIRES_PLAYWRIGHT)),
        )

    @classmethod
    def from_markup(cls, soup: BeautifulSoup) -> "PageType":
        """Static framework sniffing over served markup (no script execution)."""

        scripts = soup.find_all("script")
        has_next = soup.find(id="__NEXT_DATA__") is not None
        has_react = bool(
            soup.select_one("[data-reactroot], [data-react-helmet]")
            or any(_REACT_SCRIPT_RE.search(s.get("src") or "") for s in scripts)
        )
        has_vue = any(
            any(attr.startswith("data-v-") for attr in tag.attrs) for tag in soup.find_all(True, limit=2000)
        )
        has_angular = soup.select_one("[ng-app], [ng-version]") is not None
        has_dynamic_root = soup.select_one('[id^="__next"], [id^="root"]') is not None
        spa = has_react or has_vue or has_angular or has_next or has_dynamic_root
        if has_next:
            framework = "nextjs"
        elif has_react:
            framework = "react"
        elif has_vue:
            framework = "vue"
        elif has_angular:
            framework = "angular"
        else:
            framework = "unknown"
        return cls(
            is_react=has_react or has_next,
            is_spa=spa,
            is_ssr=not spa,
            framework=framework,
            requires_headless=spa,
        )


@dataclass(frozen=True)
class BridgeMessage:
    type: MessageType
    payload: Dict[str, Any] = field(default_factory=dict)
    hops: int = 0

    @property
    def is_upward(self) -> bool:
        return self.type in UPWARD_TYPES

    @property
    def frame_path(self) -> FramePath:
        value = self.payload.get(K.K_FRAME_PATH) or ()
        return tuple(value)

    def to_wire(self) -> Dict[str, Any]:
        wire: Dict[str, Any] = {K.K_TYPE: self.type.value}
        wire.update(self.payload)
        if self.hops:
            wire[K.K_HOPS] = self.hops
        return wire


def parse_message(raw: Any, max_hops: int = proxy_config.MAX_RELAY_HOPS) -> Optional[BridgeMessage]:
    """Validate a cross-frame payload; ``None`` for anything outside the catalog."""

    if not isinstance(raw, Mapping):
        return None
    try:
        msg_type = MessageType(raw.get(K.K_TYPE))
    except ValueError:
        return None
    hops = raw.get(K.K_HOPS, 0)
    if isinstance(hops, bool) or not isinstance(hops, int) or hops < 0 or hops > max_hops:
        return None
    if K.K_FRAME_PATH in raw and raw[K.K_FRAME_PATH] is not None and not is_frame_path(raw[K.K_FRAME_PATH]):
        return None
    payload = {k: v for k, v in raw.items() if k not in (K.K_TYPE, K.K_HOPS)}
    return BridgeMessage(type=msg_type, payload=payload, hops=hops)


def relay(message: BridgeMessage, max_hops: int = proxy_config.MAX_RELAY_HOPS) -> Optional[BridgeMessage]:
    """Forward ``message`` one level upward, or drop it.

    Lifecycle one-shots stop at the first parent; anything else is relayed
    until the hop bound is hit.
    """

    if message.type in ONE_SHOT_TYPES:
        return None
    if message.hops + 1 > max_hops:
        logger.debug("Dropping %s after %d relay hops", message.type.value, message.hops)
        return None
    return replace(message, hops=message.hops + 1)


# --------------------------------------------------------------------------- #
# Script injection
# --------------------------------------------------------------------------- #


@lru_cache(maxsize=1)
def load_bridge_source() -> str:
    return proxy_config.BRIDGE_SCRIPT_PATH.read_text(encoding="utf-8")


def script_json(value: Any) -> str:
    """JSON that is safe to inline inside a ``<script>`` element."""

    text = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return (
        text.replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
        .replace("\u2028", "\\u2028")
        .replace("\u2029", "\\u2029")
    )


def build_bridge_config(
    *,
    mode: AcquisitionMode,
    target_url: str,
    depth: int = 0,
    max_hops: int = proxy_config.MAX_RELAY_HOPS,
    render_hint: bool = False,
    page_type: Optional[PageType] = None,
) -> Dict[str, Any]:
    config: Dict[str, Any] = {
        K.K_MODE: mode.bridge_name,
        "targetUrl": target_url,
        K.K_DEPTH: depth,
        "maxHops": max_hops,
        "renderHint": render_hint,
        "separator": FRAME_SEPARATOR,
        "strictMaxDepth": proxy_config.STRICT_MAX_DEPTH,
        "stableAttributes": list(proxy_config.STABLE_ATTRIBUTES),
        "listContainerTags": sorted(proxy_config.LIST_CONTAINER_TAGS),
        "labelControlTags": list(proxy_config.LABEL_CONTROL_TAGS),
        "highlightMax": proxy_config.HIGHLIGHT_MAX_MATCHES,
        "overlayPatterns": list(proxy_config.OVERLAY_NAME_PATTERNS),
        "overlayMinZIndex": proxy_config.OVERLAY_MIN_Z_INDEX,
        "inspector": {
            "initDepth": proxy_config.INSPECTOR_INIT_DEPTH,
            "maxChildren": proxy_config.INSPECTOR_MAX_CHILDREN,
            "textLimit": proxy_config.INSPECTOR_TEXT_LIMIT,
        },
        "selectedTextLimit": proxy_config.SELECTED_TEXT_LIMIT,
    }
    if page_type is not None:
        config[K.K_PAGE_TYPE] = page_type.to_wire()
    return config


def render_bridge_script(config: Mapping[str, Any]) -> str:
    """Config + bridge ``<script>`` tags, ready to splice right after ``<head>``."""

    return (
        f'<script id="framebridge-config">window.__FRAMEBRIDGE__={script_json(dict(config))};</script>'
        f'<script id="framebridge-bridge">{load_bridge_source()}</script>'
    )


# --------------------------------------------------------------------------- #
# Controller
# --------------------------------------------------------------------------- #


def build_frame_url(
    target_url: str,
    *,
    mode: AcquisitionMode = AcquisitionMode.DIRECT_FETCH,
    proxy_prefix: str = proxy_config.PROXY_PATH,
    render_prefix: str = proxy_config.RENDER_PATH,
    removals: Iterable[str] = (),
    depth: int = 0,
) -> str:
    """URL the embedding surface loads into its preview frame."""

    prefix = render_prefix if mode is AcquisitionMode.HEADLESS_RENDER else proxy_prefix
    parts = [f"{K.K_URL}={quote(target_url, safe='')}"]
    if mode is AcquisitionMode.HEADLESS_RENDER and depth:
        parts.append(f"{K.K_DEPTH}={int(depth)}")
    parts.extend(f"{K.K_REMOVE}={quote(sel, safe='')}" for sel in removals if sel)
    return f"{prefix}?{'&'.join(parts)}"


class BridgeController:
    """Embedding-surface state machine for one preview frame.

    ``handle`` consumes raw inbound messages and returns the command dicts to
    post into the top frame. Caches belong to the current document generation;
    ``reload`` starts a new one and forgets everything learned from the old.
    """

    def __init__(self, *, max_hops: int = proxy_config.MAX_RELAY_HOPS) -> None:
        self.max_hops = max_hops
        self.generation = 0
        self.mode: Optional[str] = None
        self.removed_selectors: List[str] = []
        self._reset_document_state()

    def _reset_document_state(self) -> None:
        self.bridge_ready = False
        self.loaded = False
        self.load_error: Optional[str] = None
        self.page_type: Optional[PageType] = None
        self.selected: Optional[SelectedElement] = None
        self.nodes: Dict[str, InspectorNode] = {}
        self.expanded: set = set()
        self.selected_node_id: Optional[str] = None
        self.suggestions: List[SelectorSuggestion] = []

    def reload(self) -> int:
        self.generation += 1
        self._reset_document_state()
        logger.debug("Preview reloaded (generation %d)", self.generation)
        return self.generation

    # Commands -----------------------------------------------------------------

    def mode_command(self) -> Dict[str, Any]:
        if self.mode is None:
            return {K.K_TYPE: MessageType.DISABLE_SELECTION.value}
        return {K.K_TYPE: MessageType.ENABLE_SELECTION.value, K.K_MODE: self.mode}

    def set_mode(self, mode: Optional[str]) -> Dict[str, Any]:
        if mode is not None and mode not in INTERACTION_MODES:
            raise ValueError(f"Unknown interaction mode: {mode!r}")
        self.mode = mode
        return self.mode_command()

    def remove_command(self, element: SelectedElement) -> Dict[str, Any]:
        return {
            K.K_TYPE: MessageType.REMOVE_ELEMENT.value,
            K.K_SELECTOR: element.selector,
            K.K_LOCAL_SELECTOR: element.local_selector,
            K.K_FRAME_PATH: list(element.frame_path),
        }

    def remove_selected(self) -> Optional[Dict[str, Any]]:
        if self.selected is None or not self.bridge_ready:
            return None
        command = self.remove_command(self.selected)
        self._record_removal(self.selected)
        self.selected = None
        return command

    def highlight(self, selector: Optional[str]) -> Dict[str, Any]:
        if selector and selector.strip():
            return {K.K_TYPE: MessageType.HIGHLIGHT_SELECTOR.value, K.K_SELECTOR: selector.strip()}
        return {K.K_TYPE: MessageType.CLEAR_HIGHLIGHT_SELECTOR.value}

    def request_inspector_init(self) -> Optional[Dict[str, Any]]:
        if not self.bridge_ready:
            return None
        return {K.K_TYPE: MessageType.INSPECTOR_INIT.value}

    def request_children(self, node_id: str) -> Optional[Dict[str, Any]]:
        if not self.bridge_ready:
            return None
        self.expanded.add(node_id)
        return {K.K_TYPE: MessageType.INSPECTOR_REQUEST_CHILDREN.value, K.K_NODE_ID: node_id}

    def request_suggestions(self, node_id: str) -> Optional[Dict[str, Any]]:
        if not self.bridge_ready:
            return None
        return {K.K_TYPE: MessageType.SELECTOR_SUGGESTIONS.value, K.K_NODE_ID: node_id}

    def hover(self, selector: Optional[str]) -> Optional[Dict[str, Any]]:
        if not self.bridge_ready:
            return None
        return {K.K_TYPE: MessageType.INSPECTOR_HOVER.value, K.K_SELECTOR: selector}

    def inspector_select(self, node_id: str) -> Optional[Dict[str, Any]]:
        if not self.bridge_ready:
            return None
        self.selected_node_id = node_id
        return {K.K_TYPE: MessageType.INSPECTOR_SELECT.value, K.K_NODE_ID: node_id}

    def frame_url(self, target_url: str, mode: AcquisitionMode = AcquisitionMode.DIRECT_FETCH, **kwargs: Any) -> str:
        return build_frame_url(target_url, mode=mode, removals=self.removed_selectors, **kwargs)

    # Inspector cache ------------------------------------------------------------

    def children_of(self, parent_id: Optional[str]) -> List[InspectorNode]:
        return [node for node in self.nodes.values() if node.parent_id == parent_id]

    def _merge_nodes(self, raw_nodes: Any) -> None:
        if not isinstance(raw_nodes, list):
            return
        for raw in raw_nodes:
            node = InspectorNode.from_wire(raw)
            if node is not None:
                self.nodes[node.node_id] = node

    def _record_removal(self, element: SelectedElement) -> None:
        value = element.selector
        if value and value not in self.removed_selectors:
            self.removed_selectors.append(value)

    # Events -------------------------------------------------------------------

    def handle(self, raw: Any) -> List[Dict[str, Any]]:
        message = parse_message(raw, self.max_hops)
        if message is None:
            logger.debug("Ignoring message outside the bridge catalog: %r", raw)
            return []
        if not message.is_upward:
            return []
        payload = message.payload
        mtype = message.type

        if mtype is MessageType.BRIDGE_READY:
            self.bridge_ready = True
            return [self.mode_command()]

        if mtype is MessageType.ELEMENT_SELECT:
            element = SelectedElement.from_wire(payload.get(K.K_ELEMENT_INFO))
            if element is None:
                return []
            if self.mode == "remove":
                self._record_removal(element)
                self.mode = None
                return [self.remove_command(element), self.mode_command()]
            self.selected = element
            self.mode = None
            return [self.mode_command()]

        if mtype is MessageType.INSPECTOR_SELECT:
            element = SelectedElement.from_wire(payload.get(K.K_ELEMENT_INFO))
            if element is not None:
                self.selected = element
            return []

        if mtype is MessageType.PAGE_TYPE_DETECTED:
            page_type = PageType.from_wire(payload.get(K.K_PAGE_TYPE))
            if page_type is not None:
                self.page_type = page_type
            return []

        if mtype in (MessageType.PROXY_LOADED, MessageType.PLAYWRIGHT_LOADED):
            self.loaded = True
            self.load_error = None
            return []

        if mtype in (MessageType.PROXY_ERROR, MessageType.PLAYWRIGHT_ERROR):
            self.loaded = True
            detail = payload.get(K.K_MESSAGE)
            self.load_error = str(detail) if detail else f"{mtype.value.split('-')[0]} load failed"
            return []

        if mtype is MessageType.INSPECTOR_CHILDREN:
            self._merge_nodes(payload.get(K.K_NODES))
            return []

        if mtype is MessageType.SELECTOR_SUGGESTIONS:
            raw_items = payload.get(K.K_SUGGESTIONS)
            items = raw_items if isinstance(raw_items, list) else []
            self.suggestions = [s for s in (SelectorSuggestion.from_wire(i) for i in items) if s is not None]
            return []

        return []


__all__ = [
    "FramePath",
    "FRAME_SEPARATOR",
    "IDENTIFIER_RE",
    "MessageType",
    "UPWARD_TYPES",
    "DOWNWARD_TYPES",
    "ONE_SHOT_TYPES",
    "child_frame_path",
    "qualify_selector",
    "split_qualified_selector",
    "is_frame_path",
    "iframe_local_selector",
    "assign_frame_paths",
    "SelectedElement",
    "InspectorNode",
    "SelectorSuggestion",
    "PageType",
    "BridgeMessage",
    "parse_message",
    "relay",
    "load_bridge_source",
    "script_json",
    "build_bridge_config",
    "render_bridge_script",
    "build_frame_url",
    "BridgeController",
]
