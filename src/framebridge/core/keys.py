"""Shared wire keys to avoid magic strings across the proxy and the bridge."""

from __future__ import annotations

# Query parameters
K_URL = "url"
K_DEPTH = "depth"
K_REMOVE = "remove"

# Bridge message envelope
K_TYPE = "type"
K_HOPS = "hops"
K_MODE = "mode"
K_MESSAGE = "message"

# Element payload (camelCase on the wire, matching the in-page script)
K_ELEMENT_INFO = "elementInfo"
K_SELECTOR = "selector"
K_LOCAL_SELECTOR = "localSelector"
K_FRAME_PATH = "framePath"
K_IN_IFRAME = "inIframe"
K_TAG_NAME = "tagName"
K_TEXT_CONTENT = "textContent"
K_IS_LIST = "isList"
K_LIST_ITEM_COUNT = "listItemCount"
K_PARENT_SELECTOR = "parentSelector"

# Inspector payloads
K_NODE_ID = "nodeId"
K_PARENT_ID = "parentId"
K_NODES = "nodes"
K_TAG = "tag"
K_TEXT = "text"
K_HAS_CHILDREN = "hasChildren"
K_BADGES = "badges"
K_ATTRS = "attrs"
K_SUGGESTIONS = "suggestions"
K_KIND = "kind"
K_SCORE = "score"
K_MATCHES = "matches"

# Page type payload
K_PAGE_TYPE = "pageType"
K_IS_REACT = "isReact"
K_IS_SPA = "isSPA"
K_IS_SSR = "isSSR"
K_FRAMEWORK = "framework"
K_REQUIRES_PLAYWRIGHT = "requiresPlaywright"

# Inspector node attributes
K_ID = "id"
K_CLASS_NAME = "className"

# One-shot status payloads
K_STATUS = "status"
