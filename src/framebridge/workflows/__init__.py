"""High-level exports for the framebridge workflows."""

from .bridge import BridgeController, MessageType, SelectedElement, build_frame_url
from .content_rewriter import ContentRewriter, RewrittenBody, render_diagnostic_page
from .fetch_gateway import (
    AcquisitionMode,
    DirectFetcher,
    FetchResult,
    ProxyError,
    ProxyRequest,
)
from .headless_render import HeadlessRenderer
from .inspector import InspectorSnapshot
from .proxy_utils import ProxyConfig
from .selector_engine import select_element, suggest_selectors
from .url_rewriter import RewriteContext, rewrite_url

__all__ = [
    "AcquisitionMode",
    "BridgeController",
    "ContentRewriter",
    "DirectFetcher",
    "FetchResult",
    "HeadlessRenderer",
    "InspectorSnapshot",
    "MessageType",
    "ProxyConfig",
    "ProxyError",
    "ProxyRequest",
    "RewriteContext",
    "RewrittenBody",
    "SelectedElement",
    "build_frame_url",
    "render_diagnostic_page",
    "rewrite_url",
    "select_element",
    "suggest_selectors",
]
