"""Proxy defaults (endpoints, headers, user agents, blocked snippets, patterns).

Centralizes static defaults so the gateway and rewriters have no embedded
magic strings. These are baseline constants used to construct a ProxyConfig;
callers can inject their own config to override the tunable ones.
"""

from __future__ import annotations

from pathlib import Path

# Endpoints
PROXY_PATH = "/proxy"
RENDER_PATH = "/render"
HEALTH_PATH = "/health"

# Paths (package-relative)
_ROOT = Path(__file__).resolve().parent
ASSETS_DIR = _ROOT / "assets"
BRIDGE_SCRIPT_PATH = ASSETS_DIR / "bridge.js"

# Timeouts (seconds) and render settle delay (milliseconds)
FETCH_TIMEOUT = 30.0
RENDER_TIMEOUT = 60.0
NAVIGATION_TIMEOUT = 30.0
SETTLE_DELAY_MS = 1000

MAX_RENDER_DEPTH = 3
MAX_RELAY_HOPS = 16
STATIC_CACHE_SECONDS = 300

# Headers
HDR_CONTENT_TYPE = "Content-Type"
HDR_CACHE_CONTROL = "Cache-Control"
HDR_ALLOW_ORIGIN = "Access-Control-Allow-Origin"
HDR_ALLOW_METHODS = "Access-Control-Allow-Methods"
HDR_ALLOW_HEADERS = "Access-Control-Allow-Headers"
HDR_RENDER_HINT = "X-Framebridge-Render-Hint"
HDR_RENDERED_BY = "X-Rendered-By"

ACCEPT_LANGUAGE = "en-US,en;q=0.9"
ACCEPT_DOCUMENT = (
    "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,"
    "image/webp,image/apng,*/*;q=0.8"
)

# Desktop agents; one is chosen per target host so a domain always sees the
# same agent for the lifetime of the process.
USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Safari/605.1.15",
)

SEC_CH_UA = '"Chromium";v="124", "Google Chrome";v="124", "Not-A.Brand";v="99"'

ALLOWED_SCHEMES = {"http", "https"}

# Values with these prefixes never leave the page untouched-by-proxy.
SKIP_PREFIXES = ("javascript:", "mailto:", "tel:", "#", "data:", "blob:", "about:")

# Third-party snippets that break inside a sandboxed frame and add nothing for
# the operator (consent managers, chat and analytics widgets).
BLOCKED_SNIPPET_PATTERNS = (
    "cookiebot.com",
    "consent.cookiebot",
    "onetrust.com",
    "cookielaw.org",
    "cookie-script.com",
    "cookieyes.com",
    "consentmanager.net",
    "usercentrics.eu",
    "didomi.io",
    "trustarc.com",
    "quantcast.mgr.consensu.org",
    "termly.io",
    "iubenda.com",
    "intercom.io",
    "intercomcdn.com",
    "widget.intercom",
    "js.driftt.com",
    "hotjar.com",
    "embed.tawk.to",
    "livechatinc.com",
    "client.crisp.chat",
    "static.zdassets.com",
    "smartsuppchat.com",
    "js.hs-scripts.com",
    "connect.facebook.net",
    "clarity.ms",
)

# Overlay / consent container detection used by element removal.
OVERLAY_NAME_PATTERNS = (
    "cookie",
    "consent",
    "gdpr",
    "privacy",
    "modal",
    "popup",
    "overlay",
    "dialog",
    "cookiebot",
    "onetrust",
    "trustarc",
    "quantcast",
    "cc-window",
    "cc-banner",
    "cookie-notice",
)
OVERLAY_MIN_Z_INDEX = 9999

# Target path extensions that are never documents.
ASSET_EXTENSIONS = {
    ".css", ".js", ".mjs", ".map", ".json",
    ".png", ".jpg", ".jpeg", ".gif", ".webp", ".avif", ".svg", ".ico", ".bmp",
    ".woff", ".woff2", ".ttf", ".otf", ".eot",
    ".mp4", ".webm", ".mp3", ".ogg", ".wav",
    ".pdf", ".zip",
}

# Selector engine
STRICT_MAX_DEPTH = 5
STABLE_ATTRIBUTES = (
    "data-testid",
    "data-test-id",
    "data-test",
    "data-qa",
    "data-qa-id",
    "aria-label",
    "name",
    "role",
)
LIST_CONTAINER_TAGS = {"ul", "ol", "dl"}
# A click on a <label> selects the control it labels.
LABEL_CONTROL_TAGS = ("input", "select", "textarea", "button")
HIGHLIGHT_MAX_MATCHES = 200

# Inspector
INSPECTOR_INIT_DEPTH = 2
INSPECTOR_MAX_CHILDREN = 120
INSPECTOR_TEXT_LIMIT = 60
SELECTED_TEXT_LIMIT = 100
