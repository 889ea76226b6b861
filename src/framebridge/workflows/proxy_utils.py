"""Shared helper functions used by the proxy workflow."""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from . import proxy_config


def env_int(name: str, default: int = 0) -> int:
    try:
        raw = os.getenv(name, "")
        return int(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def env_float(name: str, default: float = 0.0) -> float:
    try:
        raw = os.getenv(name, "")
        return float(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def env_bool(name: str, default: str = "0") -> bool:
    raw = os.getenv(name, default)
    return str(raw).strip().lower() not in {"0", "false", "no", "off", ""}


def env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    return raw.strip() if raw and raw.strip() else default


@dataclass
class ProxyConfig:
    """Configuration parameters for the proxy, the renderer and the bridge."""

    host: str = "127.0.0.1"
    port: int = 8080
    proxy_path: str = proxy_config.PROXY_PATH
    render_path: str = proxy_config.RENDER_PATH
    fetch_timeout: float = proxy_config.FETCH_TIMEOUT
    render_timeout: float = proxy_config.RENDER_TIMEOUT
    navigation_timeout: float = proxy_config.NAVIGATION_TIMEOUT
    settle_delay_ms: int = proxy_config.SETTLE_DELAY_MS
    max_render_depth: int = proxy_config.MAX_RENDER_DEPTH
    max_relay_hops: int = proxy_config.MAX_RELAY_HOPS
    static_cache_seconds: int = proxy_config.STATIC_CACHE_SECONDS
    accept_language: str = proxy_config.ACCEPT_LANGUAGE
    headless: bool = True
    chromium_args: Tuple[str, ...] = (
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
    )
    blocked_patterns: Tuple[str, ...] = field(default=proxy_config.BLOCKED_SNIPPET_PATTERNS)

    @classmethod
    def from_env(cls, **overrides: Any) -> "ProxyConfig":
        """Build a config from ``FRAMEBRIDGE_*`` variables; keyword overrides win."""

        base = cls()
        values: Dict[str, Any] = {
            "host": env_str("FRAMEBRIDGE_HOST", base.host),
            "port": env_int("FRAMEBRIDGE_PORT", base.port),
            "fetch_timeout": env_float("FRAMEBRIDGE_FETCH_TIMEOUT", base.fetch_timeout),
            "render_timeout": env_float("FRAMEBRIDGE_RENDER_TIMEOUT", base.render_timeout),
            "navigation_timeout": env_float("FRAMEBRIDGE_NAVIGATION_TIMEOUT", base.navigation_timeout),
            "settle_delay_ms": env_int("FRAMEBRIDGE_SETTLE_DELAY_MS", base.settle_delay_ms),
            "max_render_depth": max(0, env_int("FRAMEBRIDGE_MAX_RENDER_DEPTH", base.max_render_depth)),
            "max_relay_hops": max(1, env_int("FRAMEBRIDGE_MAX_RELAY_HOPS", base.max_relay_hops)),
            "static_cache_seconds": max(0, env_int("FRAMEBRIDGE_STATIC_CACHE_SECONDS", base.static_cache_seconds)),
            "accept_language": env_str("FRAMEBRIDGE_ACCEPT_LANGUAGE", base.accept_language),
            "headless": not env_bool("FRAMEBRIDGE_HEADED", "0"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def idna_normalize(host: str) -> str:
    """Return a lowercase, IDNA-normalized host name."""

    h = (host or "").strip().rstrip(".").lower()
    if not h:
        return ""
    try:
        h = h.encode("idna").decode("ascii")
    except UnicodeError:
        pass
    return h


def stable_index(key: str, size: int) -> int:
    """Map ``key`` onto ``range(size)`` independently of PYTHONHASHSEED."""

    if size <= 0:
        return 0
    digest = hashlib.sha256((key or "").encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") % size


def is_asset_path(url: str) -> bool:
    """Return True when the URL path carries a known non-document extension."""

    try:
        path = urlparse(url).path
    except ValueError:
        return False
    suffix = PurePosixPath(path).suffix.lower()
    return suffix in proxy_config.ASSET_EXTENSIONS


def clamp_depth(raw: Optional[str], max_depth: int) -> int:
    """Parse a render depth marker, clamping invalid and out-of-range values."""

    try:
        depth = int(float(raw)) if raw not in (None, "") else 0
    except (TypeError, ValueError, OverflowError):
        return 0
    if depth < 0:
        return 0
    return min(depth, max_depth)


def collect_environment_warnings() -> List[Dict[str, str]]:
    warnings: List[Dict[str, str]] = []
    try:
        from . import headless_render
        playwright_ok = getattr(headless_render, "async_playwright", None) is not None
    except Exception:
        playwright_ok = False
    if not playwright_ok:
        warnings.append({
            "code": "playwright_missing",
            "message": "Playwright is not importable; /render serves a diagnostic page.",
            "remedy": "pip install playwright && playwright install chromium",
        })
    if not proxy_config.BRIDGE_SCRIPT_PATH.exists():
        warnings.append({
            "code": "bridge_script_missing",
            "message": f"Bridge script not found at {proxy_config.BRIDGE_SCRIPT_PATH}",
            "remedy": "Reinstall the package so workflows/assets/bridge.js is present.",
        })
    port_raw = os.getenv("FRAMEBRIDGE_PORT")
    if port_raw and not port_raw.strip().isdigit():
        warnings.append({
            "code": "port_invalid",
            "message": f"FRAMEBRIDGE_PORT={port_raw!r} is not a number; default port is used.",
            "remedy": "Set FRAMEBRIDGE_PORT to an integer.",
        })
    return warnings


def sanity_check() -> None:
    assert idna_normalize("ExAmple.COM.") == "example.com"
    assert stable_index("example.com", 5) == stable_index("example.com", 5)
    assert is_asset_path("https://example.com/a/site.css")
    assert not is_asset_path("https://example.com/a/page")
    assert clamp_depth("-1", 3) == 0 and clamp_depth("10", 3) == 3 and clamp_depth("1.9", 3) == 1


sanity_check()

__all__ = [
    "ProxyConfig",
    "env_int",
    "env_float",
    "env_bool",
    "env_str",
    "idna_normalize",
    "stable_index",
    "is_asset_path",
    "clamp_depth",
    "collect_environment_warnings",
    "sanity_check",
]
