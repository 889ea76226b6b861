from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from . import proxy_config
from .proxy_utils import ProxyConfig, collect_environment_warnings


def _check_playwright_available() -> bool:
    try:
        from . import headless_render
        return getattr(headless_render, "async_playwright", None) is not None
    except Exception:
        return False


def _check_bridge_script() -> Optional[int]:
    try:
        return proxy_config.BRIDGE_SCRIPT_PATH.stat().st_size
    except OSError:
        return None


def _env_value(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value if value else None


def build_doctor_report(config: Optional[ProxyConfig] = None) -> Dict[str, Any]:
    cfg = config or ProxyConfig.from_env()
    report: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "ok": True,
        "checks": [],
        "environment_warnings": collect_environment_warnings(),
    }

    def add_check(
        name: str,
        status: bool,
        *,
        detail: Optional[str] = None,
        remedy: Optional[str] = None,
        level: str = "warn",
        value: Optional[str] = None,
    ) -> None:
        entry = {
            "name": name,
            "status": "ok" if status else "missing",
            "level": level,
            "detail": detail,
        }
        if remedy:
            entry["remedy"] = remedy
        if value is not None:
            entry["value"] = value
        report["checks"].append(entry)
        if not status and level == "warn":
            report["ok"] = False

    playwright_ok = _check_playwright_available()
    add_check(
        "playwright",
        playwright_ok,
        detail="Headless fallback (/render) enabled" if playwright_ok else "Headless fallback serves a diagnostic page",
        remedy="Install Playwright and run `playwright install --with-deps chromium`.",
        level="warn",
    )

    script_size = _check_bridge_script()
    add_check(
        "bridge.js",
        script_size is not None,
        detail=f"{proxy_config.BRIDGE_SCRIPT_PATH} ({script_size} bytes)" if script_size is not None else str(proxy_config.BRIDGE_SCRIPT_PATH),
        remedy="Reinstall framebridge so the bundled bridge script is present.",
        level="warn",
    )

    port_ok = 0 < cfg.port < 65536
    add_check(
        "FRAMEBRIDGE_PORT",
        port_ok,
        detail=f"Listening on {cfg.host}:{cfg.port}",
        remedy="Set FRAMEBRIDGE_PORT to a value between 1 and 65535.",
        level="warn",
        value=_env_value("FRAMEBRIDGE_PORT"),
    )

    timeouts_ok = cfg.fetch_timeout > 0 and cfg.render_timeout > 0 and cfg.navigation_timeout > 0
    add_check(
        "timeouts",
        timeouts_ok,
        detail=f"fetch={cfg.fetch_timeout:g}s render={cfg.render_timeout:g}s navigation={cfg.navigation_timeout:g}s",
        remedy="Set FRAMEBRIDGE_FETCH_TIMEOUT / FRAMEBRIDGE_RENDER_TIMEOUT / FRAMEBRIDGE_NAVIGATION_TIMEOUT to positive seconds.",
        level="warn",
    )
    if cfg.navigation_timeout > cfg.render_timeout:
        add_check(
            "FRAMEBRIDGE_NAVIGATION_TIMEOUT",
            False,
            detail="Navigation timeout exceeds the overall render timeout; the render bound wins",
            level="info",
            value=_env_value("FRAMEBRIDGE_NAVIGATION_TIMEOUT"),
        )

    add_check(
        "FRAMEBRIDGE_MAX_RENDER_DEPTH",
        True,
        detail=f"Nested frames render headlessly up to depth {cfg.max_render_depth}",
        level="info",
        value=_env_value("FRAMEBRIDGE_MAX_RENDER_DEPTH"),
    )

    add_check(
        "FRAMEBRIDGE_HEADED",
        cfg.headless,
        detail="Chromium runs headless" if cfg.headless else "Chromium runs headed (needs a display)",
        level="info",
    )

    return report


def format_doctor_report(report: Dict[str, Any]) -> str:
    lines: List[str] = []
    lines.append("Framebridge doctor")
    lines.append(f"Generated: {report.get('generated_at')}")
    lines.append("")
    for check in report.get("checks", []):
        name = check.get("name", "check")
        status = check.get("status", "unknown")
        level = check.get("level", "info")
        detail = check.get("detail")
        value = check.get("value")
        label = f"{name}: {status}"
        if value:
            label = f"{label} ({value})"
        lines.append(f"- [{level}] {label}")
        if detail:
            lines.append(f"  detail: {detail}")
        remedy = check.get("remedy")
        if remedy:
            lines.append(f"  remedy: {remedy}")
    warnings = report.get("environment_warnings") or []
    if warnings:
        lines.append("")
        lines.append("Environment warnings:")
        for warning in warnings:
            code = warning.get("code", "warning")
            message = warning.get("message", "")
            remedy = warning.get("remedy", "")
            lines.append(f"- {code}: {message}")
            if remedy:
                lines.append(f"  remedy: {remedy}")
    return "\n".join(lines).rstrip() + "\n"


__all__ = ["build_doctor_report", "format_doctor_report"]
