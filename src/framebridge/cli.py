from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from .workflows.bridge import PageType
from .workflows.doctor import build_doctor_report, format_doctor_report
from .workflows.fetch_gateway import AcquisitionMode, DirectFetcher, ProxyError, ProxyRequest
from .workflows.html_normalize import decode_bytes_auto, parse_document
from .workflows.inspector import InspectorSnapshot
from .workflows.proxy_utils import ProxyConfig
from .workflows.selector_engine import find_element, select_element, suggest_selectors
from .workflows.url_rewriter import RewriteContext, rewrite_url

app = typer.Typer(add_help_option=False, no_args_is_help=False)


def _minimal_help() -> str:
    return """Framebridge (embeddable page proxy)

Usage:
  framebridge serve [--host <HOST>] [--port <PORT>] [--log-level <LEVEL>]
  framebridge doctor
  framebridge rewrite-url <url> --base <URL> [--frame] [--render] [--depth <N>]
  framebridge inspect <file|url|-> [--depth <N>] [--json]
  framebridge suggest <file|url|-> <selector> [--json]

Discoverability:
  --help-full     Expanded help + env vars + endpoints.
  --find <query>  Search commands, flags, env vars, endpoints.
  --doctor        Run environment diagnostics and exit.
"""


def _help_full() -> str:
    return """Framebridge CLI

Commands:
  serve        Run the proxy (/proxy, /render, /health).
  doctor       Print environment and dependency diagnostics.
  rewrite-url  Show how one reference is rewritten under a document URL.
  inspect      Print the detected page type and the inspector tree of a document.
  suggest      Print the selection payload and selector suggestions for an element.

Endpoints:
  GET /proxy?url=<target>[&remove=<selector>...]
  GET /render?url=<target>[&depth=<n>][&remove=<selector>...]
  GET /health

Important env vars:
  FRAMEBRIDGE_HOST
  FRAMEBRIDGE_PORT
  FRAMEBRIDGE_LOG_LEVEL
  FRAMEBRIDGE_FETCH_TIMEOUT
  FRAMEBRIDGE_RENDER_TIMEOUT
  FRAMEBRIDGE_NAVIGATION_TIMEOUT
  FRAMEBRIDGE_SETTLE_DELAY_MS
  FRAMEBRIDGE_MAX_RENDER_DEPTH
  FRAMEBRIDGE_MAX_RELAY_HOPS
  FRAMEBRIDGE_STATIC_CACHE_SECONDS
  FRAMEBRIDGE_HEADED

Troubleshooting:
  - Without Playwright, /render answers with a diagnostic page.
  - Run `framebridge doctor` to check the bridge script and timeouts.
"""


_FIND_INDEX = [
    ("command", "serve", "Run the proxy server."),
    ("command", "doctor", "Print environment and dependency diagnostics."),
    ("command", "rewrite-url", "Show how a reference is rewritten."),
    ("command", "inspect", "Print page type and inspector tree."),
    ("command", "suggest", "Print selector suggestions for an element."),
    ("flag", "--host", "Interface to bind (serve)."),
    ("flag", "--port", "Port to bind (serve)."),
    ("flag", "--log-level", "Root logging level (serve)."),
    ("flag", "--base", "Document URL references resolve against (rewrite-url)."),
    ("flag", "--frame", "Treat the reference as an iframe src (rewrite-url)."),
    ("flag", "--render", "Rewrite as a headless-rendered document (rewrite-url)."),
    ("flag", "--depth", "Render depth (rewrite-url) or inspector depth (inspect)."),
    ("flag", "--json", "Print JSON instead of text."),
    ("flag", "--help-full", "Expanded help, env vars, endpoints."),
    ("flag", "--find", "Search commands, flags, env vars, endpoints."),
    ("flag", "--doctor", "Run environment diagnostics and exit."),
    ("env", "FRAMEBRIDGE_HOST", "Bind address."),
    ("env", "FRAMEBRIDGE_PORT", "Bind port."),
    ("env", "FRAMEBRIDGE_LOG_LEVEL", "Root logging level."),
    ("env", "FRAMEBRIDGE_FETCH_TIMEOUT", "Direct fetch deadline in seconds."),
    ("env", "FRAMEBRIDGE_RENDER_TIMEOUT", "Headless render deadline in seconds."),
    ("env", "FRAMEBRIDGE_NAVIGATION_TIMEOUT", "Headless navigation timeout in seconds."),
    ("env", "FRAMEBRIDGE_SETTLE_DELAY_MS", "Delay after network idle before capture."),
    ("env", "FRAMEBRIDGE_MAX_RENDER_DEPTH", "Deepest nested frame routed to /render."),
    ("env", "FRAMEBRIDGE_MAX_RELAY_HOPS", "Bound on upward message relays."),
    ("env", "FRAMEBRIDGE_STATIC_CACHE_SECONDS", "Cache lifetime for static assets."),
    ("env", "FRAMEBRIDGE_HEADED", "Run Chromium with a visible window."),
    ("endpoint", "/proxy", "Direct fetch and rewrite."),
    ("endpoint", "/render", "Headless render and rewrite."),
    ("endpoint", "/health", "Liveness and headless availability."),
]


def _run_find(query: str) -> str:
    needle = (query or "").strip().lower()
    if not needle:
        return ""
    lines = []
    for category, name, desc in _FIND_INDEX:
        haystack = f"{category} {name} {desc}".lower()
        if needle in haystack:
            lines.append(f"{category} {name} - {desc}")
    return "\n".join(lines)


def _load_markup(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    if source.startswith(("http://", "https://")):
        async def _fetch() -> bytes:
            async with DirectFetcher(ProxyConfig.from_env()) as fetcher:
                result = await fetcher.fetch(ProxyRequest(url=source))
            return result.body

        return decode_bytes_auto(asyncio.run(_fetch()))
    return decode_bytes_auto(Path(source).read_bytes())


def _print_json(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False, indent=2) + "\n")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    help: bool = typer.Option(False, "--help", "-h", is_eager=True, help="Show minimal help."),
    help_full: bool = typer.Option(False, "--help-full", is_eager=True, help="Show expanded help."),
    find: Optional[str] = typer.Option(None, "--find", is_eager=True, help="Search commands, flags, env vars, endpoints."),
    doctor: bool = typer.Option(False, "--doctor", is_eager=True, help="Run environment diagnostics and exit."),
) -> None:
    if help_full:
        typer.echo(_help_full())
        raise typer.Exit(code=0)
    if find is not None:
        output = _run_find(find)
        if output:
            typer.echo(output)
        raise typer.Exit(code=0)
    if doctor:
        report = build_doctor_report()
        typer.echo(format_doctor_report(report))
        raise typer.Exit(code=0 if report.get("ok", True) else 2)
    if help or ctx.invoked_subcommand is None:
        typer.echo(_minimal_help())
        raise typer.Exit(code=0)


@app.command("doctor", add_help_option=True)
def doctor_cmd() -> None:
    """Print environment and dependency diagnostics."""
    report = build_doctor_report()
    typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.get("ok", True) else 2)


@app.command("serve", add_help_option=True)
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Interface to bind."),
    port: Optional[int] = typer.Option(None, "--port", help="Port to bind."),
    log_level: str = typer.Option(
        os.getenv("FRAMEBRIDGE_LOG_LEVEL", "INFO"), "--log-level", help="Root logging level."
    ),
) -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    from .server import run_server

    run_server(ProxyConfig.from_env(host=host, port=port))


@app.command("rewrite-url", add_help_option=True)
def rewrite_url_cmd(
    value: str = typer.Argument(..., help="Reference as it appears in the document."),
    base: str = typer.Option(..., "--base", help="URL of the document containing the reference."),
    frame: bool = typer.Option(False, "--frame", help="Treat the reference as an iframe src."),
    render: bool = typer.Option(False, "--render", help="Rewrite as a headless-rendered document."),
    depth: int = typer.Option(0, "--depth", help="Render depth of the containing document."),
) -> None:
    cfg = ProxyConfig.from_env()
    mode = AcquisitionMode.HEADLESS_RENDER if render else AcquisitionMode.DIRECT_FETCH
    ctx = RewriteContext.for_document(
        base,
        cfg.proxy_path,
        cfg.render_path,
        mode=mode,
        depth=depth,
        max_depth=cfg.max_render_depth,
    )
    typer.echo(rewrite_url(value, ctx, frame=frame))


@app.command("inspect", add_help_option=True)
def inspect_cmd(
    source: str = typer.Argument(..., help="HTML file, URL, or '-' for stdin."),
    depth: int = typer.Option(2, "--depth", help="Levels below <html> to expand."),
    json_out: bool = typer.Option(False, "--json", help="Print JSON."),
) -> None:
    """Print the detected page type and the inspector tree."""
    try:
        markup = _load_markup(source)
    except (OSError, ProxyError) as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)
    soup = parse_document(markup)
    page_type = PageType.from_markup(soup)
    nodes = InspectorSnapshot(soup).init(depth=max(0, depth))
    if json_out:
        _print_json({"pageType": page_type.to_wire(), "nodes": [n.to_wire() for n in nodes]})
        return
    typer.echo(f"framework={page_type.framework} spa={page_type.is_spa} requires_headless={page_type.requires_headless}")
    levels: Dict[Optional[str], int] = {None: -1}
    for node in nodes:
        level = levels.get(node.parent_id, -1) + 1
        levels[node.node_id] = level
        badges = f" [{', '.join(node.badges)}]" if node.badges else ""
        text = f" {node.text!r}" if node.text and not node.has_children else ""
        typer.echo(f"{'  ' * level}{node.selector}{badges}{text}")


@app.command("suggest", add_help_option=True)
def suggest_cmd(
    source: str = typer.Argument(..., help="HTML file, URL, or '-' for stdin."),
    selector: str = typer.Argument(..., help="CSS selector of the element to describe."),
    json_out: bool = typer.Option(False, "--json", help="Print JSON."),
) -> None:
    """Print the selection payload and selector suggestions for one element."""
    try:
        markup = _load_markup(source)
    except (OSError, ProxyError) as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)
    soup = parse_document(markup)
    el = find_element(soup, selector)
    if el is None:
        typer.echo(f"error: no element matches {selector!r}", err=True)
        raise typer.Exit(code=1)
    selected = select_element(el, soup)
    suggestions = suggest_selectors(el, soup)
    if json_out:
        _print_json({"elementInfo": selected.to_wire(), "suggestions": [s.to_wire() for s in suggestions]})
        return
    lines: List[str] = [f"selector: {selected.selector}"]
    if selected.is_list:
        lines.append(f"list: {selected.list_item_count} items under {selected.parent_selector}")
    for s in suggestions:
        lines.append(f"- {s.kind:<7} {s.score:.2f} ({s.matches} match{'es' if s.matches != 1 else ''}) {s.selector}")
    typer.echo("\n".join(lines))


if __name__ == "__main__":
    app()
