import asyncio

import pytest

from framebridge.workflows import headless_render
from framebridge.workflows.fetch_gateway import (
    AcquisitionMode,
    ProxyRequest,
    RenderEngineUnavailable,
    RenderNavigationFailure,
)
from framebridge.workflows.headless_render import VIEWPORT, HeadlessRenderer
from framebridge.workflows.proxy_utils import ProxyConfig


def _request(url="https://spa.example.com/app"):
    return ProxyRequest(url=url, mode=AcquisitionMode.HEADLESS_RENDER)


def test_render_returns_post_script_markup(fake_playwright):
    fake_playwright.final_url = "https://spa.example.com/app/home"
    renderer = HeadlessRenderer(ProxyConfig(settle_delay_ms=250), playwright_factory=fake_playwright)

    result = asyncio.run(renderer.fetch(_request()))

    assert renderer.available
    assert result.method == "playwright"
    assert result.status == 200
    assert result.is_html
    assert result.final_url == "https://spa.example.com/app/home"
    assert b"rendered" in result.body
    assert fake_playwright.context_options["viewport"] == VIEWPORT
    assert fake_playwright.context_options["java_script_enabled"] is True
    assert ("goto", "https://spa.example.com/app", "networkidle") in fake_playwright.calls
    assert ("settle", 250) in fake_playwright.calls
    assert fake_playwright.launch_args["headless"] is True
    assert fake_playwright.context_closed and fake_playwright.browser_closed


def test_navigation_failure_still_closes_browser(fake_playwright):
    fake_playwright.goto_error = RuntimeError("net::ERR_NAME_NOT_RESOLVED")
    renderer = HeadlessRenderer(ProxyConfig(), playwright_factory=fake_playwright)

    with pytest.raises(RenderNavigationFailure) as excinfo:
        asyncio.run(renderer.fetch(_request()))

    assert "ERR_NAME_NOT_RESOLVED" in str(excinfo.value)
    assert fake_playwright.context_closed
    assert fake_playwright.browser_closed


def test_launch_failure_means_engine_unavailable(fake_playwright):
    fake_playwright.launch_error = RuntimeError("Executable doesn't exist")
    renderer = HeadlessRenderer(ProxyConfig(), playwright_factory=fake_playwright)

    with pytest.raises(RenderEngineUnavailable):
        asyncio.run(renderer.fetch(_request()))
    assert not fake_playwright.browser_closed


def test_missing_playwright_is_reported(monkeypatch):
    monkeypatch.setattr(headless_render, "async_playwright", None)
    renderer = HeadlessRenderer(ProxyConfig())

    assert not renderer.available
    with pytest.raises(RenderEngineUnavailable):
        asyncio.run(renderer.fetch(_request()))


def test_render_deadline_becomes_navigation_failure(fake_playwright):
    fake_playwright.goto_delay = 1.0
    renderer = HeadlessRenderer(ProxyConfig(render_timeout=0.1), playwright_factory=fake_playwright)

    with pytest.raises(RenderNavigationFailure) as excinfo:
        asyncio.run(renderer.fetch(_request()))
    assert "0.1s" in str(excinfo.value)


def test_invalid_url_rejected_before_launch(fake_playwright):
    renderer = HeadlessRenderer(ProxyConfig(), playwright_factory=fake_playwright)
    with pytest.raises(Exception) as excinfo:
        asyncio.run(renderer.fetch(_request("file:///etc/passwd")))
    assert getattr(excinfo.value, "status", None) == 400
    assert fake_playwright.calls == []


def test_driver_start_failure_means_engine_unavailable(fake_playwright):
    fake_playwright.enter_error = RuntimeError("Playwright driver exited")
    renderer = HeadlessRenderer(ProxyConfig(), playwright_factory=fake_playwright)

    with pytest.raises(RenderEngineUnavailable) as excinfo:
        asyncio.run(renderer.fetch(_request()))
    assert "driver exited" in str(excinfo.value)
    assert fake_playwright.launch_args == {}
