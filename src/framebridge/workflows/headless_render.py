"""Headless fallback renderer: a real browser stands in for the direct fetch.

Used for pages whose content only exists after client-side scripts run. The
captured markup re-enters the same ContentRewriter as the direct path, with
``AcquisitionMode.HEADLESS_RENDER`` so nested frames keep routing here.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from typing import Any, Callable, Dict, Optional

from .fetch_gateway import (
    FetchResult,
    ProxyRequest,
    RenderEngineUnavailable,
    RenderNavigationFailure,
    pick_user_agent,
    validate_target_url,
)
from .proxy_utils import ProxyConfig

try:  # Playwright is optional; /render degrades to a diagnostic page without it
    from playwright.async_api import async_playwright  # type: ignore
except Exception:  # pragma: no cover - handled at runtime
    async_playwright = None  # type: ignore

logger = logging.getLogger(__name__)

VIEWPORT = {"width": 1280, "height": 800}


class HeadlessRenderer:
    """One isolated browser session per request, always torn down."""

    method = "playwright"

    def __init__(
        self,
        config: Optional[ProxyConfig] = None,
        playwright_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.config = config or ProxyConfig()
        self._factory = playwright_factory or async_playwright

    @property
    def available(self) -> bool:
        return self._factory is not None

    async def fetch(self, request: ProxyRequest) -> FetchResult:
        url = validate_target_url(request.url)
        if self._factory is None:
            raise RenderEngineUnavailable("Playwright is not installed on the proxy host")
        try:
            return await asyncio.wait_for(self._render(url, request.host), timeout=self.config.render_timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("Headless render timed out after %.1fs for %s", self.config.render_timeout, url)
            raise RenderNavigationFailure(
                f"Rendering did not finish within {self.config.render_timeout:g}s"
            ) from exc

    async def _render(self, url: str, host: str) -> FetchResult:
        user_agent = pick_user_agent(host)
        async with AsyncExitStack() as stack:
            try:
                p = await stack.enter_async_context(self._factory())  # type: ignore[misc]
            except Exception as exc:
                logger.warning("Playwright driver failed to start: %s", exc)
                raise RenderEngineUnavailable(f"Could not start Playwright: {exc}") from exc
            try:
                browser = await p.chromium.launch(
                    headless=self.config.headless,
                    args=list(self.config.chromium_args),
                )
            except Exception as exc:
                logger.warning("Chromium launch failed: %s", exc)
                raise RenderEngineUnavailable(f"Could not launch the headless browser: {exc}") from exc
            context = None
            try:
                context = await browser.new_context(
                    user_agent=user_agent,
                    viewport=VIEWPORT,
                    locale="en-US",
                    java_script_enabled=True,
                )
                page = await context.new_page()
                try:
                    response = await page.goto(
                        url,
                        wait_until="networkidle",
                        timeout=int(self.config.navigation_timeout * 1000),
                    )
                except Exception as exc:
                    logger.warning("Headless navigation failed for %s: %s", url, exc)
                    raise RenderNavigationFailure(f"Navigation to {url} failed: {exc}") from exc
                # Late hydration and lazy widgets settle after network idle.
                await page.wait_for_timeout(self.config.settle_delay_ms)
                content = await page.content()
                final_url = page.url or url
                status = response.status if response else 200
                headers: Dict[str, str] = dict(response.headers) if response else {}
            finally:
                if context is not None:
                    await context.close()
                await browser.close()
        return FetchResult(
            url=url,
            final_url=final_url,
            status=status,
            content_type="text/html; charset=utf-8",
            body=content.encode("utf-8", "ignore"),
            headers=headers,
            method=self.method,
            metadata={"playwright": True, "user_agent": user_agent},
        )


__all__ = ["HeadlessRenderer", "VIEWPORT", "async_playwright"]
