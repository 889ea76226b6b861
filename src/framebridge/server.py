"""HTTP surface: ``/proxy``, ``/render`` and ``/health`` on aiohttp.web.

Every failure meant for the embedding frame is turned into an embeddable
diagnostic document when HTML was expected; asset requests get the bare
status with an empty body instead.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Dict, Optional, Tuple

import aiohttp
from aiohttp import web

from .core import keys as K
from .workflows import proxy_config
from .workflows.content_rewriter import ContentRewriter, render_diagnostic_page
from .workflows.fetch_gateway import (
    AcquisitionMode,
    DirectFetcher,
    FetchResult,
    InputValidationError,
    PageAcquirer,
    ProxyRequest,
    RenderEngineUnavailable,
    RenderNavigationFailure,
    UpstreamFailure,
    UpstreamTimeout,
    validate_target_url,
)
from .workflows.headless_render import HeadlessRenderer
from .workflows.proxy_utils import ProxyConfig, clamp_depth, is_asset_path
from .workflows.url_rewriter import RewriteContext

logger = logging.getLogger(__name__)

_HTML_DESTINATIONS = {"document", "iframe", "frame", "embed", "object"}


def expects_html(request: web.BaseRequest, target: str) -> bool:
    """Did the browser ask for a document, as opposed to a sub-resource?"""

    dest = request.headers.get("Sec-Fetch-Dest", "").strip().lower()
    if dest in _HTML_DESTINATIONS:
        return True
    if dest and dest != "empty":
        return False
    if target and is_asset_path(target):
        return False
    accept = request.headers.get("Accept", "")
    return not accept or "text/html" in accept.lower()


def _allow_cross_origin(headers) -> None:
    headers[proxy_config.HDR_ALLOW_ORIGIN] = "*"
    headers[proxy_config.HDR_ALLOW_METHODS] = "GET, OPTIONS"
    headers[proxy_config.HDR_ALLOW_HEADERS] = "*"


@web.middleware
async def cors_middleware(request: web.Request, handler) -> web.StreamResponse:
    if request.method == "OPTIONS":
        response: web.StreamResponse = web.Response(status=204)
    else:
        try:
            response = await handler(request)
        except web.HTTPException as exc:
            # Router 404/405 and other raised responses.
            _allow_cross_origin(exc.headers)
            raise
    _allow_cross_origin(response.headers)
    return response


class ProxyServer:
    """Request handlers plus the long-lived collaborators they share."""

    def __init__(
        self,
        config: Optional[ProxyConfig] = None,
        *,
        fetcher: Optional[PageAcquirer] = None,
        renderer: Optional[HeadlessRenderer] = None,
        rewriter: Optional[ContentRewriter] = None,
    ) -> None:
        self.config = config or ProxyConfig()
        self.fetcher = fetcher
        self.renderer = renderer or HeadlessRenderer(self.config)
        self.rewriter = rewriter or ContentRewriter(self.config)

    async def client_session(self, app: web.Application) -> AsyncIterator[None]:
        """cleanup_ctx hook: one pooled ClientSession for the app's lifetime."""

        owned = self.fetcher is None
        session: Optional[aiohttp.ClientSession] = None
        if owned:
            session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None))
            self.fetcher = DirectFetcher(self.config, session=session)
        yield
        if owned and session is not None:
            await session.close()
            self.fetcher = None

    # Responses ------------------------------------------------------------------

    def _headers(self, content_type: str, *, html: bool) -> Dict[str, str]:
        cache = "no-store" if html else f"public, max-age={self.config.static_cache_seconds}"
        return {
            proxy_config.HDR_CONTENT_TYPE: content_type,
            proxy_config.HDR_CACHE_CONTROL: cache,
        }

    def _prefixes(self, request: web.BaseRequest) -> Tuple[str, str]:
        # Absolute, because rewritten documents carry a <base> at the target origin.
        origin = f"{request.scheme}://{request.host}"
        return origin + self.config.proxy_path, origin + self.config.render_path

    def diagnostic(
        self,
        status: int,
        title: str,
        message: str,
        *,
        mode: AcquisitionMode,
        target_url: Optional[str] = None,
        upstream_status: Optional[int] = None,
    ) -> web.Response:
        body = render_diagnostic_page(
            title,
            message,
            mode=mode,
            status=upstream_status if upstream_status is not None else status,
            target_url=target_url,
        )
        return web.Response(
            body=body.encode("utf-8"),
            status=status,
            headers=self._headers("text/html; charset=utf-8", html=True),
        )

    def failure(
        self,
        status: int,
        title: str,
        message: str,
        *,
        mode: AcquisitionMode,
        html: bool,
        target_url: Optional[str] = None,
        content_type: str = "application/octet-stream",
    ) -> web.Response:
        if html:
            return self.diagnostic(status, title, message, mode=mode, target_url=target_url)
        return web.Response(body=b"", status=status, headers=self._headers(content_type, html=False))

    def _upstream_error(self, result: FetchResult, mode: AcquisitionMode, html_expected: bool) -> web.Response:
        if html_expected or result.is_html:
            return self.diagnostic(
                result.status,
                f"Upstream returned {result.status}",
                f"The site answered with HTTP {result.status}.",
                mode=mode,
                target_url=result.final_url or result.url,
                upstream_status=result.status,
            )
        return web.Response(
            body=b"",
            status=result.status,
            headers=self._headers(result.content_type or "application/octet-stream", html=False),
        )

    # Handlers -------------------------------------------------------------------

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({K.K_STATUS: "ok", "headless": self.renderer.available})

    async def handle_proxy(self, request: web.Request) -> web.Response:
        return await self._serve(request, AcquisitionMode.DIRECT_FETCH)

    async def handle_render(self, request: web.Request) -> web.Response:
        return await self._serve(request, AcquisitionMode.HEADLESS_RENDER)

    async def _serve(self, request: web.Request, mode: AcquisitionMode) -> web.Response:
        raw_target = request.query.get(K.K_URL)
        html_expected = expects_html(request, raw_target or "")
        removals = tuple(v for v in request.query.getall(K.K_REMOVE, []) if v.strip())
        depth = 0
        if mode is AcquisitionMode.HEADLESS_RENDER:
            depth = clamp_depth(request.query.get(K.K_DEPTH), self.config.max_render_depth)

        try:
            url = validate_target_url(raw_target)
        except InputValidationError as exc:
            logger.info("Rejected %s request: %s", request.path, exc)
            return self.failure(exc.status, "Invalid request", str(exc), mode=mode, html=html_expected)

        proxy_request = ProxyRequest(
            url=url,
            headers=dict(request.headers),
            mode=mode,
            depth=depth,
            removals=removals,
        )
        try:
            if mode is AcquisitionMode.HEADLESS_RENDER:
                result = await self.renderer.fetch(proxy_request)
            else:
                if self.fetcher is None:
                    raise RuntimeError("Direct fetcher is not initialised")
                result = await self.fetcher.fetch(proxy_request)
        except UpstreamTimeout as exc:
            return self.failure(
                exc.status, "Upstream timed out", str(exc), mode=mode, html=html_expected, target_url=url
            )
        except UpstreamFailure as exc:
            return self.failure(
                exc.status, "Upstream unreachable", str(exc), mode=mode, html=html_expected, target_url=url
            )
        except RenderEngineUnavailable as exc:
            return self.diagnostic(200, "Headless rendering unavailable", str(exc), mode=mode, target_url=url)
        except RenderNavigationFailure as exc:
            return self.diagnostic(200, "Headless rendering failed", str(exc), mode=mode, target_url=url)
        except Exception as exc:
            logger.exception("Unexpected failure acquiring %s", url)
            return self.failure(500, "Proxy error", str(exc), mode=mode, html=html_expected, target_url=url)

        if mode is AcquisitionMode.DIRECT_FETCH and not result.ok:
            return self._upstream_error(result, mode, html_expected)

        proxy_prefix, render_prefix = self._prefixes(request)
        ctx = RewriteContext.for_document(
            result.final_url or url,
            proxy_prefix,
            render_prefix,
            mode=mode,
            depth=depth,
            max_depth=self.config.max_render_depth,
        )
        try:
            rewritten = self.rewriter.rewrite(result, ctx, removals=removals)
        except Exception as exc:
            logger.exception("Unexpected failure rewriting %s", url)
            return self.failure(500, "Proxy error", str(exc), mode=mode, html=html_expected, target_url=url)

        headers = self._headers(rewritten.content_type, html=rewritten.kind == "html")
        if rewritten.render_hint:
            headers[proxy_config.HDR_RENDER_HINT] = "1"
        if mode is AcquisitionMode.HEADLESS_RENDER:
            headers[proxy_config.HDR_RENDERED_BY] = self.renderer.method
        status = 200 if mode is AcquisitionMode.HEADLESS_RENDER else result.status
        return web.Response(body=rewritten.body, status=status, headers=headers)


SERVER_KEY = web.AppKey("framebridge_server", ProxyServer)


def create_app(config: Optional[ProxyConfig] = None, **collaborators) -> web.Application:
    """Build the aiohttp application; collaborators override the defaults (tests)."""

    server = ProxyServer(config, **collaborators)
    app = web.Application(middlewares=[cors_middleware])
    app[SERVER_KEY] = server
    app.cleanup_ctx.append(server.client_session)

    app.router.add_get(server.config.proxy_path, server.handle_proxy)
    app.router.add_get(server.config.render_path, server.handle_render)
    app.router.add_get(proxy_config.HEALTH_PATH, server.handle_health)
    return app


def run_server(config: Optional[ProxyConfig] = None) -> None:
    cfg = config or ProxyConfig.from_env()
    logger.info("framebridge listening on http://%s:%d", cfg.host, cfg.port)
    web.run_app(create_app(cfg), host=cfg.host, port=cfg.port, print=None)


__all__ = ["ProxyServer", "SERVER_KEY", "cors_middleware", "create_app", "expects_html", "run_server"]
