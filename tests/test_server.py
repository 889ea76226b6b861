import asyncio
import html
import re
from urllib.parse import quote

from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from framebridge.server import create_app, expects_html
from framebridge.workflows import headless_render
from framebridge.workflows.headless_render import HeadlessRenderer
from framebridge.workflows.proxy_utils import ProxyConfig
from framebridge.workflows.url_rewriter import decode_proxied_url

PAGE = """<html><head><title>Docs</title></head><body>
<a class="next" href="../c.html">next</a>
<div class="sponsor-strip">BUY NOW LIMITED</div>
<p>content</p>
</body></html>"""


async def _page(request):
    return web.Response(text=PAGE, content_type="text/html")


async def _missing_image(request):
    return web.Response(status=404, body=b"\x89PNG", content_type="image/png")


async def _missing_page(request):
    return web.Response(status=404, text="<html><body>not here</body></html>", content_type="text/html")


async def _slow(request):
    await asyncio.sleep(1)
    return web.Response(text="late")


async def _stylesheet(request):
    return web.Response(text='@import "reset.css";\nbody{background:url(img/bg.png)}', content_type="text/css")


UPSTREAM_ROUTES = {
    "/a/b/page.html": _page,
    "/missing.png": _missing_image,
    "/gone.html": _missing_page,
    "/slow": _slow,
    "/site/styles/base.css": _stylesheet,
}


def _run(func, config=None, **collaborators):
    async def main():
        upstream_app = web.Application()
        for path, handler in UPSTREAM_ROUTES.items():
            upstream_app.router.add_get(path, handler)
        upstream = TestServer(upstream_app)
        await upstream.start_server()
        client = TestClient(TestServer(create_app(config or ProxyConfig(fetch_timeout=5), **collaborators)))
        await client.start_server()
        try:
            return await func(client, upstream)
        finally:
            await client.close()
            await upstream.close()

    return asyncio.run(main())


def test_page_links_route_back_through_proxy():
    async def scenario(client, upstream):
        target = str(upstream.make_url("/a/b/page.html"))
        resp = await client.get("/proxy", params={"url": target}, headers={"Sec-Fetch-Dest": "iframe"})
        return resp.status, dict(resp.headers), await resp.text(), str(upstream.make_url("/a/c.html"))

    status, headers, text, expected = _run(scenario)

    assert status == 200
    assert headers["Cache-Control"] == "no-store"
    assert headers["Access-Control-Allow-Origin"] == "*"
    href = re.search(r'<a class="next" href="([^"]*)"', text).group(1)
    assert "/proxy?url=" in href
    assert decode_proxied_url(html.unescape(href)) == expected
    assert "__framebridgeBridge" in text


def test_removals_are_replayed_on_the_page():
    async def scenario(client, upstream):
        target = str(upstream.make_url("/a/b/page.html"))
        resp = await client.get("/proxy", params=[("url", target), ("remove", "div.sponsor-strip")])
        return await resp.text()

    text = _run(scenario)
    assert "BUY NOW LIMITED" not in text
    assert "<p>content</p>" in text


def test_missing_asset_keeps_status_and_empty_body():
    async def scenario(client, upstream):
        target = str(upstream.make_url("/missing.png"))
        resp = await client.get("/proxy", params={"url": target}, headers={"Sec-Fetch-Dest": "image"})
        return resp.status, resp.headers["Content-Type"], await resp.read()

    status, content_type, body = _run(scenario)
    assert status == 404
    assert content_type.startswith("image/png")
    assert body == b""


def test_missing_document_becomes_diagnostic_page():
    async def scenario(client, upstream):
        target = str(upstream.make_url("/gone.html"))
        resp = await client.get("/proxy", params={"url": target}, headers={"Accept": "text/html"})
        return resp.status, await resp.text()

    status, text = _run(scenario)
    assert status == 404
    assert "proxy-error" in text
    assert "HTTP 404" in text


def test_missing_url_is_a_bad_request():
    async def scenario(client, upstream):
        bare = await client.get("/proxy")
        page = await client.get("/render", headers={"Accept": "text/html"})
        return bare.status, await bare.read(), page.status, await page.text()

    bare_status, bare_body, page_status, page_text = _run(scenario)
    assert bare_status == 400 and bare_body == b""
    assert page_status == 400
    assert "The url parameter is required" in page_text


def test_upstream_timeout_in_frame_is_diagnostic():
    async def scenario(client, upstream):
        target = str(upstream.make_url("/slow"))
        resp = await client.get("/proxy", params={"url": target}, headers={"Sec-Fetch-Dest": "iframe"})
        return resp.status, await resp.text()

    status, text = _run(scenario, ProxyConfig(fetch_timeout=0.2))
    assert status == 504
    assert "Upstream timed out" in text
    assert "proxy-error" in text


def test_stylesheet_references_are_rewritten_and_cacheable():
    async def scenario(client, upstream):
        target = str(upstream.make_url("/site/styles/base.css"))
        resp = await client.get("/proxy", params={"url": target}, headers={"Sec-Fetch-Dest": "style"})
        return (
            resp.status,
            dict(resp.headers),
            await resp.text(),
            str(upstream.make_url("/site/styles/reset.css")),
            str(upstream.make_url("/site/styles/img/bg.png")),
        )

    status, headers, text, reset, background = _run(scenario)
    assert status == 200
    assert headers["Cache-Control"] == "public, max-age=300"
    assert headers["Content-Type"].startswith("text/css")
    assert quote(reset, safe="") in text
    assert quote(background, safe="") in text


def test_render_without_playwright_serves_embeddable_error(monkeypatch):
    monkeypatch.setattr(headless_render, "async_playwright", None)

    async def scenario(client, upstream):
        health = await client.get("/health")
        resp = await client.get("/render", params={"url": "https://spa.example.com/"})
        return await health.json(), resp.status, await resp.text()

    health, status, text = _run(scenario)
    assert health == {"status": "ok", "headless": False}
    assert status == 200
    assert "playwright-error" in text
    assert "Headless rendering unavailable" in text


def test_render_routes_nested_frames_back_to_render(fake_playwright):
    fake_playwright.html = (
        "<html><head></head><body><div id='app'>ready</div>"
        "<iframe src='/inner'></iframe></body></html>"
    )
    config = ProxyConfig(fetch_timeout=5)

    async def scenario(client, upstream):
        resp = await client.get("/render", params={"url": "https://spa.example.com/app"})
        return resp.status, dict(resp.headers), await resp.text()

    status, headers, text = _run(
        scenario, config, renderer=HeadlessRenderer(config, playwright_factory=fake_playwright)
    )
    inner = quote("https://spa.example.com/inner", safe="")
    assert status == 200
    assert headers["X-Rendered-By"] == "playwright"
    assert f"/render?url={inner}&amp;depth=1" in text
    assert fake_playwright.browser_closed


def test_preflight_is_answered_with_cors_headers():
    async def scenario(client, upstream):
        resp = await client.options("/proxy")
        return resp.status, dict(resp.headers)

    status, headers = _run(scenario)
    assert status == 204
    assert headers["Access-Control-Allow-Origin"] == "*"


def test_router_errors_carry_cors_headers():
    async def scenario(client, upstream):
        missing = await client.get("/nope")
        wrong_method = await client.post("/proxy")
        return (missing.status, dict(missing.headers)), (wrong_method.status, dict(wrong_method.headers))

    (missing_status, missing_headers), (method_status, method_headers) = _run(scenario)
    assert missing_status == 404
    assert missing_headers["Access-Control-Allow-Origin"] == "*"
    assert method_status == 405
    assert method_headers["Access-Control-Allow-Origin"] == "*"


class _Request:
    def __init__(self, headers):
        self.headers = headers


def test_expects_html_from_fetch_metadata():
    assert expects_html(_Request({"Sec-Fetch-Dest": "iframe"}), "https://x.test/a.png")
    assert not expects_html(_Request({"Sec-Fetch-Dest": "script"}), "https://x.test/app")
    assert not expects_html(_Request({"Accept": "text/html"}), "https://x.test/logo.svg")
    assert expects_html(_Request({"Sec-Fetch-Dest": "empty", "Accept": "text/html,*/*"}), "https://x.test/")
    assert expects_html(_Request({}), "https://x.test/")
    assert not expects_html(_Request({"Accept": "application/json"}), "https://x.test/api")


def test_render_driver_failure_is_a_diagnostic_not_a_500(fake_playwright):
    fake_playwright.enter_error = RuntimeError("Playwright driver exited")
    config = ProxyConfig(fetch_timeout=5)

    async def scenario(client, upstream):
        resp = await client.get("/render", params={"url": "https://spa.example.com/app"})
        return resp.status, await resp.text()

    status, text = _run(scenario, config, renderer=HeadlessRenderer(config, playwright_factory=fake_playwright))
    assert status == 200
    assert "playwright-error" in text
    assert "Headless rendering unavailable" in text
