import asyncio
from typing import Dict, List, Optional

import pytest


class FakeResponse:
    def __init__(self, status: int = 200, headers: Optional[Dict[str, str]] = None) -> None:
        self.status = status
        self.headers = headers or {"content-type": "text/html"}


class FakePage:
    def __init__(self, owner: "FakePlaywright") -> None:
        self.owner = owner
        self.url = ""

    async def goto(self, url, wait_until=None, timeout=None):
        self.owner.calls.append(("goto", url, wait_until))
        if self.owner.goto_delay:
            await asyncio.sleep(self.owner.goto_delay)
        if self.owner.goto_error is not None:
            raise self.owner.goto_error
        self.url = self.owner.final_url or url
        return FakeResponse(self.owner.status)

    async def wait_for_timeout(self, ms):
        self.owner.calls.append(("settle", ms))

    async def content(self):
        return self.owner.html


class FakeContext:
    def __init__(self, owner: "FakePlaywright", options: Dict) -> None:
        self.owner = owner
        self.options = options

    async def new_page(self):
        return FakePage(self.owner)

    async def close(self):
        self.owner.context_closed = True


class FakeBrowser:
    def __init__(self, owner: "FakePlaywright") -> None:
        self.owner = owner

    async def new_context(self, **options):
        self.owner.context_options = options
        return FakeContext(self.owner, options)

    async def close(self):
        self.owner.browser_closed = True


class FakeChromium:
    def __init__(self, owner: "FakePlaywright") -> None:
        self.owner = owner

    async def launch(self, headless=True, args=None):
        if self.owner.launch_error is not None:
            raise self.owner.launch_error
        self.owner.launch_args = {"headless": headless, "args": args}
        return FakeBrowser(self.owner)


class FakePlaywright:
    """Stands in for ``async_playwright()``; records what the renderer did."""

    def __init__(self, html: str = "<html><head></head><body><p>rendered</p></body></html>") -> None:
        self.html = html
        self.status = 200
        self.final_url: Optional[str] = None
        self.goto_error: Optional[Exception] = None
        self.goto_delay = 0.0
        self.launch_error: Optional[Exception] = None
        self.enter_error: Optional[Exception] = None
        self.launch_args: Dict = {}
        self.context_options: Dict = {}
        self.context_closed = False
        self.browser_closed = False
        self.calls: List = []
        self.chromium = FakeChromium(self)

    def __call__(self):
        return self

    async def __aenter__(self):
        if self.enter_error is not None:
            raise self.enter_error
        return self

    async def __aexit__(self, *exc_info):
        return False


@pytest.fixture
def fake_playwright():
    return FakePlaywright()
