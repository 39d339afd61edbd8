from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from lenstrace.lens_core.sessions.browser import PlaywrightLauncher


class FakeBrowser:
    def __init__(self, name: str, *, connected: bool = True):
        self.name = name
        self.connected = connected
        self.closed = False
        self.contexts = 0

    def is_connected(self) -> bool:
        return self.connected

    async def new_context(self, viewport=None, locale=None):
        self.contexts += 1
        return SimpleNamespace(browser=self, name=f"ctx-of-{self.name}")

    async def close(self):
        self.closed = True
        self.connected = False


class FakeChromium:
    def __init__(self):
        self.launched: list[FakeBrowser] = []

    async def launch(self, headless=True, args=None):
        # Yield so concurrent callers interleave here.
        await asyncio.sleep(0)
        browser = FakeBrowser(f"browser-{len(self.launched) + 1}")
        self.launched.append(browser)
        return browser


def _launcher_with_dead_browser() -> tuple[PlaywrightLauncher, FakeChromium, FakeBrowser]:
    chromium = FakeChromium()
    dead = FakeBrowser("crashed", connected=False)
    launcher = PlaywrightLauncher()
    launcher._playwright = SimpleNamespace(chromium=chromium)
    launcher._browser = dead
    return launcher, chromium, dead


@pytest.mark.asyncio
async def test_concurrent_contexts_after_disconnect_share_one_relaunch():
    launcher, chromium, dead = _launcher_with_dead_browser()

    contexts = await asyncio.gather(*(launcher.new_context() for _ in range(5)))

    assert len(chromium.launched) == 1
    assert {ctx.name for ctx in contexts} == {"ctx-of-browser-1"}
    assert dead.closed is True
    assert launcher._browser is chromium.launched[0]


def test_is_alive_follows_the_owning_browser():
    launcher = PlaywrightLauncher()
    browser = FakeBrowser("b")
    context = SimpleNamespace(browser=browser)

    assert launcher.is_alive(context) is True
    browser.connected = False
    assert launcher.is_alive(context) is False
    assert launcher.is_alive(SimpleNamespace(browser=None)) is False
