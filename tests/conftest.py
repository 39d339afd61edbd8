from __future__ import annotations

import os

# Keep test runs from writing log files into the working tree.
os.environ.setdefault("LOG_TO_FILE", "false")

import pytest  # noqa: E402

from lenstrace.lens_core.models.interfaces import ExtractionResult, SourceRecord  # noqa: E402


class FakeLauncher:
    """Stands in for PlaywrightLauncher; contexts are plain strings."""

    def __init__(self, *, fail_open: bool = False):
        self.fail_open = fail_open
        self.started = False
        self.stopped = False
        self.opened: list[str] = []
        self.closed: list[str] = []
        self.dead: set[str] = set()

    async def start(self) -> None:
        self.started = True

    async def new_context(self) -> str:
        if self.fail_open:
            raise RuntimeError("browser is gone")
        context = f"ctx-{len(self.opened) + 1}"
        self.opened.append(context)
        return context

    async def close_context(self, context: str) -> None:
        self.closed.append(context)

    def is_alive(self, context: str) -> bool:
        return context not in self.dead

    async def stop(self) -> None:
        self.stopped = True


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _make_result(*links: str) -> ExtractionResult:
    return ExtractionResult(
        sources=tuple(
            SourceRecord(position=index, link=link, title=f"title {index}")
            for index, link in enumerate(links, start=1)
        )
    )


@pytest.fixture
def fake_launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def launcher_factory():
    return FakeLauncher


@pytest.fixture
def make_result():
    return _make_result


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
