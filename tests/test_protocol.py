from __future__ import annotations

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from lenstrace.lens_core.extract.protocol import (
    SCROLL_SCRIPT,
    ExtractionProtocol,
    build_lens_url,
    parse_dimensions,
    records_from_raw,
)
from lenstrace.lens_core.models.errors import (
    ExtractionEmpty,
    InteractionFailed,
    NavigationTimeout,
    ResultsNotFound,
)
from lenstrace.lens_core.models.interfaces import LensSelectors, ProtocolTimings

SELECTORS = LensSelectors()

FAST_TIMINGS = ProtocolTimings(
    navigation_timeout_ms=100,
    results_timeout_ms=30,
    expand_timeout_ms=30,
    click_timeout_ms=30,
    scrape_timeout_ms=200,
    settle_delay_ms=0,
    poll_interval_ms=5,
    max_pages=5,
)

SAMPLE_ITEMS = [
    {
        "title": "Red bicycle on a wall",
        "source": "example.com",
        "source_logo": "https://example.com/favicon.png",
        "link": "https://example.com/bikes/1",
        "thumbnail": "https://example.com/thumb/1.jpg",
        "dimensions": "1200x800",
    },
    {
        "title": "Bicycle poster",
        "source": "shop.example",
        "source_logo": None,
        "link": "https://shop.example/p/9",
        "thumbnail": None,
        "dimensions": None,
    },
]


class FakeElement:
    def __init__(self, visible: bool = True):
        self.visible = visible

    async def is_visible(self):
        return self.visible


class FakePage:
    """Minimal page double: controls are 'present' when their selector is in ``present``."""

    def __init__(
        self,
        *,
        present: set[str] | None = None,
        items: list[dict] | None = None,
        more_pages: int = 0,
        always_more: bool = False,
        goto_error: Exception | None = None,
        click_error: Exception | None = None,
        hidden: set[str] | None = None,
    ):
        self.present = present if present is not None else {
            SELECTORS.results_marker,
            SELECTORS.expand_button,
        }
        self.items = SAMPLE_ITEMS if items is None else items
        self.more_pages = more_pages
        self.always_more = always_more
        self.goto_error = goto_error
        self.click_error = click_error
        self.hidden = hidden or set()
        self.visited: list[str] = []
        self.clicks: list[str] = []
        self.scrolls = 0
        self.closed = False

    async def goto(self, url, wait_until=None, timeout=None):
        self.visited.append(url)
        if self.goto_error:
            raise self.goto_error

    async def query_selector(self, selector):
        if selector == SELECTORS.more_button:
            if not (self.always_more or self.more_pages > 0):
                return None
        elif selector not in self.present:
            return None
        return FakeElement(visible=selector not in self.hidden)

    async def click(self, selector, timeout=None):
        if self.click_error:
            raise self.click_error
        self.clicks.append(selector)
        if selector == SELECTORS.more_button and self.more_pages > 0:
            self.more_pages -= 1

    async def evaluate(self, script, arg=None):
        if script == SCROLL_SCRIPT:
            self.scrolls += 1
            return None
        return self.items

    async def close(self):
        self.closed = True


class FakeContext:
    def __init__(self, page: FakePage):
        self.page = page

    async def new_page(self):
        return self.page


def _protocol() -> ExtractionProtocol:
    return ExtractionProtocol(selectors=SELECTORS, timings=FAST_TIMINGS)


def test_build_lens_url_escapes_like_encode_uri_component():
    url = build_lens_url("https://img.example.com/a b.png?x=1&y=(2)")
    assert url == (
        "https://lens.google.com/uploadbyurl?url="
        "https%3A%2F%2Fimg.example.com%2Fa%20b.png%3Fx%3D1%26y%3D(2)"
    )


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("1200x800", (1200, 800)),
        (" 640 x 480 ", (640, 480)),
        ("1200×800", (None, None)),
        ("wide x tall", (None, None)),
        ("1x2x3", (None, None)),
        ("x800", (None, None)),
        ("", (None, None)),
        (None, (None, None)),
    ],
)
def test_parse_dimensions(raw, expected):
    assert parse_dimensions(raw) == expected


def test_records_from_raw_keeps_optional_fields_absent_and_drops_linkless_items():
    records = records_from_raw(
        [
            {"title": "  ", "link": "https://a.example/1", "dimensions": "big"},
            {"title": "no link here", "link": None},
            {"link": "https://b.example/2", "dimensions": "10x20"},
        ]
    )

    assert [r.position for r in records] == [1, 2]
    first, second = records
    assert first.link == "https://a.example/1"
    assert first.title is None
    assert first.source_logo_url is None
    assert first.thumbnail_url is None
    assert (first.image_width, first.image_height) == (None, None)
    assert (second.image_width, second.image_height) == (10, 20)


@pytest.mark.asyncio
async def test_extract_runs_every_step_in_order():
    page = FakePage(more_pages=2)

    result = await _protocol().extract(page, "https://img.example.com/cat.png")

    assert page.visited == [build_lens_url("https://img.example.com/cat.png")]
    assert page.clicks == [SELECTORS.expand_button, SELECTORS.more_button, SELECTORS.more_button]
    assert page.scrolls == 2
    assert [s.link for s in result.sources] == [
        "https://example.com/bikes/1",
        "https://shop.example/p/9",
    ]
    assert result.sources[0].image_width == 1200
    assert result.sources[1].thumbnail_url is None
    assert result.to_dict()["image_sources"][0]["source"] == "example.com"


@pytest.mark.asyncio
async def test_pagination_terminates_at_cap_when_control_never_disappears():
    page = FakePage(always_more=True)

    pages = await _protocol().paginate(page)

    assert pages == FAST_TIMINGS.max_pages
    assert page.clicks.count(SELECTORS.more_button) == FAST_TIMINGS.max_pages


@pytest.mark.asyncio
async def test_navigation_timeout_is_reported_as_navigation_timeout():
    page = FakePage(goto_error=PlaywrightTimeoutError("Timeout 100ms exceeded."))

    with pytest.raises(NavigationTimeout):
        await _protocol().extract(page, "https://img.example.com/cat.png")


@pytest.mark.asyncio
async def test_missing_results_marker_raises_results_not_found():
    page = FakePage(present=set())

    with pytest.raises(ResultsNotFound):
        await _protocol().extract(page, "https://img.example.com/cat.png")


@pytest.mark.asyncio
async def test_missing_expansion_control_is_not_fatal():
    page = FakePage(present={SELECTORS.results_marker})

    result = await _protocol().extract(page, "https://img.example.com/cat.png")

    assert SELECTORS.expand_button not in page.clicks
    assert len(result.sources) == 2


@pytest.mark.asyncio
async def test_click_timeout_raises_interaction_failed():
    page = FakePage(click_error=PlaywrightTimeoutError("Timeout 30ms exceeded."))

    with pytest.raises(InteractionFailed):
        await _protocol().extract(page, "https://img.example.com/cat.png")


@pytest.mark.asyncio
async def test_closed_target_is_not_masked_as_protocol_error():
    page = FakePage(click_error=PlaywrightError("Target page, context or browser has been closed"))

    with pytest.raises(PlaywrightError) as excinfo:
        await _protocol().extract(page, "https://img.example.com/cat.png")

    assert not isinstance(excinfo.value, InteractionFailed)


@pytest.mark.asyncio
async def test_no_scraped_sources_raises_extraction_empty():
    page = FakePage(items=[])

    with pytest.raises(ExtractionEmpty):
        await _protocol().extract(page, "https://img.example.com/cat.png")


@pytest.mark.asyncio
async def test_run_closes_page_on_success_and_failure():
    ok_page = FakePage()
    await _protocol().run(FakeContext(ok_page), "https://img.example.com/cat.png", "job-1")
    assert ok_page.closed is True

    failing_page = FakePage(present=set())
    with pytest.raises(ResultsNotFound):
        await _protocol().run(FakeContext(failing_page), "https://img.example.com/cat.png", "job-2")
    assert failing_page.closed is True


@pytest.mark.asyncio
async def test_hidden_expansion_control_is_treated_as_absent():
    page = FakePage(hidden={SELECTORS.expand_button})

    result = await _protocol().extract(page, "https://img.example.com/cat.png")

    assert page.clicks == []
    assert len(result.sources) == 2


@pytest.mark.asyncio
async def test_hidden_load_more_control_stops_pagination():
    page = FakePage(always_more=True, hidden={SELECTORS.more_button})

    pages = await _protocol().paginate(page)

    assert pages == 0
    assert SELECTORS.more_button not in page.clicks


@pytest.mark.asyncio
async def test_page_without_expansion_and_without_matches_is_an_empty_result():
    page = FakePage(present={SELECTORS.results_marker}, items=[])

    result = await _protocol().extract(page, "https://img.example.com/cat.png")

    assert result.sources == ()
    assert result.to_dict() == {"image_sources": []}
