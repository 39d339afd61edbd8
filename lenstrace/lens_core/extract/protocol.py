from __future__ import annotations

import asyncio
import re
import time
from contextlib import contextmanager
from dataclasses import asdict
from typing import Any, Iterator
from urllib.parse import quote

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from lenstrace.lens_core.extract.polling import repeat_while, wait_for
from lenstrace.lens_core.models.errors import (
    ExtractionEmpty,
    ExtractionError,
    InteractionFailed,
    NavigationTimeout,
    ResultsNotFound,
)
from lenstrace.lens_core.models.interfaces import (
    ExtractionResult,
    LensSelectors,
    ProtocolTimings,
    SourceRecord,
)
from lenstrace.services.logger import log_extraction_step, logger

DEFAULT_LENS_BASE_URL = "https://lens.google.com/uploadbyurl"

# Runs inside the page. Returns raw strings only; parsing happens in Python.
SCRAPE_SCRIPT = """
(sel) => Array.from(document.querySelectorAll(sel.result_item)).map((el) => {
    const text = (s) => {
        const node = el.querySelector(s);
        return node ? node.innerText.trim() : null;
    };
    const src = (s) => {
        const node = el.querySelector(s);
        return node ? node.src : null;
    };
    return {
        title: text(sel.title),
        source: text(sel.source_name),
        source_logo: src(sel.source_logo),
        link: el.href || null,
        thumbnail: src(sel.thumbnail),
        dimensions: text(sel.dimensions),
    };
})
"""

SCROLL_SCRIPT = "() => window.scrollTo(0, document.body.scrollHeight)"

_INT_PART = re.compile(r"\s*(\d+)\s*")
# Characters encodeURIComponent leaves unescaped.
_URI_COMPONENT_SAFE = "-_.!~*'()"

_FATAL_MARKERS = (
    "has been closed",
    "target closed",
    "browser has disconnected",
    "crashed",
)


def is_session_fatal(exc: BaseException) -> bool:
    """True when a Playwright error means the page or its browser is gone."""
    if not isinstance(exc, PlaywrightError) or isinstance(exc, PlaywrightTimeoutError):
        return False
    message = str(exc).lower()
    return any(marker in message for marker in _FATAL_MARKERS)


def build_lens_url(image_url: str, base_url: str = DEFAULT_LENS_BASE_URL) -> str:
    return f"{base_url}?url={quote(image_url, safe=_URI_COMPONENT_SAFE)}"


def parse_dimensions(raw: str | None) -> tuple[int | None, int | None]:
    """Parse ``"<width>x<height>"``. Anything else yields ``(None, None)``."""
    if not raw:
        return None, None
    parts = raw.split("x")
    if len(parts) != 2:
        return None, None
    matches = [_INT_PART.fullmatch(part) for part in parts]
    if not all(matches):
        return None, None
    return int(matches[0].group(1)), int(matches[1].group(1))


def _clean(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def records_from_raw(items: list[dict[str, Any]]) -> tuple[SourceRecord, ...]:
    """Turn raw scraped items into records, dropping items without a link."""
    records: list[SourceRecord] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        link = _clean(item.get("link"))
        if not link:
            continue
        width, height = parse_dimensions(_clean(item.get("dimensions")))
        records.append(
            SourceRecord(
                position=len(records) + 1,
                link=link,
                title=_clean(item.get("title")),
                source_name=_clean(item.get("source")),
                source_logo_url=_clean(item.get("source_logo")),
                thumbnail_url=_clean(item.get("thumbnail")),
                image_width=width,
                image_height=height,
            )
        )
    return tuple(records)


@contextmanager
def _timed_step(job_id: str, step: str) -> Iterator[dict[str, Any]]:
    started = time.monotonic()
    data: dict[str, Any] = {}
    try:
        yield data
    except Exception as exc:
        log_extraction_step(
            job_id,
            step,
            "failed",
            duration_ms=int((time.monotonic() - started) * 1000),
            data=data or None,
            error=f"{type(exc).__name__}: {exc}",
        )
        raise
    log_extraction_step(
        job_id,
        step,
        "completed",
        duration_ms=int((time.monotonic() - started) * 1000),
        data=data or None,
    )


class ExtractionProtocol:
    """Navigate, wait, expand, paginate and scrape one visual-search page."""

    def __init__(
        self,
        *,
        selectors: LensSelectors | None = None,
        timings: ProtocolTimings | None = None,
        lens_base_url: str = DEFAULT_LENS_BASE_URL,
    ):
        self.selectors = selectors or LensSelectors()
        self.timings = timings or ProtocolTimings()
        self.lens_base_url = lens_base_url.strip() or DEFAULT_LENS_BASE_URL

    @property
    def _settle_seconds(self) -> float:
        return max(self.timings.settle_delay_ms, 0) / 1000.0

    @property
    def _poll_seconds(self) -> float:
        return max(self.timings.poll_interval_ms, 1) / 1000.0

    async def run(self, context: Any, image_url: str, job_id: str = "-") -> ExtractionResult:
        """Run the protocol on a fresh page of ``context`` and close the page afterwards."""
        page = await context.new_page()
        try:
            return await self.extract(page, image_url, job_id=job_id)
        finally:
            try:
                await page.close()
            except PlaywrightError as exc:
                logger.debug(f"Page close failed for job {job_id}: {exc}")

    async def extract(self, page: Any, image_url: str, *, job_id: str = "-") -> ExtractionResult:
        await self.navigate(page, image_url, job_id=job_id)
        await self.wait_for_results(page, job_id=job_id)
        expanded = await self.trigger_expansion(page, job_id=job_id)
        await self.paginate(page, job_id=job_id)
        return await self.scrape(page, job_id=job_id, require_results=expanded)

    async def navigate(self, page: Any, image_url: str, *, job_id: str = "-") -> None:
        target = build_lens_url(image_url, self.lens_base_url)
        with _timed_step(job_id, "navigate") as step:
            step["url"] = target
            try:
                await page.goto(
                    target,
                    wait_until="networkidle",
                    timeout=self.timings.navigation_timeout_ms,
                )
            except PlaywrightTimeoutError as exc:
                raise NavigationTimeout(f"Navigation to {target} timed out") from exc
            except PlaywrightError as exc:
                if is_session_fatal(exc):
                    raise
                raise ExtractionError(f"Navigation to {target} failed: {exc}") from exc

    async def wait_for_results(self, page: Any, *, job_id: str = "-") -> None:
        with _timed_step(job_id, "wait_for_results"):
            try:
                await wait_for(
                    lambda: self._query(page, self.selectors.results_marker),
                    timeout=self.timings.results_timeout_ms / 1000.0,
                    interval=self._poll_seconds,
                )
            except asyncio.TimeoutError as exc:
                raise ResultsNotFound("Results did not load in time") from exc

    async def trigger_expansion(self, page: Any, *, job_id: str = "-") -> bool:
        """Click the control that reveals exact matches. Returns False when it never shows up."""
        with _timed_step(job_id, "trigger_expansion") as step:
            try:
                await wait_for(
                    lambda: self._visible(page, self.selectors.expand_button),
                    timeout=self.timings.expand_timeout_ms / 1000.0,
                    interval=self._poll_seconds,
                )
            except asyncio.TimeoutError:
                logger.info(f"No expansion control for job {job_id}; continuing without it")
                step["expanded"] = False
                return False

            await self._click(page, self.selectors.expand_button, what="expansion control")
            step["expanded"] = True
            await asyncio.sleep(self._settle_seconds)
            return True

    async def paginate(self, page: Any, *, job_id: str = "-") -> int:
        """Keep loading more exact matches until the control disappears or the cap is hit."""

        async def load_more(_iteration: int) -> None:
            await self._click(page, self.selectors.more_button, what="load-more control")
            await asyncio.sleep(self._settle_seconds)
            try:
                await page.evaluate(SCROLL_SCRIPT)
            except PlaywrightError as exc:
                if is_session_fatal(exc):
                    raise
                raise InteractionFailed(f"Scrolling failed: {exc}") from exc

        with _timed_step(job_id, "paginate") as step:
            outcome = await repeat_while(
                lambda: self._visible(page, self.selectors.more_button),
                load_more,
                max_iterations=self.timings.max_pages,
            )
            step["pages"] = outcome.iterations
            if outcome.capped:
                logger.warning(
                    f"Pagination for job {job_id} stopped at the cap of "
                    f"{self.timings.max_pages} pages with the control still present"
                )
            return outcome.iterations

    async def scrape(
        self, page: Any, *, job_id: str = "-", require_results: bool = True
    ) -> ExtractionResult:
        """Collect the result list. An empty list is only an error when ``require_results`` is set."""
        with _timed_step(job_id, "scrape") as step:
            try:
                raw = await asyncio.wait_for(
                    page.evaluate(SCRAPE_SCRIPT, asdict(self.selectors)),
                    timeout=self.timings.scrape_timeout_ms / 1000.0,
                )
            except asyncio.TimeoutError as exc:
                raise InteractionFailed("Scraping the result list timed out") from exc
            except PlaywrightError as exc:
                if is_session_fatal(exc):
                    raise
                raise InteractionFailed(f"Scraping the result list failed: {exc}") from exc

            records = records_from_raw(raw if isinstance(raw, list) else [])
            step["raw_items"] = len(raw) if isinstance(raw, list) else 0
            step["sources"] = len(records)
            if not records and require_results:
                raise ExtractionEmpty("No related sources were found on the page")
            return ExtractionResult(sources=records)

    async def _click(self, page: Any, selector: str, *, what: str) -> None:
        try:
            await page.click(selector, timeout=self.timings.click_timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise InteractionFailed(f"Clicking the {what} timed out") from exc
        except PlaywrightError as exc:
            if is_session_fatal(exc):
                raise
            raise InteractionFailed(f"Clicking the {what} failed: {exc}") from exc

    async def _query(self, page: Any, selector: str) -> Any:
        # The page may re-render or redirect mid-query; treat that as "not there yet".
        try:
            return await page.query_selector(selector)
        except PlaywrightError as exc:
            if is_session_fatal(exc):
                raise
            logger.debug(f"query_selector({selector!r}) failed: {exc}")
            return None

    async def _visible(self, page: Any, selector: str) -> Any:
        element = await self._query(page, selector)
        if element is None:
            return None
        try:
            return element if await element.is_visible() else None
        except PlaywrightError as exc:
            if is_session_fatal(exc):
                raise
            logger.debug(f"Visibility check for {selector!r} failed: {exc}")
            return None
