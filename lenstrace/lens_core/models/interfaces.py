from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class ExtractionRequest:
    image_url: str
    bypass_cache: bool = False


@dataclass(frozen=True, slots=True)
class SourceRecord:
    position: int
    link: str
    title: str | None = None
    source_name: str | None = None
    source_logo_url: str | None = None
    thumbnail_url: str | None = None
    image_width: int | None = None
    image_height: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "position": self.position,
            "title": self.title,
            "source": self.source_name,
            "source_logo": self.source_logo_url,
            "link": self.link,
            "thumbnail": self.thumbnail_url,
            "actual_image_width": self.image_width,
            "actual_image_height": self.image_height,
        }


@dataclass(frozen=True, slots=True)
class ExtractionResult:
    sources: tuple[SourceRecord, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {"image_sources": [source.to_dict() for source in self.sources]}


@dataclass(frozen=True, slots=True)
class LensSelectors:
    """CSS selectors for the visual-search page. Defaults track the live markup."""

    results_marker: str = 'div.LHkehc[role="button"] div.WF9wo'
    expand_button: str = "button.VfPpkd-LgbsSe.VfPpkd-LgbsSe-OWXEXe-INsAgc"
    more_button: str = "div.rqhI4d button.VfPpkd-LgbsSe"
    result_item: str = "li.anSuc a.GZrdsf"
    title: str = ".iJmjmd"
    source_name: str = ".ShWW9"
    source_logo: str = ".RpIXBb img"
    thumbnail: str = ".GqnSBe img"
    dimensions: str = ".QJLLAc"


@dataclass(frozen=True, slots=True)
class ProtocolTimings:
    navigation_timeout_ms: int = 60000
    results_timeout_ms: int = 60000
    expand_timeout_ms: int = 10000
    click_timeout_ms: int = 10000
    scrape_timeout_ms: int = 30000
    settle_delay_ms: int = 3000
    poll_interval_ms: int = 250
    max_pages: int = 50
