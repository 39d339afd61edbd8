from pydantic_settings import BaseSettings

from lenstrace.lens_core.models.interfaces import LensSelectors, ProtocolTimings


class Settings(BaseSettings):
    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: str = "*"
    trust_forwarded_for: bool = False

    # Session pool
    max_sessions: int = 5
    max_queue: int = 100
    warm_sessions: int = 0
    max_jobs_per_session: int = 50
    browser_headless: bool = True
    browser_args: str = "--no-sandbox,--disable-setuid-sandbox"

    # Result cache
    cache_ttl_seconds: int = 3600  # 0 disables caching
    cache_max_entries: int = 1000

    # Rate limiting
    rate_limit_window_seconds: int = 60
    rate_limit_max_requests: int = 10  # 0 disables limiting

    # Extraction protocol timing
    navigation_timeout_ms: int = 60000
    results_timeout_ms: int = 60000
    expand_timeout_ms: int = 10000
    click_timeout_ms: int = 10000
    scrape_timeout_ms: int = 30000
    settle_delay_ms: int = 3000
    poll_interval_ms: int = 250
    max_pages: int = 50

    # Third-party page contract
    lens_base_url: str = "https://lens.google.com/uploadbyurl"
    selector_results_marker: str = 'div.LHkehc[role="button"] div.WF9wo'
    selector_expand_button: str = "button.VfPpkd-LgbsSe.VfPpkd-LgbsSe-OWXEXe-INsAgc"
    selector_more_button: str = "div.rqhI4d button.VfPpkd-LgbsSe"
    selector_result_item: str = "li.anSuc a.GZrdsf"
    selector_title: str = ".iJmjmd"
    selector_source_name: str = ".ShWW9"
    selector_source_logo: str = ".RpIXBb img"
    selector_thumbnail: str = ".GqnSBe img"
    selector_dimensions: str = ".QJLLAc"

    # App
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_to_file: bool = True
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def browser_arg_list(self) -> list[str]:
        return [a.strip() for a in self.browser_args.split(",") if a.strip()]

    def lens_selectors(self) -> LensSelectors:
        return LensSelectors(
            results_marker=self.selector_results_marker,
            expand_button=self.selector_expand_button,
            more_button=self.selector_more_button,
            result_item=self.selector_result_item,
            title=self.selector_title,
            source_name=self.selector_source_name,
            source_logo=self.selector_source_logo,
            thumbnail=self.selector_thumbnail,
            dimensions=self.selector_dimensions,
        )

    def protocol_timings(self) -> ProtocolTimings:
        return ProtocolTimings(
            navigation_timeout_ms=self.navigation_timeout_ms,
            results_timeout_ms=self.results_timeout_ms,
            expand_timeout_ms=self.expand_timeout_ms,
            click_timeout_ms=self.click_timeout_ms,
            scrape_timeout_ms=self.scrape_timeout_ms,
            settle_delay_ms=self.settle_delay_ms,
            poll_interval_ms=self.poll_interval_ms,
            max_pages=self.max_pages,
        )


settings = Settings()
