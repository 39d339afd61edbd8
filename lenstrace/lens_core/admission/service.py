from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import ValidationError as PydanticValidationError

from lenstrace.lens_core.models.errors import ValidationError
from lenstrace.lens_core.models.interfaces import ExtractionRequest
from lenstrace.models.schemas import UploadRequest
from lenstrace.services.logger import logger

_MESSAGES_BY_TYPE = {
    "missing": "is required",
    "string_type": "must be a string",
    "bool_type": "must be a boolean",
    "extra_forbidden": "is not allowed",
}


def _describe(exc: PydanticValidationError) -> str:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "value"
    error_type = first.get("type", "")
    if error_type in _MESSAGES_BY_TYPE:
        return f'"{field}" {_MESSAGES_BY_TYPE[error_type]}'
    if error_type == "value_error":
        reason = (first.get("ctx") or {}).get("error")
        return f'"{field}" {reason or "is invalid"}'
    return f'"{field}" {first.get("msg", "is invalid")}'


def validate(raw: Any) -> ExtractionRequest:
    """Check the shape of a request body and turn it into an ExtractionRequest."""
    if not isinstance(raw, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        body = UploadRequest.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError(_describe(exc)) from exc
    return ExtractionRequest(image_url=body.image_url, bypass_cache=body.wants_bypass)


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: float


@dataclass(slots=True)
class _Window:
    started_at: float
    hits: int = 0


class RateLimiter:
    """Fixed-window request counter per client."""

    SWEEP_THRESHOLD = 1024

    def __init__(
        self,
        *,
        max_requests: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = int(max_requests)
        self.window_seconds = max(float(window_seconds), 0.001)
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    @property
    def enabled(self) -> bool:
        return self.max_requests > 0

    def admit(self, client_id: str) -> bool:
        return self.check(client_id).allowed

    def check(self, client_id: str) -> RateLimitDecision:
        if not self.enabled:
            return RateLimitDecision(allowed=True, limit=0, remaining=0, retry_after=0.0)

        now = self._clock()
        if len(self._windows) > self.SWEEP_THRESHOLD:
            self._sweep(now)

        window = self._windows.get(client_id)
        if window is None or now - window.started_at >= self.window_seconds:
            window = _Window(started_at=now)
            self._windows[client_id] = window

        window.hits += 1
        retry_after = window.started_at + self.window_seconds - now
        allowed = window.hits <= self.max_requests
        if not allowed:
            logger.info(f"Rate limit hit for client {client_id} ({window.hits} requests)")
        return RateLimitDecision(
            allowed=allowed,
            limit=self.max_requests,
            remaining=max(self.max_requests - window.hits, 0),
            retry_after=max(math.ceil(retry_after), 0),
        )

    def _sweep(self, now: float) -> None:
        stale = [
            client_id
            for client_id, window in self._windows.items()
            if now - window.started_at >= self.window_seconds
        ]
        for client_id in stale:
            del self._windows[client_id]
