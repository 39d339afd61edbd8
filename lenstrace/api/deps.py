from __future__ import annotations

from fastapi import Request

from lenstrace.config import settings
from lenstrace.lens_core.coordinator import RequestCoordinator


def get_coordinator(request: Request) -> RequestCoordinator:
    return request.app.state.coordinator


def get_client_id(request: Request) -> str:
    """Identify the caller for rate limiting: peer address, or first forwarded hop when trusted."""
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "unknown"
