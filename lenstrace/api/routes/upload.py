from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Request

from lenstrace.api.deps import get_client_id, get_coordinator
from lenstrace.lens_core.coordinator import RequestCoordinator
from lenstrace.models.schemas import ErrorResponse, UploadResponse
from lenstrace.services import logger as log_service

router = APIRouter(prefix="/api", tags=["upload"])


@router.post(
    "/upload",
    response_model=UploadResponse,
    responses={400: {"model": ErrorResponse}, 429: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def upload(
    request: Request,
    coordinator: RequestCoordinator = Depends(get_coordinator),
    client_id: str = Depends(get_client_id),
):
    """Find pages that carry visually similar images for the given image URL."""
    body = await request.body()
    if not body.strip():
        # An empty body is an empty object, so validation names the missing field.
        payload = {}
    else:
        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            # Rejected by validation, after rate limiting.
            payload = None

    result = await coordinator.handle(payload, client_id)
    log_service.log_event(
        event_type="upload_completed",
        message="Related sources returned",
        client_id=client_id,
        sources=len(result.sources),
    )
    return result.to_dict()
