from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, field_validator

from lenstrace.tools import web_utils


# --- Requests ---


class UploadRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    image_url: StrictStr = Field(alias="imageUrl")
    bypass_cache: StrictBool = Field(default=False, alias="bypassCache")
    no_cache: StrictBool = False  # historical name for bypassCache

    @field_validator("image_url")
    @classmethod
    def _check_uri(cls, value: str) -> str:
        value = value.strip()
        if not web_utils.is_valid_url(value):
            raise ValueError("must be a valid uri")
        return value

    @property
    def wants_bypass(self) -> bool:
        return self.bypass_cache or self.no_cache


# --- Responses ---


class SourceRecordResponse(BaseModel):
    position: int
    title: str | None = None
    source: str | None = None
    source_logo: str | None = None
    link: str
    thumbnail: str | None = None
    actual_image_width: int | None = None
    actual_image_height: int | None = None


class UploadResponse(BaseModel):
    image_sources: list[SourceRecordResponse]


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    status: str
    service: str
    pool: dict[str, int]
    cache_entries: int
