from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator

# Input length limits
MAX_TITLE_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 5000


class Video(BaseModel):
    """A video record as stored and as returned by the API."""

    id: str
    user_id: str
    title: str
    description: str = ""
    thumbnail_url: Optional[str] = None
    video_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("description", mode="before")
    @classmethod
    def default_description(cls, v):
        return v if v is not None else ""


class VideoCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH)
    description: str = Field("", max_length=MAX_DESCRIPTION_LENGTH)

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Title is required")
        return v


class HealthResponse(BaseModel):
    status: str  # healthy, unhealthy
    checks: Dict[str, bool]
