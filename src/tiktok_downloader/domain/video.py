"""Domain models for resolved videos and the video-info API.

Field names are camelCase because they are serialized verbatim into API
responses consumed by the browser frontend.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class Quality(str, Enum):
    """Media variants a provider may expose, in preference order."""

    STANDARD = "standard"
    HD = "hd"
    WATERMARK = "watermark"


class Author(BaseModel):
    model_config = ConfigDict(frozen=True)

    nickname: str = Field(default="Unknown Creator", description="Display name")
    uniqueId: str = Field(default="unknown", description="Handle without the leading @")
    avatar: str = Field(default="", description="Avatar image URL")


class Statistics(BaseModel):
    model_config = ConfigDict(frozen=True)

    likes: int = 0
    shares: int = 0
    comments: int = 0
    plays: int = 0
    downloads: int = 0


class QualityOption(BaseModel):
    """A single playable variant of a video."""

    model_config = ConfigDict(frozen=True)

    quality: Quality = Field(description="Variant tag")
    url: str = Field(description="Direct media URL on the provider's CDN")


class VideoRecord(BaseModel):
    """Canonical, provider-independent description of a resolved video.

    Notes
    -----
    - Built only by the normalizers in ``services.normalize``; a record always
      carries at least one entry in ``qualities``.
    - ``qualities`` is ordered standard, hd, watermark with absent variants
      skipped.
    - ``sourceTag`` names the resolver endpoint that produced the payload.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str = ""
    author: Author = Field(default_factory=Author)
    duration: int = 0
    cover: Optional[str] = None
    music: Any = Field(default_factory=dict, description="Provider music payload, passed through")
    statistics: Statistics = Field(default_factory=Statistics)
    qualities: list[QualityOption] = Field(default_factory=list)
    analyzedAt: str = Field(description="UTC ISO-8601 timestamp of the resolution")
    sourceTag: str = Field(description="Resolver endpoint that produced this record")

    def select_quality(self, requested: str) -> Optional[QualityOption]:
        """Return the requested variant, else the first one, else ``None``."""

        for option in self.qualities:
            if option.quality.value == requested:
                return option
        return self.qualities[0] if self.qualities else None


class VideoInfoRequest(BaseModel):
    """Request payload for ``POST /api/tiktok/video-info``.

    ``tiktokUrl`` is optional at the schema level so a missing value yields
    the API's own 400 message rather than a generic 422.
    """

    tiktokUrl: Optional[str] = Field(default=None, description="Shareable TikTok video URL")


class VideoInfoResponse(BaseModel):
    success: bool = True
    message: str = "Video analyzed successfully"
    data: VideoRecord


class ErrorResponse(BaseModel):
    """Failure envelope shared by every JSON error the API returns."""

    success: bool = False
    message: str
    error: Optional[str] = None
