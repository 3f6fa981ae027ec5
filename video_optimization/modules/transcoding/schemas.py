"""Pydantic schemas for the transcoding endpoints."""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from video_optimization.modules.transcoding.models import MediaDescriptor, PipelineResult


class OptimizeRequest(BaseModel):
    """Schema for an optimize request."""
    filename: str = Field(..., description="Name of the source object in the bucket")
    options: Optional[dict[str, str]] = Field(
        default_factory=dict,
        description="Optional 'format' (container, default webm) and 'resolution' ('<height>p')",
    )

    @field_validator("options")
    @classmethod
    def default_options(cls, v: Optional[dict[str, str]]) -> dict[str, str]:
        return v if v is not None else {}


class ThumbnailRequest(BaseModel):
    """Schema for a thumbnail-only request."""
    filename: str = Field(..., description="Name of the source object in the bucket")


class MediaResponse(BaseModel):
    """An uploaded artifact."""
    filename: str
    filesize: int
    height: int
    width: int
    mime_type: str = Field(..., alias="mimeType")

    class Config:
        populate_by_name = True

    @classmethod
    def from_descriptor(cls, descriptor: MediaDescriptor) -> "MediaResponse":
        return cls(
            filename=descriptor.remote_key,
            filesize=descriptor.filesize_bytes,
            height=descriptor.height,
            width=descriptor.width,
            mime_type=descriptor.mime_type,
        )


class OptimizeResponse(BaseModel):
    optimized_video: MediaResponse = Field(..., alias="optimizedVideo")
    thumbnail: MediaResponse

    class Config:
        populate_by_name = True

    @classmethod
    def from_result(cls, result: PipelineResult) -> "OptimizeResponse":
        return cls(
            optimized_video=MediaResponse.from_descriptor(result.video),
            thumbnail=MediaResponse.from_descriptor(result.thumbnail),
        )
