"""Domain types for the transcoding pipeline."""

from dataclasses import dataclass
from enum import Enum

DEFAULT_FORMAT = "webm"
THUMBNAIL_MIME_TYPE = "image/png"


class ArtifactKind(str, Enum):
    """What a local temporary file holds."""
    WORKDIR = "workdir"
    SOURCE = "source"
    VIDEO = "video"
    THUMBNAIL = "thumbnail"
    CONVERTED_THUMBNAIL = "converted_thumbnail"


class PipelineFlow(str, Enum):
    OPTIMIZE = "optimize"
    THUMBNAIL = "thumbnail"


@dataclass
class TempArtifact:
    """A local file owned by one pipeline run."""
    local_path: str
    kind: ArtifactKind
    remote_key: str = ""


@dataclass
class MediaDescriptor:
    """Uploaded artifact as reported back to the client."""
    remote_key: str
    filesize_bytes: int
    width: int
    height: int
    mime_type: str


@dataclass
class PipelineResult:
    """Outcome of the optimize flow."""
    video: MediaDescriptor
    thumbnail: MediaDescriptor


@dataclass
class OutputKeys:
    """Remote object keys derived from one source name."""
    stem: str
    suffix: str
    format: str

    @property
    def optimized(self) -> str:
        return f"{self.stem}_{self.suffix}.{self.format}"

    @property
    def thumbnail(self) -> str:
        return f"{self.stem}_{self.suffix}_thumbnail.png"

    @property
    def converted_thumbnail(self) -> str:
        return f"{self.stem}_{self.suffix}_thumbnail_converted.png"

    @property
    def video_mime_type(self) -> str:
        return f"video/{self.format}"
