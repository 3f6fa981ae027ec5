"""Read size and pixel dimensions of pipeline outputs."""

import logging
import os

from PIL import Image, UnidentifiedImageError

from video_optimization.modules.transcoding.ffmpeg import ToolFailedError, ToolRunner

logger = logging.getLogger(__name__)


class ProbeError(Exception):
    """Raised when dimensions cannot be determined."""
    pass


def parse_dimensions(output: str) -> tuple[int, int]:
    """Parse ffprobe's ``WxH`` output line.

    Raises:
        ProbeError: unless the line has exactly two integer parts
    """
    dims = output.strip()
    parts = dims.split("x")
    if len(parts) != 2:
        raise ProbeError(f"unexpected dimensions format: {dims!r}")
    try:
        width = int(parts[0])
        height = int(parts[1])
    except ValueError as e:
        raise ProbeError(f"failed to parse dimensions {dims!r}: {e}") from e
    return width, height


class MetadataProbe:
    """Read-only inspection of local media files."""

    def __init__(self, runner: ToolRunner, ffprobe_path: str = "ffprobe"):
        self.runner = runner
        self.ffprobe_path = ffprobe_path

    def build_dimensions_command(self, path: str) -> list[str]:
        return [
            "-v", "error",
            "-select_streams", "v:0",
            "-show_entries", "stream=width,height",
            "-of", "csv=s=x:p=0",
            path,
        ]

    async def video_dimensions(self, path: str) -> tuple[int, int]:
        """Width and height of the first video stream.

        Raises:
            ProbeError: if ffprobe fails or prints something unexpected
        """
        try:
            result = await self.runner.run(
                self.ffprobe_path,
                self.build_dimensions_command(path),
                merge_stderr=False,
            )
        except ToolFailedError as e:
            raise ProbeError(f"failed to get video dimensions: {e}") from e
        return parse_dimensions(result.output)

    def image_dimensions(self, path: str) -> tuple[int, int]:
        """Width and height read from the image header.

        Pillow opens images lazily, so only the header is parsed here.

        Raises:
            ProbeError: if the file cannot be opened or is not an image
        """
        try:
            with Image.open(path) as image:
                return image.size
        except (UnidentifiedImageError, OSError) as e:
            raise ProbeError(f"failed to decode image config: {e}") from e

    def file_size(self, path: str) -> int:
        return os.stat(path).st_size
