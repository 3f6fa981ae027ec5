"""Transcoding pipeline orchestration.

Two flows share one shape: download the source object into a private
working directory, run ffmpeg, upload the results, probe them, and always
remove every local file the run created.
"""

import asyncio
import logging
import os
import re
import time
import uuid
from contextlib import contextmanager
from typing import Callable, Mapping, Optional

from video_optimization.core.config import Settings
from video_optimization.core.metrics import PIPELINE_RUNS_TOTAL, PIPELINE_STEP_DURATION_SECONDS
from video_optimization.core.storage import ObjectStore, StorageError
from video_optimization.core.tracing import create_span
from video_optimization.modules.transcoding.artifacts import TempArtifactScope
from video_optimization.modules.transcoding.ffmpeg import FFmpegTranscoder, ToolFailedError, ToolRunner
from video_optimization.modules.transcoding.models import (
    DEFAULT_FORMAT,
    THUMBNAIL_MIME_TYPE,
    ArtifactKind,
    MediaDescriptor,
    OutputKeys,
    PipelineFlow,
    PipelineResult,
)
from video_optimization.modules.transcoding.probe import MetadataProbe, ProbeError

logger = logging.getLogger(__name__)

FORMAT_PATTERN = re.compile(r"[A-Za-z0-9]+")


class PipelineError(Exception):
    """Base exception for pipeline failures.

    ``str(error)`` carries internal detail for logs; ``public_message`` is
    the only text that may be shown to clients.
    """

    stage = "pipeline"
    status_code = 500

    def __init__(self, message: Optional[str] = None, stage: Optional[str] = None):
        if stage:
            self.stage = stage
        super().__init__(message or f"{self.stage} failed")

    @property
    def public_message(self) -> str:
        return f"{self.stage} failed"


class InvalidArgumentError(PipelineError):
    stage = "request validation"
    status_code = 400

    @property
    def public_message(self) -> str:
        return str(self)


class DownloadFailedError(PipelineError):
    stage = "download"


class TranscodeFailedError(PipelineError):
    stage = "video optimization"


class ThumbnailFailedError(PipelineError):
    stage = "thumbnail generation"


class ThumbnailConvertFailedError(PipelineError):
    stage = "thumbnail conversion"


class UploadFailedError(PipelineError):
    stage = "upload"


class StatFailedError(PipelineError):
    stage = "file info"


def sanitize_source_key(source_key: Optional[str]) -> str:
    """Reduce a requested object name to its base name.

    Raises:
        InvalidArgumentError: if nothing usable remains
    """
    if not source_key:
        raise InvalidArgumentError("filename is required")
    base_name = os.path.basename(source_key.rstrip("/"))
    if base_name in ("", ".", ".."):
        raise InvalidArgumentError("filename is invalid")
    return base_name


def get_stem(filename: str) -> str:
    """Filename without its last extension."""
    return os.path.splitext(filename)[0]


def resolve_format(options: Mapping[str, str]) -> str:
    """Target container from the request options, ``webm`` by default."""
    fmt = options.get("format") or DEFAULT_FORMAT
    if not FORMAT_PATTERN.fullmatch(fmt):
        raise InvalidArgumentError("format is invalid")
    return fmt


class TranscodingService:
    """Runs the optimize and thumbnail flows against the object store."""

    def __init__(
        self,
        store: ObjectStore,
        transcoder: FFmpegTranscoder,
        probe: MetadataProbe,
        temp_dir: Optional[str] = None,
        suffix_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.store = store
        self.transcoder = transcoder
        self.probe = probe
        self.temp_dir = temp_dir
        self._suffix_factory = suffix_factory

    @classmethod
    def from_settings(cls, settings: Settings, store: ObjectStore) -> "TranscodingService":
        runner = ToolRunner(timeout=settings.TOOL_TIMEOUT_SECONDS)
        return cls(
            store=store,
            transcoder=FFmpegTranscoder(runner, ffmpeg_path=settings.FFMPEG_PATH),
            probe=MetadataProbe(runner, ffprobe_path=settings.FFPROBE_PATH),
            temp_dir=settings.TEMP_DIR,
        )

    async def optimize(
        self,
        source_key: str,
        options: Optional[Mapping[str, str]] = None,
    ) -> PipelineResult:
        """Re-encode a stored video and derive a thumbnail from it.

        Args:
            source_key: Name of the source object (reduced to its base name)
            options: Optional ``format`` and ``resolution`` (``"<height>p"``)

        Returns:
            Descriptors of the uploaded video and converted thumbnail

        Raises:
            InvalidArgumentError: on a missing filename or unusable format
            PipelineError: subclass naming the step that failed
        """
        options = options or {}
        base_name = sanitize_source_key(source_key)
        keys = OutputKeys(
            stem=get_stem(base_name),
            suffix=self._suffix_factory(),
            format=resolve_format(options),
        )

        async def run(scope: TempArtifactScope) -> PipelineResult:
            source_path = await self._download(scope, base_name)

            optimized_path = scope.path_for(keys.optimized)
            scope.register(optimized_path, ArtifactKind.VIDEO, keys.optimized)
            with self._step("transcode"):
                try:
                    await self.transcoder.transcode(
                        source_path, optimized_path, options.get("resolution")
                    )
                except ToolFailedError as e:
                    raise TranscodeFailedError(str(e)) from e
            logger.info("Successfully optimized video", extra={"optimized_file": keys.optimized})

            thumbnail_path = scope.path_for(keys.thumbnail)
            scope.register(thumbnail_path, ArtifactKind.THUMBNAIL, keys.thumbnail)
            with self._step("thumbnail"):
                try:
                    await self.transcoder.extract_thumbnail(source_path, thumbnail_path)
                except ToolFailedError as e:
                    raise ThumbnailFailedError(str(e)) from e

            converted_path = scope.path_for(keys.converted_thumbnail)
            scope.register(
                converted_path, ArtifactKind.CONVERTED_THUMBNAIL, keys.converted_thumbnail
            )
            with self._step("convert"):
                try:
                    await self.transcoder.convert_thumbnail(thumbnail_path, converted_path)
                except ToolFailedError as e:
                    raise ThumbnailConvertFailedError(str(e)) from e
            logger.info(
                "Successfully generated and converted thumbnail",
                extra={"converted_thumbnail_file": keys.converted_thumbnail},
            )

            await self._upload(optimized_path, keys.optimized, keys.video_mime_type, "video upload")
            await self._upload(
                converted_path, keys.converted_thumbnail, THUMBNAIL_MIME_TYPE, "thumbnail upload"
            )

            video = await self._describe_video(optimized_path, keys.optimized, keys.video_mime_type)
            thumbnail = self._describe_image(converted_path, keys.converted_thumbnail)
            return PipelineResult(video=video, thumbnail=thumbnail)

        return await self._execute(PipelineFlow.OPTIMIZE, base_name, run)

    async def thumbnail_only(self, source_key: str) -> MediaDescriptor:
        """Extract one frame from a stored video and upload it as PNG.

        The output key has no unique suffix, so repeated calls for the same
        source overwrite each other.
        """
        base_name = sanitize_source_key(source_key)
        thumbnail_key = f"{get_stem(base_name)}_thumbnail.png"

        async def run(scope: TempArtifactScope) -> MediaDescriptor:
            source_path = await self._download(scope, base_name)

            thumbnail_path = scope.path_for(thumbnail_key)
            scope.register(thumbnail_path, ArtifactKind.THUMBNAIL, thumbnail_key)
            with self._step("thumbnail"):
                try:
                    await self.transcoder.extract_thumbnail(source_path, thumbnail_path)
                except ToolFailedError as e:
                    raise ThumbnailFailedError(str(e)) from e
            logger.info("Successfully generated thumbnail", extra={"thumbnail_file": thumbnail_key})

            await self._upload(thumbnail_path, thumbnail_key, THUMBNAIL_MIME_TYPE, "thumbnail upload")
            return self._describe_image(thumbnail_path, thumbnail_key)

        return await self._execute(PipelineFlow.THUMBNAIL, base_name, run)

    async def _execute(self, flow: PipelineFlow, base_name: str, run):
        scope = TempArtifactScope(self.temp_dir)
        try:
            scope.open()
        except OSError as e:
            PIPELINE_RUNS_TOTAL.labels(flow=flow.value, outcome="failed").inc()
            raise DownloadFailedError(f"failed to create working directory: {e}") from e

        try:
            with scope, create_span(f"pipeline.{flow.value}", attributes={"filename": base_name}):
                result = await run(scope)
        except PipelineError as e:
            PIPELINE_RUNS_TOTAL.labels(flow=flow.value, outcome="failed").inc()
            logger.error(
                "Pipeline failed",
                extra={"flow": flow.value, "source_key": base_name, "stage": e.stage, "error": str(e)},
            )
            raise
        except asyncio.CancelledError:
            PIPELINE_RUNS_TOTAL.labels(flow=flow.value, outcome="cancelled").inc()
            logger.warning("Pipeline cancelled", extra={"flow": flow.value, "source_key": base_name})
            raise

        PIPELINE_RUNS_TOTAL.labels(flow=flow.value, outcome="succeeded").inc()
        return result

    @contextmanager
    def _step(self, name: str):
        start_time = time.perf_counter()
        try:
            with create_span(f"pipeline.step.{name}"):
                yield
        finally:
            PIPELINE_STEP_DURATION_SECONDS.labels(step=name).observe(time.perf_counter() - start_time)

    async def _download(self, scope: TempArtifactScope, base_name: str) -> str:
        local_path = scope.path_for(base_name)
        scope.register(local_path, ArtifactKind.SOURCE, base_name)

        logger.info("Downloading file from storage", extra={"source_key": base_name})
        with self._step("download"):
            try:
                await asyncio.to_thread(self.store.download, base_name, local_path)
            except StorageError as e:
                raise DownloadFailedError(f'failed to download "{base_name}": {e}') from e
        return local_path

    async def _upload(self, local_path: str, key: str, content_type: str, stage: str) -> None:
        logger.info("Uploading file to storage", extra={"key": key, "content_type": content_type})
        with self._step("upload"):
            try:
                await asyncio.to_thread(self.store.upload, local_path, key, content_type)
            except StorageError as e:
                raise UploadFailedError(str(e), stage=stage) from e

    def _file_size(self, local_path: str, label: str) -> int:
        try:
            return self.probe.file_size(local_path)
        except OSError as e:
            raise StatFailedError(f"failed to get {label} file info: {e}", stage=f"{label} file info") from e

    async def _describe_video(self, local_path: str, key: str, mime_type: str) -> MediaDescriptor:
        filesize = self._file_size(local_path, "video")
        try:
            width, height = await self.probe.video_dimensions(local_path)
        except ProbeError as e:
            logger.warning("Failed to get video dimensions", extra={"key": key, "error": str(e)})
            width, height = 0, 0
        return MediaDescriptor(
            remote_key=key,
            filesize_bytes=filesize,
            width=width,
            height=height,
            mime_type=mime_type,
        )

    def _describe_image(self, local_path: str, key: str) -> MediaDescriptor:
        filesize = self._file_size(local_path, "thumbnail")
        try:
            width, height = self.probe.image_dimensions(local_path)
        except ProbeError as e:
            logger.warning("Failed to get thumbnail dimensions", extra={"key": key, "error": str(e)})
            width, height = 0, 0
        return MediaDescriptor(
            remote_key=key,
            filesize_bytes=filesize,
            width=width,
            height=height,
            mime_type=THUMBNAIL_MIME_TYPE,
        )
