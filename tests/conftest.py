"""Shared fakes and fixtures.

The object store and the tool runner are replaced by in-memory doubles; the
fake ffmpeg writes real files so size and dimension probes see real data.
"""

import os
from typing import Callable, Optional

import pytest
from PIL import Image

from video_optimization.core.config import Settings
from video_optimization.core.storage import StorageError, StorageResult
from video_optimization.modules.transcoding.ffmpeg import (
    FFmpegTranscoder,
    ToolFailedError,
    ToolResult,
)
from video_optimization.modules.transcoding.probe import MetadataProbe
from video_optimization.modules.transcoding.service import TranscodingService

API_KEY = "right"
SERVER_URL = "https://app.example.com"

FRAME_SIZE = (320, 180)
VIDEO_DIMENSIONS = "1280x720\n"


class FakeObjectStore:
    """Dict-backed stand-in for ObjectStore."""

    def __init__(
        self,
        objects: Optional[dict[str, bytes]] = None,
        fail_upload: Callable[[str], bool] = lambda key: False,
        fail_delete: Callable[[str], bool] = lambda key: False,
    ):
        self.objects = dict(objects or {})
        self.content_types: dict[str, str] = {}
        self.fail_upload = fail_upload
        self.fail_delete = fail_delete
        self.deleted: list[str] = []

    def download(self, key: str, destination: str) -> None:
        if key not in self.objects:
            raise StorageError("download", key, "NoSuchKey")
        with open(destination, "wb") as f:
            f.write(self.objects[key])

    def upload(self, file_path: str, key: str, content_type: str = "application/octet-stream") -> StorageResult:
        if self.fail_upload(key):
            raise StorageError("upload", key, "AccessDenied")
        with open(file_path, "rb") as f:
            self.objects[key] = f.read()
        self.content_types[key] = content_type
        return StorageResult(key=key, url=f"https://r2.example.com/bucket/{key}", file_size=len(self.objects[key]))

    def delete(self, key: str) -> None:
        if self.fail_delete(key):
            raise StorageError("delete", key, "InternalError")
        self.objects.pop(key, None)
        self.deleted.append(key)


class FakeToolRunner:
    """Imitates ffmpeg and ffprobe.

    ``fail_steps`` may contain ``transcode``, ``thumbnail``, ``convert`` or
    ``probe``. A failing ffmpeg step still leaves a partial output file
    behind, like a real encoder killed halfway.
    """

    def __init__(self, fail_steps: frozenset = frozenset()):
        self.fail_steps = set(fail_steps)
        self.calls: list[tuple[str, list[str]]] = []

    @staticmethod
    def step_for(command: str, args: list[str]) -> str:
        if os.path.basename(command) == "ffprobe":
            return "probe"
        if "-vframes" in args:
            return "thumbnail"
        if args[-1].endswith(".png"):
            return "convert"
        return "transcode"

    async def run(self, command, args, timeout=None, merge_stderr=True) -> ToolResult:
        args = list(args)
        self.calls.append((command, args))
        step = self.step_for(command, args)

        if step == "probe":
            if step in self.fail_steps:
                raise ToolFailedError(command, args, "exit status 1", "moov atom not found")
            return ToolResult(command, args, 0, VIDEO_DIMENSIONS, 0.0)

        output_path = args[-1]
        if step in self.fail_steps:
            with open(output_path, "wb") as f:
                f.write(b"partial")
            raise ToolFailedError(command, args, "exit status 1", "Conversion failed!")

        if step == "transcode":
            with open(output_path, "wb") as f:
                f.write(b"\x1a\x45\xdf\xa3" + b"\x00" * 2048)
        else:
            Image.new("RGB", FRAME_SIZE, color=(10, 20, 30)).save(output_path, format="PNG")
        return ToolResult(command, args, 0, "", 0.0)


def build_service(
    store: FakeObjectStore,
    runner: FakeToolRunner,
    temp_dir: str,
    suffix_factory: Optional[Callable[[], str]] = None,
    probe: Optional[MetadataProbe] = None,
) -> TranscodingService:
    kwargs = {}
    if suffix_factory is not None:
        kwargs["suffix_factory"] = suffix_factory
    return TranscodingService(
        store=store,
        transcoder=FFmpegTranscoder(runner),
        probe=probe or MetadataProbe(runner),
        temp_dir=temp_dir,
        **kwargs,
    )


@pytest.fixture
def fake_store_factory():
    return FakeObjectStore


@pytest.fixture
def fake_runner_factory():
    return FakeToolRunner


@pytest.fixture
def service_factory():
    return build_service


@pytest.fixture
def work_dir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return str(path)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        SERVER_URL=SERVER_URL,
        R2_ENDPOINT="https://r2.example.com",
        R2_BUCKET="media",
        R2_ACCESS_KEY_ID="access",
        R2_SECRET_ACCESS_KEY="secret",
        VIDEO_OPTIMIZATION_API_KEY=API_KEY,
        TEMP_DIR=str(tmp_path),
    )
