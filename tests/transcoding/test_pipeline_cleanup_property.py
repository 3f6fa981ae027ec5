"""Property-based tests for temporary file cleanup.

Whatever step fails, a pipeline run leaves nothing behind in its scratch
directory.
"""

import asyncio
import os
import tempfile

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from video_optimization.modules.transcoding.artifacts import TempArtifactScope
from video_optimization.modules.transcoding.models import ArtifactKind
from video_optimization.modules.transcoding.service import PipelineError

FAILURE_POINTS = [
    None,
    "download",
    "transcode",
    "thumbnail",
    "convert",
    "video upload",
    "thumbnail upload",
    "probe",
]

failure_strategy = st.sampled_from(FAILURE_POINTS)
filename_strategy = st.from_regex(r"[a-z][a-z0-9_-]{0,15}\.(mp4|mov|mkv)", fullmatch=True)


def _fail_upload_for(failure):
    if failure == "video upload":
        return lambda key: not key.endswith(".png")
    if failure == "thumbnail upload":
        return lambda key: key.endswith(".png")
    return lambda key: False


class TestPipelineCleanup:

    @given(failure=failure_strategy, filename=filename_strategy)
    @settings(
        max_examples=60,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    def test_optimize_leaves_no_temp_files(
        self, failure, filename, fake_store_factory, fake_runner_factory, service_factory
    ) -> None:
        objects = {} if failure == "download" else {filename: b"source-bytes"}
        store = fake_store_factory(objects, fail_upload=_fail_upload_for(failure))
        fail_steps = {failure} if failure in ("transcode", "thumbnail", "convert", "probe") else set()
        runner = fake_runner_factory(frozenset(fail_steps))

        with tempfile.TemporaryDirectory() as root:
            service = service_factory(store, runner, root)
            try:
                asyncio.run(service.optimize(filename, {}))
            except PipelineError:
                assert failure not in (None, "probe")
            else:
                assert failure in (None, "probe")

            assert os.listdir(root) == []

    @given(failure=st.sampled_from([None, "download", "thumbnail", "thumbnail upload"]))
    @settings(
        max_examples=20,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    def test_thumbnail_only_leaves_no_temp_files(
        self, failure, fake_store_factory, fake_runner_factory, service_factory
    ) -> None:
        objects = {} if failure == "download" else {"clip.mp4": b"source-bytes"}
        store = fake_store_factory(objects, fail_upload=_fail_upload_for(failure))
        runner = fake_runner_factory(frozenset({failure} if failure == "thumbnail" else set()))

        with tempfile.TemporaryDirectory() as root:
            service = service_factory(store, runner, root)
            if failure is None:
                asyncio.run(service.thumbnail_only("clip.mp4"))
            else:
                with pytest.raises(PipelineError):
                    asyncio.run(service.thumbnail_only("clip.mp4"))

            assert os.listdir(root) == []


class TestTempArtifactScope:

    def test_registered_files_removed_on_exception(self, tmp_path) -> None:
        with pytest.raises(RuntimeError):
            with TempArtifactScope(str(tmp_path)) as scope:
                path = scope.path_for("clip.mp4")
                scope.register(path, ArtifactKind.SOURCE)
                with open(path, "wb") as f:
                    f.write(b"data")
                raise RuntimeError("step failed")

        assert os.listdir(tmp_path) == []

    def test_missing_artifacts_are_ignored(self, tmp_path) -> None:
        with TempArtifactScope(str(tmp_path)) as scope:
            scope.register(scope.path_for("never-written.png"), ArtifactKind.THUMBNAIL)

        assert os.listdir(tmp_path) == []

    def test_cleanup_is_idempotent(self, tmp_path) -> None:
        scope = TempArtifactScope(str(tmp_path)).open()
        scope.cleanup()
        scope.cleanup()

        assert scope.artifacts == []
        assert os.listdir(tmp_path) == []

    def test_cleanup_runs_newest_first(self, tmp_path) -> None:
        scope = TempArtifactScope(str(tmp_path)).open()
        scope.register(scope.path_for("a"), ArtifactKind.SOURCE)
        scope.register(scope.path_for("b"), ArtifactKind.VIDEO)

        kinds = [artifact.kind for artifact in scope.artifacts]
        assert kinds == [ArtifactKind.WORKDIR, ArtifactKind.SOURCE, ArtifactKind.VIDEO]

        scope.cleanup()
        assert not os.path.exists(scope.workdir)

    def test_path_for_requires_open_scope(self) -> None:
        with pytest.raises(RuntimeError):
            TempArtifactScope().path_for("clip.mp4")
