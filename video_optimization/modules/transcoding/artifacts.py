"""Lifecycle of the local files created by one pipeline run."""

import logging
import os
import shutil
import tempfile
from typing import Optional

from video_optimization.core.metrics import TEMP_CLEANUP_FAILURES_TOTAL
from video_optimization.modules.transcoding.models import ArtifactKind, TempArtifact

logger = logging.getLogger(__name__)


class TempArtifactScope:
    """Owns a private working directory and every file registered in it.

    Files are registered as soon as a step is about to create them and are
    removed, newest first, when the ``with`` block exits for any reason.
    Removal is best-effort: failures are logged and never raised.

    Usage:
        with TempArtifactScope(root) as scope:
            path = scope.path_for("clip.mp4")
            scope.register(path, ArtifactKind.SOURCE)
            ...
    """

    def __init__(self, root: Optional[str] = None, prefix: str = "video-optimization-"):
        self.root = root
        self.prefix = prefix
        self.workdir: Optional[str] = None
        self._artifacts: list[TempArtifact] = []

    def open(self) -> "TempArtifactScope":
        """Create the working directory.

        Raises:
            OSError: if the directory cannot be created
        """
        if self.workdir is None:
            self.workdir = tempfile.mkdtemp(prefix=self.prefix, dir=self.root)
            self.register(self.workdir, ArtifactKind.WORKDIR)
        return self

    def __enter__(self) -> "TempArtifactScope":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.cleanup()
        return False

    @property
    def artifacts(self) -> list[TempArtifact]:
        return list(self._artifacts)

    def path_for(self, filename: str) -> str:
        if self.workdir is None:
            raise RuntimeError("scope has not been entered")
        return os.path.join(self.workdir, filename)

    def register(
        self,
        local_path: str,
        kind: ArtifactKind,
        remote_key: str = "",
    ) -> TempArtifact:
        artifact = TempArtifact(local_path=local_path, kind=kind, remote_key=remote_key)
        self._artifacts.append(artifact)
        return artifact

    def cleanup(self) -> None:
        """Remove every registered artifact. Safe to call more than once."""
        while self._artifacts:
            self._remove(self._artifacts.pop())

    def _remove(self, artifact: TempArtifact) -> None:
        try:
            if artifact.kind is ArtifactKind.WORKDIR:
                shutil.rmtree(artifact.local_path)
            else:
                os.remove(artifact.local_path)
        except FileNotFoundError:
            # The step that would have produced it never got that far
            logger.debug("Temp artifact already absent", extra={"path": artifact.local_path})
        except OSError as e:
            TEMP_CLEANUP_FAILURES_TOTAL.inc()
            logger.warning(
                "Error removing temp artifact",
                extra={
                    "path": artifact.local_path,
                    "kind": artifact.kind.value,
                    "error": str(e),
                },
            )
