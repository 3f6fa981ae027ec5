"""FFmpeg invocation utilities.

Runs external tools under a deadline and builds the ffmpeg argument lists
for re-encoding, frame extraction and thumbnail conversion.
"""

import asyncio
import logging
import os
import re
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from video_optimization.core.metrics import TOOL_INVOCATIONS_TOTAL

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30 * 60

RESOLUTION_PATTERN = re.compile(r"([0-9]+)p")

# Fixed encoding profile: VP9 video, Opus audio
VIDEO_CODEC_ARGS = (
    "-c:v", "libvpx-vp9",
    "-crf", "30",
    "-b:v", "1M",
    "-c:a", "libopus",
    "-b:a", "128k",
)

THUMBNAIL_OFFSET = "00:00:01"


@dataclass
class ToolResult:
    """Outcome of a successful tool invocation."""
    command: str
    args: list[str]
    returncode: int
    output: str
    duration: float


class ToolFailedError(Exception):
    """Raised when an external tool exits non-zero, times out or cannot start.

    ``output`` holds the captured diagnostics and is meant for logs only.
    """

    def __init__(
        self,
        command: str,
        args: Sequence[str],
        exit_info: str,
        output: str = "",
    ):
        self.command = command
        self.tool_args = list(args)
        self.exit_info = exit_info
        self.output = output
        super().__init__(f"command {command} failed: {exit_info}")


class ToolRunner:
    """Runs an external command as an asyncio subprocess.

    The process is killed when the deadline passes or when the awaiting
    task is cancelled. Failed invocations are never retried.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.timeout = timeout

    async def run(
        self,
        command: str,
        args: Sequence[str],
        timeout: Optional[float] = None,
        merge_stderr: bool = True,
    ) -> ToolResult:
        """Run ``command`` with ``args`` and wait for it to finish.

        Args:
            command: Executable name or path
            args: Arguments, not including the executable
            timeout: Deadline in seconds (defaults to the runner's timeout)
            merge_stderr: Capture stderr together with stdout; when False
                only stdout is returned and stderr is kept for error reports

        Returns:
            ToolResult with the captured output

        Raises:
            ToolFailedError: on non-zero exit, timeout or launch failure
        """
        args = list(args)
        deadline = self.timeout if timeout is None else timeout
        label = os.path.basename(command)
        start_time = time.perf_counter()

        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT if merge_stderr else asyncio.subprocess.PIPE,
            )
        except OSError as e:
            TOOL_INVOCATIONS_TOTAL.labels(command=label, status="error").inc()
            self._log_failure(command, args, str(e), "")
            raise ToolFailedError(command, args, f"failed to start: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=deadline)
        except asyncio.TimeoutError:
            await self._kill(process)
            TOOL_INVOCATIONS_TOTAL.labels(command=label, status="timeout").inc()
            exit_info = f"timed out after {deadline}s"
            self._log_failure(command, args, exit_info, "")
            raise ToolFailedError(command, args, exit_info)
        except asyncio.CancelledError:
            await self._kill(process)
            TOOL_INVOCATIONS_TOTAL.labels(command=label, status="cancelled").inc()
            logger.warning(
                "Command cancelled",
                extra={"command": command, "tool_args": args},
            )
            raise

        output = _decode(stdout)
        if process.returncode != 0:
            diagnostics = output if merge_stderr else _decode(stderr)
            TOOL_INVOCATIONS_TOTAL.labels(command=label, status="failed").inc()
            exit_info = f"exit status {process.returncode}"
            self._log_failure(command, args, exit_info, diagnostics)
            raise ToolFailedError(command, args, exit_info, diagnostics)

        TOOL_INVOCATIONS_TOTAL.labels(command=label, status="ok").inc()
        return ToolResult(
            command=command,
            args=args,
            returncode=process.returncode,
            output=output,
            duration=time.perf_counter() - start_time,
        )

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()

    @staticmethod
    def _log_failure(command: str, args: list[str], error: str, output: str) -> None:
        logger.error(
            "Error running command",
            extra={
                "command": command,
                "tool_args": args,
                "error": error,
                "output": output,
            },
        )


def _decode(data: Optional[bytes]) -> str:
    return data.decode("utf-8", errors="replace") if data else ""


def resolution_to_scale(resolution: Optional[str]) -> Optional[str]:
    """Translate ``"<height>p"`` into an ffmpeg scale expression.

    The width is ``-1`` so ffmpeg derives it from the source aspect ratio.

    >>> resolution_to_scale("720p")
    '-1:720'
    >>> resolution_to_scale("720") is None
    True
    """
    if not resolution:
        return None
    match = RESOLUTION_PATTERN.fullmatch(resolution)
    if not match:
        return None
    height = int(match.group(1))
    if height <= 0:
        return None
    return f"-1:{height}"


class FFmpegTranscoder:
    """Builds and runs the ffmpeg steps of the pipeline."""

    def __init__(self, runner: ToolRunner, ffmpeg_path: str = "ffmpeg"):
        self.runner = runner
        self.ffmpeg_path = ffmpeg_path

    def build_transcode_command(
        self,
        input_path: str,
        output_path: str,
        resolution: Optional[str] = None,
    ) -> list[str]:
        """Arguments for re-encoding ``input_path`` into ``output_path``."""
        args = ["-i", input_path]

        scale = resolution_to_scale(resolution)
        if scale:
            args.extend(["-vf", f"scale={scale}"])

        args.extend(VIDEO_CODEC_ARGS)
        args.extend(["-y", output_path])
        return args

    def build_thumbnail_command(self, input_path: str, output_path: str) -> list[str]:
        """Arguments for grabbing a single frame one second in."""
        return [
            "-i", input_path,
            "-ss", THUMBNAIL_OFFSET,
            "-vframes", "1",
            "-y",
            output_path,
        ]

    def build_convert_command(self, input_path: str, output_path: str) -> list[str]:
        """Arguments for re-encoding the raw frame into the delivery format."""
        return ["-i", input_path, "-y", output_path]

    async def transcode(
        self,
        input_path: str,
        output_path: str,
        resolution: Optional[str] = None,
    ) -> ToolResult:
        args = self.build_transcode_command(input_path, output_path, resolution)
        logger.info(
            "Optimizing video",
            extra={"input_path": input_path, "optimized_path": output_path, "tool_args": args},
        )
        return await self.runner.run(self.ffmpeg_path, args)

    async def extract_thumbnail(self, input_path: str, output_path: str) -> ToolResult:
        args = self.build_thumbnail_command(input_path, output_path)
        logger.info("Generating thumbnail", extra={"thumbnail_path": output_path})
        return await self.runner.run(self.ffmpeg_path, args)

    async def convert_thumbnail(self, input_path: str, output_path: str) -> ToolResult:
        args = self.build_convert_command(input_path, output_path)
        logger.info("Converting thumbnail", extra={"converted_thumbnail_path": output_path})
        return await self.runner.run(self.ffmpeg_path, args)
