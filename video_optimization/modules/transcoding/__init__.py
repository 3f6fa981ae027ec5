"""Transcoding module.

Downloads a source video from object storage, re-encodes it with ffmpeg,
derives a PNG thumbnail and uploads the results.
"""

from video_optimization.modules.transcoding.router import router as transcoding_router

__all__ = ["transcoding_router"]
