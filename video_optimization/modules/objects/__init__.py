"""Object management module."""

from video_optimization.modules.objects.router import router as objects_router

__all__ = ["objects_router"]
