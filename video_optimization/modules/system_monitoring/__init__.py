"""System monitoring module.

Provides the health check and the Prometheus scrape endpoint.
"""

from video_optimization.modules.system_monitoring.router import router as system_monitoring_router

__all__ = ["system_monitoring_router"]
