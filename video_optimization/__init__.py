"""Video Optimization Service.

An HTTP service that re-encodes videos stored in an S3-compatible bucket,
generates thumbnails for them and deletes objects on request.

Modules:
    - core: Configuration, logging, tracing, metrics, storage, rate limiting
    - modules.transcoding: Optimize and thumbnail pipelines
    - modules.objects: Bulk object deletion
    - modules.system_monitoring: Health check and metrics
"""

__version__ = "0.1.0"
