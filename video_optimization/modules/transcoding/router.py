"""Transcoding API router.

Both endpoints run the pipeline as a separate task and cancel it when the
client goes away, so a dropped connection also stops ffmpeg.
"""

import asyncio
import logging
from typing import Awaitable, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from video_optimization.core.security import require_api_key
from video_optimization.modules.transcoding.schemas import (
    MediaResponse,
    OptimizeRequest,
    OptimizeResponse,
    ThumbnailRequest,
)
from video_optimization.modules.transcoding.service import PipelineError, TranscodingService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["transcoding"], dependencies=[Depends(require_api_key)])

# Non-standard status used by nginx for requests the client abandoned
CLIENT_CLOSED_REQUEST = 499

DISCONNECT_POLL_INTERVAL = 0.5

T = TypeVar("T")


class ClientDisconnectedError(Exception):
    """Raised when the client disconnected before the pipeline finished."""
    pass


def get_transcoding_service(request: Request) -> TranscodingService:
    return request.app.state.transcoding_service


async def run_until_disconnect(
    request: Request,
    work: Awaitable[T],
    poll_interval: float = DISCONNECT_POLL_INTERVAL,
) -> T:
    """Await ``work``, cancelling it if the client disconnects first.

    Raises:
        ClientDisconnectedError: if the work was cancelled for that reason
    """
    task = asyncio.ensure_future(work)
    disconnected = False

    async def watch() -> None:
        nonlocal disconnected
        while not task.done():
            if await request.is_disconnected():
                disconnected = True
                task.cancel()
                return
            await asyncio.sleep(poll_interval)

    watcher = asyncio.create_task(watch())
    try:
        return await task
    except asyncio.CancelledError:
        if disconnected:
            raise ClientDisconnectedError() from None
        task.cancel()
        raise
    finally:
        watcher.cancel()


def _to_http_error(error: PipelineError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.public_message)


@router.post("/optimize", response_model=OptimizeResponse)
async def optimize_video(
    request: Request,
    body: OptimizeRequest,
    service: TranscodingService = Depends(get_transcoding_service),
):
    """Re-encode a stored video and generate its thumbnail."""
    try:
        result = await run_until_disconnect(
            request, service.optimize(body.filename, body.options)
        )
    except ClientDisconnectedError:
        logger.info("Client disconnected during optimization", extra={"source_key": body.filename})
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    except PipelineError as e:
        raise _to_http_error(e)

    return OptimizeResponse.from_result(result)


@router.post("/thumbnail", response_model=MediaResponse)
async def generate_thumbnail(
    request: Request,
    body: ThumbnailRequest,
    service: TranscodingService = Depends(get_transcoding_service),
):
    try:
        descriptor = await run_until_disconnect(request, service.thumbnail_only(body.filename))
    except ClientDisconnectedError:
        logger.info("Client disconnected during thumbnail generation", extra={"source_key": body.filename})
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    except PipelineError as e:
        raise _to_http_error(e)

    return MediaResponse.from_descriptor(descriptor)
