"""Object management API router."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from video_optimization.core.security import require_api_key
from video_optimization.modules.objects.schemas import DeleteRequest, DeleteResponse
from video_optimization.modules.objects.service import ObjectDeleteError, ObjectService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["objects"], dependencies=[Depends(require_api_key)])


def get_object_service(request: Request) -> ObjectService:
    return ObjectService(request.app.state.store)


@router.post("/delete", response_model=DeleteResponse)
async def delete_objects(
    body: DeleteRequest,
    service: ObjectService = Depends(get_object_service),
) -> DeleteResponse:
    """Delete every listed object; stops at the first failure."""
    if not body.filenames:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="at least one filename is required",
        )

    try:
        await service.delete_all(body.filenames)
    except ObjectDeleteError as e:
        logger.error(
            "Failed to delete object",
            extra={"key": e.key, "deleted": e.deleted, "error": str(e)},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="failed to delete object",
        )

    return DeleteResponse(message="Files deleted")
