"""Pydantic schemas for object management."""

from pydantic import BaseModel, Field


class DeleteRequest(BaseModel):
    filenames: list[str] = Field(..., description="Keys of the objects to delete, in order")


class DeleteResponse(BaseModel):
    message: str
