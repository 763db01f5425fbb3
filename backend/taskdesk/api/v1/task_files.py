"""Task file endpoints: upload, list, download, delete and tag."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, File, UploadFile, status
from fastapi.responses import FileResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from taskdesk.api.v1.auth import CurrentPrincipal
from taskdesk.db.session import get_db_session
from taskdesk.services.task_files import TaskFileService

router = APIRouter()


class TaskFileResponse(BaseModel):
    id: int
    task_id: int
    original_name: str
    stored_name: str
    mime_type: str
    size_bytes: int
    uploaded_by: int | None
    tags: Any | None
    checksum_sha1: str | None
    created_at: datetime

    class Config:
        from_attributes = True


class TagsUpdate(BaseModel):
    tags: Any | None = None


@router.get("/{task_id}/files", response_model=list[TaskFileResponse])
async def list_task_files(
    task_id: int,
    principal: CurrentPrincipal,
    db: AsyncSession = Depends(get_db_session),
):
    return await TaskFileService(db).list_files(principal, task_id)


@router.post(
    "/{task_id}/files",
    response_model=TaskFileResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_task_file(
    task_id: int,
    principal: CurrentPrincipal,
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db_session),
):
    return await TaskFileService(db).upload(principal, task_id, file)


@router.get("/{task_id}/files/{file_id}/download")
async def download_task_file(
    task_id: int,
    file_id: int,
    principal: CurrentPrincipal,
    db: AsyncSession = Depends(get_db_session),
) -> FileResponse:
    task_file = await TaskFileService(db).get_file(principal, task_id, file_id)
    return FileResponse(
        task_file.storage_path,
        media_type=task_file.mime_type or "application/octet-stream",
        filename=task_file.original_name,
    )


@router.delete("/{task_id}/files/{file_id}")
async def delete_task_file(
    task_id: int,
    file_id: int,
    principal: CurrentPrincipal,
    db: AsyncSession = Depends(get_db_session),
) -> dict[str, str]:
    await TaskFileService(db).delete_file(principal, task_id, file_id)
    return {"message": "File deleted"}


@router.put("/{task_id}/files/{file_id}/tags", response_model=TaskFileResponse)
async def update_task_file_tags(
    task_id: int,
    file_id: int,
    body: TagsUpdate,
    principal: CurrentPrincipal,
    db: AsyncSession = Depends(get_db_session),
):
    return await TaskFileService(db).update_tags(principal, task_id, file_id, body.tags)
