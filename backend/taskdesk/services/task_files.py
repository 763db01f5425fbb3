"""Task file storage: blobs on local disk, metadata in ``task_files``."""

import hashlib
import re
import time
from pathlib import Path
from typing import Any

import structlog
from fastapi import UploadFile
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskdesk.config import get_settings
from taskdesk.exceptions import NotFoundError, PayloadTooLargeError, ValidationError
from taskdesk.models.task import Task, TaskFile
from taskdesk.services import history
from taskdesk.services.access_control import Principal, require_task_access

logger = structlog.get_logger()
settings = get_settings()

CHUNK_SIZE = 1024 * 1024
_UNSAFE_CHARS = re.compile(r"[^\w.\-]+")


def safe_file_name(name: str | None) -> str:
    """Strip directories and replace anything but word chars, dots and dashes."""
    base = Path(name or "").name
    cleaned = _UNSAFE_CHARS.sub("_", base).strip("._")
    return cleaned or "file"


def stored_file_name(original_name: str | None) -> str:
    return f"{int(time.time() * 1000)}-{safe_file_name(original_name)}"


def file_extension(name: str | None) -> str:
    """Lower-cased extension of the name as it will be stored on disk."""
    return Path(safe_file_name(name)).suffix.lower()


def unlink_quietly(path: str | Path) -> None:
    """Remove a stored blob. Failures are logged and ignored."""
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as e:
        logger.warning("file_unlink_failed", path=str(path), error=str(e))


async def write_upload(upload: UploadFile, target: Path, max_bytes: int) -> tuple[int, str]:
    """Stream an upload to ``target``, enforcing ``max_bytes`` as it goes.

    Returns:
        Tuple of (size in bytes, SHA-1 hex digest)
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    digest = hashlib.sha1()
    size = 0
    try:
        with open(target, "wb") as f:
            while True:
                chunk = await upload.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > max_bytes:
                    raise PayloadTooLargeError(f"File too large. Maximum size: {max_bytes} bytes")
                digest.update(chunk)
                f.write(chunk)
    except Exception:
        unlink_quietly(target)
        raise
    return size, digest.hexdigest()


def file_snapshot(task_file: TaskFile) -> dict[str, Any]:
    return {
        "original_name": task_file.original_name,
        "mime_type": task_file.mime_type,
        "size_bytes": task_file.size_bytes,
        "tags": task_file.tags,
    }


class TaskFileService:
    """Service for files attached to tasks.

    Every operation is gated by task read access.
    """

    def __init__(self, db: AsyncSession, uploads_dir: str | Path | None = None):
        self.db = db
        self.root = Path(uploads_dir or settings.uploads_dir) / "tasks"

    async def _load_task(self, principal: Principal, task_id: int) -> Task:
        task = await self.db.get(Task, task_id)
        if task is None:
            raise NotFoundError("Task")
        require_task_access(principal, task)
        return task

    async def _load_file(self, task_id: int, file_id: int) -> TaskFile:
        task_file = await self.db.get(TaskFile, file_id)
        # A file of another task is reported the same as a missing one
        if task_file is None or task_file.task_id != task_id:
            raise NotFoundError("File")
        return task_file

    async def list_files(self, principal: Principal, task_id: int) -> list[TaskFile]:
        """Files of a task, newest first."""
        await self._load_task(principal, task_id)
        result = await self.db.execute(
            select(TaskFile)
            .where(TaskFile.task_id == task_id)
            .order_by(TaskFile.id.desc())
        )
        return list(result.scalars().all())

    async def get_file(self, principal: Principal, task_id: int, file_id: int) -> TaskFile:
        await self._load_task(principal, task_id)
        task_file = await self._load_file(task_id, file_id)
        if not Path(task_file.storage_path).is_file():
            raise NotFoundError("File")
        return task_file

    async def upload(
        self,
        principal: Principal,
        task_id: int,
        upload: UploadFile,
    ) -> TaskFile:
        """Store an uploaded file for a task."""
        await self._load_task(principal, task_id)

        if upload is None or not upload.filename:
            raise ValidationError("A file is required", field="file")
        # Checked against the name that lands on disk
        extension = file_extension(upload.filename)
        blocked = {ext.lower() for ext in settings.blocked_upload_extensions}
        if extension in blocked:
            raise ValidationError(f"File type not allowed: {extension}", field="file")

        stored_name = stored_file_name(upload.filename)
        target = self.root / str(task_id) / stored_name
        size, checksum = await write_upload(upload, target, settings.max_upload_bytes)

        task_file = TaskFile(
            task_id=task_id,
            original_name=upload.filename,
            stored_name=stored_name,
            mime_type=upload.content_type or "application/octet-stream",
            size_bytes=size,
            storage_path=str(target),
            uploaded_by=principal.id,
            tags=None,
            checksum_sha1=checksum,
        )
        self.db.add(task_file)
        try:
            await self.db.flush()
            history.record(
                self.db,
                task_id=task_id,
                actor_id=principal.id,
                action="file_added",
                entity="file",
                entity_id=task_file.id,
                new=file_snapshot(task_file),
            )
            await self.db.commit()
        except Exception:
            unlink_quietly(target)
            raise

        logger.info(
            "task_file_uploaded",
            task_id=task_id,
            file_id=task_file.id,
            size_bytes=size,
            uploaded_by=principal.id,
        )
        return task_file

    async def delete_file(self, principal: Principal, task_id: int, file_id: int) -> None:
        await self._load_task(principal, task_id)
        task_file = await self._load_file(task_id, file_id)

        storage_path = task_file.storage_path
        before = file_snapshot(task_file)
        await self.db.delete(task_file)
        history.record(
            self.db,
            task_id=task_id,
            actor_id=principal.id,
            action="file_deleted",
            entity="file",
            entity_id=file_id,
            old=before,
        )
        await self.db.commit()

        unlink_quietly(storage_path)
        logger.info("task_file_deleted", task_id=task_id, file_id=file_id, actor_id=principal.id)

    async def update_tags(
        self,
        principal: Principal,
        task_id: int,
        file_id: int,
        tags: Any,
    ) -> TaskFile:
        """Replace the tags of a file. ``None`` clears them."""
        await self._load_task(principal, task_id)
        task_file = await self._load_file(task_id, file_id)

        task_file.tags = tags
        await self.db.commit()
        return task_file
