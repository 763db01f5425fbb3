"""Profile image storage under ``<uploads>/avatars``."""

from pathlib import Path

import structlog
from fastapi import UploadFile

from taskdesk.config import get_settings
from taskdesk.exceptions import NotFoundError, ValidationError
from taskdesk.services.task_files import (
    file_extension,
    safe_file_name,
    stored_file_name,
    write_upload,
)

logger = structlog.get_logger()
settings = get_settings()


class AvatarService:
    """Stores profile images. Only JPEG and PNG are accepted."""

    def __init__(self, uploads_dir: str | Path | None = None):
        self.root = Path(uploads_dir or settings.uploads_dir) / "avatars"

    async def store(self, upload: UploadFile) -> str:
        """Write the image to disk and return its stored name."""
        if upload is None or not upload.filename:
            raise ValidationError("No file uploaded", field="image")

        content_type = (upload.content_type or "").lower()
        extension = file_extension(upload.filename)
        if (
            content_type not in settings.avatar_content_types
            or extension not in settings.avatar_extensions
        ):
            raise ValidationError("Only jpeg, jpg and png formats are allowed", field="image")

        stored_name = stored_file_name(upload.filename)
        size, _ = await write_upload(upload, self.root / stored_name, settings.max_avatar_bytes)

        logger.info("avatar_uploaded", stored_name=stored_name, size_bytes=size)
        return stored_name

    def path_for(self, name: str) -> Path:
        """Resolve a stored name. Anything that is not a stored image is not found."""
        if safe_file_name(name) != name:
            raise NotFoundError("Image")
        path = self.root / name
        if not path.is_file():
            raise NotFoundError("Image")
        return path
