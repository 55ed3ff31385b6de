import logging
import os
import uuid
from dataclasses import dataclass
from typing import Protocol

from admission_desk.core.errors import StorageError, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_PHOTO_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


@dataclass
class PhotoUpload:
    filename: str
    content_type: str
    content: bytes


class PhotoStorage(Protocol):
    def save(self, photo: PhotoUpload) -> str:
        """Store the photo and return the URL it is served from."""

    def discard(self, url: str) -> None:
        """Remove a photo whose application was never stored."""


def validate_photo(photo: PhotoUpload, max_bytes: int) -> str:
    """Returns the file extension for an acceptable photo."""
    extension = ALLOWED_PHOTO_TYPES.get((photo.content_type or "").lower())
    if extension is None:
        raise ValidationError({"photo": "Photo must be a JPEG, PNG, GIF or WebP image"})
    if not photo.content:
        raise ValidationError({"photo": "Photo file is empty"})
    if len(photo.content) > max_bytes:
        raise ValidationError({"photo": f"Photo must be at most {max_bytes // (1024 * 1024)} MB"})
    return extension


class LocalPhotoStorage:
    """Writes photos under ``upload_dir`` and serves them from ``base_url``."""

    def __init__(self, upload_dir: str, base_url: str):
        self.upload_dir = upload_dir
        self.base_url = base_url.rstrip("/")

    def save(self, photo: PhotoUpload) -> str:
        extension = ALLOWED_PHOTO_TYPES[photo.content_type.lower()]
        unique_filename = f"{uuid.uuid4()}.{extension}"
        try:
            os.makedirs(self.upload_dir, exist_ok=True)
            with open(os.path.join(self.upload_dir, unique_filename), "wb") as buffer:
                buffer.write(photo.content)
        except OSError as e:
            logger.exception("Photo upload failed")
            raise StorageError(f"Error uploading photo: {e}")
        return f"{self.base_url}/{unique_filename}"

    def discard(self, url: str) -> None:
        filename = os.path.basename(url)
        try:
            os.remove(os.path.join(self.upload_dir, filename))
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning(f"Could not remove orphaned photo {filename}", exc_info=True)
