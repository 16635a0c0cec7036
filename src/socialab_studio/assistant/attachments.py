"""Image attachments: validation and conversion to URLs the agent can fetch."""

from __future__ import annotations

import base64
import io
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Protocol

from PIL import Image, UnidentifiedImageError

from socialab_studio.config.constants import IMAGE_EXT_MEDIA_TYPES
from socialab_studio.config.logging import get_logger
from socialab_studio.exceptions import UnsupportedAttachmentError, UploadError

logger = get_logger(__name__)


@dataclass
class LocalFile:
    """A file picked or dropped by the user, read into memory."""

    name: str
    media_type: str
    data: bytes

    @property
    def is_image(self) -> bool:
        return self.media_type.startswith("image/")

    @classmethod
    def from_path(cls, path: str | Path) -> "LocalFile":
        p = Path(path)
        data = p.read_bytes()
        media_type = IMAGE_EXT_MEDIA_TYPES.get(p.suffix.lower())
        if media_type is None:
            media_type = sniff_image_media_type(data) or (
                mimetypes.guess_type(p.name)[0] or "application/octet-stream"
            )
        return cls(name=p.name, media_type=media_type, data=data)


def sniff_image_media_type(data: bytes) -> str | None:
    """Detect an image media type from file contents, or None if not an image."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
    except (UnidentifiedImageError, OSError):
        return None
    return Image.MIME.get(fmt) if fmt else None


def select_image_files(files: Iterable[LocalFile]) -> LocalFile:
    """Pick the first image among dropped files; the rest are ignored.

    Raises:
        UnsupportedAttachmentError: If none of the files is an image.
    """
    files = list(files)
    for f in files:
        if f.is_image:
            if len(files) > 1:
                logger.debug("Ignoring %d extra dropped files", len(files) - 1)
            return f
    raise UnsupportedAttachmentError(
        "Only images are supported", details=", ".join(f.name for f in files) or None
    )


class AttachmentUploader(Protocol):
    """Converts a local file into a URL the agent service can read."""

    async def to_url(self, file: LocalFile) -> str: ...


class DataUrlUploader:
    """Inlines the file as a base64 ``data:`` URL."""

    async def to_url(self, file: LocalFile) -> str:
        if not file.data:
            raise UploadError(f"{file.name} is empty")
        enc = base64.b64encode(file.data).decode("utf-8")
        return f"data:{file.media_type};base64,{enc}"


async def upload_image(uploader: AttachmentUploader, file: LocalFile) -> str:
    """Validate and upload one image, wrapping uploader failures in UploadError."""
    if not file.is_image:
        raise UnsupportedAttachmentError("Only images are supported", details=file.name)
    try:
        return await uploader.to_url(file)
    except UploadError:
        raise
    except Exception as e:
        logger.warning("Upload of %s failed: %s", file.name, e)
        raise UploadError(f"Could not upload {file.name}", details=str(e)) from e
