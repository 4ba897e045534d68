"""
media/uploader.py -- Upload and delete media on Cloudinary.

Uses the cloudinary SDK (cloudinary.uploader.upload / destroy). The SDK is
configured once when a configured MediaUploader is created.

MediaUploader is created once at startup (api/main.py lifespan) and kept on
app.state.media. Route handlers pass it the UploadFile's underlying file
object; nothing is written to local disk.

Accepted types and per-type size caps:
  image    -- jpeg, png, gif, webp, svg     5 MB
  video    -- mp4, webm, ogg               50 MB
  document -- pdf, doc, docx               10 MB

Cloudinary URLs look like
    https://res.cloudinary.com/<cloud>/image/upload/v1712345678/newsdesk/abc123.jpg
and the public id needed to delete the asset is "newsdesk/abc123": the path
after "upload/", without the version segment and without the extension.

Layer rule: no imports from api/, auth/, or cms/.
"""

from __future__ import annotations

import logging
import re
from typing import BinaryIO, Optional

import cloudinary
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError

logger = logging.getLogger("newsdesk.media")

_MB = 1024 * 1024

ALLOWED_TYPES: dict[str, tuple[str, ...]] = {
    "image": ("image/jpeg", "image/png", "image/gif", "image/webp", "image/svg+xml"),
    "video": ("video/mp4", "video/webm", "video/ogg"),
    "document": (
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ),
}

SIZE_LIMITS: dict[str, int] = {
    "image": 5 * _MB,
    "video": 50 * _MB,
    "document": 10 * _MB,
}

_VERSION_SEGMENT = re.compile(r"^v\d+$")


class MediaUploadError(Exception):
    """Raised when a file is rejected or the media host call fails.

    code is one of: unsupported_media_type, file_too_large, empty_file,
    media_unavailable, upload_failed.
    """

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def classify(content_type: Optional[str], allowed: tuple[str, ...] = tuple(ALLOWED_TYPES)) -> str:
    """Return the media category ("image", "video", "document") for a MIME type.

    Raises MediaUploadError if the type is not accepted or its category is
    not in `allowed`.
    """
    for category in allowed:
        if content_type in ALLOWED_TYPES[category]:
            return category
    accepted = ", ".join(allowed)
    raise MediaUploadError("unsupported_media_type", f"File type not allowed. Allowed types: {accepted}.")


def public_id_from_url(url: Optional[str]) -> Optional[str]:
    """Extract the Cloudinary public id from a delivery URL, or None if not one."""
    if not url:
        return None
    parts = url.split("?", 1)[0].split("/")
    if "upload" not in parts:
        return None
    rest = parts[parts.index("upload") + 1 :]
    if rest and _VERSION_SEGMENT.match(rest[0]):
        rest = rest[1:]
    if not rest or not rest[-1]:
        return None
    stem = rest[-1].rsplit(".", 1)[0]
    return "/".join(rest[:-1] + [stem])


def resource_type_from_url(url: Optional[str]) -> str:
    """'image', 'video' or 'raw' -- the path segment before "upload"."""
    parts = (url or "").split("/")
    if "upload" in parts:
        index = parts.index("upload")
        if index > 0 and parts[index - 1] in ("image", "video", "raw"):
            return parts[index - 1]
    return "image"


class MediaUploader:
    """Validating wrapper around the Cloudinary upload API.

    Usage:
        media = MediaUploader("cloud", "key", "secret", folder="newsdesk")
        url = media.upload(upload_file.file, upload_file.filename, upload_file.content_type)
        media.delete(url)
    """

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        folder: str = "newsdesk",
        timeout: float = 30,
    ) -> None:
        self.cloud_name = cloud_name
        self.folder = folder
        self._timeout = timeout
        self.enabled = bool(cloud_name and api_key and api_secret)
        if self.enabled:
            cloudinary.config(cloud_name=cloud_name, api_key=api_key, api_secret=api_secret, secure=True)
        else:
            logger.warning("Cloudinary is not configured -- media uploads are disabled")

    @classmethod
    def from_settings(cls, settings) -> MediaUploader:
        return cls(
            settings.cloudinary_cloud_name,
            settings.cloudinary_api_key,
            settings.cloudinary_api_secret,
            folder=settings.cloudinary_folder,
        )

    def upload(
        self,
        file: BinaryIO,
        filename: Optional[str],
        content_type: Optional[str],
        allowed: tuple[str, ...] = tuple(ALLOWED_TYPES),
    ) -> str:
        """Validate and upload one file. Returns the secure delivery URL."""
        category = classify(content_type, allowed)
        limit = SIZE_LIMITS[category]
        # Read one byte past the cap so oversize files are detected without
        # loading the whole body.
        data = file.read(limit + 1)
        if len(data) > limit:
            raise MediaUploadError(
                "file_too_large", f"File size exceeds limit. Maximum size for {category}: {limit // _MB}MB."
            )
        if not data:
            raise MediaUploadError("empty_file", "Uploaded file is empty.")
        if not self.enabled:
            raise MediaUploadError("media_unavailable", "Media uploads are not configured.")

        logger.info("Uploading %s %r (%d bytes) to Cloudinary", category, filename, len(data))
        try:
            result = cloudinary.uploader.upload(
                data,
                resource_type="auto",
                folder=self.folder,
                filename=filename,
                timeout=self._timeout,
            )
        except (CloudinaryError, OSError) as exc:
            logger.error("Cloudinary upload of %r failed: %s", filename, exc)
            raise MediaUploadError("upload_failed", "Error while uploading file.") from exc

        url = (result or {}).get("secure_url")
        if not url:
            logger.error("Cloudinary upload of %r returned no URL", filename)
            raise MediaUploadError("upload_failed", "Error while uploading file.")
        return url

    def delete(self, url: Optional[str]) -> bool:
        """Destroy the asset behind a delivery URL. Returns True on success.

        Failures are logged and reported as False; callers replacing an image
        carry on with the update.
        """
        public_id = public_id_from_url(url)
        if public_id is None or not self.enabled:
            return False
        try:
            result = cloudinary.uploader.destroy(
                public_id,
                resource_type=resource_type_from_url(url),
                invalidate=True,
                timeout=self._timeout,
            )
        except (CloudinaryError, OSError) as exc:
            logger.warning("Cloudinary delete of %s failed: %s", public_id, exc)
            return False
        outcome = (result or {}).get("result")
        if outcome != "ok":
            logger.warning("Cloudinary delete of %s returned %r", public_id, outcome)
            return False
        logger.info("Deleted %s from Cloudinary", public_id)
        return True
