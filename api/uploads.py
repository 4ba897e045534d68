"""
api/uploads.py -- Glue between FastAPI UploadFile parameters and MediaUploader.

Route handlers call these helpers instead of touching app.state.media
directly. MediaUploadError propagates to the handler registered in
api/main.py, which turns it into a 4xx/5xx ErrorResponse.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request, UploadFile

from media.uploader import MediaUploader


def _has_file(file: Optional[UploadFile]) -> bool:
    return file is not None and bool(file.filename)


def upload_optional(
    request: Request,
    file: Optional[UploadFile],
    allowed: tuple[str, ...] = ("image",),
) -> Optional[str]:
    """Upload the file if one was sent. Returns its URL, or None when absent."""
    if not _has_file(file):
        return None
    media: MediaUploader = request.app.state.media
    return media.upload(file.file, file.filename, file.content_type, allowed=allowed)


def replace_media(request: Request, old_url: Optional[str], new_url: Optional[str]) -> None:
    """Delete the previous asset after a successful replacement. Never raises."""
    if new_url and old_url and old_url != new_url:
        media: MediaUploader = request.app.state.media
        media.delete(old_url)
