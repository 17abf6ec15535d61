"""Asset kind and content type inference from file extensions."""

import mimetypes
from pathlib import PurePath

from testlog.models.enums import AssetType

VIDEO_EXTENSIONS = frozenset({"mov", "mp4", "m4v"})
TESTER_DATA_EXTENSIONS = frozenset({"lby"})
PHOTO_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "heic", "heif"})

# Types the platform table does not always know
_EXTRA_CONTENT_TYPES = {
    "mov": "video/quicktime",
    "m4v": "video/x-m4v",
    "heic": "image/heic",
    "heif": "image/heif",
    "lby": "application/octet-stream",
}


def file_extension(filename: str) -> str:
    return PurePath(filename).suffix.lstrip(".").lower()


def infer_asset_type(filename: str) -> AssetType:
    ext = file_extension(filename)
    if ext in VIDEO_EXTENSIONS:
        return AssetType.VIDEO
    if ext in TESTER_DATA_EXTENSIONS:
        return AssetType.TESTER_DATA
    if ext in PHOTO_EXTENSIONS:
        return AssetType.PHOTO
    return AssetType.DOCUMENT


def guess_content_type(filename: str) -> str | None:
    ext = file_extension(filename)
    if ext in _EXTRA_CONTENT_TYPES:
        return _EXTRA_CONTENT_TYPES[ext]
    content_type, _ = mimetypes.guess_type(filename)
    return content_type
