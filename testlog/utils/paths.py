from pathlib import PurePosixPath

_UNSAFE_FOLDER_CHARS = ("/", ":", " ")


def safe_folder_name(value: str) -> str:
    """Filesystem-safe folder name: slashes, colons and spaces become ``-``."""
    for char in _UNSAFE_FOLDER_CHARS:
        value = value.replace(char, "-")
    return value


def managed_relative_path(storage_key: str, asset_id: str, filename: str) -> str:
    """``{storageKey}/{assetID}/{originalFilename}`` relative to the storage root."""
    return str(PurePosixPath(safe_folder_name(storage_key), asset_id, PurePosixPath(filename).name))


def top_level_folder(relative_path: str) -> str | None:
    parts = PurePosixPath(relative_path).parts
    return parts[0] if len(parts) > 1 else None
