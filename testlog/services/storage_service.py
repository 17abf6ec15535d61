import logging
import os
import shutil
from collections.abc import Iterable, Iterator
from pathlib import Path

from testlog.config import get_settings
from testlog.exceptions import StorageError
from testlog.models.asset import MediaAsset
from testlog.utils.paths import managed_relative_path

logger = logging.getLogger(__name__)


class ManagedStorageService:
    """Managed media store laid out as ``{root}/{testKey}/{assetID}/{filename}``."""

    def __init__(self, root: str | Path | None = None) -> None:
        self.root = Path(root) if root is not None else get_settings().media_root_path
        self.root.mkdir(parents=True, exist_ok=True)

    def absolute_path(self, relative_path: str) -> Path:
        return self.root / relative_path

    def relative_path(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def file_exists(self, relative_path: str) -> bool:
        return self.absolute_path(relative_path).is_file()

    def copy_into_storage(
        self, source: str | Path, storage_key: str, asset_id: str, filename: str | None = None
    ) -> str:
        """Copy ``source`` into managed storage; returns the new relative path."""
        source = Path(source)
        relative = managed_relative_path(storage_key, asset_id, filename or source.name)
        destination = self.absolute_path(relative)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            if destination.exists():
                destination.unlink()
            shutil.copy2(source, destination)
        except OSError as e:
            raise StorageError(f"Could not copy {source.name} into managed storage: {e}")
        logger.info("[STORAGE] Copied %s -> %s", source, relative)
        return relative

    def iter_files(self) -> Iterator[Path]:
        """Regular, non-hidden files under the root in sorted order."""
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            for name in sorted(filenames):
                if name.startswith("."):
                    continue
                path = Path(dirpath) / name
                if path.is_file():
                    yield path

    def delete_file(self, relative_path: str) -> bool:
        """Delete a managed file and prune empty parents; False if already gone."""
        path = self.absolute_path(relative_path)
        if not path.exists():
            return False
        path.unlink()
        self.prune_empty_parents(path)
        return True

    def prune_empty_parents(self, path: Path) -> None:
        """Remove empty directories above ``path`` up to, not including, the root."""
        parent = path.parent
        while parent != self.root and self.root in parent.parents:
            try:
                parent.rmdir()
            except OSError:
                break
            parent = parent.parent

    def remove_managed_file_if_unreferenced(
        self, asset: MediaAsset, all_assets: Iterable[MediaAsset]
    ) -> bool:
        """Delete the asset's file when it is a managed copy no other record points at."""
        if not asset.is_managed_copy:
            return False
        for other in all_assets:
            if other.id != asset.id and other.relative_path == asset.relative_path:
                return False
        try:
            removed = self.delete_file(asset.relative_path)
        except OSError as e:
            raise StorageError(f"Could not delete {asset.relative_path}: {e}")
        if removed:
            logger.info("[STORAGE] Removed unreferenced file %s", asset.relative_path)
        return removed
