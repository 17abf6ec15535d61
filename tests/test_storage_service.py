"""Tests for the managed storage layout."""

import pytest

from testlog.exceptions import StorageError
from testlog.models.asset import MediaAsset
from testlog.models.enums import AssetType


class TestManagedStorageService:
    """Tests for ManagedStorageService."""

    def test_copy_into_storage(self, storage, tmp_path):
        """Test copying a file into its managed location."""
        source = tmp_path / "clip.mov"
        source.write_bytes(b"video")

        relative = storage.copy_into_storage(source, "PT 1", "asset-1")

        assert relative == "PT-1/asset-1/clip.mov"
        assert storage.absolute_path(relative).read_bytes() == b"video"
        assert source.exists()

    def test_copy_replaces_existing_destination(self, storage, tmp_path, write_file):
        """Test that an existing destination is replaced."""
        write_file(storage.absolute_path("PT-1/asset-1/clip.mov"), b"old")
        source = tmp_path / "clip.mov"
        source.write_bytes(b"new")

        relative = storage.copy_into_storage(source, "PT-1", "asset-1")
        assert storage.absolute_path(relative).read_bytes() == b"new"

    def test_copy_missing_source(self, storage, tmp_path):
        """Test copying a missing source."""
        with pytest.raises(StorageError):
            storage.copy_into_storage(tmp_path / "missing.mov", "PT-1", "asset-1")

    def test_iter_files_skips_hidden(self, storage, write_file):
        """Test that hidden files are not listed."""
        write_file(storage.absolute_path("b/2/y.mov"))
        write_file(storage.absolute_path("a/1/x.mov"))
        write_file(storage.absolute_path("a/1/.DS_Store"))
        write_file(storage.absolute_path(".trash/z.mov"))

        assert [storage.relative_path(p) for p in storage.iter_files()] == ["a/1/x.mov", "b/2/y.mov"]

    def test_delete_file_prunes_empty_parents(self, storage, write_file):
        """Test that empty parent folders are removed."""
        write_file(storage.absolute_path("PT-1/a/clip.mov"))
        write_file(storage.absolute_path("PT-1/b/other.mov"))

        assert storage.delete_file("PT-1/a/clip.mov") is True
        assert not storage.absolute_path("PT-1/a").exists()
        assert storage.absolute_path("PT-1/b/other.mov").exists()
        assert storage.root.exists()
        assert storage.delete_file("PT-1/a/clip.mov") is False

    def test_shared_file_is_kept(self, storage, write_file):
        """Test that a file used by another record is kept."""
        write_file(storage.absolute_path("PT-1/a/clip.mov"))
        asset = MediaAsset(asset_type=AssetType.VIDEO.value, filename="clip.mov", relative_path="PT-1/a/clip.mov")
        other = MediaAsset(asset_type=AssetType.VIDEO.value, filename="clip.mov", relative_path="PT-1/a/clip.mov")

        assert storage.remove_managed_file_if_unreferenced(asset, [asset, other]) is False
        assert storage.file_exists("PT-1/a/clip.mov")

        assert storage.remove_managed_file_if_unreferenced(asset, [asset]) is True
        assert not storage.file_exists("PT-1/a/clip.mov")

    def test_external_file_is_never_deleted(self, storage, write_file):
        """Test that files outside managed storage are never deleted."""
        write_file(storage.absolute_path("PT-1/a/clip.mov"))
        asset = MediaAsset(
            asset_type=AssetType.VIDEO.value,
            filename="clip.mov",
            relative_path="PT-1/a/clip.mov",
            is_managed_copy=False,
        )
        assert storage.remove_managed_file_if_unreferenced(asset, [asset]) is False
        assert storage.file_exists("PT-1/a/clip.mov")
