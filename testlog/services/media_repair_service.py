"""Reconciliation of managed storage against asset records.

One run:

1. scans and hashes every managed file (nothing is changed until this is done)
2. re-attaches asset records that lost their test, when the record's storage
   folder belongs to exactly one test
3. creates records for unreferenced files whose folder belongs to exactly
   one test
4. collapses byte-identical files onto the path that sorts first, repointing
   every record that used a removed copy

Running it again on a repaired store changes nothing.
"""

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.orm import Session

from testlog.exceptions import AmbiguousMatchError, HashFailureError, StorageError, TestLogError
from testlog.models.asset import MediaAsset
from testlog.models.enums import AssetType, VideoRole, suggest_video_role
from testlog.models.pull_test import PullTest
from testlog.services.asset_classifier import guess_content_type, infer_asset_type
from testlog.services.metadata_probe import file_created_at
from testlog.services.storage_service import ManagedStorageService
from testlog.utils.hashing import ContentHasher
from testlog.utils.paths import top_level_folder

logger = logging.getLogger(__name__)


@dataclass
class RepairReport:
    relinked_orphan_assets: int = 0
    created_missing_assets: int = 0
    deduplicated_files: int = 0
    repointed_asset_references: int = 0
    skipped_unmapped_files: int = 0
    skipped_ambiguous_files: int = 0
    hash_failures: int = 0
    issues: list[dict] = field(default_factory=list)  # ErrorInfo dicts for skipped files

    def add_issue(self, error: TestLogError) -> None:
        self.issues.append(error.to_error_info().model_dump())

    @property
    def changes(self) -> int:
        return (
            self.relinked_orphan_assets
            + self.created_missing_assets
            + self.deduplicated_files
            + self.repointed_asset_references
        )

    @property
    def summary(self) -> str:
        return "\n".join(
            [
                f"Relinked orphan assets: {self.relinked_orphan_assets}",
                f"Created missing asset records: {self.created_missing_assets}",
                f"Deduplicated identical files: {self.deduplicated_files}",
                f"Repointed asset references: {self.repointed_asset_references}",
                f"Skipped unmapped files: {self.skipped_unmapped_files}",
                f"Skipped ambiguous files: {self.skipped_ambiguous_files}",
                f"Hash failures: {self.hash_failures}",
            ]
        )

    def to_dict(self) -> dict:
        return {**asdict(self), "summary": self.summary}


@dataclass
class ScannedFile:
    path: Path
    relative_path: str
    byte_size: int
    created_at: datetime
    checksum_sha256: str | None


@dataclass
class PendingAttachment:
    test: PullTest
    file: ScannedFile
    asset_type: AssetType
    video_role: VideoRole | None


class MediaRepairService:
    def __init__(
        self,
        storage: ManagedStorageService | None = None,
        hasher: ContentHasher | None = None,
    ):
        self.storage = storage or ManagedStorageService()
        self.hasher = hasher or ContentHasher()

    def run(self, db: Session) -> RepairReport:
        tests = list(db.scalars(select(PullTest)).all())
        assets = list(db.scalars(select(MediaAsset)).all())
        return self.reconcile(db, tests, assets)

    def reconcile(
        self, db: Session, tests: list[PullTest], assets: list[MediaAsset]
    ) -> RepairReport:
        report = RepairReport()
        logger.info("[REPAIR] Scanning %s", self.storage.root)
        scanned = self._scan(report)

        tests_by_folder = self._tests_by_folder(tests)
        referenced = {a.relative_path for a in assets if a.pull_test_id is not None}

        relinks: list[tuple[MediaAsset, PullTest]] = []
        for asset in assets:
            if asset.pull_test_id is not None:
                continue
            matches = tests_by_folder.get(top_level_folder(asset.relative_path) or "", [])
            if len(matches) == 1:
                relinks.append((asset, matches[0]))
                referenced.add(asset.relative_path)
            else:
                logger.info(
                    "[REPAIR] Orphan record %s matches %d tests, left as is",
                    asset.relative_path,
                    len(matches),
                )

        for asset, test in relinks:
            asset.pull_test_id = test.id
            test.assets.append(asset)
            report.relinked_orphan_assets += 1

        pending = self._plan_attachments(scanned, referenced, tests_by_folder, report)

        all_assets = list(assets)
        for attachment in pending:
            all_assets.append(self._create_asset(attachment))
            report.created_missing_assets += 1

        duplicates = self._plan_deduplication(scanned)
        for duplicate, canonical in duplicates:
            for asset in all_assets:
                if asset.relative_path == duplicate.relative_path:
                    asset.relative_path = canonical.relative_path
                    report.repointed_asset_references += 1
        db.commit()

        # Records no longer point at the duplicates; remove the copies
        for duplicate, _ in duplicates:
            if self._delete_duplicate(duplicate):
                report.deduplicated_files += 1

        logger.info("[REPAIR] Done: %s", report.summary.replace("\n", ", "))
        return report

    def _scan(self, report: RepairReport) -> list[ScannedFile]:
        scanned = []
        for path in self.storage.iter_files():
            try:
                stat = path.stat()
            except OSError:
                logger.warning("[REPAIR] File vanished during scan: %s", path)
                continue
            try:
                checksum = self.hasher.hash_file(path)
            except OSError as e:
                logger.warning("[REPAIR] Could not hash %s: %s", path, e)
                report.hash_failures += 1
                relative = self.storage.relative_path(path)
                report.add_issue(HashFailureError(f"Could not hash {relative}: {e}", field=relative))
                checksum = None
            scanned.append(
                ScannedFile(
                    path=path,
                    relative_path=self.storage.relative_path(path),
                    byte_size=stat.st_size,
                    created_at=file_created_at(stat),
                    checksum_sha256=checksum,
                )
            )
        return scanned

    @staticmethod
    def _tests_by_folder(tests: list[PullTest]) -> dict[str, list[PullTest]]:
        index: dict[str, list[PullTest]] = defaultdict(list)
        for test in tests:
            for key in test.storage_folder_keys:
                index[key].append(test)
        return index

    def _plan_attachments(
        self,
        scanned: list[ScannedFile],
        referenced: set[str],
        tests_by_folder: dict[str, list[PullTest]],
        report: RepairReport,
    ) -> list[PendingAttachment]:
        pending = []
        claimed_roles: dict[str, set[str]] = {}
        for file in scanned:
            if file.relative_path in referenced:
                continue
            folder = top_level_folder(file.relative_path)
            matches = tests_by_folder.get(folder, []) if folder else []
            if not matches:
                report.skipped_unmapped_files += 1
                continue
            if len(matches) > 1:
                logger.warning(
                    "[REPAIR] %s matches %d tests, skipping", file.relative_path, len(matches)
                )
                report.skipped_ambiguous_files += 1
                report.add_issue(
                    AmbiguousMatchError(
                        f"{folder} matches {len(matches)} tests", field=file.relative_path
                    )
                )
                continue

            test = matches[0]
            asset_type = infer_asset_type(file.path.name)
            role = None
            if asset_type == AssetType.VIDEO:
                claimed = claimed_roles.setdefault(
                    test.id,
                    {VideoRole(v.video_role).value for v in test.video_assets if v.video_role},
                )
                role = suggest_video_role(claimed)
                claimed.add(role.value)
            pending.append(PendingAttachment(test, file, asset_type, role))
            referenced.add(file.relative_path)
        return pending

    @staticmethod
    def _create_asset(attachment: PendingAttachment) -> MediaAsset:
        file = attachment.file
        asset = MediaAsset(
            pull_test_id=attachment.test.id,
            asset_type=attachment.asset_type.value,
            filename=file.path.name,
            relative_path=file.relative_path,
            created_at=file.created_at,
            byte_size=file.byte_size,
            content_type=guess_content_type(file.path.name),
            checksum_sha256=file.checksum_sha256,
            is_managed_copy=True,
            video_role=attachment.video_role.value if attachment.video_role else None,
        )
        attachment.test.assets.append(asset)
        logger.info("[REPAIR] Created record for %s", file.relative_path)
        return asset

    @staticmethod
    def _plan_deduplication(scanned: list[ScannedFile]) -> list[tuple[ScannedFile, ScannedFile]]:
        """(duplicate, canonical) pairs; the canonical path sorts first in its group."""
        groups: dict[str, list[ScannedFile]] = defaultdict(list)
        for file in scanned:
            if file.checksum_sha256 is not None:
                groups[file.checksum_sha256].append(file)

        pairs = []
        for entries in groups.values():
            if len(entries) < 2:
                continue
            ordered = sorted(entries, key=lambda f: f.relative_path)
            canonical = ordered[0]
            pairs.extend((duplicate, canonical) for duplicate in ordered[1:])
        return pairs

    def _delete_duplicate(self, duplicate: ScannedFile) -> bool:
        if not duplicate.path.exists():
            return False
        try:
            duplicate.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Could not remove duplicate {duplicate.relative_path}: {e}")
        self.storage.prune_empty_parents(duplicate.path)
        logger.info("[REPAIR] Removed duplicate %s", duplicate.relative_path)
        return True
