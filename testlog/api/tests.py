import logging
from pathlib import Path

from fastapi import APIRouter, status
from sqlalchemy import select

from testlog.api.deps import CurrentTest, DbSession, Storage
from testlog.exceptions import AssetNotFoundError, AssetNotReadableError
from testlog.models.pull_test import PullTest
from testlog.schemas.pull_test import (
    ImportRequest,
    MediaAssetResponse,
    PullTestCreate,
    PullTestResponse,
)
from testlog.services.asset_import_service import AssetImportPipeline

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=list[PullTestResponse])
def list_tests(db: DbSession) -> list[PullTest]:
    return list(db.scalars(select(PullTest).order_by(PullTest.created_at)).all())


@router.post("", response_model=PullTestResponse, status_code=status.HTTP_201_CREATED)
def create_test(data: PullTestCreate, db: DbSession) -> PullTest:
    test = PullTest(
        test_id=data.test_id.strip(),
        product_name=data.product_name,
        adhesive_name=data.adhesive_name,
    )
    db.add(test)
    db.commit()
    logger.info("Created test %s", test.storage_key)
    return test


@router.get("/{test_id}", response_model=PullTestResponse)
def get_test(test: CurrentTest) -> PullTest:
    return test


@router.get("/{test_id}/assets", response_model=list[MediaAssetResponse])
def list_assets(test: CurrentTest):
    return test.assets


@router.post(
    "/{test_id}/assets/import",
    response_model=list[MediaAssetResponse],
    status_code=status.HTTP_201_CREATED,
)
async def import_assets(request: ImportRequest, test: CurrentTest, db: DbSession, storage: Storage):
    """Import files already present on the server into the test's managed storage."""
    for item in request.files:
        if not Path(item.path).is_file():
            raise AssetNotReadableError(f"File not found: {item.path}")

    pipeline = AssetImportPipeline(storage=storage)
    candidates = pipeline.build_candidates([item.path for item in request.files], test.assets)
    for candidate, item in zip(candidates, request.files):
        if item.asset_type is not None:
            candidate.selected_type = item.asset_type
        if item.video_role is not None:
            candidate.selected_role = item.video_role
    return await pipeline.import_candidates(db, test, candidates)


@router.delete("/{test_id}/assets/{asset_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_asset(asset_id: str, test: CurrentTest, db: DbSession, storage: Storage) -> None:
    asset = next((a for a in test.assets if a.id == asset_id), None)
    if asset is None:
        raise AssetNotFoundError(asset_id)
    AssetImportPipeline(storage=storage).remove_asset(db, test, asset)
