from typing import Annotated

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from testlog.config import Settings, get_settings
from testlog.exceptions import TestNotFoundError
from testlog.models.database import get_db
from testlog.models.pull_test import PullTest
from testlog.services.storage_service import ManagedStorageService

DbSession = Annotated[Session, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]


def get_storage(settings: AppSettings) -> ManagedStorageService:
    return ManagedStorageService(settings.media_root_path)


Storage = Annotated[ManagedStorageService, Depends(get_storage)]


def get_pull_test(test_id: str, db: DbSession) -> PullTest:
    """Look a test up by internal id, then by its human-facing id."""
    test = db.get(PullTest, test_id)
    if test is None:
        test = db.scalars(select(PullTest).where(PullTest.test_id == test_id)).first()
    if test is None:
        raise TestNotFoundError(test_id)
    return test


CurrentTest = Annotated[PullTest, Depends(get_pull_test)]
