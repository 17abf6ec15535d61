import logging

from fastapi import APIRouter

from testlog.api.deps import DbSession, Storage
from testlog.services.media_repair_service import MediaRepairService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/repair-media")
def repair_media(db: DbSession, storage: Storage) -> dict:
    """Reconcile managed storage with the asset records and report what changed."""
    report = MediaRepairService(storage=storage).run(db)
    return report.to_dict()
