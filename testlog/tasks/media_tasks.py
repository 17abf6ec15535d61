"""Celery tasks for storage maintenance and video export."""

import asyncio
import logging

from testlog.celery_app import celery_app
from testlog.exceptions import TestLogError, TestNotFoundError
from testlog.models.database import get_sync_db
from testlog.models.pull_test import PullTest
from testlog.services.export_service import ExportService
from testlog.services.media_repair_service import MediaRepairService

logger = logging.getLogger(__name__)


def run_media_repair() -> dict:
    with get_sync_db() as db:
        report = MediaRepairService().run(db)
    return report.to_dict()


def run_export(pull_test_id: str, output_path: str) -> dict:
    with get_sync_db() as db:
        test = db.get(PullTest, pull_test_id)
        if test is None:
            raise TestNotFoundError(pull_test_id)
        path = asyncio.run(ExportService().export_test(test, output_path))
    return {"status": "completed", "output_path": str(path)}


@celery_app.task(bind=True, name="testlog.reconcile_media_storage")
def reconcile_media_storage(self) -> dict:
    self.update_state(state="PROGRESS", meta={"stage": "Scanning managed storage"})
    return run_media_repair()


@celery_app.task(bind=True, max_retries=1, default_retry_delay=30, name="testlog.export_test_video")
def export_test_video(self, pull_test_id: str, output_path: str) -> dict:
    try:
        self.update_state(state="PROGRESS", meta={"stage": "Rendering"})
        return run_export(pull_test_id, output_path)
    except TestLogError as e:
        logger.error("[EXPORT] Task failed for %s: %s", pull_test_id, e.message)
        retryable = e.to_error_info().retryable
        if retryable and self.request.retries < self.max_retries:
            raise self.retry(exc=e)
        return {"status": "failed", "code": e.code, "error": e.message}
