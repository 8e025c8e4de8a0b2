"""
Celery tasks for spot source synchronization.

A sync run is one stateless task invocation. The hard time limit on the
Celery app is the execution ceiling; because the sync commits after every
placemark, a run that is cut off keeps its progress and the next run picks up
the rest through the dedup key.
"""
import logging
from typing import Dict
from uuid import UUID

from celery import Task
from sqlalchemy.orm import Session

from core.database import get_db_sync
from core.exceptions import ConfigurationError
from models import SpotSource
from services.spot_sync import build_sync_service, sync_all_sources
from tasks import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="sync.sync_source", bind=True)
def sync_source_task(self: Task, source_id: str) -> Dict:
    """
    Background task to sync one spot source.

    Args:
        source_id: UUID string of the SpotSource

    Returns:
        {"success": bool, "sourceId": str, "error": str | None, "stats": dict, "foldersSeen": list}
    """
    db: Session = get_db_sync()
    try:
        source = db.get(SpotSource, UUID(source_id))
        if source is None:
            return {"success": False, "sourceId": source_id, "error": f"Source {source_id} not found"}

        try:
            service = build_sync_service(db)
        except ConfigurationError as e:
            logger.error(f"Sync of source {source_id} not started: {e}")
            return {"success": False, "sourceId": source_id, "error": str(e)}

        result = service.sync_source(source)
        return {"sourceId": source_id, **result.to_dict()}
    except Exception as e:
        db.rollback()
        logger.error(f"Sync task for source {source_id} failed: {e}", exc_info=True)
        return {"success": False, "sourceId": source_id, "error": str(e)}
    finally:
        db.close()


@celery_app.task(name="sync.sync_all_sources", bind=True)
def sync_all_sources_task(self: Task) -> Dict:
    """
    Background task to sync every active spot source in turn.

    Failures are isolated per source; see services.spot_sync.sync_all_sources.
    """
    db: Session = get_db_sync()
    try:
        try:
            service = build_sync_service(db)
        except ConfigurationError as e:
            logger.error(f"Sync of all sources not started: {e}")
            return {"success": False, "error": str(e), "results": []}
        return sync_all_sources(db, service)
    except Exception as e:
        db.rollback()
        logger.error(f"Sync-all task failed: {e}", exc_info=True)
        return {"success": False, "error": str(e), "results": []}
    finally:
        db.close()
