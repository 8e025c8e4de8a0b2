"""
Admin API Router

Spot source management, sync triggers and maintenance jobs.
Admin/owner role only; every route fails closed through require_admin.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Any, Dict
from uuid import UUID
import logging

from core.auth import CurrentUser, require_admin
from core.database import get_db
from core.exceptions import ConfigurationError, NotFoundError
from models import Spot, SpotSource
from schemas import SpotSourceCreate, SpotSourceResponse, SpotSourceUpdate
from services.image_cache import cleanup_image_cache
from services.rating_aggregator import recompute_all_rated_spots
from services.spot_sync import build_sync_service, sync_all_sources

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin"])


def _source_payload(source: SpotSource) -> Dict[str, Any]:
    return SpotSourceResponse.model_validate(source).model_dump(mode="json")


def _get_source(db: Session, source_id: UUID) -> SpotSource:
    source = db.get(SpotSource, source_id)
    if source is None:
        raise NotFoundError("Spot source", str(source_id))
    return source


def _jsonable_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    # HttpUrl values are stored as plain text.
    return {k: (str(v) if k in ("url", "public_url") and v is not None else v) for k, v in data.items()}


# =============================================================================
# SOURCES
# =============================================================================

@router.get("/sources")
def list_sources(
    include_inactive: bool = Query(False),
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    q = db.query(SpotSource)
    if not include_inactive:
        q = q.filter(SpotSource.is_active.is_(True))
    sources = q.order_by(SpotSource.created_at.desc()).all()
    return {"success": True, "sources": [_source_payload(s) for s in sources], "count": len(sources)}


@router.post("/sources", status_code=201)
def create_source(
    payload: SpotSourceCreate,
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    source = SpotSource(**_jsonable_fields(payload.model_dump()))
    db.add(source)
    db.commit()
    logger.info(f"Spot source {source.id} ({source.name}) created by {current_user.id}")
    return {"success": True, "sourceId": str(source.id), "source": _source_payload(source)}


@router.patch("/sources/{source_id}")
def update_source(
    source_id: UUID,
    payload: SpotSourceUpdate,
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    source = _get_source(db, source_id)
    for key, value in _jsonable_fields(payload.model_dump(exclude_unset=True)).items():
        setattr(source, key, value)
    db.commit()
    logger.info(f"Spot source {source.id} updated by {current_user.id}")
    return {"success": True, "sourceId": str(source.id), "source": _source_payload(source)}


@router.delete("/sources/{source_id}")
def delete_source(
    source_id: UUID,
    delete_spots: bool = Query(False, description="Also delete the spots imported from this source"),
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """
    Delete a source. Its spots are kept (detached from the source, still
    carrying spot_source_name) unless delete_spots is set.
    """
    source = _get_source(db, source_id)
    deleted_spots = 0
    if delete_spots:
        for spot in db.query(Spot).filter(Spot.spot_source_id == source.id).all():
            db.delete(spot)
            deleted_spots += 1
    db.delete(source)
    db.commit()
    logger.info(f"Spot source {source_id} deleted by {current_user.id} (spots deleted: {deleted_spots})")
    return {"success": True, "sourceId": str(source_id), "deletedSpots": deleted_spots}


# =============================================================================
# SYNC
# =============================================================================

@router.post("/sources/sync-all")
def sync_all(
    inline: bool = Query(False, description="Run in this request instead of the worker"),
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if not inline:
        from tasks.sync_tasks import sync_all_sources_task

        task = sync_all_sources_task.delay()
        return {"success": True, "queued": True, "taskId": task.id}

    try:
        service = build_sync_service(db)
    except ConfigurationError as e:
        return {"success": False, "error": str(e)}
    return sync_all_sources(db, service)


@router.post("/sources/{source_id}/sync")
def sync_source(
    source_id: UUID,
    inline: bool = Query(False, description="Run in this request instead of the worker"),
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    source = _get_source(db, source_id)
    if not inline:
        from tasks.sync_tasks import sync_source_task

        task = sync_source_task.delay(str(source.id))
        return {"success": True, "queued": True, "sourceId": str(source.id), "taskId": task.id}

    try:
        service = build_sync_service(db)
    except ConfigurationError as e:
        return {"success": False, "sourceId": str(source_id), "error": str(e)}
    result = service.sync_source(source)
    return {"sourceId": str(source_id), "sourceName": source.name, **result.to_dict()}


# =============================================================================
# MAINTENANCE
# =============================================================================

@router.post("/ratings/recompute")
def recompute_ratings(
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return recompute_all_rated_spots(db)


@router.post("/images/cleanup")
def cleanup_images(
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    from services.object_storage import S3Storage

    try:
        storage = S3Storage()
    except ConfigurationError as e:
        return {"success": False, "error": str(e)}
    return cleanup_image_cache(db, storage)
