"""
Celery tasks for rating aggregation.
"""
import logging
from typing import Dict

from celery import Task
from sqlalchemy.orm import Session

from core.database import get_db_sync
from services.rating_aggregator import (
    compute_global_average_wilson,
    recompute_all_rated_spots,
    set_global_average_wilson,
)
from tasks import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="ratings.recompute_all", bind=True)
def recompute_all_ratings_task(self: Task) -> Dict:
    """
    Recompute derived rating fields for every rated spot.

    Returns:
        {"success": bool, "processed": int, "failed": int}
    """
    db: Session = get_db_sync()
    try:
        return recompute_all_rated_spots(db)
    except Exception as e:
        db.rollback()
        logger.error(f"Rating recompute task failed: {e}", exc_info=True)
        return {"success": False, "processed": 0, "failed": 0, "error": str(e)}
    finally:
        db.close()


@celery_app.task(name="ratings.refresh_average_wilson", bind=True)
def refresh_average_wilson_task(self: Task) -> Dict:
    """
    Refresh the global average Wilson pivot read by ranked spot queries.

    Ranked queries tolerate a stale pivot between runs.
    """
    db: Session = get_db_sync()
    try:
        value = set_global_average_wilson(db, compute_global_average_wilson(db))
        logger.info(f"Global average Wilson lower bound set to {value:.4f}")
        return {"success": True, "averageWilson": value}
    except Exception as e:
        db.rollback()
        logger.error(f"Average Wilson refresh failed: {e}", exc_info=True)
        return {"success": False, "error": str(e)}
    finally:
        db.close()
