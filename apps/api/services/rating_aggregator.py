"""
Rating aggregation.

Keeps the derived rating fields on Spot (rating_count, average_rating,
wilson_lower_bound) in step with the Rating table. Every rating create,
update or delete calls on_rating_changed(); recompute_all_rated_spots() is the
batch repair path.

The Wilson score lower bound treats a rating r in [0, 5] as r/5 "successes"
out of one trial, so a spot with few ratings ranks below one with the same
average and many ratings.
"""

import logging
import math
from typing import Dict, Optional, Union
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import AppSetting, Rating, Spot

logger = logging.getLogger(__name__)

MAX_RATING = 5.0
WILSON_Z = 1.96  # 95% confidence
GLOBAL_AVERAGE_WILSON_KEY = "average_wilson"


def _clamp_rating(value: float) -> float:
    return max(0.0, min(MAX_RATING, float(value)))


def wilson_lower_bound(rating_sum: float, count: int, z: float = WILSON_Z) -> float:
    """
    Lower bound of the Wilson score interval, on the 0-5 rating scale.

    Args:
        rating_sum: Sum of (clamped) rating values
        count: Number of ratings

    Returns:
        0.0 when there are no ratings.
    """
    if count <= 0:
        return 0.0
    n = float(count)
    p = max(0.0, min(1.0, rating_sum / (MAX_RATING * n)))
    z2 = z * z
    centre = p + z2 / (2 * n)
    margin = z * math.sqrt((p * (1 - p) + z2 / (4 * n)) / n)
    lower = (centre - margin) / (1 + z2 / n)
    return max(0.0, lower) * MAX_RATING


def recompute_spot_rating(db: Session, spot_id: Union[UUID, str]) -> Optional[Spot]:
    """
    Recompute and persist the derived rating fields of one spot.

    Returns:
        The updated Spot, or None if the spot does not exist.
    """
    spot = db.get(Spot, spot_id if isinstance(spot_id, UUID) else UUID(str(spot_id)))
    if spot is None:
        logger.info(f"Rating recompute skipped, spot {spot_id} not found")
        return None

    values = [v for (v,) in db.query(Rating.rating).filter(Rating.spot_id == spot.id).all()]
    clamped = [_clamp_rating(v) for v in values if v is not None]
    count = len(clamped)

    if count == 0:
        spot.rating_count = 0
        spot.average_rating = 0.0
        spot.wilson_lower_bound = 0.0
    else:
        total = sum(clamped)
        spot.rating_count = count
        spot.average_rating = total / count
        spot.wilson_lower_bound = wilson_lower_bound(total, count)

    db.commit()
    return spot


def on_rating_changed(
    db: Session,
    old_spot_id: Optional[Union[UUID, str]],
    new_spot_id: Optional[Union[UUID, str]],
) -> None:
    """
    Recompute the spot(s) affected by one rating write.

    Create: (None, spot). Delete: (spot, None). Update: (old, new); both
    spots are recomputed when the rating moved.
    """
    seen = set()
    for spot_id in (old_spot_id, new_spot_id):
        if spot_id is None or str(spot_id) in seen:
            continue
        seen.add(str(spot_id))
        recompute_spot_rating(db, spot_id)


def recompute_all_rated_spots(db: Session) -> Dict[str, Union[bool, int]]:
    """
    Recompute every spot that has at least one rating.

    Individual failures are logged and counted; the loop carries on.
    """
    spot_ids = [sid for (sid,) in db.query(Rating.spot_id).distinct().all()]
    processed = 0
    failed = 0
    for spot_id in spot_ids:
        try:
            recompute_spot_rating(db, spot_id)
            processed += 1
        except Exception as e:
            db.rollback()
            failed += 1
            logger.error(f"Rating recompute failed for spot {spot_id}: {e}", exc_info=True)

    logger.info(f"Recomputed ratings: processed={processed} failed={failed}")
    return {"success": failed == 0, "processed": processed, "failed": failed}


def set_global_average_wilson(db: Session, value: float) -> float:
    """Store the ranked-query pivot. Written by the out-of-band averaging job."""
    row = db.get(AppSetting, GLOBAL_AVERAGE_WILSON_KEY)
    if row is None:
        row = AppSetting(key=GLOBAL_AVERAGE_WILSON_KEY, value=float(value))
        db.add(row)
    else:
        row.value = float(value)
    db.commit()
    return float(value)


def compute_global_average_wilson(db: Session) -> float:
    """Mean Wilson lower bound over rated spots (0.0 when none are rated)."""
    value = db.query(func.avg(Spot.wilson_lower_bound)).filter(Spot.rating_count > 0).scalar()
    return float(value or 0.0)
