"""
Public spot endpoints.

The ranked endpoint backs the map view: the client sends its viewport and
gets back the best spots to draw, plus how many exist in total.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
import logging

from core.database import get_db, get_session_factory
from core.exceptions import ValidationError
from schemas import RankedSpotsResponse, SpotResponse
from services.ranked_spots import DEFAULT_LIMIT, get_top_spots_in_bounds

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/spots", tags=["spots"])


@router.get("/ranked", response_model=RankedSpotsResponse)
def ranked_spots(
    min_lat: float = Query(..., ge=-90, le=90),
    max_lat: float = Query(..., ge=-90, le=90),
    min_lng: float = Query(..., ge=-180, le=180),
    max_lng: float = Query(..., ge=-180, le=180),
    limit: int = Query(DEFAULT_LIMIT),
    spot_source: Optional[str] = Query(None, description="Omit for all, empty for native spots, or a source id"),
    has_images: bool = Query(False),
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    """
    Top public spots inside a viewport.

    A viewport whose min_lng is greater than its max_lng crosses the
    antimeridian. limit is clamped to the allowed range rather than rejected.
    """
    if min_lat > max_lat:
        raise ValidationError("min_lat must not exceed max_lat", field="min_lat")

    try:
        result = get_top_spots_in_bounds(
            db,
            min_lat=min_lat,
            max_lat=max_lat,
            min_lng=min_lng,
            max_lng=max_lng,
            limit=limit,
            spot_source=spot_source,
            has_images=has_images,
            session_factory=session_factory,
        )
    except ValueError as e:
        raise ValidationError(str(e), field="spot_source")

    return RankedSpotsResponse(
        success=True,
        spots=[SpotResponse.model_validate(s) for s in result.spots],
        totalCount=result.total_count,
        shownCount=result.shown_count,
        averageWilson=result.average_wilson,
    )
