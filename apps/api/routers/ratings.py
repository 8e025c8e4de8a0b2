"""
Rating endpoints.

Every write recomputes the derived rating fields of the affected spot(s)
before responding, so the returned spot summary is already current.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from uuid import UUID
import logging

from core.auth import CurrentUser, get_current_user
from core.database import get_db
from core.exceptions import ForbiddenError, NotFoundError
from models import Rating, Spot
from schemas import RatingCreate, RatingResponse, RatingUpdate
from services.rating_aggregator import on_rating_changed

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/ratings", tags=["ratings"])


def _spot_summary(db: Session, spot_id: UUID) -> dict:
    spot = db.get(Spot, spot_id)
    if spot is None:
        return {"id": str(spot_id)}
    return {
        "id": str(spot.id),
        "average_rating": spot.average_rating,
        "rating_count": spot.rating_count,
        "wilson_lower_bound": spot.wilson_lower_bound,
    }


def _get_owned_rating(db: Session, rating_id: UUID, user: CurrentUser) -> Rating:
    rating = db.get(Rating, rating_id)
    if rating is None:
        raise NotFoundError("Rating", str(rating_id))
    if rating.author_id != user.id and not user.is_admin:
        raise ForbiddenError("Cannot modify another user's rating")
    return rating


@router.post("", status_code=201)
def create_rating(
    payload: RatingCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Rate a spot. A user has one rating per spot; rating again replaces it.
    """
    spot = db.get(Spot, payload.spot_id)
    if spot is None:
        raise NotFoundError("Spot", str(payload.spot_id))

    rating = (
        db.query(Rating)
        .filter(Rating.spot_id == payload.spot_id, Rating.author_id == current_user.id)
        .first()
    )
    if rating is None:
        rating = Rating(spot_id=payload.spot_id, author_id=current_user.id, rating=payload.rating)
        db.add(rating)
    else:
        rating.rating = payload.rating
    db.commit()

    on_rating_changed(db, None, payload.spot_id)
    logger.info(f"Rating {rating.id} by {current_user.id} on spot {payload.spot_id}")
    return {
        "success": True,
        "rating": RatingResponse.model_validate(rating).model_dump(mode="json"),
        "spot": _spot_summary(db, payload.spot_id),
    }


@router.put("/{rating_id}")
def update_rating(
    rating_id: UUID,
    payload: RatingUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rating = _get_owned_rating(db, rating_id, current_user)
    old_spot_id = rating.spot_id

    if payload.spot_id is not None and payload.spot_id != old_spot_id:
        if db.get(Spot, payload.spot_id) is None:
            raise NotFoundError("Spot", str(payload.spot_id))
        rating.spot_id = payload.spot_id
    if payload.rating is not None:
        rating.rating = payload.rating
    db.commit()

    on_rating_changed(db, old_spot_id, rating.spot_id)
    return {
        "success": True,
        "rating": RatingResponse.model_validate(rating).model_dump(mode="json"),
        "spot": _spot_summary(db, rating.spot_id),
    }


@router.delete("/{rating_id}")
def delete_rating(
    rating_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rating = _get_owned_rating(db, rating_id, current_user)
    spot_id = rating.spot_id
    db.delete(rating)
    db.commit()

    on_rating_changed(db, spot_id, None)
    return {"success": True, "spot": _spot_summary(db, spot_id)}
