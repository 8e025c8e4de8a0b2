"""
Ranked viewport queries.

Returns the best public spots inside a lat/lng box, filled from three tiers in
a fixed order, each tier only asked for what is left of the limit:

1. above: wilson_lower_bound > pivot, best first
2. unrated: wilson_lower_bound == 0, ordered by the per-spot `random` value
3. below: 0 < wilson_lower_bound <= pivot, best first

The pivot is the global average Wilson bound kept in app_setting by an
out-of-band job; a stale pivot only shifts spots between tiers 1 and 3.

Boxes crossing the antimeridian (min_lng > max_lng) are split into an east
and a west half that are queried side by side.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import Text, cast
from sqlalchemy.orm import Query, Session

from core.config import settings
from models import AppSetting, Spot
from services.rating_aggregator import GLOBAL_AVERAGE_WILSON_KEY

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
UNKNOWN_TOTAL = -1

TIER_ABOVE = "above"
TIER_UNRATED = "unrated"
TIER_BELOW = "below"
TIERS = (TIER_ABOVE, TIER_UNRATED, TIER_BELOW)

LngRange = Tuple[float, float]


@dataclass
class RankedSpotsResult:
    spots: List[Spot] = field(default_factory=list)
    total_count: int = 0
    shown_count: int = 0
    average_wilson: float = 0.0


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    return max(1, min(int(limit), settings.RANKED_QUERY_MAX_LIMIT))


def get_global_average_wilson(db: Session) -> float:
    row = db.get(AppSetting, GLOBAL_AVERAGE_WILSON_KEY)
    if row is None or row.value is None:
        return 0.0
    return float(row.value)


def split_longitudes(min_lng: float, max_lng: float) -> List[LngRange]:
    """One range normally; two when the box crosses the antimeridian."""
    if min_lng > max_lng:
        return [(min_lng, 180.0), (-180.0, max_lng)]
    return [(min_lng, max_lng)]


def _base_query(
    db: Session,
    min_lat: float,
    max_lat: float,
    lng_range: LngRange,
    spot_source: Optional[str],
    has_images: bool,
) -> Query:
    q = db.query(Spot).filter(
        Spot.is_public.is_(True),
        Spot.latitude >= min_lat,
        Spot.latitude <= max_lat,
        Spot.longitude >= lng_range[0],
        Spot.longitude <= lng_range[1],
    )
    if spot_source is not None:
        if spot_source == "":
            q = q.filter(Spot.spot_source_id.is_(None))
        else:
            q = q.filter(Spot.spot_source_id == UUID(str(spot_source)))
    if has_images:
        q = q.filter(
            Spot.image_urls.isnot(None),
            cast(Spot.image_urls, Text).notin_(["[]", "null"]),
        )
    return q


def _tier_query(base: Query, tier: str, pivot: float) -> Query:
    if tier == TIER_ABOVE:
        return base.filter(Spot.wilson_lower_bound > pivot).order_by(Spot.wilson_lower_bound.desc(), Spot.id)
    if tier == TIER_UNRATED:
        return base.filter(Spot.wilson_lower_bound == 0).order_by(Spot.random, Spot.id)
    return base.filter(
        Spot.wilson_lower_bound > 0,
        Spot.wilson_lower_bound <= pivot,
    ).order_by(Spot.wilson_lower_bound.desc(), Spot.id)


def _tier_sort_key(tier: str) -> Callable[[Spot], tuple]:
    if tier == TIER_UNRATED:
        return lambda s: (s.random if s.random is not None else 0.0, str(s.id))
    return lambda s: (-(s.wilson_lower_bound or 0.0), str(s.id))


def _merge_unique(batches: Sequence[Sequence[Spot]], exclude: set) -> List[Spot]:
    merged: List[Spot] = []
    for batch in batches:
        for spot in batch:
            if spot.id in exclude:
                continue
            exclude.add(spot.id)
            merged.append(spot)
    return merged


def get_top_spots_in_bounds(
    db: Session,
    min_lat: float,
    max_lat: float,
    min_lng: float,
    max_lng: float,
    limit: Optional[int] = DEFAULT_LIMIT,
    spot_source: Optional[str] = None,
    has_images: bool = False,
    average_wilson: Optional[float] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> RankedSpotsResult:
    """
    Rank the public spots inside a bounding box.

    Args:
        db: Database session
        min_lat, max_lat, min_lng, max_lng: Bounding box; min_lng > max_lng
            means the box crosses the antimeridian
        limit: Maximum number of spots, clamped to [1, RANKED_QUERY_MAX_LIMIT]
        spot_source: None for all spots, "" for natively created spots only,
            or a source id
        has_images: Only spots with at least one image
        average_wilson: Pivot override; read from app_setting when None
        session_factory: When given, the two halves of an antimeridian box
            are queried concurrently, each on its own session

    Returns:
        RankedSpotsResult. total_count is -1 when the count query failed.

    Raises:
        ValueError: for an inverted latitude range or a malformed source id
    """
    if min_lat > max_lat:
        raise ValueError("min_lat must not exceed max_lat")
    if spot_source:
        UUID(str(spot_source))

    budget = clamp_limit(limit)
    pivot = float(average_wilson) if average_wilson is not None else get_global_average_wilson(db)
    ranges = split_longitudes(min_lng, max_lng)
    crosses = len(ranges) > 1

    spots: List[Spot] = []
    seen: set = set()
    for tier in TIERS:
        remaining = budget - len(spots)
        if remaining <= 0:
            break

        if not crosses:
            base = _base_query(db, min_lat, max_lat, ranges[0], spot_source, has_images)
            spots.extend(_merge_unique([_tier_query(base, tier, pivot).limit(remaining).all()], seen))
            continue

        per_side = math.ceil(remaining / 2)
        batches = _query_sides(db, session_factory, ranges, tier, pivot, per_side,
                               min_lat, max_lat, spot_source, has_images)
        merged = _merge_unique(batches, seen)
        merged.sort(key=_tier_sort_key(tier))
        spots.extend(merged[:remaining])

    total = _count_in_bounds(db, min_lat, max_lat, ranges, spot_source, has_images)
    return RankedSpotsResult(spots=spots, total_count=total, shown_count=len(spots), average_wilson=pivot)


def _query_sides(
    db: Session,
    session_factory: Optional[Callable[[], Session]],
    ranges: List[LngRange],
    tier: str,
    pivot: float,
    per_side: int,
    min_lat: float,
    max_lat: float,
    spot_source: Optional[str],
    has_images: bool,
) -> List[List[Spot]]:
    def run(session: Session, lng_range: LngRange) -> List[Spot]:
        base = _base_query(session, min_lat, max_lat, lng_range, spot_source, has_images)
        return _tier_query(base, tier, pivot).limit(per_side).all()

    if session_factory is None:
        return [run(db, r) for r in ranges]

    def run_isolated(lng_range: LngRange) -> List[Spot]:
        session = session_factory()
        try:
            return run(session, lng_range)
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=len(ranges)) as pool:
        return list(pool.map(run_isolated, ranges))


def _count_in_bounds(
    db: Session,
    min_lat: float,
    max_lat: float,
    ranges: List[LngRange],
    spot_source: Optional[str],
    has_images: bool,
) -> int:
    try:
        return sum(
            _base_query(db, min_lat, max_lat, r, spot_source, has_images).order_by(None).count()
            for r in ranges
        )
    except Exception as e:
        db.rollback()
        logger.warning(f"Ranked spot count failed, reporting unknown total: {e}")
        return UNKNOWN_TOTAL
