"""
Rating aggregation: derived fields on Spot follow the Rating table.
"""
import pytest

from models import AppSetting, Rating, Spot
from services.rating_aggregator import (
    GLOBAL_AVERAGE_WILSON_KEY,
    compute_global_average_wilson,
    on_rating_changed,
    recompute_all_rated_spots,
    recompute_spot_rating,
    set_global_average_wilson,
    wilson_lower_bound,
)


def _rate(db, spot, *values):
    for i, value in enumerate(values):
        db.add(Rating(spot_id=spot.id, author_id=f"user-{i}", rating=value))
    db.commit()


class TestWilsonLowerBound:
    def test_zero_ratings(self):
        assert wilson_lower_bound(0, 0) == 0.0

    @pytest.mark.parametrize("count", [1, 3, 10, 50])
    def test_monotonic_in_mean_for_fixed_count(self, count):
        means = [0, 0.5, 1, 2, 2.5, 3, 4, 4.5, 5]
        bounds = [wilson_lower_bound(m * count, count) for m in means]
        assert bounds == sorted(bounds)

    def test_more_ratings_with_same_mean_rank_higher(self):
        assert wilson_lower_bound(4 * 20, 20) > wilson_lower_bound(4 * 2, 2)

    def test_bound_stays_within_scale(self):
        assert 0.0 <= wilson_lower_bound(5 * 1000, 1000) <= 5.0
        assert wilson_lower_bound(5 * 1000, 1000) < 5.0
        assert wilson_lower_bound(5, 1) > 0.0


def test_recompute_sets_average_count_and_bound(db_session, make_spot):
    spot = make_spot()
    _rate(db_session, spot, 4.0, 5.0, 3.0)

    updated = recompute_spot_rating(db_session, spot.id)

    assert updated.rating_count == 3
    assert updated.average_rating == pytest.approx(4.0)
    assert updated.wilson_lower_bound == pytest.approx(wilson_lower_bound(12.0, 3))


def test_recompute_clamps_out_of_range_values(db_session, make_spot):
    spot = make_spot()
    _rate(db_session, spot, 7.0, -1.0)

    updated = recompute_spot_rating(db_session, str(spot.id))

    assert updated.average_rating == pytest.approx(2.5)


def test_no_ratings_resets_to_zero(db_session, make_spot):
    spot = make_spot(average_rating=3.0, rating_count=2, wilson_lower_bound=1.2)

    updated = recompute_spot_rating(db_session, spot.id)

    assert updated.rating_count == 0
    assert updated.average_rating == 0.0
    assert updated.wilson_lower_bound == 0.0


def test_missing_spot_is_ignored(db_session):
    import uuid

    assert recompute_spot_rating(db_session, uuid.uuid4()) is None


def test_moved_rating_recomputes_both_spots(db_session, make_spot):
    a = make_spot(name="A")
    b = make_spot(name="B")
    _rate(db_session, a, 5.0)
    on_rating_changed(db_session, None, a.id)
    assert db_session.get(Spot, a.id).rating_count == 1

    rating = db_session.query(Rating).one()
    rating.spot_id = b.id
    db_session.commit()
    on_rating_changed(db_session, a.id, b.id)

    assert db_session.get(Spot, a.id).rating_count == 0
    assert db_session.get(Spot, a.id).wilson_lower_bound == 0.0
    assert db_session.get(Spot, b.id).rating_count == 1
    assert db_session.get(Spot, b.id).average_rating == 5.0


def test_recompute_all_repairs_drifted_spots(db_session, make_spot):
    a = make_spot(name="A")
    b = make_spot(name="B")
    make_spot(name="Unrated")
    _rate(db_session, a, 2.0, 4.0)
    _rate(db_session, b, 5.0)

    result = recompute_all_rated_spots(db_session)

    assert result == {"success": True, "processed": 2, "failed": 0}
    assert db_session.get(Spot, a.id).average_rating == pytest.approx(3.0)
    assert db_session.get(Spot, b.id).rating_count == 1


def test_global_average_wilson_round_trip(db_session, make_spot):
    make_spot(name="A", rating_count=1, wilson_lower_bound=1.0)
    make_spot(name="B", rating_count=2, wilson_lower_bound=2.0)
    make_spot(name="Unrated")

    value = set_global_average_wilson(db_session, compute_global_average_wilson(db_session))

    assert value == pytest.approx(1.5)
    assert db_session.get(AppSetting, GLOBAL_AVERAGE_WILSON_KEY).value == pytest.approx(1.5)

    set_global_average_wilson(db_session, 0.75)
    assert db_session.get(AppSetting, GLOBAL_AVERAGE_WILSON_KEY).value == 0.75
