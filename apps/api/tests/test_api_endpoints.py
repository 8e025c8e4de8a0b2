"""
Tests for API endpoints - ranked spots, ratings and the admin surface
"""
import uuid
from unittest.mock import MagicMock, patch

import pytest

from models import Rating, Spot, SpotSource

from conftest import auth_headers


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestRankedSpotsEndpoint:
    def test_ranked_spots(self, client, make_spot):
        make_spot(name="rated", latitude=10, longitude=10, wilson_lower_bound=2.0, rating_count=2, average_rating=4.5)
        make_spot(name="unrated", latitude=11, longitude=11)

        response = client.get(
            "/v1/spots/ranked",
            params={"min_lat": 0, "max_lat": 20, "min_lng": 0, "max_lng": 20, "limit": 10},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert [s["name"] for s in data["spots"]] == ["rated", "unrated"]
        assert data["totalCount"] == 2
        assert data["shownCount"] == 2
        assert data["averageWilson"] == 0.0

    def test_antimeridian_box(self, client, make_spot):
        make_spot(name="east", latitude=0, longitude=179)
        make_spot(name="west", latitude=0, longitude=-179)
        make_spot(name="greenwich", latitude=0, longitude=0)

        response = client.get(
            "/v1/spots/ranked",
            params={"min_lat": -10, "max_lat": 10, "min_lng": 170, "max_lng": -170},
        )

        assert response.status_code == 200
        assert sorted(s["name"] for s in response.json()["spots"]) == ["east", "west"]

    def test_inverted_latitude(self, client):
        response = client.get(
            "/v1/spots/ranked",
            params={"min_lat": 20, "max_lat": 0, "min_lng": 0, "max_lng": 20},
        )
        assert response.status_code == 422
        assert response.json()["success"] is False

    def test_bad_source_id(self, client):
        response = client.get(
            "/v1/spots/ranked",
            params={"min_lat": 0, "max_lat": 20, "min_lng": 0, "max_lng": 20, "spot_source": "nope"},
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR_SPOT_SOURCE"

    def test_out_of_range_limit_is_clamped(self, client, make_spot):
        make_spot(name="only")
        response = client.get(
            "/v1/spots/ranked",
            params={"min_lat": 0, "max_lat": 90, "min_lng": 0, "max_lng": 20, "limit": 100000},
        )
        assert response.status_code == 200
        assert response.json()["shownCount"] == 1


class TestRatingsEndpoint:
    def test_requires_auth(self, client):
        response = client.post("/v1/ratings", json={"spot_id": str(uuid.uuid4()), "rating": 4})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    def test_create_updates_spot_aggregates(self, client, make_spot, user_headers):
        spot = make_spot()

        response = client.post("/v1/ratings", json={"spot_id": str(spot.id), "rating": 4}, headers=user_headers)

        assert response.status_code == 201
        data = response.json()
        assert data["success"] is True
        assert data["rating"]["author_id"] == "user-1"
        assert data["spot"]["rating_count"] == 1
        assert data["spot"]["average_rating"] == 4.0
        assert data["spot"]["wilson_lower_bound"] > 0

    def test_rating_again_replaces_previous(self, client, db_session, make_spot, user_headers):
        spot = make_spot()
        client.post("/v1/ratings", json={"spot_id": str(spot.id), "rating": 1}, headers=user_headers)

        response = client.post("/v1/ratings", json={"spot_id": str(spot.id), "rating": 5}, headers=user_headers)

        assert response.json()["spot"]["rating_count"] == 1
        assert response.json()["spot"]["average_rating"] == 5.0
        assert db_session.query(Rating).count() == 1

    def test_rating_out_of_range_is_rejected(self, client, make_spot, user_headers):
        spot = make_spot()
        response = client.post("/v1/ratings", json={"spot_id": str(spot.id), "rating": 6}, headers=user_headers)
        assert response.status_code == 422

    def test_unknown_spot(self, client, user_headers):
        response = client.post("/v1/ratings", json={"spot_id": str(uuid.uuid4()), "rating": 3}, headers=user_headers)
        assert response.status_code == 404

    def test_move_rating_recomputes_both_spots(self, client, db_session, make_spot, user_headers):
        a = make_spot(name="A")
        b = make_spot(name="B")
        rating_id = client.post(
            "/v1/ratings", json={"spot_id": str(a.id), "rating": 5}, headers=user_headers
        ).json()["rating"]["id"]

        response = client.put(f"/v1/ratings/{rating_id}", json={"spot_id": str(b.id)}, headers=user_headers)

        assert response.status_code == 200
        assert response.json()["spot"]["id"] == str(b.id)
        assert response.json()["spot"]["rating_count"] == 1
        assert db_session.get(Spot, a.id).rating_count == 0

    def test_other_users_cannot_edit(self, client, make_spot, user_headers):
        spot = make_spot()
        rating_id = client.post(
            "/v1/ratings", json={"spot_id": str(spot.id), "rating": 5}, headers=user_headers
        ).json()["rating"]["id"]

        other = auth_headers("user-2")
        assert client.put(f"/v1/ratings/{rating_id}", json={"rating": 1}, headers=other).status_code == 403
        assert client.delete(f"/v1/ratings/{rating_id}", headers=other).status_code == 403

    def test_delete_resets_aggregates(self, client, make_spot, user_headers):
        spot = make_spot()
        rating_id = client.post(
            "/v1/ratings", json={"spot_id": str(spot.id), "rating": 5}, headers=user_headers
        ).json()["rating"]["id"]

        response = client.delete(f"/v1/ratings/{rating_id}", headers=user_headers)

        assert response.status_code == 200
        assert response.json()["spot"]["rating_count"] == 0
        assert response.json()["spot"]["wilson_lower_bound"] == 0.0

    def test_admin_can_delete_any_rating(self, client, make_spot, user_headers, admin_headers):
        spot = make_spot()
        rating_id = client.post(
            "/v1/ratings", json={"spot_id": str(spot.id), "rating": 5}, headers=user_headers
        ).json()["rating"]["id"]

        assert client.delete(f"/v1/ratings/{rating_id}", headers=admin_headers).status_code == 200


class TestAdminAccess:
    @pytest.mark.parametrize("method,path", [
        ("get", "/v1/admin/sources"),
        ("post", "/v1/admin/sources/sync-all"),
        ("post", "/v1/admin/ratings/recompute"),
        ("post", "/v1/admin/images/cleanup"),
    ])
    def test_requires_auth(self, client, method, path):
        response = getattr(client, method)(path)
        assert response.status_code == 401

    @pytest.mark.parametrize("method,path", [
        ("get", "/v1/admin/sources"),
        ("post", "/v1/admin/sources/sync-all"),
        ("post", "/v1/admin/ratings/recompute"),
        ("post", "/v1/admin/images/cleanup"),
    ])
    def test_regular_users_are_forbidden(self, client, user_headers, method, path):
        response = getattr(client, method)(path, headers=user_headers)
        assert response.status_code == 403
        assert response.json() == {
            "success": False,
            "error": {"code": "FORBIDDEN", "message": response.json()["error"]["message"]},
        }


class TestAdminSources:
    def test_create_list_update_delete(self, client, db_session, admin_headers):
        created = client.post(
            "/v1/admin/sources",
            json={"name": "Walls", "url": "https://maps.test/walls.kmz", "include_folders": ["B", "A"]},
            headers=admin_headers,
        )
        assert created.status_code == 201
        source_id = created.json()["sourceId"]
        assert created.json()["source"]["include_folders"] == ["B", "A"]

        listed = client.get("/v1/admin/sources", headers=admin_headers).json()
        assert listed["success"] is True
        assert listed["count"] == 1

        updated = client.patch(
            f"/v1/admin/sources/{source_id}", json={"is_active": False}, headers=admin_headers
        ).json()
        assert updated["source"]["is_active"] is False
        assert updated["source"]["name"] == "Walls"
        assert client.get("/v1/admin/sources", headers=admin_headers).json()["count"] == 0
        assert client.get(
            "/v1/admin/sources", params={"include_inactive": True}, headers=admin_headers
        ).json()["count"] == 1

        deleted = client.delete(f"/v1/admin/sources/{source_id}", headers=admin_headers).json()
        assert deleted == {"success": True, "sourceId": source_id, "deletedSpots": 0}
        assert db_session.query(SpotSource).count() == 0

    def test_invalid_url_is_rejected(self, client, admin_headers):
        response = client.post("/v1/admin/sources", json={"name": "x", "url": "not a url"}, headers=admin_headers)
        assert response.status_code == 422

    def test_delete_keeps_spots_unless_asked(self, client, db_session, make_source, make_spot, admin_headers):
        keep = make_source(name="Keep")
        drop = make_source(name="Drop")
        kept_spot = make_spot(name="kept", spot_source_id=keep.id, spot_source_name="Keep")
        make_spot(name="dropped", spot_source_id=drop.id, spot_source_name="Drop")

        client.delete(f"/v1/admin/sources/{keep.id}", headers=admin_headers)
        response = client.delete(
            f"/v1/admin/sources/{drop.id}", params={"delete_spots": True}, headers=admin_headers
        )

        assert response.json()["deletedSpots"] == 1
        remaining = db_session.query(Spot).all()
        assert [s.name for s in remaining] == ["kept"]
        assert remaining[0].id == kept_spot.id
        assert remaining[0].spot_source_id is None
        assert remaining[0].spot_source_name == "Keep"

    def test_unknown_source(self, client, admin_headers):
        response = client.patch(f"/v1/admin/sources/{uuid.uuid4()}", json={"name": "x"}, headers=admin_headers)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"


class TestAdminJobs:
    def test_sync_all_is_queued(self, client, admin_headers):
        task = MagicMock()
        task.delay.return_value.id = "task-123"
        with patch("tasks.sync_tasks.sync_all_sources_task", task):
            response = client.post("/v1/admin/sources/sync-all", headers=admin_headers)

        assert response.json() == {"success": True, "queued": True, "taskId": "task-123"}
        task.delay.assert_called_once_with()

    def test_sync_one_is_queued(self, client, make_source, admin_headers):
        source = make_source()
        task = MagicMock()
        task.delay.return_value.id = "task-456"
        with patch("tasks.sync_tasks.sync_source_task", task):
            response = client.post(f"/v1/admin/sources/{source.id}/sync", headers=admin_headers)

        assert response.json()["taskId"] == "task-456"
        task.delay.assert_called_once_with(str(source.id))

    def test_inline_sync_without_geocoding_key_fails_fast(self, client, make_source, admin_headers, monkeypatch):
        from core.config import settings

        monkeypatch.setattr(settings, "GOOGLE_MAPS_API_KEY", None)
        source = make_source()

        response = client.post(f"/v1/admin/sources/{source.id}/sync", params={"inline": True}, headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert "GOOGLE_MAPS_API_KEY" in response.json()["error"]

    def test_recompute_ratings(self, client, db_session, make_spot, admin_headers):
        spot = make_spot()
        db_session.add(Rating(spot_id=spot.id, author_id="u", rating=3.0))
        db_session.commit()

        response = client.post("/v1/admin/ratings/recompute", headers=admin_headers)

        assert response.json() == {"success": True, "processed": 1, "failed": 0}
        assert db_session.get(Spot, spot.id).rating_count == 1

    def test_image_cleanup_without_bucket(self, client, admin_headers, monkeypatch):
        from core.config import settings

        monkeypatch.setattr(settings, "S3_BUCKET_NAME", None)
        response = client.post("/v1/admin/images/cleanup", headers=admin_headers)
        assert response.json()["success"] is False
