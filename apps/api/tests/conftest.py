"""
Pytest configuration and fixtures

Every test gets a fresh in-memory SQLite database with the full schema, so
services that commit (the sync commits per placemark) can be exercised as-is
and nothing leaks between tests.

External collaborators (geocoder, object storage, HTTP) are replaced by the
small fakes defined here.
"""
import io
import os
import sys
from typing import Dict, List, Optional

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Settings are read at import time; configure before importing app modules.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-at-least-32-chars")
os.environ.setdefault("LOG_FORMAT", "text")

import pytest  # noqa: E402
from PIL import Image  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from core.database import Base  # noqa: E402
from core.security import create_access_token  # noqa: E402
import models  # noqa: E402,F401
from models import Spot, SpotSource  # noqa: E402
from services.geocoding_service import CoordinateResult, GeocodeResult  # noqa: E402


@pytest.fixture(scope="function")
def test_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine):
    return sessionmaker(bind=test_engine, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """Database session on a fresh schema."""
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture
def make_source(db_session):
    def _make(**kwargs) -> SpotSource:
        defaults = {
            "name": "Test Source",
            "url": "https://example.com/map.kml",
            "is_active": True,
            "is_public": True,
            "record_folder_name": False,
        }
        defaults.update(kwargs)
        source = SpotSource(**defaults)
        db_session.add(source)
        db_session.commit()
        return source

    return _make


@pytest.fixture
def make_spot(db_session):
    def _make(**kwargs) -> Spot:
        defaults = {
            "name": "Spot",
            "latitude": 52.0,
            "longitude": 4.0,
            "is_public": True,
            "image_urls": [],
            "image_hashes": [],
            "tags": [],
            "youtube_video_ids": [],
        }
        defaults.update(kwargs)
        spot = Spot(**defaults)
        db_session.add(spot)
        db_session.commit()
        return spot

    return _make


def auth_headers(user_id: str = "user-1", role: str = "user") -> Dict[str, str]:
    token = create_access_token({"sub": user_id, "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers():
    return auth_headers("user-1", "user")


@pytest.fixture
def admin_headers():
    return auth_headers("admin-1", "admin")


# =============================================================================
# FAKES
# =============================================================================

class FakeGeocoder:
    """Records calls; forward always succeeds unless told otherwise."""

    def __init__(self, forward_ok: bool = True, addresses: Optional[Dict[str, tuple]] = None):
        self.forward_ok = forward_ok
        self.addresses = addresses or {}
        self.forward_calls: List[tuple] = []
        self.reverse_calls: List[str] = []

    def forward(self, lat, lng):
        self.forward_calls.append((lat, lng))
        if not self.forward_ok:
            return GeocodeResult(success=False, reason="ZERO_RESULTS")
        return GeocodeResult(
            success=True,
            address=f"Address near {lat},{lng}",
            city="Amsterdam",
            country_code="NL",
        )

    def reverse(self, address):
        self.reverse_calls.append(address)
        if address in self.addresses:
            lat, lng = self.addresses[address]
            return CoordinateResult(success=True, lat=lat, lng=lng)
        return CoordinateResult(success=False, reason="ZERO_RESULTS")


class FakeStorage:
    """In-memory stand-in for services.object_storage.S3Storage."""

    base = "https://cdn.test"

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.uploads: List[str] = []

    def public_url(self, key):
        return f"{self.base}/{key}"

    def key_for_public_url(self, url):
        prefix = f"{self.base}/"
        return url[len(prefix):] if url and url.startswith(prefix) else None

    def exists(self, key):
        return key in self.objects

    def upload_public(self, key, data, content_type="image/jpeg"):
        self.objects[key] = data
        self.uploads.append(key)
        return self.public_url(key)

    def find_by_hash(self, content_hash):
        needle = f"_{content_hash}_"
        for key in self.objects:
            if needle in key:
                return key
        return None


class FakeResponse:
    def __init__(self, content: bytes = b"", status_code: int = 200, payload=None):
        self.content = content
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeHttpSession:
    """requests.Session stand-in serving fixed bodies by URL."""

    def __init__(self, bodies: Optional[Dict[str, bytes]] = None):
        self.bodies = bodies or {}
        self.calls: List[str] = []

    def get(self, url, **kwargs):
        self.calls.append(url)
        if url not in self.bodies:
            return FakeResponse(status_code=404)
        return FakeResponse(content=self.bodies[url])


def jpeg_bytes(size=(64, 48), color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, "JPEG")
    return buf.getvalue()


def png_bytes(size=(64, 48), color=(30, 200, 30, 255)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", size, color).save(buf, "PNG")
    return buf.getvalue()


@pytest.fixture
def fake_geocoder():
    return FakeGeocoder()


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def client(db_session):
    """TestClient bound to the test database; antimeridian halves run on the request session."""
    from fastapi.testclient import TestClient

    from core.database import get_db, get_session_factory
    from main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: None
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
