"""
Spot source synchronization.

Pulls one external map export (KMZ, KML, GeoJSON or uMap), normalizes it into
placemarks and upserts them as Spot rows owned by the source.

Key behaviours:
- Dedup key is (spot_source_id, latitude, longitude) with exact float equality.
- Progress is durable per placemark: each placemark commits on its own, so a
  run cut off by the worker time limit keeps what it already wrote.
- A failing placemark is rolled back, counted as skipped, and the run goes on.
- Rating fields and the `random` tiebreaker of existing spots are never touched.
- Stored address data wins over fresh data; only missing fields are filled.
- Placemarks are processed in chunks; the session is cleared between chunks so
  large sources do not accumulate ORM state.
"""

from __future__ import annotations

import gc
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

import requests
from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import PlacemarkError, SpotPipelineError, TransientNetworkError
from models import Spot, SpotSource
from services.description_cleaner import clean_description, extract_youtube_video_ids
from services.spot_import import (
    Placemark,
    distinct_folder_names,
    filter_and_order_by_folders,
    parse_export,
)

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], bytes]


@dataclass
class SyncStats:
    total: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    geocoded: int = 0
    geocoding_failed: int = 0
    images_processed: int = 0
    images_failed: int = 0

    def add(self, other: "SyncStats") -> None:
        for name in self.to_dict():
            setattr(self, name, getattr(self, name) + getattr(other, name))

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class SyncResult:
    success: bool
    stats: SyncStats = field(default_factory=SyncStats)
    folders_seen: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error,
            "stats": self.stats.to_dict(),
            "foldersSeen": list(self.folders_seen),
        }


def http_fetcher(session: Optional[requests.Session] = None, timeout: Optional[float] = None) -> Fetcher:
    """
    Build the default export downloader.

    Raises TransientNetworkError for connection failures and non-200 responses.
    """
    http = session or requests.Session()
    timeout_s = timeout if timeout is not None else settings.EXTERNAL_API_TIMEOUT

    def fetch(url: str) -> bytes:
        try:
            resp = http.get(url, timeout=timeout_s, allow_redirects=True)
        except requests.RequestException as e:
            raise TransientNetworkError(f"download_failed: {e}") from e
        if resp.status_code != 200:
            raise TransientNetworkError(f"download_failed: HTTP {resp.status_code} for {url}")
        return resp.content

    return fetch


@dataclass(frozen=True)
class _SourceSnapshot:
    """Plain copy of the source fields the run needs after the session is cleared."""

    id: UUID
    name: str
    url: str
    include_folders: Optional[List[str]]
    record_folder_name: bool
    is_public: bool

    @classmethod
    def of(cls, source: SpotSource) -> "_SourceSnapshot":
        return cls(
            id=source.id,
            name=source.name,
            url=source.url,
            include_folders=list(source.include_folders or []),
            record_folder_name=bool(source.record_folder_name),
            is_public=True if source.is_public is None else bool(source.is_public),
        )


class SpotSyncService:
    def __init__(
        self,
        db: Session,
        geocoder=None,
        image_cache=None,
        fetcher: Optional[Fetcher] = None,
        sleep: Callable[[float], None] = time.sleep,
        chunk_size: Optional[int] = None,
        geocoding_delay: Optional[float] = None,
    ):
        """
        Args:
            db: database session (committed once per placemark)
            geocoder: GeocodingService-like object; None disables geocoding
            image_cache: ImageCache-like object; None leaves images untouched
            fetcher: callable returning the bytes at a URL
            sleep: delay function between geocoding calls
        """
        self.db = db
        self.geocoder = geocoder
        self.image_cache = image_cache
        self.fetch = fetcher or http_fetcher()
        self.sleep = sleep
        self.chunk_size = chunk_size or settings.SYNC_CHUNK_SIZE
        self.geocoding_delay = settings.GEOCODING_DELAY_S if geocoding_delay is None else geocoding_delay
        self._geocode_calls = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def sync_source(self, source: SpotSource) -> SyncResult:
        """
        Synchronize one source.

        Args:
            source: The SpotSource to pull

        Returns:
            SyncResult. Download and format failures return success=False with
            the error; nothing is written in that case.
        """
        snapshot = _SourceSnapshot.of(source)
        stats = SyncStats()
        self._geocode_calls = 0
        started = time.time()
        logger.info(f"Starting sync for source {snapshot.name} ({snapshot.id})")

        try:
            data = self.fetch(snapshot.url)
            parsed = parse_export(data, url=snapshot.url, fetch=self.fetch)
            del data
        except SpotPipelineError as e:
            logger.error(f"Sync of source {snapshot.name} ({snapshot.id}) failed before import: {e}")
            return SyncResult(success=False, stats=stats, error=str(e))

        folders_seen = distinct_folder_names(parsed.placemarks)
        placemarks = filter_and_order_by_folders(parsed.placemarks, snapshot.include_folders)
        stats.total = len(placemarks)
        logger.info(
            f"Source {snapshot.name}: {parsed.format} export, {len(parsed.placemarks)} placemarks, "
            f"{stats.total} after folder filter"
        )

        for start in range(0, len(placemarks), self.chunk_size):
            chunk = placemarks[start:start + self.chunk_size]
            for placemark in chunk:
                self._sync_placemark(snapshot, placemark, stats)
            # Reclamation point between chunks.
            self.db.expunge_all()
            gc.collect()

        self._write_back(snapshot.id, stats, folders_seen)
        elapsed = time.time() - started
        logger.info(f"Finished sync for source {snapshot.name} in {elapsed:.1f}s: {stats.to_dict()}")
        return SyncResult(success=True, stats=stats, folders_seen=folders_seen)

    # ------------------------------------------------------------------
    # Per-placemark work
    # ------------------------------------------------------------------
    def _sync_placemark(self, source: _SourceSnapshot, placemark: Placemark, stats: SyncStats) -> None:
        try:
            created = self._upsert_placemark(source, placemark, stats)
            self.db.commit()
        except PlacemarkError as e:
            self.db.rollback()
            stats.skipped += 1
            logger.info(f"Skipped placemark {placemark.name!r} from {source.name}: {e}")
            return
        except Exception as e:
            self.db.rollback()
            stats.skipped += 1
            logger.warning(f"Failed placemark {placemark.name!r} from {source.name}: {e}", exc_info=True)
            return

        if created:
            stats.created += 1
        else:
            stats.updated += 1

    def _upsert_placemark(self, source: _SourceSnapshot, placemark: Placemark, stats: SyncStats) -> bool:
        """Write one placemark. Returns True when a new spot was created."""
        lat, lng = self._resolve_coordinates(placemark, stats)

        spot = (
            self.db.query(Spot)
            .filter(
                Spot.spot_source_id == source.id,
                Spot.latitude == lat,
                Spot.longitude == lng,
            )
            .first()
        )
        is_new = spot is None
        if is_new:
            spot = Spot(
                latitude=lat,
                longitude=lng,
                spot_source_id=source.id,
                average_rating=0.0,
                rating_count=0,
                wilson_lower_bound=0.0,
                image_urls=[],
                image_hashes=[],
                tags=[],
            )

        self._fill_address(spot, placemark, lat, lng, stats)

        if self.image_cache is not None and placemark.image_urls:
            batch = self.image_cache.process_images(
                placemark.name,
                placemark.image_urls,
                previous_hashes=list(spot.image_hashes or []),
                previous_urls=list(spot.image_urls or []),
            )
            stats.images_processed += len(batch.urls)
            stats.images_failed += batch.failed
            # Keep what is stored when every image of this run failed.
            if batch.urls:
                spot.image_urls = list(batch.urls)
                spot.image_hashes = list(batch.hashes)

        spot.name = placemark.name
        spot.description = clean_description(placemark.description)
        spot.youtube_video_ids = extract_youtube_video_ids(placemark.description)
        spot.spot_source_name = source.name
        spot.is_public = source.is_public
        if source.record_folder_name:
            spot.folder_name = placemark.folder_name

        if is_new:
            self.db.add(spot)
        self.db.flush()
        return is_new

    def _resolve_coordinates(self, placemark: Placemark, stats: SyncStats) -> tuple[float, float]:
        if placemark.has_coordinates:
            return placemark.latitude, placemark.longitude

        if not placemark.address or self.geocoder is None:
            stats.geocoding_failed += 1
            raise PlacemarkError("no_coordinates")

        result = self._geocode(self.geocoder.reverse, placemark.address)
        if not result.success:
            stats.geocoding_failed += 1
            raise PlacemarkError(f"address_not_resolved: {result.reason}")
        stats.geocoded += 1
        return result.lat, result.lng

    def _fill_address(self, spot: Spot, placemark: Placemark, lat: float, lng: float, stats: SyncStats) -> None:
        if not spot.address and placemark.address:
            spot.address = placemark.address

        if spot.address and spot.city and spot.country_code:
            return
        if self.geocoder is None:
            return

        result = self._geocode(self.geocoder.forward, lat, lng)
        if not result.success:
            stats.geocoding_failed += 1
            return
        stats.geocoded += 1
        spot.address = spot.address or result.address
        spot.city = spot.city or result.city
        spot.country_code = spot.country_code or result.country_code

    def _geocode(self, call: Callable, *args):
        # Calls within one run are serialized and spaced out for the API quota.
        if self._geocode_calls and self.geocoding_delay:
            self.sleep(self.geocoding_delay)
        self._geocode_calls += 1
        return call(*args)

    def _write_back(self, source_id: UUID, stats: SyncStats, folders_seen: List[str]) -> None:
        source = self.db.get(SpotSource, source_id)
        if source is None:
            logger.warning(f"Source {source_id} disappeared during sync; stats not recorded")
            return
        source.last_sync_at = datetime.now(timezone.utc)
        source.last_sync_stats = stats.to_dict()
        source.folders_seen = list(folders_seen)
        self.db.commit()


def sync_all_sources(db: Session, service: SpotSyncService) -> Dict[str, Any]:
    """
    Sync every active source, isolating failures per source.

    Returns:
        {"success": True, "message", "totalStats", "results": [per-source dicts]}
    """
    sources = (
        db.query(SpotSource)
        .filter(SpotSource.is_active.is_(True))
        .order_by(SpotSource.created_at, SpotSource.name)
        .all()
    )
    if not sources:
        return {"success": True, "message": "No active sync sources found", "totalStats": SyncStats().to_dict(), "results": []}

    snapshots = [(source.id, source.name) for source in sources]
    totals = SyncStats()
    results: List[Dict[str, Any]] = []

    for source_id, source_name in snapshots:
        source = db.get(SpotSource, source_id)
        if source is None:
            continue
        try:
            outcome = service.sync_source(source)
        except Exception as e:
            db.rollback()
            logger.error(f"Sync of source {source_name} ({source_id}) crashed: {e}", exc_info=True)
            outcome = SyncResult(success=False, error=str(e))

        totals.add(outcome.stats)
        results.append({
            "sourceId": str(source_id),
            "sourceName": source_name,
            "success": outcome.success,
            "error": outcome.error,
            "stats": outcome.stats.to_dict(),
        })

    logger.info(f"Synced {len(results)} sources: {totals.to_dict()}")
    return {
        "success": True,
        "message": f"Sync completed for {len(results)} sources",
        "totalStats": totals.to_dict(),
        "results": results,
    }


def build_sync_service(db: Session) -> SpotSyncService:
    """
    Wire a SpotSyncService with the configured geocoder, bucket and HTTP session.

    Raises:
        ConfigurationError: if the geocoding key or bucket is not configured
    """
    from services.geocoding_service import GeocodingService
    from services.image_cache import ImageCache
    from services.object_storage import S3Storage

    http = requests.Session()
    geocoder = GeocodingService(session=http)
    image_cache = ImageCache(S3Storage(), db, http_session=http)
    return SpotSyncService(db, geocoder=geocoder, image_cache=image_cache, fetcher=http_fetcher(http))
