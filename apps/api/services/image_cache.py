"""
Image deduplication cache for imported spots.

Every image referenced by an export is resolved to a stored, public JPEG.
Resolution stops at the first step that yields an existing object:

1. URL cache: the source URL was seen before and its object still exists.
   Hosts that hand out short-lived links never use this step. An entry whose
   object is gone is deleted.
2. Previous hash: the spot already had an image at this index and that object
   still exists. The stored URL is checked first, so a renamed spot does not
   need a bucket listing.
3. Content hash: the downloaded bytes hash to an object that already exists,
   or to an image resolved earlier in the same call.
4. Upload: resize, re-encode and upload as spots/{slug}_{hash}_{index}.jpg.

Network and image work runs in a small thread pool, one group of
IMAGE_BATCH_SIZE images at a time. Each group runs in two phases: fetch
(lookups, download, hash) and store (exists check, resize, upload). Between
them the group is collapsed by content hash, so identical bytes behind
different URLs are stored once. Database reads and writes stay on the
calling thread because the Session is not thread-safe.
"""

from __future__ import annotations

import base64
import hashlib
import io
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence
from urllib.parse import urlparse

import requests
from PIL import Image
from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import ImageError, TransientNetworkError
from models import ImageCacheEntry
from services.description_cleaner import slugify
from services.object_storage import SPOT_IMAGE_PREFIX

logger = logging.getLogger(__name__)

DOWNLOAD_HEADERS = {"User-Agent": "Mozilla/5.0 (compatible; SpotImageFetcher/1.0)"}


@dataclass
class ImageBatchResult:
    urls: List[str] = field(default_factory=list)
    hashes: List[str] = field(default_factory=list)
    failed: int = 0


@dataclass
class _ImageOutcome:
    public_url: Optional[str] = None
    content_hash: Optional[str] = None
    step: Optional[str] = None  # url_cache | previous_hash | content_hash | uploaded
    stale_cache: bool = False
    error: Optional[str] = None
    # Downloaded bytes waiting for the store phase; dropped once stored.
    data: Optional[bytes] = None


def cache_key_for_url(url: str) -> str:
    """URL-safe, padding-free base64 of the source URL."""
    return base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii").rstrip("=")


def storage_key(spot_name: str, content_hash: str, index: int) -> str:
    slug = slugify(spot_name) or "spot"
    return f"{SPOT_IMAGE_PREFIX}{slug}_{content_hash}_{index}.jpg"


def resize_to_jpeg(data: bytes, max_dimension: int, quality: int) -> bytes:
    """
    Fit an image inside a max_dimension square box and re-encode as JPEG.

    Aspect ratio is preserved and images are never upscaled.

    Raises:
        ImageError: if the bytes are not a decodable image
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            img.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)
            out = io.BytesIO()
            img.save(out, "JPEG", quality=quality, optimize=True)
            return out.getvalue()
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise ImageError(f"undecodable_image: {e}") from e


class ImageCache:
    def __init__(
        self,
        storage,
        db: Session,
        http_session: Optional[requests.Session] = None,
        batch_size: Optional[int] = None,
        max_dimension: Optional[int] = None,
        jpeg_quality: Optional[int] = None,
        ephemeral_hosts: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
    ):
        """
        Args:
            storage: object storage client (see services.object_storage.S3Storage)
            db: database session used for the URL cache table
            http_session: requests.Session used for downloads
        """
        self.storage = storage
        self.db = db
        self.http = http_session or requests.Session()
        self.batch_size = batch_size or settings.IMAGE_BATCH_SIZE
        self.max_dimension = max_dimension or settings.IMAGE_MAX_DIMENSION
        self.jpeg_quality = jpeg_quality or settings.IMAGE_JPEG_QUALITY
        hosts = ephemeral_hosts if ephemeral_hosts is not None else settings.EPHEMERAL_IMAGE_HOSTS
        self.ephemeral_hosts = [h.lower() for h in hosts]
        self.timeout = timeout if timeout is not None else settings.EXTERNAL_API_TIMEOUT

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def is_ephemeral(self, url: str) -> bool:
        host = (urlparse(url).hostname or "").lower()
        return any(host == h or host.endswith("." + h) for h in self.ephemeral_hosts)

    def process_images(
        self,
        spot_name: str,
        image_urls: Sequence[str],
        previous_hashes: Optional[Sequence[str]] = None,
        previous_urls: Optional[Sequence[str]] = None,
    ) -> ImageBatchResult:
        """
        Resolve image URLs to stored public URLs and content hashes.

        Args:
            spot_name: Spot name (used in object keys)
            image_urls: Source image URLs, in display order
            previous_hashes: Hashes already stored on the spot, by index
            previous_urls: Public URLs already stored on the spot, by index

        Returns:
            ImageBatchResult with parallel urls/hashes in input order (failures
            omitted) and the number of failed images.
        """
        previous = list(previous_hashes or [])
        previous_public = list(previous_urls or [])
        result = ImageBatchResult()
        if not image_urls:
            return result

        # content hash -> public URL for everything resolved in this call
        resolved: Dict[str, str] = {}
        items = list(enumerate(image_urls))
        with ThreadPoolExecutor(max_workers=self.batch_size) as pool:
            for start in range(0, len(items), self.batch_size):
                group = items[start:start + self.batch_size]
                cached = {index: self._lookup_cached(url) for index, url in group}

                futures = [
                    pool.submit(
                        self._fetch_one,
                        spot_name,
                        index,
                        url,
                        cached[index],
                        previous[index] if index < len(previous) else None,
                        previous_public[index] if index < len(previous_public) else None,
                    )
                    for index, url in group
                ]
                outcomes = [future.result() for future in futures]
                self._store_group(pool, spot_name, group, outcomes, resolved)

                for (index, url), outcome in zip(group, outcomes):
                    self._apply_outcome(url, outcome)
                    if outcome.error:
                        result.failed += 1
                        logger.warning(f"Image {index} of {spot_name!r} failed ({url}): {outcome.error}")
                        continue
                    result.urls.append(outcome.public_url)
                    result.hashes.append(outcome.content_hash)

        return result

    def _store_group(
        self,
        pool: ThreadPoolExecutor,
        spot_name: str,
        group: List[tuple[int, str]],
        outcomes: List[_ImageOutcome],
        resolved: Dict[str, str],
    ) -> None:
        """Store phase: one exists/upload per distinct content hash, shared by every duplicate."""
        for outcome in outcomes:
            if outcome.public_url and outcome.content_hash:
                resolved.setdefault(outcome.content_hash, outcome.public_url)

        first_by_hash: Dict[str, tuple[int, _ImageOutcome]] = {}
        for (index, _), outcome in zip(group, outcomes):
            if outcome.data is None or outcome.content_hash in resolved:
                continue
            first_by_hash.setdefault(outcome.content_hash, (index, outcome))

        futures = {
            content_hash: pool.submit(self._store_one, spot_name, index, content_hash, outcome.data)
            for content_hash, (index, outcome) in first_by_hash.items()
        }
        stored: Dict[str, tuple[Optional[str], str, Optional[str]]] = {}
        for content_hash, future in futures.items():
            try:
                public_url, step = future.result()
                stored[content_hash] = (public_url, step, None)
                resolved[content_hash] = public_url
            except Exception as e:
                stored[content_hash] = (None, "", str(e) or e.__class__.__name__)

        for outcome in outcomes:
            if outcome.data is None:
                continue
            outcome.data = None
            content_hash = outcome.content_hash
            if content_hash in stored:
                public_url, step, error = stored[content_hash]
                first = first_by_hash[content_hash][1]
                # Later duplicates reuse the first one's object.
                step = step if outcome is first else "content_hash"
            else:
                public_url, step, error = resolved[content_hash], "content_hash", None
            if error:
                outcome.error = error
                outcome.public_url = outcome.content_hash = outcome.step = None
            else:
                outcome.public_url, outcome.step = public_url, step

    # ------------------------------------------------------------------
    # Calling-thread helpers (database access)
    # ------------------------------------------------------------------
    def _lookup_cached(self, url: str) -> Optional[tuple[str, str]]:
        if self.is_ephemeral(url):
            return None
        entry = self.db.get(ImageCacheEntry, cache_key_for_url(url))
        if entry is None:
            return None
        return (entry.hash, entry.public_url)

    def _apply_outcome(self, url: str, outcome: _ImageOutcome) -> None:
        key = cache_key_for_url(url)
        if outcome.stale_cache:
            entry = self.db.get(ImageCacheEntry, key)
            if entry is not None:
                self.db.delete(entry)
                self.db.flush()
                logger.info(f"Removed stale image cache entry for {url}")

        if outcome.error or self.is_ephemeral(url):
            self.db.flush()
            return

        now = datetime.now(timezone.utc)
        if outcome.step in ("content_hash", "uploaded"):
            entry = self.db.get(ImageCacheEntry, key)
            if entry is None:
                entry = ImageCacheEntry(key=key, source_url=url)
                self.db.add(entry)
            entry.hash = outcome.content_hash
            entry.public_url = outcome.public_url
            entry.last_checked = now
        elif outcome.step == "url_cache":
            entry = self.db.get(ImageCacheEntry, key)
            if entry is not None:
                entry.last_checked = now
        self.db.flush()

    # ------------------------------------------------------------------
    # Worker-thread helpers (network and image work only)
    # ------------------------------------------------------------------
    def _fetch_one(
        self,
        spot_name: str,
        index: int,
        url: str,
        cached: Optional[tuple[str, str]],
        previous_hash: Optional[str],
        previous_url: Optional[str],
    ) -> _ImageOutcome:
        """Fetch phase: steps 1 and 2, else download and hash (outcome.data set)."""
        outcome = _ImageOutcome()
        try:
            if cached is not None:
                cached_hash, cached_url = cached
                key = self.storage.key_for_public_url(cached_url)
                if key and self.storage.exists(key):
                    outcome.public_url, outcome.content_hash, outcome.step = cached_url, cached_hash, "url_cache"
                    return outcome
                outcome.stale_cache = True

            if previous_hash:
                key = self._previous_key(spot_name, previous_hash, previous_url, index)
                if key:
                    outcome.public_url = self.storage.public_url(key)
                    outcome.content_hash, outcome.step = previous_hash, "previous_hash"
                    return outcome

            outcome.data = self._download(url)
            outcome.content_hash = hashlib.sha256(outcome.data).hexdigest()
            return outcome
        except Exception as e:
            outcome.error = str(e) or e.__class__.__name__
            outcome.public_url = outcome.content_hash = outcome.step = outcome.data = None
            return outcome

    def _store_one(self, spot_name: str, index: int, content_hash: str, data: bytes) -> tuple[str, str]:
        """Steps 3 and 4 for one distinct hash. Returns (public_url, step)."""
        key = self._existing_key_for_hash(spot_name, content_hash, index)
        if key:
            return self.storage.public_url(key), "content_hash"
        jpeg = resize_to_jpeg(data, self.max_dimension, self.jpeg_quality)
        return self.storage.upload_public(storage_key(spot_name, content_hash, index), jpeg), "uploaded"

    def _previous_key(
        self,
        spot_name: str,
        content_hash: str,
        previous_url: Optional[str],
        index: int,
    ) -> Optional[str]:
        # The stored URL survives a spot rename; the listing is the last resort.
        key = self.storage.key_for_public_url(previous_url) if previous_url else None
        if key and f"_{content_hash}_" in key and self.storage.exists(key):
            return key
        return self._existing_key_for_hash(spot_name, content_hash, index)

    def _existing_key_for_hash(self, spot_name: str, content_hash: str, index: int) -> Optional[str]:
        # The key this spot would have used is the cheap check; listing is the fallback.
        expected = storage_key(spot_name, content_hash, index)
        if self.storage.exists(expected):
            return expected
        return self.storage.find_by_hash(content_hash)

    def _download(self, url: str) -> bytes:
        try:
            resp = self.http.get(url, timeout=self.timeout, headers=DOWNLOAD_HEADERS)
        except requests.RequestException as e:
            raise TransientNetworkError(f"download_failed: {e}") from e
        if resp.status_code != 200:
            raise TransientNetworkError(f"download_failed: HTTP {resp.status_code}")
        if not resp.content:
            raise ImageError("empty_image")
        return resp.content



def cleanup_image_cache(db: Session, storage) -> Dict[str, int | bool]:
    """
    Drop URL cache entries whose stored object no longer exists.

    Returns:
        {"success": bool, "checked": int, "removed": int, "errors": int}
    """
    checked = removed = errors = 0
    for entry in db.query(ImageCacheEntry).all():
        checked += 1
        try:
            key = storage.key_for_public_url(entry.public_url)
            if key and storage.exists(key):
                continue
            db.delete(entry)
            removed += 1
        except TransientNetworkError as e:
            errors += 1
            logger.warning(f"Could not verify cached image {entry.public_url}: {e}")
    db.commit()
    logger.info(f"Image cache cleanup: checked={checked} removed={removed} errors={errors}")
    return {"success": errors == 0, "checked": checked, "removed": removed, "errors": errors}
