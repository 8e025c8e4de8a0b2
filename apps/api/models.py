from sqlalchemy import Column, Integer, Boolean, Float, DateTime, ForeignKey, Text, Index, JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from core.database import Base
from random import random as uniform_random
import uuid

# JSONB on Postgres, plain JSON elsewhere (sqlite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


class SpotSource(Base):
    """
    An administrator-configured external feed (Google My Maps KMZ/KML export,
    GeoJSON file or uMap instance) that is periodically synchronized into the
    spot table.

    The admin surface owns every column except the last_sync_* / folders_seen
    bookkeeping, which the sync writes back after each run.
    """

    __tablename__ = "spot_source"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    name = Column(Text, nullable=False)
    url = Column(Text, nullable=False)  # export URL that is fetched by the sync
    description = Column(Text, nullable=True)
    public_url = Column(Text, nullable=True)  # human-facing link to the map

    # Ordered allow-list. Also defines the order spots are written in.
    include_folders = Column(JSONType, nullable=True)
    record_folder_name = Column(Boolean, default=False, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False, index=True)
    is_public = Column(Boolean, default=True, nullable=False)

    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    # {"total", "created", "updated", "skipped", "geocoded", "geocoding_failed", ...}
    last_sync_stats = Column(JSONType, nullable=True)
    folders_seen = Column(JSONType, nullable=True)

    spots = relationship("Spot", back_populates="spot_source")


class Spot(Base):
    __tablename__ = "spot"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    name = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="")
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)

    address = Column(Text, nullable=True)
    city = Column(Text, nullable=True)
    country_code = Column(Text, nullable=True)

    # Parallel lists: image_hashes[i] is the content hash behind image_urls[i].
    image_urls = Column(JSONType, nullable=False, default=list)
    image_hashes = Column(JSONType, nullable=False, default=list)
    tags = Column(JSONType, nullable=False, default=list)
    youtube_video_ids = Column(JSONType, nullable=False, default=list)

    # NULL = created natively in the app, not by a sync.
    spot_source_id = Column(Uuid(as_uuid=True), ForeignKey("spot_source.id", ondelete="SET NULL"), nullable=True)
    spot_source_name = Column(Text, nullable=True)
    folder_name = Column(Text, nullable=True)
    is_public = Column(Boolean, default=True, nullable=False)

    # --- DERIVED RATING FIELDS ---
    # Written only by services.rating_aggregator.
    average_rating = Column(Float, default=0.0, nullable=False)
    rating_count = Column(Integer, default=0, nullable=False)
    wilson_lower_bound = Column(Float, default=0.0, nullable=False, index=True)

    # Uniform [0, 1) value assigned once at insert. Orders the unrated tier so
    # the same unrated spots are not always the ones surfaced.
    random = Column(Float, default=uniform_random, nullable=False)

    spot_source = relationship("SpotSource", back_populates="spots")
    ratings = relationship("Rating", back_populates="spot", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        # Sync dedup key: exact (source, latitude, longitude).
        Index("ix_spot_source_coordinates", "spot_source_id", "latitude", "longitude"),
        Index("ix_spot_lat_lng", "latitude", "longitude"),
    )


class Rating(Base):
    __tablename__ = "rating"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    spot_id = Column(Uuid(as_uuid=True), ForeignKey("spot.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(Text, nullable=False, index=True)
    rating = Column(Float, nullable=False)  # 0..5

    spot = relationship("Spot", back_populates="ratings")


class ImageCacheEntry(Base):
    """
    Maps an original image URL to the content hash and public URL it was
    stored under. Deleted as soon as the stored object is found missing.
    """

    __tablename__ = "image_cache_entry"

    key = Column(Text, primary_key=True)  # url-safe base64 of the source URL
    source_url = Column(Text, nullable=False)
    hash = Column(Text, nullable=False, index=True)
    public_url = Column(Text, nullable=False)
    last_checked = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class AppSetting(Base):
    """
    Scalar settings produced by out-of-band jobs.

    `average_wilson` is the global average Wilson lower bound used as the
    above/below pivot for ranked queries.
    """

    __tablename__ = "app_setting"

    key = Column(Text, primary_key=True)
    value = Column(Float, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
