from pydantic import BaseModel, ConfigDict, Field, HttpUrl
from datetime import datetime
from uuid import UUID
from typing import Optional, List, Dict


class SpotResponse(BaseModel):
    id: UUID
    name: str
    description: str = ""
    latitude: float
    longitude: float
    address: Optional[str] = None
    city: Optional[str] = None
    country_code: Optional[str] = None
    image_urls: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    youtube_video_ids: List[str] = Field(default_factory=list)
    spot_source_id: Optional[UUID] = None
    spot_source_name: Optional[str] = None
    folder_name: Optional[str] = None
    # Derived by the rating aggregator
    average_rating: float = 0.0
    rating_count: int = 0
    wilson_lower_bound: float = 0.0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RankedSpotsResponse(BaseModel):
    success: bool = True
    spots: List[SpotResponse]
    totalCount: int  # -1 when the count could not be computed
    shownCount: int
    averageWilson: float


class SpotSourceCreate(BaseModel):
    name: str = Field(..., min_length=1)
    url: HttpUrl
    description: Optional[str] = None
    public_url: Optional[HttpUrl] = None
    include_folders: Optional[List[str]] = None
    record_folder_name: bool = False
    is_active: bool = True
    is_public: bool = True


class SpotSourceUpdate(BaseModel):
    """Partial update; only fields that are sent are changed."""
    name: Optional[str] = Field(default=None, min_length=1)
    url: Optional[HttpUrl] = None
    description: Optional[str] = None
    public_url: Optional[HttpUrl] = None
    include_folders: Optional[List[str]] = None
    record_folder_name: Optional[bool] = None
    is_active: Optional[bool] = None
    is_public: Optional[bool] = None


class SpotSourceResponse(BaseModel):
    id: UUID
    name: str
    url: str
    description: Optional[str] = None
    public_url: Optional[str] = None
    include_folders: Optional[List[str]] = None
    record_folder_name: bool = False
    is_active: bool
    is_public: bool
    last_sync_at: Optional[datetime] = None
    last_sync_stats: Optional[Dict[str, int]] = None
    folders_seen: Optional[List[str]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RatingCreate(BaseModel):
    spot_id: UUID
    rating: float = Field(..., ge=0, le=5)


class RatingUpdate(BaseModel):
    rating: Optional[float] = Field(default=None, ge=0, le=5)
    # Moving a rating to another spot recomputes both spots
    spot_id: Optional[UUID] = None


class RatingResponse(BaseModel):
    id: UUID
    spot_id: UUID
    author_id: str
    rating: float
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
