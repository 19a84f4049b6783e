"""
Typed records for rows returned by the remote tables.

Tables:
  profiles          — user profiles; is_public decides whether follows auto-approve
  followers         — follow edges (follower_id → following_id, status)
  restaurants       — name, cuisine, coordinates, free-text price_range
  posts             — reviews and threads with denormalized like/comment counters
  comments          — post comments, optionally replying to another comment
  likes             — user × post engagement
  saved_restaurants — user × restaurant bookmarks

Remote rows are never consumed as raw dicts: decode_rows() validates each
row and drops the ones that don't fit.
"""
import logging
import math
from datetime import datetime
from typing import Any, Literal, Optional, Sequence, TypeVar

from pydantic import BaseModel, ValidationError, field_validator

from numnum.telemetry import ROWS_REJECTED_TOTAL

logger = logging.getLogger(__name__)

EdgeStatus = Literal["approved", "requested"]
PostType = Literal["review", "thread"]

M = TypeVar("M", bound=BaseModel)


def _lenient_float(value: Any) -> Optional[float]:
    # A bad rating should not cost us the whole row
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class ProfileRow(BaseModel):
    id: str
    username: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    is_public: Optional[bool] = None
    has_completed_onboarding: Optional[bool] = None
    preferences: Optional[dict] = None

    @property
    def handle(self) -> str:
        return self.username or "user"

    @property
    def name(self) -> str:
        return self.display_name or self.username or "User"

    @property
    def public(self) -> bool:
        return True if self.is_public is None else self.is_public


class FollowRow(BaseModel):
    follower_id: Optional[str] = None
    following_id: Optional[str] = None
    status: EdgeStatus = "approved"

    @field_validator("status", mode="before")
    @classmethod
    def _missing_status_is_approved(cls, value: Any) -> Any:
        return "approved" if value is None else value


class RestaurantRow(BaseModel):
    id: str
    name: Optional[str] = None
    cuisine: Optional[str] = None
    # Numbers or numeric strings on the wire; parsed by the map aggregator
    latitude: Any = None
    longitude: Any = None
    price_range: Any = None
    rating: Optional[float] = None
    image_url: Optional[str] = None

    @field_validator("rating", mode="before")
    @classmethod
    def _parse_rating(cls, value: Any) -> Optional[float]:
        return _lenient_float(value)


class PostRow(BaseModel):
    id: str
    user_id: str
    type: PostType
    content: Optional[str] = None
    restaurant_id: Optional[str] = None
    rating: Optional[float] = None
    image_urls: list[str] = []
    likes_count: int = 0
    comments_count: int = 0
    created_at: datetime
    updated_at: Optional[datetime] = None

    # Embedded resources (select=...,author:profiles(*),restaurant:restaurants(*))
    author: Optional[ProfileRow] = None
    restaurant: Optional[RestaurantRow] = None

    @field_validator("rating", mode="before")
    @classmethod
    def _parse_rating(cls, value: Any) -> Optional[float]:
        return _lenient_float(value)

    @field_validator("image_urls", mode="before")
    @classmethod
    def _null_images(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("likes_count", "comments_count", mode="before")
    @classmethod
    def _null_counter(cls, value: Any) -> Any:
        return 0 if value is None else value


class CommentRow(BaseModel):
    id: str
    post_id: str
    user_id: str
    parent_id: Optional[str] = None
    content: str = ""
    likes_count: int = 0
    created_at: datetime
    author: Optional[ProfileRow] = None

    @field_validator("likes_count", mode="before")
    @classmethod
    def _null_counter(cls, value: Any) -> Any:
        return 0 if value is None else value


class SavedRestaurantRow(BaseModel):
    restaurant_id: str
    user_id: Optional[str] = None
    is_favorited: Optional[bool] = None
    added_at: Optional[datetime] = None
    restaurant: Optional[RestaurantRow] = None


def decode_row(model: type[M], row: Any) -> Optional[M]:
    if row is None:
        return None
    try:
        return model.model_validate(row)
    except ValidationError as exc:
        ROWS_REJECTED_TOTAL.labels(model=model.__name__).inc()
        logger.debug("Dropping malformed %s row: %s", model.__name__, exc)
        return None


def decode_rows(model: type[M], rows: Optional[Sequence[Any]]) -> list[M]:
    decoded = (decode_row(model, row) for row in rows or [])
    return [item for item in decoded if item is not None]
