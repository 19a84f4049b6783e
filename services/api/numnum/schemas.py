"""
Pydantic request / response schemas for the API layer.
Kept separate from the row records in models.py so the wire shape of the
backend never leaks into responses.
"""
from datetime import datetime
from typing import Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, Field, model_validator

from numnum.models import EdgeStatus, PostType

T = TypeVar("T")

FollowStatus = Literal["not_following", "following", "requested"]
ErrorKind = Literal["auth_required", "invalid", "not_found"]


# ──────────────────────────── Results ─────────────────────────────────────

class ActionResult(BaseModel, Generic[T]):
    """
    Outcome of a mutating operation that can be refused before any remote
    call is made (no signed-in user, bad target, nothing to act on).
    Remote failures are not represented here; they raise GatewayError.
    """
    success: bool
    data: Optional[T] = None
    error: Optional[ErrorKind] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, data: Optional[T] = None) -> "ActionResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: ErrorKind, message: str) -> "ActionResult[T]":
        return cls(success=False, error=error, message=message)


def sign_in_required(action: str) -> ActionResult:
    return ActionResult.fail("auth_required", f"User must be logged in to {action}")


# ──────────────────────────── Profiles ────────────────────────────────────

class ProfileResponse(BaseModel):
    id: str
    username: str
    display_name: str
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    is_public: bool = True
    has_completed_onboarding: bool = False


class ProfileUpdate(BaseModel):
    username: Optional[str] = Field(None, min_length=3, max_length=100)
    display_name: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    is_public: Optional[bool] = None
    has_completed_onboarding: Optional[bool] = None
    preferences: Optional[dict] = None


# ──────────────────────────── Follow graph ────────────────────────────────

class FollowListEntry(BaseModel):
    id: str
    username: str
    display_name: str
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    is_public: bool = True
    # Status of the listed edge itself
    relationship_status: EdgeStatus
    # The viewer's own relation to this profile
    follow_status: FollowStatus


class FollowStatusResponse(BaseModel):
    user_id: str
    status: FollowStatus


class FollowCounts(BaseModel):
    followers: int
    following: int


# ──────────────────────────── Map ─────────────────────────────────────────

class Viewport(BaseModel):
    """Visible map region: center plus the full span on each axis."""
    latitude: float
    longitude: float
    latitude_delta: float = Field(..., gt=0)
    longitude_delta: float = Field(..., gt=0)


class ReviewPreview(BaseModel):
    post_id: str
    author_id: str
    author_username: Optional[str] = None
    author_display_name: Optional[str] = None
    author_avatar_url: Optional[str] = None
    rating: Optional[float] = None
    snippet: str
    image_url: Optional[str] = None
    created_at: datetime


class MapPin(BaseModel):
    restaurant_id: str
    name: str
    cuisine: Optional[str] = None
    latitude: float
    longitude: float
    price_tier: Optional[str] = None
    rating: Optional[float] = None
    reviews: list[ReviewPreview]
    review_count: int
    # Sort key: created_at of the most recent review in the pin
    latest_review_at: datetime


class MapPinsResponse(BaseModel):
    pins: list[MapPin]
    selected_restaurant_id: Optional[str] = None
    available_cuisines: list[str]
    total_pins: int


# ──────────────────────────── Saved list ──────────────────────────────────

class RestaurantInput(BaseModel):
    id: str
    name: str
    cuisine: str
    rating: Optional[float | str] = None
    image_url: Optional[str] = None


class SavedRestaurant(BaseModel):
    id: str
    name: str
    cuisine: str
    rating: str
    image_url: Optional[str] = None
    is_favorite: bool = False
    added_at: Optional[datetime] = None


class SavedListQuery(BaseModel):
    search: str = ""
    favorites_only: bool = False
    alphabetical: Optional[Literal["asc", "desc"]] = None
    date: Optional[Literal["newest", "oldest"]] = None


# ──────────────────────────── Posts ───────────────────────────────────────

class AuthorSummary(BaseModel):
    id: str
    username: str
    display_name: str
    avatar_url: Optional[str] = None


class RestaurantSummary(BaseModel):
    id: str
    name: str
    cuisine: Optional[str] = None


class PostCreate(BaseModel):
    type: PostType
    content: str = Field(..., min_length=1)
    restaurant_id: Optional[str] = None
    rating: Optional[float] = Field(None, ge=1, le=5)
    image_urls: list[str] = []

    @model_validator(mode="after")
    def _reviews_need_a_restaurant(self) -> "PostCreate":
        if self.type == "review" and (self.restaurant_id is None or self.rating is None):
            raise ValueError("A review needs a restaurant_id and a rating")
        return self


class PostResponse(BaseModel):
    id: str
    user_id: str
    type: PostType
    content: Optional[str] = None
    restaurant_id: Optional[str] = None
    rating: Optional[float] = None
    image_urls: list[str] = []
    likes_count: int
    comments_count: int
    created_at: datetime
    updated_at: Optional[datetime] = None
    author: Optional[AuthorSummary] = None
    restaurant: Optional[RestaurantSummary] = None


class LikeToggle(BaseModel):
    liked: bool
    likes_count: int


class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1)
    parent_id: Optional[str] = None


class CommentResponse(BaseModel):
    id: str
    post_id: str
    user_id: str
    parent_id: Optional[str] = None
    content: str
    likes_count: int
    created_at: datetime
    author: Optional[AuthorSummary] = None
    replies: list["CommentResponse"] = []
