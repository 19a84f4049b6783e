"""
Map pins — restaurant-grouped reviews from people the viewer follows.

Pipeline:

  fetch      │ approved following ids → their review posts (newest first),
             │ each joined to its restaurant and author profile
  ───────────┼──────────────────────────────────────────────────────────────
  aggregate  │ group by restaurant_id, drop rows without a restaurant or with
             │ coordinates that don't parse, newest review first inside a pin,
             │ pins ordered by their newest review
  ───────────┼──────────────────────────────────────────────────────────────
  filter     │ cuisine (case-insensitive, empty = all) then viewport
             │ ([center - delta/2, center + delta/2] on both axes)

Bad rows are a data-quality matter: they are counted and skipped, never
raised. A failed fetch raises GatewayError for the caller to surface.
"""
import logging
import math
import time
from collections import defaultdict
from typing import Any, Iterable, Optional

from opentelemetry import trace

from numnum.clients.supabase_client import SupabaseClient
from numnum.config import settings
from numnum.models import FollowRow, PostRow, decode_rows
from numnum.schemas import MapPin, ReviewPreview, Viewport
from numnum.telemetry import MAP_BUILD_LATENCY, MAP_REVIEWS_SKIPPED_TOTAL

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ELLIPSIS = "..."
NO_TEXT_PLACEHOLDER = "No review text"

REVIEW_SELECT = (
    "id,user_id,type,content,rating,restaurant_id,image_urls,"
    "likes_count,comments_count,created_at,"
    "restaurant:restaurants(*),author:profiles(*)"
)


# ─────────────────────────── Field normalisation ──────────────────────────

def parse_coordinate(value: Any) -> Optional[float]:
    """Accept a finite number or numeric string; anything else is None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def normalize_price_tier(raw: Any) -> Optional[str]:
    """
    "$$$premium" → "$$$+", "$$ moderate" → "$$", "$" → "$".
    Text without a known prefix is returned trimmed; blank means no tier.
    """
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    if text.startswith("$$$"):
        return "$$$+"
    if text.startswith("$$"):
        return "$$"
    if text.startswith("$"):
        return "$"
    return text


def make_snippet(text: Optional[str], limit: Optional[int] = None) -> str:
    limit = limit or settings.map_snippet_length
    if text is None or not text.strip():
        return NO_TEXT_PLACEHOLDER
    if len(text) <= limit:
        return text
    return text[:limit] + ELLIPSIS


# ─────────────────────────── Aggregation ──────────────────────────────────

def _preview(review: PostRow) -> ReviewPreview:
    author = review.author
    return ReviewPreview(
        post_id=review.id,
        author_id=review.user_id,
        author_username=author.handle if author else None,
        author_display_name=author.name if author else None,
        author_avatar_url=author.avatar_url if author else None,
        rating=review.rating,
        snippet=make_snippet(review.content),
        image_url=review.image_urls[0] if review.image_urls else None,
        created_at=review.created_at,
    )


def build_map_pins(reviews: Iterable[PostRow]) -> list[MapPin]:
    """Group reviews into one pin per restaurant, most recently reviewed first."""
    grouped: dict[str, list[PostRow]] = defaultdict(list)
    coordinates: dict[str, tuple[float, float]] = {}

    for review in reviews:
        restaurant = review.restaurant
        if restaurant is None:
            MAP_REVIEWS_SKIPPED_TOTAL.labels(reason="no_restaurant").inc()
            continue

        latitude = parse_coordinate(restaurant.latitude)
        longitude = parse_coordinate(restaurant.longitude)
        if latitude is None or longitude is None:
            MAP_REVIEWS_SKIPPED_TOTAL.labels(reason="bad_coordinates").inc()
            logger.debug("Skipping review %s: bad coordinates on %s", review.id, restaurant.id)
            continue

        coordinates.setdefault(restaurant.id, (latitude, longitude))
        grouped[restaurant.id].append(review)

    pins: list[MapPin] = []
    for restaurant_id, group in grouped.items():
        group.sort(key=lambda r: r.created_at, reverse=True)
        restaurant = group[0].restaurant
        latitude, longitude = coordinates[restaurant_id]
        pins.append(
            MapPin(
                restaurant_id=restaurant_id,
                name=restaurant.name or "Unknown",
                cuisine=restaurant.cuisine,
                latitude=latitude,
                longitude=longitude,
                price_tier=normalize_price_tier(restaurant.price_range),
                rating=restaurant.rating,
                reviews=[_preview(r) for r in group],
                review_count=len(group),
                latest_review_at=group[0].created_at,
            )
        )

    pins.sort(key=lambda p: p.latest_review_at, reverse=True)
    return pins


# ─────────────────────────── Filters ──────────────────────────────────────

def matches_cuisine(pin: MapPin, cuisines: Iterable[str]) -> bool:
    wanted = {c.strip().lower() for c in cuisines if c and c.strip()}
    if not wanted:
        return True
    return bool(pin.cuisine) and pin.cuisine.strip().lower() in wanted


def in_viewport(pin: MapPin, viewport: Viewport) -> bool:
    half_lat = viewport.latitude_delta / 2
    half_lng = viewport.longitude_delta / 2
    return (
        viewport.latitude - half_lat <= pin.latitude <= viewport.latitude + half_lat
        and viewport.longitude - half_lng <= pin.longitude <= viewport.longitude + half_lng
    )


def filter_pins(
    pins: Iterable[MapPin],
    cuisines: Iterable[str] = (),
    viewport: Optional[Viewport] = None,
) -> list[MapPin]:
    cuisines = list(cuisines)
    visible = [p for p in pins if matches_cuisine(p, cuisines)]
    if viewport is not None:
        visible = [p for p in visible if in_viewport(p, viewport)]
    return visible


def available_cuisines(pins: Iterable[MapPin]) -> list[str]:
    seen: dict[str, str] = {}
    for pin in pins:
        if pin.cuisine and pin.cuisine.strip():
            seen.setdefault(pin.cuisine.strip().lower(), pin.cuisine.strip())
    return sorted(seen.values(), key=str.lower)


class MapView:
    """
    Pins plus the current filters and selection.

    Every change to the pins, the cuisine selection or the viewport re-checks
    the selected pin and clears it once it is no longer visible.
    """

    def __init__(
        self,
        pins: Iterable[MapPin] = (),
        cuisines: Iterable[str] = (),
        viewport: Optional[Viewport] = None,
    ) -> None:
        self._pins = list(pins)
        self._cuisines = list(cuisines)
        self._viewport = viewport
        self._selected_id: Optional[str] = None
        self._visible = filter_pins(self._pins, self._cuisines, self._viewport)

    @property
    def pins(self) -> list[MapPin]:
        return list(self._pins)

    @property
    def visible_pins(self) -> list[MapPin]:
        return list(self._visible)

    @property
    def cuisines(self) -> list[str]:
        return list(self._cuisines)

    @property
    def viewport(self) -> Optional[Viewport]:
        return self._viewport

    @property
    def selected_pin(self) -> Optional[MapPin]:
        if self._selected_id is None:
            return None
        return next((p for p in self._visible if p.restaurant_id == self._selected_id), None)

    def select(self, restaurant_id: Optional[str]) -> bool:
        """Select a visible pin (None clears). Returns whether a pin is selected."""
        if restaurant_id is None:
            self._selected_id = None
            return False
        if any(p.restaurant_id == restaurant_id for p in self._visible):
            self._selected_id = restaurant_id
            return True
        return False

    def set_pins(self, pins: Iterable[MapPin]) -> None:
        self._pins = list(pins)
        self._refresh()

    def set_cuisines(self, cuisines: Iterable[str]) -> None:
        self._cuisines = list(cuisines)
        self._refresh()

    def set_viewport(self, viewport: Optional[Viewport]) -> None:
        self._viewport = viewport
        self._refresh()

    def _refresh(self) -> None:
        self._visible = filter_pins(self._pins, self._cuisines, self._viewport)
        if self._selected_id is not None and self.selected_pin is None:
            logger.debug("Selected pin %s filtered out; clearing selection", self._selected_id)
            self._selected_id = None


# ─────────────────────────── Fetch ────────────────────────────────────────

class MapPinService:
    def __init__(self, gateway: SupabaseClient) -> None:
        self.gateway = gateway

    async def fetch_following_reviews(
        self, viewer_id: str, limit: Optional[int] = None
    ) -> list[PostRow]:
        """Review posts by users the viewer follows (approved only), newest first."""
        following = await (
            self.gateway.table("followers")
            .select("following_id")
            .eq("follower_id", viewer_id)
            .eq("status", "approved")
            .execute()
        )
        author_ids = [
            edge.following_id
            for edge in decode_rows(FollowRow, following.data)
            if edge.following_id
        ]
        if not author_ids:
            return []

        result = await (
            self.gateway.table("posts")
            .select(REVIEW_SELECT)
            .eq("type", "review")
            .in_("user_id", author_ids)
            .order("created_at", desc=True)
            .limit(limit or settings.map_review_limit)
            .execute()
        )
        return decode_rows(PostRow, result.data)

    async def load_pins(self, viewer_id: str) -> list[MapPin]:
        start = time.perf_counter()
        with tracer.start_as_current_span("load_map_pins") as span:
            span.set_attribute("user.id", viewer_id)
            reviews = await self.fetch_following_reviews(viewer_id)
            pins = build_map_pins(reviews)
            span.set_attribute("map.reviews", len(reviews))
            span.set_attribute("map.pins", len(pins))
        MAP_BUILD_LATENCY.observe(time.perf_counter() - start)
        return pins
