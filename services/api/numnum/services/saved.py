"""
Saved restaurants (bookmarks with an optional favorite star).

The remote side only stores (user_id, restaurant_id, is_favorited, added_at);
search, favorites-only and sorting are applied in memory by
apply_saved_list_view().
"""
import logging
from datetime import datetime, timezone
from functools import cmp_to_key
from typing import Iterable, Optional

from numnum.clients.supabase_client import SupabaseClient
from numnum.models import SavedRestaurantRow, decode_row, decode_rows
from numnum.schemas import (
    ActionResult,
    RestaurantInput,
    SavedListQuery,
    SavedRestaurant,
    sign_in_required,
)

logger = logging.getLogger(__name__)

SAVED_TABLE = "saved_restaurants"
RESTAURANTS_TABLE = "restaurants"
SAVED_CONFLICT_KEY = "user_id,restaurant_id"
SAVED_COLUMNS = "user_id,restaurant_id,added_at,is_favorited"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _to_saved(row: SavedRestaurantRow) -> SavedRestaurant:
    restaurant = row.restaurant
    rating = restaurant.rating if restaurant else None
    return SavedRestaurant(
        id=row.restaurant_id,
        name=(restaurant.name if restaurant else None) or "Unknown",
        cuisine=(restaurant.cuisine if restaurant else None) or "Unknown",
        rating=str(rating) if rating is not None else "0.0",
        image_url=restaurant.image_url if restaurant else None,
        is_favorite=bool(row.is_favorited),
        added_at=row.added_at,
    )


def _timestamp(value: Optional[datetime]) -> float:
    if value is None:
        return _EPOCH.timestamp()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def apply_saved_list_view(
    items: Iterable[SavedRestaurant], query: SavedListQuery
) -> list[SavedRestaurant]:
    """
    Search by name, optionally keep favorites only, then sort: alphabetical
    first, added date breaks ties. With neither sort set the order is kept.
    """
    result = list(items)

    needle = query.search.strip().lower()
    if needle:
        result = [item for item in result if needle in item.name.lower()]

    if query.favorites_only:
        result = [item for item in result if item.is_favorite]

    def compare(a: SavedRestaurant, b: SavedRestaurant) -> int:
        comparison = 0
        if query.alphabetical:
            left, right = a.name.casefold(), b.name.casefold()
            comparison = (left > right) - (left < right)
            if query.alphabetical == "desc":
                comparison = -comparison
        if comparison == 0 and query.date:
            left_ts, right_ts = _timestamp(a.added_at), _timestamp(b.added_at)
            comparison = (left_ts > right_ts) - (left_ts < right_ts)
            if query.date == "newest":
                comparison = -comparison
        return comparison

    if query.alphabetical or query.date:
        result.sort(key=cmp_to_key(compare))
    return result


class SavedListService:
    def __init__(self, gateway: SupabaseClient) -> None:
        self.gateway = gateway

    async def get_saved(self, user_id: str) -> list[SavedRestaurant]:
        result = await (
            self.gateway.table(SAVED_TABLE)
            .select("user_id,restaurant_id,added_at,is_favorited,restaurant:restaurants(*)")
            .eq("user_id", user_id)
            .order("added_at", desc=True)
            .execute()
        )
        return [_to_saved(row) for row in decode_rows(SavedRestaurantRow, result.data)]

    async def save_restaurant(
        self, user_id: Optional[str], restaurant: RestaurantInput
    ) -> ActionResult[SavedRestaurant]:
        if not user_id:
            return sign_in_required("save restaurants")

        await self._ensure_restaurant_record(restaurant)
        # Saving again leaves the existing row, and its added_at, alone
        result = await (
            self.gateway.table(SAVED_TABLE)
            .upsert(
                {
                    "user_id": user_id,
                    "restaurant_id": restaurant.id,
                    "added_at": datetime.now(timezone.utc).isoformat(),
                },
                on_conflict=SAVED_CONFLICT_KEY,
                ignore_duplicates=True,
            )
            .select(SAVED_COLUMNS)
            .execute()
        )
        if not result.data:
            result = await (
                self.gateway.table(SAVED_TABLE)
                .select(SAVED_COLUMNS)
                .eq("user_id", user_id)
                .eq("restaurant_id", restaurant.id)
                .execute()
            )
        row = decode_row(SavedRestaurantRow, (result.data or [None])[0])
        logger.info("%s saved restaurant %s", user_id, restaurant.id)
        return ActionResult[SavedRestaurant].ok(
            SavedRestaurant(
                id=restaurant.id,
                name=restaurant.name,
                cuisine=restaurant.cuisine,
                rating=str(restaurant.rating) if restaurant.rating is not None else "0.0",
                image_url=restaurant.image_url,
                is_favorite=bool(row and row.is_favorited),
                added_at=row.added_at if row else None,
            )
        )

    async def unsave_restaurant(
        self, user_id: Optional[str], restaurant_id: str
    ) -> ActionResult[bool]:
        if not user_id:
            return sign_in_required("remove saved restaurants")

        await (
            self.gateway.table(SAVED_TABLE)
            .delete()
            .eq("user_id", user_id)
            .eq("restaurant_id", restaurant_id)
            .execute()
        )
        return ActionResult[bool].ok(False)

    async def toggle_favorite(
        self, user_id: Optional[str], restaurant_id: str
    ) -> ActionResult[bool]:
        if not user_id:
            return sign_in_required("favorite restaurants")

        result = await (
            self.gateway.table(SAVED_TABLE)
            .select("restaurant_id,is_favorited")
            .eq("user_id", user_id)
            .eq("restaurant_id", restaurant_id)
            .maybe_single()
            .execute()
        )
        existing = decode_row(SavedRestaurantRow, result.data)
        if existing is None:
            return ActionResult.fail(
                "not_found", "Cannot favorite a restaurant that is not in the saved list"
            )

        next_value = not bool(existing.is_favorited)
        await (
            self.gateway.table(SAVED_TABLE)
            .update({"is_favorited": next_value})
            .eq("user_id", user_id)
            .eq("restaurant_id", restaurant_id)
            .execute()
        )
        return ActionResult[bool].ok(next_value)

    async def _ensure_restaurant_record(self, restaurant: RestaurantInput) -> None:
        result = await (
            self.gateway.table(RESTAURANTS_TABLE)
            .select("id")
            .eq("id", restaurant.id)
            .maybe_single()
            .execute()
        )
        if result.data:
            return

        rating = restaurant.rating
        if isinstance(rating, str):
            try:
                rating = float(rating)
            except ValueError:
                rating = None

        await (
            self.gateway.table(RESTAURANTS_TABLE)
            .insert(
                {
                    "id": restaurant.id,
                    "name": restaurant.name,
                    "cuisine": restaurant.cuisine,
                    "rating": rating,
                    "image_url": restaurant.image_url,
                }
            )
            .execute()
        )
        logger.info("Created restaurant record %s (%s)", restaurant.id, restaurant.name)
