"""
Saved list endpoints:
  GET    /saved                          — the caller's saved restaurants (search / sort / filter)
  POST   /saved                          — save a restaurant
  DELETE /saved/{restaurant_id}          — remove it
  POST   /saved/{restaurant_id}/favorite — toggle the favorite star
"""
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status

from numnum.dependencies import (
    gateway_errors,
    get_current_user_id,
    get_saved_service,
    require_user,
    unwrap,
)
from numnum.schemas import RestaurantInput, SavedListQuery, SavedRestaurant
from numnum.services.saved import SavedListService, apply_saved_list_view

router = APIRouter()


@router.get("/", response_model=list[SavedRestaurant])
async def get_saved_list(
    search: str = Query(""),
    favorites_only: bool = Query(False),
    alphabetical: Optional[Literal["asc", "desc"]] = Query(None),
    date: Optional[Literal["newest", "oldest"]] = Query(None),
    user_id: str = Depends(require_user),
    saved: SavedListService = Depends(get_saved_service),
):
    with gateway_errors():
        items = await saved.get_saved(user_id)
    query = SavedListQuery(
        search=search, favorites_only=favorites_only, alphabetical=alphabetical, date=date
    )
    return apply_saved_list_view(items, query)


@router.post("/", response_model=SavedRestaurant, status_code=status.HTTP_201_CREATED)
async def save_restaurant(
    body: RestaurantInput,
    current_user_id: Optional[str] = Depends(get_current_user_id),
    saved: SavedListService = Depends(get_saved_service),
):
    with gateway_errors():
        result = await saved.save_restaurant(current_user_id, body)
    return unwrap(result)


@router.delete("/{restaurant_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unsave_restaurant(
    restaurant_id: str,
    current_user_id: Optional[str] = Depends(get_current_user_id),
    saved: SavedListService = Depends(get_saved_service),
):
    with gateway_errors():
        result = await saved.unsave_restaurant(current_user_id, restaurant_id)
    unwrap(result)


@router.post("/{restaurant_id}/favorite")
async def toggle_favorite(
    restaurant_id: str,
    current_user_id: Optional[str] = Depends(get_current_user_id),
    saved: SavedListService = Depends(get_saved_service),
):
    with gateway_errors():
        result = await saved.toggle_favorite(current_user_id, restaurant_id)
    return {"restaurant_id": restaurant_id, "is_favorite": unwrap(result)}
