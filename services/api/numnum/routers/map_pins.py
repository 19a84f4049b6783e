"""
Map endpoint — GET /map/pins

Pins for restaurants reviewed by people the caller follows, filtered by
cuisine and by the visible region. The client sends back the pin it has
selected; if the new filters hide it, the response clears the selection.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError

from numnum.dependencies import gateway_errors, get_map_service, require_user
from numnum.schemas import MapPinsResponse, Viewport
from numnum.services.map_pins import MapPinService, MapView, available_cuisines

logger = logging.getLogger(__name__)
router = APIRouter()


def _viewport(
    latitude: Optional[float],
    longitude: Optional[float],
    latitude_delta: Optional[float],
    longitude_delta: Optional[float],
) -> Optional[Viewport]:
    values = (latitude, longitude, latitude_delta, longitude_delta)
    if all(v is None for v in values):
        return None
    if any(v is None for v in values):
        raise HTTPException(
            status_code=422,
            detail="latitude, longitude, latitude_delta and longitude_delta go together",
        )
    try:
        return Viewport(
            latitude=latitude,
            longitude=longitude,
            latitude_delta=latitude_delta,
            longitude_delta=longitude_delta,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False)) from exc


@router.get("/pins", response_model=MapPinsResponse)
async def get_map_pins(
    cuisine: list[str] = Query([], description="Cuisines to keep (any match)"),
    latitude: Optional[float] = Query(None),
    longitude: Optional[float] = Query(None),
    latitude_delta: Optional[float] = Query(None),
    longitude_delta: Optional[float] = Query(None),
    selected: Optional[str] = Query(None, description="restaurant_id of the selected pin"),
    user_id: str = Depends(require_user),
    map_service: MapPinService = Depends(get_map_service),
):
    viewport = _viewport(latitude, longitude, latitude_delta, longitude_delta)

    with gateway_errors():
        pins = await map_service.load_pins(user_id)

    view = MapView(pins, cuisines=cuisine, viewport=viewport)
    view.select(selected)
    selected_pin = view.selected_pin
    if selected and selected_pin is None:
        logger.debug("Selection %s is hidden by the current filters; clearing", selected)

    return MapPinsResponse(
        pins=view.visible_pins,
        selected_restaurant_id=selected_pin.restaurant_id if selected_pin else None,
        available_cuisines=available_cuisines(pins),
        total_pins=len(pins),
    )
