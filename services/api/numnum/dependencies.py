"""
FastAPI dependencies: the per-request gateway, the caller's identity and the
services built on top of them, plus the translation of service outcomes into
HTTP errors.
"""
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from fastapi import Depends, Header, HTTPException, status

from numnum.clients.supabase_client import GatewayError, SupabaseClient, supabase_client
from numnum.schemas import ActionResult
from numnum.services.follow import FollowService
from numnum.services.map_pins import MapPinService
from numnum.services.posts import PostService
from numnum.services.profiles import ProfileService
from numnum.services.saved import SavedListService

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "auth_required": status.HTTP_401_UNAUTHORIZED,
    "invalid": status.HTTP_400_BAD_REQUEST,
    "not_found": status.HTTP_404_NOT_FOUND,
}


def get_base_gateway() -> SupabaseClient:
    return supabase_client


def get_access_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_gateway(
    token: Optional[str] = Depends(get_access_token),
    base: SupabaseClient = Depends(get_base_gateway),
) -> SupabaseClient:
    """Gateway acting as the caller, so the backend's row level security applies."""
    return base.with_session(token)


async def get_current_user_id(
    token: Optional[str] = Depends(get_access_token),
    base: SupabaseClient = Depends(get_base_gateway),
) -> Optional[str]:
    """Signed-in user id, or None for anonymous callers and stale tokens."""
    if token is None:
        return None
    with gateway_errors():
        user = await base.get_user(token)
    return user.get("id") if user else None


def get_follow_service(gateway: SupabaseClient = Depends(get_gateway)) -> FollowService:
    return FollowService(gateway)


def get_map_service(gateway: SupabaseClient = Depends(get_gateway)) -> MapPinService:
    return MapPinService(gateway)


def get_saved_service(gateway: SupabaseClient = Depends(get_gateway)) -> SavedListService:
    return SavedListService(gateway)


def get_post_service(gateway: SupabaseClient = Depends(get_gateway)) -> PostService:
    return PostService(gateway)


def get_profile_service(gateway: SupabaseClient = Depends(get_gateway)) -> ProfileService:
    return ProfileService(gateway)


@contextmanager
def gateway_errors() -> Iterator[None]:
    """Turn a remote failure into a 502 the client can offer to retry."""
    try:
        yield
    except GatewayError as exc:
        logger.warning("Remote query failed: %s (code=%s)", exc.message, exc.code)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": exc.message, "code": exc.code, "retryable": True},
        ) from exc


def unwrap(result: ActionResult) -> Any:
    if result.success:
        return result.data
    raise HTTPException(
        status_code=ERROR_STATUS.get(result.error, status.HTTP_400_BAD_REQUEST),
        detail=result.message,
    )


def require_user(user_id: Optional[str] = Depends(get_current_user_id)) -> str:
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Sign in required",
        )
    return user_id
