"""
Profile and follow-graph endpoints:
  GET    /users/{id}                 — fetch a profile
  PUT    /users/me                   — create or update the caller's profile
  GET    /users/{id}/followers       — followers, with the caller's follow status
  GET    /users/{id}/following       — followed users, same shape
  GET    /users/{id}/follow-status   — the caller's status toward a user
  GET    /users/{id}/counts          — approved follower / following counts
  POST   /users/{id}/follow          — follow (or request to follow a private account)
  DELETE /users/{id}/follow          — unfollow / cancel a pending request
  GET    /users/me/requests          — pending requests to the caller
  POST   /users/me/requests/{id}/accept
  DELETE /users/me/requests/{id}     — decline
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from numnum.dependencies import (
    gateway_errors,
    get_current_user_id,
    get_follow_service,
    get_profile_service,
    unwrap,
)
from numnum.schemas import (
    FollowCounts,
    FollowListEntry,
    FollowStatusResponse,
    ProfileResponse,
    ProfileUpdate,
)
from numnum.services.follow import FollowService
from numnum.services.profiles import ProfileService

router = APIRouter()


# ── The caller's own resources (declared first so "me" isn't taken as an id) ──

@router.put("/me", response_model=ProfileResponse)
async def update_my_profile(
    body: ProfileUpdate,
    current_user_id: Optional[str] = Depends(get_current_user_id),
    profiles: ProfileService = Depends(get_profile_service),
):
    with gateway_errors():
        result = await profiles.ensure_profile(current_user_id, body)
    return unwrap(result)


@router.get("/me/requests", response_model=list[FollowListEntry])
async def list_my_follow_requests(
    current_user_id: Optional[str] = Depends(get_current_user_id),
    follows: FollowService = Depends(get_follow_service),
):
    with gateway_errors():
        result = await follows.list_follow_requests(current_user_id)
    return unwrap(result)


@router.post("/me/requests/{follower_id}/accept", status_code=status.HTTP_204_NO_CONTENT)
async def accept_follow_request(
    follower_id: str,
    current_user_id: Optional[str] = Depends(get_current_user_id),
    follows: FollowService = Depends(get_follow_service),
):
    with gateway_errors():
        result = await follows.accept_follow_request(current_user_id, follower_id)
    unwrap(result)


@router.delete("/me/requests/{follower_id}", status_code=status.HTTP_204_NO_CONTENT)
async def decline_follow_request(
    follower_id: str,
    current_user_id: Optional[str] = Depends(get_current_user_id),
    follows: FollowService = Depends(get_follow_service),
):
    with gateway_errors():
        result = await follows.decline_follow_request(current_user_id, follower_id)
    unwrap(result)


# ── Any user ──────────────────────────────────────────────────────────────

@router.get("/{user_id}", response_model=ProfileResponse)
async def get_user(user_id: str, profiles: ProfileService = Depends(get_profile_service)):
    with gateway_errors():
        profile = await profiles.get_profile(user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="User not found")
    return profile


@router.get("/{user_id}/followers", response_model=list[FollowListEntry])
async def list_followers(
    user_id: str,
    current_user_id: Optional[str] = Depends(get_current_user_id),
    follows: FollowService = Depends(get_follow_service),
):
    with gateway_errors():
        return await follows.list_followers(user_id, current_user_id)


@router.get("/{user_id}/following", response_model=list[FollowListEntry])
async def list_following(
    user_id: str,
    current_user_id: Optional[str] = Depends(get_current_user_id),
    follows: FollowService = Depends(get_follow_service),
):
    with gateway_errors():
        return await follows.list_following(user_id, current_user_id)


@router.get("/{user_id}/follow-status", response_model=FollowStatusResponse)
async def get_follow_status(
    user_id: str,
    current_user_id: Optional[str] = Depends(get_current_user_id),
    follows: FollowService = Depends(get_follow_service),
):
    with gateway_errors():
        follow_status = await follows.get_follow_status(current_user_id, user_id)
    return FollowStatusResponse(user_id=user_id, status=follow_status)


@router.get("/{user_id}/counts", response_model=FollowCounts)
async def get_follow_counts(user_id: str, follows: FollowService = Depends(get_follow_service)):
    with gateway_errors():
        return await follows.get_follow_counts(user_id)


@router.post("/{user_id}/follow", response_model=FollowStatusResponse)
async def follow_user(
    user_id: str,
    current_user_id: Optional[str] = Depends(get_current_user_id),
    follows: FollowService = Depends(get_follow_service),
):
    """
    Public accounts are followed immediately; private accounts get a pending
    request. Repeating the call does not create a second edge.
    """
    with gateway_errors():
        result = await follows.follow_user(current_user_id, user_id)
    return FollowStatusResponse(user_id=user_id, status=unwrap(result))


@router.delete("/{user_id}/follow", response_model=FollowStatusResponse)
async def unfollow_user(
    user_id: str,
    current_user_id: Optional[str] = Depends(get_current_user_id),
    follows: FollowService = Depends(get_follow_service),
):
    with gateway_errors():
        result = await follows.unfollow_user(current_user_id, user_id)
    return FollowStatusResponse(user_id=user_id, status=unwrap(result))
