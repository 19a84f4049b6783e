"""
Follow graph over the `followers` table.

One row per ordered pair (follower_id → following_id) with status
'approved' or 'requested'. A pending request and an active follow share that
row, so unfollowing and cancelling a request are the same delete.

Listing a user's followers/following merges three reads:
  1. the edges of the viewed user
  2. the profiles at the other end of those edges
  3. the viewer's own edges toward the same profiles
(2) and (3) are independent and run concurrently.
"""
import asyncio
import logging
from typing import Literal, Optional

from opentelemetry import trace

from numnum.clients.supabase_client import SupabaseClient
from numnum.models import EdgeStatus, FollowRow, ProfileRow, decode_row, decode_rows
from numnum.schemas import (
    ActionResult,
    FollowCounts,
    FollowListEntry,
    FollowStatus,
    sign_in_required,
)
from numnum.telemetry import FOLLOW_ACTIONS_TOTAL

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

FOLLOWS_TABLE = "followers"
PROFILES_TABLE = "profiles"
FOLLOW_CONFLICT_KEY = "follower_id,following_id"

Mode = Literal["followers", "following"]


def _to_follow_status(edge_status: Optional[str]) -> FollowStatus:
    return "requested" if edge_status == "requested" else "following"


def _entry(profile: ProfileRow, edge_status: EdgeStatus, follow_status: FollowStatus) -> FollowListEntry:
    return FollowListEntry(
        id=profile.id,
        username=profile.handle,
        display_name=profile.name,
        avatar_url=profile.avatar_url,
        bio=profile.bio,
        is_public=profile.public,
        relationship_status=edge_status,
        follow_status=follow_status,
    )


class FollowService:
    def __init__(self, gateway: SupabaseClient) -> None:
        self.gateway = gateway

    # ── Lists ──────────────────────────────────────────────────────────────

    async def list_followers(
        self, viewed_user_id: str, current_user_id: Optional[str] = None
    ) -> list[FollowListEntry]:
        return await self._list_relationships(viewed_user_id, current_user_id, "followers")

    async def list_following(
        self, viewed_user_id: str, current_user_id: Optional[str] = None
    ) -> list[FollowListEntry]:
        return await self._list_relationships(viewed_user_id, current_user_id, "following")

    async def _list_relationships(
        self, viewed_user_id: str, current_user_id: Optional[str], mode: Mode
    ) -> list[FollowListEntry]:
        with tracer.start_as_current_span("list_relationships") as span:
            span.set_attribute("follow.mode", mode)
            span.set_attribute("user.id", viewed_user_id)

            if mode == "followers":
                other_end = "follower_id"
                query = self.gateway.table(FOLLOWS_TABLE).select("follower_id,status").eq(
                    "following_id", viewed_user_id
                )
            else:
                other_end = "following_id"
                query = self.gateway.table(FOLLOWS_TABLE).select("following_id,status").eq(
                    "follower_id", viewed_user_id
                )

            edges = decode_rows(FollowRow, (await query.execute()).data)
            profile_ids = [getattr(e, other_end) for e in edges if getattr(e, other_end)]

            profiles, status_map = await asyncio.gather(
                self._fetch_profiles(profile_ids),
                self._status_map(current_user_id, profile_ids),
            )

            entries: list[FollowListEntry] = []
            for edge in edges:
                profile_id = getattr(edge, other_end)
                profile = profiles.get(profile_id)
                if profile is None:
                    # Deleted account; skip it rather than return a half-filled entry
                    continue
                entries.append(
                    _entry(profile, edge.status, status_map.get(profile_id, "not_following"))
                )

            span.set_attribute("follow.entries", len(entries))
            return entries

    async def _fetch_profiles(self, ids: list[str]) -> dict[str, ProfileRow]:
        if not ids:
            return {}
        result = await (
            self.gateway.table(PROFILES_TABLE)
            .select("*")
            .in_("id", list(dict.fromkeys(ids)))
            .execute()
        )
        return {p.id: p for p in decode_rows(ProfileRow, result.data)}

    async def _status_map(
        self, follower_id: Optional[str], target_ids: list[str]
    ) -> dict[str, FollowStatus]:
        if not follower_id or not target_ids:
            return {}
        result = await (
            self.gateway.table(FOLLOWS_TABLE)
            .select("following_id,status")
            .eq("follower_id", follower_id)
            .in_("following_id", list(dict.fromkeys(target_ids)))
            .execute()
        )
        return {
            edge.following_id: _to_follow_status(edge.status)
            for edge in decode_rows(FollowRow, result.data)
            if edge.following_id
        }

    # ── Mutations ──────────────────────────────────────────────────────────

    async def follow_user(
        self, current_user_id: Optional[str], target_user_id: str
    ) -> ActionResult[FollowStatus]:
        """
        Follow a public profile outright, or leave a request on a private one.
        Upserts on the (follower, following) pair, so repeating it is harmless.
        """
        if not current_user_id:
            return sign_in_required("follow users")
        if current_user_id == target_user_id:
            return ActionResult.fail("invalid", "Cannot follow yourself")

        with tracer.start_as_current_span("follow_user") as span:
            span.set_attribute("follow.target", target_user_id)

            result = await (
                self.gateway.table(PROFILES_TABLE)
                .select("id,is_public")
                .eq("id", target_user_id)
                .maybe_single()
                .execute()
            )
            target = decode_row(ProfileRow, result.data)
            if target is None:
                return ActionResult.fail("not_found", f"User {target_user_id} not found")

            edge_status: EdgeStatus = "approved" if target.public else "requested"
            await (
                self.gateway.table(FOLLOWS_TABLE)
                .upsert(
                    {
                        "follower_id": current_user_id,
                        "following_id": target_user_id,
                        "status": edge_status,
                    },
                    on_conflict=FOLLOW_CONFLICT_KEY,
                )
                .execute()
            )

            follow_status = _to_follow_status(edge_status)
            span.set_attribute("follow.status", follow_status)
            FOLLOW_ACTIONS_TOTAL.labels(action="follow", status=follow_status).inc()
            logger.info("%s → %s: %s", current_user_id, target_user_id, follow_status)
            return ActionResult[FollowStatus].ok(follow_status)

    async def unfollow_user(
        self, current_user_id: Optional[str], target_user_id: str
    ) -> ActionResult[FollowStatus]:
        """Delete the edge whatever its status; this also cancels a pending request."""
        if not current_user_id:
            return sign_in_required("unfollow users")

        with tracer.start_as_current_span("unfollow_user"):
            await (
                self.gateway.table(FOLLOWS_TABLE)
                .delete()
                .eq("follower_id", current_user_id)
                .eq("following_id", target_user_id)
                .execute()
            )
            FOLLOW_ACTIONS_TOTAL.labels(action="unfollow", status="not_following").inc()
            logger.info("%s unfollowed %s", current_user_id, target_user_id)
            return ActionResult[FollowStatus].ok("not_following")

    # ── Single status & counts ─────────────────────────────────────────────

    async def get_follow_status(
        self, current_user_id: Optional[str], target_user_id: str
    ) -> FollowStatus:
        if not current_user_id:
            return "not_following"

        result = await (
            self.gateway.table(FOLLOWS_TABLE)
            .select("status")
            .eq("follower_id", current_user_id)
            .eq("following_id", target_user_id)
            .maybe_single()
            .execute()
        )
        edge = decode_row(FollowRow, result.data)
        if edge is None:
            return "not_following"
        return _to_follow_status(edge.status)

    async def get_follow_counts(self, user_id: str) -> FollowCounts:
        """Approved edges only; pending requests don't count either way."""
        followers, following = await asyncio.gather(
            self.gateway.table(FOLLOWS_TABLE)
            .select("*", count="exact", head=True)
            .eq("following_id", user_id)
            .eq("status", "approved")
            .execute(),
            self.gateway.table(FOLLOWS_TABLE)
            .select("*", count="exact", head=True)
            .eq("follower_id", user_id)
            .eq("status", "approved")
            .execute(),
        )
        return FollowCounts(followers=followers.count or 0, following=following.count or 0)

    # ── Incoming requests (private accounts) ───────────────────────────────

    async def list_follow_requests(
        self, current_user_id: Optional[str]
    ) -> ActionResult[list[FollowListEntry]]:
        if not current_user_id:
            return sign_in_required("see follow requests")

        result = await (
            self.gateway.table(FOLLOWS_TABLE)
            .select("follower_id,status")
            .eq("following_id", current_user_id)
            .eq("status", "requested")
            .execute()
        )
        edges = decode_rows(FollowRow, result.data)
        requester_ids = [e.follower_id for e in edges if e.follower_id]
        profiles, status_map = await asyncio.gather(
            self._fetch_profiles(requester_ids),
            self._status_map(current_user_id, requester_ids),
        )
        entries = [
            _entry(profiles[rid], "requested", status_map.get(rid, "not_following"))
            for rid in requester_ids
            if rid in profiles
        ]
        return ActionResult[list[FollowListEntry]].ok(entries)

    async def accept_follow_request(
        self, current_user_id: Optional[str], follower_id: str
    ) -> ActionResult[EdgeStatus]:
        if not current_user_id:
            return sign_in_required("accept follow requests")

        result = await (
            self.gateway.table(FOLLOWS_TABLE)
            .update({"status": "approved"})
            .eq("follower_id", follower_id)
            .eq("following_id", current_user_id)
            .eq("status", "requested")
            .select("follower_id")
            .execute()
        )
        if not result.data:
            return ActionResult.fail("not_found", "No pending follow request from this user")

        FOLLOW_ACTIONS_TOTAL.labels(action="accept", status="following").inc()
        logger.info("%s accepted follow request from %s", current_user_id, follower_id)
        return ActionResult[EdgeStatus].ok("approved")

    async def decline_follow_request(
        self, current_user_id: Optional[str], follower_id: str
    ) -> ActionResult[FollowStatus]:
        if not current_user_id:
            return sign_in_required("decline follow requests")

        result = await (
            self.gateway.table(FOLLOWS_TABLE)
            .delete()
            .eq("follower_id", follower_id)
            .eq("following_id", current_user_id)
            .eq("status", "requested")
            .select("follower_id")
            .execute()
        )
        if not result.data:
            return ActionResult.fail("not_found", "No pending follow request from this user")

        FOLLOW_ACTIONS_TOTAL.labels(action="decline", status="not_following").inc()
        return ActionResult[FollowStatus].ok("not_following")
