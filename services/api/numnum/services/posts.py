"""
Posts, likes and comments.

posts.likes_count and posts.comments_count are denormalized. They are only
ever moved by the server-side function

    adjust_post_counter(p_post_id, p_column, p_delta) → new value

which does the increment in one statement. There is deliberately no
read-then-write path.
"""
import logging
from collections import defaultdict
from typing import Literal, Optional

from opentelemetry import trace

from numnum.clients.supabase_client import GatewayError, SupabaseClient
from numnum.config import settings
from numnum.models import CommentRow, PostRow, PostType, ProfileRow, decode_row, decode_rows
from numnum.schemas import (
    ActionResult,
    AuthorSummary,
    CommentCreate,
    CommentResponse,
    LikeToggle,
    PostCreate,
    PostResponse,
    RestaurantSummary,
    sign_in_required,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

POSTS_TABLE = "posts"
LIKES_TABLE = "likes"
COMMENTS_TABLE = "comments"
COUNTER_RPC = "adjust_post_counter"

POST_SELECT = "*,author:profiles(*),restaurant:restaurants(*)"
COMMENT_SELECT = "*,author:profiles(*)"

Counter = Literal["likes_count", "comments_count"]


def _author(profile: Optional[ProfileRow]) -> Optional[AuthorSummary]:
    if profile is None:
        return None
    return AuthorSummary(
        id=profile.id,
        username=profile.handle,
        display_name=profile.name,
        avatar_url=profile.avatar_url,
    )


def _to_post_response(row: PostRow) -> PostResponse:
    restaurant = None
    if row.restaurant is not None:
        restaurant = RestaurantSummary(
            id=row.restaurant.id,
            name=row.restaurant.name or "Unknown",
            cuisine=row.restaurant.cuisine,
        )
    return PostResponse(
        id=row.id,
        user_id=row.user_id,
        type=row.type,
        content=row.content,
        restaurant_id=row.restaurant_id,
        rating=row.rating,
        image_urls=row.image_urls,
        likes_count=row.likes_count,
        comments_count=row.comments_count,
        created_at=row.created_at,
        updated_at=row.updated_at,
        author=_author(row.author),
        restaurant=restaurant,
    )


def _to_comment_response(
    row: CommentRow, replies: Optional[list[CommentResponse]] = None
) -> CommentResponse:
    return CommentResponse(
        id=row.id,
        post_id=row.post_id,
        user_id=row.user_id,
        parent_id=row.parent_id,
        content=row.content,
        likes_count=row.likes_count,
        created_at=row.created_at,
        author=_author(row.author),
        replies=replies or [],
    )


def build_comment_tree(rows: list[CommentRow]) -> list[CommentResponse]:
    """
    Top-level comments, oldest first, each with a single level of replies.

    A reply to a reply is filed under its top-level ancestor. A reply whose
    parent no longer exists is shown as a top-level comment.
    """
    ordered = sorted(rows, key=lambda c: c.created_at)
    by_id = {c.id: c for c in ordered}

    def root_of(comment: CommentRow) -> CommentRow:
        seen = {comment.id}
        current = comment
        while current.parent_id in by_id:
            if current.parent_id in seen:
                # Parent chain loops; show the comment at the top level
                return comment
            current = by_id[current.parent_id]
            seen.add(current.id)
        return current

    top_level: list[CommentRow] = []
    replies: dict[str, list[CommentRow]] = defaultdict(list)
    for comment in ordered:
        root = root_of(comment)
        if root.id == comment.id:
            top_level.append(comment)
        else:
            replies[root.id].append(comment)

    return [
        _to_comment_response(c, [_to_comment_response(r) for r in replies[c.id]])
        for c in top_level
    ]


class PostService:
    def __init__(self, gateway: SupabaseClient) -> None:
        self.gateway = gateway

    # ── Posts ──────────────────────────────────────────────────────────────

    async def list_posts(
        self,
        *,
        post_type: Optional[PostType] = None,
        user_id: Optional[str] = None,
        cuisine: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[PostResponse]:
        query = (
            self.gateway.table(POSTS_TABLE)
            .select(POST_SELECT)
            .order("created_at", desc=True)
            .limit(limit or settings.posts_page_size)
        )
        if post_type:
            query = query.eq("type", post_type)
        if user_id:
            query = query.eq("user_id", user_id)

        rows = decode_rows(PostRow, (await query.execute()).data)
        if cuisine:
            wanted = cuisine.strip().lower()
            rows = [
                r for r in rows
                if r.restaurant and (r.restaurant.cuisine or "").strip().lower() == wanted
            ]
        return [_to_post_response(r) for r in rows]

    async def get_post(self, post_id: str) -> Optional[PostResponse]:
        result = await (
            self.gateway.table(POSTS_TABLE)
            .select(POST_SELECT)
            .eq("id", post_id)
            .maybe_single()
            .execute()
        )
        row = decode_row(PostRow, result.data)
        return _to_post_response(row) if row else None

    async def create_post(
        self, user_id: Optional[str], body: PostCreate
    ) -> ActionResult[PostResponse]:
        if not user_id:
            return sign_in_required("create posts")

        with tracer.start_as_current_span("create_post") as span:
            payload = {
                "user_id": user_id,
                "type": body.type,
                "content": body.content,
                "image_urls": body.image_urls,
                "likes_count": 0,
                "comments_count": 0,
            }
            if body.type == "review":
                payload["restaurant_id"] = body.restaurant_id
                payload["rating"] = body.rating

            result = await self.gateway.table(POSTS_TABLE).insert(payload).select(POST_SELECT).execute()
            row = decode_row(PostRow, (result.data or [None])[0])
            if row is None:
                raise GatewayError("Backend returned no readable row for the new post")

            span.set_attribute("post.id", row.id)
            logger.info("Post created: %s (%s) by user %s", row.id, row.type, user_id)
            return ActionResult[PostResponse].ok(_to_post_response(row))

    async def delete_post(self, user_id: Optional[str], post_id: str) -> ActionResult[bool]:
        if not user_id:
            return sign_in_required("delete posts")

        result = await (
            self.gateway.table(POSTS_TABLE)
            .delete()
            .eq("id", post_id)
            .eq("user_id", user_id)
            .select("id")
            .execute()
        )
        if not result.data:
            return ActionResult.fail("not_found", "Post not found")
        return ActionResult[bool].ok(True)

    # ── Likes ──────────────────────────────────────────────────────────────

    async def is_liked(self, user_id: Optional[str], post_id: str) -> bool:
        if not user_id:
            return False
        result = await (
            self.gateway.table(LIKES_TABLE)
            .select("post_id")
            .eq("user_id", user_id)
            .eq("post_id", post_id)
            .maybe_single()
            .execute()
        )
        return result.data is not None

    async def toggle_like(self, user_id: Optional[str], post_id: str) -> ActionResult[LikeToggle]:
        """Like a post, or take the like back if it is already there."""
        if not user_id:
            return sign_in_required("like posts")

        with tracer.start_as_current_span("toggle_like"):
            if not await self._post_exists(post_id):
                return ActionResult.fail("not_found", "Post not found")

            # Only the call that wrote or removed the like row moves the counter
            if await self.is_liked(user_id, post_id):
                removed = await (
                    self.gateway.table(LIKES_TABLE)
                    .delete()
                    .eq("user_id", user_id)
                    .eq("post_id", post_id)
                    .select("post_id")
                    .execute()
                )
                changed, delta, liked = bool(removed.data), -1, False
            else:
                added = await (
                    self.gateway.table(LIKES_TABLE)
                    .upsert(
                        {"user_id": user_id, "post_id": post_id},
                        on_conflict="user_id,post_id",
                        ignore_duplicates=True,
                    )
                    .select("post_id")
                    .execute()
                )
                changed, delta, liked = bool(added.data), 1, True

            if changed:
                likes_count = await self._adjust_counter(post_id, "likes_count", delta)
            else:
                likes_count = await self._read_counter(post_id, "likes_count")

            return ActionResult[LikeToggle].ok(LikeToggle(liked=liked, likes_count=likes_count))

    # ── Comments ───────────────────────────────────────────────────────────

    async def get_comments(self, post_id: str) -> list[CommentResponse]:
        result = await (
            self.gateway.table(COMMENTS_TABLE)
            .select(COMMENT_SELECT)
            .eq("post_id", post_id)
            .order("created_at")
            .execute()
        )
        return build_comment_tree(decode_rows(CommentRow, result.data))

    async def create_comment(
        self, user_id: Optional[str], post_id: str, body: CommentCreate
    ) -> ActionResult[CommentResponse]:
        if not user_id:
            return sign_in_required("comment")

        if not await self._post_exists(post_id):
            return ActionResult.fail("not_found", "Post not found")

        if body.parent_id:
            parent = await (
                self.gateway.table(COMMENTS_TABLE)
                .select("id,post_id")
                .eq("id", body.parent_id)
                .maybe_single()
                .execute()
            )
            if not parent.data or parent.data.get("post_id") != post_id:
                return ActionResult.fail("invalid", "Parent comment is not on this post")

        result = await (
            self.gateway.table(COMMENTS_TABLE)
            .insert(
                {
                    "post_id": post_id,
                    "user_id": user_id,
                    "parent_id": body.parent_id,
                    "content": body.content,
                    "likes_count": 0,
                }
            )
            .select(COMMENT_SELECT)
            .execute()
        )
        row = decode_row(CommentRow, (result.data or [None])[0])
        if row is None:
            raise GatewayError("Backend returned no readable row for the new comment")

        await self._adjust_counter(post_id, "comments_count", 1)
        return ActionResult[CommentResponse].ok(_to_comment_response(row))

    async def delete_comment(self, user_id: Optional[str], comment_id: str) -> ActionResult[bool]:
        if not user_id:
            return sign_in_required("delete comments")

        result = await (
            self.gateway.table(COMMENTS_TABLE)
            .select("id,post_id,user_id")
            .eq("id", comment_id)
            .maybe_single()
            .execute()
        )
        comment = result.data
        if comment is None:
            return ActionResult.fail("not_found", "Comment not found")
        if comment.get("user_id") != user_id:
            return ActionResult.fail("invalid", "You can only delete your own comments")

        await (
            self.gateway.table(COMMENTS_TABLE)
            .delete()
            .eq("id", comment_id)
            .eq("user_id", user_id)
            .execute()
        )
        await self._adjust_counter(comment["post_id"], "comments_count", -1)
        return ActionResult[bool].ok(True)

    # ── Helpers ────────────────────────────────────────────────────────────

    async def _post_exists(self, post_id: str) -> bool:
        result = await (
            self.gateway.table(POSTS_TABLE)
            .select("id")
            .eq("id", post_id)
            .maybe_single()
            .execute()
        )
        return result.data is not None

    async def _read_counter(self, post_id: str, column: Counter) -> int:
        result = await (
            self.gateway.table(POSTS_TABLE)
            .select(column)
            .eq("id", post_id)
            .maybe_single()
            .execute()
        )
        return int((result.data or {}).get(column) or 0)

    async def _adjust_counter(self, post_id: str, column: Counter, delta: int) -> int:
        value = await self.gateway.rpc(
            COUNTER_RPC,
            {"p_post_id": post_id, "p_column": column, "p_delta": delta},
        )
        return int(value or 0)
