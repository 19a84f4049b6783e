import asyncio

import httpx
import pytest
from pydantic import ValidationError

from conftest import BACKEND_URL, ts
from numnum.clients.supabase_client import SupabaseClient
from numnum.models import CommentRow
from numnum.schemas import CommentCreate, PostCreate
from numnum.services.posts import COUNTER_RPC, PostService, build_comment_tree


@pytest.fixture
def posts(gateway, profiles):
    profiles.seed("restaurants", {"id": "r1", "name": "Sushi Den", "cuisine": "Japanese"})
    profiles.seed(
        "posts",
        {"id": "p1", "user_id": "bob", "type": "review", "content": "Fresh fish",
         "restaurant_id": "r1", "rating": 5, "image_urls": None, "likes_count": 0,
         "comments_count": 0, "created_at": ts(0)},
        {"id": "p2", "user_id": "alice", "type": "thread", "content": "Where to eat?",
         "restaurant_id": None, "rating": None, "image_urls": [], "likes_count": 3,
         "comments_count": 0, "created_at": ts(10)},
    )
    return PostService(gateway)


def comment(comment_id, minutes, parent_id=None):
    return CommentRow.model_validate(
        {"id": comment_id, "post_id": "p1", "user_id": "bob", "parent_id": parent_id,
         "content": comment_id, "created_at": ts(minutes)}
    )


# ── posts ──────────────────────────────────────────────────────────────────

async def test_list_posts_newest_first_with_embeds(posts):
    result = await posts.list_posts()

    assert [p.id for p in result] == ["p2", "p1"]
    review = result[1]
    assert review.author.username == "bob_eats"
    assert review.restaurant.name == "Sushi Den"
    assert review.image_urls == []


async def test_list_posts_filters(posts):
    assert [p.id for p in await posts.list_posts(post_type="thread")] == ["p2"]
    assert [p.id for p in await posts.list_posts(user_id="bob")] == ["p1"]
    assert [p.id for p in await posts.list_posts(cuisine="japanese")] == ["p1"]
    assert await posts.list_posts(cuisine="thai") == []


async def test_create_review(posts, backend):
    body = PostCreate(type="review", content="Solid ramen", restaurant_id="r1", rating=4)

    result = await posts.create_post("alice", body)

    assert result.success
    assert result.data.user_id == "alice"
    assert result.data.likes_count == 0
    assert result.data.restaurant.id == "r1"
    assert len(backend.rows("posts", user_id="alice")) == 2


def test_review_without_restaurant_is_rejected():
    with pytest.raises(ValidationError):
        PostCreate(type="review", content="Nice", rating=4)


async def test_thread_ignores_restaurant_fields(posts, backend):
    body = PostCreate(type="thread", content="Best brunch?", restaurant_id="r1", rating=3)

    result = await posts.create_post("alice", body)

    assert result.data.restaurant_id is None
    assert "restaurant_id" not in backend.rows("posts", id=result.data.id)[0]


async def test_get_post_missing_is_none(posts):
    assert await posts.get_post("nope") is None


async def test_delete_post_only_removes_own_posts(posts, backend):
    refused = await posts.delete_post("alice", "p1")
    deleted = await posts.delete_post("bob", "p1")

    assert refused.error == "not_found"
    assert deleted.success
    assert backend.rows("posts", id="p1") == []


async def test_anonymous_post_actions_are_refused(posts, backend):
    body = PostCreate(type="thread", content="hi")

    assert (await posts.create_post(None, body)).error == "auth_required"
    assert (await posts.toggle_like(None, "p1")).error == "auth_required"
    assert (await posts.create_comment(None, "p1", CommentCreate(content="x"))).error == "auth_required"
    assert backend.requests == []


# ── likes ──────────────────────────────────────────────────────────────────

async def test_like_then_unlike_moves_the_counter_through_rpc(posts, backend):
    liked = await posts.toggle_like("alice", "p1")
    assert liked.data.liked is True
    assert liked.data.likes_count == 1
    assert await posts.is_liked("alice", "p1")

    unliked = await posts.toggle_like("alice", "p1")
    assert unliked.data.liked is False
    assert unliked.data.likes_count == 0
    assert backend.rows("likes") == []

    assert [call for call, _ in backend.rpc_calls] == [COUNTER_RPC, COUNTER_RPC]
    assert [params["p_delta"] for _, params in backend.rpc_calls] == [1, -1]


async def test_counter_is_never_written_directly(posts, backend):
    await posts.toggle_like("alice", "p2")

    patches = [r for r in backend.requests if r.method == "PATCH" and r.url.path == "/rest/v1/posts"]
    assert patches == []
    assert backend.rows("posts", id="p2")[0]["likes_count"] == 4


@pytest.fixture
async def interleaving_gateway(backend):
    """Gateway whose requests yield to the event loop before reaching the backend."""
    async def handle(request):
        await asyncio.sleep(0)
        return backend.handle(request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(handle), base_url=BACKEND_URL)
    yield SupabaseClient(BACKEND_URL, "anon-key", http=http)
    await http.aclose()


async def test_simultaneous_likes_count_once(posts, backend, interleaving_gateway):
    service = PostService(interleaving_gateway)

    first, second = await asyncio.gather(
        service.toggle_like("alice", "p1"), service.toggle_like("alice", "p1")
    )

    assert first.data.liked and second.data.liked
    assert len(backend.rows("likes")) == 1
    assert backend.rows("posts", id="p1")[0]["likes_count"] == 1
    assert [params["p_delta"] for _, params in backend.rpc_calls] == [1]


async def test_simultaneous_unlikes_count_once(posts, backend, interleaving_gateway):
    backend.seed("likes", {"user_id": "alice", "post_id": "p2"})
    service = PostService(interleaving_gateway)

    first, second = await asyncio.gather(
        service.toggle_like("alice", "p2"), service.toggle_like("alice", "p2")
    )

    assert not first.data.liked and not second.data.liked
    assert backend.rows("likes") == []
    assert backend.rows("posts", id="p2")[0]["likes_count"] == 2
    assert [params["p_delta"] for _, params in backend.rpc_calls] == [-1]


async def test_liking_a_missing_post_is_not_found(posts, backend):
    result = await posts.toggle_like("alice", "ghost")

    assert result.error == "not_found"
    assert backend.rpc_calls == []


async def test_is_liked_for_anonymous(posts):
    assert await posts.is_liked(None, "p1") is False


# ── comments ───────────────────────────────────────────────────────────────

def test_comment_tree_files_replies_under_their_root():
    tree = build_comment_tree([
        comment("c3", 3, parent_id="c1"),
        comment("c1", 1),
        comment("c2", 2),
        comment("c4", 4, parent_id="c3"),
    ])

    assert [c.id for c in tree] == ["c1", "c2"]
    assert [r.id for r in tree[0].replies] == ["c3", "c4"]
    assert tree[1].replies == []


def test_orphaned_reply_becomes_top_level():
    tree = build_comment_tree([comment("c1", 1), comment("c2", 2, parent_id="deleted")])

    assert [c.id for c in tree] == ["c1", "c2"]


def test_comment_cycle_does_not_hang():
    tree = build_comment_tree([comment("a", 1, parent_id="b"), comment("b", 2, parent_id="a")])

    assert sorted(c.id for c in tree) == ["a", "b"]


async def test_commenting_increments_the_count(posts, backend):
    first = await posts.create_comment("alice", "p1", CommentCreate(content="Agreed"))
    reply = await posts.create_comment("bob", "p1", CommentCreate(content="Thanks", parent_id=first.data.id))

    assert first.data.author.username == "alice"
    assert reply.data.parent_id == first.data.id
    assert backend.rows("posts", id="p1")[0]["comments_count"] == 2

    tree = await posts.get_comments("p1")
    assert [c.id for c in tree] == [first.data.id]
    assert [r.content for r in tree[0].replies] == ["Thanks"]


async def test_reply_to_a_comment_on_another_post_is_invalid(posts, backend):
    other = await posts.create_comment("alice", "p2", CommentCreate(content="On p2"))

    result = await posts.create_comment("bob", "p1", CommentCreate(content="x", parent_id=other.data.id))

    assert result.error == "invalid"
    assert backend.rows("posts", id="p1")[0]["comments_count"] == 0


async def test_commenting_on_a_missing_post_is_not_found(posts):
    result = await posts.create_comment("alice", "ghost", CommentCreate(content="x"))
    assert result.error == "not_found"


async def test_delete_comment_checks_ownership_and_decrements(posts, backend):
    created = await posts.create_comment("alice", "p1", CommentCreate(content="Hmm"))
    comment_id = created.data.id

    assert (await posts.delete_comment("bob", comment_id)).error == "invalid"
    assert (await posts.delete_comment("alice", comment_id)).success
    assert (await posts.delete_comment("alice", comment_id)).error == "not_found"
    assert backend.rows("comments") == []
    assert backend.rows("posts", id="p1")[0]["comments_count"] == 0
