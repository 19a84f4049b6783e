"""
Post endpoints:
  GET    /posts                 — recent posts (filter by type, author, cuisine)
  POST   /posts                 — create a review or a thread
  GET    /posts/{id}            — fetch a single post
  DELETE /posts/{id}            — delete one of the caller's posts
  POST   /posts/{id}/like       — like / unlike
  GET    /posts/{id}/comments   — comments with one level of replies
  POST   /posts/{id}/comments   — comment or reply
  DELETE /comments/{id}         — delete one of the caller's comments
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from numnum.dependencies import gateway_errors, get_current_user_id, get_post_service, unwrap
from numnum.models import PostType
from numnum.schemas import CommentCreate, CommentResponse, LikeToggle, PostCreate, PostResponse
from numnum.services.posts import PostService

router = APIRouter()
comments_router = APIRouter()


@router.get("/", response_model=list[PostResponse])
async def list_posts(
    post_type: Optional[PostType] = Query(None, alias="type"),
    user_id: Optional[str] = Query(None),
    cuisine: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=200),
    posts: PostService = Depends(get_post_service),
):
    with gateway_errors():
        return await posts.list_posts(
            post_type=post_type, user_id=user_id, cuisine=cuisine, limit=limit
        )


@router.post("/", response_model=PostResponse, status_code=status.HTTP_201_CREATED)
async def create_post(
    body: PostCreate,
    current_user_id: Optional[str] = Depends(get_current_user_id),
    posts: PostService = Depends(get_post_service),
):
    with gateway_errors():
        result = await posts.create_post(current_user_id, body)
    return unwrap(result)


@router.get("/{post_id}", response_model=PostResponse)
async def get_post(post_id: str, posts: PostService = Depends(get_post_service)):
    with gateway_errors():
        post = await posts.get_post(post_id)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


@router.delete("/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post(
    post_id: str,
    current_user_id: Optional[str] = Depends(get_current_user_id),
    posts: PostService = Depends(get_post_service),
):
    with gateway_errors():
        result = await posts.delete_post(current_user_id, post_id)
    unwrap(result)


@router.post("/{post_id}/like", response_model=LikeToggle)
async def toggle_like(
    post_id: str,
    current_user_id: Optional[str] = Depends(get_current_user_id),
    posts: PostService = Depends(get_post_service),
):
    with gateway_errors():
        result = await posts.toggle_like(current_user_id, post_id)
    return unwrap(result)


@router.get("/{post_id}/comments", response_model=list[CommentResponse])
async def get_comments(post_id: str, posts: PostService = Depends(get_post_service)):
    with gateway_errors():
        return await posts.get_comments(post_id)


@router.post(
    "/{post_id}/comments", response_model=CommentResponse, status_code=status.HTTP_201_CREATED
)
async def create_comment(
    post_id: str,
    body: CommentCreate,
    current_user_id: Optional[str] = Depends(get_current_user_id),
    posts: PostService = Depends(get_post_service),
):
    with gateway_errors():
        result = await posts.create_comment(current_user_id, post_id, body)
    return unwrap(result)


@comments_router.delete("/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_comment(
    comment_id: str,
    current_user_id: Optional[str] = Depends(get_current_user_id),
    posts: PostService = Depends(get_post_service),
):
    with gateway_errors():
        result = await posts.delete_comment(current_user_id, comment_id)
    unwrap(result)
