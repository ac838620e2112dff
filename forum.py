"""
Forum posts, comments and votes.

A user id sits in at most one of likes/dislikes; the counters are set from
the list sizes on every vote.
"""
from typing import Optional

import structlog

from auth import Caller
from config import Settings
from database import create_document, get_or_404, guarded_update, new_id, now_utc, object_id
from errors import NotFound, PermissionDenied
from schemas import Comment, CommentIn, ForumPost, PostCreate, PostUpdate

logger = structlog.get_logger(__name__)


def _check_owner(doc: dict, caller: Caller, what: str, action: str):
    if doc["user_id"] != caller.user_id and not caller.is_admin:
        raise PermissionDenied(f"You are not authorized to {action} this {what}")


# Posts

def create_post(db, caller: Caller, payload: PostCreate) -> dict:
    post = ForumPost(user_id=caller.user_id, **payload.model_dump())
    post_id = create_document(db, "forum", post.model_dump())
    logger.info("post_created", post_id=post_id, user_id=caller.user_id)
    return db["forum"].find_one({"_id": object_id(post_id)})


def list_posts(db, skip: int = 0, limit: int = 20):
    return list(db["forum"].find({}).sort("created_at", -1).skip(skip).limit(limit))


def get_post(db, post_id: str) -> dict:
    return get_or_404(db, "forum", post_id, "Post")


def update_post(db, settings: Settings, post_id: str, caller: Caller, payload: PostUpdate) -> dict:
    def mutate(post):
        _check_owner(post, caller, "post", "edit")
        post.update(payload.model_dump(exclude_none=True))

    post, _ = guarded_update(db, "forum", post_id, mutate, settings.max_update_retries, "Post")
    return post


def delete_post(db, post_id: str, caller: Caller):
    post = get_post(db, post_id)
    _check_owner(post, caller, "post", "delete")
    db["forum"].delete_one({"_id": post["_id"]})
    logger.info("post_deleted", post_id=post_id, by=caller.user_id)


# Votes

def _toggle(db, settings: Settings, post_id: str, user_id: str, field: str, other: str) -> dict:
    def mutate(post):
        votes = [u for u in post.get(field, []) if u != user_id]
        opposite = post.get(other, [])
        if len(votes) == len(post.get(field, [])):
            votes.append(user_id)
            opposite = [u for u in opposite if u != user_id]
        post[field] = votes
        post[other] = opposite
        post["likes_count"] = len(post["likes"])
        post["dislikes_count"] = len(post["dislikes"])

    post, _ = guarded_update(db, "forum", post_id, mutate, settings.max_update_retries, "Post")
    vote: Optional[str] = None
    if user_id in post["likes"]:
        vote = "like"
    elif user_id in post["dislikes"]:
        vote = "dislike"
    return {"vote": vote, "likes_count": post["likes_count"], "dislikes_count": post["dislikes_count"]}


def toggle_like(db, settings: Settings, post_id: str, user_id: str) -> dict:
    return _toggle(db, settings, post_id, user_id, "likes", "dislikes")


def toggle_dislike(db, settings: Settings, post_id: str, user_id: str) -> dict:
    return _toggle(db, settings, post_id, user_id, "dislikes", "likes")


# Comments

def _find_comment(post: dict, comment_id: str) -> dict:
    for comment in post.get("comments", []):
        if comment["id"] == comment_id:
            return comment
    raise NotFound("Comment not found")


def add_comment(db, settings: Settings, post_id: str, caller: Caller, payload: CommentIn) -> dict:
    def mutate(post):
        stamp = now_utc()
        comment = Comment(
            id=new_id(),
            user_id=caller.user_id,
            name=caller.name,
            text=payload.text,
            created_at=stamp,
            updated_at=stamp,
        ).model_dump()
        post.setdefault("comments", []).append(comment)
        return comment

    _, comment = guarded_update(db, "forum", post_id, mutate, settings.max_update_retries, "Post")
    return comment


def edit_comment(db, settings: Settings, post_id: str, comment_id: str, caller: Caller, payload: CommentIn) -> dict:
    def mutate(post):
        comment = _find_comment(post, comment_id)
        _check_owner(comment, caller, "comment", "edit")
        comment["text"] = payload.text
        comment["updated_at"] = now_utc()
        return comment

    _, comment = guarded_update(db, "forum", post_id, mutate, settings.max_update_retries, "Post")
    return comment


def delete_comment(db, settings: Settings, post_id: str, comment_id: str, caller: Caller) -> dict:
    def mutate(post):
        comment = _find_comment(post, comment_id)
        _check_owner(comment, caller, "comment", "delete")
        post["comments"] = [c for c in post["comments"] if c["id"] != comment_id]
        return comment

    _, comment = guarded_update(db, "forum", post_id, mutate, settings.max_update_retries, "Post")
    return comment
