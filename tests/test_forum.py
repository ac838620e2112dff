import random

import pytest
from bson import ObjectId

import forum
from errors import NotFound, PermissionDenied
from schemas import CommentIn, PostCreate, PostUpdate


@pytest.fixture
def post_id(db, make_user):
    author = make_user("Author")
    return str(forum.create_post(db, author, PostCreate(title="Best substrate?", text="Coco fibre or sand"))["_id"])


def stored(db, post_id):
    return db["forum"].find_one({"_id": ObjectId(post_id)})


def test_like_then_dislike_moves_vote(db, settings, make_user, post_id):
    alice = make_user()
    forum.toggle_like(db, settings, post_id, alice.user_id)
    result = forum.toggle_dislike(db, settings, post_id, alice.user_id)

    assert result == {"vote": "dislike", "likes_count": 0, "dislikes_count": 1}
    post = stored(db, post_id)
    assert post["likes"] == []
    assert post["dislikes"] == [alice.user_id]


def test_toggle_twice_removes_vote(db, settings, make_user, post_id):
    alice = make_user()
    forum.toggle_like(db, settings, post_id, alice.user_id)
    result = forum.toggle_like(db, settings, post_id, alice.user_id)
    assert result == {"vote": None, "likes_count": 0, "dislikes_count": 0}


def test_votes_stay_exclusive_and_counted(db, settings, make_user, post_id):
    users = [make_user(f"User{i}").user_id for i in range(4)]
    rng = random.Random(7)
    for _ in range(60):
        user = rng.choice(users)
        if rng.random() < 0.5:
            forum.toggle_like(db, settings, post_id, user)
        else:
            forum.toggle_dislike(db, settings, post_id, user)
        post = stored(db, post_id)
        assert not set(post["likes"]) & set(post["dislikes"])
        assert post["likes_count"] == len(post["likes"])
        assert post["dislikes_count"] == len(post["dislikes"])
        assert len(set(post["likes"])) == len(post["likes"])


def test_vote_on_missing_post(db, settings, make_user):
    with pytest.raises(NotFound):
        forum.toggle_like(db, settings, str(ObjectId()), make_user().user_id)


def test_comment_lifecycle(db, settings, make_user, post_id):
    alice = make_user("Alice")
    bob = make_user("Bob")
    comment = forum.add_comment(db, settings, post_id, alice, CommentIn(text="Coco fibre"))
    assert comment["name"] == "Alice"

    with pytest.raises(PermissionDenied):
        forum.edit_comment(db, settings, post_id, comment["id"], bob, CommentIn(text="Sand!"))
    assert stored(db, post_id)["comments"][0]["text"] == "Coco fibre"

    edited = forum.edit_comment(db, settings, post_id, comment["id"], alice, CommentIn(text="Coco fibre, damp"))
    assert edited["text"] == "Coco fibre, damp"

    with pytest.raises(PermissionDenied):
        forum.delete_comment(db, settings, post_id, comment["id"], bob)
    forum.delete_comment(db, settings, post_id, comment["id"], make_user("Root", is_admin=True))
    assert stored(db, post_id)["comments"] == []

    with pytest.raises(NotFound):
        forum.delete_comment(db, settings, post_id, comment["id"], alice)


def test_post_edit_and_delete_need_owner(db, settings, make_user):
    author = make_user("Author")
    other = make_user("Other")
    pid = str(forum.create_post(db, author, PostCreate(title="Hello"))["_id"])

    with pytest.raises(PermissionDenied):
        forum.update_post(db, settings, pid, other, PostUpdate(title="Hijacked"))
    updated = forum.update_post(db, settings, pid, author, PostUpdate(text="Body"))
    assert updated["title"] == "Hello"
    assert updated["text"] == "Body"

    with pytest.raises(PermissionDenied):
        forum.delete_post(db, pid, other)
    forum.delete_post(db, pid, author)
    with pytest.raises(NotFound):
        forum.get_post(db, pid)


def test_list_posts(db, make_user):
    author = make_user()
    for title in ("one", "two", "three"):
        forum.create_post(db, author, PostCreate(title=title))
    titles = [p["title"] for p in forum.list_posts(db)]
    assert len(titles) == 3
    assert set(titles) == {"one", "two", "three"}
