import pytest
from bson import ObjectId

import accounts
from auth import resolve_caller, verify_password
from conftest import PROTECTED_EMAIL
from errors import AlreadyExists, NotFound, PermissionDenied, Unauthenticated
from schemas import AdminUserUpdate, ProfileUpdate, SigninRequest, SignupRequest


def test_protected_account_cannot_be_deleted_even_by_admin(db, settings, make_user):
    root = make_user("Root", email=PROTECTED_EMAIL, is_admin=True)
    other_admin = make_user("Other", is_admin=True)

    for caller in (root, other_admin):
        with pytest.raises(PermissionDenied):
            accounts.delete_user(db, settings, caller, root.user_id)
    assert db["user"].count_documents({"_id": ObjectId(root.user_id)}) == 1


def test_protected_match_ignores_case(db, settings, make_user):
    root = make_user("Root", email=PROTECTED_EMAIL.upper(), is_admin=True)
    with pytest.raises(PermissionDenied):
        accounts.delete_user(db, settings, root, root.user_id)


def test_delete_ordinary_user(db, settings, make_user):
    admin = make_user("Root", is_admin=True)
    bob = make_user("Bob")
    accounts.delete_user(db, settings, admin, bob.user_id)
    with pytest.raises(NotFound):
        accounts.delete_user(db, settings, admin, bob.user_id)


def test_signup_signin_and_token(db, settings):
    out = accounts.signup(db, settings, SignupRequest(name="Alice", email="alice@example.com", password="s3cret"))
    assert out.is_admin is False
    assert resolve_caller(db, out.token, settings).user_id == out.id

    with pytest.raises(AlreadyExists):
        accounts.signup(db, settings, SignupRequest(name="Again", email="alice@example.com", password="x"))

    assert accounts.signin(db, settings, SigninRequest(email="alice@example.com", password="s3cret")).id == out.id
    with pytest.raises(Unauthenticated):
        accounts.signin(db, settings, SigninRequest(email="alice@example.com", password="wrong"))


def test_bad_tokens_are_unauthenticated(db, settings):
    with pytest.raises(Unauthenticated):
        resolve_caller(db, "garbage", settings)


def test_update_profile(db, settings, make_user):
    alice = make_user("Alice")
    make_user("Bob")
    out = accounts.update_profile(db, settings, alice, ProfileUpdate(name="Alicia", password="newpass"))
    assert out.name == "Alicia"
    stored = db["user"].find_one({"_id": ObjectId(alice.user_id)})
    assert verify_password("newpass", stored["password_hash"])

    with pytest.raises(AlreadyExists):
        accounts.update_profile(db, settings, alice, ProfileUpdate(email="bob@example.com"))


def test_admin_update_cannot_demote_protected(db, settings, make_user):
    root = make_user("Root", email=PROTECTED_EMAIL, is_admin=True)
    with pytest.raises(PermissionDenied):
        accounts.admin_update_user(db, settings, root.user_id, AdminUserUpdate(is_admin=False))

    bob = make_user("Bob")
    assert accounts.admin_update_user(db, settings, bob.user_id, AdminUserUpdate(is_admin=True)).is_admin is True


def test_password_reset_flow(db, settings, notifier, mailer):
    accounts.signup(db, settings, SignupRequest(name="Alice", email="alice@example.com", password="old"))
    token = accounts.forget_password(db, settings, notifier, "alice@example.com")

    assert mailer.sent[0]["subject"] == "Reset Password"
    assert f"/reset-password/{token}" in mailer.sent[0]["html"]

    accounts.reset_password(db, settings, token, "new")
    accounts.signin(db, settings, SigninRequest(email="alice@example.com", password="new"))
    assert db["user"].find_one({"email": "alice@example.com"})["reset_token"] is None

    with pytest.raises(NotFound):
        accounts.reset_password(db, settings, token, "again")


def test_access_token_is_not_a_reset_token(db, settings):
    out = accounts.signup(db, settings, SignupRequest(name="Alice", email="alice@example.com", password="old"))
    with pytest.raises(Unauthenticated):
        accounts.reset_password(db, settings, out.token, "new")


def test_forget_password_unknown_email(db, settings, notifier):
    with pytest.raises(NotFound):
        accounts.forget_password(db, settings, notifier, "ghost@example.com")


def test_protected_account_keeps_its_email(db, settings, make_user):
    root = make_user("Root", email=PROTECTED_EMAIL, is_admin=True)
    other_admin = make_user("Other", is_admin=True)

    with pytest.raises(PermissionDenied):
        accounts.admin_update_user(db, settings, root.user_id, AdminUserUpdate(email="renamed@example.com"))
    with pytest.raises(PermissionDenied):
        accounts.update_profile(db, settings, root, ProfileUpdate(email="renamed@example.com"))
    assert db["user"].find_one({"_id": ObjectId(root.user_id)})["email"] == PROTECTED_EMAIL

    with pytest.raises(PermissionDenied):
        accounts.delete_user(db, settings, other_admin, root.user_id)
    assert db["user"].count_documents({"_id": ObjectId(root.user_id)}) == 1

    renamed = accounts.admin_update_user(db, settings, root.user_id, AdminUserUpdate(name="Super Root"))
    assert renamed.name == "Super Root"


def test_reset_token_does_not_authenticate(db, settings, notifier):
    accounts.signup(db, settings, SignupRequest(name="Alice", email="alice@example.com", password="old"))
    token = accounts.forget_password(db, settings, notifier, "alice@example.com")

    with pytest.raises(Unauthenticated):
        resolve_caller(db, token, settings)
    accounts.reset_password(db, settings, token, "new")
    with pytest.raises(Unauthenticated):
        resolve_caller(db, token, settings)


def test_signup_race_is_caught_by_unique_email(db, settings, monkeypatch):
    accounts.signup(db, settings, SignupRequest(name="Alice", email="alice@example.com", password="pw"))
    # both requests passed the lookup before either inserted
    monkeypatch.setattr(accounts, "_email_taken", lambda *args: False)

    with pytest.raises(AlreadyExists):
        accounts.signup(db, settings, SignupRequest(name="Twin", email="alice@example.com", password="pw"))
    assert db["user"].count_documents({"email": "alice@example.com"}) == 1
