"""
Product reviews.

num_reviews and rating are never patched on their own: every add, edit or
delete rewrites them from the review list in the same guarded update.
"""
from decimal import ROUND_HALF_UP, Decimal
from typing import List

import structlog

from auth import Caller
from config import Settings
from database import guarded_update, new_id, now_utc
from errors import AlreadyExists, NotFound, PermissionDenied
from schemas import Review, ReviewCreate

logger = structlog.get_logger(__name__)


def average_rating(reviews: List[dict]) -> float:
    """Mean rating rounded half away from zero to one decimal, 0 when empty."""
    if not reviews:
        return 0.0
    mean = Decimal(sum(r["rating"] for r in reviews)) / Decimal(len(reviews))
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def recompute(product: dict):
    product["num_reviews"] = len(product.get("reviews", []))
    product["rating"] = average_rating(product.get("reviews", []))


def _find_review(product: dict, review_id: str) -> dict:
    for review in product.get("reviews", []):
        if review["id"] == review_id:
            return review
    raise NotFound("Review not found")


def _check_owner(review: dict, caller: Caller, action: str):
    if review["user_id"] != caller.user_id and not caller.is_admin:
        raise PermissionDenied(f"You are not authorized to {action} this review")


def add_review(db, settings: Settings, product_id: str, caller: Caller, payload: ReviewCreate) -> dict:
    def mutate(product):
        reviews = product.setdefault("reviews", [])
        if any(r["user_id"] == caller.user_id for r in reviews):
            raise AlreadyExists("You already submitted a review for this product")
        stamp = now_utc()
        review = Review(
            id=new_id(),
            user_id=caller.user_id,
            name=caller.name,
            rating=payload.rating,
            comment=payload.comment,
            created_at=stamp,
            updated_at=stamp,
        ).model_dump()
        reviews.append(review)
        recompute(product)
        return review

    product, review = guarded_update(db, "product", product_id, mutate, settings.max_update_retries, "Product")
    logger.info("review_added", product_id=product_id, user_id=caller.user_id, rating=product["rating"])
    return {"review": review, "num_reviews": product["num_reviews"], "rating": product["rating"]}


def edit_review(db, settings: Settings, product_id: str, review_id: str, caller: Caller, payload: ReviewCreate) -> dict:
    def mutate(product):
        review = _find_review(product, review_id)
        _check_owner(review, caller, "edit")
        review["rating"] = payload.rating
        review["comment"] = payload.comment
        review["updated_at"] = now_utc()
        recompute(product)
        return review

    product, review = guarded_update(db, "product", product_id, mutate, settings.max_update_retries, "Product")
    return {"review": review, "num_reviews": product["num_reviews"], "rating": product["rating"]}


def delete_review(db, settings: Settings, product_id: str, review_id: str, caller: Caller) -> dict:
    def mutate(product):
        review = _find_review(product, review_id)
        _check_owner(review, caller, "delete")
        product["reviews"] = [r for r in product["reviews"] if r["id"] != review_id]
        recompute(product)
        return review

    product, review = guarded_update(db, "product", product_id, mutate, settings.max_update_retries, "Product")
    logger.info("review_deleted", product_id=product_id, review_id=review_id, by=caller.user_id)
    return {"review": review, "num_reviews": product["num_reviews"], "rating": product["rating"]}
