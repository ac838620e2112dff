"""
Order lifecycle: created -> paid -> delivered.

Stock and sold counters live on the product documents. Paying an order is
claimed with one conditional update on the order; repeated or concurrent
pay requests see the order already paid and change nothing once its
inventory is applied. Product updates are individually
atomic and each order line is claimed on the order before its product is
touched, so a pay request that fails part way (Conflict) can be repeated
and only the outstanding lines are applied. There is no multi-document
transaction: a process that dies between claiming a line and updating its
product leaves that line in stock_claimed but not in stock_applied, and the
order stays inventory_applied=False.
"""
import math
from collections import defaultdict
from typing import Optional

import structlog
from pymongo import ReturnDocument

from auth import Caller
from config import Settings
from database import create_document, get_or_404, now_utc, object_id
from errors import Conflict, InvalidArgument, NotFound, PermissionDenied
from notifier import Notifier
from schemas import Order, OrderCreate, OrderItem, PaymentResult

logger = structlog.get_logger(__name__)

MY_ORDERS_PAGE_SIZE = 8
ADMIN_ORDERS_PAGE_SIZE = 10


def _counts_sold_at(settings: Settings, stage: str) -> bool:
    return settings.sold_count_policy in (stage, "both")


def create_order(db, settings: Settings, user_id: str, payload: OrderCreate) -> dict:
    if not payload.order_items:
        raise InvalidArgument("Order has no items")
    if any(line.quantity <= 0 for line in payload.order_items):
        raise InvalidArgument("Quantity must be greater than zero")

    items = []
    for line in payload.order_items:
        product = db["product"].find_one({"_id": object_id(line.product_id, "Product")})
        if not product:
            raise NotFound(f"Product {line.product_id} Not Found")
        images = product.get("images") or []
        items.append(OrderItem(
            product_id=str(product["_id"]),
            name=product["name"],
            price=product["price"],
            quantity=line.quantity,
            image=images[0] if images else None,
        ))

    total_price = round(payload.items_price + payload.shipping_price + payload.tax_price, 2)
    if payload.total_price is not None and not math.isclose(payload.total_price, total_price, abs_tol=0.005):
        logger.info("order_total_overridden", supplied=payload.total_price, computed=total_price)

    order = Order(
        user_id=user_id,
        order_items=items,
        shipping_address=payload.shipping_address,
        payment_method=payload.payment_method,
        items_price=payload.items_price,
        shipping_price=payload.shipping_price,
        tax_price=payload.tax_price,
        total_price=total_price,
    )
    order_id = create_document(db, "order", order.model_dump())

    if _counts_sold_at(settings, "created"):
        for item in items:
            db["product"].update_one(
                {"_id": object_id(item.product_id)},
                {"$inc": {"sold": item.quantity, "version": 1}, "$set": {"updated_at": now_utc()}},
            )

    logger.info("order_created", order_id=order_id, user_id=user_id, total_price=total_price, items=len(items))
    return db["order"].find_one({"_id": object_id(order_id)})


def _apply_payment_to_product(db, settings: Settings, order_id, item: dict):
    """Take `quantity` units out of stock, clamping at zero."""
    qty = item["quantity"]
    sold = qty if _counts_sold_at(settings, "paid") else 0
    products = db["product"]
    pid = object_id(item["product_id"], "Product")

    for _ in range(settings.max_update_retries):
        result = products.update_one(
            {"_id": pid, "count_in_stock": {"$gte": qty}},
            {"$inc": {"count_in_stock": -qty, "sold": sold, "version": 1}, "$set": {"updated_at": now_utc()}},
        )
        if result.matched_count:
            return

        product = products.find_one({"_id": pid}, {"count_in_stock": 1})
        if not product:
            logger.warning("paid_product_missing", order_id=str(order_id), product_id=item["product_id"])
            return
        available = product.get("count_in_stock", 0)
        if available >= qty:
            continue
        result = products.update_one(
            {"_id": pid, "count_in_stock": available},
            {"$set": {"count_in_stock": 0, "updated_at": now_utc()}, "$inc": {"sold": sold, "version": 1}},
        )
        if result.matched_count:
            logger.warning(
                "stock_inconsistency",
                order_id=str(order_id),
                product_id=item["product_id"],
                requested=qty,
                available=available,
            )
            return

    raise Conflict("Product stock was modified concurrently, please retry")


def _apply_order_items(db, settings: Settings, oid, order: dict) -> Optional[dict]:
    """Take each line of a paid order out of stock exactly once.

    A line is claimed on the order before its product is touched and the
    claim is released if the product update fails, so a later pay request
    picks up only the lines still outstanding. Returns the order once every
    line is applied, or None while another request still holds a line.
    """
    for index, item in enumerate(order["order_items"]):
        claim = db["order"].update_one(
            {"_id": oid, "stock_claimed": {"$ne": index}},
            {"$addToSet": {"stock_claimed": index}},
        )
        if not claim.matched_count:
            continue
        try:
            _apply_payment_to_product(db, settings, oid, item)
        except Exception:
            db["order"].update_one({"_id": oid}, {"$pull": {"stock_claimed": index}})
            raise
        db["order"].update_one({"_id": oid}, {"$addToSet": {"stock_applied": index}})

    return db["order"].find_one_and_update(
        {
            "_id": oid,
            "inventory_applied": {"$ne": True},
            "stock_applied": {"$all": list(range(len(order["order_items"])))},
        },
        {"$set": {"inventory_applied": True, "updated_at": now_utc()}, "$inc": {"version": 1}},
        return_document=ReturnDocument.AFTER,
    )


def mark_paid(db, settings: Settings, notifier: Notifier, order_id: str, payment_result: Optional[PaymentResult] = None) -> dict:
    oid = object_id(order_id, "Order")
    stamp = now_utc()
    order = db["order"].find_one_and_update(
        {"_id": oid, "is_paid": {"$ne": True}},
        {
            "$set": {
                "is_paid": True,
                "paid_at": stamp,
                "payment_result": payment_result.model_dump() if payment_result else None,
                "inventory_applied": False,
                "updated_at": stamp,
            },
            "$inc": {"version": 1},
        },
        return_document=ReturnDocument.AFTER,
    )
    if order is None:
        order = db["order"].find_one({"_id": oid})
        if not order:
            raise NotFound("Order Not Found")
        if order.get("inventory_applied") is not False:
            logger.info("order_already_paid", order_id=order_id)
            return order
        logger.info("order_payment_resumed", order_id=order_id, applied=order.get("stock_applied", []))

    finished = _apply_order_items(db, settings, oid, order)
    if finished is None:
        return db["order"].find_one({"_id": oid})
    logger.info("order_paid", order_id=order_id, total_price=finished["total_price"])

    user = db["user"].find_one({"_id": object_id(finished["user_id"], "User")})
    notifier.order_email(finished, user, "payment")
    return finished


def mark_delivered(db, settings: Settings, notifier: Notifier, order_id: str) -> dict:
    order = get_or_404(db, "order", order_id, "Order")
    if order.get("is_delivered"):
        return order

    query = {"_id": order["_id"], "is_delivered": {"$ne": True}}
    if settings.require_paid_before_delivery:
        if not order.get("is_paid"):
            raise InvalidArgument("Order Is Not Paid")
        query["is_paid"] = True

    stamp = now_utc()
    updated = db["order"].find_one_and_update(
        query,
        {"$set": {"is_delivered": True, "delivered_at": stamp, "updated_at": stamp}, "$inc": {"version": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        # lost the race to another deliver request
        return get_or_404(db, "order", order_id, "Order")

    logger.info("order_delivered", order_id=order_id)
    user = db["user"].find_one({"_id": object_id(updated["user_id"], "User")})
    notifier.order_email(updated, user, "delivery")
    return updated


def delete_order(db, order_id: str):
    result = db["order"].delete_one({"_id": object_id(order_id, "Order")})
    if result.deleted_count == 0:
        raise NotFound("Order Not Found")
    logger.info("order_deleted", order_id=order_id)


def get_order(db, caller: Caller, order_id: str) -> dict:
    order = get_or_404(db, "order", order_id, "Order")
    if order["user_id"] != caller.user_id and not caller.is_admin:
        raise PermissionDenied("You are not allowed to view this order")
    return order


def _page(db, query: dict, page: int, page_size: int) -> dict:
    page = max(page, 1)
    cursor = db["order"].find(query).sort("created_at", -1).skip(page_size * (page - 1)).limit(page_size)
    count = db["order"].count_documents(query)
    return {
        "orders": list(cursor),
        "count_orders": count,
        "page": page,
        "pages": math.ceil(count / page_size),
    }


def list_my_orders(db, user_id: str, page: int = 1) -> dict:
    return _page(db, {"user_id": user_id}, page, MY_ORDERS_PAGE_SIZE)


def list_orders_admin(db, page: int = 1) -> dict:
    return _page(db, {}, page, ADMIN_ORDERS_PAGE_SIZE)


def order_summary(db) -> dict:
    """Numbers for the admin dashboard."""
    orders = list(db["order"].aggregate([
        {"$group": {"_id": None, "num_orders": {"$sum": 1}, "total_sales": {"$sum": "$total_price"}}},
    ]))
    num_users = db["user"].count_documents({})

    by_day = defaultdict(lambda: {"orders": 0, "sales": 0.0})
    for doc in db["order"].find({}, {"created_at": 1, "total_price": 1}):
        day = doc["created_at"].date().isoformat()
        by_day[day]["orders"] += 1
        by_day[day]["sales"] += doc.get("total_price", 0)
    daily_orders = [
        {"day": day, "orders": v["orders"], "sales": round(v["sales"], 2)}
        for day, v in sorted(by_day.items())
    ]

    categories = [
        {"category": c["_id"], "count": c["count"]}
        for c in db["product"].aggregate([{"$group": {"_id": "$category", "count": {"$sum": 1}}}])
    ]
    product_sold = [
        {"id": str(p["_id"]), "name": p.get("name"), "sold": p.get("sold", 0)}
        for p in db["product"].find({}, {"name": 1, "sold": 1})
    ]

    spending = list(db["order"].aggregate([
        {"$group": {"_id": "$user_id", "orders": {"$sum": 1}, "total_spending": {"$sum": "$total_price"}}},
    ]))
    names = {}
    for row in spending:
        try:
            user = db["user"].find_one({"_id": object_id(row["_id"], "User")}, {"name": 1})
        except NotFound:
            user = None
        names[row["_id"]] = user.get("name") if user else None
    user_orders = [
        {"user_id": row["_id"], "name": names[row["_id"]], "orders": row["orders"], "total_spending": round(row["total_spending"], 2)}
        for row in spending
    ]

    summary = orders[0] if orders else {"num_orders": 0, "total_sales": 0}
    return {
        "num_orders": summary["num_orders"],
        "total_sales": round(summary["total_sales"], 2),
        "num_users": num_users,
        "daily_orders": daily_orders,
        "product_categories": categories,
        "product_sold": product_sold,
        "user_orders": user_orders,
    }
