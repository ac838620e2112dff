import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import accounts
import catalog
import forum
import orders
import reviews
from auth import Caller, get_current_user, require_admin
from config import Settings, configure_logging, get_settings
from database import db as configured_db, ensure_indexes, get_db, to_out
from errors import InvalidArgument, ServiceError
from notifier import Mailer, Notifier
from schemas import (
    AdminUserUpdate,
    AuthOut,
    CommentIn,
    ForgetPasswordRequest,
    OrderCreate,
    PaymentResult,
    PostCreate,
    PostUpdate,
    ProductCreate,
    ProductUpdate,
    ProfileUpdate,
    ResetPasswordRequest,
    ReviewCreate,
    SigninRequest,
    SignupRequest,
    UserOut,
    VoteOut,
)

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if configured_db is not None:
        ensure_indexes(configured_db)
    yield


app = FastAPI(title="Reptile Shop API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    return JSONResponse(status_code=InvalidArgument.status_code, content=InvalidArgument(message).to_dict())


def get_notifier(background_tasks: BackgroundTasks, settings: Settings = Depends(get_settings)) -> Notifier:
    return Notifier(Mailer(settings), background_tasks.add_task)


@app.get("/")
def read_root():
    return {"message": "Reptile shop backend is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "collections": []
    }
    try:
        if configured_db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
            response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"
            try:
                collections = configured_db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"
    return response


@app.post("/api/seed")
def seed(db=Depends(get_db)):
    return catalog.seed(db)


# Users
@app.post("/api/users/signup", response_model=AuthOut, status_code=201)
def signup(payload: SignupRequest, db=Depends(get_db), settings: Settings = Depends(get_settings)):
    return accounts.signup(db, settings, payload)


@app.post("/api/users/signin", response_model=AuthOut)
def signin(payload: SigninRequest, db=Depends(get_db), settings: Settings = Depends(get_settings)):
    return accounts.signin(db, settings, payload)


@app.put("/api/users/profile", response_model=AuthOut)
def update_profile(
    payload: ProfileUpdate,
    current: Caller = Depends(get_current_user),
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return accounts.update_profile(db, settings, current, payload)


@app.post("/api/users/forget-password")
def forget_password(
    payload: ForgetPasswordRequest,
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
    notifier: Notifier = Depends(get_notifier),
):
    accounts.forget_password(db, settings, notifier, payload.email)
    return {"message": "Reset Password is sent"}


@app.post("/api/users/reset-password")
def reset_password(payload: ResetPasswordRequest, db=Depends(get_db), settings: Settings = Depends(get_settings)):
    accounts.reset_password(db, settings, payload.token, payload.password)
    return {"message": "Password reset successfully"}


@app.get("/api/users", response_model=List[UserOut])
def list_users(admin: Caller = Depends(require_admin), db=Depends(get_db)):
    return accounts.list_users(db)


@app.get("/api/users/{user_id}", response_model=UserOut)
def get_user(user_id: str, admin: Caller = Depends(require_admin), db=Depends(get_db)):
    return accounts.get_user(db, user_id)


@app.put("/api/users/{user_id}", response_model=UserOut)
def admin_update_user(
    user_id: str,
    payload: AdminUserUpdate,
    admin: Caller = Depends(require_admin),
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return accounts.admin_update_user(db, settings, user_id, payload)


@app.delete("/api/users/{user_id}")
def delete_user(
    user_id: str,
    admin: Caller = Depends(require_admin),
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    accounts.delete_user(db, settings, admin, user_id)
    return {"message": "User Deleted"}


# Catalog
@app.get("/api/products")
def list_products(limit: int = Query(50, ge=1, le=100), db=Depends(get_db)):
    return [to_out(p) for p in catalog.list_products(db, limit)]


@app.get("/api/products/categories")
def list_categories(db=Depends(get_db)):
    return catalog.list_categories(db)


@app.get("/api/products/countries")
def list_countries(db=Depends(get_db)):
    return catalog.list_countries(db)


@app.get("/api/products/admin")
def list_products_admin(
    page: int = Query(1, ge=1),
    page_size: int = Query(catalog.PAGE_SIZE, ge=1, le=100),
    admin: Caller = Depends(require_admin),
    db=Depends(get_db),
):
    result = catalog.list_products_admin(db, page, page_size)
    result["products"] = [to_out(p) for p in result["products"]]
    return result


@app.get("/api/products/slug/{slug}")
def get_product_by_slug(slug: str, db=Depends(get_db)):
    return to_out(catalog.get_product_by_slug(db, slug))


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    return to_out(catalog.get_product(db, product_id))


@app.get("/api/products/{product_id}/related")
def related_products(product_id: str, db=Depends(get_db)):
    return [to_out(p) for p in catalog.related_products(db, product_id)]


@app.post("/api/products", status_code=201)
def create_product(payload: ProductCreate, admin: Caller = Depends(require_admin), db=Depends(get_db)):
    return {"message": "Product Created", "product": to_out(catalog.create_product(db, payload))}


@app.put("/api/products/{product_id}")
def update_product(
    product_id: str,
    payload: ProductUpdate,
    admin: Caller = Depends(require_admin),
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return {"message": "Product Updated", "product": to_out(catalog.update_product(db, settings, product_id, payload))}


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, admin: Caller = Depends(require_admin), db=Depends(get_db)):
    catalog.delete_product(db, product_id)
    return {"message": "Product Deleted"}


@app.post("/api/products/{product_id}/reviews", status_code=201)
def add_review(
    product_id: str,
    payload: ReviewCreate,
    current: Caller = Depends(get_current_user),
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return {"message": "Review submitted successfully!", **reviews.add_review(db, settings, product_id, current, payload)}


@app.put("/api/products/{product_id}/reviews/{review_id}")
def edit_review(
    product_id: str,
    review_id: str,
    payload: ReviewCreate,
    current: Caller = Depends(get_current_user),
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return {"message": "Review updated successfully", **reviews.edit_review(db, settings, product_id, review_id, current, payload)}


@app.delete("/api/products/{product_id}/reviews/{review_id}")
def delete_review(
    product_id: str,
    review_id: str,
    current: Caller = Depends(get_current_user),
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return {"message": "Review deleted successfully", **reviews.delete_review(db, settings, product_id, review_id, current)}


# Orders
@app.post("/api/orders", status_code=201)
def create_order(
    payload: OrderCreate,
    current: Caller = Depends(get_current_user),
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    order = orders.create_order(db, settings, current.user_id, payload)
    return {"message": "New Order Created", "order": to_out(order)}


@app.get("/api/orders/summary")
def order_summary(admin: Caller = Depends(require_admin), db=Depends(get_db)):
    return orders.order_summary(db)


@app.get("/api/orders/mine")
def list_my_orders(page: int = Query(1, ge=1), current: Caller = Depends(get_current_user), db=Depends(get_db)):
    result = orders.list_my_orders(db, current.user_id, page)
    result["orders"] = [to_out(o) for o in result["orders"]]
    return result


@app.get("/api/orders/admin")
def list_orders_admin(page: int = Query(1, ge=1), admin: Caller = Depends(require_admin), db=Depends(get_db)):
    result = orders.list_orders_admin(db, page)
    result["orders"] = [to_out(o) for o in result["orders"]]
    return result


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, current: Caller = Depends(get_current_user), db=Depends(get_db)):
    return to_out(orders.get_order(db, current, order_id))


@app.put("/api/orders/{order_id}/pay")
def pay_order(
    order_id: str,
    payment_result: Optional[PaymentResult] = None,
    current: Caller = Depends(get_current_user),
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
    notifier: Notifier = Depends(get_notifier),
):
    orders.get_order(db, current, order_id)
    order = orders.mark_paid(db, settings, notifier, order_id, payment_result)
    return {"message": "Order Paid", "order": to_out(order)}


@app.put("/api/orders/{order_id}/deliver")
def deliver_order(
    order_id: str,
    admin: Caller = Depends(require_admin),
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
    notifier: Notifier = Depends(get_notifier),
):
    order = orders.mark_delivered(db, settings, notifier, order_id)
    return {"message": "Order Delivered", "order": to_out(order)}


@app.delete("/api/orders/{order_id}")
def delete_order(order_id: str, admin: Caller = Depends(require_admin), db=Depends(get_db)):
    orders.delete_order(db, order_id)
    return {"message": "Order Deleted"}


# Forum
@app.get("/api/forum")
def list_posts(skip: int = Query(0, ge=0), limit: int = Query(20, ge=1, le=100), db=Depends(get_db)):
    return [to_out(p) for p in forum.list_posts(db, skip, limit)]


@app.post("/api/forum", status_code=201)
def create_post(payload: PostCreate, current: Caller = Depends(get_current_user), db=Depends(get_db)):
    return {"message": "Post Created", "post": to_out(forum.create_post(db, current, payload))}


@app.get("/api/forum/{post_id}")
def get_post(post_id: str, db=Depends(get_db)):
    return to_out(forum.get_post(db, post_id))


@app.put("/api/forum/{post_id}")
def update_post(
    post_id: str,
    payload: PostUpdate,
    current: Caller = Depends(get_current_user),
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return {"message": "Post Updated", "post": to_out(forum.update_post(db, settings, post_id, current, payload))}


@app.delete("/api/forum/{post_id}")
def delete_post(post_id: str, current: Caller = Depends(get_current_user), db=Depends(get_db)):
    forum.delete_post(db, post_id, current)
    return {"message": "Post Deleted"}


@app.post("/api/forum/{post_id}/comments", status_code=201)
def add_comment(
    post_id: str,
    payload: CommentIn,
    current: Caller = Depends(get_current_user),
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return {"message": "Comment Successfully", "comment": forum.add_comment(db, settings, post_id, current, payload)}


@app.put("/api/forum/{post_id}/comments/{comment_id}")
def edit_comment(
    post_id: str,
    comment_id: str,
    payload: CommentIn,
    current: Caller = Depends(get_current_user),
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    comment = forum.edit_comment(db, settings, post_id, comment_id, current, payload)
    return {"message": "Comment updated successfully", "comment": comment}


@app.delete("/api/forum/{post_id}/comments/{comment_id}")
def delete_comment(
    post_id: str,
    comment_id: str,
    current: Caller = Depends(get_current_user),
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    comment = forum.delete_comment(db, settings, post_id, comment_id, current)
    return {"message": "Comment deleted successfully", "comment": comment}


@app.post("/api/forum/{post_id}/toggle-like", response_model=VoteOut)
def toggle_like(
    post_id: str,
    current: Caller = Depends(get_current_user),
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return forum.toggle_like(db, settings, post_id, current.user_id)


@app.post("/api/forum/{post_id}/toggle-dislike", response_model=VoteOut)
def toggle_dislike(
    post_id: str,
    current: Caller = Depends(get_current_user),
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return forum.toggle_dislike(db, settings, post_id, current.user_id)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
