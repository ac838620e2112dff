import math

import structlog

from config import Settings
from database import create_document, get_documents, get_or_404, guarded_update, object_id
from errors import AlreadyExists, NotFound
from schemas import Product, ProductCreate, ProductUpdate

logger = structlog.get_logger(__name__)

PAGE_SIZE = 9
RELATED_LIMIT = 3


def _slug_taken(db, slug: str, exclude_id=None) -> bool:
    query = {"slug": slug}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    return db["product"].find_one(query) is not None


def create_product(db, payload: ProductCreate) -> dict:
    if _slug_taken(db, payload.slug):
        raise AlreadyExists(f"Product slug '{payload.slug}' already exists")
    product = Product(**payload.model_dump())
    product_id = create_document(db, "product", product.model_dump(), f"Product slug '{payload.slug}' already exists")
    logger.info("product_created", product_id=product_id, slug=payload.slug)
    return db["product"].find_one({"_id": object_id(product_id)})


def update_product(db, settings: Settings, product_id: str, payload: ProductUpdate) -> dict:
    changes = payload.model_dump(exclude_none=True)

    def mutate(product):
        if "slug" in changes and _slug_taken(db, changes["slug"], product["_id"]):
            raise AlreadyExists(f"Product slug '{changes['slug']}' already exists")
        product.update(changes)

    product, _ = guarded_update(db, "product", product_id, mutate, settings.max_update_retries, "Product")
    return product


def delete_product(db, product_id: str):
    result = db["product"].delete_one({"_id": object_id(product_id, "Product")})
    if result.deleted_count == 0:
        raise NotFound("Product Not Found")
    logger.info("product_deleted", product_id=product_id)


def get_product(db, product_id: str) -> dict:
    return get_or_404(db, "product", product_id, "Product")


def get_product_by_slug(db, slug: str) -> dict:
    product = db["product"].find_one({"slug": slug})
    if not product:
        raise NotFound("Product Not Found")
    return product


def list_products_admin(db, page: int = 1, page_size: int = PAGE_SIZE) -> dict:
    page = max(page, 1)
    products = list(db["product"].find().skip(page_size * (page - 1)).limit(page_size))
    count = db["product"].count_documents({})
    return {
        "products": products,
        "count_products": count,
        "page": page,
        "pages": math.ceil(count / page_size),
    }


def list_categories(db):
    return sorted(db["product"].distinct("category"))


def list_products(db, limit: int = 50):
    return get_documents(db, "product", {}, limit)


def list_countries(db):
    return sorted(db["product"].distinct("country"))


def related_products(db, product_id: str, limit: int = RELATED_LIMIT):
    """Other products in the same category."""
    product = get_or_404(db, "product", product_id, "Product")
    return list(db["product"].find({"category": product["category"], "_id": {"$ne": product["_id"]}}).limit(limit))


SAMPLE_PRODUCTS = [
    {
        "name": "Leopard Gecko",
        "slug": "leopard-gecko",
        "price": 79.0,
        "count_in_stock": 12,
        "category": "Geckos",
        "country": "Pakistan",
        "description": "Docile, hardy and a good first reptile.",
        "images": ["/images/leopard-gecko.jpg"],
    },
    {
        "name": "Crested Gecko",
        "slug": "crested-gecko",
        "price": 95.0,
        "count_in_stock": 8,
        "category": "Geckos",
        "country": "New Caledonia",
        "description": "Arboreal gecko that lives on fruit diet powder.",
        "images": ["/images/crested-gecko.jpg"],
    },
    {
        "name": "Ball Python",
        "slug": "ball-python",
        "price": 120.0,
        "count_in_stock": 5,
        "category": "Snakes",
        "country": "Ghana",
        "description": "Calm constrictor that rarely exceeds five feet.",
        "images": ["/images/ball-python.jpg"],
    },
    {
        "name": "Bearded Dragon",
        "slug": "bearded-dragon",
        "price": 150.0,
        "count_in_stock": 4,
        "category": "Lizards",
        "country": "Australia",
        "description": "Curious desert lizard, active in the day.",
        "images": ["/images/bearded-dragon.jpg"],
    },
]


def seed(db) -> dict:
    """Load the sample catalog into an empty product collection."""
    created = 0
    if db["product"].count_documents({}) == 0:
        for sample in SAMPLE_PRODUCTS:
            create_document(db, "product", Product(**sample).model_dump())
            created += 1
        logger.info("catalog_seeded", products=created)
    return {"created_products": created}
