"""
Database connection and document helpers.

Uses pymongo against the database named by DATABASE_URL / DATABASE_NAME.
Collection names are the lowercase entity names (Product -> "product").
"""
from datetime import datetime, timezone
from typing import Union

from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient, TEXT
from pymongo.errors import PyMongoError

from config import settings
from logger import get_logger

logger = get_logger(__name__)

PRODUCTS = "product"
BRANDS = "brand"
CATEGORIES = "category"
AGE_RANGES = "agerange"

_client = None
db = None

if settings.database_url and settings.database_name:
    try:
        _client = MongoClient(settings.database_url)
        db = _client[settings.database_name]
    except PyMongoError as e:
        logger.warning(f"Failed to create MongoDB client: {e}; database features disabled")
        _client = None
        db = None
else:
    logger.info("DATABASE_URL / DATABASE_NAME not set, running without a database")


def get_db():
    """Dependency returning the configured database, or None when unset."""
    return db


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def create_document(database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document, stamping createdAt/updatedAt, and return its id."""
    if database is None:
        raise RuntimeError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)

    now = utc_now()
    data_dict.setdefault("createdAt", now)
    data_dict["updatedAt"] = now

    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def ensure_indexes(database) -> None:
    """Create the indexes the catalog queries rely on."""
    products = database[PRODUCTS]
    products.create_index([("slug", ASCENDING)], unique=True)
    products.create_index([("isActive", ASCENDING), ("status", ASCENDING)])
    products.create_index([("brand", ASCENDING)])
    products.create_index([("categories", ASCENDING)])
    products.create_index([("name", TEXT), ("description", TEXT), ("tags", TEXT)], name="product_text")

    for name in (BRANDS, CATEGORIES, AGE_RANGES):
        database[name].create_index([("slug", ASCENDING)], unique=True)
        database[name].create_index([("status", ASCENDING)])
    database[AGE_RANGES].create_index([("products", ASCENDING)])
