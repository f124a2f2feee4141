import math
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from bson import ObjectId
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from pymongo.errors import PyMongoError

import catalog
from config import settings
from database import AGE_RANGES, BRANDS, CATEGORIES, PRODUCTS, create_document, ensure_indexes, get_db
import database
from logger import get_logger
from product_search import empty_listing, find_reference, search_products
from query_params import FilterValidationError, normalize_listing_query, validate_admin_query
from results import serialize_doc
from schemas import AgeRange, Brand, Category, ProductCreate, ProductUpdate, Variant, VariantUpdate
from simple_filter_builder import FilterBuilder

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        try:
            ensure_indexes(database.db)
        except PyMongoError as e:
            logger.warning(f"Could not create indexes: {e}")
    yield


app = FastAPI(title="Storefront Catalog API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------- Helpers ----------

def require_db(db):
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def query_dict(request: Request) -> Dict[str, List[str]]:
    params = request.query_params
    return {key: params.getlist(key) for key in params.keys()}


def product_listing(db, query: Dict[str, List[str]], message: str = "Products fetched successfully"):
    db = require_db(db)
    params = normalize_listing_query(query, settings.default_page_limit, settings.max_page_limit)
    try:
        data = search_products(db, params)
    except PyMongoError:
        logger.exception("Error in unified product search")
        raise HTTPException(status_code=500, detail="Error fetching products")
    return {"success": True, "message": message, "data": data}


def visible(extra: Optional[dict] = None) -> dict:
    query = {"isActive": True, "status": "Published"}
    query.update(extra or {})
    return query


def with_references(match: dict, sort: dict, limit: int) -> List[dict]:
    return [
        {"$match": match},
        {"$sort": sort},
        {"$limit": limit},
        {"$lookup": {"from": BRANDS, "localField": "brand", "foreignField": "_id", "as": "brandDetails"}},
        {"$lookup": {"from": CATEGORIES, "localField": "categories", "foreignField": "_id", "as": "categoryDetails"}},
        {"$addFields": {"brand": {"$arrayElemAt": ["$brandDetails", 0]}, "categories": "$categoryDetails"}},
        {"$project": {"brandDetails": 0, "categoryDetails": 0, "notes": 0}},
    ]


def clamp_limit(limit: int, upper: int = 50) -> int:
    return max(1, min(upper, limit))

# ---------- Health ----------

@app.get("/")
def root():
    return {"message": "Storefront Catalog API running"}

@app.get("/test")
def test_database(db=Depends(get_db)):
    resp = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if settings.database_url else "❌ Not Set",
        "database_name": "✅ Set" if settings.database_name else "❌ Not Set",
        "collections": []
    }
    try:
        if db is not None:
            resp["database"] = "✅ Connected"
            resp["database_name"] = db.name
            resp["collections"] = db.list_collection_names()
    except PyMongoError as e:
        resp["database"] = f"⚠️ {str(e)[:80]}"
    return resp

# ---------- Seed Data ----------

class SeedRequest(BaseModel):
    force: bool = False

@app.post("/api/seed")
def seed(req: SeedRequest, db=Depends(get_db)):
    db = require_db(db)
    # Only seed if empty or force=True
    if not req.force and db[PRODUCTS].estimated_document_count() > 0:
        return {"status": "ok", "message": "Already seeded"}

    for name in (PRODUCTS, BRANDS, CATEGORIES, AGE_RANGES):
        db[name].delete_many({})

    brands = {
        b.name: create_document(db, BRANDS, b)
        for b in (
            Brand(name="Acme", slug="acme", isFeatured=True, order=1),
            Brand(name="Zed", slug="zed", order=2),
        )
    }
    categories = {
        c.name: create_document(db, CATEGORIES, catalog.category_document(c))
        for c in (
            Category(name="Widgets", slug="widgets", order=1),
            Category(name="Gadgets", slug="gadgets", order=2),
        )
    }
    create_document(db, CATEGORIES, catalog.category_document(
        Category(name="Mini Widgets", slug="mini-widgets", parentCategory=categories["Widgets"])
    ))

    thumbnail = {"url": "https://images.unsplash.com/photo-1518443248587-30bdc8f94f04", "altText": "Product"}
    sample_products = [
        ProductCreate(
            name="Acme Widget",
            brand=brands["Acme"],
            categories=[categories["Widgets"]],
            tags=["widget", "classic"],
            basePrice=100,
            mrp=120,
            stockQuantity=10,
            averageRating=4.2,
            totalReviews=18,
            images={"thumbnail": thumbnail},
        ),
        ProductCreate(
            name="Acme Gadget",
            brand=brands["Acme"],
            categories=[categories["Gadgets"]],
            tags=["gadget"],
            basePrice=200,
            stockQuantity=4,
            condition="Refurbished",
            averageRating=3.9,
            totalReviews=7,
            images={"thumbnail": thumbnail},
        ),
        ProductCreate(
            name="Zed Widget",
            brand=brands["Zed"],
            categories=[categories["Widgets"]],
            tags=["widget"],
            variantConfiguration={"hasVariants": True, "variantType": "Color"},
            variants=[
                {
                    "name": "Red",
                    "price": 50,
                    "mrp": 65,
                    "stockQuantity": 5,
                    "identifyingAttributes": [
                        {"key": "color", "label": "Color", "value": "red", "displayValue": "Red",
                         "isColor": True, "hexCode": "#ff0000"}
                    ],
                },
            ],
            averageRating=4.7,
            totalReviews=31,
            images={"thumbnail": thumbnail},
        ),
    ]

    created = [catalog.create_product(db, p) for p in sample_products]

    kids = AgeRange(name="Kids", slug="kids", startAge=3, endAge=12).model_dump()
    kids["products"] = [created[0]["_id"], created[2]["_id"]]
    create_document(db, AGE_RANGES, kids)

    return {"status": "ok", "seeded": len(created)}

# ---------- Reference listings ----------

@app.get("/api/brands")
def list_brands(db=Depends(get_db)):
    db = require_db(db)
    brands = db[BRANDS].find({"status": "active"}).sort([("order", 1), ("name", 1)])
    return {"success": True, "brands": serialize_doc(list(brands))}

@app.get("/api/categories")
def list_categories(db=Depends(get_db)):
    db = require_db(db)
    roots = list(db[CATEGORIES].find({"status": "active", "parentCategory": None}).sort([("order", 1), ("name", 1)]))
    root_ids = [c["_id"] for c in roots]
    children: Dict[ObjectId, List[dict]] = {}
    for child in db[CATEGORIES].find({"status": "active", "parentCategory": {"$in": root_ids}}).sort("name", 1):
        if child["_id"] != child["parentCategory"]:
            children.setdefault(child["parentCategory"], []).append(child)
    for root in roots:
        root["children"] = children.get(root["_id"], [])
    return {"success": True, "categories": serialize_doc(roots)}

@app.get("/api/age-ranges")
def list_age_ranges(db=Depends(get_db)):
    db = require_db(db)
    ranges = db[AGE_RANGES].find({"status": "active"}, {"products": 0}).sort([("startAge", 1), ("order", 1)])
    return {"success": True, "ageRanges": serialize_doc(list(ranges))}

# ---------- Products ----------

@app.get("/api/products")
def list_products(request: Request, db=Depends(get_db)):
    return product_listing(db, query_dict(request))

@app.get("/api/products/search")
def advanced_search(request: Request, db=Depends(get_db)):
    return product_listing(db, query_dict(request))

@app.get("/api/products/quick-search")
def quick_search(request: Request, db=Depends(get_db)):
    return product_listing(db, query_dict(request))

@app.get("/api/products/filter")
@app.get("/api/products/filters")
def filter_products(request: Request, db=Depends(get_db)):
    return product_listing(db, query_dict(request))

@app.get("/api/products/featured")
def featured_products(request: Request, db=Depends(get_db)):
    query = query_dict(request)
    query["sort"] = ["popular"]
    return product_listing(db, query)

@app.get("/api/products/new-arrivals")
def new_arrivals(request: Request, db=Depends(get_db)):
    query = query_dict(request)
    query["sort"] = ["newest"]
    return product_listing(db, query)

def _reference_listing(db, request: Request, collection: str, param: str, token: str, label: str):
    db = require_db(db)
    try:
        reference = find_reference(db, collection, token)
    except PyMongoError:
        logger.exception(f"Error resolving {label} {token!r}")
        raise HTTPException(status_code=500, detail="Error fetching products")

    if reference is None:
        data = empty_listing(settings.default_page_limit)
        data[label] = {"name": token, "slug": token}
        return {"success": True, "message": f"{label.capitalize()} not found", "data": data}

    query = query_dict(request)
    query[param] = [reference["name"]]
    response = product_listing(db, query)
    response["data"][label] = serialize_doc({k: reference.get(k) for k in ("_id", "name", "slug")})
    return response

@app.get("/api/products/category/{category_name}")
def products_by_category(category_name: str, request: Request, db=Depends(get_db)):
    return _reference_listing(db, request, CATEGORIES, "category", category_name, "category")

@app.get("/api/products/brand/{brand_name}")
def products_by_brand(brand_name: str, request: Request, db=Depends(get_db)):
    return _reference_listing(db, request, BRANDS, "brand", brand_name, "brand")

@app.get("/api/products/slug/{slug}")
def get_product_by_slug(slug: str, db=Depends(get_db)):
    db = require_db(db)
    found = list(db[PRODUCTS].aggregate(with_references(visible({"slug": slug}), {"_id": 1}, 1)))
    if not found:
        raise HTTPException(404, "Product not found")
    return {"success": True, "message": "Product fetched successfully", "data": {"product": serialize_doc(found[0])}}

@app.get("/api/products/related/{slug}")
def get_related_products(slug: str, limit: int = 8, db=Depends(get_db)):
    db = require_db(db)
    current = db[PRODUCTS].find_one({"slug": slug}, {"categories": 1, "brand": 1, "tags": 1})
    if not current:
        raise HTTPException(404, "Product not found")

    match = visible({
        "_id": {"$ne": current["_id"]},
        "$or": [
            {"categories": {"$in": current.get("categories") or []}},
            {"brand": current.get("brand")},
            {"tags": {"$in": current.get("tags") or []}},
        ],
    })
    related = list(db[PRODUCTS].aggregate(
        with_references(match, {"averageRating": -1, "totalReviews": -1, "_id": 1}, clamp_limit(limit))
    ))
    return {
        "success": True,
        "message": "Related products fetched successfully",
        "data": {"relatedProducts": serialize_doc(related), "total": len(related)},
    }

@app.get("/api/products/linked/{slug}")
def get_linked_products(slug: str, limit: int = 8, db=Depends(get_db)):
    db = require_db(db)
    current = db[PRODUCTS].find_one({"slug": slug}, {"linkedProducts": 1})
    if not current:
        raise HTTPException(404, "Product not found")

    linked_ids = current.get("linkedProducts") or []
    linked = []
    if linked_ids:
        match = visible({"_id": {"$in": linked_ids}})
        linked = list(db[PRODUCTS].aggregate(with_references(match, {"averageRating": -1, "_id": 1}, clamp_limit(limit))))
    return {
        "success": True,
        "message": "Linked products fetched successfully",
        "data": {"linkedProducts": serialize_doc(linked), "total": len(linked)},
    }

@app.get("/api/products/by-ids")
def get_products_by_ids(ids: Optional[str] = Query(None), db=Depends(get_db)):
    db = require_db(db)
    if not ids:
        raise HTTPException(400, "Product IDs are required")
    valid = [ObjectId(i) for i in (s.strip() for s in ids.split(",")) if ObjectId.is_valid(i)]
    if not valid:
        return {"success": True, "count": 0, "products": []}
    try:
        products = list(db[PRODUCTS].aggregate(with_references(visible({"_id": {"$in": valid}}), {"_id": 1}, 50)))
    except PyMongoError:
        logger.exception("Database error while fetching products by id")
        raise HTTPException(500, "Database error while fetching products")
    return {"success": True, "count": len(products), "products": serialize_doc(products)}

@app.get("/api/products/{product_id}/variants")
def get_product_variants(product_id: str, db=Depends(get_db)):
    db = require_db(db)
    if not ObjectId.is_valid(product_id):
        raise HTTPException(400, "Invalid product ID")
    product = db[PRODUCTS].find_one({"_id": ObjectId(product_id)}, {"variants": 1})
    if not product:
        raise HTTPException(404, "Product not found")
    return {"success": True, "variants": serialize_doc(product.get("variants") or [])}

# ---------- Admin ----------

@app.get("/api/admin/products")
def admin_products(request: Request, db=Depends(get_db)):
    db = require_db(db)
    try:
        params = validate_admin_query(query_dict(request), settings.default_page_limit, settings.admin_max_page_limit)
    except FilterValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    builder = FilterBuilder(db, params, include_inactive=True)
    try:
        builder.apply_search().apply_filters()
        products = builder.find()
        total = builder.get_total_count()
        price_range = builder.get_price_range()
        available = builder.get_available_filters()
    except PyMongoError:
        logger.exception("Error in admin product listing")
        raise HTTPException(status_code=500, detail="Error fetching products")

    return {
        "success": True,
        "results": len(products),
        "totalProducts": total,
        "totalPages": math.ceil(total / params.limit),
        "currentPage": params.page,
        "products": serialize_doc(products),
        "filters": serialize_doc({"priceRange": price_range, **available}),
        "searchTerm": builder.search_term,
    }

@app.get("/api/admin/product/{product_id}")
def admin_get_product(product_id: str, db=Depends(get_db)):
    db = require_db(db)
    product = db[PRODUCTS].find_one({"_id": catalog.oid(product_id)})
    if not product:
        raise HTTPException(404, "Product not found")
    return {"success": True, "product": serialize_doc(product)}

@app.post("/api/admin/product/new", status_code=201)
def admin_create_product(body: ProductCreate, db=Depends(get_db)):
    product = catalog.create_product(require_db(db), body)
    return {"success": True, "message": "Product created successfully", "product": serialize_doc(product)}

@app.put("/api/admin/product/{product_id}")
def admin_update_product(product_id: str, body: ProductUpdate, db=Depends(get_db)):
    product = catalog.update_product(require_db(db), product_id, body)
    return {"success": True, "message": "Product updated successfully", "product": serialize_doc(product)}

@app.post("/api/admin/product/{product_id}/variant", status_code=201)
def admin_add_variant(product_id: str, body: Variant, db=Depends(get_db)):
    product = catalog.add_variant(require_db(db), product_id, body)
    return {
        "success": True,
        "message": "Variant added successfully",
        "variant": serialize_doc(product["variants"][-1]),
        "product": serialize_doc(product),
    }

@app.put("/api/admin/product/{product_id}/variant/{variant_id}")
def admin_update_variant(product_id: str, variant_id: str, body: VariantUpdate, db=Depends(get_db)):
    product = catalog.update_variant(require_db(db), product_id, variant_id, body)
    variant = next(v for v in product["variants"] if str(v["_id"]) == variant_id)
    return {"success": True, "message": "Variant updated successfully", "variant": serialize_doc(variant)}

@app.delete("/api/admin/product/{product_id}/variant/{variant_id}")
def admin_delete_variant(product_id: str, variant_id: str, db=Depends(get_db)):
    catalog.delete_variant(require_db(db), product_id, variant_id)
    return {"success": True, "message": "Variant deleted successfully"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
