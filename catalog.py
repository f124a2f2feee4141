"""
Product write path.

Turns validated Product models into stored documents: reference ids,
unique slugs, variant ids/slugs/SKUs, linked product cleanup and the
fields derived from variants (total stock, base price, mrp). The mrp >=
price invariant is enforced by the schemas and again after derivation;
a low mrp is raised, never rejected.
"""
import re
import secrets
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pydantic import ValidationError

from database import BRANDS, CATEGORIES, PRODUCTS, utc_now
from logger import get_logger
from results import serialize_doc
from schemas import MANUAL_STATUSES, Category, Product, ProductCreate, ProductUpdate, Variant, VariantUpdate

logger = get_logger(__name__)


def oid(id_str: Any) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="Invalid id")


def slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", (text or "").lower()).strip("-")


def unique_slug(collection, base: str, exclude_id: Optional[ObjectId] = None) -> str:
    """base, base-1, base-2, ... whichever is free in the collection."""
    if not base:
        base = f"product-sku-{secrets.token_hex(3)}"
    slug = base
    count = 0
    while True:
        query: Dict[str, Any] = {"slug": slug}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        if collection.find_one(query, {"_id": 1}) is None:
            return slug
        count += 1
        slug = f"{base}-{count}"


def _variant_sku() -> str:
    return f"VAR-{secrets.token_hex(3).upper()}-{secrets.randbelow(1000):03d}"


def prepare_variants(product_slug: str, variants: List[dict]) -> List[dict]:
    """Assign ids, slugs unique within the product, SKUs and mrp defaults."""
    used = {v["slug"] for v in variants if v.get("slug")}
    prepared = []
    for variant in variants:
        variant = dict(variant)
        variant["_id"] = oid(variant["_id"]) if variant.get("_id") else ObjectId()
        if not variant.get("slug"):
            slug = f"{product_slug}-{slugify(variant.get('name', ''))}".rstrip("-")
            if slug in used:
                slug = f"{slug}-{secrets.token_hex(2)}"
            variant["slug"] = slug
            used.add(slug)
        if not variant.get("sku"):
            variant["sku"] = _variant_sku()
        if variant.get("mrp") is None or variant["mrp"] < variant["price"]:
            variant["mrp"] = variant["price"]
        prepared.append(variant)
    return prepared


def derive_fields(doc: dict) -> dict:
    """Derive stock, pricing and status from variants; enforce mrp >= basePrice."""
    variants = doc.get("variants") or []
    has_variants = bool((doc.get("variantConfiguration") or {}).get("hasVariants")) and bool(variants)

    if has_variants:
        doc["stockQuantity"] = sum(v.get("stockQuantity") or 0 for v in variants)
        source = [v for v in variants if v.get("isActive")] or variants
        doc["basePrice"] = min(v["price"] for v in source)
        doc["mrp"] = max(v.get("mrp") or v["price"] for v in source)

    if doc.get("basePrice") is not None and (doc.get("mrp") is None or doc["mrp"] < doc["basePrice"]):
        doc["mrp"] = doc["basePrice"]

    if doc.get("status") not in MANUAL_STATUSES:
        doc["status"] = "OutOfStock" if (doc.get("stockQuantity") or 0) <= 0 else "Published"
    return doc


def _check_references(db, brand_id: ObjectId, category_ids: List[ObjectId]) -> None:
    if db[BRANDS].find_one({"_id": brand_id}, {"_id": 1}) is None:
        raise HTTPException(status_code=400, detail="Brand not found")
    found = db[CATEGORIES].count_documents({"_id": {"$in": category_ids}})
    if found != len(set(category_ids)):
        raise HTTPException(status_code=400, detail="One or more categories not found")


def clean_linked_products(db, ids: List[str], product_id: Optional[ObjectId]) -> List[ObjectId]:
    """Deduplicate, drop self references and ids with no matching product."""
    wanted: List[ObjectId] = []
    for raw in ids:
        linked = oid(raw)
        if linked != product_id and linked not in wanted:
            wanted.append(linked)
    if not wanted:
        return []
    existing = {d["_id"] for d in db[PRODUCTS].find({"_id": {"$in": wanted}}, {"_id": 1})}
    return [pid for pid in wanted if pid in existing]


def to_document(db, product: Product, product_id: Optional[ObjectId] = None) -> dict:
    doc = product.model_dump(by_alias=True)
    doc["brand"] = oid(doc["brand"])
    doc["categories"] = [oid(c) for c in doc["categories"]]
    _check_references(db, doc["brand"], doc["categories"])

    products = db[PRODUCTS]
    if not doc.get("slug"):
        doc["slug"] = unique_slug(products, slugify(doc["name"]), exclude_id=product_id)
    else:
        doc["slug"] = unique_slug(products, slugify(doc["slug"]), exclude_id=product_id)

    doc["variants"] = prepare_variants(doc["slug"], doc.get("variants") or [])
    doc["linkedProducts"] = clean_linked_products(db, doc.get("linkedProducts") or [], product_id)
    return derive_fields(doc)


def category_document(category: Category) -> dict:
    """Stored form of a category; the parent is kept as an ObjectId."""
    doc = category.model_dump()
    if doc.get("parentCategory"):
        doc["parentCategory"] = oid(doc["parentCategory"])
    return doc


def _validate_product(data: dict) -> Product:
    try:
        return Product.model_validate(data)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors(include_url=False, include_context=False))


def _load(db, product_id: ObjectId) -> dict:
    existing = db[PRODUCTS].find_one({"_id": product_id})
    if not existing:
        raise HTTPException(status_code=404, detail="Product not found")
    return existing


def _save(db, product_id: ObjectId, existing: dict, product: Product) -> dict:
    doc = to_document(db, product, product_id=product_id)
    doc["_id"] = product_id
    doc["createdAt"] = existing.get("createdAt") or utc_now()
    doc["updatedAt"] = utc_now()
    db[PRODUCTS].replace_one({"_id": product_id}, doc)
    return doc


# ---------- Operations ----------

def create_product(db, payload: ProductCreate) -> dict:
    doc = to_document(db, payload)
    now = utc_now()
    doc["createdAt"] = now
    doc["updatedAt"] = now
    result = db[PRODUCTS].insert_one(doc)
    doc["_id"] = result.inserted_id
    logger.info(f"Created product {doc['slug']} ({result.inserted_id})")
    return doc


def update_product(db, product_id: str, payload: ProductUpdate) -> dict:
    pid = oid(product_id)
    existing = _load(db, pid)
    merged = serialize_doc(existing)
    merged.update(payload.model_dump(exclude_unset=True))
    return _save(db, pid, existing, _validate_product(merged))


def add_variant(db, product_id: str, payload: Variant) -> dict:
    pid = oid(product_id)
    existing = _load(db, pid)
    merged = serialize_doc(existing)
    variant = payload.model_dump(by_alias=True)
    variant["_id"] = None
    merged["variants"] = list(merged.get("variants") or []) + [variant]
    config = dict(merged.get("variantConfiguration") or {})
    config["hasVariants"] = True
    merged["variantConfiguration"] = config
    return _save(db, pid, existing, _validate_product(merged))


def _find_variant(variants: List[dict], variant_id: str) -> int:
    for index, variant in enumerate(variants):
        if str(variant.get("_id")) == variant_id:
            return index
    raise HTTPException(status_code=404, detail="Variant not found")


def update_variant(db, product_id: str, variant_id: str, payload: VariantUpdate) -> dict:
    pid = oid(product_id)
    existing = _load(db, pid)
    merged = serialize_doc(existing)
    variants = list(merged.get("variants") or [])
    index = _find_variant(variants, variant_id)

    current = dict(variants[index])
    current.update(payload.model_dump(exclude_unset=True))
    variants[index] = current
    merged["variants"] = variants
    return _save(db, pid, existing, _validate_product(merged))


def delete_variant(db, product_id: str, variant_id: str) -> dict:
    pid = oid(product_id)
    existing = _load(db, pid)
    merged = serialize_doc(existing)
    variants = list(merged.get("variants") or [])
    index = _find_variant(variants, variant_id)
    variants.pop(index)
    merged["variants"] = variants
    return _save(db, pid, existing, _validate_product(merged))
