"""
Find-style product filter used by the admin listing.

Unlike AdvancedFilterBuilder this builds a single query document (an $and
of tagged conditions) instead of aggregation pipelines. Price filtering is
expressed directly against basePrice / variant prices, and the price range
and filter options are computed from the current filter with the price
condition removed. Reference lookups are memoized for the lifetime of the
builder so the listing, price range and option queries resolve each name
once.
"""
import math
import re
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from pymongo.errors import OperationFailure

from database import BRANDS, CATEGORIES, PRODUCTS
from logger import get_logger
from pricing import IN_STOCK_MATCH, VISIBLE_MATCH
from query_params import FilterParams
from reference_resolver import ReferenceResolver

logger = get_logger(__name__)

SEARCH = "search"
PRICE = "price"

ADMIN_SORT_OPTIONS = {
    "newest": {"createdAt": -1},
    "oldest": {"createdAt": 1},
    "price-low": {"basePrice": 1},
    "price-high": {"basePrice": -1},
    "rating": {"averageRating": -1},
    "popular": {"totalReviews": -1, "averageRating": -1},
    "name-asc": {"name": 1},
    "name-desc": {"name": -1},
    "stock-asc": {"stockQuantity": 1},
    "stock-desc": {"stockQuantity": -1},
}


def price_condition(min_price: Optional[float], max_price: Optional[float]) -> Optional[dict]:
    """Match flat products on basePrice and variant products on any active variant price."""
    if min_price is None and max_price is None:
        return None
    bounds = {}
    if min_price is not None:
        bounds["$gte"] = min_price
    if max_price is not None:
        bounds["$lte"] = max_price
    return {
        "$or": [
            {"variantConfiguration.hasVariants": {"$ne": True}, "basePrice": dict(bounds)},
            {
                "variantConfiguration.hasVariants": True,
                "variants": {"$elemMatch": {"isActive": True, "price": dict(bounds)}},
            },
        ]
    }


class FilterBuilder:
    def __init__(self, db, params: FilterParams, include_inactive: bool = False):
        self.db = db
        self.products = db[PRODUCTS]
        self.params = params
        self.resolver = ReferenceResolver(db, memoize=True)
        self.search_term: Optional[str] = None
        self._cache: Dict[str, Any] = {}
        self._conditions: List[Tuple[str, dict]] = []
        if not include_inactive:
            self._conditions.append(("base", dict(VISIBLE_MATCH)))

    def cached_operation(self, key: str, operation: Callable[[], Any]) -> Any:
        if key not in self._cache:
            self._cache[key] = operation()
        return self._cache[key]

    def add_condition(self, role: str, condition: dict) -> "FilterBuilder":
        self._conditions.append((role, condition))
        return self

    # ---------- search ----------

    def _text_search_hits(self, term: str) -> bool:
        query = self.get_filter(extra=[{"$text": {"$search": term}}])
        try:
            return self.products.find_one(query, {"_id": 1}) is not None
        except OperationFailure:
            # no text index on the collection
            return False

    def apply_search(self) -> "FilterBuilder":
        term = (self.params.search or "").strip()
        if not term:
            return self

        self.search_term = term
        if self.cached_operation(f"textSearch:{term}", lambda: self._text_search_hits(term)):
            return self.add_condition(SEARCH, {"$text": {"$search": term}})

        pattern = {"$regex": re.escape(term), "$options": "i"}
        return self.add_condition(SEARCH, {
            "$or": [
                {"name": pattern},
                {"tags": pattern},
                {"sku": pattern},
                {"variants.name": pattern},
                {"variants.sku": pattern},
            ]
        })

    # ---------- filters ----------

    def apply_filters(self) -> "FilterBuilder":
        params = self.params

        if params.categories:
            ids = self.resolver.category_ids(params.categories)
            self.add_condition("category", ReferenceResolver.membership_match("categories", ids))

        if params.brands:
            ids = self.resolver.brand_ids(params.brands)
            self.add_condition("brand", ReferenceResolver.membership_match("brand", ids))

        condition = price_condition(params.min_price, params.max_price)
        if condition:
            self.add_condition(PRICE, condition)

        if params.in_stock:
            self.add_condition("stock", dict(IN_STOCK_MATCH))

        if params.min_rating:
            self.add_condition("rating", {"averageRating": {"$gte": params.min_rating}})

        if params.conditions:
            self.add_condition("condition", {"condition": {"$in": list(params.conditions)}})

        if params.status:
            self.add_condition("status", {"status": params.status})

        return self

    def get_filter(self, exclude: Sequence[str] = (), extra: Sequence[dict] = ()) -> dict:
        conditions = [c for role, c in self._conditions if role not in exclude]
        conditions.extend(extra)
        if not conditions:
            return {}
        if len(conditions) == 1:
            return conditions[0]
        return {"$and": conditions}

    # ---------- queries ----------

    def get_total_count(self) -> int:
        query = self.get_filter()
        return self.cached_operation(f"count:{query!r}", lambda: self.products.count_documents(query))

    def get_price_range(self) -> Dict[str, int]:
        """Price bounds under the current filter, ignoring the price condition."""
        pipeline = [
            {"$match": self.get_filter(exclude=(PRICE,))},
            {"$project": {
                "prices": {
                    "$cond": {
                        "if": {"$eq": ["$variantConfiguration.hasVariants", True]},
                        "then": {
                            "$map": {
                                "input": {
                                    "$filter": {
                                        "input": {"$ifNull": ["$variants", []]},
                                        "as": "variant",
                                        "cond": {"$and": [
                                            {"$eq": ["$$variant.isActive", True]},
                                            {"$gt": ["$$variant.price", 0]},
                                        ]},
                                    }
                                },
                                "as": "variant",
                                "in": "$$variant.price",
                            }
                        },
                        "else": ["$basePrice"],
                    }
                }
            }},
            {"$unwind": "$prices"},
            {"$group": {"_id": None, "minPrice": {"$min": "$prices"}, "maxPrice": {"$max": "$prices"}}},
        ]
        stats = list(self.products.aggregate(pipeline))
        if not stats:
            return {"min": 0, "max": 0}
        return {
            "min": math.floor(stats[0].get("minPrice") or 0),
            "max": math.ceil(stats[0].get("maxPrice") or 0),
        }

    def get_available_filters(self) -> Dict[str, List[dict]]:
        """Brand, category and condition options, ignoring price and search."""
        base = self.get_filter(exclude=(PRICE, SEARCH))

        brands = self.products.aggregate([
            {"$match": base},
            {"$group": {"_id": "$brand", "count": {"$sum": 1}}},
            {"$lookup": {"from": BRANDS, "localField": "_id", "foreignField": "_id", "as": "brandData"}},
            {"$unwind": "$brandData"},
            {"$project": {"_id": "$brandData._id", "name": "$brandData.name",
                          "slug": "$brandData.slug", "count": "$count"}},
            {"$sort": {"name": 1}},
        ])
        categories = self.products.aggregate([
            {"$match": base},
            {"$unwind": "$categories"},
            {"$group": {"_id": "$categories", "count": {"$sum": 1}}},
            {"$lookup": {"from": CATEGORIES, "localField": "_id", "foreignField": "_id", "as": "categoryData"}},
            {"$unwind": "$categoryData"},
            {"$project": {"_id": "$categoryData._id", "name": "$categoryData.name",
                          "slug": "$categoryData.slug", "count": "$count"}},
            {"$sort": {"name": 1}},
        ])
        conditions = self.products.aggregate([
            {"$match": base},
            {"$match": {"condition": {"$ne": None}}},
            {"$group": {"_id": "$condition", "count": {"$sum": 1}}},
            {"$project": {"_id": 0, "value": "$_id", "label": "$_id", "count": 1}},
            {"$sort": {"value": 1}},
        ])
        return {
            "brands": list(brands),
            "categories": list(categories),
            "conditions": list(conditions),
        }

    def find(self) -> List[dict]:
        sort = dict(ADMIN_SORT_OPTIONS.get(self.params.sort) or ADMIN_SORT_OPTIONS["newest"])
        sort["_id"] = 1
        pipeline = [
            {"$match": self.get_filter()},
            {"$sort": sort},
            {"$skip": self.params.skip},
            {"$limit": self.params.limit},
            {"$lookup": {"from": BRANDS, "localField": "brand", "foreignField": "_id", "as": "brandDetails"}},
            {"$lookup": {"from": CATEGORIES, "localField": "categories", "foreignField": "_id", "as": "categoryDetails"}},
            {"$addFields": {
                "brand": {"$arrayElemAt": ["$brandDetails", 0]},
                "categories": "$categoryDetails",
            }},
            {"$project": {"brandDetails": 0, "categoryDetails": 0, "notes": 0}},
        ]
        logger.debug(f"Admin listing filter: {self.get_filter()!r}")
        return list(self.products.aggregate(pipeline))
