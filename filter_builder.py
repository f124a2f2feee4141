"""
Aggregation pipeline builder for the unified product listing.

AdvancedFilterBuilder turns normalized FilterParams into three pipelines
run side by side against the product collection:

- main:     every filter, then sort, pagination and display joins
- count:    every filter, terminated by $count
- metadata: a $facet computing sidebar filter options

Facets cross-filter. Each reference dimension (brand, category, age range)
is left out of its own facet but applied to the others, so selecting a
brand still lists every brand available under the current category. The
price range filter never reaches the metadata pipeline, which keeps the
min/max slider bounds independent of the selected range.
"""
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List

from database import AGE_RANGES, BRANDS, CATEGORIES
from logger import get_logger
from pricing import IN_STOCK_MATCH, VISIBLE_MATCH, effective_price_stage, price_range_match
from query_params import DEFAULT_SORT, FilterParams
from reference_resolver import ReferenceResolver

logger = get_logger(__name__)

SORT_OPTIONS = {
    "newest": {"createdAt": -1},
    "oldest": {"createdAt": 1},
    "price-low": {"effectivePrice": 1},
    "price-high": {"effectivePrice": -1},
    "rating": {"averageRating": -1},
    "popular": {"totalReviews": -1, "averageRating": -1},
    "name-asc": {"name": 1},
    "name-desc": {"name": -1},
}

# Fields carried through the filtering stages
PRODUCT_FIELDS = (
    "_id", "name", "slug", "label", "definition", "description",
    "brand", "categories", "tags", "condition", "isActive", "status",
    "basePrice", "mrp", "taxRate", "stockQuantity", "hsn", "sku", "barcode",
    "images", "manufacturerImages", "variantConfiguration", "variants",
    "averageRating", "totalReviews", "specifications", "features",
    "dimensions", "weight", "warranty", "meta", "canonicalUrl",
    "linkedProducts", "createdAt", "updatedAt",
)

# Fields returned for product cards
CARD_FIELDS = (
    "name", "slug", "condition", "label", "basePrice", "mrp", "stockQuantity",
    "effectivePrice", "taxRate", "images", "manufacturerImages",
    "variantConfiguration", "variants", "description", "definition",
    "specifications", "features", "averageRating", "totalReviews", "tags",
    "createdAt",
)

BRAND = "brand"
CATEGORY = "category"
AGE_RANGE = "ageRange"


@dataclass
class Pagination:
    page: int = 1
    limit: int = 12
    skip: int = 0


@dataclass
class PipelineSet:
    main: List[dict] = field(default_factory=list)
    count: List[dict] = field(default_factory=list)
    metadata: List[dict] = field(default_factory=list)
    pagination: Pagination = field(default_factory=Pagination)


def sort_stage(sort_key: str) -> dict:
    order = dict(SORT_OPTIONS.get(sort_key) or SORT_OPTIONS[DEFAULT_SORT])
    order["_id"] = 1
    return {"$sort": order}


def search_match(term: str) -> dict:
    pattern = {"$regex": re.escape(term), "$options": "i"}
    return {
        "$match": {
            "$or": [
                {"name": pattern},
                {"description": pattern},
                {"tags": pattern},
                {"variants.name": pattern},
            ]
        }
    }


class AdvancedFilterBuilder:
    """Builds the main / count / metadata pipelines for one request."""

    def __init__(self, params: FilterParams, resolver: ReferenceResolver):
        self.params = params
        self.resolver = resolver
        self.main: List[dict] = []
        self.count: List[dict] = []
        self.metadata: List[dict] = []
        # Reference matches, held back from metadata and applied per facet
        self.dimension_matches: "OrderedDict[str, dict]" = OrderedDict()

    def _push_all(self, stage: dict) -> None:
        for pipeline in (self.main, self.count, self.metadata):
            pipeline.append(stage)

    def _push_results(self, stage: dict) -> None:
        self.main.append(stage)
        self.count.append(stage)

    def build(self) -> PipelineSet:
        self.main, self.count, self.metadata = [], [], []
        self.dimension_matches = OrderedDict()

        self._push_all({"$match": dict(VISIBLE_MATCH)})
        self._push_all({"$project": {name: 1 for name in PRODUCT_FIELDS}})

        self.apply_search()
        self.apply_brand_filter()
        self.apply_category_filter()
        self.apply_age_range_filter()
        self.apply_condition_filter()
        self.apply_rating_filter()
        self.apply_stock_filter()

        self._push_all(effective_price_stage())
        self.apply_price_filter()

        pagination = Pagination(page=self.params.page, limit=self.params.limit, skip=self.params.skip)
        self.main.append(sort_stage(self.params.sort))
        self.main.append({"$skip": pagination.skip})
        self.main.append({"$limit": pagination.limit})
        self.main.extend(self.display_stages())

        self.count.append({"$count": "totalCount"})
        self.metadata.append(self.facet_stage())

        logger.debug(
            f"Built listing pipelines: main={len(self.main)} count={len(self.count)} "
            f"metadata={len(self.metadata)} dimensions={list(self.dimension_matches)}"
        )
        return PipelineSet(main=self.main, count=self.count, metadata=self.metadata, pagination=pagination)

    # ---------- filters applied everywhere ----------

    def apply_search(self) -> None:
        if self.params.search:
            self._push_all(search_match(self.params.search))

    def apply_condition_filter(self) -> None:
        if self.params.conditions:
            self._push_all({"$match": {"condition": {"$in": list(self.params.conditions)}}})

    def apply_rating_filter(self) -> None:
        if self.params.min_rating:
            self._push_all({"$match": {"averageRating": {"$gte": self.params.min_rating}}})

    def apply_stock_filter(self) -> None:
        if self.params.in_stock:
            self._push_all({"$match": dict(IN_STOCK_MATCH)})

    # ---------- reference dimensions ----------

    def _apply_dimension(self, dimension: str, match: dict) -> None:
        stage = {"$match": match}
        self._push_results(stage)
        self.dimension_matches[dimension] = stage

    def apply_brand_filter(self) -> None:
        if not self.params.brands:
            return
        ids = self.resolver.brand_ids(self.params.brands)
        self._apply_dimension(BRAND, ReferenceResolver.membership_match("brand", ids))

    def apply_category_filter(self) -> None:
        if not self.params.categories:
            return
        ids = self.resolver.category_ids(self.params.categories)
        self._apply_dimension(CATEGORY, ReferenceResolver.membership_match("categories", ids))

    def apply_age_range_filter(self) -> None:
        if not self.params.age_ranges:
            return
        product_ids = self.resolver.age_range_product_ids(self.params.age_ranges)
        self._apply_dimension(AGE_RANGE, ReferenceResolver.membership_match("_id", product_ids))

    # ---------- price ----------

    def apply_price_filter(self) -> None:
        stage = price_range_match(self.params.min_price, self.params.max_price)
        if stage:
            self._push_results(stage)

    # ---------- main pipeline display ----------

    def display_stages(self) -> List[dict]:
        projection: Dict[str, int] = {name: 1 for name in CARD_FIELDS}
        projection.update({
            "brand._id": 1, "brand.name": 1, "brand.slug": 1, "brand.logo": 1,
            "categories._id": 1, "categories.name": 1, "categories.slug": 1,
        })
        return [
            {"$lookup": {"from": BRANDS, "localField": "brand", "foreignField": "_id", "as": "brandDetails"}},
            {"$lookup": {"from": CATEGORIES, "localField": "categories", "foreignField": "_id", "as": "categoryDetails"}},
            {"$addFields": {"brand": {"$arrayElemAt": ["$brandDetails", 0]}, "categories": "$categoryDetails"}},
            {"$project": projection},
        ]

    # ---------- metadata ----------

    def cross_filters(self, exclude: str = None) -> List[dict]:
        """Stored dimension matches, minus the excluded dimension."""
        return [stage for dimension, stage in self.dimension_matches.items() if dimension != exclude]

    def facet_stage(self) -> dict:
        return {
            "$facet": {
                "priceRange": self.cross_filters() + [
                    {"$match": {"effectivePrice": {"$gt": 0}}},
                    {"$group": {
                        "_id": None,
                        "minPrice": {"$min": "$effectivePrice"},
                        "maxPrice": {"$max": "$effectivePrice"},
                    }},
                ],
                "brands": self.cross_filters(exclude=BRAND) + [
                    {"$lookup": {"from": BRANDS, "localField": "brand", "foreignField": "_id", "as": "b"}},
                    {"$unwind": "$b"},
                    {"$group": {"_id": "$b.name", "count": {"$sum": 1}}},
                    {"$sort": {"_id": 1}},
                ],
                "categories": self.cross_filters(exclude=CATEGORY) + [
                    {"$lookup": {"from": CATEGORIES, "localField": "categories", "foreignField": "_id", "as": "c"}},
                    {"$unwind": "$c"},
                    {"$group": {"_id": "$c.name", "count": {"$sum": 1}}},
                    {"$sort": {"_id": 1}},
                ],
                "ageRanges": self.cross_filters(exclude=AGE_RANGE) + [
                    {"$lookup": {"from": AGE_RANGES, "localField": "_id", "foreignField": "products", "as": "a"}},
                    {"$unwind": "$a"},
                    {"$match": {"a.status": "active"}},
                    {"$group": {
                        "_id": "$a.slug",
                        "name": {"$first": "$a.name"},
                        "displayLabel": {"$first": "$a.displayLabel"},
                        "image": {"$first": "$a.image"},
                        "startAge": {"$first": "$a.startAge"},
                        "count": {"$sum": 1},
                    }},
                    {"$sort": {"startAge": 1, "_id": 1}},
                ],
                "conditions": self.cross_filters() + [
                    {"$match": {"condition": {"$ne": None}}},
                    {"$group": {"_id": "$condition", "count": {"$sum": 1}}},
                    {"$sort": {"_id": 1}},
                ],
                "inStockCount": self.cross_filters() + [
                    {"$match": dict(IN_STOCK_MATCH)},
                    {"$count": "count"},
                ],
            }
        }
