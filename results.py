"""
Execute listing pipelines and shape the response payload.

The three pipelines are independent reads, so they are fanned out on a
small thread pool and joined. Errors from any of them propagate to the
caller unchanged.
"""
import math
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId

from filter_builder import Pagination, PipelineSet


def serialize_doc(value: Any) -> Any:
    """Recursively convert ObjectIds and datetimes into JSON friendly values."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: serialize_doc(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_doc(v) for v in value]
    return value


def empty_filters() -> Dict[str, Any]:
    return {
        "minPrice": 0,
        "maxPrice": 0,
        "availableBrands": [],
        "availableCategories": [],
        "availableAgeRanges": [],
        "conditions": [],
        "inStockCount": 0,
    }


def pagination_summary(total: int, page: int, limit: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "currentPage": page,
        "totalPages": total_pages,
        "totalProducts": total,
        "hasNextPage": page < total_pages,
        "hasPrevPage": page > 1,
        "limit": limit,
    }


def _first(items: Optional[List[dict]]) -> dict:
    if items:
        return items[0] or {}
    return {}


class ResultAssembler:
    """Runs a PipelineSet against the product collection and merges the results."""

    def __init__(self, collection, max_workers: int = 3):
        self.collection = collection
        self.max_workers = max_workers

    def _aggregate(self, pipeline: List[dict]) -> List[dict]:
        return list(self.collection.aggregate(pipeline))

    def execute(self, pipelines: PipelineSet) -> Tuple[List[dict], List[dict], List[dict]]:
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            main = pool.submit(self._aggregate, pipelines.main)
            count = pool.submit(self._aggregate, pipelines.count)
            metadata = pool.submit(self._aggregate, pipelines.metadata)
            return main.result(), count.result(), metadata.result()

    @staticmethod
    def total_count(count_result: List[dict]) -> int:
        return int(_first(count_result).get("totalCount") or 0)

    @staticmethod
    def flatten_metadata(metadata_result: List[dict]) -> Dict[str, Any]:
        """Flatten the $facet document; missing facets read as empty."""
        data = _first(metadata_result)
        if not data:
            return empty_filters()

        price = _first(data.get("priceRange"))
        age_ranges = [
            {
                "slug": a.get("_id"),
                "name": a.get("name"),
                "displayLabel": a.get("displayLabel"),
                "image": a.get("image"),
                "count": a.get("count", 0),
            }
            for a in data.get("ageRanges") or []
        ]
        return {
            "minPrice": price.get("minPrice") or 0,
            "maxPrice": price.get("maxPrice") or 0,
            "availableBrands": [b["_id"] for b in data.get("brands") or [] if b.get("_id") is not None],
            "availableCategories": [c["_id"] for c in data.get("categories") or [] if c.get("_id") is not None],
            "availableAgeRanges": age_ranges,
            "conditions": [c["_id"] for c in data.get("conditions") or [] if c.get("_id") is not None],
            "inStockCount": _first(data.get("inStockCount")).get("count") or 0,
        }

    def assemble(self, pipelines: PipelineSet, applied_filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        products, count_result, metadata_result = self.execute(pipelines)
        return self.shape(products, count_result, metadata_result, pipelines.pagination, applied_filters)

    def shape(self, products: List[dict], count_result: List[dict], metadata_result: List[dict],
              pagination: Pagination, applied_filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        total = self.total_count(count_result)
        return {
            "products": [serialize_doc(p) for p in products],
            "pagination": pagination_summary(total, pagination.page, pagination.limit),
            "filters": serialize_doc(self.flatten_metadata(metadata_result)),
            "appliedFilters": applied_filters or {},
        }
