"""
Unified product listing: normalize -> resolve -> build -> execute -> assemble.
"""
from typing import Any, Dict, Optional

from database import PRODUCTS
from filter_builder import AdvancedFilterBuilder
from logger import get_logger
from query_params import FilterParams
from reference_resolver import ReferenceResolver, name_or_slug_query
from results import ResultAssembler, empty_filters, pagination_summary

logger = get_logger(__name__)


def search_products(db, params: FilterParams) -> Dict[str, Any]:
    """Run the unified listing for already normalized params."""
    resolver = ReferenceResolver(db)
    pipelines = AdvancedFilterBuilder(params, resolver).build()
    logger.debug(f"Listing page={params.page} limit={params.limit} sort={params.sort}")
    return ResultAssembler(db[PRODUCTS]).assemble(pipelines, params.applied)


def empty_listing(limit: int = 12) -> Dict[str, Any]:
    """Listing payload for a request that cannot match anything."""
    return {
        "products": [],
        "pagination": pagination_summary(0, 1, limit),
        "filters": empty_filters(),
        "appliedFilters": {},
    }


def find_reference(db, collection: str, token: str) -> Optional[dict]:
    """Single brand/category lookup by slug or case-insensitive name."""
    return db[collection].find_one(name_or_slug_query([token]))
