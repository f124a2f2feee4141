"""
Query parameter normalization for product listings.

Listing endpoints accept several spellings of the same filter
(price[gte] / minPrice, brand / brands, category / categories, search /
keyword / q). normalize_listing_query folds them into one FilterParams.
Parsing is lenient: unparsable numbers are dropped rather than rejected.
validate_admin_query is the strict counterpart used by the admin listing.
"""
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from schemas import CONDITIONS

QueryValue = Union[str, Sequence[str], None]
QueryDict = Mapping[str, QueryValue]

DEFAULT_SORT = "newest"
SORT_KEYS = ("newest", "oldest", "price-low", "price-high", "rating", "popular", "name-asc", "name-desc")

SEARCH_KEYS = ("search", "keyword", "q")
BRAND_KEYS = ("brand", "brands")
CATEGORY_KEYS = ("category", "categories")
AGE_RANGE_KEYS = ("ageRange", "ageRanges")
MIN_PRICE_KEYS = ("price[gte]", "minPrice")
MAX_PRICE_KEYS = ("price[lte]", "maxPrice")
RATING_KEYS = ("rating", "rating[gte]")

TRUE_VALUES = ("true", "1", "yes")

# $skip is encoded as a BSON int64
MAX_SKIP = 2 ** 63 - 1


class FilterValidationError(ValueError):
    """Raised by strict validation; maps to HTTP 400."""


@dataclass
class FilterParams:
    search: Optional[str] = None
    brands: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    age_ranges: List[str] = field(default_factory=list)
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    conditions: List[str] = field(default_factory=list)
    min_rating: Optional[float] = None
    in_stock: bool = False
    sort: str = DEFAULT_SORT
    page: int = 1
    limit: int = 12
    status: Optional[str] = None
    applied: Dict[str, Any] = field(default_factory=dict)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


# ---------- Raw value helpers ----------

def _values(query: QueryDict, key: str) -> List[str]:
    raw = query.get(key)
    if raw is None:
        return []
    if isinstance(raw, str):
        return [raw]
    return [str(v) for v in raw if v is not None]


def first_value(query: QueryDict, *keys: str) -> Optional[str]:
    """First non-empty value among the given keys, in key order."""
    for key in keys:
        for value in _values(query, key):
            if value.strip() != "":
                return value
    return None


def split_tokens(values: Iterable[str]) -> List[str]:
    """Flatten repeated and comma separated values into distinct tokens."""
    tokens: List[str] = []
    for value in values:
        for part in str(value).split(","):
            part = part.strip()
            if part and part not in tokens:
                tokens.append(part)
    return tokens


def tokens_for(query: QueryDict, *keys: str) -> List[str]:
    # The first alias present wins, so brand=A&brands=B means A
    for key in keys:
        tokens = split_tokens(_values(query, key))
        if tokens:
            return tokens
    return []


def parse_number(raw: Optional[str]) -> Optional[float]:
    """Lenient float parse: None for missing, malformed or non-finite input."""
    if raw is None:
        return None
    try:
        value = float(str(raw).strip())
    except ValueError:
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def parse_int(raw: Optional[str]) -> Optional[int]:
    value = parse_number(raw)
    if value is None:
        return None
    return int(value)


def normalize_conditions(values: Iterable[str]) -> List[str]:
    """Case-normalize condition tokens, dropping unknown ones."""
    normalized = []
    for token in split_tokens(values):
        candidate = token[:1].upper() + token[1:].lower()
        if candidate in CONDITIONS and candidate not in normalized:
            normalized.append(candidate)
    return normalized


def clamp_pagination(page: Optional[int], limit: Optional[int], default_limit: int, max_limit: int):
    page = page if page and page > 0 else 1
    limit = limit if limit else default_limit
    limit = max(1, min(max_limit, limit))
    page = min(page, MAX_SKIP // limit + 1)
    return page, limit


# ---------- Unified listing ----------

def normalize_listing_query(query: QueryDict, default_limit: int = 12, max_limit: int = 50) -> FilterParams:
    """Fold a raw query mapping into FilterParams for the unified listing."""
    search = first_value(query, *SEARCH_KEYS)
    search = search.strip() if search else None

    sort = first_value(query, "sort") or DEFAULT_SORT
    if sort not in SORT_KEYS:
        sort = DEFAULT_SORT

    rating = parse_number(first_value(query, *RATING_KEYS))
    if rating is not None and rating <= 0:
        rating = None

    in_stock_raw = first_value(query, "inStock")
    page, limit = clamp_pagination(
        parse_int(first_value(query, "page")),
        parse_int(first_value(query, "limit")),
        default_limit,
        max_limit,
    )

    params = FilterParams(
        search=search or None,
        brands=tokens_for(query, *BRAND_KEYS),
        categories=tokens_for(query, *CATEGORY_KEYS),
        age_ranges=tokens_for(query, *AGE_RANGE_KEYS),
        min_price=parse_number(first_value(query, *MIN_PRICE_KEYS)),
        max_price=parse_number(first_value(query, *MAX_PRICE_KEYS)),
        conditions=normalize_conditions(_values(query, "condition")),
        min_rating=rating,
        in_stock=bool(in_stock_raw) and in_stock_raw.strip().lower() in TRUE_VALUES,
        sort=sort,
        page=page,
        limit=limit,
    )
    params.applied = {
        "search": search or None,
        "brand": first_value(query, *BRAND_KEYS),
        "category": first_value(query, *CATEGORY_KEYS),
        "ageRange": first_value(query, *AGE_RANGE_KEYS),
        "minPrice": first_value(query, *MIN_PRICE_KEYS),
        "maxPrice": first_value(query, *MAX_PRICE_KEYS),
        "rating": first_value(query, *RATING_KEYS),
        "condition": first_value(query, "condition"),
        "inStock": in_stock_raw,
        "sort": first_value(query, "sort"),
    }
    return params


# ---------- Strict (admin) listing ----------

ADMIN_SORT_KEYS = SORT_KEYS + ("stock-asc", "stock-desc")
ADMIN_STATUSES = ("Draft", "Published", "OutOfStock", "Archived", "Discontinued")


def _strict_number(query: QueryDict, keys: Sequence[str], label: str) -> Optional[float]:
    raw = first_value(query, *keys)
    if raw is None:
        return None
    value = parse_number(raw)
    if value is None:
        raise FilterValidationError(f"{label} must be a number")
    if value < 0:
        raise FilterValidationError(f"{label} cannot be negative")
    return value


def _strict_positive_int(query: QueryDict, key: str, upper: Optional[int] = None) -> Optional[int]:
    raw = first_value(query, key)
    if raw is None:
        return None
    try:
        value = int(raw.strip())
    except ValueError:
        raise FilterValidationError(f"{key} must be a positive integer")
    if value < 1:
        raise FilterValidationError(f"{key} must be a positive integer")
    if upper is not None and value > upper:
        raise FilterValidationError(f"{key} cannot exceed {upper}")
    return value


def validate_admin_query(query: QueryDict, default_limit: int = 12, max_limit: int = 100) -> FilterParams:
    """Strict normalization: malformed input raises FilterValidationError."""
    min_price = _strict_number(query, MIN_PRICE_KEYS, "minPrice")
    max_price = _strict_number(query, MAX_PRICE_KEYS, "maxPrice")
    if min_price is not None and max_price is not None and min_price > max_price:
        raise FilterValidationError("minPrice cannot be greater than maxPrice")

    rating = _strict_number(query, RATING_KEYS, "rating")
    if rating is not None and rating > 5:
        raise FilterValidationError("rating must be between 0 and 5")

    condition_tokens = split_tokens(_values(query, "condition"))
    conditions = normalize_conditions(condition_tokens)
    if len(conditions) != len(condition_tokens):
        raise FilterValidationError(f"condition must be one of: {', '.join(CONDITIONS)}")

    status = first_value(query, "status")
    if status is not None and status not in ADMIN_STATUSES:
        raise FilterValidationError(f"status must be one of: {', '.join(ADMIN_STATUSES)}")

    sort = first_value(query, "sort") or DEFAULT_SORT
    if sort not in ADMIN_SORT_KEYS:
        raise FilterValidationError(f"sort must be one of: {', '.join(ADMIN_SORT_KEYS)}")

    page = _strict_positive_int(query, "page") or 1
    limit = _strict_positive_int(query, "limit", upper=max_limit) or default_limit
    if (page - 1) * limit > MAX_SKIP:
        raise FilterValidationError("page is out of range")

    search = first_value(query, *SEARCH_KEYS)
    in_stock_raw = first_value(query, "inStock")
    return FilterParams(
        search=search.strip() if search else None,
        brands=tokens_for(query, *BRAND_KEYS),
        categories=tokens_for(query, *CATEGORY_KEYS),
        min_price=min_price,
        max_price=max_price,
        conditions=conditions,
        min_rating=rating or None,
        in_stock=bool(in_stock_raw) and in_stock_raw.strip().lower() in TRUE_VALUES,
        sort=sort,
        page=page,
        limit=limit,
        status=status,
    )
