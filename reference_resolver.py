"""
Resolve human-facing brand / category / age-range tokens to ObjectIds.

A token matches an entity when it equals the entity's slug (lowercased) or
its name (case-insensitive, anchored). Lookup failures resolve to an empty
list; callers turn an empty list into a match-nothing condition.
"""
import re
from collections import OrderedDict
from typing import Dict, List, Sequence, Tuple

from bson import ObjectId
from pymongo.errors import PyMongoError

from database import AGE_RANGES, BRANDS, CATEGORIES
from logger import get_logger

logger = get_logger(__name__)

# Pipeline match that no document satisfies
MATCH_NOTHING = {"_id": None}


def name_or_slug_query(tokens: Sequence[str]) -> dict:
    return {
        "$or": [
            {"slug": {"$in": [str(t).lower() for t in tokens]}},
            {"name": {"$in": [re.compile(f"^{re.escape(str(t))}$", re.IGNORECASE) for t in tokens]}},
        ]
    }


class ReferenceResolver:
    """
    Name/slug to id lookups against the reference collections.

    With memoize=True identical lookups within one resolver instance are
    answered from a small bounded cache. Instances are per request.
    """

    def __init__(self, db, memoize: bool = False, max_entries: int = 32):
        self.db = db
        self.memoize = memoize
        self.max_entries = max_entries
        self._cache: "OrderedDict[Tuple[str, Tuple[str, ...]], List[ObjectId]]" = OrderedDict()

    def _remember(self, key, value: List[ObjectId]) -> List[ObjectId]:
        if self.memoize:
            self._cache[key] = value
            while len(self._cache) > self.max_entries:
                self._cache.popitem(last=False)
        return value

    def _lookup(self, collection: str, query: dict, tokens: Sequence[str]) -> List[ObjectId]:
        key = (collection, tuple(tokens))
        if self.memoize and key in self._cache:
            return self._cache[key]

        try:
            docs = self.db[collection].find(query, {"_id": 1})
            ids = [doc["_id"] for doc in docs]
        except PyMongoError as e:
            logger.warning(f"Failed to resolve {collection} tokens {list(tokens)}: {e}")
            # not cached, a later lookup may succeed
            return []
        return self._remember(key, ids)

    def brand_ids(self, tokens: Sequence[str]) -> List[ObjectId]:
        if not tokens:
            return []
        return self._lookup(BRANDS, name_or_slug_query(tokens), tokens)

    def category_ids(self, tokens: Sequence[str]) -> List[ObjectId]:
        if not tokens:
            return []
        return self._lookup(CATEGORIES, name_or_slug_query(tokens), tokens)

    def age_range_product_ids(self, tokens: Sequence[str]) -> List[ObjectId]:
        """Union of member product ids over the active age ranges matching tokens."""
        if not tokens:
            return []

        key = ("agerange-products", tuple(tokens))
        if self.memoize and key in self._cache:
            return self._cache[key]

        query = dict(name_or_slug_query(tokens), status="active")
        try:
            docs = self.db[AGE_RANGES].find(query, {"products": 1})
            product_ids: List[ObjectId] = []
            seen = set()
            for doc in docs:
                for pid in doc.get("products") or []:
                    if pid not in seen:
                        seen.add(pid)
                        product_ids.append(pid)
        except PyMongoError as e:
            logger.warning(f"Failed to resolve age ranges {list(tokens)}: {e}")
            return []
        return self._remember(key, product_ids)

    @staticmethod
    def membership_match(field_name: str, ids: List[ObjectId]) -> dict:
        """Match for field-in-ids, or MATCH_NOTHING when ids is empty."""
        if not ids:
            return dict(MATCH_NOTHING)
        return {field_name: {"$in": list(ids)}}

    def cache_info(self) -> Dict[str, int]:
        return {"entries": len(self._cache), "max_entries": self.max_entries}
