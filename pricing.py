"""
Effective price stage and shared product predicates.

effectivePrice is the single comparable number used for price filtering,
price sorting and the price facet:
- variant products with at least one active, priced, in-stock variant use
  the lowest such variant price;
- everything else uses basePrice when positive, otherwise 0.
"""

VISIBLE_MATCH = {"isActive": True, "status": "Published"}

IN_STOCK_MATCH = {
    "$or": [
        {"stockQuantity": {"$gt": 0}},
        {"variants": {"$elemMatch": {"isActive": True, "stockQuantity": {"$gt": 0}}}},
    ]
}


def qualifying_variants_expression(source: str = "$variants") -> dict:
    return {
        "$filter": {
            "input": {"$ifNull": [source, []]},
            "as": "v",
            "cond": {
                "$and": [
                    {"$eq": ["$$v.isActive", True]},
                    {"$gt": ["$$v.price", 0]},
                    {"$gt": ["$$v.stockQuantity", 0]},
                ]
            },
        }
    }


def effective_price_expression() -> dict:
    return {
        "$let": {
            "vars": {"validVariants": qualifying_variants_expression()},
            "in": {
                "$cond": {
                    "if": {
                        "$and": [
                            {"$eq": ["$variantConfiguration.hasVariants", True]},
                            {"$gt": [{"$size": "$$validVariants"}, 0]},
                        ]
                    },
                    "then": {"$min": "$$validVariants.price"},
                    "else": {
                        "$cond": {
                            "if": {"$gt": ["$basePrice", 0]},
                            "then": "$basePrice",
                            "else": 0,
                        }
                    },
                }
            },
        }
    }


def effective_price_stage() -> dict:
    return {"$addFields": {"effectivePrice": effective_price_expression()}}


def price_range_match(min_price=None, max_price=None):
    """$match on effectivePrice, or None when neither bound is set."""
    bounds = {}
    if min_price is not None:
        bounds["$gte"] = min_price
    if max_price is not None:
        bounds["$lte"] = max_price
    if not bounds:
        return None
    return {"$match": {"effectivePrice": bounds}}
