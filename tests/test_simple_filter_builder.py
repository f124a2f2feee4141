"""Tests for the find-style admin FilterBuilder."""

from bson import ObjectId
from pymongo.errors import OperationFailure

from database import BRANDS, PRODUCTS
from query_params import validate_admin_query
from reference_resolver import MATCH_NOTHING
from simple_filter_builder import PRICE, FilterBuilder, price_condition


def builder_for(fake_db, include_inactive=False, **query):
    params = validate_admin_query({k: [v] for k, v in query.items()})
    return FilterBuilder(fake_db, params, include_inactive=include_inactive)


class TestPriceCondition:
    def test_no_bounds(self):
        assert price_condition(None, None) is None

    def test_variant_aware(self):
        condition = price_condition(10, 20)
        flat, variant = condition["$or"]
        assert flat == {"variantConfiguration.hasVariants": {"$ne": True},
                        "basePrice": {"$gte": 10, "$lte": 20}}
        assert variant["variants"] == {"$elemMatch": {"isActive": True, "price": {"$gte": 10, "$lte": 20}}}


class TestFilterBuilder:
    def test_base_visibility(self, fake_db):
        assert builder_for(fake_db).get_filter() == {"isActive": True, "status": "Published"}
        assert builder_for(fake_db, include_inactive=True).get_filter() == {}

    def test_regex_search_when_text_probe_misses(self, fake_db):
        builder = builder_for(fake_db, include_inactive=True, search="a+b").apply_search()
        assert builder.search_term == "a+b"
        condition = builder.get_filter()
        assert {"name": {"$regex": r"a\+b", "$options": "i"}} in condition["$or"]

    def test_text_search_when_probe_hits(self, fake_db):
        fake_db[PRODUCTS].docs = [{"_id": ObjectId(), "name": "Widget"}]
        builder = builder_for(fake_db, include_inactive=True, search="widget").apply_search()
        assert builder.get_filter() == {"$text": {"$search": "widget"}}

    def test_missing_text_index(self, fake_db):
        def no_index(*args, **kwargs):
            raise OperationFailure("text index required for $text query")

        fake_db[PRODUCTS].find_one = no_index
        builder = builder_for(fake_db, include_inactive=True, search="widget").apply_search()
        assert "$or" in builder.get_filter()

    def test_unknown_brand_fails_closed(self, fake_db):
        builder = builder_for(fake_db, brand="Nope").apply_filters()
        assert MATCH_NOTHING in builder.get_filter()["$and"]

    def test_known_brand(self, fake_db):
        acme = ObjectId()
        fake_db[BRANDS].docs = [{"_id": acme, "name": "Acme", "slug": "acme"}]
        builder = builder_for(fake_db, brand="acme").apply_filters()
        assert {"brand": {"$in": [acme]}} in builder.get_filter()["$and"]

    def test_filters_and_exclusion(self, fake_db):
        builder = builder_for(
            fake_db, include_inactive=True,
            minPrice="10", maxPrice="20", inStock="true", rating="4", condition="used", status="Draft",
        ).apply_filters()
        conditions = builder.get_filter()["$and"]
        assert price_condition(10, 20) in conditions
        assert {"averageRating": {"$gte": 4}} in conditions
        assert {"condition": {"$in": ["Used"]}} in conditions
        assert {"status": "Draft"} in conditions
        assert price_condition(10, 20) not in builder.get_filter(exclude=(PRICE,))["$and"]

    def test_total_count_is_cached(self, fake_db):
        fake_db[PRODUCTS].docs = [{"_id": ObjectId()}, {"_id": ObjectId()}]
        builder = builder_for(fake_db, include_inactive=True)
        assert builder.get_total_count() == 2
        fake_db[PRODUCTS].docs = []
        assert builder.get_total_count() == 2

    def test_price_range_empty(self, fake_db):
        assert builder_for(fake_db).get_price_range() == {"min": 0, "max": 0}

    def test_find_pipeline(self, fake_db):
        builder = builder_for(fake_db, include_inactive=True, sort="stock-desc", page="2", limit="5")
        assert builder.find() == []
        pipeline = fake_db[PRODUCTS].pipelines[-1]
        assert pipeline[0] == {"$match": {}}
        assert pipeline[1] == {"$sort": {"stockQuantity": -1, "_id": 1}}
        assert pipeline[2] == {"$skip": 5}
        assert pipeline[3] == {"$limit": 5}
