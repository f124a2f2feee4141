"""
Admin listing behaviour that needs a live MongoDB server ($text search).

Skipped automatically when MONGO_TEST_URL is not reachable (see conftest).
The seeded catalog is described in conftest.seed_catalog.
"""

from query_params import validate_admin_query
from simple_filter_builder import FilterBuilder


class TestAdminFilterBuilder:
    def test_text_search_and_price_range(self, live_catalog_db):
        params = validate_admin_query({"search": ["widget"], "minPrice": ["80"]})
        builder = FilterBuilder(live_catalog_db, params, include_inactive=True).apply_search().apply_filters()
        assert builder.get_filter()["$and"][0] == {"$text": {"$search": "widget"}}
        assert [p["name"] for p in builder.find()] == ["Acme Widget"]
        assert builder.get_total_count() == 1
        assert builder.get_price_range() == {"min": 50, "max": 100}
        brands = [b["name"] for b in builder.get_available_filters()["brands"]]
        assert brands == ["Acme", "Zed"]
