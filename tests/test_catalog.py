"""Tests for product schemas and the catalog write path."""

import pytest
from bson import ObjectId
from fastapi import HTTPException
from pydantic import ValidationError

import catalog
from database import BRANDS, CATEGORIES, PRODUCTS
from schemas import AgeRange, Category, Product, ProductCreate, ProductUpdate, Variant, VariantUpdate

THUMBNAIL = {"url": "https://example.com/p.jpg", "altText": "p"}


class TestSchemas:
    def test_variant_mrp_raised_to_price(self):
        assert Variant(name="Red", price=50, mrp=40).mrp == 50
        assert Variant(name="Red", price=50).mrp == 50
        assert Variant(name="Red", price=50, mrp=65).mrp == 65

    def test_product_mrp_raised_to_base_price(self):
        product = Product(name="Lamp", brand="b", categories=["c"], basePrice=100, mrp=80)
        assert product.mrp == 100

    def test_base_price_required_without_variants(self):
        with pytest.raises(ValidationError):
            Product(name="Lamp", brand="b", categories=["c"])

    def test_categories_required(self):
        with pytest.raises(ValidationError):
            Product(name="Lamp", brand="b", categories=[], basePrice=1)

    def test_create_requires_thumbnail(self):
        with pytest.raises(ValidationError):
            ProductCreate(name="Lamp", brand="b", categories=["c"], basePrice=1)

    def test_tags_lowercased(self):
        product = Product(name="Lamp", brand="b", categories=["c"], basePrice=1, tags=[" Desk ", "", "LED"])
        assert product.tags == ["desk", "led"]

    def test_age_range_bounds(self):
        kids = AgeRange(name="Kids", slug="Kids", startAge=3, endAge=12)
        assert kids.displayLabel == "3-12 years"
        assert kids.slug == "kids"
        with pytest.raises(ValidationError):
            AgeRange(name="Bad", slug="bad", startAge=5, endAge=5)


class TestDeriveFields:
    def test_flat_product(self):
        doc = catalog.derive_fields({"basePrice": 100, "mrp": 80, "stockQuantity": 3})
        assert doc["mrp"] == 100
        assert doc["status"] == "Published"

    def test_out_of_stock(self):
        doc = catalog.derive_fields({"basePrice": 100, "stockQuantity": 0, "status": "Published"})
        assert doc["status"] == "OutOfStock"

    def test_manual_status_kept(self):
        doc = catalog.derive_fields({"basePrice": 100, "stockQuantity": 0, "status": "Draft"})
        assert doc["status"] == "Draft"

    def test_variant_product(self):
        doc = catalog.derive_fields({
            "variantConfiguration": {"hasVariants": True},
            "variants": [
                {"price": 50, "mrp": 65, "stockQuantity": 5, "isActive": True},
                {"price": 30, "mrp": 30, "stockQuantity": 2, "isActive": False},
                {"price": 70, "mrp": 90, "stockQuantity": 0, "isActive": True},
            ],
        })
        assert doc["stockQuantity"] == 7
        assert doc["basePrice"] == 50
        assert doc["mrp"] == 90
        assert doc["status"] == "Published"


class TestPrepareVariants:
    def test_ids_slugs_and_skus(self):
        existing = ObjectId()
        variants = catalog.prepare_variants("lamp", [
            {"_id": str(existing), "name": "Red", "price": 10, "mrp": 5},
            {"name": "Blue", "price": 10, "sku": "BLUE-1"},
            {"name": "Red", "price": 12, "mrp": 15},
        ])
        assert variants[0]["_id"] == existing
        assert isinstance(variants[1]["_id"], ObjectId)
        assert variants[0]["slug"] == "lamp-red"
        assert variants[1]["slug"] == "lamp-blue"
        assert variants[2]["slug"].startswith("lamp-red-")
        assert variants[1]["sku"] == "BLUE-1"
        assert variants[0]["sku"].startswith("VAR-")
        assert variants[0]["mrp"] == 10
        assert variants[2]["mrp"] == 15


class TestHelpers:
    def test_oid(self):
        value = ObjectId()
        assert catalog.oid(str(value)) == value
        with pytest.raises(HTTPException) as exc:
            catalog.oid("nope")
        assert exc.value.status_code == 400

    def test_category_parent_stored_as_object_id(self):
        parent = ObjectId()
        doc = catalog.category_document(Category(name="Desk Lamps", slug="desk-lamps", parentCategory=str(parent)))
        assert doc["parentCategory"] == parent
        assert catalog.category_document(Category(name="Lamps", slug="lamps"))["parentCategory"] is None
        with pytest.raises(HTTPException):
            catalog.category_document(Category(name="Bad", slug="bad", parentCategory="nope"))

    def test_slugify(self):
        assert catalog.slugify("Acme Widget 2.0!") == "acme-widget-2-0"

    def test_unique_slug(self, fake_db):
        products = fake_db[PRODUCTS]
        products.docs = [{"_id": ObjectId(), "slug": "lamp"}, {"_id": ObjectId(), "slug": "lamp-1"}]
        assert catalog.unique_slug(products, "lamp") == "lamp-2"
        assert catalog.unique_slug(products, "lamp", exclude_id=products.docs[0]["_id"]) == "lamp"

    def test_clean_linked_products(self, fake_db):
        own, other, missing = ObjectId(), ObjectId(), ObjectId()
        fake_db[PRODUCTS].docs = [{"_id": own}, {"_id": other}]
        cleaned = catalog.clean_linked_products(fake_db, [str(other), str(own), str(other), str(missing)], own)
        assert cleaned == [other]


class TestWritePath:
    @pytest.fixture
    def refs(self, fake_db):
        brand = {"_id": ObjectId(), "name": "Acme", "slug": "acme"}
        category = {"_id": ObjectId(), "name": "Widgets", "slug": "widgets"}
        fake_db[BRANDS].docs = [brand]
        fake_db[CATEGORIES].docs = [category]
        return str(brand["_id"]), str(category["_id"])

    def test_create_product(self, fake_db, refs):
        brand, category = refs
        doc = catalog.create_product(fake_db, ProductCreate(
            name="Acme Lamp", brand=brand, categories=[category], basePrice=100, mrp=90,
            stockQuantity=2, images={"thumbnail": THUMBNAIL},
        ))
        assert doc["slug"] == "acme-lamp"
        assert doc["brand"] == ObjectId(brand)
        assert doc["mrp"] == 100
        assert doc["status"] == "Published"
        assert fake_db[PRODUCTS].docs == [doc]

    def test_unknown_brand_rejected(self, fake_db, refs):
        _, category = refs
        with pytest.raises(HTTPException) as exc:
            catalog.create_product(fake_db, ProductCreate(
                name="Lamp", brand=str(ObjectId()), categories=[category], basePrice=1,
                images={"thumbnail": THUMBNAIL},
            ))
        assert exc.value.detail == "Brand not found"

    def test_variant_lifecycle(self, fake_db, refs):
        brand, category = refs
        product = catalog.create_product(fake_db, ProductCreate(
            name="Lamp", brand=brand, categories=[category], basePrice=100, stockQuantity=1,
            images={"thumbnail": THUMBNAIL},
        ))
        pid = str(product["_id"])

        product = catalog.add_variant(fake_db, pid, Variant(name="Red", price=40, mrp=60, stockQuantity=3))
        variant_id = str(product["variants"][0]["_id"])
        assert product["variantConfiguration"]["hasVariants"] is True
        assert product["basePrice"] == 40
        assert product["stockQuantity"] == 3

        product = catalog.update_variant(fake_db, pid, variant_id, VariantUpdate(price=70, mrp=50))
        assert product["variants"][0]["mrp"] == 70
        assert product["mrp"] == 70

        with pytest.raises(HTTPException) as exc:
            catalog.update_variant(fake_db, pid, str(ObjectId()), VariantUpdate(price=1))
        assert exc.value.status_code == 404

    def test_update_product_keeps_created_at(self, fake_db, refs):
        brand, category = refs
        product = catalog.create_product(fake_db, ProductCreate(
            name="Lamp", brand=brand, categories=[category], basePrice=100, stockQuantity=1,
            images={"thumbnail": THUMBNAIL},
        ))
        updated = catalog.update_product(fake_db, str(product["_id"]), ProductUpdate(isActive=False, mrp=10))
        assert updated["isActive"] is False
        assert updated["mrp"] == 100
        assert updated["createdAt"] == product["createdAt"]
        assert updated["slug"] == "lamp"

    def test_update_missing_product(self, fake_db):
        with pytest.raises(HTTPException) as exc:
            catalog.update_product(fake_db, str(ObjectId()), ProductUpdate(name="x"))
        assert exc.value.status_code == 404
