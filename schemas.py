"""
Database Schemas

Pydantic models for the catalog collections. Each model maps to one
MongoDB collection named after the lowercase class name:
- Product -> "product" collection
- Brand -> "brand" collection
- Category -> "category" collection
- AgeRange -> "agerange" collection

Field names match the stored documents (camelCase). Reference fields are
accepted as id strings and converted to ObjectIds by the catalog layer.
"""
from typing import List, Optional, Literal
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# ---------- Enumerations ----------

Condition = Literal["New", "Used", "Refurbished"]
ProductStatus = Literal["Draft", "Published", "OutOfStock", "Archived", "Discontinued"]
EntityStatus = Literal["active", "inactive"]
VariantType = Literal["None", "Color", "Specifications", "Attributes", "Mixed"]

CONDITIONS = ("New", "Used", "Refurbished")
MANUAL_STATUSES = ("Draft", "Archived", "Discontinued")

# ---------- Media ----------

class Image(BaseModel):
    url: str
    altText: str = ""

class ManufacturerImage(Image):
    sectionTitle: Optional[str] = None

class ProductImages(BaseModel):
    thumbnail: Optional[Image] = None
    hoverImage: Optional[Image] = None
    gallery: List[Image] = Field(default_factory=list)

class VariantImages(BaseModel):
    thumbnail: Optional[Image] = None
    gallery: List[Image] = Field(default_factory=list)

# ---------- Descriptive ----------

class SpecEntry(BaseModel):
    key: str
    value: str

class SpecificationSection(BaseModel):
    sectionTitle: Optional[str] = None
    specs: List[SpecEntry] = Field(default_factory=list)

class Feature(BaseModel):
    title: str
    description: Optional[str] = None

class Dimensions(BaseModel):
    length: Optional[float] = Field(None, ge=0)
    width: Optional[float] = Field(None, ge=0)
    height: Optional[float] = Field(None, ge=0)
    unit: Literal["cm", "in", "m"] = "cm"

class Weight(BaseModel):
    value: Optional[float] = Field(None, ge=0)
    unit: Literal["g", "kg", "lb", "oz"] = "kg"

class Meta(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)

# ---------- Variants ----------

class IdentifyingAttribute(BaseModel):
    key: str
    label: str
    value: str
    displayValue: Optional[str] = None
    hexCode: Optional[str] = None
    isColor: bool = False

class VariantAttribute(BaseModel):
    key: str
    label: str
    values: List[str] = Field(default_factory=list)

class VariantConfiguration(BaseModel):
    hasVariants: bool = False
    variantType: VariantType = "None"
    attributes: List[VariantAttribute] = Field(default_factory=list)

class Variant(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(None, alias="_id")
    name: str
    slug: Optional[str] = None
    sku: Optional[str] = None
    barcode: Optional[str] = None
    price: float = Field(..., ge=0, description="Selling price")
    mrp: Optional[float] = Field(None, ge=0, description="Maximum retail price, never below price")
    hsn: Optional[str] = None
    stockQuantity: int = Field(0, ge=0)
    identifyingAttributes: List[IdentifyingAttribute] = Field(default_factory=list)
    images: VariantImages = Field(default_factory=VariantImages)
    isActive: bool = True
    specifications: List[SpecificationSection] = Field(default_factory=list)

    @model_validator(mode="after")
    def raise_mrp_to_price(self):
        if self.mrp is None or self.mrp < self.price:
            self.mrp = self.price
        return self

class VariantUpdate(BaseModel):
    name: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    mrp: Optional[float] = Field(None, ge=0)
    stockQuantity: Optional[int] = Field(None, ge=0)
    identifyingAttributes: Optional[List[IdentifyingAttribute]] = None
    images: Optional[VariantImages] = None
    isActive: Optional[bool] = None
    sku: Optional[str] = None
    barcode: Optional[str] = None

# ---------- Products ----------

class Product(BaseModel):
    name: str = Field(..., min_length=1)
    slug: Optional[str] = None
    brand: str = Field(..., description="Brand id")
    categories: List[str] = Field(..., min_length=1, description="Category ids")
    tags: List[str] = Field(default_factory=list)
    condition: Condition = "New"
    label: Optional[str] = None
    isActive: bool = True
    status: Optional[ProductStatus] = None
    description: Optional[str] = None
    definition: Optional[str] = None

    images: ProductImages = Field(default_factory=ProductImages)
    manufacturerImages: List[ManufacturerImage] = Field(default_factory=list)

    basePrice: Optional[float] = Field(None, ge=0)
    mrp: Optional[float] = Field(None, ge=0)
    hsn: Optional[str] = None
    taxRate: float = Field(0, ge=0)
    sku: Optional[str] = None
    barcode: Optional[str] = None
    stockQuantity: int = Field(0, ge=0)

    variantConfiguration: VariantConfiguration = Field(default_factory=VariantConfiguration)
    variants: List[Variant] = Field(default_factory=list)

    specifications: List[SpecificationSection] = Field(default_factory=list)
    features: List[Feature] = Field(default_factory=list)
    dimensions: Optional[Dimensions] = None
    weight: Optional[Weight] = None
    warranty: Optional[str] = None

    averageRating: float = Field(0, ge=0, le=5)
    totalReviews: int = Field(0, ge=0)

    meta: Meta = Field(default_factory=Meta)
    canonicalUrl: Optional[str] = None
    linkedProducts: List[str] = Field(default_factory=list)
    notes: Optional[str] = None

    @field_validator("tags")
    @classmethod
    def lowercase_tags(cls, v: List[str]) -> List[str]:
        return [t.strip().lower() for t in v if t and t.strip()]

    @model_validator(mode="after")
    def check_pricing(self):
        if not self.variantConfiguration.hasVariants and self.basePrice is None:
            raise ValueError("basePrice is required for products without variants")
        if self.basePrice is not None and (self.mrp is None or self.mrp < self.basePrice):
            self.mrp = self.basePrice
        return self

class ProductCreate(Product):
    @model_validator(mode="after")
    def require_thumbnail(self):
        if self.images.thumbnail is None:
            raise ValueError("images.thumbnail is required")
        return self

class ProductUpdate(BaseModel):
    """Partial update; merged onto the stored product and re-validated as a Product."""
    name: Optional[str] = None
    brand: Optional[str] = None
    categories: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    condition: Optional[Condition] = None
    label: Optional[str] = None
    isActive: Optional[bool] = None
    status: Optional[ProductStatus] = None
    description: Optional[str] = None
    definition: Optional[str] = None
    images: Optional[ProductImages] = None
    manufacturerImages: Optional[List[ManufacturerImage]] = None
    basePrice: Optional[float] = Field(None, ge=0)
    mrp: Optional[float] = Field(None, ge=0)
    taxRate: Optional[float] = Field(None, ge=0)
    stockQuantity: Optional[int] = Field(None, ge=0)
    variantConfiguration: Optional[VariantConfiguration] = None
    specifications: Optional[List[SpecificationSection]] = None
    features: Optional[List[Feature]] = None
    dimensions: Optional[Dimensions] = None
    weight: Optional[Weight] = None
    warranty: Optional[str] = None
    meta: Optional[Meta] = None
    canonicalUrl: Optional[str] = None
    linkedProducts: Optional[List[str]] = None
    notes: Optional[str] = None

# ---------- Reference entities ----------

class EntityImage(BaseModel):
    url: Optional[str] = None
    altText: Optional[str] = None

class Brand(BaseModel):
    name: str = Field(..., max_length=100)
    slug: str = Field(..., description="URL-friendly id")
    description: Optional[str] = Field(None, max_length=500)
    logo: EntityImage = Field(default_factory=EntityImage)
    order: int = 0
    isFeatured: bool = False
    status: EntityStatus = "active"

    @field_validator("slug")
    @classmethod
    def lowercase_slug(cls, v: str) -> str:
        return v.strip().lower()

class Category(BaseModel):
    name: str
    slug: str = Field(..., description="URL-friendly id")
    description: Optional[str] = None
    parentCategory: Optional[str] = None
    image: EntityImage = Field(default_factory=EntityImage)
    order: int = 0
    isFeatured: bool = False
    status: EntityStatus = "active"

    @field_validator("slug")
    @classmethod
    def lowercase_slug(cls, v: str) -> str:
        return v.strip().lower()

class AgeRange(BaseModel):
    name: str = Field(..., max_length=100)
    slug: str
    startAge: int = Field(..., ge=0, le=100)
    endAge: int = Field(..., ge=0, le=100)
    displayLabel: Optional[str] = None
    description: Optional[str] = Field(None, max_length=500)
    image: EntityImage = Field(default_factory=EntityImage)
    products: List[str] = Field(default_factory=list)
    order: int = 0
    isFeatured: bool = False
    status: EntityStatus = "active"

    @model_validator(mode="after")
    def check_bounds(self):
        if self.endAge <= self.startAge:
            raise ValueError("End age must be greater than start age")
        if not self.displayLabel:
            self.displayLabel = f"{self.startAge}-{self.endAge} years"
        self.slug = self.slug.strip().lower()
        return self
