# store_service/app/db/schemas.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, StrictInt, StrictStr
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base schema: snake_case attributes, camelCase JSON."""

    class Config:
        from_attributes = True
        alias_generator = to_camel
        populate_by_name = True


# Схема для бренда (Brand)
class BrandSchemas(CamelModel):
    id: int
    name: str


# Схема для категории (Category)
class CategorySchemas(CamelModel):
    id: int
    name: str


# Схема для товара (Product)
class ProductBase(CamelModel):
    id: int
    name: str
    price: float
    in_stock: int
    brand_id: int


class ProductWithBrand(ProductBase):
    brand: BrandSchemas


class Product(ProductWithBrand):
    categories: List[CategorySchemas] = []


class Brand(BrandSchemas):
    products: List[ProductBase] = []


class Category(CategorySchemas):
    products: List[ProductBase] = []


# Корзина и покупки
class CartItemCreate(CamelModel):
    product_id: StrictInt
    quantity: StrictInt = Field(default=1, gt=0)


class CartItem(CamelModel):
    id: int
    user_id: int
    product_id: int
    quantity: int
    product: ProductWithBrand


class BoughtProduct(CamelModel):
    id: int
    user_id: int
    product_id: int
    quantity: int
    created_at: Optional[datetime] = None
    product: ProductWithBrand


# Пользователь (пароль никогда не отдаётся)
class User(CamelModel):
    id: int
    name: str
    email: str
    balance: float
    cart: List[CartItem] = []
    bought_products: List[BoughtProduct] = []


class SignUp(CamelModel):
    name: StrictStr = Field(min_length=1)
    email: StrictStr = Field(min_length=1)
    password: StrictStr = Field(min_length=1)


class SignIn(CamelModel):
    email: StrictStr
    password: StrictStr


class AuthResponse(CamelModel):
    user: User
    token: str


class OrderConfirmation(CamelModel):
    message: str
    total: float
    balance: float
