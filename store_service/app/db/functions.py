# store_service/app/db/functions.py
import logging
from typing import List, Optional

from sqlalchemy import Numeric, cast, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload
from starlette.concurrency import run_in_threadpool

from auth_utils import InvalidToken, decode_access_token, hash_password
from db.models import User, Brand, Category, Product, CartItem, BoughtProduct
from errors import (
    ConflictException,
    InsufficientFundsException,
    InsufficientStockException,
    NotFoundException,
)

logger = logging.getLogger(__name__)

# Связанные сущности, которые подгружаются вместе с пользователем
USER_DETAILS = (
    selectinload(User.cart).selectinload(CartItem.product).selectinload(Product.brand),
    selectinload(User.bought_products).selectinload(BoughtProduct.product).selectinload(Product.brand),
)

PRODUCT_DETAILS = (
    selectinload(Product.brand),
    selectinload(Product.categories),
)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

async def get_all_products(db: AsyncSession) -> List[Product]:
    result = await db.execute(select(Product).order_by(Product.id).options(*PRODUCT_DETAILS))
    return result.scalars().all()


async def get_product_by_id(db: AsyncSession, product_id: int) -> Product:
    result = await db.execute(select(Product).filter(Product.id == product_id).options(*PRODUCT_DETAILS))
    product = result.scalar_one_or_none()
    if not product:
        raise NotFoundException("Product not found")
    return product


async def get_all_brands(db: AsyncSession) -> List[Brand]:
    result = await db.execute(select(Brand).order_by(Brand.id).options(selectinload(Brand.products)))
    return result.scalars().all()


async def get_brand_by_id(db: AsyncSession, brand_id: int) -> Brand:
    result = await db.execute(select(Brand).filter(Brand.id == brand_id).options(selectinload(Brand.products)))
    brand = result.scalar_one_or_none()
    if not brand:
        raise NotFoundException("Brand not found")
    return brand


async def get_all_categories(db: AsyncSession) -> List[Category]:
    result = await db.execute(select(Category).order_by(Category.id).options(selectinload(Category.products)))
    return result.scalars().all()


async def get_category_by_id(db: AsyncSession, category_id: int) -> Category:
    result = await db.execute(
        select(Category).filter(Category.id == category_id).options(selectinload(Category.products))
    )
    category = result.scalar_one_or_none()
    if not category:
        raise NotFoundException("Category not found")
    return category


async def get_products_by_brand(db: AsyncSession, brand_id: int) -> List[Product]:
    brand = await get_brand_by_id(db, brand_id)
    return brand.products


async def get_products_by_category(db: AsyncSession, category_id: int) -> List[Product]:
    category = await get_category_by_id(db, category_id)
    return category.products


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

async def get_all_users(db: AsyncSession) -> List[User]:
    result = await db.execute(select(User).order_by(User.id).options(*USER_DETAILS))
    return result.scalars().all()


async def get_user_by_id(db: AsyncSession, user_id: int) -> Optional[User]:
    result = await db.execute(
        select(User)
        .filter(User.id == user_id)
        .options(*USER_DETAILS)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).filter(User.email == email).options(*USER_DETAILS))
    return result.scalar_one_or_none()


async def resolve_user(db: AsyncSession, token: str, secret_key: str) -> Optional[User]:
    """
    Пользователь по токену, вместе с корзиной и историей покупок.

    Returns None for a bad, expired or orphaned token; the caller decides
    how to answer an unauthenticated request.
    """
    try:
        user_id = decode_access_token(token, secret_key)
    except InvalidToken as e:
        logger.debug(f"Token rejected: {e}")
        return None
    return await get_user_by_id(db, user_id)


async def create_user(db: AsyncSession, name: str, email: str, password: str,
                      balance: float = 0, bcrypt_rounds: int = 12) -> User:
    if await get_user_by_email(db, email):
        raise ConflictException("Email already exists.")

    hashed = await run_in_threadpool(hash_password, password, bcrypt_rounds)
    db_user = User(
        name=name,
        email=email,
        password=hashed,
        balance=balance
    )
    db.add(db_user)
    try:
        await db.commit()
    except IntegrityError as e:
        # Another request registered the same email first
        await db.rollback()
        raise ConflictException("Email already exists.") from e

    logger.info(f"User {db_user.id} signed up")
    return await get_user_by_id(db, db_user.id)


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------

async def get_cart_items(db: AsyncSession, user_id: int) -> List[CartItem]:
    result = await db.execute(
        select(CartItem)
        .filter(CartItem.user_id == user_id)
        .order_by(CartItem.id)
        .options(selectinload(CartItem.product).selectinload(Product.brand))
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


async def get_cart_item(db: AsyncSession, cart_item_id: int) -> Optional[CartItem]:
    result = await db.execute(
        select(CartItem)
        .filter(CartItem.id == cart_item_id)
        .options(selectinload(CartItem.product).selectinload(Product.brand))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def reserve_stock(db: AsyncSession, product_id: int, quantity: int) -> bool:
    """Decrements in_stock only while at least `quantity` is left. False if nothing was updated."""
    result = await db.execute(
        update(Product)
        .where(Product.id == product_id, Product.in_stock >= quantity)
        .values(in_stock=Product.in_stock - quantity)
    )
    return result.rowcount > 0


async def add_product_to_cart(db: AsyncSession, user: User, product_id: int, quantity: int = 1) -> CartItem:
    """
    Резервирует товар: списывает остаток и создаёт позицию корзины.

    Both writes commit together. The decrement only applies while enough
    stock is left, so concurrent requests cannot drive in_stock below zero.
    """
    result = await db.execute(select(Product).filter(Product.id == product_id))
    product = result.scalar_one_or_none()
    if not product:
        raise NotFoundException("Product not found")

    if product.in_stock < quantity:
        logger.warning(
            f"User {user.id} asked for {quantity} of product {product_id}, only {product.in_stock} left"
        )
        raise InsufficientStockException(product_id, quantity, product.in_stock)

    try:
        if not await reserve_stock(db, product_id, quantity):
            # Stock was taken by a concurrent request after the check above
            await db.refresh(product)
            logger.warning(f"User {user.id} lost the race for product {product_id}, {product.in_stock} left")
            raise InsufficientStockException(product_id, quantity, product.in_stock)

        cart_item = CartItem(user_id=user.id, product_id=product_id, quantity=quantity)
        db.add(cart_item)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(f"User {user.id} added {quantity} x product {product_id} to cart (item {cart_item.id})")
    return await get_cart_item(db, cart_item.id)


async def remove_product_from_cart(db: AsyncSession, user: User, cart_item_id: int) -> List[CartItem]:
    """Удаляет позицию корзины и возвращает её количество на склад."""
    cart_item = await get_cart_item(db, cart_item_id)
    if not cart_item or cart_item.user_id != user.id:
        raise NotFoundException("Cart item not found")

    try:
        await db.execute(
            update(Product)
            .where(Product.id == cart_item.product_id)
            .values(in_stock=Product.in_stock + cart_item.quantity)
        )
        await db.delete(cart_item)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(f"User {user.id} removed cart item {cart_item_id}, {cart_item.quantity} returned to stock")
    return await get_cart_items(db, user.id)


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------

def cart_total(cart_items: List[CartItem]) -> float:
    return round(sum(item.product.price * item.quantity for item in cart_items), 2)


async def charge_balance(db: AsyncSession, user_id: int, total: float) -> bool:
    """Списывает сумму, только если баланс строго больше неё. Результат округляется до копеек."""
    result = await db.execute(
        update(User)
        .where(User.id == user_id, User.balance > total)
        .values(balance=func.round(cast(User.balance - total, Numeric), 2))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def checkout(db: AsyncSession, user: User) -> dict:
    """
    Оформление заказа.

    Converts every cart line into a BoughtProduct, empties the cart and
    deducts the total from the balance, all in one transaction. Fails with
    InsufficientFundsException, touching nothing, unless the total is
    strictly below the balance.
    """
    cart_items = await get_cart_items(db, user.id)
    total = cart_total(cart_items)

    if total >= user.balance:
        logger.warning(f"User {user.id} checkout refused: total {total}, balance {user.balance}")
        raise InsufficientFundsException(total, user.balance)

    try:
        for item in cart_items:
            db.add(BoughtProduct(user_id=item.user_id, product_id=item.product_id, quantity=item.quantity))
            await db.delete(item)

        if not await charge_balance(db, user.id, total):
            # Balance changed by a concurrent request
            balance = await db.scalar(select(User.balance).where(User.id == user.id))
            logger.warning(f"User {user.id} checkout lost the race: total {total}, balance {balance}")
            raise InsufficientFundsException(total, balance)

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(user, attribute_names=["balance"])
    logger.info(f"User {user.id} bought {len(cart_items)} cart item(s) for {total}")
    return {"message": "Order successful!", "total": total, "balance": user.balance}
