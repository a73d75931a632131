# store_service/app/main.py
import logging
import os
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth_utils import create_access_token, verify_password
from config import Settings, load_settings
from db.database import Database, get_db
from db.functions import (
    add_product_to_cart,
    checkout,
    create_user,
    get_all_brands,
    get_all_categories,
    get_all_products,
    get_all_users,
    get_brand_by_id,
    get_cart_items,
    get_category_by_id,
    get_product_by_id,
    get_products_by_brand,
    get_products_by_category,
    get_user_by_email,
    remove_product_from_cart,
    resolve_user,
)
from db.init_db import init_db
from db.models import User
from db.schemas import (
    AuthResponse,
    Brand as BrandSchema,
    CartItem as CartItemSchema,
    CartItemCreate,
    Category as CategorySchema,
    OrderConfirmation,
    Product as ProductSchema,
    ProductBase,
    SignIn,
    SignUp,
    User as UserSchema,
)
from errors import (
    InvalidCredentialsException,
    MissingIdException,
    StoreException,
    UnauthorizedException,
)
from logging_config import setup_logging

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_current_user(
    authorization: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> User:
    """Пользователь из заголовка Authorization (сырой токен, префикс Bearer допускается)."""
    if not authorization:
        raise UnauthorizedException("No token provided.")

    token = authorization.strip()
    if token.lower().startswith("bearer "):
        token = token[7:].strip()

    user = await resolve_user(db, token, settings.secret_key)
    if not user:
        raise UnauthorizedException("Invalid token provided.")
    return user


def issue_token(user: User, settings: Settings) -> str:
    return create_access_token(user.id, settings.secret_key, timedelta(hours=settings.token_expire_hours))


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

@router.get("/")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "store_service running",
        "resources": ["/products", "/products/{id}", "/brands", "/brands/{id}", "/categories", "/categories/{id}"],
    }


@router.get("/products", response_model=List[ProductSchema])
async def read_products(db: AsyncSession = Depends(get_db)):
    return await get_all_products(db)


@router.get("/products/{product_id}", response_model=ProductSchema)
async def read_product(product_id: int, db: AsyncSession = Depends(get_db)):
    return await get_product_by_id(db, product_id)


@router.get("/productByCategory/{category_id}", response_model=List[ProductBase])
async def read_products_by_category(category_id: int, db: AsyncSession = Depends(get_db)):
    if not category_id:
        raise MissingIdException("Category id not provided")
    return await get_products_by_category(db, category_id)


@router.get("/productsByBrand/{brand_id}", response_model=List[ProductBase])
async def read_products_by_brand(brand_id: int, db: AsyncSession = Depends(get_db)):
    if not brand_id:
        raise MissingIdException("Brand id not provided")
    return await get_products_by_brand(db, brand_id)


@router.get("/brands", response_model=List[BrandSchema])
async def read_brands(db: AsyncSession = Depends(get_db)):
    return await get_all_brands(db)


@router.get("/brands/{brand_id}", response_model=BrandSchema)
async def read_brand(brand_id: int, db: AsyncSession = Depends(get_db)):
    return await get_brand_by_id(db, brand_id)


@router.get("/categories", response_model=List[CategorySchema])
async def read_categories(db: AsyncSession = Depends(get_db)):
    return await get_all_categories(db)


@router.get("/categories/{category_id}", response_model=CategorySchema)
async def read_category(category_id: int, db: AsyncSession = Depends(get_db)):
    return await get_category_by_id(db, category_id)


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

@router.get("/users", response_model=List[UserSchema])
async def read_users(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await get_all_users(db)


@router.post("/sign-up", response_model=AuthResponse)
async def sign_up(data: SignUp, db: AsyncSession = Depends(get_db), settings: Settings = Depends(get_settings)):
    user = await create_user(
        db,
        name=data.name,
        email=data.email,
        password=data.password,
        balance=settings.starting_balance,
        bcrypt_rounds=settings.bcrypt_rounds,
    )
    return {"user": user, "token": issue_token(user, settings)}


@router.post("/sign-in", response_model=AuthResponse)
async def sign_in(data: SignIn, db: AsyncSession = Depends(get_db), settings: Settings = Depends(get_settings)):
    user = await get_user_by_email(db, data.email)
    # bcrypt держит CPU, проверяем вне event loop
    if not user or not await run_in_threadpool(verify_password, data.password, user.password):
        logger.warning("Failed sign-in attempt")
        raise InvalidCredentialsException()

    logger.info(f"User {user.id} signed in")
    return {"user": user, "token": issue_token(user, settings)}


@router.get("/validate", response_model=AuthResponse)
async def validate(user: User = Depends(get_current_user), settings: Settings = Depends(get_settings)):
    return {"user": user, "token": issue_token(user, settings)}


# ---------------------------------------------------------------------------
# Cart & checkout
# ---------------------------------------------------------------------------

@router.post("/cartItem", response_model=CartItemSchema)
async def add_to_cart(
    data: CartItemCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await add_product_to_cart(db, user, data.product_id, data.quantity)


@router.get("/cartItems", response_model=List[CartItemSchema])
async def read_cart(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await get_cart_items(db, user.id)


@router.delete("/cartItem/{cart_item_id}", response_model=List[CartItemSchema])
async def delete_from_cart(
    cart_item_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not cart_item_id:
        raise MissingIdException("CartItem with this id does not exist")
    return await remove_product_from_cart(db, user, cart_item_id)


@router.post("/buy", response_model=OrderConfirmation)
async def buy(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await checkout(db, user)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

def _validation_message(error: dict) -> str:
    field = ".".join(str(part) for part in error["loc"] if part not in ("body", "path", "query", "header"))
    return f"{field}: {error['msg']}" if field else error["msg"]


async def store_exception_handler(request: Request, exc: StoreException):
    return JSONResponse(status_code=exc.status_code, content={"errors": exc.errors})


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [_validation_message(error) for error in exc.errors()]
    logger.warning(f"Rejected {request.method} {request.url.path}: {errors}")
    return JSONResponse(status_code=400, content={"errors": errors})


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"errors": [str(exc.detail)]}, headers=exc.headers)


async def catch_unexpected_errors(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception as e:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=400, content={"errors": [str(e)]})


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db(app.state.db)
    logger.info("Store service started")
    yield
    await app.state.db.dispose()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    setup_logging(settings.log_level)

    app = FastAPI(title="Store Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = Database(settings.database_url, echo=settings.db_echo)

    app.add_exception_handler(StoreException, store_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    app.middleware("http")(catch_unexpected_errors)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:create_app",
        factory=True,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )
