"""
Pytest configuration and fixtures for tests.

Every test gets its own SQLite file database, an application built by
create_app() around it and an httpx client talking to the app in-process.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from config import Settings
from db.init_db import init_db
from db.models import Brand, Category, Product
from main import create_app
from store_helpers import SECRET_KEY


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'store.db'}",
        secret_key=SECRET_KEY,
        bcrypt_rounds=4,
        starting_balance=100.0,
        log_level="DEBUG",
    )


# ============================================================================
# Application Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def app(settings):
    application = create_app(settings)
    await init_db(application.state.db)
    yield application
    await application.state.db.dispose()


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client


@pytest_asyncio.fixture
async def session(app):
    """Direct session on the application's store, for arranging and asserting."""
    async with app.state.db.session_factory() as db_session:
        yield db_session


# ============================================================================
# Data Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def catalog(session):
    """Two brands, two categories and three products."""
    apple = Brand(name="Apple")
    dell = Brand(name="Dell")
    laptops = Category(name="Laptops")
    accessories = Category(name="Accessories")
    # flush after each product so ids follow this order
    macbook = Product(name="MacBook Pro", price=30.0, in_stock=5, brand=apple, categories=[laptops])
    session.add(macbook)
    await session.flush()
    xps = Product(name="Dell XPS 15", price=45.5, in_stock=2, brand=dell, categories=[laptops])
    session.add(xps)
    await session.flush()
    mouse = Product(name="Magic Mouse", price=10.0, in_stock=0, brand=apple, categories=[accessories])
    session.add(mouse)
    await session.commit()

    return {
        "brands": {"apple": apple.id, "dell": dell.id},
        "categories": {"laptops": laptops.id, "accessories": accessories.id},
        "products": {"macbook": macbook.id, "xps": xps.id, "mouse": mouse.id},
    }


@pytest_asyncio.fixture
async def signed_up(client):
    """A fresh account: returns the sign-up response body."""
    response = await client.post(
        "/sign-up", json={"name": "Alice", "email": "alice@example.com", "password": "wonderland"}
    )
    assert response.status_code == 200
    return response.json()


@pytest.fixture
def auth_headers(signed_up):
    return {"Authorization": signed_up["token"]}


