# store_service/app/db/init_db.py
from db.database import Base, Database
from db.models import User, Brand, Category, Product, CartItem, BoughtProduct


async def init_db(database: Database):
    async with database.engine.begin() as conn:
        # Создание всех таблиц
        await conn.run_sync(Base.metadata.create_all)
