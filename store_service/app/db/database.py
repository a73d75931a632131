# store_service/app/db/database.py
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

# Базовый класс для моделей
Base = declarative_base()


class Database:
    """Engine and session factory for one store. Built once per application."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.engine = create_async_engine(url, echo=echo)
        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

    async def dispose(self):
        await self.engine.dispose()


# Генератор сессий
async def get_db(request: Request):
    async with request.app.state.db.session_factory() as session:
        yield session
