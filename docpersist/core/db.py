from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from docpersist.core.config import settings

# Базовый класс для моделей
Base = declarative_base()

# Асинхронный движок
engine = create_async_engine(settings.database_url, future=True, echo=settings.sql_echo)

# Сессии
SessionLocal = sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session


async def init_models(bind: AsyncEngine = engine) -> None:
    """Создание таблиц снимков и проекции"""
    # модели регистрируются в Base.metadata при импорте
    import docpersist.db.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def ping_database(session_factory=SessionLocal) -> bool:
    """Проверка доступности реляционного хранилища"""
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError):
        return False
