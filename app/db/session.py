"""Асинхронный движок SQLAlchemy, фабрика сессий и FastAPI-зависимость."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings

engine = create_async_engine(settings.database_url, echo=settings.log_level.upper() == "DEBUG", pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


async def get_db() -> AsyncIterator[AsyncSession]:
    # Отдаем сессию на время запроса; незакоммиченные изменения откатываются при закрытии.
    async with SessionLocal() as session:
        yield session


@asynccontextmanager
async def unit_of_work(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Одна операция сервиса = один коммит; при любой ошибке откат и проброс исключения."""
    try:
        yield db
        await db.commit()
    except Exception:
        await db.rollback()
        raise
