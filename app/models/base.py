"""Определяет базовый класс ORM-моделей и общие миксины."""

from datetime import datetime

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    # Базовый класс для моделей турнирного движка.
    pass


class CreatedAtMixin:
    # Время создания строки; журнал промоушенов объявляет свое поле с индексом.
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
