"""Регистрирует ORM-модели в метаданных SQLAlchemy."""

from app.models.base import Base
from app.models.tournament import (
    Fixture,
    Group,
    PromotionAudit,
    Ranking,
    Stage,
    StagePromotion,
    StageTeam,
    Tournament,
)

__all__ = [
    "Base",
    "Tournament",
    "Stage",
    "Group",
    "StageTeam",
    "Fixture",
    "Ranking",
    "StagePromotion",
    "PromotionAudit",
]
