"""Расчет и хранение таблиц этапа. Таблица этапа всегда заменяется целиком."""

import logging
import random
from collections.abc import Sequence
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError
from app.db.session import unit_of_work
from app.models.tournament import Group, Ranking, Stage
from app.services.schemas import RankingRow
from app.services.stage import get_stage
from app.services.strategies import effective_settings, get_stage_strategy, stage_entries

logger = logging.getLogger(__name__)

RANKING_FIELDS = (
    "team_id",
    "group_id",
    "played",
    "wins",
    "draws",
    "losses",
    "goals_for",
    "goals_against",
    "goal_difference",
    "points",
    "rank",
)


def rankings_for(stage: Stage, rng: random.Random | None = None) -> list[RankingRow]:
    strategy = get_stage_strategy(stage.stage_type)
    return strategy.compute_rankings(stage_entries(stage), stage.fixtures, effective_settings(stage), rng=rng)


async def compute_stage_rankings(db: AsyncSession, stage_id: int, rng: random.Random | None = None) -> list[RankingRow]:
    stage = await get_stage(db, stage_id)
    return rankings_for(stage, rng=rng)


async def compute_group_rankings(db: AsyncSession, group_id: int, rng: random.Random | None = None) -> list[RankingRow]:
    group = await db.get(Group, group_id)
    if group is None:
        raise NotFoundError(f"Group {group_id} not found")
    rows = await compute_stage_rankings(db, group.stage_id, rng=rng)
    return [row for row in rows if row.group_id == group_id]


async def persist_rankings(db: AsyncSession, stage: Stage, rows: Sequence[RankingRow]) -> list[Ranking]:
    """Заменяет таблицу этапа в текущей транзакции, без коммита."""
    stage.rankings.clear()
    # Старые строки удаляем до вставки новых: (stage_id, team_id) уникален.
    await db.flush()
    rankings = [Ranking(**{field: getattr(row, field) for field in RANKING_FIELDS}) for row in rows]
    stage.rankings.extend(rankings)
    await db.flush()
    return rankings


async def refresh_stage_rankings(db: AsyncSession, stage: Stage, rng: random.Random | None = None) -> list[Ranking]:
    rankings = await persist_rankings(db, stage, rankings_for(stage, rng=rng))
    logger.info("Rankings refreshed for stage %s: %s rows", stage.id, len(rankings))
    return rankings


async def refresh_rankings(db: AsyncSession, stage_id: int, rng: random.Random | None = None) -> list[Ranking]:
    async with unit_of_work(db):
        stage = await get_stage(db, stage_id, lock=True)
        rankings = await refresh_stage_rankings(db, stage, rng=rng)
    return rankings


async def get_rankings_for_stage(db: AsyncSession, stage_id: int) -> list[Ranking]:
    await get_stage(db, stage_id)
    return list(
        (
            await db.scalars(
                select(Ranking).where(Ranking.stage_id == stage_id).order_by(Ranking.group_id, Ranking.rank)
            )
        ).all()
    )


async def get_rankings_for_group(db: AsyncSession, group_id: int) -> list[Ranking]:
    return list(
        (await db.scalars(select(Ranking).where(Ranking.group_id == group_id).order_by(Ranking.rank))).all()
    )


async def get_team_ranking(db: AsyncSession, stage_id: int, team_id: int) -> Ranking:
    ranking = await db.scalar(select(Ranking).where(Ranking.stage_id == stage_id, Ranking.team_id == team_id))
    if ranking is None:
        raise NotFoundError(f"Team {team_id} has no ranking in stage {stage_id}")
    return ranking


def ranking_to_dict(ranking: Ranking | RankingRow) -> dict[str, Any]:
    return {field: getattr(ranking, field) for field in RANKING_FIELDS}
