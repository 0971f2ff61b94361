"""Жизненный цикл этапов турнира и состав их участников."""

import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.errors import ConfigurationError, NotFoundError, PreconditionError
from app.db.session import unit_of_work
from app.models.tournament import (
    FINISHED_FIXTURE_STATUSES,
    Group,
    Stage,
    StagePromotion,
    StageStatus,
    StageTeam,
    Tournament,
    TournamentStatus,
)
from app.services.strategies import get_stage_strategy

logger = logging.getLogger(__name__)

STAGE_DETAILS = (
    selectinload(Stage.tournament),
    selectinload(Stage.groups),
    selectinload(Stage.stage_teams),
    selectinload(Stage.fixtures),
    selectinload(Stage.rankings),
    selectinload(Stage.promotion),
)


async def get_stage(db: AsyncSession, stage_id: int, lock: bool = False) -> Stage:
    """Этап со всеми связями; lock=True берет строку этапа под SELECT ... FOR UPDATE."""
    query = (
        select(Stage)
        .where(Stage.id == stage_id)
        .options(*STAGE_DETAILS)
        .execution_options(populate_existing=True)
    )
    if lock:
        query = query.with_for_update(of=Stage)
    stage = await db.scalar(query)
    if stage is None:
        raise NotFoundError(f"Stage {stage_id} not found")
    return stage


async def get_tournament(db: AsyncSession, tournament_id: int) -> Tournament:
    tournament = await db.scalar(
        select(Tournament)
        .where(Tournament.id == tournament_id)
        .options(selectinload(Tournament.stages))
        .execution_options(populate_existing=True)
    )
    if tournament is None:
        raise NotFoundError(f"Tournament {tournament_id} not found")
    return tournament


def ensure_not_cancelled(stage: Stage) -> None:
    if stage.status == StageStatus.CANCELLED.value:
        raise PreconditionError(f"Stage {stage.id} is cancelled")


def unfinished_fixtures_count(stage: Stage) -> int:
    return sum(1 for fixture in stage.fixtures if fixture.status not in FINISHED_FIXTURE_STATUSES)


async def create_stage(db: AsyncSession, tournament_id: int, data: dict[str, Any]) -> Stage:
    async with unit_of_work(db):
        tournament = await get_tournament(db, tournament_id)
        if tournament.status in (TournamentStatus.COMPLETED.value, TournamentStatus.CANCELLED.value):
            raise PreconditionError(f"Tournament {tournament_id} is {tournament.status}")

        strategy = get_stage_strategy(data.get("stage_type", "league"))
        stage_settings = strategy.validate_settings(data.get("settings") or {})
        max_order = await db.scalar(select(func.max(Stage.order)).where(Stage.tournament_id == tournament_id))

        next_stage_id = data.get("next_stage_id")
        if next_stage_id is not None:
            await _ensure_same_tournament(db, tournament_id, next_stage_id)

        stage = Stage(
            tournament_id=tournament_id,
            name=data["name"],
            order=data.get("order") or (max_order or 0) + 1,
            stage_type=strategy.stage_type.value,
            settings=stage_settings,
            next_stage_id=next_stage_id,
            status=StageStatus.PENDING.value,
        )
        db.add(stage)
        await db.flush()
        logger.info("Stage %s (%s) created in tournament %s", stage.id, stage.stage_type, tournament_id)
    return await get_stage(db, stage.id)


async def update_stage(db: AsyncSession, stage_id: int, data: dict[str, Any]) -> Stage:
    async with unit_of_work(db):
        stage = await get_stage(db, stage_id, lock=True)
        if "name" in data and data["name"]:
            stage.name = data["name"]
        if data.get("settings") is not None:
            stage.settings = get_stage_strategy(stage.stage_type).validate_settings(data["settings"])
        if data.get("next_stage_id") is not None:
            await _ensure_same_tournament(db, stage.tournament_id, data["next_stage_id"], stage_id=stage.id)
            stage.next_stage_id = data["next_stage_id"]
    return stage


async def delete_stage(db: AsyncSession, stage_id: int) -> None:
    async with unit_of_work(db):
        stage = await get_stage(db, stage_id, lock=True)
        # Ссылки других этапов и правил промоушена на удаляемый этап обнуляем.
        await db.execute(update(Stage).where(Stage.next_stage_id == stage_id).values(next_stage_id=None))
        await db.execute(
            update(StagePromotion).where(StagePromotion.next_stage_id == stage_id).values(next_stage_id=None)
        )
        await db.delete(stage)
        logger.info("Stage %s deleted", stage_id)


async def assign_teams_to_stage(
    db: AsyncSession,
    stage_id: int,
    team_ids: Sequence[int],
    seeds: Sequence[int] | None = None,
    group_names: Sequence[str | None] | None = None,
) -> Stage:
    """Добавляет или обновляет участников; seed по умолчанию равен позиции в списке.

    group_names закрепляет команду за группой (для группового этапа); без него
    команды распределяются по группам при генерации матчей.
    """
    if len(set(team_ids)) != len(team_ids):
        raise ConfigurationError("Team list contains duplicates")
    if seeds is not None and len(seeds) != len(team_ids):
        raise ConfigurationError("Seeds must match team_ids one to one")
    if group_names is not None and len(group_names) != len(team_ids):
        raise ConfigurationError("Group names must match team_ids one to one")

    async with unit_of_work(db):
        stage = await get_stage(db, stage_id, lock=True)
        ensure_not_cancelled(stage)
        existing = {item.team_id: item for item in stage.stage_teams}
        groups = {group.name: group for group in stage.groups}
        for index, team_id in enumerate(team_ids):
            seed = seeds[index] if seeds is not None else index + 1
            group_name = group_names[index] if group_names is not None else None
            group = None
            if group_name:
                group = groups.get(group_name)
                if group is None:
                    group = Group(name=group_name)
                    stage.groups.append(group)
                    groups[group_name] = group

            item = existing.get(team_id)
            if item is None:
                item = StageTeam(team_id=team_id, seed=seed)
                stage.stage_teams.append(item)
            else:
                item.seed = seed
            item.group = group
        logger.info("Assigned %s teams to stage %s", len(team_ids), stage_id)
    return stage


async def remove_teams_from_stage(db: AsyncSession, stage_id: int, team_ids: Sequence[int]) -> Stage:
    async with unit_of_work(db):
        stage = await get_stage(db, stage_id, lock=True)
        removed = set(team_ids)
        for item in [item for item in stage.stage_teams if item.team_id in removed]:
            stage.stage_teams.remove(item)
    return stage


async def reorder_stages(db: AsyncSession, tournament_id: int, stage_ids: Sequence[int]) -> list[Stage]:
    async with unit_of_work(db):
        tournament = await get_tournament(db, tournament_id)
        by_id = {stage.id: stage for stage in tournament.stages}
        missing = [stage_id for stage_id in stage_ids if stage_id not in by_id]
        if missing:
            raise NotFoundError(f"Stages {missing} do not belong to tournament {tournament_id}")
        for order, stage_id in enumerate(stage_ids, start=1):
            by_id[stage_id].order = order
    return sorted(tournament.stages, key=lambda stage: stage.order)


async def _ensure_same_tournament(
    db: AsyncSession,
    tournament_id: int,
    next_stage_id: int,
    stage_id: int | None = None,
) -> Stage:
    if stage_id is not None and next_stage_id == stage_id:
        raise ConfigurationError("Stage cannot be linked to itself")
    next_stage = await db.get(Stage, next_stage_id)
    if next_stage is None:
        raise NotFoundError(f"Stage {next_stage_id} not found")
    if next_stage.tournament_id != tournament_id:
        raise ConfigurationError("Stages must be in the same tournament")
    return next_stage


async def link_stages(db: AsyncSession, stage_id: int, next_stage_id: int) -> Stage:
    async with unit_of_work(db):
        stage = await get_stage(db, stage_id, lock=True)
        await _ensure_same_tournament(db, stage.tournament_id, next_stage_id, stage_id=stage.id)
        stage.next_stage_id = next_stage_id
        if stage.promotion is not None:
            stage.promotion.next_stage_id = next_stage_id
    return stage


async def activate_stage_in_session(db: AsyncSession, stage: Stage, reopen: bool = False) -> Stage:
    # Без коммита: используется турнирным сервисом и откатом промоушена внутри их транзакций.
    # reopen разрешает вернуть в работу завершенный этап.
    blocked = (StageStatus.CANCELLED.value,) if reopen else (StageStatus.COMPLETED.value, StageStatus.CANCELLED.value)
    if stage.status in blocked:
        raise PreconditionError(f"Stage {stage.id} is {stage.status} and cannot be activated")
    # В турнире может быть только один активный этап.
    await db.execute(
        update(Stage)
        .where(
            Stage.tournament_id == stage.tournament_id,
            Stage.id != stage.id,
            Stage.status == StageStatus.ACTIVE.value,
        )
        .values(status=StageStatus.PENDING.value)
        .execution_options(synchronize_session="fetch")
    )
    stage.status = StageStatus.ACTIVE.value
    logger.info("Stage %s activated", stage.id)
    return stage


async def activate_stage(db: AsyncSession, stage_id: int) -> Stage:
    async with unit_of_work(db):
        stage = await get_stage(db, stage_id, lock=True)
        await activate_stage_in_session(db, stage)
    return await get_stage(db, stage_id)


async def complete_stage(db: AsyncSession, stage_id: int) -> Stage:
    async with unit_of_work(db):
        stage = await get_stage(db, stage_id, lock=True)
        ensure_not_cancelled(stage)
        if unfinished_fixtures_count(stage):
            raise PreconditionError("Cannot complete stage with incomplete fixtures")
        stage.status = StageStatus.COMPLETED.value
        logger.info("Stage %s completed", stage.id)
    return stage


async def get_stage_with_details(db: AsyncSession, stage_id: int) -> Stage:
    return await get_stage(db, stage_id)


def stage_to_dict(stage: Stage) -> dict[str, Any]:
    return {
        "id": stage.id,
        "tournament_id": stage.tournament_id,
        "name": stage.name,
        "order": stage.order,
        "stage_type": stage.stage_type,
        "status": stage.status,
        "settings": stage.settings or {},
        "next_stage_id": stage.next_stage_id,
        "groups": [{"id": group.id, "name": group.name} for group in stage.groups],
        "teams": [
            {"team_id": item.team_id, "seed": item.seed, "group_id": item.group_id}
            for item in stage.stage_teams
        ],
        "fixtures_total": len(stage.fixtures),
        "fixtures_unfinished": unfinished_fixtures_count(stage),
        "promotion": (
            {
                "rule_type": stage.promotion.rule_type,
                "rule_config": stage.promotion.rule_config or {},
                "next_stage_id": stage.promotion.next_stage_id,
            }
            if stage.promotion
            else None
        ),
    }
