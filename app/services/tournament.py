"""Жизненный цикл турнира: создание вместе с этапами, старт, завершение, отмена."""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConfigurationError, PreconditionError
from app.db.session import unit_of_work
from app.models.tournament import Stage, StageStatus, Tournament, TournamentStatus, TournamentType
from app.services.stage import activate_stage_in_session, get_stage, get_tournament
from app.services.strategies import get_stage_strategy, validate_common_settings

logger = logging.getLogger(__name__)

FINISHED_STAGE_STATUSES = (StageStatus.COMPLETED.value, StageStatus.CANCELLED.value)


async def create_tournament(db: AsyncSession, data: dict[str, Any]) -> Tournament:
    """Создает турнир; этапы из data["stages"] создаются в той же транзакции."""
    try:
        tournament_type = TournamentType(data.get("tournament_type", TournamentType.MULTI_STAGE.value))
    except ValueError as exc:
        raise ConfigurationError(f"Unknown tournament type: {data.get('tournament_type')}") from exc
    tournament_settings = validate_common_settings(data.get("settings") or {})

    async with unit_of_work(db):
        tournament = Tournament(
            name=data["name"],
            tournament_type=tournament_type.value,
            settings=tournament_settings,
            status=TournamentStatus.PENDING.value,
            starts_at=data.get("starts_at"),
            created_by=data.get("created_by"),
        )
        db.add(tournament)
        await db.flush()

        for index, stage_data in enumerate(data.get("stages") or [], start=1):
            strategy = get_stage_strategy(stage_data.get("stage_type", "league"))
            db.add(
                Stage(
                    tournament_id=tournament.id,
                    name=stage_data["name"],
                    order=stage_data.get("order") or index,
                    stage_type=strategy.stage_type.value,
                    settings=strategy.validate_settings(stage_data.get("settings") or {}),
                    status=StageStatus.PENDING.value,
                )
            )
        await db.flush()
        logger.info("Tournament %s created with %s stages", tournament.id, len(data.get("stages") or []))
    return await get_tournament(db, tournament.id)


async def start_tournament(db: AsyncSession, tournament_id: int) -> Tournament:
    async with unit_of_work(db):
        tournament = await get_tournament(db, tournament_id)
        if tournament.status != TournamentStatus.PENDING.value:
            raise PreconditionError(f"Tournament {tournament_id} is {tournament.status}, expected pending")
        if not tournament.stages:
            raise PreconditionError(f"Tournament {tournament_id} has no stages")

        first_stage = await get_stage(db, tournament.stages[0].id, lock=True)
        await activate_stage_in_session(db, first_stage)
        tournament.status = TournamentStatus.ACTIVE.value
        logger.info("Tournament %s started, stage %s active", tournament_id, first_stage.id)
    # Массовый UPDATE статусов сбрасывает загруженные этапы: читаем турнир заново.
    return await get_tournament(db, tournament_id)


async def complete_tournament(db: AsyncSession, tournament_id: int) -> Tournament:
    async with unit_of_work(db):
        tournament = await get_tournament(db, tournament_id)
        if tournament.status != TournamentStatus.ACTIVE.value:
            raise PreconditionError(f"Tournament {tournament_id} is {tournament.status}, expected active")
        unfinished = [stage.id for stage in tournament.stages if stage.status not in FINISHED_STAGE_STATUSES]
        if unfinished:
            raise PreconditionError(f"Cannot complete tournament with unfinished stages: {unfinished}")
        tournament.status = TournamentStatus.COMPLETED.value
        logger.info("Tournament %s completed", tournament_id)
    return tournament


async def cancel_tournament(db: AsyncSession, tournament_id: int) -> Tournament:
    async with unit_of_work(db):
        tournament = await get_tournament(db, tournament_id)
        if tournament.status in (TournamentStatus.COMPLETED.value, TournamentStatus.CANCELLED.value):
            raise PreconditionError(f"Tournament {tournament_id} is already {tournament.status}")
        # Завершенные этапы остаются в истории как есть.
        for stage in tournament.stages:
            if stage.status != StageStatus.COMPLETED.value:
                stage.status = StageStatus.CANCELLED.value
        tournament.status = TournamentStatus.CANCELLED.value
        logger.info("Tournament %s cancelled", tournament_id)
    return tournament


def tournament_to_dict(tournament: Tournament) -> dict[str, Any]:
    return {
        "id": tournament.id,
        "name": tournament.name,
        "tournament_type": tournament.tournament_type,
        "status": tournament.status,
        "settings": tournament.settings or {},
        "starts_at": tournament.starts_at.isoformat() if tournament.starts_at else None,
        "stages": [
            {"id": stage.id, "name": stage.name, "order": stage.order, "stage_type": stage.stage_type, "status": stage.status}
            for stage in tournament.stages
        ],
    }
