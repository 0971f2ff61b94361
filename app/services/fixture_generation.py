"""Создание, расписание и результаты матчей этапа."""

import logging
import random
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings as app_settings
from app.core.errors import ConfigurationError, NotFoundError, PreconditionError
from app.db.session import unit_of_work
from app.models.tournament import Fixture, FixtureStatus, Group, Stage, StageStatus
from app.services.ranking import refresh_stage_rankings
from app.services.schemas import FixtureDraft
from app.services.stage import ensure_not_cancelled, get_stage
from app.services.strategies import effective_settings, get_stage_strategy, stage_entries

logger = logging.getLogger(__name__)


def match_duration(config: dict[str, Any]) -> int:
    return config.get("match_duration") or app_settings.default_match_duration


def match_interval(config: dict[str, Any]) -> int:
    return config.get("match_interval") or app_settings.default_match_interval


def slot_times(start: datetime, count: int, duration: int, interval: int) -> list[datetime]:
    # Следующий матч начинается через duration + interval минут после предыдущего.
    step = timedelta(minutes=duration + interval)
    return [start + step * index for index in range(count)]


def _ensure_editable(stage: Stage) -> None:
    ensure_not_cancelled(stage)
    if stage.status == StageStatus.COMPLETED.value:
        raise PreconditionError(f"Stage {stage.id} is already completed")


async def get_fixture(db: AsyncSession, fixture_id: int) -> Fixture:
    fixture = await db.get(Fixture, fixture_id, with_for_update=True)
    if fixture is None:
        raise NotFoundError(f"Fixture {fixture_id} not found")
    return fixture


async def simulate_fixtures(db: AsyncSession, stage_id: int, rng: random.Random | None = None) -> list[FixtureDraft]:
    """Черновик пар без записи в базу."""
    stage = await get_stage(db, stage_id)
    strategy = get_stage_strategy(stage.stage_type)
    return strategy.generate_fixtures(stage_entries(stage), effective_settings(stage), rng=rng)


async def _assign_groups(db: AsyncSession, stage: Stage, config: dict[str, Any]) -> dict[str, Group]:
    strategy = get_stage_strategy(stage.stage_type)
    split = strategy.split_into_groups(stage_entries(stage), config)
    if not split:
        return {}

    groups = {group.name: group for group in stage.groups}
    teams = {item.team_id: item for item in stage.stage_teams}
    for name, members in split.items():
        group = groups.get(name)
        if group is None:
            group = Group(name=name)
            stage.groups.append(group)
            groups[name] = group
        for entry in members:
            teams[entry.team_id].group = group
    await db.flush()
    return groups


async def _persist_drafts(
    db: AsyncSession,
    stage: Stage,
    drafts: Sequence[FixtureDraft],
    config: dict[str, Any],
    groups: dict[str, Group],
    starts_at: datetime | None,
) -> list[Fixture]:
    duration = match_duration(config)
    playable_count = sum(1 for draft in drafts if not draft.is_bye)
    times = iter(slot_times(starts_at, playable_count, duration, match_interval(config)) if starts_at else [])

    fixtures = []
    for draft in drafts:
        group = groups.get(draft.group_name) if draft.group_name else None
        fixture = Fixture(
            group_id=group.id if group else None,
            first_team_id=draft.home_team_id,
            second_team_id=draft.away_team_id,
            round=draft.round,
            matchday=draft.matchday,
            match_number=draft.match_number,
            is_bye=draft.is_bye,
            is_second_leg=draft.is_second_leg,
            starts_at=None if draft.is_bye else next(times, None),
            duration=duration,
            # Бай засчитывается сразу, играть его не нужно.
            status=FixtureStatus.COMPLETED.value if draft.is_bye else FixtureStatus.UPCOMING.value,
        )
        stage.fixtures.append(fixture)
        fixtures.append(fixture)
    await db.flush()
    return fixtures


async def generate_fixtures(
    db: AsyncSession,
    stage_id: int,
    auto_schedule: bool = True,
    starts_at: datetime | None = None,
    rng: random.Random | None = None,
) -> list[Fixture]:
    async with unit_of_work(db):
        stage = await get_stage(db, stage_id, lock=True)
        _ensure_editable(stage)
        if stage.fixtures:
            raise PreconditionError(f"Stage {stage_id} already has fixtures")

        config = effective_settings(stage)
        groups = await _assign_groups(db, stage, config)
        drafts = get_stage_strategy(stage.stage_type).generate_fixtures(stage_entries(stage), config, rng=rng)
        start = None
        if auto_schedule:
            start = starts_at or stage.tournament.starts_at or datetime.utcnow()
        fixtures = await _persist_drafts(db, stage, drafts, config, groups, start)
        logger.info("Generated %s fixtures for stage %s", len(fixtures), stage_id)
    return fixtures


async def generate_next_round(
    db: AsyncSession,
    stage_id: int,
    auto_schedule: bool = True,
    starts_at: datetime | None = None,
    rng: random.Random | None = None,
) -> list[Fixture]:
    """Следующий раунд сетки на выбывание или швейцарской системы."""
    async with unit_of_work(db):
        stage = await get_stage(db, stage_id, lock=True)
        _ensure_editable(stage)
        config = effective_settings(stage)
        drafts = get_stage_strategy(stage.stage_type).generate_next_round(
            stage_entries(stage), stage.fixtures, config, rng=rng
        )

        start = None
        if auto_schedule:
            start = starts_at or _after_last_fixture(stage, config)
        fixtures = await _persist_drafts(db, stage, drafts, config, {}, start)
        logger.info("Generated round %s for stage %s: %s fixtures", drafts[0].round if drafts else "-", stage_id, len(fixtures))
    return fixtures


def _after_last_fixture(stage: Stage, config: dict[str, Any]) -> datetime:
    ends = [
        fixture.starts_at + timedelta(minutes=fixture.duration)
        for fixture in stage.fixtures
        if fixture.starts_at is not None
    ]
    if not ends:
        return datetime.utcnow()
    return max(ends) + timedelta(minutes=match_interval(config))


async def manual_create_fixture(db: AsyncSession, stage_id: int, data: dict[str, Any]) -> Fixture:
    async with unit_of_work(db):
        stage = await get_stage(db, stage_id, lock=True)
        _ensure_editable(stage)
        first_team_id, second_team_id = data["first_team_id"], data.get("second_team_id")
        if first_team_id == second_team_id:
            raise ConfigurationError("A team cannot play against itself")
        stage_team_ids = {item.team_id for item in stage.stage_teams}
        for team_id in (first_team_id, second_team_id):
            if team_id is not None and team_id not in stage_team_ids:
                raise ConfigurationError(f"Team {team_id} is not assigned to stage {stage_id}")

        group_id = data.get("group_id")
        if group_id is not None and group_id not in {group.id for group in stage.groups}:
            raise NotFoundError(f"Group {group_id} not found in stage {stage_id}")

        fixture = Fixture(
            group_id=group_id,
            first_team_id=first_team_id,
            second_team_id=second_team_id,
            round=data.get("round", 1),
            matchday=data.get("matchday"),
            match_number=data.get("match_number"),
            is_bye=second_team_id is None,
            starts_at=data.get("starts_at"),
            duration=data.get("duration") or match_duration(effective_settings(stage)),
            status=FixtureStatus.COMPLETED.value if second_team_id is None else FixtureStatus.UPCOMING.value,
        )
        stage.fixtures.append(fixture)
        await db.flush()
    return fixture


async def schedule_fixtures(
    db: AsyncSession,
    fixture_ids: Sequence[int],
    starts_at: datetime,
    interval_minutes: int,
) -> list[Fixture]:
    if interval_minutes < 0:
        raise ConfigurationError("Interval must not be negative")
    async with unit_of_work(db):
        current = starts_at
        fixtures = []
        for fixture_id in fixture_ids:
            fixture = await get_fixture(db, fixture_id)
            fixture.starts_at = current
            current = current + timedelta(minutes=fixture.duration + interval_minutes)
            fixtures.append(fixture)
    return fixtures


async def reschedule_fixture(db: AsyncSession, fixture_id: int, starts_at: datetime) -> Fixture:
    async with unit_of_work(db):
        fixture = await get_fixture(db, fixture_id)
        fixture.starts_at = starts_at
    return fixture


async def swap_teams(db: AsyncSession, fixture_id: int) -> Fixture:
    async with unit_of_work(db):
        fixture = await get_fixture(db, fixture_id)
        if fixture.second_team_id is None:
            raise PreconditionError("Bye fixture has no opponent to swap with")
        if fixture.status != FixtureStatus.UPCOMING.value:
            raise PreconditionError("Only upcoming fixtures can be swapped")
        fixture.first_team_id, fixture.second_team_id = fixture.second_team_id, fixture.first_team_id
    return fixture


async def delete_stage_fixtures(db: AsyncSession, stage_id: int) -> int:
    async with unit_of_work(db):
        stage = await get_stage(db, stage_id, lock=True)
        _ensure_editable(stage)
        deleted = len(stage.fixtures)
        stage.fixtures.clear()
        stage.rankings.clear()
        logger.info("Deleted %s fixtures of stage %s", deleted, stage_id)
    return deleted


async def submit_result(
    db: AsyncSession,
    fixture_id: int,
    first_team_score: int,
    second_team_score: int,
    winning_team_id: int | None = None,
    refresh_rankings: bool = True,
) -> Fixture:
    """Записывает счет и закрывает матч; таблица пересчитывается в той же транзакции."""
    if first_team_score < 0 or second_team_score < 0:
        raise ConfigurationError("Scores must not be negative")

    async with unit_of_work(db):
        fixture = await get_fixture(db, fixture_id)
        if fixture.is_bye or fixture.second_team_id is None:
            raise PreconditionError("Bye fixture has no result to submit")
        if fixture.status == FixtureStatus.CANCELLED.value:
            raise PreconditionError(f"Fixture {fixture_id} is cancelled")
        if winning_team_id is not None and winning_team_id not in (fixture.first_team_id, fixture.second_team_id):
            raise ConfigurationError(f"Team {winning_team_id} does not play in fixture {fixture_id}")

        stage = await get_stage(db, fixture.stage_id, lock=True)
        _ensure_editable(stage)
        fixture.first_team_score = first_team_score
        fixture.second_team_score = second_team_score
        fixture.winning_team_id = winning_team_id
        fixture.status = FixtureStatus.COMPLETED.value
        await db.flush()

        if refresh_rankings:
            await refresh_stage_rankings(db, stage)
    return fixture


async def cancel_fixture(db: AsyncSession, fixture_id: int) -> Fixture:
    async with unit_of_work(db):
        fixture = await get_fixture(db, fixture_id)
        if fixture.status == FixtureStatus.COMPLETED.value:
            raise PreconditionError(f"Fixture {fixture_id} is already completed")
        fixture.status = FixtureStatus.CANCELLED.value
    return fixture


async def list_stage_fixtures(db: AsyncSession, stage_id: int, round: int | None = None) -> list[Fixture]:
    query = select(Fixture).where(Fixture.stage_id == stage_id)
    if round is not None:
        query = query.where(Fixture.round == round)
    return list((await db.scalars(query.order_by(Fixture.round, Fixture.match_number, Fixture.id))).all())


def fixture_to_dict(fixture: Fixture) -> dict[str, Any]:
    return {
        "id": fixture.id,
        "stage_id": fixture.stage_id,
        "group_id": fixture.group_id,
        "home_team_id": fixture.first_team_id,
        "away_team_id": fixture.second_team_id,
        "round": fixture.round,
        "matchday": fixture.matchday,
        "match_number": fixture.match_number,
        "is_bye": fixture.is_bye,
        "is_second_leg": fixture.is_second_leg,
        "starts_at": fixture.starts_at.isoformat() if fixture.starts_at else None,
        "duration": fixture.duration,
        "status": fixture.status,
        "first_team_score": fixture.first_team_score,
        "second_team_score": fixture.second_team_score,
        "winning_team_id": fixture.winning_team_id,
    }
