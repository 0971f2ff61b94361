"""Промоушен команд между этапами: предпросмотр, выполнение, откат и журнал.

Журнал PromotionAudit только дополняется. Откат не удаляет запись промоушена,
а добавляет запись rollback со ссылкой на нее; действующим считается
последний промоушен, на который не ссылается ни один rollback.
"""

import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConfigurationError, NotFoundError, PreconditionError
from app.db.session import unit_of_work
from app.models.tournament import (
    PromotionAction,
    PromotionAudit,
    PromotionRuleType,
    Stage,
    StagePromotion,
    StageStatus,
    StageTeam,
    StageType,
)
from app.services.promotion_handlers import ensure_valid_config, get_promotion_handler
from app.services.ranking import rankings_for
from app.services.schemas import PromotionResult
from app.services.stage import activate_stage_in_session, ensure_not_cancelled, get_stage, unfinished_fixtures_count

logger = logging.getLogger(__name__)


def stage_can_promote(stage: Stage) -> bool:
    # Правило есть и ни один матч не завис в промежуточном статусе.
    return stage.promotion is not None and unfinished_fixtures_count(stage) == 0


async def can_promote(db: AsyncSession, stage_id: int) -> bool:
    return stage_can_promote(await get_stage(db, stage_id))


def effective_promotion(audits: Sequence[PromotionAudit]) -> PromotionAudit | None:
    rolled_back = {
        audit.result.get("rolled_back_audit_id")
        for audit in audits
        if audit.action == PromotionAction.ROLLBACK.value
    }
    for audit in sorted(audits, key=lambda item: item.id, reverse=True):
        if audit.action != PromotionAction.PROMOTION.value or audit.simulated:
            continue
        if audit.id not in rolled_back:
            return audit
    return None


async def get_promotion_history(db: AsyncSession, stage_id: int) -> list[PromotionAudit]:
    return list(
        (
            await db.scalars(
                select(PromotionAudit)
                .where(PromotionAudit.stage_id == stage_id)
                .order_by(PromotionAudit.created_at.desc(), PromotionAudit.id.desc())
            )
        ).all()
    )


def _next_stage_id(stage: Stage) -> int:
    if stage.promotion is None:
        raise ConfigurationError(f"Stage {stage.id} has no promotion rule")
    # Целевой этап задается только правилом; stage.next_stage_id служит навигацией.
    next_stage_id = stage.promotion.next_stage_id
    if next_stage_id is None:
        raise ConfigurationError(f"Promotion rule of stage {stage.id} has no next stage")
    return next_stage_id


def _is_id_list(values: Any) -> bool:
    return isinstance(values, list) and all(
        isinstance(value, int) and not isinstance(value, bool) and value > 0 for value in values
    )


def _override_winners(stage: Stage, manual_override: dict[str, Any]) -> tuple[list[int], list[int]]:
    team_ids = manual_override.get("team_ids")
    if not _is_id_list(team_ids) or not team_ids:
        raise ConfigurationError("Manual override requires a non-empty list of positive team ids")
    if len(set(team_ids)) != len(team_ids):
        raise ConfigurationError("Manual override contains duplicate teams")
    outsiders = sorted(set(team_ids) - {item.team_id for item in stage.stage_teams})
    if outsiders:
        raise ConfigurationError(f"Teams {outsiders} do not play in stage {stage.id}")

    seeds = manual_override.get("seeds")
    if seeds is None:
        return list(team_ids), list(range(1, len(team_ids) + 1))
    if not _is_id_list(seeds) or len(seeds) != len(team_ids):
        raise ConfigurationError("Manual override seeds must be positive integers matching team_ids one to one")
    return list(team_ids), list(seeds)


def select_promoted_teams(stage: Stage, manual_override: dict[str, Any] | None = None) -> tuple[list[int], list[int]]:
    """Команды для следующего этапа и их посев."""
    if manual_override:
        return _override_winners(stage, manual_override)

    if stage.promotion is None:
        raise ConfigurationError(f"Stage {stage.id} has no promotion rule")
    handler = get_promotion_handler(stage.promotion.rule_type)
    rankings = list(stage.rankings)
    if not rankings and stage.stage_type != StageType.KNOCKOUT.value:
        # Таблица еще не сохранялась: считаем ее на лету.
        rankings = rankings_for(stage)
    winners = list(dict.fromkeys(handler.select_winners(stage, rankings)))
    return winners, list(range(1, len(winners) + 1))


async def simulate_promotion(
    db: AsyncSession,
    stage_id: int,
    record_audit: bool = False,
    triggered_by: int | None = None,
) -> PromotionResult:
    """Предпросмотр: этапы и составы не меняются, в журнал пишется только по запросу."""
    stage = await get_stage(db, stage_id)
    next_stage_id = _next_stage_id(stage)
    team_ids, seeds = select_promoted_teams(stage)
    result = PromotionResult(promoted_team_ids=team_ids, next_stage_id=next_stage_id, simulated=True, seeds=seeds)

    if record_audit:
        async with unit_of_work(db):
            db.add(
                PromotionAudit(
                    stage_id=stage_id,
                    triggered_by=triggered_by,
                    simulated=True,
                    action=PromotionAction.PROMOTION.value,
                    result={**result.to_dict(), "rule_type": stage.promotion.rule_type},
                )
            )
    return result


async def execute_promotion(
    db: AsyncSession,
    stage_id: int,
    manual_override: dict[str, Any] | None = None,
    triggered_by: int | None = None,
) -> PromotionResult:
    async with unit_of_work(db):
        stage = await get_stage(db, stage_id, lock=True)
        ensure_not_cancelled(stage)
        next_stage_id = _next_stage_id(stage)
        if unfinished_fixtures_count(stage):
            raise PreconditionError(f"Stage {stage_id} has unfinished fixtures")
        if effective_promotion(await get_promotion_history(db, stage_id)) is not None:
            raise PreconditionError(f"Stage {stage_id} is already promoted")

        next_stage = await get_stage(db, next_stage_id, lock=True)
        ensure_not_cancelled(next_stage)
        if next_stage.tournament_id != stage.tournament_id:
            raise ConfigurationError("Stages must be in the same tournament")

        team_ids, seeds = select_promoted_teams(stage, manual_override)
        if not team_ids:
            raise PreconditionError(f"No teams qualified for promotion from stage {stage_id}")

        # Запоминаем, что создали и какие seed переписали, чтобы откат вернул состав как было.
        existing = {item.team_id: item for item in next_stage.stage_teams}
        created_team_ids: list[int] = []
        previous_seeds: dict[str, int] = {}
        for team_id, seed in zip(team_ids, seeds):
            item = existing.get(team_id)
            if item is None:
                next_stage.stage_teams.append(StageTeam(team_id=team_id, seed=seed))
                created_team_ids.append(team_id)
            else:
                previous_seeds[str(team_id)] = item.seed
                item.seed = seed

        stage.status = StageStatus.COMPLETED.value
        result = PromotionResult(promoted_team_ids=team_ids, next_stage_id=next_stage_id, simulated=False, seeds=seeds)
        db.add(
            PromotionAudit(
                stage_id=stage_id,
                triggered_by=triggered_by,
                simulated=False,
                action=PromotionAction.PROMOTION.value,
                result={
                    **result.to_dict(),
                    "rule_type": stage.promotion.rule_type,
                    "manual_override": bool(manual_override),
                    "created_team_ids": created_team_ids,
                    "previous_seeds": previous_seeds,
                },
            )
        )
        await db.flush()
        logger.info("Stage %s promoted %s teams to stage %s", stage_id, len(team_ids), next_stage_id)
    return result


async def rollback_promotion(db: AsyncSession, audit_id: int, triggered_by: int | None = None) -> PromotionAudit:
    async with unit_of_work(db):
        audit = await db.get(PromotionAudit, audit_id)
        if audit is None:
            raise NotFoundError(f"Promotion audit {audit_id} not found")
        if audit.simulated or audit.action != PromotionAction.PROMOTION.value:
            raise PreconditionError("Only executed promotions can be rolled back")

        history = await get_promotion_history(db, audit.stage_id)
        if any(
            item.action == PromotionAction.ROLLBACK.value and item.result.get("rolled_back_audit_id") == audit.id
            for item in history
        ):
            raise PreconditionError(f"Promotion audit {audit_id} is already rolled back")
        if effective_promotion(history) is not audit:
            raise PreconditionError(f"Promotion audit {audit_id} is not the effective promotion")

        stage = await get_stage(db, audit.stage_id, lock=True)
        next_stage = await get_stage(db, audit.result["next_stage_id"], lock=True)
        if next_stage.fixtures:
            raise PreconditionError(f"Stage {next_stage.id} already has fixtures")

        created = set(audit.result.get("created_team_ids", []))
        previous_seeds = audit.result.get("previous_seeds", {})
        for item in list(next_stage.stage_teams):
            if item.team_id in created:
                next_stage.stage_teams.remove(item)
            elif str(item.team_id) in previous_seeds:
                item.seed = previous_seeds[str(item.team_id)]

        next_stage_id = next_stage.id
        await db.flush()
        # Активный этап в турнире один: следующий этап, если его уже запустили, уходит в pending.
        await activate_stage_in_session(db, stage, reopen=True)
        rollback = PromotionAudit(
            stage_id=stage.id,
            triggered_by=triggered_by,
            simulated=False,
            action=PromotionAction.ROLLBACK.value,
            result={
                "rolled_back_audit_id": audit.id,
                "next_stage_id": next_stage_id,
                "removed_team_ids": sorted(created),
                "restored_seeds": previous_seeds,
            },
        )
        db.add(rollback)
        await db.flush()
        logger.info("Promotion audit %s of stage %s rolled back", audit.id, stage.id)
    return rollback


async def set_promotion_rule(
    db: AsyncSession,
    stage_id: int,
    next_stage_id: int,
    rule_type: PromotionRuleType | str,
    rule_config: dict[str, Any] | None = None,
) -> StagePromotion:
    rule_config = rule_config or {}
    handler = get_promotion_handler(rule_type)
    ensure_valid_config(handler, rule_config)

    async with unit_of_work(db):
        stage = await get_stage(db, stage_id, lock=True)
        ensure_not_cancelled(stage)
        if handler.rule_type == PromotionRuleType.PLAYOFF and stage.stage_type != StageType.KNOCKOUT.value:
            raise ConfigurationError("Playoff promotion requires a knockout stage")
        if next_stage_id == stage.id:
            raise ConfigurationError("Stage cannot promote into itself")
        next_stage = await db.get(Stage, next_stage_id)
        if next_stage is None:
            raise NotFoundError(f"Stage {next_stage_id} not found")
        if next_stage.tournament_id != stage.tournament_id:
            raise ConfigurationError("Stages must be in the same tournament")

        if stage.promotion is None:
            stage.promotion = StagePromotion(stage_id=stage.id)
        stage.promotion.next_stage_id = next_stage_id
        stage.promotion.rule_type = handler.rule_type.value
        stage.promotion.rule_config = rule_config
        stage.next_stage_id = next_stage_id
        await db.flush()
        promotion = stage.promotion
    return promotion


def audit_to_dict(audit: PromotionAudit) -> dict[str, Any]:
    return {
        "id": audit.id,
        "stage_id": audit.stage_id,
        "triggered_by": audit.triggered_by,
        "simulated": audit.simulated,
        "action": audit.action,
        "result": audit.result,
        "created_at": audit.created_at.isoformat() if audit.created_at else None,
    }
