from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.services import fixture_generation, promotion, ranking, stage as stage_service, tournament as tournament_service

router = APIRouter(prefix="/api")


class TournamentIn(BaseModel):
    name: str
    tournament_type: str = "multi_stage"
    settings: dict[str, Any] = Field(default_factory=dict)
    starts_at: datetime | None = None
    created_by: int | None = None
    stages: list[dict[str, Any]] = Field(default_factory=list)


class StageIn(BaseModel):
    name: str
    stage_type: str = "league"
    settings: dict[str, Any] = Field(default_factory=dict)
    order: int | None = None
    next_stage_id: int | None = None


class TeamsIn(BaseModel):
    team_ids: list[int]
    seeds: list[int] | None = None
    group_names: list[str | None] | None = None


class PromotionRuleIn(BaseModel):
    next_stage_id: int
    rule_type: str
    rule_config: dict[str, Any] = Field(default_factory=dict)


class GenerateIn(BaseModel):
    auto_schedule: bool = True
    starts_at: datetime | None = None


class ResultIn(BaseModel):
    first_team_score: int
    second_team_score: int
    winning_team_id: int | None = None
    refresh_rankings: bool = True


class PromotionIn(BaseModel):
    manual_override: dict[str, Any] | None = None
    triggered_by: int | None = None


class RollbackIn(BaseModel):
    triggered_by: int | None = None


# Турниры.
@router.post("/tournaments")
async def create_tournament(payload: TournamentIn, db: AsyncSession = Depends(get_db)):
    tournament = await tournament_service.create_tournament(db, payload.model_dump())
    return {"ok": True, "tournament": tournament_service.tournament_to_dict(tournament)}


@router.post("/tournaments/{tournament_id}/start")
async def start_tournament(tournament_id: int, db: AsyncSession = Depends(get_db)):
    tournament = await tournament_service.start_tournament(db, tournament_id)
    return {"ok": True, "tournament": tournament_service.tournament_to_dict(tournament)}


@router.post("/tournaments/{tournament_id}/complete")
async def complete_tournament(tournament_id: int, db: AsyncSession = Depends(get_db)):
    tournament = await tournament_service.complete_tournament(db, tournament_id)
    return {"ok": True, "tournament": tournament_service.tournament_to_dict(tournament)}


@router.post("/tournaments/{tournament_id}/cancel")
async def cancel_tournament(tournament_id: int, db: AsyncSession = Depends(get_db)):
    tournament = await tournament_service.cancel_tournament(db, tournament_id)
    return {"ok": True, "tournament": tournament_service.tournament_to_dict(tournament)}


# Этапы.
@router.post("/tournaments/{tournament_id}/stages")
async def create_stage(tournament_id: int, payload: StageIn, db: AsyncSession = Depends(get_db)):
    stage = await stage_service.create_stage(db, tournament_id, payload.model_dump())
    return {"ok": True, "stage": stage_service.stage_to_dict(stage)}


@router.get("/stages/{stage_id}")
async def get_stage(stage_id: int, db: AsyncSession = Depends(get_db)):
    stage = await stage_service.get_stage_with_details(db, stage_id)
    return {"ok": True, "stage": stage_service.stage_to_dict(stage)}


@router.post("/stages/{stage_id}/teams")
async def assign_teams(stage_id: int, payload: TeamsIn, db: AsyncSession = Depends(get_db)):
    await stage_service.assign_teams_to_stage(db, stage_id, payload.team_ids, payload.seeds, payload.group_names)
    stage = await stage_service.get_stage_with_details(db, stage_id)
    return {"ok": True, "stage": stage_service.stage_to_dict(stage)}


@router.post("/stages/{stage_id}/activate")
async def activate_stage(stage_id: int, db: AsyncSession = Depends(get_db)):
    stage = await stage_service.activate_stage(db, stage_id)
    return {"ok": True, "stage": stage_service.stage_to_dict(stage)}


@router.post("/stages/{stage_id}/complete")
async def complete_stage(stage_id: int, db: AsyncSession = Depends(get_db)):
    stage = await stage_service.complete_stage(db, stage_id)
    return {"ok": True, "stage": stage_service.stage_to_dict(stage)}


@router.put("/stages/{stage_id}/promotion-rule")
async def set_promotion_rule(stage_id: int, payload: PromotionRuleIn, db: AsyncSession = Depends(get_db)):
    rule = await promotion.set_promotion_rule(db, stage_id, payload.next_stage_id, payload.rule_type, payload.rule_config)
    return {
        "ok": True,
        "promotion_rule": {
            "stage_id": rule.stage_id,
            "next_stage_id": rule.next_stage_id,
            "rule_type": rule.rule_type,
            "rule_config": rule.rule_config,
        },
    }


# Матчи.
@router.post("/stages/{stage_id}/fixtures/preview")
async def preview_fixtures(stage_id: int, db: AsyncSession = Depends(get_db)):
    drafts = await fixture_generation.simulate_fixtures(db, stage_id)
    return {"ok": True, "fixtures": [draft.to_dict() for draft in drafts]}


@router.post("/stages/{stage_id}/fixtures")
async def generate_fixtures(stage_id: int, payload: GenerateIn | None = None, db: AsyncSession = Depends(get_db)):
    payload = payload or GenerateIn()
    fixtures = await fixture_generation.generate_fixtures(
        db, stage_id, auto_schedule=payload.auto_schedule, starts_at=payload.starts_at
    )
    return {"ok": True, "fixtures": [fixture_generation.fixture_to_dict(fixture) for fixture in fixtures]}


@router.post("/stages/{stage_id}/fixtures/next-round")
async def generate_next_round(stage_id: int, payload: GenerateIn | None = None, db: AsyncSession = Depends(get_db)):
    payload = payload or GenerateIn()
    fixtures = await fixture_generation.generate_next_round(
        db, stage_id, auto_schedule=payload.auto_schedule, starts_at=payload.starts_at
    )
    return {"ok": True, "fixtures": [fixture_generation.fixture_to_dict(fixture) for fixture in fixtures]}


@router.get("/stages/{stage_id}/fixtures")
async def list_fixtures(stage_id: int, round: int | None = Query(None), db: AsyncSession = Depends(get_db)):
    fixtures = await fixture_generation.list_stage_fixtures(db, stage_id, round=round)
    return {"ok": True, "fixtures": [fixture_generation.fixture_to_dict(fixture) for fixture in fixtures]}


@router.post("/fixtures/{fixture_id}/result")
async def submit_result(fixture_id: int, payload: ResultIn, db: AsyncSession = Depends(get_db)):
    fixture = await fixture_generation.submit_result(
        db,
        fixture_id,
        payload.first_team_score,
        payload.second_team_score,
        winning_team_id=payload.winning_team_id,
        refresh_rankings=payload.refresh_rankings,
    )
    return {"ok": True, "fixture": fixture_generation.fixture_to_dict(fixture)}


# Таблицы.
@router.get("/stages/{stage_id}/rankings")
async def get_rankings(stage_id: int, db: AsyncSession = Depends(get_db)):
    rankings = await ranking.get_rankings_for_stage(db, stage_id)
    return {"ok": True, "rankings": [ranking.ranking_to_dict(row) for row in rankings]}


@router.post("/stages/{stage_id}/rankings/refresh")
async def refresh_rankings(stage_id: int, db: AsyncSession = Depends(get_db)):
    rankings = await ranking.refresh_rankings(db, stage_id)
    return {"ok": True, "rankings": [ranking.ranking_to_dict(row) for row in rankings]}


# Промоушен.
@router.get("/stages/{stage_id}/promotion/simulate")
async def simulate_promotion(stage_id: int, record_audit: bool = Query(False), db: AsyncSession = Depends(get_db)):
    result = await promotion.simulate_promotion(db, stage_id, record_audit=record_audit)
    return {"ok": True, **result.to_dict()}


@router.post("/stages/{stage_id}/promotion")
async def execute_promotion(stage_id: int, payload: PromotionIn | None = None, db: AsyncSession = Depends(get_db)):
    payload = payload or PromotionIn()
    result = await promotion.execute_promotion(
        db, stage_id, manual_override=payload.manual_override, triggered_by=payload.triggered_by
    )
    return {"ok": True, **result.to_dict()}


@router.get("/stages/{stage_id}/promotion/history")
async def promotion_history(stage_id: int, db: AsyncSession = Depends(get_db)):
    audits = await promotion.get_promotion_history(db, stage_id)
    effective = promotion.effective_promotion(audits)
    return {
        "ok": True,
        "effective_audit_id": effective.id if effective else None,
        "audits": [promotion.audit_to_dict(audit) for audit in audits],
    }


@router.post("/promotion-audits/{audit_id}/rollback")
async def rollback_promotion(audit_id: int, payload: RollbackIn | None = None, db: AsyncSession = Depends(get_db)):
    payload = payload or RollbackIn()
    audit = await promotion.rollback_promotion(db, audit_id, triggered_by=payload.triggered_by)
    return {"ok": True, "audit": promotion.audit_to_dict(audit)}
