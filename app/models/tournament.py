from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, CreatedAtMixin


class TournamentType(str, Enum):
    SINGLE_SESSION = "single_session"
    MULTI_STAGE = "multi_stage"


class TournamentStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class StageType(str, Enum):
    LEAGUE = "league"
    GROUP = "group"
    KNOCKOUT = "knockout"
    SWISS = "swiss"


class StageStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class FixtureStatus(str, Enum):
    UPCOMING = "upcoming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Матчи в этих статусах считаются завершенными для промоушена и закрытия этапа.
FINISHED_FIXTURE_STATUSES = (FixtureStatus.COMPLETED.value, FixtureStatus.CANCELLED.value)


class PromotionRuleType(str, Enum):
    TOP_N = "top_n"
    TOP_PER_GROUP = "top_per_group"
    PLAYOFF = "playoff"
    THRESHOLD = "threshold"
    MANUAL = "manual"


class PromotionAction(str, Enum):
    PROMOTION = "promotion"
    ROLLBACK = "rollback"


class Tournament(CreatedAtMixin, Base):
    __tablename__ = "tournaments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    tournament_type: Mapped[str] = mapped_column(String(20), default=TournamentType.MULTI_STAGE.value)
    settings: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    status: Mapped[str] = mapped_column(String(20), default=TournamentStatus.PENDING.value, index=True)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)

    stages: Mapped[list["Stage"]] = relationship(
        "Stage",
        back_populates="tournament",
        cascade="all, delete-orphan",
        order_by="Stage.order",
    )


class Stage(CreatedAtMixin, Base):
    __tablename__ = "stages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tournament_id: Mapped[int] = mapped_column(ForeignKey("tournaments.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    order: Mapped[int] = mapped_column(Integer, default=1, index=True)
    stage_type: Mapped[str] = mapped_column(String(20), default=StageType.LEAGUE.value)
    settings: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    status: Mapped[str] = mapped_column(String(20), default=StageStatus.PENDING.value, index=True)
    next_stage_id: Mapped[int | None] = mapped_column(ForeignKey("stages.id", ondelete="SET NULL"), nullable=True)

    tournament: Mapped[Tournament] = relationship("Tournament", back_populates="stages")
    groups: Mapped[list["Group"]] = relationship(
        "Group", back_populates="stage", cascade="all, delete-orphan", order_by="Group.id"
    )
    stage_teams: Mapped[list["StageTeam"]] = relationship(
        "StageTeam", back_populates="stage", cascade="all, delete-orphan", order_by="StageTeam.seed"
    )
    fixtures: Mapped[list["Fixture"]] = relationship(
        "Fixture", back_populates="stage", cascade="all, delete-orphan", order_by="Fixture.id"
    )
    rankings: Mapped[list["Ranking"]] = relationship(
        "Ranking", back_populates="stage", cascade="all, delete-orphan", order_by="Ranking.rank"
    )
    promotion: Mapped["StagePromotion | None"] = relationship(
        "StagePromotion",
        back_populates="stage",
        cascade="all, delete-orphan",
        uselist=False,
        foreign_keys="StagePromotion.stage_id",
    )


class Group(Base):
    __tablename__ = "stage_groups"
    __table_args__ = (UniqueConstraint("stage_id", "name", name="uq_stage_group_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    stage_id: Mapped[int] = mapped_column(ForeignKey("stages.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)

    stage: Mapped[Stage] = relationship("Stage", back_populates="groups")


class StageTeam(Base):
    __tablename__ = "stage_teams"
    __table_args__ = (UniqueConstraint("stage_id", "team_id", name="uq_stage_team"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    stage_id: Mapped[int] = mapped_column(ForeignKey("stages.id", ondelete="CASCADE"), index=True)
    # Команды живут во внешнем сервисе, поэтому team_id без внешнего ключа.
    team_id: Mapped[int] = mapped_column(Integer, index=True)
    group_id: Mapped[int | None] = mapped_column(ForeignKey("stage_groups.id", ondelete="SET NULL"), nullable=True)
    seed: Mapped[int] = mapped_column(Integer, default=0)

    stage: Mapped[Stage] = relationship("Stage", back_populates="stage_teams")
    group: Mapped[Group | None] = relationship("Group")


class Fixture(CreatedAtMixin, Base):
    __tablename__ = "fixtures"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    stage_id: Mapped[int] = mapped_column(ForeignKey("stages.id", ondelete="CASCADE"), index=True)
    group_id: Mapped[int | None] = mapped_column(ForeignKey("stage_groups.id", ondelete="SET NULL"), nullable=True)
    first_team_id: Mapped[int] = mapped_column(Integer, index=True)
    second_team_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    round: Mapped[int] = mapped_column(Integer, default=1, index=True)
    matchday: Mapped[int | None] = mapped_column(Integer, nullable=True)
    match_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_bye: Mapped[bool] = mapped_column(Boolean, default=False)
    is_second_leg: Mapped[bool] = mapped_column(Boolean, default=False)
    starts_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    duration: Mapped[int] = mapped_column(Integer, default=12)
    status: Mapped[str] = mapped_column(String(20), default=FixtureStatus.UPCOMING.value, index=True)
    first_team_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    second_team_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    winning_team_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    stage: Mapped[Stage] = relationship("Stage", back_populates="fixtures")


class Ranking(Base):
    __tablename__ = "rankings"
    __table_args__ = (UniqueConstraint("stage_id", "team_id", name="uq_ranking_stage_team"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    stage_id: Mapped[int] = mapped_column(ForeignKey("stages.id", ondelete="CASCADE"), index=True)
    group_id: Mapped[int | None] = mapped_column(ForeignKey("stage_groups.id", ondelete="SET NULL"), nullable=True, index=True)
    team_id: Mapped[int] = mapped_column(Integer, index=True)
    played: Mapped[int] = mapped_column(Integer, default=0)
    wins: Mapped[int] = mapped_column(Integer, default=0)
    draws: Mapped[int] = mapped_column(Integer, default=0)
    losses: Mapped[int] = mapped_column(Integer, default=0)
    goals_for: Mapped[int] = mapped_column(Integer, default=0)
    goals_against: Mapped[int] = mapped_column(Integer, default=0)
    goal_difference: Mapped[int] = mapped_column(Integer, default=0)
    points: Mapped[int] = mapped_column(Integer, default=0)
    rank: Mapped[int] = mapped_column(Integer, default=0)

    stage: Mapped[Stage] = relationship("Stage", back_populates="rankings")


class StagePromotion(Base):
    __tablename__ = "stage_promotions"
    __table_args__ = (UniqueConstraint("stage_id", name="uq_stage_promotion_stage"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    stage_id: Mapped[int] = mapped_column(ForeignKey("stages.id", ondelete="CASCADE"), index=True)
    next_stage_id: Mapped[int | None] = mapped_column(ForeignKey("stages.id", ondelete="SET NULL"), nullable=True)
    rule_type: Mapped[str] = mapped_column(String(20), default=PromotionRuleType.TOP_N.value)
    rule_config: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    stage: Mapped[Stage] = relationship("Stage", back_populates="promotion", foreign_keys=[stage_id])


class PromotionAudit(Base):
    __tablename__ = "promotion_audits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Без внешнего ключа: журнал переживает удаление этапа.
    stage_id: Mapped[int] = mapped_column(Integer, index=True)
    triggered_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    simulated: Mapped[bool] = mapped_column(Boolean, default=False)
    action: Mapped[str] = mapped_column(String(20), default=PromotionAction.PROMOTION.value)
    result: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
