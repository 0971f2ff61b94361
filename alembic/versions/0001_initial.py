"""initial

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Создаем таблицу турниров.
    op.create_table(
        "tournaments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("tournament_type", sa.String(length=20), nullable=False),
        sa.Column("settings", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("starts_at", sa.DateTime(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_tournaments_status", "tournaments", ["status"])

    # Создаем таблицу этапов; next_stage_id ссылается на этап того же турнира.
    op.create_table(
        "stages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tournament_id", sa.Integer(), sa.ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False),
        sa.Column("stage_type", sa.String(length=20), nullable=False),
        sa.Column("settings", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("next_stage_id", sa.Integer(), sa.ForeignKey("stages.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_stages_tournament_id", "stages", ["tournament_id"])
    op.create_index("ix_stages_order", "stages", ["order"])
    op.create_index("ix_stages_status", "stages", ["status"])

    # Создаем таблицу групп этапа.
    op.create_table(
        "stage_groups",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("stage_id", sa.Integer(), sa.ForeignKey("stages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.UniqueConstraint("stage_id", "name", name="uq_stage_group_name"),
    )
    op.create_index("ix_stage_groups_stage_id", "stage_groups", ["stage_id"])

    # Создаем таблицу участников этапа.
    op.create_table(
        "stage_teams",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("stage_id", sa.Integer(), sa.ForeignKey("stages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("team_id", sa.Integer(), nullable=False),
        sa.Column("group_id", sa.Integer(), sa.ForeignKey("stage_groups.id", ondelete="SET NULL"), nullable=True),
        sa.Column("seed", sa.Integer(), nullable=False),
        sa.UniqueConstraint("stage_id", "team_id", name="uq_stage_team"),
    )
    op.create_index("ix_stage_teams_stage_id", "stage_teams", ["stage_id"])
    op.create_index("ix_stage_teams_team_id", "stage_teams", ["team_id"])

    # Создаем таблицу матчей.
    op.create_table(
        "fixtures",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("stage_id", sa.Integer(), sa.ForeignKey("stages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("group_id", sa.Integer(), sa.ForeignKey("stage_groups.id", ondelete="SET NULL"), nullable=True),
        sa.Column("first_team_id", sa.Integer(), nullable=False),
        sa.Column("second_team_id", sa.Integer(), nullable=True),
        sa.Column("round", sa.Integer(), nullable=False),
        sa.Column("matchday", sa.Integer(), nullable=True),
        sa.Column("match_number", sa.Integer(), nullable=True),
        sa.Column("is_bye", sa.Boolean(), nullable=False),
        sa.Column("is_second_leg", sa.Boolean(), nullable=False),
        sa.Column("starts_at", sa.DateTime(), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("first_team_score", sa.Integer(), nullable=True),
        sa.Column("second_team_score", sa.Integer(), nullable=True),
        sa.Column("winning_team_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_fixtures_stage_id", "fixtures", ["stage_id"])
    op.create_index("ix_fixtures_first_team_id", "fixtures", ["first_team_id"])
    op.create_index("ix_fixtures_second_team_id", "fixtures", ["second_team_id"])
    op.create_index("ix_fixtures_round", "fixtures", ["round"])
    op.create_index("ix_fixtures_status", "fixtures", ["status"])

    # Создаем таблицу турнирных таблиц.
    op.create_table(
        "rankings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("stage_id", sa.Integer(), sa.ForeignKey("stages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("group_id", sa.Integer(), sa.ForeignKey("stage_groups.id", ondelete="SET NULL"), nullable=True),
        sa.Column("team_id", sa.Integer(), nullable=False),
        sa.Column("played", sa.Integer(), nullable=False),
        sa.Column("wins", sa.Integer(), nullable=False),
        sa.Column("draws", sa.Integer(), nullable=False),
        sa.Column("losses", sa.Integer(), nullable=False),
        sa.Column("goals_for", sa.Integer(), nullable=False),
        sa.Column("goals_against", sa.Integer(), nullable=False),
        sa.Column("goal_difference", sa.Integer(), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.UniqueConstraint("stage_id", "team_id", name="uq_ranking_stage_team"),
    )
    op.create_index("ix_rankings_stage_id", "rankings", ["stage_id"])
    op.create_index("ix_rankings_group_id", "rankings", ["group_id"])
    op.create_index("ix_rankings_team_id", "rankings", ["team_id"])

    # Создаем таблицу правил промоушена.
    op.create_table(
        "stage_promotions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("stage_id", sa.Integer(), sa.ForeignKey("stages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("next_stage_id", sa.Integer(), sa.ForeignKey("stages.id", ondelete="SET NULL"), nullable=True),
        sa.Column("rule_type", sa.String(length=20), nullable=False),
        sa.Column("rule_config", sa.JSON(), nullable=False),
        sa.UniqueConstraint("stage_id", name="uq_stage_promotion_stage"),
    )
    op.create_index("ix_stage_promotions_stage_id", "stage_promotions", ["stage_id"])

    # Журнал промоушенов без внешнего ключа: записи переживают удаление этапа.
    op.create_table(
        "promotion_audits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("stage_id", sa.Integer(), nullable=False),
        sa.Column("triggered_by", sa.Integer(), nullable=True),
        sa.Column("simulated", sa.Boolean(), nullable=False),
        sa.Column("action", sa.String(length=20), nullable=False),
        sa.Column("result", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_promotion_audits_stage_id", "promotion_audits", ["stage_id"])
    op.create_index("ix_promotion_audits_created_at", "promotion_audits", ["created_at"])


def downgrade() -> None:
    op.drop_table("promotion_audits")
    op.drop_table("stage_promotions")
    op.drop_table("rankings")
    op.drop_table("fixtures")
    op.drop_table("stage_teams")
    op.drop_table("stage_groups")
    op.drop_table("stages")
    op.drop_table("tournaments")
