"""Стратегии этапов: какой генератор пар и какие правила рейтинга нужны каждому формату.

Стратегии не ходят в базу: сервисы передают им участников в порядке посева,
матчи этапа и уже объединенные настройки (этап поверх турнира).
"""

import logging
import random
from collections import defaultdict
from collections.abc import Mapping, Sequence
from typing import Any

from app.core.config import settings as app_settings
from app.core.errors import ConfigurationError, PreconditionError
from app.models.tournament import FINISHED_FIXTURE_STATUSES, Fixture, FixtureStatus, Stage, StageType
from app.services import bracket, ranking_calculator, round_robin, swiss
from app.services.schemas import CompletedFixture, FixtureDraft, RankingRow, StageTeamEntry
from app.services.tie_breakers import validate_rules

logger = logging.getLogger(__name__)

# Настройки, которые этап наследует от турнира, если не задал сам.
INHERITED_SETTINGS = ("scoring", "tie_breakers")


def effective_settings(stage: Stage) -> dict[str, Any]:
    tournament_settings = (stage.tournament.settings if stage.tournament else None) or {}
    merged = {key: tournament_settings[key] for key in INHERITED_SETTINGS if key in tournament_settings}
    merged.update(stage.settings or {})
    return merged


def stage_entries(stage: Stage) -> list[StageTeamEntry]:
    # Порядок посева; при равных seed решает порядок добавления.
    group_names = {group.id: group.name for group in stage.groups}
    ordered = sorted(stage.stage_teams, key=lambda item: (item.seed, item.id or 0))
    return [
        StageTeamEntry(
            team_id=item.team_id,
            seed=item.seed,
            group_id=item.group_id,
            group_name=group_names.get(item.group_id),
        )
        for item in ordered
    ]


def completed_fixtures(fixtures: Sequence[Fixture]) -> list[CompletedFixture]:
    result = []
    for fixture in fixtures:
        if fixture.is_bye:
            result.append(
                CompletedFixture(fixture.first_team_id, None, None, None, is_bye=True)
            )
        elif fixture.status == FixtureStatus.COMPLETED.value:
            result.append(
                CompletedFixture(
                    fixture.first_team_id,
                    fixture.second_team_id,
                    fixture.first_team_score,
                    fixture.second_team_score,
                )
            )
    return result


def _positive_int(config: Mapping[str, Any], key: str) -> None:
    value = config.get(key)
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationError(f"Stage setting '{key}' must be a positive integer")


def validate_common_settings(config: Mapping[str, Any]) -> dict[str, Any]:
    for key in ("match_duration", "match_interval", "rounds", "group_size", "teams_per_group"):
        _positive_int(config, key)

    scoring = config.get("scoring")
    if scoring is not None:
        if not isinstance(scoring, Mapping):
            raise ConfigurationError("Stage setting 'scoring' must be an object")
        unknown = set(scoring) - {"win", "draw", "loss"}
        if unknown:
            raise ConfigurationError(f"Unknown scoring keys: {', '.join(sorted(unknown))}")

    tie_breakers = config.get("tie_breakers")
    if tie_breakers is not None:
        if not isinstance(tie_breakers, list):
            raise ConfigurationError("Stage setting 'tie_breakers' must be a list")
        validate_rules(tie_breakers)
    return dict(config)


def _rank_rows(
    entries: Sequence[StageTeamEntry],
    fixtures: Sequence[Fixture],
    config: Mapping[str, Any],
    group_id: int | None = None,
    rng: random.Random | None = None,
) -> list[RankingRow]:
    completed = completed_fixtures(fixtures)
    rows = ranking_calculator.calculate(
        completed,
        [entry.team_id for entry in entries],
        scoring=config.get("scoring"),
        group_id=group_id,
    )
    rules = config.get("tie_breakers") or app_settings.default_tie_breakers
    return ranking_calculator.apply_tie_breakers(rows, rules, completed, rng=rng)


class StageStrategy:
    stage_type: StageType

    def validate_settings(self, config: Mapping[str, Any]) -> dict[str, Any]:
        return validate_common_settings(config)

    def split_into_groups(
        self,
        entries: Sequence[StageTeamEntry],
        config: Mapping[str, Any],
    ) -> dict[str, list[StageTeamEntry]]:
        # Групп нет у всех форматов, кроме группового.
        return {}

    def generate_fixtures(
        self,
        entries: Sequence[StageTeamEntry],
        config: Mapping[str, Any],
        rng: random.Random | None = None,
    ) -> list[FixtureDraft]:
        raise NotImplementedError

    def compute_rankings(
        self,
        entries: Sequence[StageTeamEntry],
        fixtures: Sequence[Fixture],
        config: Mapping[str, Any],
        rng: random.Random | None = None,
    ) -> list[RankingRow]:
        raise NotImplementedError

    def generate_next_round(
        self,
        entries: Sequence[StageTeamEntry],
        fixtures: Sequence[Fixture],
        config: Mapping[str, Any],
        rng: random.Random | None = None,
    ) -> list[FixtureDraft]:
        raise PreconditionError(f"{self.stage_type.value} stage has no next round")


class LeagueStrategy(StageStrategy):
    stage_type = StageType.LEAGUE

    def generate_fixtures(self, entries, config, rng=None):
        if len(entries) < 2:
            raise ConfigurationError("League stage needs at least 2 teams")
        return round_robin.generate_round_robin(
            [entry.team_id for entry in entries],
            rounds=config.get("rounds", 1),
            reverse_home_away=bool(config.get("home_away", False)),
        )

    def compute_rankings(self, entries, fixtures, config, rng=None):
        return _rank_rows(entries, fixtures, config, rng=rng)


class GroupStrategy(StageStrategy):
    stage_type = StageType.GROUP

    @staticmethod
    def group_size(config: Mapping[str, Any]) -> int:
        return config.get("teams_per_group") or config.get("group_size") or app_settings.default_group_size

    def split_into_groups(self, entries, config):
        """Команды с назначенной группой остаются в ней, остальные делятся по посеву."""
        groups: dict[str, list[StageTeamEntry]] = defaultdict(list)
        unassigned = []
        for entry in entries:
            if entry.group_name:
                groups[entry.group_name].append(entry)
            else:
                unassigned.append(entry)

        size = self.group_size(config)
        index = len(groups)
        for start in range(0, len(unassigned), size):
            name = f"Group {chr(65 + index)}"
            while name in groups:
                index += 1
                name = f"Group {chr(65 + index)}"
            groups[name] = list(unassigned[start:start + size])
            index += 1
        return dict(groups)

    def generate_fixtures(self, entries, config, rng=None):
        if len(entries) < 2:
            raise ConfigurationError("Group stage needs at least 2 teams")
        drafts: list[FixtureDraft] = []
        for name, members in self.split_into_groups(entries, config).items():
            group_drafts = round_robin.generate_round_robin(
                [entry.team_id for entry in members],
                rounds=config.get("rounds", 1),
                reverse_home_away=bool(config.get("home_away", False)),
            )
            for draft in group_drafts:
                draft.group_name = name
            drafts.extend(group_drafts)
        return drafts

    def compute_rankings(self, entries, fixtures, config, rng=None):
        # Место считается внутри группы, поэтому нумерация начинается с 1 в каждой.
        members_by_group: dict[int | None, list[StageTeamEntry]] = defaultdict(list)
        for entry in entries:
            members_by_group[entry.group_id].append(entry)
        fixtures_by_group: dict[int | None, list[Fixture]] = defaultdict(list)
        for fixture in fixtures:
            fixtures_by_group[fixture.group_id].append(fixture)

        rows: list[RankingRow] = []
        for group_id in sorted(members_by_group, key=lambda value: (value is None, value or 0)):
            rows.extend(
                _rank_rows(members_by_group[group_id], fixtures_by_group[group_id], config, group_id=group_id, rng=rng)
            )
        return rows


class KnockoutStrategy(StageStrategy):
    stage_type = StageType.KNOCKOUT

    def generate_fixtures(self, entries, config, rng=None):
        if len(entries) < 2:
            raise ConfigurationError("Knockout stage needs at least 2 teams")
        return bracket.generate_bracket(
            [entry.team_id for entry in entries],
            single_leg=bool(config.get("single_leg", True)),
        )

    def compute_rankings(self, entries, fixtures, config, rng=None):
        return []

    def generate_next_round(self, entries, fixtures, config, rng=None):
        if not fixtures:
            raise PreconditionError("Knockout bracket has not been generated yet")
        last_round = max(fixture.round for fixture in fixtures)
        round_fixtures = [fixture for fixture in fixtures if fixture.round == last_round]
        # Команды с баем проходят во второй раунд на свою позицию в сетке.
        winners = bracket.round_advancers([entry.team_id for entry in entries], round_fixtures, last_round)

        ordered_winners = list(winners.values())
        if len(ordered_winners) < 2:
            raise PreconditionError("Knockout bracket is already decided")
        return bracket.generate_next_round(
            ordered_winners,
            round=last_round + 1,
            single_leg=bool(config.get("single_leg", True)),
        )


class SwissStrategy(StageStrategy):
    stage_type = StageType.SWISS

    def total_rounds(self, entries: Sequence[StageTeamEntry], config: Mapping[str, Any]) -> int:
        return config.get("rounds") or swiss.recommended_rounds(len(entries))

    def generate_fixtures(self, entries, config, rng=None):
        if len(entries) < 2:
            raise ConfigurationError("Swiss stage needs at least 2 teams")
        return swiss.generate_swiss(
            [entry.team_id for entry in entries],
            round=1,
            rng=rng,
            shuffle=bool(config.get("shuffle", True)),
        )

    def compute_rankings(self, entries, fixtures, config, rng=None):
        return _rank_rows(entries, fixtures, config, rng=rng)

    def generate_next_round(self, entries, fixtures, config, rng=None):
        next_round = max((fixture.round for fixture in fixtures), default=0) + 1
        if next_round > self.total_rounds(entries, config):
            raise PreconditionError("All Swiss rounds have already been generated")
        if any(fixture.status not in FINISHED_FIXTURE_STATUSES for fixture in fixtures):
            raise PreconditionError("Current Swiss round is not finished")

        standings = self.compute_rankings(entries, fixtures, config)
        previous = [
            FixtureDraft(
                home_team_id=fixture.first_team_id,
                away_team_id=fixture.second_team_id,
                round=fixture.round,
                is_bye=fixture.is_bye,
            )
            for fixture in fixtures
        ]
        return swiss.generate_swiss(
            [entry.team_id for entry in entries],
            standings=standings,
            previous_pairings=previous,
            round=next_round,
            rng=rng,
        )


def get_stage_strategy(stage_type: StageType | str) -> StageStrategy:
    try:
        stage_type = StageType(stage_type)
    except ValueError as exc:
        raise ConfigurationError(f"Unknown stage type: {stage_type}") from exc

    match stage_type:
        case StageType.LEAGUE:
            return LeagueStrategy()
        case StageType.GROUP:
            return GroupStrategy()
        case StageType.KNOCKOUT:
            return KnockoutStrategy()
        case StageType.SWISS:
            return SwissStrategy()
