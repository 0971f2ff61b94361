"""Сворачивает завершенные матчи в агрегаты команд и сортирует их цепочкой тай-брейков."""

import random
from collections.abc import Iterable, Mapping, Sequence
from functools import cmp_to_key

from app.core.config import settings
from app.services.schemas import CompletedFixture, RankingRow
from app.services.tie_breakers import compare_rows, random_keys_for, validate_rules


def resolve_scoring(scoring: Mapping[str, int] | None = None) -> dict[str, int]:
    resolved = dict(settings.default_scoring)
    if scoring:
        resolved.update({key: int(value) for key, value in scoring.items() if key in resolved})
    return resolved


def _apply_result(row: RankingRow, scored: int, conceded: int, scoring: Mapping[str, int]) -> None:
    row.played += 1
    row.goals_for += scored
    row.goals_against += conceded
    if scored > conceded:
        row.wins += 1
        row.points += scoring["win"]
    elif scored < conceded:
        row.losses += 1
        row.points += scoring["loss"]
    else:
        row.draws += 1
        row.points += scoring["draw"]


def calculate(
    fixtures: Iterable[CompletedFixture],
    team_ids: Sequence[int],
    scoring: Mapping[str, int] | None = None,
    group_id: int | None = None,
    bye_goals: int | None = None,
) -> list[RankingRow]:
    """Считает строки рейтинга для всех team_ids, включая команды без матчей.

    Бай засчитывается победой ``bye_goals``:0. Результат отсортирован только по очкам;
    сортировка стабильна, поэтому при равенстве сохраняется порядок team_ids (порядок посева).
    """
    scoring = resolve_scoring(scoring)
    bye_goals = settings.swiss_bye_goals if bye_goals is None else bye_goals
    rows = {team_id: RankingRow(team_id=team_id, group_id=group_id) for team_id in team_ids}

    for fixture in fixtures:
        if fixture.is_bye or fixture.away_team_id is None:
            home = rows.get(fixture.home_team_id)
            if home is not None:
                _apply_result(home, bye_goals, 0, scoring)
            continue
        if fixture.home_score is None or fixture.away_score is None:
            continue

        home = rows.get(fixture.home_team_id)
        away = rows.get(fixture.away_team_id)
        if home is not None:
            _apply_result(home, fixture.home_score, fixture.away_score, scoring)
        if away is not None:
            _apply_result(away, fixture.away_score, fixture.home_score, scoring)

    for row in rows.values():
        row.goal_difference = row.goals_for - row.goals_against

    return sorted(rows.values(), key=lambda row: row.points, reverse=True)


def assign_ranks(rows: list[RankingRow]) -> list[RankingRow]:
    # Места 1..N подряд, без общих мест.
    for position, row in enumerate(rows, start=1):
        row.rank = position
    return rows


def apply_tie_breakers(
    rows: Sequence[RankingRow],
    rule_names: Sequence[str],
    fixtures: Sequence[CompletedFixture] = (),
    rng: random.Random | None = None,
) -> list[RankingRow]:
    # Очки всегда первичный ключ таблицы, цепочка разбирает только равные по очкам.
    rules = ["points", *(rule for rule in validate_rules(rule_names) if rule != "points")]
    random_keys = random_keys_for(rows, rng) if "random" in rules else None
    ordered = sorted(rows, key=cmp_to_key(lambda a, b: compare_rows(a, b, rules, fixtures, random_keys)))
    return assign_ranks(ordered)


def standings_sort_key(row: RankingRow) -> tuple[int, int, int]:
    return (row.points, row.goal_difference, row.goals_for)
