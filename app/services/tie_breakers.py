"""Правила сравнения двух строк рейтинга для цепочки тай-брейков.

Компаратор возвращает отрицательное число, если команда ``a`` должна стоять выше,
положительное, если выше ``b``, и 0 при равенстве по правилу.
"""

import random
from collections.abc import Mapping, Sequence

from app.core.errors import ConfigurationError
from app.services.schemas import CompletedFixture, RankingRow

SUPPORTED_RULES = (
    "points",
    "goal_difference",
    "goals_for",
    "goals_against",
    "wins",
    "head_to_head",
    "random",
)


def validate_rules(rule_names: Sequence[str]) -> list[str]:
    unknown = [rule for rule in rule_names if rule not in SUPPORTED_RULES]
    if unknown:
        raise ConfigurationError(f"Unknown tie-break rule: {', '.join(unknown)}")
    return list(rule_names)


def compare_head_to_head(
    a: RankingRow,
    b: RankingRow,
    fixtures: Sequence[CompletedFixture] = (),
) -> int:
    # Личные встречи пока не учитываются: правило всегда дает равенство.
    return 0


def random_keys_for(rows: Sequence[RankingRow], rng: random.Random | None = None) -> dict[int, float]:
    # Один случайный ключ на команду за сортировку, чтобы компаратор оставался согласованным.
    rng = rng or random.Random()
    return {row.team_id: rng.random() for row in rows}


def compare_by_rule(
    a: RankingRow,
    b: RankingRow,
    rule: str,
    fixtures: Sequence[CompletedFixture] = (),
    random_keys: Mapping[int, float] | None = None,
) -> int:
    match rule:
        case "points":
            return b.points - a.points
        case "goal_difference":
            return b.goal_difference - a.goal_difference
        case "goals_for":
            return b.goals_for - a.goals_for
        case "goals_against":
            return a.goals_against - b.goals_against
        case "wins":
            return b.wins - a.wins
        case "head_to_head":
            return compare_head_to_head(a, b, fixtures)
        case "random":
            if random_keys is None:
                raise ConfigurationError("random tie-break requires a random source")
            left, right = random_keys[a.team_id], random_keys[b.team_id]
            return (left > right) - (left < right)
        case _:
            raise ConfigurationError(f"Unknown tie-break rule: {rule}")


def compare_rows(
    a: RankingRow,
    b: RankingRow,
    rules: Sequence[str],
    fixtures: Sequence[CompletedFixture] = (),
    random_keys: Mapping[int, float] | None = None,
) -> int:
    # Идем по цепочке, пока правило не различит команды.
    for rule in rules:
        result = compare_by_rule(a, b, rule, fixtures, random_keys)
        if result != 0:
            return result
    return 0
