"""Сетка на выбывание: посев, баи и следующие раунды.

Позиции сетки строятся так, чтобы сильнейшие посевы встречались как можно позже:
для 8 участников первый раунд в порядке сетки: 1-8, 4-5, 2-7, 3-6. Номер матча
(match_number) равен позиции пары в этом порядке, поэтому следующий раунд получается
последовательным спариванием победителей: (1-8 | 4-5), (2-7 | 3-6).
"""

import logging
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass

from app.core.errors import PreconditionError
from app.models.tournament import Fixture, FixtureStatus
from app.services.schemas import FixtureDraft

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BracketSlot:
    match_number: int
    top_seed: int
    bottom_seed: int
    home_team_id: int | None
    away_team_id: int | None

    @property
    def is_bye(self) -> bool:
        return self.home_team_id is None or self.away_team_id is None

    @property
    def advancing_team_id(self) -> int | None:
        # Команда, проходящая дальше без игры; для реальной пары None.
        if self.home_team_id is None:
            return self.away_team_id
        if self.away_team_id is None:
            return self.home_team_id
        return None


def next_power_of_two(value: int) -> int:
    size = 1
    while size < value:
        size *= 2
    return size


def bracket_positions(size: int) -> list[int]:
    # Номера посевов в порядке позиций сетки, например 8 -> [1, 8, 4, 5, 2, 7, 3, 6].
    positions = [1]
    while len(positions) < size:
        total = len(positions) * 2
        positions = [seed for top in positions for seed in (top, total + 1 - top)]
    return positions


def first_round_slots(team_ids: Sequence[int]) -> list[BracketSlot]:
    """Все пары первого раунда в порядке сетки, включая пары с баем."""
    if len(team_ids) < 2:
        return []
    size = next_power_of_two(len(team_ids))
    seeded: list[int | None] = [*team_ids, *([None] * (size - len(team_ids)))]
    positions = bracket_positions(size)

    slots = []
    for index in range(0, size, 2):
        top, bottom = positions[index], positions[index + 1]
        slots.append(
            BracketSlot(
                match_number=index // 2 + 1,
                top_seed=top,
                bottom_seed=bottom,
                home_team_id=seeded[top - 1],
                away_team_id=seeded[bottom - 1],
            )
        )
    return slots


def _with_second_legs(drafts: list[FixtureDraft], single_leg: bool) -> list[FixtureDraft]:
    if single_leg:
        return drafts
    fixtures = []
    for draft in drafts:
        fixtures.append(draft)
        fixtures.append(
            FixtureDraft(
                home_team_id=draft.away_team_id,
                away_team_id=draft.home_team_id,
                round=draft.round,
                match_number=draft.match_number,
                is_second_leg=True,
            )
        )
    return fixtures


def generate_bracket(team_ids: Sequence[int], single_leg: bool = True) -> list[FixtureDraft]:
    """Первый раунд сетки: только реальные пары, отсортированные по старшему посеву.

    Команды с баем проходят молча и в список матчей не попадают.
    """
    real_slots = sorted(
        (slot for slot in first_round_slots(team_ids) if not slot.is_bye),
        key=lambda slot: slot.top_seed,
    )
    drafts = [
        FixtureDraft(
            home_team_id=slot.home_team_id,
            away_team_id=slot.away_team_id,
            round=1,
            match_number=slot.match_number,
        )
        for slot in real_slots
    ]
    return _with_second_legs(drafts, single_leg)


def generate_next_round(winner_ids: Sequence[int], round: int, single_leg: bool = True) -> list[FixtureDraft]:
    # Победители идут в порядке сетки: 1-й против 2-го, 3-й против 4-го и т.д.
    if len(winner_ids) < 2:
        return []
    if len(winner_ids) % 2 == 1:
        logger.warning("Knockout round %s: team %s left without opponent", round, winner_ids[-1])

    drafts = [
        FixtureDraft(
            home_team_id=winner_ids[index],
            away_team_id=winner_ids[index + 1],
            round=round,
            match_number=index // 2 + 1,
        )
        for index in range(0, len(winner_ids) - 1, 2)
    ]
    return _with_second_legs(drafts, single_leg)


def _tie_winner(legs: list[Fixture]) -> int:
    played = [leg for leg in legs if leg.status == FixtureStatus.COMPLETED.value]
    if any(leg.status not in (FixtureStatus.COMPLETED.value, FixtureStatus.CANCELLED.value) for leg in legs):
        raise PreconditionError(f"Knockout tie #{legs[0].match_number} is not finished")
    if not played:
        raise PreconditionError(f"Knockout tie #{legs[0].match_number} has no played legs")

    for leg in played:
        if leg.winning_team_id is not None:
            return leg.winning_team_id

    goals: dict[int, int] = defaultdict(int)
    for leg in played:
        goals[leg.first_team_id] += leg.first_team_score or 0
        if leg.second_team_id is not None:
            goals[leg.second_team_id] += leg.second_team_score or 0

    first_leg = played[0]
    home, away = first_leg.first_team_id, first_leg.second_team_id
    if away is None or goals[home] > goals[away]:
        return home
    if goals[away] > goals[home]:
        return away
    raise PreconditionError(f"Knockout tie #{first_leg.match_number} is level, winning_team_id is required")


def resolve_tie_winners(fixtures: Sequence[Fixture]) -> dict[int, int]:
    """Победители пар одного раунда: match_number -> team_id, по возрастанию match_number.

    Двухматчевые пары сводятся по сумме голов, явный winning_team_id (пенальти) важнее счета.
    """
    ties: dict[int, list[Fixture]] = defaultdict(list)
    for fixture in fixtures:
        key = fixture.match_number if fixture.match_number is not None else fixture.id
        ties[key].append(fixture)
    return {match_number: _tie_winner(ties[match_number]) for match_number in sorted(ties)}


def round_advancers(team_ids: Sequence[int], round_fixtures: Sequence[Fixture], round: int) -> dict[int, int]:
    """Кто проходит из раунда: match_number -> team_id.

    Для первого раунда к победителям пар добавляются команды с баем на их позиции в сетке.
    """
    advancers = resolve_tie_winners(round_fixtures)
    if round == 1:
        for slot in first_round_slots(team_ids):
            if slot.is_bye and slot.advancing_team_id is not None:
                advancers[slot.match_number] = slot.advancing_team_id
    return {match_number: advancers[match_number] for match_number in sorted(advancers)}
