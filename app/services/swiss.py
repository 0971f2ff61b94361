"""Швейцарская система: пары из команд с близким счетом без повторных встреч."""

import logging
import math
import random
from collections.abc import Iterable, Sequence

from app.services.ranking_calculator import standings_sort_key
from app.services.schemas import FixtureDraft, RankingRow

logger = logging.getLogger(__name__)


def recommended_rounds(team_count: int) -> int:
    if team_count > 6:
        return math.ceil(math.log2(team_count))
    return 3


def _ordered_teams(
    team_ids: Sequence[int],
    standings: Sequence[RankingRow],
    rng: random.Random,
    shuffle: bool,
) -> list[int]:
    if not standings:
        ordered = list(team_ids)
        if shuffle:
            rng.shuffle(ordered)
        return ordered

    # Стабильная сортировка: при равенстве сохраняется порядок посева.
    known = set(team_ids)
    ranked = [row.team_id for row in sorted(standings, key=standings_sort_key, reverse=True) if row.team_id in known]
    ranked_set = set(ranked)
    # Команды без строки в таблице идут в конец в порядке посева.
    return ranked + [team_id for team_id in team_ids if team_id not in ranked_set]


def _pick_bye(ordered: list[int], had_bye: set[int]) -> int:
    for team_id in reversed(ordered):
        if team_id not in had_bye:
            return team_id
    return ordered[-1]


def _collect_history(previous_pairings: Iterable[FixtureDraft]) -> tuple[set[frozenset[int]], set[int]]:
    met: set[frozenset[int]] = set()
    had_bye: set[int] = set()
    for draft in previous_pairings:
        if draft.is_bye or draft.away_team_id is None:
            had_bye.add(draft.home_team_id)
            continue
        met.add(draft.pair())
    return met, had_bye


def generate_swiss(
    team_ids: Sequence[int],
    standings: Sequence[RankingRow] = (),
    previous_pairings: Iterable[FixtureDraft] = (),
    round: int = 1,
    rng: random.Random | None = None,
    shuffle: bool = True,
) -> list[FixtureDraft]:
    """Пары очередного тура.

    Для каждой свободной команды ищем соперника, расширяя радиус вокруг ее места
    в таблице; повторная встреча допускается только когда иначе пару не собрать.
    """
    if len(team_ids) < 2:
        return []

    rng = rng or random.Random()
    ordered = _ordered_teams(team_ids, standings, rng, shuffle)
    met, had_bye = _collect_history(previous_pairings)

    fixtures: list[FixtureDraft] = []
    if len(ordered) % 2 == 1:
        bye_team = _pick_bye(ordered, had_bye)
        ordered.remove(bye_team)
        fixtures.append(FixtureDraft(home_team_id=bye_team, away_team_id=None, round=round, is_bye=True))

    paired: set[int] = set()
    matches: list[FixtureDraft] = []
    for index, team_id in enumerate(ordered):
        if team_id in paired:
            continue

        opponent = None
        for radius in range(1, len(ordered)):
            for candidate_index in (index + radius, index - radius):
                if not 0 <= candidate_index < len(ordered):
                    continue
                candidate = ordered[candidate_index]
                if candidate in paired or candidate == team_id:
                    continue
                if frozenset((team_id, candidate)) in met:
                    continue
                opponent = candidate
                break
            if opponent is not None:
                break

        is_rematch = False
        if opponent is None:
            opponent = next(
                (candidate for candidate in ordered[index + 1:] if candidate not in paired),
                None,
            )
            if opponent is None:
                continue
            is_rematch = True
            logger.warning("Swiss round %s: forced rematch %s vs %s", round, team_id, opponent)

        paired.update((team_id, opponent))
        matches.append(
            FixtureDraft(
                home_team_id=team_id,
                away_team_id=opponent,
                round=round,
                match_number=len(matches) + 1,
                is_rematch=is_rematch,
            )
        )

    return matches + fixtures
