"""Круговая система (метод круга) для лиги и групп."""

from collections.abc import Sequence

from app.services.schemas import FixtureDraft


def _matchday_pairings(slots: list[int | None], matchday: int) -> list[tuple[int | None, int | None]]:
    # Первая позиция неподвижна, остальные сдвигаются на matchday шагов.
    slot_count = len(slots)
    rotating = slots[1:]
    shift = matchday % (slot_count - 1)
    rotating = rotating[shift:] + rotating[:shift]
    arranged = [slots[0], *rotating]

    pairings = []
    for index in range(slot_count // 2):
        home, away = arranged[index], arranged[slot_count - 1 - index]
        # Чередуем хозяев по турам, чтобы выровнять домашние матчи.
        if matchday % 2 == 1:
            home, away = away, home
        pairings.append((home, away))
    return pairings


def generate_round_robin(
    team_ids: Sequence[int],
    rounds: int = 1,
    reverse_home_away: bool = False,
) -> list[FixtureDraft]:
    """Генерирует пары кругового турнира.

    При нечетном числе команд добавляется пустой слот; матч против него выбрасывается,
    и команда пропускает тур. Каждый проход (round) это полный круг из n-1 туров.
    """
    if len(team_ids) < 2 or rounds < 1:
        return []

    slots: list[int | None] = list(team_ids)
    if len(slots) % 2 == 1:
        slots.append(None)
    matchdays = len(slots) - 1

    fixtures: list[FixtureDraft] = []
    for pass_index in range(rounds):
        round_number = pass_index + 1
        for matchday in range(matchdays):
            for home, away in _matchday_pairings(slots, matchday):
                if home is None or away is None:
                    continue
                if reverse_home_away and pass_index % 2 == 1:
                    home, away = away, home
                fixtures.append(FixtureDraft(home_team_id=home, away_team_id=away, round=round_number, matchday=matchday + 1))
    return fixtures
