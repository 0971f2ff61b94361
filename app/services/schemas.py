"""Простые значения, которыми обмениваются генераторы, калькулятор рейтинга и сервисы."""

from dataclasses import asdict, dataclass, field


@dataclass
class FixtureDraft:
    home_team_id: int
    away_team_id: int | None
    round: int = 1
    matchday: int | None = None
    match_number: int | None = None
    is_bye: bool = False
    is_second_leg: bool = False
    is_rematch: bool = False
    group_name: str | None = None

    def pair(self) -> frozenset[int]:
        return frozenset(team_id for team_id in (self.home_team_id, self.away_team_id) if team_id is not None)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class CompletedFixture:
    home_team_id: int
    away_team_id: int | None
    home_score: int | None
    away_score: int | None
    is_bye: bool = False


@dataclass
class RankingRow:
    team_id: int
    group_id: int | None = None
    played: int = 0
    wins: int = 0
    draws: int = 0
    losses: int = 0
    goals_for: int = 0
    goals_against: int = 0
    goal_difference: int = 0
    points: int = 0
    rank: int | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StageTeamEntry:
    """Участник этапа в порядке посева: то, что нужно стратегиям от StageTeam."""

    team_id: int
    seed: int = 0
    group_id: int | None = None
    group_name: str | None = None


@dataclass
class PromotionResult:
    promoted_team_ids: list[int]
    next_stage_id: int
    simulated: bool
    seeds: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)
