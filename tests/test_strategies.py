import unittest

from app.core.errors import ConfigurationError, PreconditionError
from app.models.tournament import Fixture, FixtureStatus, StageType
from app.services.schemas import StageTeamEntry
from app.services.strategies import (
    GroupStrategy,
    KnockoutStrategy,
    LeagueStrategy,
    SwissStrategy,
    get_stage_strategy,
)


def _entries(team_ids, group_ids=None):
    group_ids = group_ids or [None] * len(team_ids)
    return [
        StageTeamEntry(team_id=team_id, seed=index, group_id=group_id)
        for index, (team_id, group_id) in enumerate(zip(team_ids, group_ids), start=1)
    ]


def _fixture(first, second, first_score=None, second_score=None, round=1, match_number=None, group_id=None, is_bye=False):
    completed = first_score is not None or is_bye
    return Fixture(
        first_team_id=first,
        second_team_id=second,
        first_team_score=first_score,
        second_team_score=second_score,
        round=round,
        match_number=match_number,
        group_id=group_id,
        is_bye=is_bye,
        status=FixtureStatus.COMPLETED.value if completed else FixtureStatus.UPCOMING.value,
    )


class StrategyFactoryTests(unittest.TestCase):
    def test_dispatch_by_stage_type(self) -> None:
        expected = {
            "league": LeagueStrategy,
            "group": GroupStrategy,
            "knockout": KnockoutStrategy,
            "swiss": SwissStrategy,
        }
        for stage_type, strategy_class in expected.items():
            with self.subTest(stage_type=stage_type):
                self.assertIsInstance(get_stage_strategy(stage_type), strategy_class)
        self.assertIsInstance(get_stage_strategy(StageType.SWISS), SwissStrategy)

    def test_unknown_stage_type(self) -> None:
        with self.assertRaises(ConfigurationError):
            get_stage_strategy("ladder")

    def test_settings_validation(self) -> None:
        strategy = get_stage_strategy("league")

        self.assertEqual(strategy.validate_settings({"rounds": 2}), {"rounds": 2})
        with self.assertRaises(ConfigurationError):
            strategy.validate_settings({"rounds": 0})
        with self.assertRaises(ConfigurationError):
            strategy.validate_settings({"tie_breakers": ["points", "coin_flip"]})
        with self.assertRaises(ConfigurationError):
            strategy.validate_settings({"scoring": {"bonus": 1}})


class LeagueStrategyTests(unittest.TestCase):
    def test_generates_double_round_robin(self) -> None:
        drafts = LeagueStrategy().generate_fixtures(_entries([1, 2, 3, 4]), {"rounds": 2, "home_away": True})

        self.assertEqual(len(drafts), 12)

    def test_needs_two_teams(self) -> None:
        with self.assertRaises(ConfigurationError):
            LeagueStrategy().generate_fixtures(_entries([1]), {})

    def test_rankings_use_tie_breaker_settings(self) -> None:
        fixtures = [_fixture(1, 2, 1, 0), _fixture(3, 4, 3, 0), _fixture(1, 3, 0, 0), _fixture(2, 4, 0, 0)]

        rows = LeagueStrategy().compute_rankings(_entries([1, 2, 3, 4]), fixtures, {"tie_breakers": ["points", "goal_difference"]})

        self.assertEqual([row.team_id for row in rows], [3, 1, 2, 4])
        self.assertEqual([row.rank for row in rows], [1, 2, 3, 4])


class GroupStrategyTests(unittest.TestCase):
    def test_eight_teams_in_two_groups(self) -> None:
        strategy = GroupStrategy()
        entries = _entries(list(range(1, 9)))

        groups = strategy.split_into_groups(entries, {"group_size": 4})
        drafts = strategy.generate_fixtures(entries, {"group_size": 4})

        self.assertEqual(
            {name: [entry.team_id for entry in members] for name, members in groups.items()},
            {"Group A": [1, 2, 3, 4], "Group B": [5, 6, 7, 8]},
        )
        self.assertEqual(len(drafts), 12)
        self.assertEqual({draft.group_name for draft in drafts}, {"Group A", "Group B"})
        group_a = {team for draft in drafts if draft.group_name == "Group A" for team in draft.pair()}
        self.assertEqual(group_a, {1, 2, 3, 4})

    def test_rankings_restart_per_group(self) -> None:
        entries = _entries([1, 2, 3, 4], group_ids=[10, 10, 20, 20])
        fixtures = [_fixture(1, 2, 0, 2, group_id=10), _fixture(3, 4, 1, 0, group_id=20)]

        rows = GroupStrategy().compute_rankings(entries, fixtures, {})

        self.assertEqual([(row.group_id, row.team_id, row.rank) for row in rows], [(10, 2, 1), (10, 1, 2), (20, 3, 1), (20, 4, 2)])


class KnockoutStrategyTests(unittest.TestCase):
    def test_no_rankings(self) -> None:
        self.assertEqual(KnockoutStrategy().compute_rankings(_entries([1, 2]), [], {}), [])

    def test_next_round_carries_byes(self) -> None:
        entries = _entries([1, 2, 3])
        # 3 команды: сетка на 4, первый посев проходит без игры, 2 и 3 играют.
        round_one = [_fixture(2, 3, 0, 1, match_number=2)]

        drafts = KnockoutStrategy().generate_next_round(entries, round_one, {})

        self.assertEqual([(d.home_team_id, d.away_team_id, d.round) for d in drafts], [(1, 3, 2)])

    def test_four_teams_final(self) -> None:
        entries = _entries([1, 2, 3, 4])
        round_one = [_fixture(1, 4, 2, 0, match_number=1), _fixture(2, 3, 1, 2, match_number=2)]

        drafts = KnockoutStrategy().generate_next_round(entries, round_one, {})

        self.assertEqual(len(drafts), 1)
        self.assertEqual(drafts[0].pair(), frozenset({1, 3}))

    def test_decided_bracket_has_no_next_round(self) -> None:
        entries = _entries([1, 2])
        with self.assertRaises(PreconditionError):
            KnockoutStrategy().generate_next_round(entries, [_fixture(1, 2, 1, 0, match_number=1)], {})


class SwissStrategyTests(unittest.TestCase):
    def test_next_round_avoids_rematch(self) -> None:
        entries = _entries([1, 2, 3, 4])
        round_one = [_fixture(1, 2, 2, 0), _fixture(3, 4, 1, 0)]

        drafts = SwissStrategy().generate_next_round(entries, round_one, {"rounds": 3})

        self.assertTrue(all(draft.round == 2 for draft in drafts))
        self.assertNotIn(frozenset({1, 2}), {draft.pair() for draft in drafts})
        self.assertNotIn(frozenset({3, 4}), {draft.pair() for draft in drafts})

    def test_round_limit(self) -> None:
        entries = _entries([1, 2, 3, 4])
        fixtures = [_fixture(1, 2, 1, 0, round=1), _fixture(3, 4, 1, 0, round=1)]

        with self.assertRaises(PreconditionError):
            SwissStrategy().generate_next_round(entries, fixtures, {"rounds": 1})

    def test_unfinished_round_blocks_next(self) -> None:
        entries = _entries([1, 2, 3, 4])
        fixtures = [_fixture(1, 2, 1, 0), _fixture(3, 4)]

        with self.assertRaises(PreconditionError):
            SwissStrategy().generate_next_round(entries, fixtures, {"rounds": 3})
