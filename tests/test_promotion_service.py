from sqlalchemy import select

from app.core.errors import ConfigurationError, NotFoundError, PreconditionError
from app.models.tournament import PromotionAction, StageStatus, StageTeam
from app.services import fixture_generation, promotion, stage as stage_service

from service_case import ServiceTestCase


class PromotionServiceTests(ServiceTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        tournament = await self.create_tournament(
            [{"name": "League", "stage_type": "league"}, {"name": "Playoff", "stage_type": "knockout"}]
        )
        self.tournament_id = tournament.id
        self.league_id, self.playoff_id = (stage.id for stage in tournament.stages)
        await stage_service.assign_teams_to_stage(self.db, self.league_id, [1, 2, 3, 4])

    async def play_league(self) -> None:
        # Меньший id всегда выигрывает: итоговая таблица 1, 2, 3, 4.
        fixtures = await fixture_generation.generate_fixtures(self.db, self.league_id, auto_schedule=False)
        results = [
            (fixture.id, (1, 0) if fixture.first_team_id < fixture.second_team_id else (0, 1))
            for fixture in fixtures
        ]
        for fixture_id, (first_score, second_score) in results:
            await fixture_generation.submit_result(self.db, fixture_id, first_score, second_score)

    async def set_top_two(self) -> None:
        await promotion.set_promotion_rule(self.db, self.league_id, self.playoff_id, "top_n", {"n": 2})

    async def playoff_seeds(self) -> dict[int, int]:
        stage = await stage_service.get_stage(self.db, self.playoff_id)
        return {item.team_id: item.seed for item in stage.stage_teams}

    async def stage_team_rows(self) -> list[tuple[int, int, int]]:
        rows = await self.db.scalars(select(StageTeam).order_by(StageTeam.stage_id, StageTeam.team_id))
        return [(row.stage_id, row.team_id, row.seed) for row in rows]

    async def test_can_promote(self) -> None:
        self.assertFalse(await promotion.can_promote(self.db, self.league_id))

        await self.set_top_two()
        await fixture_generation.generate_fixtures(self.db, self.league_id, auto_schedule=False)
        self.assertFalse(await promotion.can_promote(self.db, self.league_id))

        await fixture_generation.delete_stage_fixtures(self.db, self.league_id)
        await self.play_league()
        self.assertTrue(await promotion.can_promote(self.db, self.league_id))

    async def test_simulate_changes_nothing(self) -> None:
        await self.set_top_two()
        await self.play_league()

        result = await promotion.simulate_promotion(self.db, self.league_id)

        self.assertTrue(result.simulated)
        self.assertEqual(result.promoted_team_ids, [1, 2])
        self.assertEqual(result.next_stage_id, self.playoff_id)
        self.assertEqual(await self.playoff_seeds(), {})
        self.assertEqual(await promotion.get_promotion_history(self.db, self.league_id), [])
        league = await stage_service.get_stage(self.db, self.league_id)
        self.assertNotEqual(league.status, StageStatus.COMPLETED.value)

    async def test_simulate_can_record_audit(self) -> None:
        await self.set_top_two()
        await self.play_league()

        await promotion.simulate_promotion(self.db, self.league_id, record_audit=True, triggered_by=5)

        history = await promotion.get_promotion_history(self.db, self.league_id)
        self.assertEqual(len(history), 1)
        self.assertTrue(history[0].simulated)
        self.assertEqual(history[0].triggered_by, 5)
        self.assertIsNone(promotion.effective_promotion(history))

    async def test_simulate_uses_computed_table_when_none_stored(self) -> None:
        await self.set_top_two()

        result = await promotion.simulate_promotion(self.db, self.league_id)

        # Матчей нет: таблица из нулей, порядок по посеву.
        self.assertEqual(result.promoted_team_ids, [1, 2])

    async def test_execute_moves_teams_and_completes_stage(self) -> None:
        await self.set_top_two()
        await self.play_league()

        result = await promotion.execute_promotion(self.db, self.league_id, triggered_by=9)

        self.assertFalse(result.simulated)
        self.assertEqual(result.promoted_team_ids, [1, 2])
        self.assertEqual(await self.playoff_seeds(), {1: 1, 2: 2})
        league = await stage_service.get_stage(self.db, self.league_id)
        self.assertEqual(league.status, StageStatus.COMPLETED.value)

        history = await promotion.get_promotion_history(self.db, self.league_id)
        self.assertEqual(len(history), 1)
        audit = history[0]
        self.assertEqual(audit.action, PromotionAction.PROMOTION.value)
        self.assertEqual(audit.triggered_by, 9)
        self.assertEqual(audit.result["rule_type"], "top_n")
        self.assertEqual(audit.result["created_team_ids"], [1, 2])
        self.assertIs(promotion.effective_promotion(history), audit)

    async def test_second_execution_is_rejected(self) -> None:
        await self.set_top_two()
        await self.play_league()
        await promotion.execute_promotion(self.db, self.league_id)

        with self.assertRaises(PreconditionError):
            await promotion.execute_promotion(self.db, self.league_id)

    async def test_unfinished_fixtures_block_promotion(self) -> None:
        await self.set_top_two()
        await fixture_generation.generate_fixtures(self.db, self.league_id, auto_schedule=False)

        with self.assertRaises(PreconditionError):
            await promotion.execute_promotion(self.db, self.league_id)

    async def test_missing_rule_is_a_configuration_error(self) -> None:
        with self.assertRaises(ConfigurationError):
            await promotion.execute_promotion(self.db, self.league_id)
        with self.assertRaises(ConfigurationError):
            await promotion.simulate_promotion(self.db, self.league_id)

    async def test_rule_without_next_stage_fails_without_changes(self) -> None:
        await self.set_top_two()
        await self.play_league()
        await stage_service.delete_stage(self.db, self.playoff_id)
        rows_before = await self.stage_team_rows()

        with self.assertRaises(ConfigurationError):
            await promotion.execute_promotion(self.db, self.league_id)

        self.assertEqual(await self.stage_team_rows(), rows_before)
        self.assertEqual(await promotion.get_promotion_history(self.db, self.league_id), [])
        league = await stage_service.get_stage(self.db, self.league_id)
        self.assertIsNone(league.promotion.next_stage_id)
        self.assertNotEqual(league.status, StageStatus.COMPLETED.value)

    async def test_stage_link_does_not_replace_rule_target(self) -> None:
        await self.set_top_two()
        await self.play_league()
        await stage_service.delete_stage(self.db, self.playoff_id)
        cup = await stage_service.create_stage(self.db, self.tournament_id, {"name": "Cup", "stage_type": "knockout"})
        cup_id = cup.id
        await stage_service.update_stage(self.db, self.league_id, {"next_stage_id": cup_id})

        with self.assertRaises(ConfigurationError):
            await promotion.simulate_promotion(self.db, self.league_id)
        with self.assertRaises(ConfigurationError):
            await promotion.execute_promotion(self.db, self.league_id)

        cup = await stage_service.get_stage(self.db, cup_id)
        self.assertEqual(cup.stage_teams, [])

    async def test_manual_override_with_seeds(self) -> None:
        await self.set_top_two()
        await self.play_league()

        result = await promotion.execute_promotion(
            self.db, self.league_id, manual_override={"team_ids": [4, 3], "seeds": [2, 1]}
        )

        self.assertEqual(result.promoted_team_ids, [4, 3])
        self.assertEqual(await self.playoff_seeds(), {4: 2, 3: 1})
        history = await promotion.get_promotion_history(self.db, self.league_id)
        self.assertTrue(history[0].result["manual_override"])

    async def test_manual_override_is_validated(self) -> None:
        await self.set_top_two()
        await self.play_league()

        overrides = (
            {"team_ids": []},
            {"team_ids": [1, 1]},
            {"team_ids": [1, 2], "seeds": [1]},
            {"team_ids": ["1", 2]},
            {"team_ids": [1, 9]},
            {"team_ids": [1, 2], "seeds": [1, "2"]},
        )
        for override in overrides:
            with self.subTest(override=override):
                with self.assertRaises(ConfigurationError):
                    await promotion.execute_promotion(self.db, self.league_id, manual_override=override)

    async def test_rollback_restores_next_stage(self) -> None:
        await stage_service.assign_teams_to_stage(self.db, self.playoff_id, [2], seeds=[7])
        await self.set_top_two()
        await self.play_league()
        await promotion.execute_promotion(self.db, self.league_id)
        self.assertEqual(await self.playoff_seeds(), {1: 1, 2: 2})
        audit_id = (await promotion.get_promotion_history(self.db, self.league_id))[0].id

        rollback = await promotion.rollback_promotion(self.db, audit_id, triggered_by=3)

        self.assertEqual(rollback.action, PromotionAction.ROLLBACK.value)
        self.assertEqual(rollback.result["rolled_back_audit_id"], audit_id)
        self.assertEqual(rollback.result["removed_team_ids"], [1])
        self.assertEqual(await self.playoff_seeds(), {2: 7})
        league = await stage_service.get_stage(self.db, self.league_id)
        self.assertEqual(league.status, StageStatus.ACTIVE.value)

        history = await promotion.get_promotion_history(self.db, self.league_id)
        self.assertEqual(len(history), 2)
        self.assertIsNone(promotion.effective_promotion(history))

    async def test_rollback_keeps_single_active_stage(self) -> None:
        await self.set_top_two()
        await self.play_league()
        await promotion.execute_promotion(self.db, self.league_id)
        await stage_service.activate_stage(self.db, self.playoff_id)
        audit_id = (await promotion.get_promotion_history(self.db, self.league_id))[0].id

        await promotion.rollback_promotion(self.db, audit_id)

        league = await stage_service.get_stage(self.db, self.league_id)
        playoff = await stage_service.get_stage(self.db, self.playoff_id)
        self.assertEqual(league.status, StageStatus.ACTIVE.value)
        self.assertEqual(playoff.status, StageStatus.PENDING.value)

    async def test_promotion_can_run_again_after_rollback(self) -> None:
        await self.set_top_two()
        await self.play_league()
        await promotion.execute_promotion(self.db, self.league_id)
        first_id = (await promotion.get_promotion_history(self.db, self.league_id))[0].id
        await promotion.rollback_promotion(self.db, first_id)

        await promotion.execute_promotion(self.db, self.league_id)

        history = await promotion.get_promotion_history(self.db, self.league_id)
        effective = promotion.effective_promotion(history)
        self.assertIsNotNone(effective)
        self.assertNotEqual(effective.id, first_id)
        self.assertEqual(await self.playoff_seeds(), {1: 1, 2: 2})

    async def test_rollback_restrictions(self) -> None:
        await self.set_top_two()
        await self.play_league()
        await promotion.execute_promotion(self.db, self.league_id)
        audit_id = (await promotion.get_promotion_history(self.db, self.league_id))[0].id
        rollback_id = (await promotion.rollback_promotion(self.db, audit_id)).id

        with self.assertRaises(PreconditionError):
            await promotion.rollback_promotion(self.db, audit_id)
        with self.assertRaises(PreconditionError):
            await promotion.rollback_promotion(self.db, rollback_id)
        with self.assertRaises(NotFoundError):
            await promotion.rollback_promotion(self.db, 999)

    async def test_rollback_refused_once_next_stage_has_fixtures(self) -> None:
        await self.set_top_two()
        await self.play_league()
        await promotion.execute_promotion(self.db, self.league_id)
        audit_id = (await promotion.get_promotion_history(self.db, self.league_id))[0].id
        await fixture_generation.generate_fixtures(self.db, self.playoff_id, auto_schedule=False)

        with self.assertRaises(PreconditionError):
            await promotion.rollback_promotion(self.db, audit_id)

    async def test_simulated_audit_cannot_be_rolled_back(self) -> None:
        await self.set_top_two()
        await self.play_league()
        await promotion.simulate_promotion(self.db, self.league_id, record_audit=True)
        audit_id = (await promotion.get_promotion_history(self.db, self.league_id))[0].id

        with self.assertRaises(PreconditionError):
            await promotion.rollback_promotion(self.db, audit_id)

    async def test_set_promotion_rule(self) -> None:
        rule = await promotion.set_promotion_rule(self.db, self.league_id, self.playoff_id, "threshold", {"threshold": 6})

        self.assertEqual(rule.rule_type, "threshold")
        self.assertEqual(rule.rule_config, {"threshold": 6})
        league = await stage_service.get_stage(self.db, self.league_id)
        self.assertEqual(league.next_stage_id, self.playoff_id)

        rule = await promotion.set_promotion_rule(self.db, self.league_id, self.playoff_id, "top_n", {"n": 3})
        self.assertEqual(rule.rule_type, "top_n")

    async def test_set_promotion_rule_validation(self) -> None:
        other = await self.create_tournament([{"name": "Other"}])
        other_stage_id = other.stages[0].id
        cases = [
            (self.league_id, self.playoff_id, "top_n", {}),
            (self.league_id, self.playoff_id, "playoff", {}),
            (self.league_id, self.league_id, "top_n", {"n": 2}),
            (self.league_id, other_stage_id, "top_n", {"n": 2}),
            (self.league_id, self.playoff_id, "lottery", {}),
        ]
        for stage_id, next_stage_id, rule_type, config in cases:
            with self.subTest(rule_type=rule_type, next_stage_id=next_stage_id):
                with self.assertRaises(ConfigurationError):
                    await promotion.set_promotion_rule(self.db, stage_id, next_stage_id, rule_type, config)

    async def test_playoff_rule_promotes_bracket_winner(self) -> None:
        tournament = await self.create_tournament(
            [{"name": "Bracket", "stage_type": "knockout"}, {"name": "Final four", "stage_type": "league"}]
        )
        bracket_id, final_id = (stage.id for stage in tournament.stages)
        await stage_service.assign_teams_to_stage(self.db, bracket_id, [1, 2, 3, 4])
        await promotion.set_promotion_rule(self.db, bracket_id, final_id, "playoff")

        round_one = await fixture_generation.generate_fixtures(self.db, bracket_id, auto_schedule=False)
        for fixture_id in [fixture.id for fixture in round_one]:
            await fixture_generation.submit_result(self.db, fixture_id, 1, 0)
        final = await fixture_generation.generate_next_round(self.db, bracket_id, auto_schedule=False)
        await fixture_generation.submit_result(self.db, final[0].id, 0, 2)

        result = await promotion.execute_promotion(self.db, bracket_id)

        self.assertEqual(result.promoted_team_ids, [final[0].second_team_id])
