from app.core.errors import ConfigurationError, NotFoundError, PreconditionError
from app.models.tournament import StageStatus
from app.services import fixture_generation, stage as stage_service

from service_case import ServiceTestCase


class StageServiceTests(ServiceTestCase):
    async def test_create_stage_appends_order(self) -> None:
        tournament = await self.create_tournament([{"name": "Groups", "stage_type": "group"}])

        stage = await stage_service.create_stage(self.db, tournament.id, {"name": "Playoff", "stage_type": "knockout"})

        self.assertEqual(stage.order, 2)
        self.assertEqual(stage.stage_type, "knockout")
        self.assertEqual(stage.status, StageStatus.PENDING.value)

    async def test_create_stage_rejects_unknown_type(self) -> None:
        tournament = await self.create_tournament([])

        with self.assertRaises(ConfigurationError):
            await stage_service.create_stage(self.db, tournament.id, {"name": "X", "stage_type": "ladder"})

    async def test_assign_teams_upserts_seeds(self) -> None:
        stage = await self.create_stage_with_teams("league", [5, 6, 7])

        await stage_service.assign_teams_to_stage(self.db, stage.id, [7, 8], seeds=[1, 4])
        stage = await stage_service.get_stage(self.db, stage.id)

        seeds = {item.team_id: item.seed for item in stage.stage_teams}
        self.assertEqual(seeds, {5: 1, 6: 2, 7: 1, 8: 4})

    async def test_assign_teams_rejects_duplicates(self) -> None:
        stage = await self.create_stage_with_teams("league", [])

        with self.assertRaises(ConfigurationError):
            await stage_service.assign_teams_to_stage(self.db, stage.id, [1, 1])

    async def test_remove_teams(self) -> None:
        stage = await self.create_stage_with_teams("league", [1, 2, 3])

        stage = await stage_service.remove_teams_from_stage(self.db, stage.id, [2])

        self.assertEqual(sorted(item.team_id for item in stage.stage_teams), [1, 3])

    async def test_only_one_active_stage(self) -> None:
        tournament = await self.create_tournament([{"name": "A"}, {"name": "B"}])
        first, second = tournament.stages

        await stage_service.activate_stage(self.db, first.id)
        await stage_service.activate_stage(self.db, second.id)

        first = await stage_service.get_stage(self.db, first.id)
        second = await stage_service.get_stage(self.db, second.id)
        self.assertEqual(first.status, StageStatus.PENDING.value)
        self.assertEqual(second.status, StageStatus.ACTIVE.value)

    async def test_complete_stage_requires_finished_fixtures(self) -> None:
        stage = await self.create_stage_with_teams("league", [1, 2])
        fixture_id = (await fixture_generation.generate_fixtures(self.db, stage.id))[0].id
        stage_id = stage.id

        with self.assertRaises(PreconditionError):
            await stage_service.complete_stage(self.db, stage_id)

        await fixture_generation.submit_result(self.db, fixture_id, 1, 0)
        stage = await stage_service.complete_stage(self.db, stage_id)
        self.assertEqual(stage.status, StageStatus.COMPLETED.value)

    async def test_link_stages_requires_same_tournament(self) -> None:
        first = await self.create_tournament([{"name": "A"}])
        other = await self.create_tournament([{"name": "B"}])

        with self.assertRaises(ConfigurationError):
            await stage_service.link_stages(self.db, first.stages[0].id, other.stages[0].id)

    async def test_reorder_and_delete(self) -> None:
        tournament = await self.create_tournament([{"name": "A"}, {"name": "B"}, {"name": "C"}])
        a, b, c = (stage.id for stage in tournament.stages)
        await stage_service.link_stages(self.db, a, b)

        stages = await stage_service.reorder_stages(self.db, tournament.id, [c, a, b])
        self.assertEqual([stage.id for stage in stages], [c, a, b])

        await stage_service.delete_stage(self.db, b)
        with self.assertRaises(NotFoundError):
            await stage_service.get_stage(self.db, b)
        stage_a = await stage_service.get_stage(self.db, a)
        self.assertIsNone(stage_a.next_stage_id)

    async def test_stage_details(self) -> None:
        stage = await self.create_stage_with_teams("league", [1, 2])

        details = stage_service.stage_to_dict(await stage_service.get_stage_with_details(self.db, stage.id))

        self.assertEqual(details["stage_type"], "league")
        self.assertEqual([team["team_id"] for team in details["teams"]], [1, 2])
        self.assertIsNone(details["promotion"])
