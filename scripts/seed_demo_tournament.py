import argparse
import asyncio
import logging
import random

from app.core.errors import PreconditionError
from app.core.logging import configure_logging
from app.db.session import SessionLocal
from app.models.tournament import FixtureStatus
from app.services import fixture_generation, promotion, stage as stage_service, tournament as tournament_service

logger = logging.getLogger(__name__)


async def _play_round(db, fixtures, rng: random.Random, knockout: bool) -> None:
    # Проставляем случайный счет всем предстоящим матчам.
    for fixture in fixtures:
        if fixture.status != FixtureStatus.UPCOMING.value:
            continue
        first_score, second_score = rng.randint(0, 4), rng.randint(0, 4)
        winner = None
        if knockout and first_score == second_score:
            winner = rng.choice([fixture.first_team_id, fixture.second_team_id])
        await fixture_generation.submit_result(db, fixture.id, first_score, second_score, winning_team_id=winner)


async def main(teams: int, group_size: int, seed: int | None) -> None:
    """Создает турнир «группы → плей-офф», разыгрывает его случайными результатами и выводит итог."""
    rng = random.Random(seed)
    async with SessionLocal() as db:
        tournament = await tournament_service.create_tournament(
            db,
            {
                "name": f"Demo cup #{rng.randint(1, 9999)}",
                "stages": [
                    {"name": "Group stage", "stage_type": "group", "settings": {"group_size": group_size}},
                    {"name": "Playoff", "stage_type": "knockout", "settings": {"single_leg": True}},
                ],
            },
        )
        group_stage, playoff = tournament.stages
        team_ids = list(range(1, teams + 1))
        await stage_service.assign_teams_to_stage(db, group_stage.id, team_ids)
        await promotion.set_promotion_rule(db, group_stage.id, playoff.id, "top_per_group", {"n": 2})
        await tournament_service.start_tournament(db, tournament.id)

        fixtures = await fixture_generation.generate_fixtures(db, group_stage.id, rng=rng)
        await _play_round(db, fixtures, rng, knockout=False)
        result = await promotion.execute_promotion(db, group_stage.id)
        logger.info("Promoted to playoff: %s", result.promoted_team_ids)

        await stage_service.activate_stage(db, playoff.id)
        fixtures = await fixture_generation.generate_fixtures(db, playoff.id, rng=rng)
        while True:
            await _play_round(db, fixtures, rng, knockout=True)
            try:
                fixtures = await fixture_generation.generate_next_round(db, playoff.id, rng=rng)
            except PreconditionError:
                # Сетка сыграна: последний раунд был финалом.
                break

        final = fixtures[0]
        champion = final.winning_team_id or (
            final.first_team_id if final.first_team_score > final.second_team_score else final.second_team_id
        )
        await stage_service.complete_stage(db, playoff.id)
        await tournament_service.complete_tournament(db, tournament.id)

    print(f"Турнир {tournament.id} сыгран, победитель: команда {champion}.")


if __name__ == "__main__":
    # Запускаем асинхронный сидер из CLI.
    parser = argparse.ArgumentParser(description="Seed a demo group + playoff tournament")
    parser.add_argument("--teams", type=int, default=16)
    parser.add_argument("--group-size", type=int, default=4)
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args()
    configure_logging()
    asyncio.run(main(args.teams, args.group_size, args.seed))
