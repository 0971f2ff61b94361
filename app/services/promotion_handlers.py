"""Правила выбора команд, которые проходят в следующий этап."""

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from app.core.errors import ConfigurationError, PreconditionError
from app.models.tournament import PromotionRuleType, Stage
from app.services import bracket
from app.services.strategies import stage_entries


class RankedTeam(Protocol):
    team_id: int
    group_id: int | None
    points: int
    rank: int | None


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _by_rank(rankings: Sequence[RankedTeam]) -> list[RankedTeam]:
    # Сводная таблица нескольких групп: сначала все первые места, затем вторые; внутри места по id группы.
    return sorted(
        rankings,
        key=lambda row: (
            row.rank if row.rank is not None else len(rankings) + 1,
            row.group_id if row.group_id is not None else 0,
        ),
    )


class PromotionHandler:
    rule_type: PromotionRuleType

    def validate_config(self, config: Mapping[str, Any]) -> bool:
        return True

    def select_winners(self, stage: Stage, rankings: Sequence[RankedTeam]) -> list[int]:
        raise NotImplementedError

    def config_for(self, stage: Stage) -> Mapping[str, Any]:
        if stage.promotion is None:
            raise ConfigurationError(f"Stage {stage.id} has no promotion rule")
        config = stage.promotion.rule_config or {}
        ensure_valid_config(self, config)
        return config


class TopNHandler(PromotionHandler):
    rule_type = PromotionRuleType.TOP_N

    def validate_config(self, config):
        return _is_positive_int(config.get("n"))

    def select_winners(self, stage, rankings):
        n = self.config_for(stage)["n"]
        return [row.team_id for row in _by_rank(rankings)[:n]]


class TopPerGroupHandler(PromotionHandler):
    rule_type = PromotionRuleType.TOP_PER_GROUP

    def validate_config(self, config):
        return _is_positive_int(config.get("n"))

    def select_winners(self, stage, rankings):
        n = self.config_for(stage)["n"]
        # Первые n каждой группы, группы по возрастанию id.
        group_ids = sorted({row.group_id for row in rankings}, key=lambda value: (value is None, value or 0))
        winners: list[int] = []
        for group_id in group_ids:
            group_rows = [row for row in rankings if row.group_id == group_id]
            winners.extend(row.team_id for row in _by_rank(group_rows)[:n])
        return winners


class ThresholdHandler(PromotionHandler):
    rule_type = PromotionRuleType.THRESHOLD

    def validate_config(self, config):
        threshold = config.get("threshold")
        return isinstance(threshold, int | float) and not isinstance(threshold, bool)

    def select_winners(self, stage, rankings):
        threshold = self.config_for(stage)["threshold"]
        return [row.team_id for row in _by_rank(rankings) if row.points >= threshold]


class PlayoffHandler(PromotionHandler):
    rule_type = PromotionRuleType.PLAYOFF

    def select_winners(self, stage, rankings):
        self.config_for(stage)
        fixtures = [fixture for fixture in stage.fixtures if not fixture.is_bye]
        if not fixtures:
            raise PreconditionError(f"Stage {stage.id} has no knockout fixtures")
        final_round = max(fixture.round for fixture in fixtures)
        # После первого раунда с баями в следующий этап идут и команды, пропустившие раунд.
        advancers = bracket.round_advancers(
            [entry.team_id for entry in stage_entries(stage)],
            [fixture for fixture in fixtures if fixture.round == final_round],
            final_round,
        )
        return list(advancers.values())


class ManualHandler(PromotionHandler):
    rule_type = PromotionRuleType.MANUAL

    def validate_config(self, config):
        team_ids = config.get("team_ids", [])
        return isinstance(team_ids, list) and all(_is_positive_int(team_id) for team_id in team_ids)

    def select_winners(self, stage, rankings):
        team_ids = list(self.config_for(stage).get("team_ids", []))
        if not team_ids:
            raise PreconditionError("Manual promotion requires an explicit team list")
        return team_ids


def get_promotion_handler(rule_type: PromotionRuleType | str) -> PromotionHandler:
    try:
        rule_type = PromotionRuleType(rule_type)
    except ValueError as exc:
        raise ConfigurationError(f"Unknown promotion rule type: {rule_type}") from exc

    match rule_type:
        case PromotionRuleType.TOP_N:
            return TopNHandler()
        case PromotionRuleType.TOP_PER_GROUP:
            return TopPerGroupHandler()
        case PromotionRuleType.THRESHOLD:
            return ThresholdHandler()
        case PromotionRuleType.PLAYOFF:
            return PlayoffHandler()
        case PromotionRuleType.MANUAL:
            return ManualHandler()


def ensure_valid_config(handler: PromotionHandler, config: Mapping[str, Any]) -> None:
    if not isinstance(config, Mapping) or not handler.validate_config(config):
        raise ConfigurationError(f"Invalid config for promotion rule '{handler.rule_type.value}'")
