"""Доменные ошибки движка турниров."""


class TournamentError(ValueError):
    # Базовая доменная ошибка; наследуем ValueError, как и остальной сервисный слой.
    code = "tournament_error"


class NotFoundError(TournamentError):
    code = "not_found"


class ConfigurationError(TournamentError):
    """Нет правила промоушена, нет следующего этапа, неизвестный stage_type/rule_type."""

    code = "configuration_error"


class PreconditionError(TournamentError):
    """Операция недопустима в текущем состоянии (незавершенные матчи, неверный переход статуса)."""

    code = "precondition_failed"
