from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Настройки приложения и окружения.
    app_name: str = "Tournament Stage Engine"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    debug: bool = True
    database_url: str
    log_level: str = "INFO"

    # Значения по умолчанию для этапов без собственных settings.
    default_match_duration: int = 12
    default_match_interval: int = 15
    default_win_points: int = 3
    default_draw_points: int = 1
    default_loss_points: int = 0
    default_tie_breakers: list[str] = ["points", "goal_difference", "goals_for", "head_to_head"]
    default_group_size: int = 4
    swiss_bye_goals: int = 3

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @property
    def default_scoring(self) -> dict[str, int]:
        return {
            "win": self.default_win_points,
            "draw": self.default_draw_points,
            "loss": self.default_loss_points,
        }


settings = Settings()
