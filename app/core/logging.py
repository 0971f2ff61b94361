import logging

from app.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    # Настраиваем корневой логгер один раз для приложения и CLI-скриптов.
    logging.basicConfig(level=(level or settings.log_level).upper(), format=LOG_FORMAT)
