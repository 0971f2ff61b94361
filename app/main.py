"""Создаёт FastAPI-приложение, подключает маршруты и обработчики доменных ошибок."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.errors import ConfigurationError, NotFoundError, PreconditionError, TournamentError
from app.core.logging import configure_logging
from app.routers.api import router as api_router

configure_logging()

app = FastAPI(title=settings.app_name, debug=settings.debug)

# Более конкретные ошибки проверяются раньше базового TournamentError.
ERROR_STATUS_CODES = (
    (NotFoundError, 404),
    (ConfigurationError, 422),
    (PreconditionError, 409),
    (TournamentError, 400),
)


def status_code_for(exc: TournamentError) -> int:
    for error_class, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_class):
            return status_code
    return 400


@app.exception_handler(TournamentError)
async def tournament_error_handler(request: Request, exc: TournamentError):
    return JSONResponse({"ok": False, "error": str(exc), "code": exc.code}, status_code=status_code_for(exc))


@app.get("/health")
async def health():
    return {"ok": True}


# Подключаем JSON API движка.
app.include_router(api_router)
