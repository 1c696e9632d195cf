from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from core import db, migrations, settings
from core.log import configure_logging
from users import repository as user_repository
from users import router as users_router

logger = logging.getLogger(__name__)


async def _open_database() -> db.Database:
    """
    Initializing phase: connect, migrate, check queries against the schema.

    Any failure here is fatal; the app never starts serving.
    """
    database = await db.Database.connect()
    try:
        applied = await migrations.run_migrations(
            database,
            migrations.load_migrations(settings.migrations_dir()),
        )
        for migration in applied:
            logger.info("startup_migration version=%s", migration.version)
        await user_repository.verify_statements(database)
    except BaseException:
        await database.close()
        raise
    return database


def _field_name(err: dict) -> str:
    # JSON decode errors carry a character offset, not a field.
    if err.get("type") == "json_invalid":
        return "body"
    loc = err.get("loc", ())
    parts = [str(p) for p in loc if p not in ("body", "path", "query")]
    return ".".join(parts) or "body"


async def _validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": _field_name(err), "message": str(err.get("msg", "Invalid value."))}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": errors},
    )


def create_app(database: db.Database | None = None) -> FastAPI:
    """
    Build the API. With `database` given, startup skips connecting and
    migrating and the caller keeps ownership of it.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if database is not None:
            app.state.database = database
            yield
            return

        configure_logging()
        app.state.database = await _open_database()
        logger.info("api_serving")
        try:
            yield
        finally:
            await app.state.database.close()
            app.state.database = None

    app = FastAPI(lifespan=lifespan)

    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    app.include_router(users_router.router, tags=["users"])

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    return app


load_dotenv()
app = create_app()


def run() -> None:
    configure_logging()
    uvicorn.run(app, host=settings.api_host(), port=settings.api_port())


if __name__ == "__main__":
    run()
