"""
Postes API — Application entry point.

This is the **only** file that assembles the app.  All business logic
lives in the `api/`, `services/`, `models/`, and `core/` packages.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from sqlalchemy import select

from postes_api.api.v1.api import api_router, system_router
from postes_api.api.v1.endpoints.auth import limiter
from postes_api.core.config import settings
from postes_api.core.exceptions import register_exception_handlers
from postes_api.core.security import get_password_hash
from postes_api.db.session import Database
# Ensure all models are imported so metadata.create_all can see them
from postes_api.models.poste import Foto, Poste  # noqa: F401
from postes_api.models.user import Nivel, Usuario
from postes_api.services.storage import build_storage

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


async def seed_first_admin(database: Database) -> None:
    """Create the default admin account when it does not exist yet."""
    email = settings.FIRST_ADMIN_EMAIL.strip().lower()
    async with database.session_factory() as session:
        result = await session.execute(select(Usuario).where(Usuario.email == email))
        if result.scalar_one_or_none() is None:
            admin = Usuario(
                email=email,
                nome=settings.FIRST_ADMIN_NAME,
                senha_hash=get_password_hash(settings.FIRST_ADMIN_PASSWORD),
                nivel=Nivel.ADMIN.value,
            )
            session.add(admin)
            await session.commit()
            logger.info(
                "Default admin created: %s (password: <redacted>)",
                email,
            )


# ── Lifespan ────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    database = Database(settings.DATABASE_URL)
    await database.create_all()
    logger.info("💾 Database tables initialised")
    await seed_first_admin(database)

    storage = build_storage(settings)
    await storage.open()

    app.state.database = database
    app.state.storage = storage

    logger.info("🚀 %s v%s started (%s, storage=%s)", settings.PROJECT_NAME, settings.VERSION, settings.APP_ENV, storage.name)
    try:
        yield
    finally:
        await storage.close()
        await database.dispose()
        logger.info("Shutdown complete")


# ── App factory ─────────────────────────────────────────────────────
def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.PROJECT_NAME,
        description="Street-lighting pole inventory",
        version=settings.VERSION,
        openapi_url=f"{settings.API_PREFIX}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "x-auth-token", "x-requested-with"],
        expose_headers=["Authorization"],
        max_age=86400,
    )

    # Login rate limiting
    application.state.limiter = limiter

    # Global exception handlers (prevent stack-trace leakage)
    register_exception_handlers(application)

    application.include_router(api_router, prefix=settings.API_PREFIX)
    application.include_router(system_router)

    # Photos stored on local disk are served as static files
    if settings.STORAGE_BACKEND.lower() == "local":
        application.mount(
            settings.STORAGE_LOCAL_URL_PREFIX,
            StaticFiles(directory=settings.STORAGE_LOCAL_PATH, check_dir=False),
            name="uploads",
        )

    return application


app = create_app()


def run() -> None:
    uvicorn.run(
        "postes_api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
