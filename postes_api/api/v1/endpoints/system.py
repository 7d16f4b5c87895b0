"""
Health and system information endpoints (mounted outside the API prefix).
"""

from __future__ import annotations

import logging
import platform
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from postes_api.api.v1.deps import get_db, get_storage
from postes_api.core.config import settings
from postes_api.services.storage import StorageBackend

router = APIRouter(tags=["system"])
logger = logging.getLogger(__name__)

_STARTED_AT = time.monotonic()


class ServiceStatus(BaseModel):
    ok: bool
    error: str | None = None


class HealthResponse(BaseModel):
    status: str
    services: dict[str, ServiceStatus]
    system: dict[str, str]
    timestamp: str


@router.get("/health", response_model=HealthResponse)
async def health(
    response: Response,
    db: AsyncSession = Depends(get_db),
    storage: StorageBackend = Depends(get_storage),
) -> HealthResponse:
    """Public health check — database connectivity decides the status code."""
    database = ServiceStatus(ok=False)
    try:
        await db.execute(select(1))
        database.ok = True
    except Exception as e:
        logger.error("Health check DB failure: %s", e)
        database.error = str(e) if not settings.is_production else "unavailable"

    storage_status = ServiceStatus(ok=await storage.health_check())

    if not database.ok:
        response.status_code = 503

    return HealthResponse(
        status="OK" if database.ok else "SERVICE_UNAVAILABLE",
        services={"database": database, "storage": storage_status},
        system={
            "pythonVersion": platform.python_version(),
            "environment": settings.APP_ENV,
            "storageBackend": storage.name,
        },
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@router.get("/system/info")
async def system_info() -> dict:
    prefix = settings.API_PREFIX
    return {
        "status": "online",
        "version": settings.VERSION,
        "uptime": round(time.monotonic() - _STARTED_AT, 3),
        "environment": settings.APP_ENV,
        "endpoints": {
            "public": {
                "login": f"POST {prefix}/login",
                "countUsuarios": f"GET {prefix}/count-usuarios",
                "listarPostes": f"GET {prefix}/listar-postes",
                "countPostes": f"GET {prefix}/count-postes",
                "postes": f"POST {prefix}/postes",
                "location": f"PATCH {prefix}/postes/{{id}}/location",
                "health": "GET /health",
            },
            "admin": {
                "cadastroUsuarios": f"POST {prefix}/cadastro-usuarios",
                "listarUsuarios": f"GET {prefix}/listar-usuarios",
                "editarUsuario": f"PUT {prefix}/editar-usuario/{{id}}",
                "deletarUsuario": f"DELETE {prefix}/deletar-usuario/{{id}}",
            },
        },
    }
