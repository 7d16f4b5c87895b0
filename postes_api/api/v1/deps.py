"""
FastAPI dependencies — database session, storage, auth guards.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from postes_api.core.config import settings
from postes_api.core.exceptions import ForbiddenError, InvalidTokenError, MissingAuthError
from postes_api.core.security import Identity, decode_access_token
from postes_api.models.user import Nivel
from postes_api.services.storage import StorageBackend
from postes_api.services.upload import UploadPipeline

TOKEN_HEADER = "x-auth-token"
TOKEN_COOKIE = "token"


# ── Database session & storage ──────────────────────────────────────
async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    async with request.app.state.database.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_storage(request: Request) -> StorageBackend:
    return request.app.state.storage


def get_upload_pipeline(storage: StorageBackend = Depends(get_storage)) -> UploadPipeline:
    return UploadPipeline(
        storage,
        max_file_size=settings.UPLOAD_MAX_FILE_SIZE,
        max_files=settings.UPLOAD_MAX_FILES,
        max_tree_files=settings.UPLOAD_MAX_TREE_FILES,
    )


# ── Credential verifier ─────────────────────────────────────────────
def extract_token(request: Request) -> str | None:
    """Token from ``Authorization: Bearer``, then ``x-auth-token``, then the ``token`` cookie."""
    authorization = request.headers.get("authorization")
    if authorization:
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()

    header_token = request.headers.get(TOKEN_HEADER)
    if header_token and header_token.strip():
        return header_token.strip()

    cookie_token = request.cookies.get(TOKEN_COOKIE)
    if cookie_token:
        # Cookie may be stored as "Bearer <token>" or just "<token>"
        if cookie_token.startswith("Bearer "):
            return cookie_token.split(" ", 1)[1]
        return cookie_token
    return None


async def verify_credentials(request: Request) -> Identity:
    """Decode the bearer token and attach its identity to ``request.state``."""
    token = extract_token(request)
    if not token:
        raise MissingAuthError()

    identity = decode_access_token(token)
    if identity is None:
        raise InvalidTokenError()

    request.state.identity = identity
    return identity


# ── Role gate ───────────────────────────────────────────────────────
def check_role(identity: Identity | None, required: Nivel) -> Identity:
    if identity is None:
        raise MissingAuthError()
    if identity.nivel != required.value:
        raise ForbiddenError(
            "Access denied: administrators only" if required is Nivel.ADMIN else "Access denied",
            code=f"{required.value.upper()}_ACCESS_REQUIRED",
            details=f"User role: {identity.nivel or 'undefined'}",
        )
    return identity


def require_role(required: Nivel):
    async def role_checker(request: Request, _identity: Identity = Depends(verify_credentials)) -> Identity:
        return check_role(getattr(request.state, "identity", None), required)

    return role_checker


require_admin = require_role(Nivel.ADMIN)
