"""
Auth endpoint — exchange email + senha for a signed access token.
"""

import logging

from fastapi import APIRouter, Depends, Request, Response
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from postes_api.api.v1.deps import TOKEN_COOKIE, get_db
from postes_api.core.config import settings
from postes_api.core.exceptions import InvalidCredentialsError, NotFoundError
from postes_api.core.security import Identity, create_access_token, verify_password
from postes_api.models.user import Usuario
from postes_api.schemas.token import LoginData, LoginRequest, LoginResponse
from postes_api.schemas.user import UsuarioRead

# Rate limiter — keyed by client IP
limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)

router = APIRouter(tags=["auth"])
logger = logging.getLogger(__name__)


@router.post("/login", response_model=LoginResponse)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
) -> LoginResponse:
    """Authenticate with email/senha. Returns the token and sets it as an HttpOnly cookie."""
    result = await db.execute(select(Usuario).where(Usuario.email == body.email))
    usuario = result.scalar_one_or_none()

    if usuario is None:
        raise NotFoundError("User", code="USER_NOT_FOUND")
    if not verify_password(body.senha, usuario.senha_hash):
        logger.info("Failed login for %s", body.email)
        raise InvalidCredentialsError()

    token = create_access_token(Identity(id=usuario.id, nivel=usuario.nivel))

    response.set_cookie(
        key=TOKEN_COOKIE,
        value=token,
        httponly=True,
        secure=settings.COOKIE_SECURE,  # Set to True in HTTPS production
        samesite="lax",
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
    logger.info("User %d logged in", usuario.id)

    return LoginResponse(data=LoginData(token=token, usuario=UsuarioRead.model_validate(usuario)))
