"""
Usuario endpoints.

- GET /count-usuarios is public.
- Registration, listing, edit and delete require the admin role.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from postes_api.api.v1.deps import get_db, require_admin
from postes_api.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from postes_api.core.security import Identity, get_password_hash
from postes_api.db.base import MAX_INTEGER_ID
from postes_api.db.errors import persistence_guard
from postes_api.models.poste import Poste
from postes_api.models.user import Usuario
from postes_api.schemas.user import (CountResponse, MessageResponse,
                                     UsuarioCreate, UsuarioListResponse,
                                     UsuarioRead, UsuarioResponse,
                                     UsuarioUpdate)

router = APIRouter(tags=["usuarios"])
logger = logging.getLogger(__name__)

_DUPLICATE_EMAIL = "A user with this email"


async def _count_usuarios(db: AsyncSession) -> int:
    result = await db.execute(select(func.count(Usuario.id)))
    return result.scalar() or 0


async def _get_usuario_or_404(db: AsyncSession, usuario_id: int) -> Usuario:
    usuario = await db.get(Usuario, usuario_id)
    if usuario is None:
        raise NotFoundError("User", usuario_id)
    return usuario


@router.get("/count-usuarios", response_model=CountResponse)
async def count_usuarios(db: AsyncSession = Depends(get_db)) -> CountResponse:
    return CountResponse(count=await _count_usuarios(db))


@router.post("/cadastro-usuarios", response_model=UsuarioResponse, status_code=201)
async def register_usuario(
    body: UsuarioCreate,
    db: AsyncSession = Depends(get_db),
    _admin: Identity = Depends(require_admin),
) -> UsuarioResponse:
    """Create a new user account (admin only)."""
    usuario = Usuario(
        email=body.email,
        nome=body.nome,
        senha_hash=get_password_hash(body.senha),
        nivel=body.nivel,
    )
    async with persistence_guard(db, _DUPLICATE_EMAIL):
        db.add(usuario)
        await db.commit()
    await db.refresh(usuario)

    logger.info("Created user %d (%s, %s)", usuario.id, usuario.email, usuario.nivel)
    return UsuarioResponse(message="User created", data=UsuarioRead.model_validate(usuario))


@router.get(
    "/listar-usuarios",
    response_model=UsuarioListResponse,
    response_model_exclude_none=True,
)
async def list_usuarios(
    count: bool = Query(default=False),
    db: AsyncSession = Depends(get_db),
    _admin: Identity = Depends(require_admin),
) -> UsuarioListResponse:
    """List every user, or only their number with ``?count=true``."""
    if count:
        return UsuarioListResponse(count=await _count_usuarios(db))

    result = await db.execute(select(Usuario).order_by(Usuario.id))
    usuarios = [UsuarioRead.model_validate(u) for u in result.scalars().all()]
    return UsuarioListResponse(count=len(usuarios), data=usuarios)


@router.put("/editar-usuario/{usuario_id}", response_model=UsuarioResponse)
async def edit_usuario(
    body: UsuarioUpdate,
    usuario_id: int = Path(le=MAX_INTEGER_ID),
    db: AsyncSession = Depends(get_db),
    _admin: Identity = Depends(require_admin),
) -> UsuarioResponse:
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise ValidationError("Nothing to update: send at least one of email, nome, senha, nivel")

    usuario = await _get_usuario_or_404(db, usuario_id)

    senha = changes.pop("senha", None)
    if senha is not None:
        usuario.senha_hash = get_password_hash(senha)
    for field, value in changes.items():
        setattr(usuario, field, value)

    async with persistence_guard(db, _DUPLICATE_EMAIL):
        await db.commit()
    await db.refresh(usuario)

    logger.info("Updated user %d: %s", usuario_id, sorted(body.model_fields_set))
    return UsuarioResponse(message="User updated", data=UsuarioRead.model_validate(usuario))


@router.delete("/deletar-usuario/{usuario_id}", response_model=MessageResponse)
async def delete_usuario(
    usuario_id: int = Path(le=MAX_INTEGER_ID),
    db: AsyncSession = Depends(get_db),
    admin: Identity = Depends(require_admin),
) -> MessageResponse:
    usuario = await _get_usuario_or_404(db, usuario_id)

    if usuario.id == admin.id:
        raise ForbiddenError(
            "Administrators cannot delete their own account",
            code="SELF_DELETE_FORBIDDEN",
        )

    owned = await db.execute(select(func.count(Poste.id)).where(Poste.usuario_id == usuario_id))
    if owned.scalar():
        raise ValidationError(
            "User owns registered poles and cannot be deleted",
            code="USER_HAS_POSTES",
        )

    async with persistence_guard(db, "User"):
        await db.delete(usuario)
        await db.commit()

    logger.info("Deleted user %d (%s)", usuario_id, usuario.email)
    return MessageResponse(message=f"User '{usuario.nome}' deleted")
