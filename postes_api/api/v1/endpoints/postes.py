"""
Poste endpoints — creation with photos, listing, counting, location updates.

Pole creation runs the upload pipeline first and validates the form
afterwards; whatever went to storage is cleaned up if the request fails.
"""

from __future__ import annotations

import logging

import pydantic
from fastapi import APIRouter, Depends, Path, Query, Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import FormData

from postes_api.api.v1.deps import get_db, get_upload_pipeline
from postes_api.core.exceptions import MissingFieldsError, NotFoundError, ValidationError
from postes_api.db.base import MAX_INTEGER_ID
from postes_api.db.errors import persistence_guard
from postes_api.models.poste import Foto, Poste
from postes_api.models.user import Usuario
from postes_api.schemas.poste import (REQUIRED_FIELDS, LocationUpdate,
                                      Pagination, PosteCreate,
                                      PosteListResponse, PosteLocationRead,
                                      PosteLocationResponse, PosteRead,
                                      PosteResponse)
from postes_api.schemas.user import CountResponse
from postes_api.services.upload import UploadedFile, UploadPipeline

router = APIRouter(tags=["postes"])
logger = logging.getLogger(__name__)

_PHOTO_FIELDS = {"fotos", "fotosArvore", "tipos", "especies", "latitudes", "longitudes"}
_DUPLICATE_POSTE = "A pole with this numeroIdentificacao"


def _form_fields(form: FormData) -> dict[str, str]:
    return {
        key: value
        for key, value in form.items()
        if isinstance(value, str) and key not in _PHOTO_FIELDS
    }


def _describe(exc: pydantic.ValidationError) -> str:
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"])
        message = err["msg"].removeprefix("Value error, ")
        problems.append(f"{location}: {message}" if location else message)
    return "; ".join(problems)


def parse_poste_form(form: FormData) -> PosteCreate:
    """Check required fields, then formats, of a pole creation form."""
    data = _form_fields(form)
    missing = [name for name in REQUIRED_FIELDS if not data.get(name, "").strip()]
    if missing:
        raise MissingFieldsError(missing)
    try:
        return PosteCreate.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ValidationError(_describe(exc)) from exc


def build_fotos(payload: PosteCreate, uploaded: list[UploadedFile]) -> list[Foto]:
    fotos = []
    for item in uploaded:
        has_coords = item.latitude is not None and item.longitude is not None
        fotos.append(
            Foto(
                url=item.url,
                tipo=item.tipo.value,
                especie=item.especie,
                latitude=item.latitude if has_coords else payload.latitude,
                longitude=item.longitude if has_coords else payload.longitude,
                nome_original=item.nome_original,
                tamanho=item.tamanho,
                mime_type=item.mime_type,
                uploaded_at=item.uploaded_at,
            )
        )
    return fotos


async def _load_poste(db: AsyncSession, poste_id: int) -> Poste | None:
    result = await db.execute(
        select(Poste).where(Poste.id == poste_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _insert_poste(
    db: AsyncSession, form: FormData, uploaded: list[UploadedFile]
) -> Poste:
    payload = parse_poste_form(form)

    if await db.get(Usuario, payload.usuario_id) is None:
        raise NotFoundError("User", payload.usuario_id)

    poste = Poste(**payload.model_dump())
    poste.fotos = build_fotos(payload, uploaded)

    async with persistence_guard(db, _DUPLICATE_POSTE):
        db.add(poste)
        await db.commit()

    created = await _load_poste(db, poste.id)
    if created is None:
        raise NotFoundError("Pole", poste.id)
    return created


# ── Listing ─────────────────────────────────────────────────────────
@router.get("/listar-postes", response_model=PosteListResponse)
async def list_postes(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> PosteListResponse:
    total = (await db.execute(select(func.count(Poste.id)))).scalar() or 0
    result = await db.execute(
        select(Poste)
        .order_by(Poste.created_at.desc(), Poste.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    postes = [PosteRead.model_validate(p) for p in result.scalars().all()]
    return PosteListResponse(
        data=postes,
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=(total + limit - 1) // limit,
        ),
    )


@router.get("/count-postes", response_model=CountResponse)
async def count_postes(db: AsyncSession = Depends(get_db)) -> CountResponse:
    result = await db.execute(select(func.count(Poste.id)))
    return CountResponse(count=result.scalar() or 0)


# ── Creation ────────────────────────────────────────────────────────
@router.post("/postes", response_model=PosteResponse, status_code=201)
async def create_poste(
    request: Request,
    db: AsyncSession = Depends(get_db),
    pipeline: UploadPipeline = Depends(get_upload_pipeline),
) -> PosteResponse:
    """Create a pole and its photos from a multipart form (files under ``fotos`` or ``fotosArvore``)."""
    pipeline.check_body_size(request.headers.get("content-length"))
    form = await request.form()
    uploaded = await pipeline.process(form)
    try:
        poste = await _insert_poste(db, form, uploaded)
    except Exception:
        await pipeline.cleanup(item.url for item in uploaded)
        raise

    logger.info(
        "Created poste %d (%s) with %d photo(s)",
        poste.id,
        poste.numero_identificacao,
        len(uploaded),
    )
    return PosteResponse(message="Pole created", data=PosteRead.model_validate(poste))


# ── Location ────────────────────────────────────────────────────────
@router.patch("/postes/{poste_id}/location", response_model=PosteLocationResponse)
async def update_poste_location(
    body: LocationUpdate,
    poste_id: int = Path(le=MAX_INTEGER_ID),
    db: AsyncSession = Depends(get_db),
) -> PosteLocationResponse:
    poste = await db.get(Poste, poste_id)
    if poste is None:
        raise NotFoundError("Pole", poste_id)

    poste.latitude = body.latitude
    poste.longitude = body.longitude
    async with persistence_guard(db, "Pole"):
        await db.commit()
    await db.refresh(poste)

    logger.info("Moved poste %d to (%s, %s)", poste_id, body.latitude, body.longitude)
    return PosteLocationResponse(
        message="Location updated",
        data=PosteLocationRead.model_validate(poste),
    )
