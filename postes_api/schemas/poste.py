"""Pydantic schemas and field rules for Poste / Foto."""

from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from postes_api.db.base import MAX_INTEGER_ID

IDENTIFICACAO_RE = re.compile(r"^\d{5}-\d$")

REQUIRED_FIELDS = ("cidade", "endereco", "numero", "usuarioId", "numeroIdentificacao", "coords")

_TRUE_WORDS = {"sim", "s"}
_FALSE_WORDS = {"nao", "não", "n"}


# ── Field rules ─────────────────────────────────────────────────────
def is_valid_identification(value: str | None) -> bool:
    return bool(value) and IDENTIFICACAO_RE.fullmatch(value.strip()) is not None


def is_valid_coordinates(lat: float, lon: float) -> bool:
    return -90 <= lat <= 90 and -180 <= lon <= 180


def parse_float(value: Any) -> float | None:
    """Parse a number sent as text; ``None`` when absent or not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().replace(",", ".")
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    return number if number == number and abs(number) != float("inf") else None


def parse_coords(value: Any) -> tuple[float, float]:
    """Read ``[lat, lon]`` (JSON or list) or ``"lat,lon"`` into a float pair."""
    items: Any = value
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            try:
                items = json.loads(text)
            except ValueError as exc:
                raise ValueError("coords must be a JSON array [latitude, longitude]") from exc
        else:
            items = [part for part in re.split(r"[,;\s]+", text) if part]
    if not isinstance(items, (list, tuple)) or len(items) != 2:
        raise ValueError("coords must contain exactly latitude and longitude")

    lat, lon = parse_float(items[0]), parse_float(items[1])
    if lat is None or lon is None:
        raise ValueError("coords must be numeric")
    return lat, lon


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Create ──────────────────────────────────────────────────────────
class PosteCreate(_CamelModel):
    numero_identificacao: str
    latitude: float
    longitude: float
    cidade: str
    endereco: str
    numero: str
    usuario_id: int = Field(le=MAX_INTEGER_ID)
    cep: str | None = None
    localizacao: str | None = None
    em_frente: str | None = None
    transformador: str | None = None
    medicao: str | None = None
    telecom: str | None = None
    concentrador: str | None = None
    estrutura_poste: str | None = None
    altura_poste: float | None = None
    tipo_braco: str | None = None
    tamanho_braco: float | None = None
    quantidade_pontos: int | None = Field(default=None, ge=0)
    tipo_lampada: str | None = None
    potencia_lampada: int | None = Field(default=None, ge=0)
    tipo_reator: str | None = None
    tipo_comando: str | None = None
    tipo_linha: str | None = None
    estrutura_linha: str | None = None
    tipo_via: str | None = None
    hierarquia_via: str | None = None
    tipo_pavimento: str | None = None
    quantidade_faixas: int | None = Field(default=None, ge=0)
    tipo_passeio: str | None = None
    canteiro_central: bool | None = None
    largura_canteiro: float | None = None
    distancia_entre_postes: float | None = None
    finalizacao: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _unpack_coords(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        # Blank form inputs mean "not informed"
        data = {k: v for k, v in data.items() if not (isinstance(v, str) and not v.strip())}
        if "coords" in data:
            data["latitude"], data["longitude"] = parse_coords(data.pop("coords"))
        return data

    @field_validator("numero_identificacao")
    @classmethod
    def _identificacao(cls, v: str) -> str:
        v = v.strip()
        if not IDENTIFICACAO_RE.fullmatch(v):
            raise ValueError("must follow the pattern 00000-0 (5 digits, dash, 1 digit)")
        return v

    @field_validator("latitude")
    @classmethod
    def _latitude(cls, v: float) -> float:
        if not -90 <= v <= 90:
            raise ValueError("latitude must be between -90 and 90")
        return v

    @field_validator("longitude")
    @classmethod
    def _longitude(cls, v: float) -> float:
        if not -180 <= v <= 180:
            raise ValueError("longitude must be between -180 and 180")
        return v

    @field_validator("cidade", "endereco", "numero")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("canteiro_central", mode="before")
    @classmethod
    def _sim_nao(cls, v: Any) -> Any:
        if isinstance(v, str):
            word = v.strip().lower()
            if word in _TRUE_WORDS:
                return True
            if word in _FALSE_WORDS:
                return False
        return v


# ── Location update ─────────────────────────────────────────────────
class LocationUpdate(_CamelModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


# ── Read ────────────────────────────────────────────────────────────
class FotoRead(_CamelModel):
    id: int
    url: str
    tipo: str
    especie: str | None
    latitude: float
    longitude: float
    nome_original: str | None
    tamanho: int | None
    mime_type: str | None
    uploaded_at: datetime | None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class PosteRead(PosteCreate):
    id: int
    created_at: datetime | None
    updated_at: datetime | None
    fotos: list[FotoRead] = []

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class PosteLocationRead(_CamelModel):
    id: int
    numero_identificacao: str
    latitude: float
    longitude: float
    updated_at: datetime | None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class Pagination(_CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int


class PosteResponse(BaseModel):
    success: bool = True
    message: str | None = None
    data: PosteRead


class PosteLocationResponse(BaseModel):
    success: bool = True
    message: str | None = None
    data: PosteLocationRead


class PosteListResponse(BaseModel):
    success: bool = True
    data: list[PosteRead]
    pagination: Pagination
