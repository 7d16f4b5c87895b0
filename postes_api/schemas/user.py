"""Pydantic schemas for Usuario CRUD."""

from __future__ import annotations

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from postes_api.models.user import Nivel

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_VALID_NIVEIS = {n.value for n in Nivel}


def is_valid_email(value: str) -> bool:
    return _EMAIL_RE.fullmatch(value) is not None


def _normalise_email(v: str) -> str:
    v = v.strip().lower()
    if not is_valid_email(v):
        raise ValueError("Invalid email address")
    return v


def _validate_nivel(v: str) -> str:
    v = v.strip().lower()
    if v not in _VALID_NIVEIS:
        raise ValueError(f"nivel must be one of: {', '.join(sorted(_VALID_NIVEIS))}")
    return v


class UsuarioCreate(BaseModel):
    email: str
    nome: str
    senha: str
    nivel: str

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return _normalise_email(v)

    @field_validator("nivel")
    @classmethod
    def _nivel(cls, v: str) -> str:
        return _validate_nivel(v)

    @field_validator("nome")
    @classmethod
    def _nome(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("nome must not be empty")
        if len(v) > 200:
            raise ValueError("nome must not exceed 200 characters")
        return v

    @field_validator("senha")
    @classmethod
    def _senha(cls, v: str) -> str:
        if len(v) < 6:
            raise ValueError("senha must have at least 6 characters")
        return v


class UsuarioUpdate(BaseModel):
    email: str | None = None
    nome: str | None = None
    senha: str | None = None
    nivel: str | None = None

    @field_validator("email")
    @classmethod
    def _email(cls, v: str | None) -> str | None:
        return None if v is None else _normalise_email(v)

    @field_validator("nivel")
    @classmethod
    def _nivel(cls, v: str | None) -> str | None:
        return None if v is None else _validate_nivel(v)

    @field_validator("nome")
    @classmethod
    def _nome(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            raise ValueError("nome must not be empty")
        return v.strip() if v else v

    @field_validator("senha")
    @classmethod
    def _senha(cls, v: str | None) -> str | None:
        if v is not None and len(v) < 6:
            raise ValueError("senha must have at least 6 characters")
        return v


class UsuarioRead(BaseModel):
    id: int
    email: str
    nome: str
    nivel: str
    created_at: datetime | None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class UsuarioResponse(BaseModel):
    success: bool = True
    message: str | None = None
    data: UsuarioRead


class UsuarioListResponse(BaseModel):
    success: bool = True
    count: int | None = None
    data: list[UsuarioRead] | None = None


class CountResponse(BaseModel):
    success: bool = True
    count: int


class MessageResponse(BaseModel):
    success: bool = True
    message: str
