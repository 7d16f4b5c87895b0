"""Pydantic schemas for login and JWT tokens."""

from __future__ import annotations

from pydantic import BaseModel, field_validator

from postes_api.schemas.user import UsuarioRead


class LoginRequest(BaseModel):
    email: str
    senha: str

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, v: str) -> str:
        return v.strip().lower()


class LoginData(BaseModel):
    token: str
    token_type: str = "bearer"
    usuario: UsuarioRead


class LoginResponse(BaseModel):
    success: bool = True
    data: LoginData
