"""
Usuario model — authentication & role-based access control.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String

from postes_api.db.base import Base


class Nivel(str, enum.Enum):
    ADMIN = "admin"
    USUARIO = "usuario"
    CADASTRADOR = "cadastrador"


class Usuario(Base):
    __tablename__ = "usuarios"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    email: str = Column(String(320), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    nome: str = Column(String(200), nullable=False)  # type: ignore[assignment]
    senha_hash: str = Column(String(128), nullable=False)  # type: ignore[assignment]
    nivel: str = Column(  # type: ignore[assignment]
        String(20),
        nullable=False,
        default=Nivel.USUARIO.value,
        server_default=Nivel.USUARIO.value,
    )  # admin | usuario | cadastrador
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
