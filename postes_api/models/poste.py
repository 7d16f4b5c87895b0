"""
Poste & Foto models — street-lighting pole inventory.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (Boolean, Column, DateTime, Float, ForeignKey, Integer,
                        String)
from sqlalchemy.orm import relationship

from postes_api.db.base import Base


class TipoFoto(str, enum.Enum):
    PANORAMICA = "PANORAMICA"
    LUMINARIA = "LUMINARIA"
    ARVORE = "ARVORE"
    OUTRO = "OUTRO"


class Poste(Base):
    __tablename__ = "postes"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    numero_identificacao: str = Column(String(7), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    latitude: float = Column(Float, nullable=False)  # type: ignore[assignment]
    longitude: float = Column(Float, nullable=False)  # type: ignore[assignment]

    # Address
    cidade: str = Column(String(120), nullable=False)  # type: ignore[assignment]
    endereco: str = Column(String(255), nullable=False)  # type: ignore[assignment]
    numero: str = Column(String(20), nullable=False)  # type: ignore[assignment]
    cep: str | None = Column(String(10), nullable=True)  # type: ignore[assignment]
    localizacao: str | None = Column(String(255), nullable=True)  # type: ignore[assignment]
    em_frente: str | None = Column(String(100), nullable=True)  # type: ignore[assignment]

    # Grid equipment
    transformador: str | None = Column(String(50), nullable=True)  # type: ignore[assignment]
    medicao: str | None = Column(String(50), nullable=True)  # type: ignore[assignment]
    telecom: str | None = Column(String(50), nullable=True)  # type: ignore[assignment]
    concentrador: str | None = Column(String(50), nullable=True)  # type: ignore[assignment]

    # Pole & luminaire
    estrutura_poste: str | None = Column(String(50), nullable=True)  # type: ignore[assignment]
    altura_poste: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
    tipo_braco: str | None = Column(String(50), nullable=True)  # type: ignore[assignment]
    tamanho_braco: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
    quantidade_pontos: int | None = Column(Integer, nullable=True)  # type: ignore[assignment]
    tipo_lampada: str | None = Column(String(50), nullable=True)  # type: ignore[assignment]
    potencia_lampada: int | None = Column(Integer, nullable=True)  # type: ignore[assignment]  # watts
    tipo_reator: str | None = Column(String(50), nullable=True)  # type: ignore[assignment]
    tipo_comando: str | None = Column(String(50), nullable=True)  # type: ignore[assignment]

    # Network line
    tipo_linha: str | None = Column(String(50), nullable=True)  # type: ignore[assignment]
    estrutura_linha: str | None = Column(String(50), nullable=True)  # type: ignore[assignment]

    # Road & surroundings
    tipo_via: str | None = Column(String(50), nullable=True)  # type: ignore[assignment]
    hierarquia_via: str | None = Column(String(50), nullable=True)  # type: ignore[assignment]
    tipo_pavimento: str | None = Column(String(50), nullable=True)  # type: ignore[assignment]
    quantidade_faixas: int | None = Column(Integer, nullable=True)  # type: ignore[assignment]
    tipo_passeio: str | None = Column(String(50), nullable=True)  # type: ignore[assignment]
    canteiro_central: bool | None = Column(Boolean, nullable=True)  # type: ignore[assignment]
    largura_canteiro: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
    distancia_entre_postes: float | None = Column(Float, nullable=True)  # type: ignore[assignment]
    finalizacao: str | None = Column(String(500), nullable=True)  # type: ignore[assignment]

    usuario_id: int = Column(Integer, ForeignKey("usuarios.id"), nullable=False, index=True)  # type: ignore[assignment]
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )
    updated_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    fotos = relationship(
        "Foto",
        back_populates="poste",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Foto.id",
    )


class Foto(Base):
    __tablename__ = "fotos"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    poste_id: int = Column(Integer, ForeignKey("postes.id", ondelete="CASCADE"), nullable=False, index=True)  # type: ignore[assignment]
    url: str = Column(String(1024), nullable=False)  # type: ignore[assignment]
    tipo: str = Column(String(20), nullable=False, default=TipoFoto.OUTRO.value)  # type: ignore[assignment]
    especie: str | None = Column(String(120), nullable=True)  # type: ignore[assignment]
    latitude: float = Column(Float, nullable=False)  # type: ignore[assignment]
    longitude: float = Column(Float, nullable=False)  # type: ignore[assignment]
    nome_original: str | None = Column(String(255), nullable=True)  # type: ignore[assignment]
    tamanho: int | None = Column(Integer, nullable=True)  # type: ignore[assignment]  # bytes
    mime_type: str | None = Column(String(50), nullable=True)  # type: ignore[assignment]
    uploaded_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    poste = relationship("Poste", back_populates="fotos")
