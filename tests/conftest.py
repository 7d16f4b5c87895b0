"""
Shared test fixtures for the Postes API test suite.

Every test gets its own in-memory aiosqlite database and a local storage
directory under ``tmp_path``; both are wired in through dependency overrides.
"""

import os
import sys
import tempfile
from pathlib import Path
from typing import AsyncGenerator

import pytest

# Ensure project root is importable
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Override environment BEFORE importing application modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CORS_ORIGINS"] = '["*"]'
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["STORAGE_LOCAL_PATH"] = tempfile.mkdtemp(prefix="postes-uploads-")
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["APP_ENV"] = "test"

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.pool import StaticPool

from postes_api.api.v1.deps import get_db, get_storage
from postes_api.core.security import Identity, create_access_token, get_password_hash
from postes_api.db.session import Database
from postes_api.main import app
from postes_api.models.user import Nivel, Usuario
from postes_api.services.storage import LocalStorage

# JPEG / PNG magic bytes are enough: content is never decoded
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 64
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
async def database() -> AsyncGenerator[Database, None]:
    """Fresh in-memory database with all tables created."""
    db = Database(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def storage(tmp_path: Path) -> LocalStorage:
    return LocalStorage(tmp_path / "uploads", "/uploads")


@pytest.fixture(autouse=True)
def wire_dependencies(database: Database, storage: LocalStorage):
    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with database.session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    yield
    app.dependency_overrides.clear()


@pytest.fixture
async def async_client() -> AsyncGenerator[AsyncClient, None]:
    """Return a httpx AsyncClient wired to the app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def db_session(database: Database) -> AsyncGenerator[AsyncSession, None]:
    """Return a raw database session for direct queries in tests."""
    async with database.session_factory() as session:
        yield session


# ── Users & tokens ──────────────────────────────────────────────────
async def create_usuario(
    session: AsyncSession,
    email: str,
    nivel: str = Nivel.USUARIO.value,
    senha: str = "secret123",
    nome: str = "Test User",
) -> Usuario:
    usuario = Usuario(email=email, nome=nome, senha_hash=get_password_hash(senha), nivel=nivel)
    session.add(usuario)
    await session.commit()
    await session.refresh(usuario)
    return usuario


def auth_headers(usuario: Usuario) -> dict[str, str]:
    token = create_access_token(Identity(id=usuario.id, nivel=usuario.nivel))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def admin(db_session: AsyncSession) -> Usuario:
    return await create_usuario(db_session, "admin@test.com", Nivel.ADMIN.value, nome="Admin")


@pytest.fixture
async def standard_user(db_session: AsyncSession) -> Usuario:
    return await create_usuario(db_session, "user@test.com", Nivel.USUARIO.value, nome="Regular")


@pytest.fixture
def admin_headers(admin: Usuario) -> dict[str, str]:
    return auth_headers(admin)


@pytest.fixture
def user_headers(standard_user: Usuario) -> dict[str, str]:
    return auth_headers(standard_user)


def stored_files(storage: LocalStorage) -> list[Path]:
    if not storage.root.exists():
        return []
    return sorted(p for p in storage.root.iterdir() if p.is_file())
