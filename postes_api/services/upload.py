"""
Photo upload pipeline: filter → stage → persist → (cleanup on failure).

Files arrive as multipart parts named ``fotos``, or ``fotosArvore`` for tree
photos. Every file of a batch is checked before anything is written, bodies
are held in memory while their size is verified, and all accepted files are
pushed to the storage backend concurrently. When a later stage of the request
fails, :meth:`cleanup` removes whatever was stored. Cleanup is best effort: a
process crash between upload and database insert can still leave orphaned
objects.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from urllib.parse import unquote

from starlette.datastructures import FormData, UploadFile

from postes_api.core.exceptions import InvalidFileTypeError, UploadProcessingError
from postes_api.models.poste import TipoFoto
from postes_api.schemas.poste import is_valid_coordinates, parse_float
from postes_api.services.storage import StorageBackend, file_extension

logger = logging.getLogger(__name__)

FILE_FIELD = "fotos"
TREE_FILE_FIELD = "fotosArvore"
TREE_NAME_PREFIX = "arvore_"
ALLOWED_CONTENT_TYPES = frozenset({"image/jpeg", "image/png"})
ALLOWED_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png"})
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024
DEFAULT_MAX_FILES = 10
DEFAULT_MAX_TREE_FILES = 5
# Room for multipart boundaries and the text fields of a pole form
FORM_OVERHEAD = 64 * 1024


def to_sequence(value: Any) -> list[Any]:
    """Coerce an absent, single or repeated form value into a list."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def form_sequence(form: FormData, name: str) -> list[str | None]:
    """Return the text values of *name*, expanding a single JSON array."""
    values: list[str | None] = [v for v in form.getlist(name) if isinstance(v, str)]
    if len(values) == 1 and values[0].lstrip().startswith("["):
        try:
            decoded = json.loads(values[0])
        except ValueError:
            return values
        return [None if v is None else str(v) for v in to_sequence(decoded)]
    return values


def _format_size(size: int) -> str:
    if size >= 1024 * 1024:
        return f"{size / (1024 * 1024):g}MB"
    return f"{size} bytes"


def resolve_category(value: str | None) -> TipoFoto:
    try:
        return TipoFoto((value or "").strip().upper())
    except ValueError:
        return TipoFoto.OUTRO


def tree_coordinates(filename: str | None) -> tuple[float, float] | None:
    """Read the position embedded in a tree photo name.

    Tree photos are named ``arvore_{"tempId": ..., "latitude": ..., "longitude": ...}``,
    optionally followed by an extension. Clients percent-encode the quotes.
    """
    if not filename or not filename.startswith(TREE_NAME_PREFIX):
        return None
    raw = unquote(filename[len(TREE_NAME_PREFIX):])
    end = raw.rfind("}")
    if end < 0:
        return None
    try:
        info = json.loads(raw[:end + 1])
    except ValueError:
        logger.warning("Unreadable tree photo name: %s", filename)
        return None
    if not isinstance(info, dict):
        return None

    lat = parse_float(info.get("latitude"))
    lon = parse_float(info.get("longitude"))
    if lat is None or lon is None or not is_valid_coordinates(lat, lon):
        return None
    return lat, lon


@dataclass
class StagedFile:
    filename: str | None
    content_type: str
    data: bytes
    field: str = FILE_FIELD

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class UploadedFile:
    """A stored photo annotated with the metadata submitted alongside it."""

    url: str
    key: str
    nome_original: str | None
    tamanho: int
    mime_type: str
    tipo: TipoFoto = TipoFoto.OUTRO
    especie: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    uploaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PhotoMetadata:
    tipos: list[str | None] = field(default_factory=list)
    especies: list[str | None] = field(default_factory=list)
    latitudes: list[str | None] = field(default_factory=list)
    longitudes: list[str | None] = field(default_factory=list)

    @classmethod
    def from_form(cls, form: FormData) -> PhotoMetadata:
        return cls(
            tipos=form_sequence(form, "tipos"),
            especies=form_sequence(form, "especies"),
            latitudes=form_sequence(form, "latitudes"),
            longitudes=form_sequence(form, "longitudes"),
        )

    @staticmethod
    def _at(values: Sequence[str | None], index: int) -> str | None:
        return values[index] if index < len(values) else None

    def annotate(self, uploaded: UploadedFile, index: int) -> UploadedFile:
        uploaded.tipo = resolve_category(self._at(self.tipos, index))
        especie = (self._at(self.especies, index) or "").strip()
        uploaded.especie = especie if uploaded.tipo is TipoFoto.ARVORE and especie else None

        lat = parse_float(self._at(self.latitudes, index))
        lon = parse_float(self._at(self.longitudes, index))
        if lat is not None and lon is not None and is_valid_coordinates(lat, lon):
            uploaded.latitude, uploaded.longitude = lat, lon
        return uploaded

    @staticmethod
    def annotate_tree(uploaded: UploadedFile) -> UploadedFile:
        uploaded.tipo = TipoFoto.ARVORE
        coords = tree_coordinates(uploaded.nome_original)
        if coords is not None:
            uploaded.latitude, uploaded.longitude = coords
        return uploaded


class UploadPipeline:
    def __init__(
        self,
        storage: StorageBackend,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        max_files: int = DEFAULT_MAX_FILES,
        field_name: str = FILE_FIELD,
        tree_field_name: str = TREE_FILE_FIELD,
        max_tree_files: int = DEFAULT_MAX_TREE_FILES,
    ) -> None:
        self.storage = storage
        self.max_file_size = max_file_size
        self.max_files = max_files
        self.field_name = field_name
        self.tree_field_name = tree_field_name
        self.max_tree_files = max_tree_files

    @property
    def field_names(self) -> list[str]:
        return [self.field_name, self.tree_field_name]

    @property
    def max_body_size(self) -> int:
        return self.max_files * self.max_file_size + FORM_OVERHEAD

    def check_body_size(self, content_length: str | None) -> None:
        """Reject a request whose declared length cannot hold a valid batch."""
        try:
            declared = int(content_length or 0)
        except ValueError:
            return
        if declared > self.max_body_size:
            raise UploadProcessingError(
                f"Request body too large ({_format_size(self.max_body_size)} maximum)",
                status_code=413,
                code="PAYLOAD_TOO_LARGE",
            )

    # ── Collect ─────────────────────────────────────────────────────
    def collect(self, form: FormData) -> list[tuple[str, UploadFile]]:
        files: list[tuple[str, UploadFile]] = []
        for key, value in form.multi_items():
            if not isinstance(value, UploadFile):
                continue
            if key not in self.field_names:
                raise UploadProcessingError(
                    f"Unexpected file field '{key}'; use '{self.field_name}' or '{self.tree_field_name}'",
                    code="UNEXPECTED_FILE_FIELD",
                    details={"receivedField": key, "expectedFields": self.field_names},
                )
            # Browsers send an empty part when no file was picked
            if not value.filename:
                continue
            files.append((key, value))

        if len(files) > self.max_files:
            raise UploadProcessingError(
                f"Maximum number of files exceeded ({self.max_files})",
                code="FILE_COUNT_LIMIT_EXCEEDED",
            )
        if sum(key == self.tree_field_name for key, _ in files) > self.max_tree_files:
            raise UploadProcessingError(
                f"Maximum number of tree photos exceeded ({self.max_tree_files})",
                code="FILE_COUNT_LIMIT_EXCEEDED",
            )
        return files

    # ── Filter ──────────────────────────────────────────────────────
    def filter(self, files: Sequence[UploadFile]) -> None:
        for upload in files:
            content_type = (upload.content_type or "").lower()
            ext = file_extension(upload.filename)
            if content_type not in ALLOWED_CONTENT_TYPES or (ext and ext not in ALLOWED_EXTENSIONS):
                raise InvalidFileTypeError(
                    details={"filename": upload.filename, "contentType": upload.content_type},
                )

    # ── Stage ───────────────────────────────────────────────────────
    async def stage(
        self, files: Sequence[UploadFile], fields: Sequence[str] | None = None
    ) -> list[StagedFile]:
        fields = fields or [self.field_name] * len(files)
        staged = []
        for upload, field_name in zip(files, fields):
            data = await upload.read(self.max_file_size + 1)
            if len(data) > self.max_file_size:
                raise UploadProcessingError(
                    f"Maximum file size exceeded ({_format_size(self.max_file_size)})",
                    code="FILE_SIZE_LIMIT_EXCEEDED",
                    details={"filename": upload.filename},
                )
            staged.append(
                StagedFile(
                    filename=upload.filename,
                    content_type=(upload.content_type or "").lower(),
                    data=data,
                    field=field_name,
                )
            )
        return staged

    # ── Persist ─────────────────────────────────────────────────────
    async def persist(
        self, staged: Sequence[StagedFile], metadata: PhotoMetadata | None = None
    ) -> list[UploadedFile]:
        metadata = metadata or PhotoMetadata()
        results = await asyncio.gather(
            *(self.storage.save(s.data, s.filename, s.content_type) for s in staged),
            return_exceptions=True,
        )

        uploaded: list[UploadedFile] = []
        failures: list[BaseException] = []
        # Metadata lists are indexed by position among the regular photos only
        position = 0
        for source, result in zip(staged, results):
            is_tree = source.field == self.tree_field_name
            index = position
            if not is_tree:
                position += 1
            if isinstance(result, BaseException):
                logger.error("Upload of %s failed: %s", source.filename, result)
                failures.append(result)
                continue
            record = UploadedFile(
                url=result.url,
                key=result.key,
                nome_original=source.filename,
                tamanho=source.size,
                mime_type=source.content_type,
            )
            if is_tree:
                uploaded.append(metadata.annotate_tree(record))
            else:
                uploaded.append(metadata.annotate(record, index))

        if failures:
            await self.cleanup(u.url for u in uploaded)
            raise UploadProcessingError(
                "Unexpected error while storing files",
                status_code=500,
                code="UPLOAD_ERROR",
            ) from failures[0]
        return uploaded

    # ── Cleanup ─────────────────────────────────────────────────────
    async def cleanup(self, urls: Iterable[str]) -> None:
        """Best-effort removal of stored files. Never raises."""
        targets = [u for u in urls if u]
        if not targets:
            return
        results = await asyncio.gather(
            *(self.storage.delete(url) for url in targets),
            return_exceptions=True,
        )
        removed = 0
        for url, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.warning("Cleanup failed for %s: %s", url, result)
            elif result:
                removed += 1
        logger.info("Cleanup removed %d of %d uploaded file(s)", removed, len(targets))

    # ── Whole batch ─────────────────────────────────────────────────
    async def process(self, form: FormData) -> list[UploadedFile]:
        collected = self.collect(form)
        if not collected:
            return []
        fields = [key for key, _ in collected]
        files = [upload for _, upload in collected]
        self.filter(files)
        staged = await self.stage(files, fields)
        return await self.persist(staged, PhotoMetadata.from_form(form))
