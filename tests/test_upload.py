"""Tests for the photo upload pipeline."""

from io import BytesIO

import pytest
from starlette.datastructures import FormData, Headers, UploadFile

from conftest import JPEG_BYTES
from postes_api.core.exceptions import InvalidFileTypeError, UploadProcessingError
from postes_api.models.poste import TipoFoto
from postes_api.services.storage import LocalStorage, StorageBackend, StoredObject
from postes_api.services.upload import (PhotoMetadata, StagedFile, UploadedFile,
                                        UploadPipeline, form_sequence,
                                        resolve_category, to_sequence,
                                        tree_coordinates)


def upload(filename: str, data: bytes = JPEG_BYTES, content_type: str = "image/jpeg") -> UploadFile:
    return UploadFile(
        file=BytesIO(data),
        filename=filename,
        headers=Headers({"content-type": content_type}),
    )


class FlakyStorage(StorageBackend):
    """Stores everything except filenames starting with ``fail``."""

    name = "flaky"

    def __init__(self, fail_deletes: bool = False) -> None:
        self.saved: list[str] = []
        self.deleted: list[str] = []
        self.fail_deletes = fail_deletes

    async def save(self, data, filename, content_type):
        if filename and filename.startswith("fail"):
            raise ConnectionError("storage unreachable")
        key = f"k-{len(self.saved)}"
        self.saved.append(key)
        return StoredObject(key=key, url=f"mem://{key}")

    async def delete(self, url):
        if self.fail_deletes:
            raise ConnectionError("storage unreachable")
        self.deleted.append(url)
        return True


# ── Helpers ─────────────────────────────────────────────────────────
def test_to_sequence():
    assert to_sequence(None) == []
    assert to_sequence("ARVORE") == ["ARVORE"]
    assert to_sequence(["A", "B"]) == ["A", "B"]
    assert to_sequence(("A",)) == ["A"]


def test_form_sequence_repeated_and_json():
    form = FormData([("tipos", "ARVORE"), ("tipos", "OUTRO")])
    assert form_sequence(form, "tipos") == ["ARVORE", "OUTRO"]

    form = FormData([("latitudes", '[1.5, null, "2"]')])
    assert form_sequence(form, "latitudes") == ["1.5", None, "2"]

    form = FormData([("tipos", "[not json")])
    assert form_sequence(form, "tipos") == ["[not json"]

    assert form_sequence(FormData(), "especies") == []


def test_resolve_category():
    assert resolve_category("arvore") is TipoFoto.ARVORE
    assert resolve_category(" LUMINARIA ") is TipoFoto.LUMINARIA
    assert resolve_category("poste") is TipoFoto.OUTRO
    assert resolve_category(None) is TipoFoto.OUTRO


def test_metadata_drops_invalid_coordinates():
    metadata = PhotoMetadata(tipos=["ARVORE"], especies=[" "], latitudes=["95"], longitudes=["10"])
    record = metadata.annotate(UploadedFile(url="u", key="k", nome_original=None, tamanho=1, mime_type="image/png"), 0)
    assert record.tipo is TipoFoto.ARVORE
    assert record.especie is None
    assert record.latitude is None and record.longitude is None


def test_metadata_accepts_comma_decimals():
    metadata = PhotoMetadata(latitudes=["-23,5"], longitudes=["-46,6"])
    record = metadata.annotate(UploadedFile(url="u", key="k", nome_original=None, tamanho=1, mime_type="image/png"), 0)
    assert (record.latitude, record.longitude) == (-23.5, -46.6)
    assert record.tipo is TipoFoto.OUTRO


@pytest.mark.parametrize("filename, expected", [
    ('arvore_{"tempId": 1, "latitude": -23.57, "longitude": -46.65}.jpg', (-23.57, -46.65)),
    ("arvore_{%22tempId%22:2,%22latitude%22:-8.05,%22longitude%22:-34.9}", (-8.05, -34.9)),
    ('arvore_{"latitude": "-23,5", "longitude": "-46,6"}.png', (-23.5, -46.6)),
    ('arvore_{"latitude": 95, "longitude": 0}.jpg', None),
    ('arvore_{"tempId": 3}.jpg', None),
    ("arvore_{broken.jpg", None),
    ("arvore_{broken}.jpg", None),
    ("arvore_[1, 2].jpg", None),
    ("poste.jpg", None),
    (None, None),
])
def test_tree_coordinates(filename, expected):
    assert tree_coordinates(filename) == expected


def test_annotate_tree_marks_category():
    record = UploadedFile(
        url="u", key="k", nome_original='arvore_{"latitude": 1, "longitude": 2}', tamanho=1, mime_type="image/jpeg",
    )
    PhotoMetadata.annotate_tree(record)
    assert record.tipo is TipoFoto.ARVORE
    assert (record.latitude, record.longitude) == (1.0, 2.0)
    assert record.especie is None


# ── Stages ──────────────────────────────────────────────────────────
def test_collect_skips_empty_parts(tmp_path):
    pipeline = UploadPipeline(LocalStorage(tmp_path))
    form = FormData([("fotos", upload("a.jpg")), ("fotos", upload("")), ("cidade", "Natal")])
    assert [(key, f.filename) for key, f in pipeline.collect(form)] == [("fotos", "a.jpg")]


def test_collect_accepts_tree_field(tmp_path):
    pipeline = UploadPipeline(LocalStorage(tmp_path))
    form = FormData([("fotosArvore", upload("arvore_{}.jpg")), ("fotos", upload("a.jpg"))])
    assert [key for key, _ in pipeline.collect(form)] == ["fotosArvore", "fotos"]


def test_collect_limits_tree_photos(tmp_path):
    pipeline = UploadPipeline(LocalStorage(tmp_path), max_tree_files=2)
    form = FormData([("fotosArvore", upload(f"t{i}.jpg")) for i in range(3)])
    with pytest.raises(UploadProcessingError) as exc_info:
        pipeline.collect(form)
    assert exc_info.value.code == "FILE_COUNT_LIMIT_EXCEEDED"
    assert exc_info.value.message == "Maximum number of tree photos exceeded (2)"


def test_collect_tree_photos_share_total_limit(tmp_path):
    pipeline = UploadPipeline(LocalStorage(tmp_path), max_files=2)
    form = FormData([("fotos", upload("a.jpg")), ("fotos", upload("b.jpg")), ("fotosArvore", upload("t.jpg"))])
    with pytest.raises(UploadProcessingError) as exc_info:
        pipeline.collect(form)
    assert exc_info.value.message == "Maximum number of files exceeded (2)"


def test_collect_unexpected_field_lists_both_names(tmp_path):
    pipeline = UploadPipeline(LocalStorage(tmp_path))
    with pytest.raises(UploadProcessingError) as exc_info:
        pipeline.collect(FormData([("foto", upload("a.jpg"))]))
    assert exc_info.value.code == "UNEXPECTED_FILE_FIELD"
    assert exc_info.value.details == {"receivedField": "foto", "expectedFields": ["fotos", "fotosArvore"]}


def test_check_body_size(tmp_path):
    pipeline = UploadPipeline(LocalStorage(tmp_path), max_file_size=100, max_files=2)
    limit = 200 + 64 * 1024
    assert pipeline.max_body_size == limit
    pipeline.check_body_size(str(limit))
    pipeline.check_body_size(None)
    pipeline.check_body_size("not-a-number")
    with pytest.raises(UploadProcessingError) as exc_info:
        pipeline.check_body_size(str(limit + 1))
    assert exc_info.value.status_code == 413
    assert exc_info.value.code == "PAYLOAD_TOO_LARGE"


def test_filter_rejects_mismatched_extension(tmp_path):
    pipeline = UploadPipeline(LocalStorage(tmp_path))
    with pytest.raises(InvalidFileTypeError):
        pipeline.filter([upload("image.gif", content_type="image/jpeg")])
    pipeline.filter([upload("photo.JPEG"), upload("shot.png", content_type="image/png")])


@pytest.mark.asyncio
async def test_stage_enforces_size_limit(tmp_path):
    pipeline = UploadPipeline(LocalStorage(tmp_path), max_file_size=10)
    with pytest.raises(UploadProcessingError) as exc_info:
        await pipeline.stage([upload("big.jpg", b"x" * 11)])
    assert exc_info.value.code == "FILE_SIZE_LIMIT_EXCEEDED"
    assert "10 bytes" in exc_info.value.message

    staged = await pipeline.stage([upload("ok.jpg", b"x" * 10)])
    assert staged[0].size == 10


@pytest.mark.asyncio
async def test_persist_failure_removes_partial_uploads():
    """If one file fails to store, the ones that succeeded are deleted."""
    storage = FlakyStorage()
    pipeline = UploadPipeline(storage)
    staged = [
        StagedFile("a.jpg", "image/jpeg", b"1"),
        StagedFile("fail.jpg", "image/jpeg", b"2"),
        StagedFile("b.jpg", "image/jpeg", b"3"),
    ]
    with pytest.raises(UploadProcessingError) as exc_info:
        await pipeline.persist(staged)
    assert exc_info.value.status_code == 500
    assert exc_info.value.code == "UPLOAD_ERROR"
    assert sorted(storage.deleted) == ["mem://k-0", "mem://k-1"]


@pytest.mark.asyncio
async def test_cleanup_swallows_errors():
    pipeline = UploadPipeline(FlakyStorage(fail_deletes=True))
    await pipeline.cleanup(["mem://k-0", "", "mem://k-1"])


@pytest.mark.asyncio
async def test_process_stores_and_annotates(tmp_path):
    storage = LocalStorage(tmp_path, "/uploads")
    pipeline = UploadPipeline(storage)
    form = FormData([
        ("fotos", upload("a.jpg")),
        ("tipos", "ARVORE"),
        ("especies", "Jacarandá"),
    ])
    uploaded = await pipeline.process(form)
    assert len(uploaded) == 1
    assert uploaded[0].tipo is TipoFoto.ARVORE
    assert uploaded[0].especie == "Jacarandá"
    assert uploaded[0].url.startswith("/uploads/foto_")
    assert storage.path_for(uploaded[0].url).read_bytes() == JPEG_BYTES


@pytest.mark.asyncio
async def test_process_indexes_metadata_by_regular_photos(tmp_path):
    """Tree photos do not consume entries of the tipos/latitudes lists."""
    pipeline = UploadPipeline(LocalStorage(tmp_path, "/uploads"))
    form = FormData([
        ("fotosArvore", upload('arvore_{"tempId": 1, "latitude": 3, "longitude": 4}')),
        ("fotos", upload("a.jpg")),
        ("tipos", "LUMINARIA"),
        ("latitudes", "1"),
        ("longitudes", "2"),
    ])
    tree, lamp = await pipeline.process(form)
    assert tree.tipo is TipoFoto.ARVORE
    assert (tree.latitude, tree.longitude) == (3.0, 4.0)
    assert tree.url.rsplit(".", 1)[-1] in {"jpg", "jpeg", "jpe"}
    assert lamp.tipo is TipoFoto.LUMINARIA
    assert (lamp.latitude, lamp.longitude) == (1.0, 2.0)


@pytest.mark.asyncio
async def test_process_without_files(tmp_path):
    pipeline = UploadPipeline(LocalStorage(tmp_path))
    assert await pipeline.process(FormData([("cidade", "Natal")])) == []
