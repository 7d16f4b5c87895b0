"""Tests for field rules and the failure envelope."""

import pytest
from pydantic import ValidationError
from starlette.datastructures import FormData

from postes_api.api.v1.endpoints.postes import parse_poste_form
from postes_api.core import exceptions
from postes_api.core.config import Settings
from postes_api.schemas.poste import (PosteCreate, is_valid_coordinates,
                                      is_valid_identification, parse_coords,
                                      parse_float)


@pytest.mark.parametrize("value, expected", [
    ("12345-6", True),
    (" 00000-0 ", True),
    ("1234-5", False),
    ("1234-56", False),
    ("12345-67", False),
    ("abcde-f", False),
    ("", False),
    (None, False),
])
def test_identification_pattern(value, expected):
    assert is_valid_identification(value) is expected


def test_coordinate_bounds():
    assert is_valid_coordinates(90, 180)
    assert is_valid_coordinates(-90, -180)
    assert not is_valid_coordinates(90.0001, 0)
    assert not is_valid_coordinates(0, -180.5)


def test_parse_float():
    assert parse_float("-23,55") == -23.55
    assert parse_float(" 10 ") == 10.0
    assert parse_float(3) == 3.0
    assert parse_float("") is None
    assert parse_float("abc") is None
    assert parse_float("nan") is None
    assert parse_float(None) is None
    assert parse_float(True) is None


def test_parse_coords_formats():
    assert parse_coords("[45.0, -73.0]") == (45.0, -73.0)
    assert parse_coords("[-23.5, -46.6]") == (-23.5, -46.6)
    assert parse_coords("-23.5,-46.6") == (-23.5, -46.6)
    assert parse_coords([1, 2]) == (1.0, 2.0)
    with pytest.raises(ValueError):
        parse_coords("[1, 2, 3]")
    with pytest.raises(ValueError):
        parse_coords('["a", 2]')
    with pytest.raises(ValueError):
        parse_coords("[1, 2")


def test_poste_create_drops_blank_optionals():
    poste = PosteCreate.model_validate({
        "numeroIdentificacao": "12345-6",
        "coords": "[1, 2]",
        "cidade": "Natal",
        "endereco": "Rua B",
        "numero": "5",
        "usuarioId": "3",
        "alturaPoste": "",
        "canteiroCentral": "nao",
        "quantidadePontos": "2",
    })
    assert (poste.latitude, poste.longitude) == (1.0, 2.0)
    assert poste.altura_poste is None
    assert poste.canteiro_central is False
    assert poste.quantidade_pontos == 2
    assert poste.usuario_id == 3


def test_poste_create_rejects_negative_counts():
    with pytest.raises(ValidationError):
        PosteCreate.model_validate({
            "numeroIdentificacao": "12345-6",
            "coords": "[1, 2]",
            "cidade": "Natal",
            "endereco": "Rua B",
            "numero": "5",
            "usuarioId": "3",
            "quantidadeFaixas": "-1",
        })


def test_parse_poste_form_blank_required_counts_as_missing():
    form = FormData([
        ("numeroIdentificacao", "12345-6"),
        ("coords", "[1, 2]"),
        ("cidade", "   "),
        ("endereco", "Rua B"),
        ("numero", "5"),
        ("usuarioId", "3"),
    ])
    with pytest.raises(exceptions.MissingFieldsError) as exc_info:
        parse_poste_form(form)
    assert exc_info.value.fields == ["cidade"]
    assert exc_info.value.message == "Missing required fields: cidade"


def test_not_found_message():
    assert exceptions.NotFoundError("Pole", 4).message == "Pole '4' not found"
    assert exceptions.NotFoundError("User", code="USER_NOT_FOUND").code == "USER_NOT_FOUND"


@pytest.mark.parametrize("raw, expected", [
    ('["http://a.com", "http://b.com"]', ["http://a.com", "http://b.com"]),
    ("http://a.com, http://b.com", ["http://a.com", "http://b.com"]),
])
def test_cors_origins_parsing(monkeypatch, raw, expected):
    monkeypatch.setenv("CORS_ORIGINS", raw)
    assert Settings().CORS_ORIGINS == expected
