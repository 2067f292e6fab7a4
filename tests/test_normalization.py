from __future__ import annotations

import pytest

from etl.errors import InvalidKeyError, ValidationError
from etl.pipelines.normalization import normalize_key, normalize_text, slugify


def test_normalize_key_folds_case_and_whitespace() -> None:
    assert normalize_key("  Senior   Policy\tOfficer ") == "senior policy officer"
    assert normalize_key("STRASSE") == normalize_key("straße")


def test_normalize_key_composes_unicode() -> None:
    decomposed = "Cafe\u0301 Services"
    assert normalize_key(decomposed) == "caf\u00e9 services"


@pytest.mark.parametrize("value", [None, "", "   ", "\n\t"])
def test_blank_keys_are_rejected(value) -> None:
    with pytest.raises(InvalidKeyError) as excinfo:
        normalize_key(value)
    assert isinstance(excinfo.value, ValidationError)
    assert excinfo.value.kind == "invalid_key"


def test_slugify_collapses_punctuation() -> None:
    assert slugify("Department of Education") == "department-of-education"
    assert slugify("  Health -- NSW (Ambulance) ") == "health-nsw-ambulance"
    assert slugify("Transport_for_NSW") == "transport-for-nsw"


def test_slugify_rejects_symbol_only_names() -> None:
    with pytest.raises(InvalidKeyError):
        slugify("---")


def test_normalize_text_strips_markup() -> None:
    text = "<p>Manage   <b>stakeholders</b></p>\n\n<ul><li>Report writing</li></ul>"
    assert normalize_text(text) == "Manage stakeholders Report writing"
    assert normalize_text("   ") == ""
