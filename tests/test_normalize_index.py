import pytest

from app.services.catalog_sync.canonical_index import AMBIGUOUS, build_canonical_index
from app.services.catalog_sync.normalize import extract_code_prefix, normalize_code, normalize_name
from tests.fakes import rec


@pytest.mark.parametrize("name, expected", [
    ("SV5a: Crimson Haze", "crimson haze"),
    ("Crimson Haze", "crimson haze"),
    ("  CRIMSON   haze!! ", "crimson haze"),
    ("Pokémon GO", "pokemon go"),
    ("Poke Mon Promos", "pokemon promos"),
    ("Sword & Shield", "sword and shield"),
    ("Base Set (Shadowless)", "base set"),
    ("Paldea Evolved [Japanese]", "paldea evolved"),
    ("Scarlet_Violet-151", "scarlet violet 151"),
    ("", ""),
    (None, ""),
])
def test_normalize_name(name, expected):
    assert normalize_name(name) == expected


def test_normalize_is_idempotent():
    for name in ["SV5a: Crimson Haze", "Pokémon & Friends (Promo)", "Ünïcödé  Names"]:
        once = normalize_name(name)
        assert normalize_name(once) == once


def test_extract_code_prefix():
    assert extract_code_prefix("SV5a: Crimson Haze") == "SV5a"
    assert extract_code_prefix("sv10 : Something") == "sv10"
    assert extract_code_prefix("Crimson Haze") is None
    # Too many leading letters to be a set code
    assert extract_code_prefix("Promo1: Cards") is None
    assert extract_code_prefix(None) is None


def test_normalize_code():
    assert normalize_code(" SV5a ") == "sv5a"
    assert normalize_code(None) == ""


def test_index_lookups():
    index = build_canonical_index([
        rec("id-1", "Crimson Haze", code="SV5a"),
        rec("id-2", "Wild Force", code="SV5K"),
    ])
    assert index.size == 2
    assert index.ids == {"id-1", "id-2"}
    assert index.lookup_code("sv5a").id == "id-1"
    assert index.lookup_name("Wild Force").id == "id-2"
    assert index.lookup_name("wild force") is None
    assert index.lookup_normalized("SV5K: WILD FORCE!").id == "id-2"
    assert index.lookup_code(None) is None


def test_index_first_write_wins_for_code_and_name():
    index = build_canonical_index([
        rec("id-1", "Promo", code="P1"),
        rec("id-2", "Promo", code="P1"),
    ])
    assert index.lookup_code("P1").id == "id-1"
    assert index.lookup_name("Promo").id == "id-1"


def test_index_marks_normalized_collisions_ambiguous():
    index = build_canonical_index([
        rec("id-1", "Black Star Promos"),
        rec("id-2", "Black-Star Promos"),
        rec("id-3", "Black Star Promos (Wizards)"),
    ])
    assert index.lookup_normalized("black star promos") is AMBIGUOUS
    assert index.is_ambiguous("Black Star Promos")
    assert index.ambiguous_keys == {"black star promos"}


def test_same_record_twice_is_not_ambiguous():
    index = build_canonical_index([rec("id-1", "Base Set"), rec("id-1", "Base Set")])
    assert index.lookup_normalized("Base Set").id == "id-1"
    assert not index.ambiguous_keys
