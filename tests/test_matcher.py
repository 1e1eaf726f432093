"""
Exact-only matching: codeExact, then nameExact, then normalizedExact.
"""
from app.services.catalog_sync.canonical_index import build_canonical_index
from app.services.catalog_sync.matcher import (
    REASON_ALREADY_LINKED,
    REASON_AMBIGUOUS,
    REASON_NAME_MISMATCH,
    REASON_NOT_FOUND,
    Matcher,
    MatchStatus,
    MatchType,
)
from app.services.catalog_sync.store import LocalEntity
from tests.fakes import rec

REMOTE = [
    rec("r-sv5a", "Crimson Haze", code="SV5a"),
    rec("r-sv5k", "Wild Force", code="SV5K"),
    rec("r-151", "Pokemon Card 151"),
    rec("r-promo-1", "Black Star Promos"),
    rec("r-promo-2", "Black-Star Promos"),
]


def _matcher(records=REMOTE, **kwargs):
    return Matcher(build_canonical_index(records), **kwargs)


def _local(entity_id, name, code=None):
    return LocalEntity(id=entity_id, name=name, code=code)


def test_code_prefix_in_name_matches_code_exact():
    result = _matcher().match(_local(1, "SV5a: Crimson Haze"))
    assert result.status == MatchStatus.MATCHED
    assert result.match_type == MatchType.CODE_EXACT
    assert result.remote_id == "r-sv5a"


def test_code_column_matches_code_exact():
    result = _matcher().match(_local(1, "crimson haze", code="sv5a"))
    assert result.match_type == MatchType.CODE_EXACT
    assert result.remote_id == "r-sv5a"


def test_name_prefix_tried_when_code_column_misses():
    result = _matcher().match(_local(1, "SV5a: Crimson Haze", code="SV5-OLD"))
    assert result.status == MatchStatus.MATCHED
    assert result.match_type == MatchType.CODE_EXACT
    assert result.remote_id == "r-sv5a"


def test_provider_id_is_remote_id_never_name():
    result = _matcher().match(_local(1, "Wild Force"))
    assert result.remote_id == "r-sv5k"
    assert result.remote_id != result.remote.name


def test_exact_name_match():
    result = _matcher().match(_local(1, "Pokemon Card 151"))
    assert result.match_type == MatchType.NAME_EXACT


def test_normalized_match():
    result = _matcher().match(_local(1, "POKÉMON card 151!"))
    assert result.status == MatchStatus.MATCHED
    assert result.match_type == MatchType.NORMALIZED_EXACT
    assert result.remote_id == "r-151"


def test_ambiguous_normalized_name_is_not_linked():
    result = _matcher().match(_local(1, "black star promos"))
    assert result.status == MatchStatus.UNMATCHED
    assert result.reason == REASON_AMBIGUOUS
    assert result.is_ambiguous
    assert result.remote is None


def test_exact_name_hit_rejected_when_normalized_name_is_ambiguous():
    result = _matcher().match(_local(1, "Black Star Promos"))
    assert result.status == MatchStatus.UNMATCHED
    assert result.reason == REASON_AMBIGUOUS


def test_code_hit_with_different_name_is_conflict():
    result = _matcher().match(_local(1, "SV5a: Something Else Entirely"))
    assert result.status == MatchStatus.CONFLICT
    assert result.reason == REASON_NAME_MISMATCH
    assert result.remote_id == "r-sv5a"


def test_unknown_name_is_not_found():
    result = _matcher().match(_local(1, "Crimson Hazes"))
    assert result.status == MatchStatus.UNMATCHED
    assert result.reason == REASON_NOT_FOUND
    assert not result.is_ambiguous


def test_out_of_scope_is_advisory_for_regional_games():
    matcher = _matcher(region="japan")
    result = matcher.match(_local(1, "Scarlet & Violet Base"))
    assert result.status == MatchStatus.OUT_OF_SCOPE
    assert result.reason == "no_japan_marker"

    # Region marker present: ordinary not_found
    assert matcher.match(_local(2, "Scarlet ex (JP)")).status == MatchStatus.UNMATCHED
    # Entities carrying a code are never classified out of scope
    assert matcher.match(_local(3, "SV9z: Unknown")).status == MatchStatus.UNMATCHED


def test_out_of_scope_can_be_disabled():
    matcher = _matcher(region="japan", out_of_scope_enabled=False)
    assert matcher.match(_local(1, "Scarlet & Violet Base")).status == MatchStatus.UNMATCHED


def test_out_of_scope_never_applies_without_region():
    assert _matcher().match(_local(1, "Scarlet & Violet Base")).status == MatchStatus.UNMATCHED


def test_match_all_links_each_remote_at_most_once():
    matcher = _matcher()
    claimed = {"r-sv5k"}
    results = matcher.match_all(
        [
            _local(1, "SV5a: Crimson Haze"),
            _local(2, "Crimson Haze"),
            _local(3, "Wild Force"),
            _local(4, "Pokemon Card 151"),
        ],
        claimed,
    )
    statuses = [(r.entity.id, r.status, r.reason) for r in results]
    assert statuses == [
        (1, MatchStatus.MATCHED, None),
        (2, MatchStatus.CONFLICT, REASON_ALREADY_LINKED),
        (3, MatchStatus.CONFLICT, REASON_ALREADY_LINKED),
        (4, MatchStatus.MATCHED, None),
    ]
    assert claimed == {"r-sv5k", "r-sv5a", "r-151"}


def test_sample_shape():
    sample = _matcher().match(_local(7, "black star promos")).sample()
    assert sample == {
        "id": 7,
        "name": "black star promos",
        "status": "unmatched",
        "reason": "ambiguous",
        "remote_id": None,
    }
