"""
Canonical index over one fully-fetched remote collection.

Built once per game per run from ALL remote sets; never persisted. Building
from a partial collection is not allowed because a miss could then mean
"not fetched yet" instead of "does not exist".
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Set, Union

from app.adapters.justtcg import RemoteRecord
from app.services.catalog_sync.normalize import normalize_code, normalize_name

logger = logging.getLogger(__name__)


class _Ambiguous:
    """Marker stored in by_normalized_name when two records collide."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "AMBIGUOUS"


AMBIGUOUS = _Ambiguous()

IndexEntry = Union[RemoteRecord, _Ambiguous]


@dataclass
class CanonicalIndex:
    by_code: Dict[str, RemoteRecord] = field(default_factory=dict)
    by_name: Dict[str, RemoteRecord] = field(default_factory=dict)
    by_normalized_name: Dict[str, IndexEntry] = field(default_factory=dict)
    ids: Set[str] = field(default_factory=set)
    ambiguous_keys: Set[str] = field(default_factory=set)
    size: int = 0

    def lookup_code(self, code: Optional[str]) -> Optional[RemoteRecord]:
        key = normalize_code(code)
        return self.by_code.get(key) if key else None

    def lookup_name(self, name: Optional[str]) -> Optional[RemoteRecord]:
        return self.by_name.get(name) if name else None

    def lookup_normalized(self, name: Optional[str]) -> Optional[IndexEntry]:
        key = normalize_name(name)
        return self.by_normalized_name.get(key) if key else None

    def is_ambiguous(self, name: Optional[str]) -> bool:
        return self.lookup_normalized(name) is AMBIGUOUS


def build_canonical_index(records: Iterable[RemoteRecord]) -> CanonicalIndex:
    """
    Build code / exact-name / normalized-name lookups.

    by_code and by_name are first-write-wins. by_normalized_name marks a key
    AMBIGUOUS as soon as a second distinct record normalizes to it, and the
    marker is never replaced afterwards.
    """
    index = CanonicalIndex()

    for record in records:
        index.size += 1
        index.ids.add(record.id)

        code_key = normalize_code(record.code)
        if code_key and code_key not in index.by_code:
            index.by_code[code_key] = record

        if record.name and record.name not in index.by_name:
            index.by_name[record.name] = record

        norm_key = normalize_name(record.name)
        if not norm_key:
            continue
        existing = index.by_normalized_name.get(norm_key)
        if existing is None:
            index.by_normalized_name[norm_key] = record
        elif existing is not AMBIGUOUS and existing.id != record.id:
            index.by_normalized_name[norm_key] = AMBIGUOUS
            index.ambiguous_keys.add(norm_key)

    if index.ambiguous_keys:
        logger.info(
            f"[matcher] Canonical index: {index.size} records, "
            f"{len(index.ambiguous_keys)} ambiguous normalized names"
        )
    return index
