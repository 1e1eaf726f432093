"""
Exact-only matcher for local catalog entities.

Strategy order per entity (first hit wins, no fuzzy scoring ever):
1. codeExact       - entity.code, then a "SV5a:" style prefix in its name
2. nameExact       - raw name equality
3. normalizedExact - normalize_name() equality

Outcomes:
- matched:      provider_id is the remote record's id (never its name)
- unmatched:    reason "ambiguous" when the normalized name collides upstream,
                otherwise "not_found"
- conflict:     code hit whose normalized names disagree, or a remote id that
                another local entity already holds
- out_of_scope: unmatched entity that looks like it belongs to another region
                scope. Advisory only; every classification is logged.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Set

from app.adapters.justtcg import RemoteRecord, has_region_marker
from app.services.catalog_sync.canonical_index import AMBIGUOUS, CanonicalIndex
from app.services.catalog_sync.normalize import extract_code_prefix, normalize_name
from app.services.catalog_sync.store import LocalEntity

logger = logging.getLogger(__name__)


class MatchType(str, Enum):
    CODE_EXACT = "codeExact"
    NAME_EXACT = "nameExact"
    NORMALIZED_EXACT = "normalizedExact"


class MatchStatus(str, Enum):
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    CONFLICT = "conflict"
    OUT_OF_SCOPE = "out_of_scope"


REASON_AMBIGUOUS = "ambiguous"
REASON_NOT_FOUND = "not_found"
REASON_NAME_MISMATCH = "code_name_mismatch"
REASON_ALREADY_LINKED = "remote_already_linked"


@dataclass
class MatchResult:
    entity: LocalEntity
    status: MatchStatus
    match_type: Optional[MatchType] = None
    remote: Optional[RemoteRecord] = None
    reason: Optional[str] = None

    @property
    def remote_id(self) -> Optional[str]:
        return self.remote.id if self.remote else None

    @property
    def is_ambiguous(self) -> bool:
        return self.status == MatchStatus.UNMATCHED and self.reason == REASON_AMBIGUOUS

    def sample(self) -> dict:
        """Short triage record for run results."""
        return {
            "id": self.entity.id,
            "name": self.entity.name,
            "status": self.status.value,
            "reason": self.reason,
            "remote_id": self.remote_id,
        }


class Matcher:
    def __init__(
        self,
        index: CanonicalIndex,
        region: Optional[str] = None,
        out_of_scope_enabled: bool = True,
    ):
        self.index = index
        self.region = region
        self.out_of_scope_enabled = out_of_scope_enabled

    def match(self, entity: LocalEntity) -> MatchResult:
        # Stored code first, then the "SV5a:" style prefix in the name
        codes = [c for c in (entity.code, extract_code_prefix(entity.name)) if c]

        for code in codes:
            remote = self.index.lookup_code(code)
            if remote is not None:
                local_norm = normalize_name(entity.name)
                remote_norm = normalize_name(remote.name)
                if local_norm != remote_norm:
                    logger.warning(
                        f"[matcher] Conflict: local {entity.id} '{entity.name}' shares code "
                        f"'{code}' with remote {remote.id} '{remote.name}'"
                    )
                    return MatchResult(
                        entity, MatchStatus.CONFLICT, MatchType.CODE_EXACT, remote,
                        reason=REASON_NAME_MISMATCH,
                    )
                return MatchResult(entity, MatchStatus.MATCHED, MatchType.CODE_EXACT, remote)

        remote = self.index.lookup_name(entity.name)
        if remote is not None:
            # An exact-name hit is only trusted when the normalized name is unique upstream
            if self.index.is_ambiguous(entity.name):
                return self._ambiguous(entity)
            return MatchResult(entity, MatchStatus.MATCHED, MatchType.NAME_EXACT, remote)

        entry = self.index.lookup_normalized(entity.name)
        if entry is AMBIGUOUS:
            return self._ambiguous(entity)
        if entry is not None:
            return MatchResult(entity, MatchStatus.MATCHED, MatchType.NORMALIZED_EXACT, entry)

        if self._looks_out_of_scope(entity, codes[0] if codes else None):
            logger.warning(
                f"[matcher] Out of scope (advisory): local {entity.id} '{entity.name}' "
                f"has no {self.region} marker"
            )
            return MatchResult(
                entity, MatchStatus.OUT_OF_SCOPE, reason=f"no_{self.region}_marker"
            )

        return MatchResult(entity, MatchStatus.UNMATCHED, reason=REASON_NOT_FOUND)

    def match_all(
        self,
        entities: Iterable[LocalEntity],
        claimed_ids: Optional[Set[str]] = None,
    ) -> List[MatchResult]:
        """
        Match a batch. A remote id may be linked to at most one local entity;
        claimed_ids holds ids already linked before this batch and is updated
        in place.
        """
        claimed = claimed_ids if claimed_ids is not None else set()
        results = []
        for entity in entities:
            result = self.match(entity)
            if result.status == MatchStatus.MATCHED:
                if result.remote_id in claimed:
                    logger.warning(
                        f"[matcher] Conflict: remote {result.remote_id} already linked, "
                        f"not linking local {entity.id} '{entity.name}'"
                    )
                    result = MatchResult(
                        entity, MatchStatus.CONFLICT, result.match_type, result.remote,
                        reason=REASON_ALREADY_LINKED,
                    )
                else:
                    claimed.add(result.remote_id)
            results.append(result)
        return results

    def _ambiguous(self, entity: LocalEntity) -> MatchResult:
        logger.warning(
            f"[matcher] Ambiguous: local {entity.id} '{entity.name}' normalizes to a "
            f"name shared by several remote records"
        )
        return MatchResult(entity, MatchStatus.UNMATCHED, reason=REASON_AMBIGUOUS)

    def _looks_out_of_scope(self, entity: LocalEntity, code: Optional[str]) -> bool:
        if not self.out_of_scope_enabled or not self.region:
            return False
        if code:
            return False
        return not has_region_marker(entity.name, self.region)
