"""
Rollback auditor: undo provider ids that no longer exist upstream.

Runs once per game before matching. Any local row whose provider_id is not in
the freshly built canonical id set is reset (provider_id and natural_id set to
NULL) so the matcher can try it again. No second opinion is sought: an id that
does not exist upstream is invalid by definition.
"""
import logging
from dataclasses import dataclass, field
from typing import List

from app.services.catalog_sync.canonical_index import CanonicalIndex
from app.services.catalog_sync.store import CatalogStore, LocalEntity

logger = logging.getLogger(__name__)


@dataclass
class RollbackResult:
    checked: int = 0
    rolled_back: int = 0
    entities: List[LocalEntity] = field(default_factory=list)


async def rollback_stale_links(
    store: CatalogStore,
    game: str,
    entity_type: str,
    index: CanonicalIndex,
) -> RollbackResult:
    linked = await store.entities_with_provider_id(game, entity_type)
    stale = [entity for entity in linked if entity.provider_id not in index.ids]

    result = RollbackResult(checked=len(linked), entities=stale)
    if not stale:
        return result

    for entity in stale:
        logger.warning(
            f"[rollback] {game}/{entity_type} {entity.id} '{entity.name}': "
            f"provider_id {entity.provider_id!r} not found upstream, clearing"
        )

    await store.clear_provider_ids(entity_type, [entity.id for entity in stale])
    result.rolled_back = len(stale)
    logger.info(f"[rollback] {game}/{entity_type}: rolled back {result.rolled_back} of {result.checked}")
    return result
