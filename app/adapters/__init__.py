"""
Remote catalog adapters.

Each adapter decodes its provider's response shapes into RemoteRecord pages
and maps HTTP failures onto the ProviderError hierarchy.
"""
from app.adapters.justtcg import (
    GameScope,
    JustTCGClient,
    Page,
    RemoteRecord,
    decode_envelope,
    resolve_game_scope,
)

__all__ = [
    "GameScope",
    "JustTCGClient",
    "Page",
    "RemoteRecord",
    "decode_envelope",
    "resolve_game_scope",
]
