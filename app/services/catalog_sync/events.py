"""
Progress events emitted by the orchestrator.

The sink is any async callable; the job layer decides where events go
(log lines, an SSE stream, a test list).
"""
import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from app.core.utils import utcnow

PHASE_START = "phase-start"
PAGE_UPSERTED = "page-upserted"
GUARDRAIL_RESULT = "guardrail-result"
PHASE_SKIPPED = "phase-skipped"
GAME_DONE = "game-done"
ERROR = "error"
COMPLETE = "complete"

EVENT_TYPES = (
    PHASE_START, PAGE_UPSERTED, GUARDRAIL_RESULT, PHASE_SKIPPED, GAME_DONE, ERROR, COMPLETE,
)


@dataclass
class SyncEvent:
    type: str
    game: Optional[str] = None
    phase: Optional[str] = None
    processed: int = 0
    total: int = 0
    data: Dict[str, Any] = field(default_factory=dict)
    run_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "game": self.game,
            "phase": self.phase,
            "processed": self.processed,
            "total": self.total,
            "run_id": self.run_id,
            "data": self.data,
            "ts": utcnow().isoformat(),
        }


EventSink = Callable[[SyncEvent], Awaitable[None]]


def format_sse(event: SyncEvent) -> str:
    """One server-sent-events frame."""
    return f"event: {event.type}\ndata: {json.dumps(event.to_dict(), default=str)}\n\n"
