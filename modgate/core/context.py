"""Per-call runtime context."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from time import perf_counter


@dataclass(slots=True)
class RequestContext:
    request_id: str = field(default_factory=lambda: f"mg-{uuid.uuid4().hex[:16]}")
    route: str = "/v1/chat/completions"
    stream: bool = False
    started_at: float = field(default_factory=perf_counter)
    moderation_ms: float | None = None
    outcome: str = "pending"

    def elapsed_ms(self) -> float:
        return round((perf_counter() - self.started_at) * 1000.0, 2)
