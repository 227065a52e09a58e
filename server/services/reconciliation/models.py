"""Reconciliation job result models.

All models are JSON-serializable so they can be returned straight from the
trigger endpoints and logged as structured events.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class ReconciliationResult:
    """Outcome of one job run. Never mutated after it is returned.

    ``success`` is False only for a job-level failure (store unreachable,
    unexpected crash). Per-item failures are listed in ``errors``.
    """
    job: str
    success: bool
    duration: int                     # milliseconds
    processed_count: int = 0
    updated_count: int = 0
    counters: Dict[str, int] = field(default_factory=dict)
    errors: Tuple[str, ...] = ()
    timestamp: str = ""
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Flat JSON summary: counters are spread at the top level."""
        data: Dict[str, Any] = {
            "job": self.job,
            "success": self.success,
            "duration": self.duration,
            "processed_count": self.processed_count,
            "updated_count": self.updated_count,
            **self.counters,
            "errors": list(self.errors),
            "timestamp": self.timestamp,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class JobStats:
    """Mutable accumulator used while a job runs."""
    counters: Dict[str, int] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    processed: int = 0
    updated: int = 0
    started_at: float = field(default_factory=time.time)

    def incr(self, kind: str, amount: int = 1) -> None:
        self.counters[kind] = self.counters.get(kind, 0) + amount

    def record_error(self, message: str) -> None:
        self.errors.append(message)

    def finish(self, job: str, success: bool, error: Optional[str] = None) -> ReconciliationResult:
        return ReconciliationResult(
            job=job,
            success=success,
            duration=int((time.time() - self.started_at) * 1000),
            processed_count=self.processed,
            updated_count=self.updated,
            counters=dict(self.counters),
            errors=tuple(self.errors),
            timestamp=datetime.now(timezone.utc).isoformat(),
            error=error,
        )
