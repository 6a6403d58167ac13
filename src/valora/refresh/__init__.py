"""valora.refresh: Refresh orchestration, backfill, and scheduling."""

from valora.refresh.backfill import BackfillController
from valora.refresh.orchestrator import RefreshOrchestrator
from valora.refresh.runtime import Runtime, build_runtime
from valora.refresh.scheduler import RefreshScheduler

__all__ = [
    "BackfillController",
    "RefreshOrchestrator",
    "RefreshScheduler",
    "Runtime",
    "build_runtime",
]
