"""keycast worker service.

Long-running process that:
- Issues and announces a new access key at a fixed interval
- Revokes and forgets access keys once they expire
- Catches up on a missed issuance at startup

Usage:
    # Run as module
    python -m keycast.worker

    # Or via the console script
    keycast-worker
"""

from keycast.worker.main import Orchestrator, OrchestratorConfig, run

__all__ = ["Orchestrator", "OrchestratorConfig", "run"]
