"""Allow running the worker as ``python -m keycast.worker``."""

from keycast.worker.main import run

run()
