"""
Bounty Triage sync worker.

Runs sync passes on a fixed interval, either standalone
(``python -m bounty_triage.worker``) or on a thread inside the API process.
"""

from .loop import SyncWorker, build_engine, run_worker

__all__ = ["SyncWorker", "build_engine", "run_worker"]
