"""
shield_core - bookkeeping engine for a shielded (Sapling-style) wallet account.

Key features:
- Correlated async request/response bridge to an external crypto engine
- Ordered, atomic block ingestion with note and nullifier tracking
- Pending-spend / pending-incoming overlay for locally built transactions
- Checkpoint rollback and versioned snapshots
"""

__version__ = "1.0.0"
__all__ = [
    "bridge",
    "engine",
    "errors",
    "notes",
    "state",
    "pending",
    "ingest",
    "checkpoint",
    "snapshot",
    "shield",
    "config",
    "logging_config",
]
