"""
Checkpoint-based resynchronisation.

A checkpoint is a coarse (height, commitment tree) starting point supplied
by the engine.  Rolling back to one throws away every piece of derived
state; the wallet must ingest blocks again from the checkpoint height
before its balance means anything.
"""

from __future__ import annotations

import logging

from shield_core.engine import ShieldEngine
from shield_core.notes import Checkpoint
from shield_core.pending import PendingTransactions
from shield_core.state import WalletState

logger = logging.getLogger("shield.checkpoint")


class CheckpointManager:
    """Resets a WalletState to the nearest engine checkpoint."""

    def __init__(self, state: WalletState, pending: PendingTransactions, engine: ShieldEngine):
        self.state = state
        self.pending = pending
        self.engine = engine

    async def closest(self, height: int) -> Checkpoint:
        return await self.engine.get_closest_checkpoint(height, self.state.is_testnet)

    async def reload(self, target_height: int) -> Checkpoint:
        """
        Roll back to the checkpoint nearest to *target_height*.

        Clears the unspent set, both pending overlays and the nullifier
        history.  Must not run concurrently with ingestion.
        """
        checkpoint = await self.closest(target_height)
        self.state.reset_to_checkpoint(checkpoint)
        self.pending.clear()
        logger.info(
            f"Reloaded from checkpoint {checkpoint.height} "
            f"(requested {target_height}); resync required"
        )
        return checkpoint
