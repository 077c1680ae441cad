"""
Block ingestion pipeline.

A batch of blocks is checked for ordering, sent to the engine in a single
``handle_blocks`` call, and the reply is folded into the wallet state in one
synchronous commit.  Anything that needs another engine round trip (such as
encoding the recipient address of each newly found note) happens *before*
the commit, so an engine failure part-way through leaves the state exactly
as it was and no caller can observe a half-applied batch.
"""

from __future__ import annotations

import logging
from typing import Sequence

from shield_core.engine import ShieldEngine
from shield_core.errors import OrderingViolation
from shield_core.notes import Block, BatchResult, SimplifiedNote, SpendableNote
from shield_core.pending import PendingTransactions
from shield_core.state import WalletState

logger = logging.getLogger("shield.ingest")


def validate_block_order(blocks: Sequence[Block], last_processed: int) -> None:
    """
    Raise :class:`OrderingViolation` unless heights strictly increase,
    starting above *last_processed*.
    """
    prev = last_processed
    for i, block in enumerate(blocks):
        if block.height <= prev:
            where = "last processed block" if i == 0 else "previous block"
            raise OrderingViolation(
                f"Blocks must be provided in strictly increasing order: "
                f"block {block.height} does not follow {where} {prev}"
            )
        prev = block.height


class BlockIngestor:
    """Feeds ordered block batches through the engine into a WalletState."""

    def __init__(self, state: WalletState, pending: PendingTransactions, engine: ShieldEngine):
        self.state = state
        self.pending = pending
        self.engine = engine

    async def ingest(self, blocks: Sequence[Block]) -> list[str]:
        """
        Process *blocks* and return the raw transactions relevant to us.

        An empty batch is a no-op.  Ordering is validated before the engine
        is contacted.
        """
        if not blocks:
            return []
        validate_block_order(blocks, self.state.last_processed_block)

        result = await self.engine.handle_blocks(
            self.state.commitment_tree,
            [[tx.hex for tx in block.txs] for block in blocks],
            self.state.viewing_key,
            self.state.is_testnet,
            self.state.unspent_notes,
        )
        history = await self._simplify(result.decrypted_new_notes)

        self._commit(blocks, result, history)
        logger.info(
            f"Ingested blocks {blocks[0].height}-{blocks[-1].height}: "
            f"{len(result.decrypted_new_notes)} new note(s), "
            f"{len(result.nullifiers)} nullifier(s), balance {self.state.balance()}"
        )
        return result.wallet_transactions

    async def _simplify(self, notes: Sequence[SpendableNote]) -> list[tuple[str, SimplifiedNote]]:
        simplified = []
        for sn in notes:
            address = await self.engine.encode_payment_address(
                self.state.is_testnet, sn.note.recipient,
            )
            simplified.append((sn.nullifier, SimplifiedNote(address, sn.note.value)))
        return simplified

    def _commit(
        self,
        blocks: Sequence[Block],
        result: BatchResult,
        history: list[tuple[str, SimplifiedNote]],
    ) -> None:
        # No awaits below this line.
        state = self.state
        state.replace_unspent([*result.decrypted_notes, *result.decrypted_new_notes])
        state.remove_spent_notes(result.nullifiers)
        state.commitment_tree = result.commitment_tree
        state.record_nullifiers(dict(history))
        confirmed = self.pending.confirm(tx.txid for block in blocks for tx in block.txs)
        if confirmed:
            logger.debug(f"Confirmed pending transactions: {', '.join(confirmed)}")
        state.last_processed_block = blocks[-1].height

    async def decrypt_transaction(self, tx_hex: str) -> list[SpendableNote]:
        """Notes in *tx_hex* addressed to us; the wallet state is not touched."""
        result = await self.engine.handle_blocks(
            self.state.commitment_tree,
            [[tx_hex]],
            self.state.viewing_key,
            self.state.is_testnet,
            [],
        )
        return result.decrypted_new_notes

    async def decrypt_transaction_outputs(self, tx_hex: str) -> list[SimplifiedNote]:
        notes = await self.decrypt_transaction(tx_hex)
        return [simple for _, simple in await self._simplify(notes)]
