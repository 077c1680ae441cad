"""
Typed client for the cryptographic engine.

Each method maps one engine operation onto :meth:`EngineBridge.call`,
converting value types to their wire form on the way out and replies back
into :mod:`shield_core.notes` types on the way in.  No state lives here;
the engine handle is injected wherever it is needed, so several wallets
(or a test double) can share or replace it freely.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from shield_core.bridge import EngineBridge
from shield_core.errors import EngineFailure
from shield_core.notes import (
    BatchResult,
    Checkpoint,
    Note,
    SpendableNote,
    UTXO,
)

logger = logging.getLogger("shield.engine")


class ShieldEngine:
    """Async facade over the engine's operation table."""

    def __init__(self, bridge: EngineBridge):
        self.bridge = bridge

    # ---- keys ----

    async def generate_spending_key(
        self, seed: bytes, coin_type: int, account_index: int = 0,
    ) -> str:
        return await self.bridge.call(
            "generate_extended_spending_key_from_seed",
            {"seed": seed.hex(), "coin_type": coin_type, "account_index": account_index},
        )

    async def generate_viewing_key(self, spending_key: str, is_testnet: bool) -> str:
        return await self.bridge.call(
            "generate_extended_full_viewing_key", spending_key, is_testnet,
        )

    # ---- chain state ----

    async def get_closest_checkpoint(self, height: int, is_testnet: bool) -> Checkpoint:
        res = await self.bridge.call("get_closest_checkpoint", height, is_testnet)
        if not res:
            raise EngineFailure("get_closest_checkpoint", f"no checkpoint at or before {height}")
        effective_height, tree = res
        return Checkpoint(int(effective_height), tree)

    async def handle_blocks(
        self,
        commitment_tree: str,
        blocks: Sequence[Sequence[str]],
        viewing_key: str,
        is_testnet: bool,
        notes: Sequence[SpendableNote],
    ) -> BatchResult:
        """Decrypt a batch of blocks, given as lists of raw tx hex."""
        res = await self.bridge.call(
            "handle_blocks",
            commitment_tree,
            [{"txs": list(txs)} for txs in blocks],
            viewing_key,
            is_testnet,
            [n.to_dict() for n in notes],
        )
        return BatchResult.from_dict(res)

    async def remove_spent_notes(
        self,
        notes: Sequence[SpendableNote],
        nullifiers: Sequence[str],
        viewing_key: str,
        is_testnet: bool,
    ) -> list[SpendableNote]:
        res = await self.bridge.call(
            "remove_spent_notes",
            [n.to_dict() for n in notes],
            list(nullifiers),
            viewing_key,
            is_testnet,
        )
        return [SpendableNote.from_dict(n) for n in res]

    async def get_sapling_root(self, commitment_tree: str) -> str:
        return await self.bridge.call("get_sapling_root", commitment_tree)

    # ---- notes & addresses ----

    async def get_nullifier(
        self, note: Note, witness: str, viewing_key: str, is_testnet: bool,
    ) -> str:
        return await self.bridge.call(
            "get_nullifier_from_note", [note.to_dict(), witness], viewing_key, is_testnet,
        )

    async def encode_payment_address(self, is_testnet: bool, recipient: bytes) -> str:
        return await self.bridge.call("encode_payment_address", is_testnet, recipient.hex())

    async def generate_next_address(
        self, viewing_key: str, diversifier_index: bytes, is_testnet: bool,
    ) -> tuple[str, bytes]:
        res = await self.bridge.call(
            "generate_next_shielding_payment_address",
            viewing_key, diversifier_index.hex(), is_testnet,
        )
        index = res["diversifier_index"]
        return res["address"], bytes(index) if isinstance(index, list) else bytes.fromhex(index)

    # ---- transactions ----

    async def create_transaction(
        self,
        *,
        spending_key: str,
        to_address: str,
        change_address: str,
        amount: int,
        block_height: int,
        is_testnet: bool,
        notes: Optional[Sequence[SpendableNote]] = None,
        utxos: Optional[Sequence[UTXO]] = None,
    ) -> dict[str, Any]:
        """Build and prove a transaction; returns ``{txid, txhex, nullifiers}``."""
        logger.debug(
            f"Building transaction: amount={amount} height={block_height} "
            f"inputs={'shield' if notes is not None else 'transparent'}"
        )
        return await self.bridge.call("create_transaction", {
            "notes": [n.to_dict() for n in notes] if notes is not None else None,
            "utxos": [u.to_dict() for u in utxos] if utxos is not None else None,
            "extsk": spending_key,
            "to_address": to_address,
            "change_address": change_address,
            "amount": amount,
            "block_height": block_height,
            "is_testnet": is_testnet,
        })

    async def read_tx_progress(self) -> float:
        return float(await self.bridge.call("read_tx_progress"))

    # ---- prover ----

    async def load_prover(self, url: str | None = None) -> bool:
        if url:
            return bool(await self.bridge.call("load_prover_with_url", url))
        return bool(await self.bridge.call("load_prover"))

    async def load_prover_with_bytes(self, output_params: bytes, spend_params: bytes) -> bool:
        return bool(await self.bridge.call(
            "load_prover_with_bytes", output_params.hex(), spend_params.hex(),
        ))

    async def prover_is_loaded(self) -> bool:
        return bool(await self.bridge.call("prover_is_loaded"))
