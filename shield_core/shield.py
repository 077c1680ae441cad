"""
Shielded wallet facade.

A ``ShieldWallet`` wraps the state store, the pending overlay, the
ingestion pipeline and the checkpoint manager around one injected
:class:`ShieldEngine`, and provides:

  - Creation from a seed, a spending key or a viewing key (view-only)
  - Versioned save / load
  - Block ingestion and balance queries
  - Transaction building with pending-spend / pending-incoming tracking
  - Fresh receiving addresses
  - Checkpoint rollback

All state-changing operations take a per-wallet ``asyncio.Lock``, so a
finalise or an address request can never interleave with an in-flight
ingestion.  Read accessors are synchronous.

Unknown transaction policy: ``finalize_transaction`` raises
:class:`UnknownTransaction`; ``discard_transaction`` ignores unknown ids.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Optional, Sequence

from shield_core import snapshot
from shield_core.checkpoint import CheckpointManager
from shield_core.engine import ShieldEngine
from shield_core.errors import (
    AuthorityMismatch,
    ChangeTypeMismatch,
    InvalidConfiguration,
)
from shield_core.ingest import BlockIngestor
from shield_core.notes import (
    Block,
    Checkpoint,
    CreatedTransaction,
    SimplifiedNote,
    SpendableNote,
    UTXO,
)
from shield_core.pending import PendingTransactions
from shield_core.state import WalletState

if TYPE_CHECKING:
    from shield_core.config import WalletConfig

logger = logging.getLogger("shield.wallet")

TESTNET_COIN_TYPE = 1


class ShieldWallet:
    """User-facing shielded account backed by an external engine."""

    def __init__(self, engine: ShieldEngine, state: WalletState):
        self.engine = engine
        self.state = state
        self.pending = PendingTransactions()
        self.ingestor = BlockIngestor(state, self.pending, engine)
        self.checkpoints = CheckpointManager(state, self.pending, engine)
        self._lock = asyncio.Lock()

    # ---- factory methods ----

    @classmethod
    async def create(
        cls,
        engine: ShieldEngine,
        *,
        block_height: int,
        coin_type: int,
        seed: Optional[bytes] = None,
        spending_key: Optional[str] = None,
        viewing_key: Optional[str] = None,
        account_index: int = 0,
        load_prover: bool = True,
        prover_url: Optional[str] = None,
    ) -> ShieldWallet:
        """
        Create a wallet whose sync starts at the checkpoint nearest to
        *block_height* (the wallet's birthday).

        Exactly one of *seed* / *spending_key* may be given; with neither,
        *viewing_key* builds a view-only wallet.  ``coin_type == 1`` selects
        testnet.
        """
        if seed is None and spending_key is None and not viewing_key:
            raise InvalidConfiguration(
                "At least one among seed, spending_key, viewing_key must be provided"
            )
        if seed is not None and spending_key is not None:
            raise InvalidConfiguration("Don't provide both a seed and a spending_key")

        is_testnet = coin_type == TESTNET_COIN_TYPE
        if load_prover:
            await engine.load_prover(prover_url)
        if seed is not None:
            spending_key = await engine.generate_spending_key(seed, coin_type, account_index)
        if spending_key is not None:
            derived = await engine.generate_viewing_key(spending_key, is_testnet)
            if viewing_key and viewing_key != derived:
                raise AuthorityMismatch("Spending key does not match the given viewing key")
            viewing_key = derived
        assert viewing_key

        state = WalletState(viewing_key, is_testnet, spending_key=spending_key)
        wallet = cls(engine, state)
        checkpoint = await wallet.checkpoints.closest(block_height)
        state.reset_to_checkpoint(checkpoint)
        logger.info(
            f"Created {'view-only ' if state.view_only else ''}wallet "
            f"({'testnet' if is_testnet else 'mainnet'}) at checkpoint {checkpoint.height}"
        )
        return wallet

    @classmethod
    async def create_from_config(
        cls,
        engine: ShieldEngine,
        cfg: WalletConfig,
        *,
        seed: Optional[bytes] = None,
        spending_key: Optional[str] = None,
        viewing_key: Optional[str] = None,
    ) -> ShieldWallet:
        """:meth:`create` with account parameters taken from ``[wallet]`` config."""
        return await cls.create(
            engine,
            block_height=cfg.birth_height,
            coin_type=cfg.coin_type,
            seed=seed,
            spending_key=spending_key,
            viewing_key=viewing_key,
            account_index=cfg.account_index,
            load_prover=cfg.load_prover,
            prover_url=cfg.prover_url or None,
        )

    @classmethod
    def load(cls, engine: ShieldEngine, record: dict | str) -> tuple[ShieldWallet, bool]:
        """
        Rebuild a view-only wallet from :meth:`save` output.

        Returns ``(wallet, is_current)``; when ``is_current`` is False the
        snapshot came from an older format and a resync is advisable.
        """
        state, is_current = snapshot.load(record)
        return cls(engine, state), is_current

    def restore(self, record: dict | str) -> bool:
        """Load a snapshot into this wallet; the viewing keys must match."""
        is_current = snapshot.restore_into(self.state, record)
        self.pending.clear()
        return is_current

    def save(self) -> dict:
        """Public shield data; spending keys are never included."""
        return snapshot.save(self.state)

    # ---- spending authority ----

    async def load_spending_key(self, spending_key: str) -> None:
        """Grant spending authority to a view-only wallet."""
        if self.state.spending_key is not None:
            raise InvalidConfiguration("A spending key is already loaded")
        derived = await self.engine.generate_viewing_key(spending_key, self.state.is_testnet)
        if derived != self.state.viewing_key:
            raise AuthorityMismatch("Extended full viewing keys do not match")
        self.state.spending_key = spending_key

    async def load_seed(self, seed: bytes, coin_type: int, account_index: int = 0) -> None:
        spending_key = await self.engine.generate_spending_key(seed, coin_type, account_index)
        await self.load_spending_key(spending_key)

    # ---- sync ----

    async def handle_blocks(self, blocks: Sequence[Block]) -> list[str]:
        """Ingest *blocks*; returns the raw transactions that concern us."""
        async with self._lock:
            return await self.ingestor.ingest(blocks)

    async def handle_block(self, block: Block) -> list[str]:
        return await self.handle_blocks([block])

    async def reload_from_checkpoint(self, height: int) -> Checkpoint:
        """Roll back to the nearest checkpoint; the wallet must resync."""
        async with self._lock:
            return await self.checkpoints.reload(height)

    async def decrypt_transaction_outputs(self, tx_hex: str) -> list[SimplifiedNote]:
        return await self.ingestor.decrypt_transaction_outputs(tx_hex)

    # ---- queries ----

    def balance(self) -> int:
        """Confirmed shielded balance in satoshis."""
        return self.state.balance()

    def pending_balance(self) -> int:
        """Value of notes we expect from not yet confirmed transactions."""
        return self.pending.pending_balance()

    @property
    def last_synced_height(self) -> int:
        return self.state.last_synced_height

    @property
    def is_testnet(self) -> bool:
        return self.state.is_testnet

    @property
    def view_only(self) -> bool:
        return self.state.view_only

    def is_own_nullifier(self, nullifier: str) -> bool:
        return self.state.is_own_nullifier(nullifier)

    def get_note_from_nullifier(self, nullifier: str) -> SimplifiedNote | None:
        return self.state.get_note_from_nullifier(nullifier)

    async def get_sapling_root(self) -> str:
        return await self.engine.get_sapling_root(self.state.commitment_tree)

    # ---- addresses ----

    async def get_new_address(self) -> str:
        async with self._lock:
            return await self._next_address()

    async def _next_address(self) -> str:
        address, index = await self.engine.generate_next_address(
            self.state.viewing_key, self.state.diversifier_index, self.state.is_testnet,
        )
        self.state.advance_diversifier(index)
        return address

    # ---- transactions ----

    async def create_transaction(
        self,
        address: str,
        amount: int,
        block_height: int,
        use_shield_inputs: bool = True,
        utxos: Optional[Sequence[UTXO]] = None,
        transparent_change_address: Optional[str] = None,
    ) -> CreatedTransaction:
        """
        Build a transaction sending *amount* satoshis to *address*.

        Shield inputs send change to a fresh shield address; transparent
        inputs (*utxos*) require *transparent_change_address*.  The result
        is tracked as pending until finalised, discarded or seen in a block.
        """
        spending_key = self.state.require_spending_key()
        if not use_shield_inputs and not transparent_change_address:
            raise ChangeTypeMismatch("Change must have the same type of input used")
        if use_shield_inputs and transparent_change_address:
            raise ChangeTypeMismatch("Shield inputs cannot send change to a transparent address")

        async with self._lock:
            if use_shield_inputs:
                change_address = await self._next_address()
            else:
                assert transparent_change_address is not None
                change_address = transparent_change_address
            res: dict[str, Any] = await self.engine.create_transaction(
                spending_key=spending_key,
                to_address=address,
                change_address=change_address,
                amount=amount,
                block_height=block_height,
                is_testnet=self.state.is_testnet,
                notes=self._spendable_notes() if use_shield_inputs else None,
                utxos=None if use_shield_inputs else list(utxos or []),
            )
            txid, txhex, nullifiers = res["txid"], res["txhex"], res["nullifiers"]
            incoming = await self.ingestor.decrypt_transaction(txhex)
            self.pending.create(
                txid,
                spent_nullifiers=nullifiers if use_shield_inputs else None,
                incoming_notes=[sn.note for sn in incoming],
            )

        logger.info(f"Built transaction {txid}: {amount} sat to {address}")
        spent_utxos: list[tuple[str, int]] = []
        if not use_shield_inputs:
            for outpoint in nullifiers:
                prev_txid, vout = outpoint.split(",")
                spent_utxos.append((prev_txid, int(vout)))
        return CreatedTransaction(txid=txid, hex=txhex, spent_utxos=spent_utxos)

    def _spendable_notes(self) -> list[SpendableNote]:
        """Unspent notes not already committed to an unconfirmed transaction."""
        reserved = self.pending.pending_spent_nullifiers()
        return [n for n in self.state.unspent_notes if n.nullifier not in reserved]

    async def get_tx_status(self) -> float:
        """Proof progress of the transaction being built, 0.0 to 1.0."""
        return await self.engine.read_tx_progress()

    async def finalize_transaction(self, txid: str) -> None:
        """
        Mark *txid* as successfully broadcast: its spent notes leave the
        unspent set immediately.  Raises UnknownTransaction if not pending.
        """
        async with self._lock:
            nullifiers = self.pending.spent_nullifiers(txid)
            removed = self.state.remove_spent_notes(nullifiers)
            self.pending.resolve_spent(txid)
        logger.info(f"Finalized {txid}: {removed} note(s) spent")

    async def discard_transaction(self, txid: str) -> bool:
        """Forget a transaction that failed to broadcast; notes stay unspent."""
        async with self._lock:
            return self.pending.discard(txid)

    # ---- prover ----

    async def load_prover(self, url: str | None = None) -> bool:
        return await self.engine.load_prover(url)

    async def load_prover_with_bytes(self, output_params: bytes, spend_params: bytes) -> bool:
        return await self.engine.load_prover_with_bytes(output_params, spend_params)

    async def prover_is_loaded(self) -> bool:
        return await self.engine.prover_is_loaded()

    # ---- status ----

    def status(self) -> dict:
        return {
            "view_only": self.state.view_only,
            "testnet": self.state.is_testnet,
            "last_synced_height": self.state.last_synced_height,
            "balance": self.balance(),
            "pending_balance": self.pending_balance(),
            "unspent_notes": len(self.state.unspent_notes),
            "pending_transactions": len(self.pending),
            "known_nullifiers": len(self.state.nullifier_notes),
        }

    def __repr__(self) -> str:
        return f"ShieldWallet({self.state!r})"
