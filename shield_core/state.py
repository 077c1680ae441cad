"""
In-memory record of a shielded account.

Holds the keys, synchronisation height, commitment tree, diversifier index,
the confirmed unspent-note set and the nullifier history index.  Unspent
notes are keyed by nullifier, so the set can never hold a note twice and
``balance()`` is always the plain sum over it.

Only the ingestion pipeline, the checkpoint manager, snapshot restore,
address generation and transaction finalisation mutate a ``WalletState``.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from shield_core.errors import DiversifierRegression, ViewOnlyViolation
from shield_core.notes import Checkpoint, SimplifiedNote, SpendableNote

logger = logging.getLogger("shield.state")

DIVERSIFIER_INDEX_LEN = 11


class WalletState:
    """Keys, sync position and note bookkeeping for one account."""

    def __init__(
        self,
        viewing_key: str,
        is_testnet: bool,
        spending_key: Optional[str] = None,
        last_processed_block: int = 0,
        commitment_tree: str = "",
        diversifier_index: bytes | None = None,
    ):
        self.viewing_key = viewing_key
        self.spending_key = spending_key
        self.is_testnet = is_testnet
        self.last_processed_block = last_processed_block
        self.commitment_tree = commitment_tree
        self.diversifier_index = diversifier_index or bytes(DIVERSIFIER_INDEX_LEN)
        self._unspent: dict[str, SpendableNote] = {}
        self._nullifier_notes: dict[str, SimplifiedNote] = {}

    # ---- read accessors ----

    @property
    def view_only(self) -> bool:
        return self.spending_key is None

    @property
    def last_synced_height(self) -> int:
        return self.last_processed_block

    @property
    def unspent_notes(self) -> list[SpendableNote]:
        return list(self._unspent.values())

    @property
    def nullifier_notes(self) -> dict[str, SimplifiedNote]:
        return dict(self._nullifier_notes)

    def balance(self) -> int:
        """Sum of note values over the unspent set."""
        return sum(n.value for n in self._unspent.values())

    def is_own_nullifier(self, nullifier: str) -> bool:
        return nullifier in self._nullifier_notes

    def get_note_from_nullifier(self, nullifier: str) -> SimplifiedNote | None:
        return self._nullifier_notes.get(nullifier)

    def require_spending_key(self) -> str:
        if self.spending_key is None:
            raise ViewOnlyViolation("You cannot create a transaction in view only mode")
        return self.spending_key

    # ---- mutators ----

    def replace_unspent(self, notes: Iterable[SpendableNote]) -> None:
        """Replace the unspent set; a repeated nullifier keeps the last note."""
        self._unspent = {n.nullifier: n for n in notes}

    def remove_spent_notes(self, nullifiers: Iterable[str]) -> int:
        """Drop notes whose nullifier is in *nullifiers*; returns the count removed."""
        removed = 0
        for nf in nullifiers:
            if self._unspent.pop(nf, None) is not None:
                removed += 1
        return removed

    def record_nullifiers(self, entries: dict[str, SimplifiedNote]) -> None:
        self._nullifier_notes.update(entries)

    def reset_history(self, entries: dict[str, SimplifiedNote]) -> None:
        self._nullifier_notes = dict(entries)

    def advance_diversifier(self, new_index: bytes) -> None:
        """Store a newer diversifier index; moving backwards is refused."""
        current = int.from_bytes(self.diversifier_index, "little")
        proposed = int.from_bytes(new_index, "little")
        if proposed < current:
            raise DiversifierRegression(
                f"Diversifier index would regress from {current} to {proposed}"
            )
        self.diversifier_index = bytes(new_index)

    def reset_to_checkpoint(self, checkpoint: Checkpoint) -> None:
        self.last_processed_block = checkpoint.height
        self.commitment_tree = checkpoint.commitment_tree
        self._unspent = {}
        self._nullifier_notes = {}

    def __repr__(self) -> str:
        mode = "view-only" if self.view_only else "spend"
        return (
            f"WalletState({mode}, height={self.last_processed_block}, "
            f"notes={len(self._unspent)}, balance={self.balance()})"
        )
