"""
Transient overlay of locally built, not yet confirmed transactions.

Two maps keyed by txid:

* pending-spent: nullifiers an outgoing transaction will consume
* pending-incoming: notes a transaction is expected to create for us

An entry leaves the overlay when the transaction is seen in a block
(:meth:`confirm`), when the caller finalises it, or when it is discarded.
The overlay is never written to a snapshot.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from shield_core.errors import UnknownTransaction
from shield_core.notes import Note

logger = logging.getLogger("shield.pending")


class PendingTransactions:
    """Pending-spent and pending-incoming bookkeeping for one wallet."""

    def __init__(self):
        self._spent: dict[str, tuple[str, ...]] = {}
        self._incoming: dict[str, tuple[Note, ...]] = {}

    def create(
        self,
        txid: str,
        spent_nullifiers: Optional[Iterable[str]] = None,
        incoming_notes: Optional[Iterable[Note]] = None,
    ) -> None:
        """Record a freshly built transaction (replaces any previous entry)."""
        if txid in self:
            logger.debug(f"Replacing pending entry for {txid}")
        if spent_nullifiers is not None:
            self._spent[txid] = tuple(spent_nullifiers)
        self._incoming[txid] = tuple(incoming_notes or ())

    def spent_nullifiers(self, txid: str) -> tuple[str, ...]:
        """Nullifiers recorded for *txid*; raises if the txid is not pending."""
        if txid not in self:
            raise UnknownTransaction(txid)
        return self._spent.get(txid, ())

    def incoming_notes(self, txid: str) -> tuple[Note, ...]:
        return self._incoming.get(txid, ())

    def resolve_spent(self, txid: str) -> None:
        """
        Drop the pending-spent part once its nullifiers have been applied.

        Incoming notes stay pending until the transaction shows up in a
        block; a transaction with none leaves the overlay here.
        """
        self._spent.pop(txid, None)
        if not self._incoming.get(txid):
            self._incoming.pop(txid, None)

    def discard(self, txid: str) -> bool:
        """Forget *txid* entirely.  Returns False if it was not pending."""
        found = txid in self
        self._spent.pop(txid, None)
        self._incoming.pop(txid, None)
        if not found:
            logger.debug(f"Discard of unknown transaction {txid} ignored")
        return found

    def confirm(self, txids: Iterable[str]) -> list[str]:
        """Remove entries for transactions now included in a block."""
        confirmed = []
        for txid in txids:
            if txid in self:
                self._spent.pop(txid, None)
                self._incoming.pop(txid, None)
                confirmed.append(txid)
        return confirmed

    def clear(self) -> None:
        self._spent.clear()
        self._incoming.clear()

    def pending_balance(self) -> int:
        """Sum of values of all pending-incoming notes."""
        return sum(n.value for notes in self._incoming.values() for n in notes)

    def pending_spent_nullifiers(self) -> set[str]:
        """Nullifiers already committed to some unconfirmed transaction."""
        return {nf for nfs in self._spent.values() for nf in nfs}

    @property
    def txids(self) -> list[str]:
        return list(dict.fromkeys([*self._spent, *self._incoming]))

    def __contains__(self, txid: object) -> bool:
        return txid in self._spent or txid in self._incoming

    def __len__(self) -> int:
        return len(self.txids)
