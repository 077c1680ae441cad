"""
Value types shared by the wallet store, the ingestion pipeline and the
engine client.

Byte fields travel across the engine bridge and into snapshots as lowercase
hex strings; ``to_dict`` / ``from_dict`` perform that conversion.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


def _hex(data: bytes | None) -> str | None:
    return data.hex() if data is not None else None


def _unhex(value: Any) -> bytes:
    """Accept hex strings or integer lists (legacy engine replies)."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, list):
        return bytes(value)
    return bytes.fromhex(value)


@dataclass(frozen=True)
class Note:
    """A shielded note: value, recipient and commitment randomness."""
    value: int
    recipient: bytes
    rseed: bytes

    def __post_init__(self):
        if self.value < 0:
            raise ValueError("Note value must be non-negative")

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "recipient": self.recipient.hex(),
            "rseed": self.rseed.hex(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Note:
        return cls(
            value=int(data["value"]),
            recipient=_unhex(data["recipient"]),
            rseed=_unhex(data["rseed"]),
        )


@dataclass(frozen=True)
class SpendableNote:
    """A note together with its witness and nullifier."""
    note: Note
    witness: str
    nullifier: str

    @property
    def value(self) -> int:
        return self.note.value

    def to_dict(self) -> dict:
        return {
            "note": self.note.to_dict(),
            "witness": self.witness,
            "nullifier": self.nullifier,
        }

    @classmethod
    def from_dict(cls, data: dict) -> SpendableNote:
        return cls(Note.from_dict(data["note"]), data["witness"], data["nullifier"])


@dataclass(frozen=True)
class SimplifiedNote:
    """What the nullifier history remembers about a note."""
    recipient: str
    value: int

    def to_dict(self) -> dict:
        return {"recipient": self.recipient, "value": self.value}

    @classmethod
    def from_dict(cls, data: dict) -> SimplifiedNote:
        return cls(data["recipient"], int(data["value"]))


@dataclass
class UTXO:
    """A transparent output used as a transaction input."""
    txid: str
    vout: int
    amount: Optional[int] = None
    private_key: Optional[bytes] = None
    script: Optional[bytes] = None

    def to_dict(self) -> dict:
        return {
            "txid": self.txid,
            "vout": self.vout,
            "amount": self.amount,
            "private_key": _hex(self.private_key),
            "script": _hex(self.script),
        }


@dataclass(frozen=True)
class RawTransaction:
    """A serialized chain transaction."""
    txid: str
    hex: str


@dataclass
class Block:
    """The minimal block shape consumed by ingestion."""
    height: int
    txs: list[RawTransaction] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> Block:
        return cls(
            height=int(data["height"]),
            txs=[RawTransaction(t["txid"], t["hex"]) for t in data.get("txs", [])],
        )


@dataclass
class BatchResult:
    """Engine reply to a ``handle_blocks`` call."""
    decrypted_notes: list[SpendableNote]
    decrypted_new_notes: list[SpendableNote]
    commitment_tree: str
    nullifiers: list[str]
    wallet_transactions: list[str]

    @classmethod
    def from_dict(cls, data: dict) -> BatchResult:
        return cls(
            decrypted_notes=[_spendable(n) for n in data.get("decrypted_notes", [])],
            decrypted_new_notes=[_spendable(n) for n in data.get("decrypted_new_notes", [])],
            commitment_tree=data["commitment_tree"],
            nullifiers=list(data.get("nullifiers", [])),
            wallet_transactions=list(data.get("wallet_transactions", [])),
        )


def _spendable(item: Any) -> SpendableNote:
    # The engine may answer with [note, witness, nullifier] triples
    if isinstance(item, (list, tuple)):
        note, witness, nullifier = item
        return SpendableNote(Note.from_dict(note), witness, nullifier)
    return SpendableNote.from_dict(item)


@dataclass(frozen=True)
class Checkpoint:
    """A known-good (height, commitment tree) resynchronisation point."""
    height: int
    commitment_tree: str


@dataclass
class CreatedTransaction:
    """Result of building a transaction locally."""
    txid: str
    hex: str
    spent_utxos: list[tuple[str, int]] = field(default_factory=list)
