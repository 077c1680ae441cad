"""
Versioned snapshots of a :class:`WalletState`.

Record layout (current version):

    version               schema version (int)
    viewing_key           extended full viewing key
    last_processed_block  height of the last ingested block
    commitment_tree       hex commitment tree
    diversifier_index     hex, little-endian
    unspent_notes         [{note, witness, nullifier}, ...]
    is_testnet            network flag
    nullifier_notes       {nullifier: {recipient, value}}

The spending key is never written; it has to be supplied again (seed or
key) when spending authority is needed.

Older records are brought forward one version at a time through
``_UPGRADES``.  Loading reports whether the record was already current so the
caller can decide to resynchronise.

Version history:
    0  no version tag, no nullifier history; unspent notes stored as
       [note, witness] pairs without nullifiers
    1  nullifier history index, unspent notes carry their nullifier
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from shield_core.errors import AuthorityMismatch, DiversifierRegression, SnapshotError
from shield_core.notes import SimplifiedNote, SpendableNote
from shield_core.state import WalletState

logger = logging.getLogger("shield.snapshot")

SNAPSHOT_VERSION = 1


# ─── Writing ─────────────────────────────────────────────────────────────


def save(state: WalletState) -> dict:
    """Build a JSON-serialisable snapshot of *state*."""
    return {
        "version": SNAPSHOT_VERSION,
        "viewing_key": state.viewing_key,
        "last_processed_block": state.last_processed_block,
        "commitment_tree": state.commitment_tree,
        "diversifier_index": state.diversifier_index.hex(),
        "unspent_notes": [n.to_dict() for n in state.unspent_notes],
        "is_testnet": state.is_testnet,
        "nullifier_notes": {
            nf: note.to_dict() for nf, note in state.nullifier_notes.items()
        },
    }


def to_json(state: WalletState) -> str:
    return json.dumps(save(state))


def from_json(data: str) -> dict:
    try:
        record = json.loads(data)
    except json.JSONDecodeError as exc:
        raise SnapshotError(f"Snapshot is not valid JSON: {exc}") from exc
    if not isinstance(record, dict):
        raise SnapshotError("Snapshot must be a JSON object")
    return record


# ─── Upgrades ────────────────────────────────────────────────────────────


def _upgrade_v0(record: dict) -> dict:
    """v0 notes have no nullifiers; they cannot be trusted without resync."""
    upgraded = dict(record)
    if record.get("unspent_notes"):
        logger.warning(
            f"Dropping {len(record['unspent_notes'])} v0 unspent note(s) "
            "without nullifiers; resync required"
        )
    upgraded["unspent_notes"] = []
    upgraded["nullifier_notes"] = {}
    upgraded["version"] = 1
    return upgraded


_UPGRADES: dict[int, Callable[[dict], dict]] = {
    0: _upgrade_v0,
}


def upgrade(record: dict) -> tuple[dict, bool]:
    """
    Bring *record* up to :data:`SNAPSHOT_VERSION`.

    Returns ``(record, was_current)``.
    """
    version = record.get("version", 0)
    if isinstance(version, bool) or not isinstance(version, int) or version < 0:
        raise SnapshotError(f"Invalid snapshot version {version!r}")
    if version > SNAPSHOT_VERSION:
        raise SnapshotError(
            f"Snapshot version {version} is newer than supported {SNAPSHOT_VERSION}"
        )
    was_current = version == SNAPSHOT_VERSION
    while version < SNAPSHOT_VERSION:
        record = _UPGRADES[version](record)
        version = record["version"]
    return record, was_current


# ─── Reading ─────────────────────────────────────────────────────────────


def _parse(record: dict) -> dict[str, Any]:
    try:
        return {
            "viewing_key": record["viewing_key"],
            "is_testnet": bool(record["is_testnet"]),
            "last_processed_block": int(record["last_processed_block"]),
            "commitment_tree": record["commitment_tree"],
            "diversifier_index": bytes.fromhex(record["diversifier_index"]),
            "unspent_notes": [
                SpendableNote.from_dict(n) for n in record.get("unspent_notes", [])
            ],
            "nullifier_notes": {
                nf: SimplifiedNote.from_dict(n)
                for nf, n in record.get("nullifier_notes", {}).items()
            },
        }
    except (KeyError, TypeError, ValueError) as exc:
        raise SnapshotError(f"Malformed snapshot: {exc}") from exc


def load(record: dict | str) -> tuple[WalletState, bool]:
    """Build a fresh view-only WalletState from *record*."""
    if isinstance(record, str):
        record = from_json(record)
    upgraded, was_current = upgrade(record)
    fields = _parse(upgraded)
    state = WalletState(
        viewing_key=fields["viewing_key"],
        is_testnet=fields["is_testnet"],
        last_processed_block=fields["last_processed_block"],
        commitment_tree=fields["commitment_tree"],
        diversifier_index=fields["diversifier_index"],
    )
    state.replace_unspent(fields["unspent_notes"])
    state.record_nullifiers(fields["nullifier_notes"])
    return state, was_current


def restore_into(state: WalletState, record: dict | str) -> bool:
    """
    Replace the persistent fields of *state* with *record*.

    The record must belong to the viewing key *state* is bound to; on
    mismatch nothing is changed.  The spending key (if any) is kept.
    Returns whether the record was already at the current version.
    """
    loaded, was_current = load(record)
    if state.viewing_key and state.viewing_key != loaded.viewing_key:
        raise AuthorityMismatch("Snapshot belongs to a different viewing key")
    state.viewing_key = loaded.viewing_key
    state.is_testnet = loaded.is_testnet
    state.last_processed_block = loaded.last_processed_block
    state.commitment_tree = loaded.commitment_tree
    try:
        state.advance_diversifier(loaded.diversifier_index)
    except DiversifierRegression:
        logger.warning("Snapshot diversifier index is behind the wallet's; keeping the newer one")
    state.replace_unspent(loaded.unspent_notes)
    state.reset_history(loaded.nullifier_notes)
    logger.info(
        f"Snapshot restored at height {state.last_processed_block} "
        f"({'current' if was_current else 'upgraded'} format)"
    )
    return was_current
