"""
Shared pytest fixtures for the shield_core test suite.

``FakeEngine`` is an in-process :class:`Transport` that answers bridge
requests the way the real cryptographic engine would, over a toy chain:
raw transactions are plain strings, notes addressed to us are registered
with :meth:`FakeEngine.add_output` and spends with :meth:`FakeEngine.add_spend`.
Replies are delivered on a later event-loop iteration, so calls really are
asynchronous.  Individual operations can be failed or held back.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

import pytest

from shield_core.bridge import EngineBridge, Transport
from shield_core.engine import ShieldEngine
from shield_core.shield import ShieldWallet

FAKE_FEE = 1_000
CHECKPOINTS = [(0, "00"), (40, "cp40"), (100, "cp100")]
SEED = bytes(range(32))


class FakeEngine(Transport):
    """Deterministic stand-in for the cryptographic engine."""

    def __init__(self):
        self.requests: list[dict] = []
        self.failures: dict[str, Any] = {}   # operation -> rejection reason
        self.held: set[str] = set()          # operations that never reply
        self.held_requests: list[dict] = []
        self.outputs: dict[str, list[dict]] = {}
        self.spends: dict[str, list[str]] = {}
        self.prover_loaded = False
        self.closed = False
        self._on_message: Optional[Callable[[dict], None]] = None
        self._on_close: Optional[Callable[[Optional[BaseException]], None]] = None
        self._counter = 0

    # ---- Transport ----

    def connect(self, on_message: Callable[[dict], None]) -> None:
        self._on_message = on_message

    async def start(self, on_message, on_close) -> None:
        self._on_message = on_message
        self._on_close = on_close

    async def send(self, message: dict) -> None:
        if self.closed:
            raise ConnectionError("fake engine closed")
        self.requests.append(message)
        if message["name"] in self.held:
            self.held_requests.append(message)
            return
        asyncio.get_running_loop().call_soon(self._reply, message)

    async def close(self) -> None:
        self.closed = True
        if self._on_close:
            self._on_close(None)

    def hang_up(self, error: Optional[BaseException] = None) -> None:
        """Simulate the engine dropping the connection."""
        assert self._on_close is not None
        self._on_close(error)

    def release(self) -> None:
        """Answer every held request now."""
        held, self.held_requests = self.held_requests, []
        self.held.clear()
        for message in held:
            self._reply(message)

    def _reply(self, message: dict) -> None:
        name = message["name"]
        if name in self.failures:
            reply = {"uuid": message["uuid"], "rej": self.failures[name]}
        else:
            try:
                reply = {"uuid": message["uuid"], "res": getattr(self, name)(*message["args"])}
            except (ValueError, KeyError) as exc:
                reply = {"uuid": message["uuid"], "rej": str(exc)}
        assert self._on_message is not None
        self._on_message(reply)

    def calls(self, name: str) -> list[dict]:
        return [r for r in self.requests if r["name"] == name]

    # ---- toy chain ----

    def add_output(self, tx_hex: str, value: int, recipient: bytes = b"\x0a" * 43) -> str:
        """Register a note for us inside *tx_hex*; returns its nullifier."""
        self._counter += 1
        note = {
            "value": value,
            "recipient": recipient.hex(),
            "rseed": self._counter.to_bytes(32, "big").hex(),
        }
        self.outputs.setdefault(tx_hex, []).append(note)
        return "nf-" + note["rseed"]

    def add_spend(self, tx_hex: str, nullifier: str) -> None:
        self.spends.setdefault(tx_hex, []).append(nullifier)

    # ---- engine operations ----

    def generate_extended_spending_key_from_seed(self, data: dict) -> str:
        return f"sk-{data['seed'][:16]}-{data['coin_type']}-{data['account_index']}"

    def generate_extended_full_viewing_key(self, spending_key: str, is_testnet: bool) -> str:
        if not spending_key.startswith("sk-"):
            raise ValueError("Invalid spending key")
        return "fvk-" + spending_key[3:]

    def get_closest_checkpoint(self, height: int, is_testnet: bool):
        found = [cp for cp in CHECKPOINTS if cp[0] <= height]
        return list(found[-1]) if found else None

    def handle_blocks(self, tree, blocks, viewing_key, is_testnet, notes):
        new_notes, nullifiers, wallet_txs = [], [], []
        own = {n["nullifier"] for n in notes}
        count = 0
        for block in blocks:
            for tx_hex in block["txs"]:
                count += 1
                outs = self.outputs.get(tx_hex, [])
                for note in outs:
                    nf = "nf-" + note["rseed"]
                    own.add(nf)
                    new_notes.append({"note": note, "witness": "w", "nullifier": nf})
                spent = self.spends.get(tx_hex, [])
                nullifiers.extend(spent)
                if outs or own.intersection(spent):
                    wallet_txs.append(tx_hex)
        return {
            "decrypted_notes": [dict(n, witness=n["witness"] + "'") for n in notes],
            "decrypted_new_notes": new_notes,
            "commitment_tree": f"{tree}+{count}",
            "nullifiers": nullifiers,
            "wallet_transactions": wallet_txs,
        }

    def remove_spent_notes(self, notes, nullifiers, viewing_key, is_testnet):
        return [n for n in notes if n["nullifier"] not in nullifiers]

    def generate_next_shielding_payment_address(self, viewing_key, index_hex, is_testnet):
        n = int.from_bytes(bytes.fromhex(index_hex), "little") + 1
        return {"address": f"ptestsapling{n}", "diversifier_index": n.to_bytes(11, "little").hex()}

    def get_nullifier_from_note(self, note_witness, viewing_key, is_testnet):
        note, _witness = note_witness
        return "nf-" + note["rseed"]

    def encode_payment_address(self, is_testnet: bool, recipient_hex: str) -> str:
        return ("ptestsapling-" if is_testnet else "ps-") + recipient_hex[:8]

    def create_transaction(self, params: dict) -> dict:
        self._counter += 1
        txid = f"tx{self._counter}"
        tx_hex = f"raw-{txid}"
        amount = params["amount"]
        if params["notes"] is not None:
            selected, total = [], 0
            for n in params["notes"]:
                if total >= amount + FAKE_FEE:
                    break
                selected.append(n)
                total += n["note"]["value"]
            if total < amount + FAKE_FEE:
                raise ValueError("Not enough balance")
            nullifiers = [n["nullifier"] for n in selected]
            for nf in nullifiers:
                self.add_spend(tx_hex, nf)
            change = total - amount - FAKE_FEE
            if change:
                self.add_output(tx_hex, change, recipient=b"\x0c" * 43)
        else:
            nullifiers = [f"{u['txid']},{u['vout']}" for u in params["utxos"]]
        return {"txid": txid, "txhex": tx_hex, "nullifiers": nullifiers}

    def read_tx_progress(self) -> float:
        return 0.5

    def load_prover(self) -> bool:
        self.prover_loaded = True
        return True

    def load_prover_with_url(self, url: str) -> bool:
        self.prover_loaded = True
        return True

    def load_prover_with_bytes(self, output_hex: str, spend_hex: str) -> bool:
        self.prover_loaded = bool(output_hex and spend_hex)
        return self.prover_loaded

    def prover_is_loaded(self) -> bool:
        return self.prover_loaded

    def get_sapling_root(self, tree: str) -> str:
        return f"root({tree})"


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def bridge(fake_engine):
    """Bridge wired straight to the fake engine (no start() needed)."""
    b = EngineBridge(fake_engine)
    fake_engine.connect(b.handle_reply)
    return b


@pytest.fixture
def engine(bridge):
    return ShieldEngine(bridge)


@pytest.fixture
def make_wallet(engine):
    """Async factory: ``await make_wallet(block_height=100, ...)``."""

    async def _make(**kwargs) -> ShieldWallet:
        kwargs.setdefault("block_height", 100)
        kwargs.setdefault("coin_type", 1)
        if not {"seed", "spending_key", "viewing_key"} & kwargs.keys():
            kwargs["seed"] = SEED
        return await ShieldWallet.create(engine, **kwargs)

    return _make
