"""
TOML-based configuration for shielded wallet hosts.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from shield_core.config import load_config
    cfg = load_config("shield.toml")
    bridge = await open_bridge(cfg.engine)
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib  # type: ignore[import]
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[import,no-redef]


@dataclass
class EngineConfig:
    """Where the cryptographic engine lives and how long to wait for it."""
    transport: str = "stream"          # "stream" (TCP) or "websocket"
    host: str = "127.0.0.1"
    port: int = 7420
    url: str = "ws://127.0.0.1:7420/engine"
    # Seconds before an unanswered call is evicted (0 = wait forever).
    # Proof generation can take minutes on slow machines.
    call_timeout: float = 600.0
    max_message_bytes: int = 64 * 1024 * 1024


@dataclass
class WalletConfig:
    """Account parameters used when creating a wallet."""
    coin_type: int = 1                 # 1 = testnet
    account_index: int = 0
    birth_height: int = 0
    load_prover: bool = True
    prover_url: str = ""               # empty = engine default location


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class ShieldConfig:
    """Top-level configuration container."""
    engine: EngineConfig = field(default_factory=EngineConfig)
    wallet: WalletConfig = field(default_factory=WalletConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def load_config(path: str | None = None) -> ShieldConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        SHIELD_ENGINE_TRANSPORT -> engine.transport
        SHIELD_ENGINE_HOST      -> engine.host
        SHIELD_ENGINE_PORT      -> engine.port
        SHIELD_ENGINE_URL       -> engine.url  (implies websocket transport)
        SHIELD_CALL_TIMEOUT     -> engine.call_timeout
        SHIELD_COIN_TYPE        -> wallet.coin_type
        SHIELD_BIRTH_HEIGHT     -> wallet.birth_height
        SHIELD_PROVER_URL       -> wallet.prover_url
        SHIELD_LOG_LEVEL        -> logging.level
        SHIELD_LOG_FMT          -> logging.format
    """
    cfg = ShieldConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("engine", cfg.engine),
                ("wallet", cfg.wallet),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("SHIELD_ENGINE_TRANSPORT"):
        cfg.engine.transport = v
    if v := os.environ.get("SHIELD_ENGINE_HOST"):
        cfg.engine.host = v
    if v := os.environ.get("SHIELD_ENGINE_PORT"):
        cfg.engine.port = int(v)
    if v := os.environ.get("SHIELD_ENGINE_URL"):
        cfg.engine.url = v
        cfg.engine.transport = "websocket"
    if v := os.environ.get("SHIELD_CALL_TIMEOUT"):
        cfg.engine.call_timeout = float(v)
    if v := os.environ.get("SHIELD_COIN_TYPE"):
        cfg.wallet.coin_type = int(v)
    if v := os.environ.get("SHIELD_BIRTH_HEIGHT"):
        cfg.wallet.birth_height = int(v)
    if v := os.environ.get("SHIELD_PROVER_URL"):
        cfg.wallet.prover_url = v
    if v := os.environ.get("SHIELD_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("SHIELD_LOG_FMT"):
        cfg.logging.format = v

    return cfg
