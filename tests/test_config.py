"""
Tests for shield_core.config — TOML configuration and environment overrides.

Covers:
  - Default values for all dataclass sections
  - TOML parsing and section merging
  - Environment variable overrides (precedence over TOML)
  - _merge helper edge cases
  - Missing TOML files
  - Hyphenated key handling
"""

from __future__ import annotations

import os
import tempfile
import textwrap
import unittest
from unittest.mock import patch

from shield_core.config import (
    EngineConfig,
    LoggingConfig,
    ShieldConfig,
    WalletConfig,
    _merge,
    load_config,
)

# ═══════════════════════════════════════════════════════════════════
#  Defaults
# ═══════════════════════════════════════════════════════════════════

class TestDefaults(unittest.TestCase):

    def test_engine_defaults(self):
        e = EngineConfig()
        self.assertEqual(e.transport, "stream")
        self.assertEqual(e.host, "127.0.0.1")
        self.assertEqual(e.port, 7420)
        self.assertEqual(e.call_timeout, 600.0)
        self.assertEqual(e.max_message_bytes, 64 * 1024 * 1024)

    def test_wallet_defaults(self):
        w = WalletConfig()
        self.assertEqual(w.coin_type, 1)
        self.assertEqual(w.account_index, 0)
        self.assertEqual(w.birth_height, 0)
        self.assertTrue(w.load_prover)
        self.assertEqual(w.prover_url, "")

    def test_logging_defaults(self):
        lg = LoggingConfig()
        self.assertEqual(lg.level, "INFO")
        self.assertEqual(lg.format, "human")
        self.assertIsNone(lg.file)

    def test_top_level_sections_independent(self):
        a, b = ShieldConfig(), ShieldConfig()
        a.engine.port = 1
        self.assertEqual(b.engine.port, 7420)


# ═══════════════════════════════════════════════════════════════════
#  _merge
# ═══════════════════════════════════════════════════════════════════

class TestMerge(unittest.TestCase):

    def test_known_keys_set(self):
        e = EngineConfig()
        _merge(e, {"host": "10.0.0.5", "port": 9000})
        self.assertEqual(e.host, "10.0.0.5")
        self.assertEqual(e.port, 9000)

    def test_unknown_keys_ignored(self):
        e = EngineConfig()
        _merge(e, {"nonsense": 1})
        self.assertFalse(hasattr(e, "nonsense"))

    def test_hyphenated_keys(self):
        e = EngineConfig()
        _merge(e, {"call-timeout": 5.0, "max-message-bytes": 1024})
        self.assertEqual(e.call_timeout, 5.0)
        self.assertEqual(e.max_message_bytes, 1024)


# ═══════════════════════════════════════════════════════════════════
#  TOML loading
# ═══════════════════════════════════════════════════════════════════

class TestLoadToml(unittest.TestCase):

    def _write(self, text: str) -> str:
        fd, path = tempfile.mkstemp(suffix=".toml")
        with os.fdopen(fd, "w") as f:
            f.write(textwrap.dedent(text))
        self.addCleanup(os.unlink, path)
        return path

    @patch.dict(os.environ, {}, clear=True)
    def test_sections_loaded(self):
        path = self._write("""
            [engine]
            transport = "websocket"
            url = "ws://engine.local:9999/ws"
            call_timeout = 30

            [wallet]
            coin_type = 119
            birth_height = 4200000
            load_prover = false

            [logging]
            level = "DEBUG"
            format = "json"
        """)
        cfg = load_config(path)
        self.assertEqual(cfg.engine.transport, "websocket")
        self.assertEqual(cfg.engine.url, "ws://engine.local:9999/ws")
        self.assertEqual(cfg.engine.call_timeout, 30)
        self.assertEqual(cfg.wallet.coin_type, 119)
        self.assertEqual(cfg.wallet.birth_height, 4200000)
        self.assertFalse(cfg.wallet.load_prover)
        self.assertEqual(cfg.logging.level, "DEBUG")
        self.assertEqual(cfg.logging.format, "json")

    @patch.dict(os.environ, {}, clear=True)
    def test_missing_file_gives_defaults(self):
        cfg = load_config("/nonexistent/shield.toml")
        self.assertEqual(cfg.engine.port, 7420)

    @patch.dict(os.environ, {}, clear=True)
    def test_no_path_gives_defaults(self):
        cfg = load_config()
        self.assertEqual(cfg.wallet.coin_type, 1)

    @patch.dict(os.environ, {}, clear=True)
    def test_unknown_section_ignored(self):
        path = self._write("""
            [mystery]
            x = 1
        """)
        cfg = load_config(path)
        self.assertEqual(cfg.engine.transport, "stream")


# ═══════════════════════════════════════════════════════════════════
#  Environment overrides
# ═══════════════════════════════════════════════════════════════════

class TestEnvOverrides(unittest.TestCase):

    @patch.dict(os.environ, {
        "SHIELD_ENGINE_HOST": "engine.internal",
        "SHIELD_ENGINE_PORT": "8123",
        "SHIELD_CALL_TIMEOUT": "12.5",
        "SHIELD_COIN_TYPE": "119",
        "SHIELD_BIRTH_HEIGHT": "5000",
        "SHIELD_PROVER_URL": "https://params.example.org",
        "SHIELD_LOG_LEVEL": "debug",
        "SHIELD_LOG_FMT": "json",
    }, clear=True)
    def test_all_overrides(self):
        cfg = load_config()
        self.assertEqual(cfg.engine.host, "engine.internal")
        self.assertEqual(cfg.engine.port, 8123)
        self.assertEqual(cfg.engine.call_timeout, 12.5)
        self.assertEqual(cfg.wallet.coin_type, 119)
        self.assertEqual(cfg.wallet.birth_height, 5000)
        self.assertEqual(cfg.wallet.prover_url, "https://params.example.org")
        self.assertEqual(cfg.logging.level, "DEBUG")
        self.assertEqual(cfg.logging.format, "json")

    @patch.dict(os.environ, {"SHIELD_ENGINE_URL": "ws://x:1/e"}, clear=True)
    def test_url_implies_websocket(self):
        cfg = load_config()
        self.assertEqual(cfg.engine.url, "ws://x:1/e")
        self.assertEqual(cfg.engine.transport, "websocket")

    @patch.dict(os.environ, {"SHIELD_ENGINE_TRANSPORT": "websocket"}, clear=True)
    def test_transport_override(self):
        self.assertEqual(load_config().engine.transport, "websocket")

    def test_env_beats_toml(self):
        fd, path = tempfile.mkstemp(suffix=".toml")
        with os.fdopen(fd, "w") as f:
            f.write('[engine]\nport = 1111\n')
        self.addCleanup(os.unlink, path)
        with patch.dict(os.environ, {"SHIELD_ENGINE_PORT": "2222"}, clear=True):
            cfg = load_config(path)
        self.assertEqual(cfg.engine.port, 2222)


if __name__ == "__main__":
    unittest.main()
