import tempfile
import unittest
from pathlib import Path

from snapshot_service.infra.config import AppConfig, ConfigError, load_config, parse_duration

YAML_FIXTURE = """
exchange:
  base_url: https://testnet.binance.vision
  timeout_seconds: 3
  retry:
    max_retries: 5
    initial_backoff_seconds: 0.5
poller:
  interval_seconds: 60
  retention_days: 7
persistence:
  database_path: /tmp/prices.db
dashboard:
  port: 9090
logging:
  level: debug
  format: text
"""


class LoadConfigTest(unittest.TestCase):
    def test_missing_file_falls_back_to_defaults(self) -> None:
        config = load_config("/nonexistent/settings.yaml", environ={})

        self.assertEqual(config.poller.interval_seconds, 30.0)
        self.assertEqual(config.exchange.retry.max_retries, 3)
        self.assertEqual(config.dashboard.port, 8080)
        config.validate()

    def test_reads_yaml_sections(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "settings.yaml"
            path.write_text(YAML_FIXTURE, encoding="utf-8")

            config = load_config(path, environ={})

        self.assertEqual(config.exchange.base_url, "https://testnet.binance.vision")
        self.assertEqual(config.exchange.timeout_seconds, 3.0)
        self.assertEqual(config.exchange.retry.max_retries, 5)
        self.assertEqual(config.exchange.retry.initial_backoff_seconds, 0.5)
        self.assertEqual(config.exchange.retry.max_backoff_seconds, 10.0)
        self.assertEqual(config.poller.interval_seconds, 60.0)
        self.assertEqual(config.poller.retention_days, 7)
        self.assertEqual(config.persistence.database_path, "/tmp/prices.db")
        self.assertEqual(config.dashboard.port, 9090)
        self.assertEqual((config.logging.level, config.logging.format), ("debug", "text"))

    def test_empty_sections_are_tolerated(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "settings.yaml"
            path.write_text("exchange:\npoller:\n", encoding="utf-8")

            config = load_config(path, environ={})

        self.assertEqual(config, AppConfig())

    def test_environment_overrides_file_values(self) -> None:
        environ = {
            "POLLER_INTERVAL": "2m",
            "EXCHANGE_TIMEOUT": "1500ms",
            "EXCHANGE_MAX_RETRIES": "1",
            "SERVER_PORT": "9999",
            "LOG_LEVEL": "warn",
            "DATABASE_PATH": "/data/snap.db",
        }

        config = load_config(None, environ=environ)

        self.assertEqual(config.poller.interval_seconds, 120.0)
        self.assertAlmostEqual(config.exchange.timeout_seconds, 1.5)
        self.assertEqual(config.exchange.retry.max_retries, 1)
        self.assertEqual(config.dashboard.port, 9999)
        self.assertEqual(config.logging.level, "warn")
        self.assertEqual(config.persistence.database_path, "/data/snap.db")

    def test_unparseable_environment_values_are_ignored(self) -> None:
        config = load_config(None, environ={"SERVER_PORT": "eighty", "POLLER_INTERVAL": "soon"})

        self.assertEqual(config.dashboard.port, 8080)
        self.assertEqual(config.poller.interval_seconds, 30.0)


class ValidateTest(unittest.TestCase):
    def test_rejects_out_of_range_values(self) -> None:
        cases = {
            "interval too short": lambda c: setattr(c.poller, "interval_seconds", 1.0),
            "interval too long": lambda c: setattr(c.poller, "interval_seconds", 2 * 24 * 3600.0),
            "bad port": lambda c: setattr(c.dashboard, "port", 0),
            "bad level": lambda c: setattr(c.logging, "level", "verbose"),
            "bad format": lambda c: setattr(c.logging, "format", "xml"),
            "bad jitter": lambda c: setattr(c.exchange.retry, "jitter", 2.0),
            "negative retention": lambda c: setattr(c.poller, "retention_days", -1),
            "empty database path": lambda c: setattr(c.persistence, "database_path", ""),
        }
        for label, mutate in cases.items():
            with self.subTest(label):
                config = AppConfig()
                mutate(config)
                with self.assertRaises(ConfigError):
                    config.validate()


class ParseDurationTest(unittest.TestCase):
    def test_units(self) -> None:
        self.assertEqual(parse_duration("30s"), 30.0)
        self.assertAlmostEqual(parse_duration("500ms"), 0.5)
        self.assertEqual(parse_duration("2m"), 120.0)
        self.assertEqual(parse_duration("1h"), 3600.0)
        self.assertEqual(parse_duration(" 45 "), 45.0)

    def test_rejects_garbage(self) -> None:
        with self.assertRaises(ValueError):
            parse_duration("fast")


if __name__ == "__main__":
    unittest.main()
