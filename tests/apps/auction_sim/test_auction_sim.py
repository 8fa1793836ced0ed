import json
import logging
import tempfile
import unittest
from decimal import Decimal
from pathlib import Path

from click.testing import CliRunner

from dutch_auction.apps.auction_sim.app import App
from dutch_auction.apps.auction_sim.main import cli
from dutch_auction.auction.domain.order import OrderStatus
from dutch_auction.auction.errors import InvalidPriceUnit
from dutch_auction.core.logging import configure_logging
from tests.test_support import DutchAuctionTestCase

CONFIG = """
[auction]
tick_interval_ms = 10
default_duration_ms = 500

[simulation]
orders = 2
resolvers = 3
participation_probability = {participation_probability}
min_delay_ms = 10
max_delay_ms = 50
start_price = "95"
end_price = "85"
seed = 7

[logging]
level = "debug"
"""


def write_config(directory: str, participation_probability: float) -> Path:
    config_file = Path(directory) / "auction_sim.toml"
    config_file.write_text(CONFIG.format(participation_probability=participation_probability))
    return config_file


class AuctionSimAppTestCase(DutchAuctionTestCase):
    def test_orders_are_fulfilled(self):
        with tempfile.TemporaryDirectory() as directory:
            app = App.from_config_file(write_config(directory, 1.0))

        orders = app.run()
        self.assertEqual(2, len(orders))
        for order in orders:
            with self.subTest(order_id=order.order_id):
                self.assertEqual(OrderStatus.FULFILLED, order.status)
                self.assertTrue(Decimal(85) <= order.accepted_price <= Decimal(95))
                self.assertIsNotNone(order.settlement_reference)

        # 3 resolvers raced for each order
        self.assertEqual(6, len(app.attempts))
        for order in orders:
            winners = [
                attempt
                for attempt in app.attempts
                if attempt.order_id == order.order_id and attempt.won
            ]
            self.assertEqual([order.accepted_by], [attempt.resolver_id for attempt in winners])

    def test_orders_fail_when_nobody_participates(self):
        with tempfile.TemporaryDirectory() as directory:
            app = App.from_config_file(write_config(directory, 0.0))

        for order in app.run():
            self.assertEqual(OrderStatus.FAILED, order.status)
            self.assertEqual("auction expired", order.failure_reason)
        self.assertEqual([], app.attempts)

    def test_invalid_config(self):
        with self.assertRaises(ValueError):
            App({"simulation": {"participation_probability": 2}})
        with self.assertRaises(ValueError):
            App({"simulation": {"min_delay_ms": 100, "max_delay_ms": 10}})
        with self.assertRaises(ValueError):
            App({"logging": {"level": "chatty"}})

        with self.subTest("TOML floats are rejected as prices"):
            with self.assertRaises(InvalidPriceUnit):
                App({"simulation": {"start_price": 95.5}})
            with self.assertRaises(InvalidPriceUnit):
                App({"simulation": {"end_price": 85.0}})
            simulation = App({"simulation": {"start_price": "95.5", "end_price": 85}}).simulation
            self.assertEqual(Decimal("95.5"), simulation.start_price)
            self.assertEqual(Decimal(85), simulation.end_price)


class AuctionSimCliTestCase(DutchAuctionTestCase):
    def tearDown(self) -> None:
        # the app logs to the runner's stderr, which is closed once the command completes
        configure_logging(logging.DEBUG)

    def test_run(self):
        runner = CliRunner()
        with tempfile.TemporaryDirectory() as directory:
            config_file = write_config(directory, 1.0)
            result = runner.invoke(cli, ["run", "--config-file", str(config_file), "--orders", "1"])

        self.assertEqual(0, result.exit_code, result.output)
        self.assertIn("FULFILLED", result.output)
        self.assertIn("WON", result.output)

    def test_show_config(self):
        runner = CliRunner()
        with tempfile.TemporaryDirectory() as directory:
            config_file = write_config(directory, 0.5)
            result = runner.invoke(cli, ["show-config", "--config-file", str(config_file)])

        self.assertEqual(0, result.exit_code, result.output)
        config = json.loads(result.output)
        self.assertEqual(0.5, config["simulation"]["participation_probability"])


if __name__ == "__main__":
    unittest.main()
