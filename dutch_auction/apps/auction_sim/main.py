"""
Dutch auction simulation CLI
"""
import json
from pathlib import Path

import click

from dutch_auction.apps.auction_sim.app import App, summarize


def load_app(config_file: Path | None) -> App:
    return App.from_config_file(config_file) if config_file else App({})


config_file_option = click.option(
    "--config-file",
    required=False,
    type=click.Path(exists=True, resolve_path=True, readable=True, path_type=Path),
    help="TOML config file",
)


@click.group()
def cli():
    """
    Dutch auction simulator
    """


@cli.command
@config_file_option
def show_config(config_file: Path | None = None):
    """
    Displays the config as JSON
    """
    app = load_app(config_file)
    click.echo(json.dumps(app.config, indent=3, default=str))


@cli.command
@config_file_option
@click.option("--orders", type=click.IntRange(min=1), help="overrides [simulation] orders")
def run(config_file: Path | None = None, orders: int | None = None):
    """
    Runs auctions against simulated resolvers, and prints each order's outcome
    """
    app = load_app(config_file)
    if orders:
        app.simulation.orders = orders

    for order in app.run():
        click.echo(summarize(order))

    for attempt in app.attempts:
        outcome = "WON" if attempt.won else attempt.error or "PENDING"
        click.echo(
            f"  {attempt.order_id} {attempt.resolver_id} delay_ms={attempt.delay_ms} {outcome}"
        )


if __name__ == "__main__":
    cli()
