import asyncio
import json
import sys

import click

from . import __version__
from .client import StrestClient
from .exceptions import NotConnectedError, TransportUnsupportedError
from .telemetry.logger import setup_logging


def get_version():
    return __version__


def parse_params(pairs):
    params = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint="--param")
        params[key] = value
    return params


async def run_request(url, uri, method="GET", params=None, timeout=30.0):
    """Send one request and echo its response frames; returns an exit code."""
    done = asyncio.get_running_loop().create_future()

    def on_message(response):
        click.echo(response.raw)

    def on_complete(txn_id):
        if not done.done():
            done.set_result(0)

    def on_error(error):
        click.echo(f"error: {error.message}", err=True)
        if not done.done():
            done.set_result(1)

    client = StrestClient(url, keepalive=False)
    try:
        async with client:
            client.send_request(
                {"uri": uri, "method": method, "params": params or None},
                on_message=on_message,
                on_complete=on_complete,
                on_error=on_error,
            )
            return await asyncio.wait_for(done, timeout)
    except (NotConnectedError, TransportUnsupportedError) as e:
        click.echo(f"error: {e.message}", err=True)
        return 1
    except TimeoutError:
        click.echo(f"error: no complete response within {timeout}s", err=True)
        return 1


@click.group()
def cli():
    pass


@cli.command()
@click.option("--format", default="text", type=click.Choice(["text", "json"]))
def version(format):
    if format == "json":
        click.echo(json.dumps({"version": get_version()}))
    else:
        click.echo(f"v{get_version()}")


@cli.command()
@click.argument("url")
@click.argument("uri")
@click.option("--method", default="GET", show_default=True)
@click.option("--param", "params", multiple=True, help="Request parameter as key=value")
@click.option("--timeout", default=30.0, type=float, show_default=True)
@click.option("--log-level", default="WARNING", show_default=True)
def request(url, uri, method, params, timeout, log_level):
    """Send one request to URL and print every response frame."""
    setup_logging(level=log_level, format="console")
    exit_code = asyncio.run(run_request(url, uri, method, parse_params(params), timeout))
    sys.exit(exit_code)


def main():
    cli()


if __name__ == "__main__":
    main()
