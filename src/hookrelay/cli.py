"""hookrelay CLI - run the relay and exercise it with signed requests."""

import asyncio
import functools
import sys
import time
from collections.abc import Callable, Coroutine
from pathlib import Path
from typing import Any, ParamSpec, TypeVar

import aiohttp
import click
from rich.console import Console

from hookrelay.common.hmac import sign, verify
from hookrelay.common.settings import get_settings

console = Console()

P = ParamSpec("P")
R = TypeVar("R")


def async_command(f: Callable[P, Coroutine[Any, Any, R]]) -> Callable[P, R]:
    """Decorator to run async commands."""

    @functools.wraps(f)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        return asyncio.run(f(*args, **kwargs))

    return wrapper


def _resolve_secret(secret: str | None) -> bytes:
    if secret:
        return secret.encode("utf-8")
    configured = get_settings().signing_secret_bytes
    if not configured:
        console.print("[red]No signing secret: pass --secret or set HOOKRELAY_SIGNING_SECRET[/red]")
        sys.exit(1)
    return configured


def _read_body(path: str) -> bytes:
    body_path = Path(path).expanduser()
    if not body_path.exists():
        console.print(f"[red]Body file not found: {body_path}[/red]")
        sys.exit(1)
    # Signed as-is; never re-serialize
    return body_path.read_bytes()


@click.group()
def cli() -> None:
    """hookrelay - Slack webhook authentication gateway."""


@cli.command("serve")
def serve() -> None:
    """Run the relay server (configured from HOOKRELAY_* environment)."""
    from hookrelay.relay.main import main

    main()


@cli.command("sign")
@click.argument("body_file", type=click.Path(dir_okay=False))
@click.option("--secret", envvar="HOOKRELAY_SIGNING_SECRET", help="Signing secret")
@click.option("--timestamp", help="Request timestamp (defaults to now)")
@click.option("--check", help="Verify this signature instead of printing one")
def sign_body(body_file: str, secret: str | None, timestamp: str | None, check: str | None) -> None:
    """Compute the v0 signature of BODY_FILE."""
    key = _resolve_secret(secret)
    body = _read_body(body_file)
    timestamp = timestamp or str(int(time.time()))

    if check is not None:
        if verify(key, timestamp, body, check):
            console.print("[green]Signature valid[/green]")
            return
        console.print("[red]Signature INVALID[/red]")
        sys.exit(1)

    console.print(f"timestamp: {timestamp}")
    console.print(f"signature: {sign(key, timestamp, body)}")


@cli.command("send")
@click.argument("body_file", type=click.Path(dir_okay=False))
@click.option("--url", default="http://localhost:8080/slack/events", help="Relay endpoint URL")
@click.option("--secret", envvar="HOOKRELAY_SIGNING_SECRET", help="Signing secret")
@click.option("--timestamp", help="Request timestamp (defaults to now)")
@click.option("--bad-signature", is_flag=True, help="Send a deliberately wrong signature")
@async_command
async def send(
    body_file: str,
    url: str,
    secret: str | None,
    timestamp: str | None,
    bad_signature: bool,
) -> None:
    """POST BODY_FILE to a running relay with Slack signing headers."""
    settings = get_settings()
    key = _resolve_secret(secret)
    body = _read_body(body_file)
    timestamp = timestamp or str(int(time.time()))

    signature = sign(key, timestamp, body)
    if bad_signature:
        signature = sign(key + b"-wrong", timestamp, body)

    headers = {
        "Content-Type": "application/json",
        settings.timestamp_header: timestamp,
        settings.signature_header: signature,
    }

    async with aiohttp.ClientSession() as session:
        try:
            async with session.post(url, data=body, headers=headers) as response:
                status = response.status
        except aiohttp.ClientError as exc:
            console.print(f"[red]Error: {exc}[/red]")
            sys.exit(1)

    color = "green" if status == 200 else "red"
    console.print(f"[{color}]{status}[/{color}] {url}")
    if status != 200:
        sys.exit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
