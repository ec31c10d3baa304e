"""
Command-line interface for vodguard.
"""

from __future__ import annotations

import asyncio
import os

import click

from vodguard.common.config import Config
from vodguard.server import start_server
from vodguard.server.keygen import KeyGenerator
from vodguard.server.persistence import RedisSessionStore, create_redis_client
from vodguard.server.session_manager import SessionLifecycleManager


@click.group()
def cli() -> None:
    """vodguard protected video access server"""


@cli.command()
@click.option(
    "--keys-dir",
    default=None,
    help="Directory to save keys (default: ./vodguard/keys)",
)
@click.option(
    "--force",
    is_flag=True,
    help="Replace existing keys (invalidates every issued token)",
)
def keygen(keys_dir: str | None, force: bool) -> None:  # noqa: FBT001
    """Generate Ed25519 token signing keys"""
    if keys_dir:
        os.environ["VODGUARD_KEYS_DIR"] = keys_dir

    generator = KeyGenerator()
    try:
        generator.generate_keys(overwrite=force)
    except FileExistsError as err:
        msg = f"{err}. Pass --force to replace them."
        raise click.ClickException(msg) from err
    click.echo("Keys generated and saved")


@cli.command()
@click.option(
    "--keys-dir",
    default=None,
    help="Directory to load keys from (default: ./vodguard/keys)",
)
@click.option(
    "--host",
    default=None,
    help="Host to bind server to (default: from VODGUARD_SERVER_HOST env or 127.0.0.1)",
)
@click.option(
    "--port",
    default=None,
    type=int,
    help="Port to bind server to (default: from VODGUARD_SERVER_PORT env or 8000)",
)
@click.option(
    "--redis-url",
    default=None,
    help="Shared session store (default: from VODGUARD_REDIS_URL env, else memory)",
)
@click.option(
    "--enrollments",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="JSON or CSV of user/batch enrollments (default: VODGUARD_ENROLLMENTS_FILE env)",
)
def serve(
    keys_dir: str | None,
    host: str | None,
    port: int | None,
    redis_url: str | None,
    enrollments: str | None,
) -> None:
    """Start the video access server"""
    # Set environment variables before building the config
    if keys_dir:
        os.environ["VODGUARD_KEYS_DIR"] = keys_dir
    if host:
        os.environ["VODGUARD_SERVER_HOST"] = host
    if port:
        os.environ["VODGUARD_SERVER_PORT"] = str(port)
    if redis_url:
        os.environ["VODGUARD_REDIS_URL"] = redis_url
    if enrollments:
        os.environ["VODGUARD_ENROLLMENTS_FILE"] = enrollments

    start_server(Config())


async def _sweep_once(redis_url: str) -> int:
    client = create_redis_client(redis_url)
    try:
        manager = SessionLifecycleManager(RedisSessionStore(client))
        return await manager.sweep_expired()
    finally:
        await client.aclose()


@cli.command()
@click.option(
    "--redis-url",
    default=None,
    help="Shared session store (default: from VODGUARD_REDIS_URL env)",
)
def sweep(redis_url: str | None) -> None:
    """Expire timed-out sessions once and exit"""
    redis_url = redis_url or Config().REDIS_URL
    if not redis_url:
        msg = "A shared store is required: pass --redis-url or set VODGUARD_REDIS_URL."
        raise click.ClickException(msg)

    affected = asyncio.run(_sweep_once(redis_url))
    click.echo(f"Expired {affected} sessions")


if __name__ == "__main__":
    cli()
