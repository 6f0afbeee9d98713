"""Linear agent CLI entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import httpx
from dotenv import load_dotenv

from linear_agent.config import load_config
from linear_agent.errors import LinearAPIError
from linear_agent.linear_client import LinearClient


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


async def _check_token(config_path: Path | None) -> int:
    """Report which Linear identity the access token acts as."""
    config = load_config(config_path)
    if not config.access_token:
        print("LINEAR_ACCESS_TOKEN not set", file=sys.stderr)
        return 1

    client = LinearClient(
        access_token=config.access_token,
        api_url=config.api_url,
        timeout=config.request_timeout,
    )
    await client.start()
    try:
        data = await client.viewer()
    except httpx.HTTPStatusError as e:
        print(f"HTTP {e.response.status_code}: {e.response.text}", file=sys.stderr)
        return 1
    except httpx.HTTPError as e:
        print(f"Request failed: {e}", file=sys.stderr)
        return 1
    except LinearAPIError as e:
        print(f"GraphQL errors: {e}", file=sys.stderr)
        return 1
    finally:
        await client.close()

    viewer = data.get("viewer") or {}
    organization = data.get("organization") or {}
    print(
        f'Token valid — acting as "{viewer.get("name")}" ({viewer.get("id")}) '
        f'in "{organization.get("name")}"'
    )
    print(f"  Active: {viewer.get('active')}")
    print(f"  Token prefix: {config.access_token[:12]}...")
    return 0


def main():
    # Shared by every subcommand
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a YAML config file (default: $LINEAR_AGENT_CONFIG or env vars only)",
    )
    common.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    parser = argparse.ArgumentParser(
        prog="linear-agent",
        description="Linear agent — runs Claude on Linear agent sessions",
    )

    subparsers = parser.add_subparsers(dest="command")

    # linear-agent serve
    serve_parser = subparsers.add_parser("serve", parents=[common], help="Start the webhook server")
    serve_parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host to bind to (default: 0.0.0.0)",
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=3000,
        help="Port to bind to (default: 3000)",
    )

    # linear-agent check-token
    subparsers.add_parser(
        "check-token",
        parents=[common],
        help="Check which identity LINEAR_ACCESS_TOKEN acts as",
    )

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    _configure_logging(args.log_level)
    load_dotenv()

    if args.command == "check-token":
        sys.exit(asyncio.run(_check_token(args.config)))

    # serve
    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    import uvicorn

    from linear_agent.server import create_app

    app = create_app(config)
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())


if __name__ == "__main__":
    main()
