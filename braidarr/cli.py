"""
Command Line Interface for Braidarr
Connection checks, torrent listings and Plex sign-in from the shell.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .config import ApiKeyCredential, BasicCredential, ProviderConnectionConfig, get_settings
from .download_client import TorrentFilter
from .exceptions import BraidarrError, PinSessionError
from .logging_config import setup_logging
from .pin_auth import PinAuthSessionManager
from .registry import ARR_KINDS, DOWNLOAD_CLIENT_KINDS, PROVIDERS, create_client, test_connection
from .torrent_state import CanonicalTorrentState

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="braidarr",
        description="Braidarr - resilient clients for Arr services, torrent clients and Plex",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Check a Sonarr instance
  braidarr test sonarr --url http://localhost:8989 --api-key abcdef0123456789

  # Check qBittorrent
  braidarr test qbittorrent --url http://localhost:8080 --username admin --password secret

  # List downloading torrents in Transmission
  braidarr torrents transmission --url http://localhost:9091 --state downloading

  # Sign in to Plex with a PIN
  braidarr plex-login

Environment Variables:
  BRAIDARR_LOG_LEVEL        - Logging level (default: INFO)
  BRAIDARR_LOG_FILE         - Log file path (enables rotation)
  BRAIDARR_LOG_FORMAT       - Log format: text or json (default: text)
  BRAIDARR_RETRY_*          - Default retry policy
  BRAIDARR_PIN_*            - Plex PIN session limits
        """,
    )
    parser.add_argument("--log-level", "-l", help="Log level (overrides BRAIDARR_LOG_LEVEL)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Test command
    test_parser = subparsers.add_parser("test", help="Test the connection to a provider")
    test_parser.add_argument("kind", choices=sorted(PROVIDERS), help="Provider kind")
    _add_connection_args(test_parser)

    # Torrents command
    torrents_parser = subparsers.add_parser("torrents", help="List torrents in a download client")
    torrents_parser.add_argument("kind", choices=DOWNLOAD_CLIENT_KINDS, help="Download client kind")
    _add_connection_args(torrents_parser)
    torrents_parser.add_argument(
        "--state", "-s", action="append",
        choices=[state.value for state in CanonicalTorrentState],
        help="Only show torrents in this state (repeatable)",
    )
    torrents_parser.add_argument("--category", "-c", help="Only show this category")

    # Plex login command
    plex_parser = subparsers.add_parser("plex-login", help="Sign in to Plex with a PIN")
    plex_parser.add_argument(
        "--interval", type=float, default=2.0, help="Seconds between status checks"
    )

    return parser


def _add_connection_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--url", "-u", required=True, help="Base URL of the service")
    parser.add_argument("--api-key", "-k", help="API key (Arr services)")
    parser.add_argument("--username", help="Username (download clients)")
    parser.add_argument("--password", default="", help="Password (download clients)")
    parser.add_argument("--timeout", type=float, default=None, help="Request timeout in seconds")
    parser.add_argument("--name", help="Instance name used in logs")


def config_from_args(args) -> ProviderConnectionConfig:
    """Build a connection record from command line arguments."""
    credential = None
    if args.kind in ARR_KINDS and args.api_key:
        credential = ApiKeyCredential(args.api_key)
    elif args.kind in DOWNLOAD_CLIENT_KINDS and args.username:
        credential = BasicCredential(args.username, args.password)
    settings = get_settings()
    return ProviderConnectionConfig(
        base_url=args.url,
        credential=credential,
        timeout=args.timeout or settings.request_timeout,
        name=args.name,
    )


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(
        log_level=args.log_level or settings.log_level,
        log_file=settings.log_file,
        log_format=settings.log_format,
        max_file_size_mb=settings.log_max_size_mb,
        backup_count=settings.log_backup_count,
    )

    if args.command == "test":
        asyncio.run(run_test(args))
    elif args.command == "torrents":
        asyncio.run(run_torrents(args))
    elif args.command == "plex-login":
        asyncio.run(run_plex_login(args))
    else:
        parser.print_help()
        sys.exit(1)


async def run_test(args):
    """Test one provider connection."""
    try:
        config = config_from_args(args)
    except BraidarrError as e:
        print(f"  Invalid configuration: {e}")
        sys.exit(1)

    result = await test_connection(args.kind, config, default_policy=get_settings().retry_policy())
    if not result.connected:
        print(f"  Connection failed: {result.error}")
        sys.exit(1)

    print(f"  Connected to {args.kind} at {config.base_url}")
    if result.version:
        print(f"  Version: {result.version}")
    for key, value in result.details.items():
        print(f"  {key}: {value}")


async def run_torrents(args):
    """List torrents in a download client."""
    try:
        config = config_from_args(args)
        client = create_client(args.kind, config, default_policy=get_settings().retry_policy())
    except BraidarrError as e:
        print(f"  Invalid configuration: {e}")
        sys.exit(1)

    states = [CanonicalTorrentState(value) for value in args.state] if args.state else None
    try:
        torrents = await client.get_torrents(TorrentFilter(states=states, category=args.category))
    except BraidarrError as e:
        print(f"  Could not list torrents: {e}")
        sys.exit(1)
    finally:
        await client.close()

    if not torrents:
        print("No torrents found.")
        return

    print(f"\nFound {len(torrents)} torrent(s):\n")
    print(f"{'Name':<40} {'Size':>10} {'Progress':>8} {'State':<18} {'Category':<15}")
    print("-" * 95)

    for t in torrents:
        size_str = f"{t.size / 1e6:.1f}MB" if t.size < 1e9 else f"{t.size / 1e9:.2f}GB"
        progress_str = f"{t.progress * 100:.1f}%"
        name = t.name[:37] + "..." if len(t.name) > 40 else t.name
        print(f"{name:<40} {size_str:>10} {progress_str:>8} {t.state.value:<18} {t.category or '-':<15}")


async def run_plex_login(args):
    """Run the PIN handshake until the user approves or the session ends."""
    manager = PinAuthSessionManager.from_settings(get_settings())

    try:
        state = await manager.initiate()
    except BraidarrError as e:
        print(f"Could not start Plex sign-in: {e}")
        sys.exit(1)

    print("\n=== Plex Sign-in ===\n")
    print(f"Please visit: {state.link_url}")
    print(f"Enter this code: {state.pin_code}")
    print()

    try:
        while True:
            try:
                result = await manager.poll(state.client_identifier, state.pin_id)
            except PinSessionError as e:
                print(f"Sign-in ended: {e.message}")
                sys.exit(1)

            if result.authenticated:
                username = (result.user or {}).get("username") or (result.user or {}).get("title")
                print(f"  Successfully authenticated as: {username or 'unknown'}")
                print("\nYour token (save this for later use):")
                print("-" * 50)
                print(result.token)
                print("-" * 50)
                return
            if result.error:
                logger.warning(f"Plex status check failed, retrying: {result.error}")
            await asyncio.sleep(args.interval)
    finally:
        await manager.stop()


if __name__ == "__main__":
    main()
