"""
Command line entry point for Telegram album sync.
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from telegram_album_sync import __version__
from telegram_album_sync.config import SyncConfig
from telegram_album_sync.exceptions import ConfigurationError, SyncError
from telegram_album_sync.library.photo_library import PhotoLibrary
from telegram_album_sync.orchestrator import SyncOrchestrator
from telegram_album_sync.utils.ledger import ResetScope
from telegram_album_sync.utils.logging_config import album_log_file, setup_logging

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = 'config.yaml'

console = Console()


def load_config(config_path: Optional[str]) -> SyncConfig:
    """
    Load configuration from a YAML file, or from the environment alone.

    An explicitly given file must exist. Without one, ``config.yaml`` in the
    working directory is used when present.
    """
    if config_path:
        if not Path(config_path).exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")
        return SyncConfig.from_yaml(config_path)
    if Path(DEFAULT_CONFIG_FILE).exists():
        return SyncConfig.from_yaml(DEFAULT_CONFIG_FILE)
    return SyncConfig.from_env()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='telegram-album-sync',
        description='Upload photo and video albums to a Telegram chat in chronological order'
    )
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help=f'Path to configuration file (default: {DEFAULT_CONFIG_FILE} if present, else environment)'
    )
    parser.add_argument(
        '--log-level',
        type=str,
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Override the configured logging level'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    sync = subparsers.add_parser('sync', help='Convert, order and upload one album directory')
    sync.add_argument('album_dir', type=Path, help='Album directory (its name is the album name)')
    sync.add_argument(
        '--test',
        action='store_true',
        help='Use separate test-mode state and upload with the notification bot'
    )
    sync.add_argument(
        '--reset',
        choices=[scope.value for scope in ResetScope],
        default=ResetScope.NONE.value,
        help='Clear state before running: uploads (sent/failed of this mode) or all'
    )
    sync.add_argument(
        '--retry-failed',
        action='store_true',
        help='Only upload files currently recorded as failed'
    )
    sync.add_argument(
        '--repair-conversions',
        action='store_true',
        help='Convert again any recorded conversion whose JPEG is missing'
    )

    subparsers.add_parser('albums', help='List albums in the mounted media library')

    copy = subparsers.add_parser('copy', help='Copy an album out of the mounted media library')
    copy.add_argument('album_name', help='Album title (case-insensitive substring match)')
    copy.add_argument('dest_root', type=Path, help='Destination root; files go to <dest_root>/<album_name>')
    copy.add_argument('--exact', action='store_true', help='Match the whole album title')

    return parser


def run_sync(config: SyncConfig, args: argparse.Namespace) -> int:
    orchestrator = SyncOrchestrator(config, args.album_dir, test_mode=args.test)
    result = orchestrator.run(
        reset=ResetScope(args.reset),
        retry_failed=args.retry_failed,
        repair_conversions=args.repair_conversions,
    )
    if result.success:
        logger.info(f"🎉 Sync of '{result.album_name}' complete")
        return 0
    logger.warning(
        f"⚠️  Sync of '{result.album_name}' finished with failures; "
        f"run again to retry them"
    )
    return 1


def run_albums(config: SyncConfig) -> int:
    library = PhotoLibrary(Path(config.library.mount_path), config.library.database_path)
    albums = library.list_albums()

    table = Table(title=f"Albums in {library.db_path}", show_header=True, header_style="bold magenta")
    table.add_column("ID", justify="right")
    table.add_column("Album", style="cyan")
    table.add_column("Photos", justify="right", style="green")
    table.add_column("Videos", justify="right", style="green")
    for album in albums:
        table.add_row(str(album.album_id), album.title, str(album.photo_count), str(album.video_count))

    console.print(table)
    return 0


def run_copy(config: SyncConfig, args: argparse.Namespace) -> int:
    library = PhotoLibrary(Path(config.library.mount_path), config.library.database_path)
    result = library.copy_album(args.album_name, args.dest_root, exact=args.exact,
                                show_progress=config.processing.show_progress)
    if not result.ok:
        logger.warning(
            f"⚠️  {len(result.missing)} files missing and {len(result.failed)} failed to copy"
        )
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        setup_logging(level=args.log_level or 'INFO', separate_error_log=False)
        logger.error(f"❌ {e}")
        return 2

    level = args.log_level or config.logging.level
    if args.command == 'sync':
        log_file = album_log_file(config.logging.log_dir, Path(args.album_dir).absolute().name, args.test)
    else:
        log_file = Path(config.logging.log_dir) / 'telegram_album_sync.log'
    setup_logging(log_file=str(log_file), level=level, enable_json=config.logging.json)

    try:
        if args.command == 'sync':
            return run_sync(config, args)
        if args.command == 'albums':
            return run_albums(config)
        return run_copy(config, args)
    except ConfigurationError as e:
        logger.error(f"❌ Configuration error: {e}")
        return 2
    except SyncError as e:
        logger.error(f"❌ {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
