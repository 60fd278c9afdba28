"""
Admin CLI for operating the escrow staging pipeline.

Usage:
    python -m escrow_staging.cli.admin_cli list-cursors [--tld <tld>]
    python -m escrow_staging.cli.admin_cli update-cursor --tld <tld> --type <type> --position <iso> [--force]
    python -m escrow_staging.cli.admin_cli generate --tld <tld> --watermark <iso> [--mode full|thin]
    python -m escrow_staging.cli.admin_cli decrypt --path <artifact> [--output <file>]
    python -m escrow_staging.cli.admin_cli generate-key
    python -m escrow_staging.cli.admin_cli init-schema
    python -m escrow_staging.cli.admin_cli list-uploads
"""

import argparse
import sys
from datetime import datetime, timezone

from escrow_staging.core.config import StagingConfig, load_config
from escrow_staging.core.errors import StagingError
from escrow_staging.core.models import CursorType, DepositMode
from escrow_staging.observability.logger import get_logger, setup_logger
from escrow_staging.staging.context import build_context
from escrow_staging.staging.encryption import FernetEncryptor, InvalidToken, generate_key
from escrow_staging.staging.manual import generate_deposit
from escrow_staging.staging.storage import LocalArtifactStorage
from escrow_staging.warehouse.connection import DatabaseConnectionPool
from escrow_staging.warehouse.cursors import PostgresCursorStore
from escrow_staging.warehouse.schema_mgmt import SchemaManager
from escrow_staging.warehouse.upload_queue import PostgresUploadQueue

logger = get_logger(__name__)


def parse_instant(value: str) -> datetime:
    """Parse an ISO-8601 instant; naive values are taken as UTC."""
    try:
        instant = datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO-8601 instant: {value}")
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def format_timestamp(ts: datetime | None) -> str:
    """Format timestamp for display."""
    return ts.strftime("%Y-%m-%d %H:%M:%S") if ts else "N/A"


def open_pool(config: StagingConfig) -> DatabaseConnectionPool:
    pool = DatabaseConnectionPool(**config.database.pool_kwargs())
    pool.open()
    return pool


def list_cursors_command(args, config: StagingConfig):
    """
    Display cursor positions.

    Args:
        args: Command line arguments
        config: Staging configuration
    """
    pool = open_pool(config)
    try:
        store = PostgresCursorStore(pool, epoch=config.cursor_epoch)
        cursors = store.list_cursors(args.tld or None)

        if not cursors:
            print("\nNo cursors have been written yet.")
            return

        print(f"\n{'=' * 80}")
        print("ESCROW CURSORS")
        print(f"{'=' * 80}\n")
        print(f"{'TLD':<15} {'Type':<13} {'Position':<27} {'Updated'}")
        print(f"{'-' * 80}")

        for cursor in cursors:
            print(f"{cursor.tld:<15} {cursor.cursor_type.value:<13} "
                  f"{cursor.position.isoformat():<27} {format_timestamp(cursor.updated_at)}")

        print(f"\n{'=' * 80}\n")

    finally:
        pool.close()


def update_cursor_command(args, config: StagingConfig):
    """
    Overwrite a cursor position.

    Moving a cursor backwards makes the pipeline re-stage deposits from that
    position and requires ``--force``.
    """
    pool = open_pool(config)
    try:
        store = PostgresCursorStore(pool, epoch=config.cursor_epoch)
        previous = store.get(args.tld, args.type)
        cursor = store.set(args.tld, args.type, args.position, force=args.force)

        logger.warning(
            "Cursor updated by operator",
            extra={"tld": args.tld, "cursor_type": args.type.value,
                   "from": previous.isoformat(), "to": cursor.position.isoformat()},
        )
        print(f"\n{args.tld} {args.type.value}: {previous.isoformat()} -> {cursor.position.isoformat()}\n")

    finally:
        pool.close()


def list_uploads_command(args, config: StagingConfig):
    """
    Display upload tasks enqueued by completed deposits.
    """
    pool = open_pool(config)
    try:
        tasks = PostgresUploadQueue(pool).pending_tasks()

        print(f"\n{'Type':<12} {'TLD':<15} {'Mode':<6} {'Watermark'}")
        print(f"{'-' * 60}")
        for task in tasks:
            print(f"{task.task_type:<12} {task.tld:<15} {task.mode.value:<6} {task.watermark.isoformat()}")
        print(f"\nTotal: {len(tasks)} task(s)\n")

    finally:
        pool.close()


def init_schema_command(args, config: StagingConfig):
    """Create the staging tables if they do not exist."""
    pool = open_pool(config)
    try:
        SchemaManager(pool).create_tables()
        print("Staging tables are in place.")
    finally:
        pool.close()


def generate_command(args, config: StagingConfig):
    """
    Stage a single deposit without touching its cursor.
    """
    if args.tld not in config.tlds:
        print(f"\nError: TLD {args.tld} does not have escrow enabled")
        sys.exit(1)

    context = build_context(config)
    try:
        artifact = generate_deposit(context, args.tld, args.mode, args.watermark)

        print(f"\n{'=' * 60}")
        print(f"DEPOSIT {artifact.key}")
        print(f"{'=' * 60}")
        print(f"Deposit: {artifact.deposit_path}")
        print(f"Report:  {artifact.report_path}")
        print(f"Size:    {artifact.deposit_size} bytes\n")
        for kind, count in sorted(artifact.fragment_counts.items()):
            print(f"  {kind:<12} {count:>8}")
        print(f"\n{'=' * 60}\n")

    finally:
        context.close()


def decrypt_command(args, config: StagingConfig):
    """
    Decrypt a staged artifact.
    """
    storage = LocalArtifactStorage(config.artifact_root)
    encryptor = FernetEncryptor(config.encryption_key)

    try:
        plaintext = encryptor.decrypt(storage.read(args.path))
    except InvalidToken:
        print(f"\nError: {args.path} was not encrypted with the configured key")
        sys.exit(1)

    if args.output:
        with open(args.output, "wb") as f:
            f.write(plaintext)
        print(f"Wrote {len(plaintext)} bytes to {args.output}")
    else:
        sys.stdout.write(plaintext.decode("utf-8"))


def generate_key_command(args):
    """Print a fresh artifact encryption key."""
    print(generate_key())


def main():
    """Main entry point for admin CLI."""
    parser = argparse.ArgumentParser(
        description="Admin CLI for the escrow staging pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        "--config",
        default="config/staging.yaml",
        help="Path to staging configuration YAML (default: config/staging.yaml)"
    )
    parser.add_argument(
        "--env-file",
        help="Optional .env file with DB_* and ESCROW_* overrides"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # list-cursors command
    list_parser = subparsers.add_parser(
        "list-cursors",
        help="Show cursor positions"
    )
    list_parser.add_argument(
        "--tld",
        action="append",
        help="Only show this TLD (repeatable)"
    )

    # update-cursor command
    update_parser = subparsers.add_parser(
        "update-cursor",
        help="Overwrite a cursor position"
    )
    update_parser.add_argument("--tld", required=True, help="TLD of the cursor")
    update_parser.add_argument(
        "--type",
        type=CursorType,
        choices=list(CursorType),
        metavar="{RDE_STAGING,BRDA}",
        default=CursorType.RDE_STAGING,
        help="Cursor type (default: RDE_STAGING)"
    )
    update_parser.add_argument(
        "--position",
        type=parse_instant,
        required=True,
        help="New position as an ISO-8601 instant"
    )
    update_parser.add_argument(
        "--force",
        action="store_true",
        help="Allow moving the cursor backwards"
    )

    # generate command
    generate_parser = subparsers.add_parser(
        "generate",
        help="Stage one deposit without advancing its cursor"
    )
    generate_parser.add_argument("--tld", required=True, help="TLD to generate")
    generate_parser.add_argument(
        "--watermark",
        type=parse_instant,
        required=True,
        help="Deposit watermark as an ISO-8601 instant"
    )
    generate_parser.add_argument(
        "--mode",
        type=lambda v: DepositMode(v.upper()),
        choices=list(DepositMode),
        metavar="{full,thin}",
        default=DepositMode.FULL,
        help="Deposit mode: full or thin (default: full)"
    )

    # decrypt command
    decrypt_parser = subparsers.add_parser(
        "decrypt",
        help="Decrypt a staged deposit or report"
    )
    decrypt_parser.add_argument(
        "--path",
        required=True,
        help="Artifact path relative to the artifact root"
    )
    decrypt_parser.add_argument(
        "--output",
        help="Write plaintext here instead of stdout"
    )

    subparsers.add_parser("generate-key", help="Print a new encryption key")
    subparsers.add_parser("init-schema", help="Create the staging tables")
    subparsers.add_parser("list-uploads", help="Show enqueued upload tasks")

    args = parser.parse_args()
    setup_logger()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "generate-key":
        generate_key_command(args)
        return

    commands = {
        "list-cursors": list_cursors_command,
        "update-cursor": update_cursor_command,
        "generate": generate_command,
        "decrypt": decrypt_command,
        "init-schema": init_schema_command,
        "list-uploads": list_uploads_command,
    }

    try:
        config = load_config(args.config, env_file=args.env_file)
        commands[args.command](args, config)
    except StagingError as e:
        logger.error(f"Error running {args.command}: {e}", exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
