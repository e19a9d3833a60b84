"""Status command: Show recent backup runs."""

import argparse
import logging

from ..transaction import get_transaction_stats, read_transaction_log
from .common import load_cli_config

logger = logging.getLogger(__name__)


def execute_status(args: argparse.Namespace) -> int:
    """Execute the status command.

    Shows the most recent transaction-log records and totals.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code
    """
    config = load_cli_config(args)
    if config is None:
        return 1

    log_path = config.global_config.transaction_log
    if not log_path:
        print("No transaction_log configured; nothing to show.")
        return 1

    limit = getattr(args, "limit", 10)
    records = read_transaction_log(log_path, limit=limit)
    stats = get_transaction_stats(log_path)

    print("lvsnap-backup Status")
    print("=" * 60)
    print(f"Transaction log: {log_path}")
    print(
        f"Backups: {stats['backups']['completed']} completed, "
        f"{stats['backups']['failed']} failed"
    )
    print(f"Archived: {_format_size(stats['total_bytes_archived'])}")
    print("")

    if not records:
        print("No runs recorded yet.")
        return 0

    for record in records:
        line = (
            f"{record.get('timestamp', '?')}  {record.get('action', '?'):<8} "
            f"{record.get('status', '?'):<10} {record.get('target', '')}"
        )
        if record.get("destination"):
            line += f"  -> {record['destination']}"
        print(line)
        if record.get("error"):
            print(f"    error: {record['error'].splitlines()[0]}")

    return 0


def _format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} TiB"
