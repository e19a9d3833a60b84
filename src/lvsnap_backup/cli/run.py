"""Run and cleanup commands: back up targets or remove leftover snapshots."""

import argparse
import logging
import time
from pathlib import Path

from filelock import FileLock, Timeout

from .. import __util__, snapshot
from ..backup import perform_backup
from ..compress import get_compressor
from ..config import Config, ConfigError, TargetConfig
from ..package import archive_path
from ..transaction import TransactionContext
from .common import load_cli_config

logger = logging.getLogger(__name__)


def _run_lock(dump_path: Path) -> FileLock:
    """Per-target lock so two invocations never race on the same snapshot."""
    lock_path = Path(f"{dump_path}.lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    return FileLock(lock_path, timeout=0)


def _select_targets(config: Config, names: list[str] | None) -> list[TargetConfig]:
    """Targets named on the command line, or every enabled target."""
    if not names:
        return config.get_enabled_targets()

    selected = []
    for name in names:
        target = config.get_target(name)
        if target is None:
            raise ConfigError(f"No target named '{name}' in configuration")
        selected.append(target)
    return selected


def execute_run(args: argparse.Namespace) -> int:
    """Execute the run command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    config = load_cli_config(args)
    if config is None:
        return 1

    try:
        targets = _select_targets(config, getattr(args, "target", None))
    except ConfigError as e:
        logger.error("%s", e)
        return 1

    if not targets:
        logger.error("No targets configured")
        return 1

    if getattr(args, "dry_run", False):
        return _dry_run(config, targets)

    logger.info(__util__.log_heading(f"Started at {time.ctime()}"))
    logger.info("Processing %d target(s)", len(targets))

    results = []
    for target_config in targets:
        try:
            results.append((target_config.name, _backup_target(config, target_config)))
        except Timeout:
            logger.error(
                "Target %s is already being backed up by another process",
                target_config.name,
            )
            results.append((target_config.name, False))

    logger.info(__util__.log_heading(f"Finished at {time.ctime()}"))

    success_count = sum(1 for _, success in results if success)
    fail_count = len(results) - success_count

    if fail_count > 0:
        logger.warning(
            "Completed with errors: %d succeeded, %d failed", success_count, fail_count
        )
        return 1
    else:
        logger.info("All %d target(s) completed successfully", success_count)
        return 0


def _backup_target(config: Config, target_config: TargetConfig) -> bool:
    """Back up one target; errors are logged and reported as False."""
    try:
        target = config.to_backup_target(target_config)
        method, level = config.get_compression(target_config)
        compressor = get_compressor(method, level)
    except (ConfigError, ValueError) as e:
        logger.error("Target %s: %s", target_config.name, e)
        return False

    try:
        with _run_lock(target.dump_path):
            outfile = perform_backup(target, compressor)
    except __util__.AbortError as e:
        logger.error("%s", e)
        for note in getattr(e, "__notes__", []):
            logger.error("%s", note)
        return False
    except OSError as e:
        logger.error("Target %s failed: %s", target.name, e)
        return False

    logger.info("Target %s archived to %s", target.name, outfile)
    return True


def _dry_run(config: Config, targets: list[TargetConfig]) -> int:
    """Show what would be done."""
    print("Dry run - no changes will be made")
    print("")

    for target_config in targets:
        try:
            target = config.to_backup_target(target_config)
            compressor = get_compressor(*config.get_compression(target_config))
        except (ConfigError, ValueError) as e:
            print(f"Target: {target_config.name}")
            print(f"  Invalid: {e}")
            continue

        handle = snapshot.snapshot_handle(target)
        print(f"Target: {target.name}")
        print(f"  Source: {target.source_dir} on {target.lv_name}")
        print(f"  Snapshot: {handle.device} (+{target.overhead_mb} MB)")
        print(f"  Mount: {handle.mount_path}")
        print(f"  Archive: {archive_path(target, compressor)}")
        if target.lock_url:
            print(f"  Lock: {target.lock_url}")
        if target.unlock_url:
            print(f"  Unlock: {target.unlock_url}")
        print(f"  Sudo: {'yes' if target.sudo else 'no'}")
        print("")

    return 0


def execute_cleanup(args: argparse.Namespace) -> int:
    """Execute the cleanup command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code
    """
    config = load_cli_config(args)
    if config is None:
        return 1

    try:
        targets = _select_targets(config, getattr(args, "target", None))
    except ConfigError as e:
        logger.error("%s", e)
        return 1

    failed = 0
    for target_config in targets:
        try:
            target = config.to_backup_target(target_config)
            with _run_lock(target.dump_path):
                with TransactionContext("cleanup", target=target.name):
                    snapshot.teardown(target)
        except Timeout:
            logger.error("Target %s is being backed up right now", target_config.name)
            failed += 1
        except (__util__.AbortError, ConfigError, OSError) as e:
            logger.error("%s", e)
            failed += 1

    return 1 if failed else 0
