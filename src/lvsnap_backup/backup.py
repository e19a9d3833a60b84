# pyright: standard

"""lvsnap-backup: lvsnap_backup/backup.py
Run one backup: lock, snapshot, unlock, package, and always tear down.

The snapshot window is kept short: the service is paused (lock URL) only
until the copy-on-write snapshot is mounted, then resumed (unlock URL) while
the much slower archiving reads from the frozen snapshot.
"""

import logging
import time
from pathlib import Path
from typing import Optional

from . import handshake, package, snapshot
from .__util__ import BackupError, log_heading
from .compress import CompressorLike
from .target import BackupTarget
from .transaction import TransactionContext

logger = logging.getLogger(__name__)


def perform_backup(
    target: BackupTarget, compressor: Optional[CompressorLike] = None
) -> Path:
    """Back up ``target`` and return the path of the written archive.

    Teardown runs exactly once on every exit path. If the run fails and
    teardown fails too, the original error is raised and the teardown error
    is attached to it.

    The lock request is inside the guarded region, so a refused lock is still
    followed by teardown. Nothing has been created at that point and the only
    storage command issued is the tolerated ``lvremove -f`` of a possibly
    stale snapshot; no snapshot is ever created after a refused lock.

    Note: when snapshot creation fails after a successful lock, the service
    is deliberately left paused; resuming it would hide that no consistent
    copy was taken. It has to be resumed by hand.
    """
    started = time.localtime()
    handle = snapshot.snapshot_handle(target)
    logger.info(log_heading(f"{target.name}: started at {time.ctime()}"))

    with TransactionContext(
        "backup",
        target=target.name,
        source=str(target.source_dir),
        snapshot=handle.device,
    ) as tx:
        phase = "lock"
        try:
            if target.lock_url:
                handshake.lock(target.lock_url, target.name)

            phase = "snapshot"
            handle = snapshot.create_and_mount(target)

            if target.unlock_url:
                phase = "unlock"
                handshake.unlock(target.unlock_url, target.name)

            phase = "package"
            outfile = package.package(target, handle, compressor, now=started)
        except BaseException as exc:
            tx.add_detail("phase", getattr(exc, "phase", None) or phase)
            logger.error("%s failed during %s: %s", target.name, phase, exc)
            _teardown_after_failure(target, exc)
            raise

        tx.set_destination(outfile)
        try:
            tx.set_size(outfile.stat().st_size)
        except OSError as e:
            logger.debug("Could not stat %s: %s", outfile, e)

        try:
            snapshot.teardown(target)
        except BaseException:
            tx.add_detail("phase", "teardown")
            raise

    logger.info(log_heading(f"{target.name}: finished at {time.ctime()}"))
    return outfile


def _teardown_after_failure(target: BackupTarget, exc: BaseException) -> None:
    """Tear down while unwinding; keep ``exc`` as the error the caller sees."""
    try:
        snapshot.teardown(target)
    except Exception as teardown_exc:
        logger.error("%s teardown also failed: %s", target.name, teardown_exc)
        exc.add_note(f"Teardown also failed: {teardown_exc}")
        if isinstance(exc, BackupError):
            exc.teardown_error = teardown_exc
