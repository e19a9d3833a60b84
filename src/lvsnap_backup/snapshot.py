# pyright: standard

"""lvsnap-backup: lvsnap_backup/snapshot.py
Create, mount, unmount and remove the LVM copy-on-write snapshot.

Nothing here keeps state between calls: the device name and mount point are
derived from the BackupTarget every time, so teardown can run even when a
previous create never finished.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .__util__ import SnapshotPipelineError, TeardownError, privileged
from .pipeline import Pipeline, PipelineMode
from .target import BackupTarget

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotHandle:
    """Names derived from a BackupTarget."""

    device: str
    mount_path: Path

    @property
    def staging_dir(self) -> Path:
        """Working directory the mount point lives in."""
        return self.mount_path.parent


def snapshot_handle(target: BackupTarget) -> SnapshotHandle:
    """Derive the snapshot device and its temporary mount point."""
    vg_name = target.vg_name.rstrip("/")
    return SnapshotHandle(
        device=f"{vg_name}/{target.name}_snapshot",
        mount_path=target.dump_path / target.name,
    )


def snapshot_size(target: BackupTarget) -> int:
    """Megabytes to reserve for the snapshot: used space plus overhead."""
    pipeline = Pipeline(PipelineMode.CHAIN)
    pipeline << privileged(["du", "-m", "-s", target.source_dir], target.sudo)
    pipeline.run()

    if not pipeline.success:
        raise SnapshotPipelineError(
            f"{target.name} failed to measure '{target.source_dir}'",
            pipeline.error_messages(),
            target=target.name,
            phase="snapshot",
        )

    fields = pipeline.output.split()
    try:
        used_mb = int(fields[0])
    except (IndexError, ValueError) as e:
        raise SnapshotPipelineError(
            f"{target.name} could not parse du output: {pipeline.output!r}",
            target=target.name,
            phase="snapshot",
        ) from e

    size = max(used_mb, 0) + target.overhead_mb
    logger.debug(
        "%s uses %d MB, snapshot size %d MB", target.source_dir, used_mb, size
    )
    return max(size, 1)


def create_and_mount(target: BackupTarget) -> SnapshotHandle:
    """Snapshot ``target.lv_name`` and mount it at ``dump_path/name``.

    Any leftover snapshot from a crashed run is torn down first. On failure
    the device and mount point are in an undefined state; call teardown().
    """
    teardown(target)  # refresh

    handle = snapshot_handle(target)
    size = snapshot_size(target)

    pipeline = Pipeline(PipelineMode.CHAIN)
    pipeline << privileged(
        ["lvcreate", f"-L{size}M", "-s", "-n", handle.device, target.lv_name],
        target.sudo,
    )
    pipeline << privileged(["mkdir", "-p", handle.mount_path], target.sudo)
    pipeline << privileged(["mount", handle.device, handle.mount_path], target.sudo)
    pipeline.run()

    if not pipeline.success:
        raise SnapshotPipelineError(
            f"{target.name} failed to create snapshot at:\n'{handle.mount_path}'",
            pipeline.error_messages(),
            target=target.name,
            phase="snapshot",
        )

    logger.info(
        "%s created snapshot (%d MB) at:\n  '%s'", target.name, size, handle.mount_path
    )
    return handle


def teardown(target: BackupTarget) -> None:
    """Unmount and remove the snapshot; a missing snapshot is not an error."""
    handle = snapshot_handle(target)
    pipeline = Pipeline(PipelineMode.CHAIN)

    if handle.mount_path.exists():
        # A failed create can leave the directory without anything mounted on it
        if os.path.ismount(handle.mount_path):
            pipeline << privileged(["umount", handle.mount_path], target.sudo)
        pipeline << privileged(["rmdir", handle.mount_path], target.sudo)

    pipeline.add(privileged(["lvremove", "-f", handle.device], target.sudo), True)

    if handle.staging_dir.exists():
        pipeline.add(
            privileged(
                ["rmdir", "--ignore-fail-on-non-empty", handle.staging_dir],
                target.sudo,
            ),
            tolerate_failure=True,
        )

    pipeline.run()

    if not pipeline.success:
        raise TeardownError(
            f"{target.name} failed to remove snapshot at:\n'{handle.mount_path}'",
            pipeline.error_messages(),
            target=target.name,
            phase="teardown",
        )

    logger.info("%s removed snapshot at:\n  '%s'", target.name, handle.mount_path)
