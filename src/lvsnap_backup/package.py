# pyright: standard

"""lvsnap-backup: lvsnap_backup/package.py
Stream the mounted snapshot through tar and the compressor into the archive.
"""

import logging
import os
import shutil
import time
from pathlib import Path
from typing import Optional

from . import __util__
from .__util__ import PackagingPipelineError, privileged
from .compress import CompressorLike
from .pipeline import Pipeline, PipelineMode
from .snapshot import SnapshotHandle
from .target import BackupTarget

logger = logging.getLogger(__name__)


def archive_path(
    target: BackupTarget,
    compressor: Optional[CompressorLike] = None,
    now: Optional[time.struct_time] = None,
) -> Path:
    """Name of the archive for a run started at ``now``.

    Minute resolution: two runs of the same target within one minute share
    the file name.
    """
    name = f"{target.dump_path}-{__util__.date_to_str(now)}.tar"
    if compressor is not None:
        for _, ext in compressor.compress_with():
            name += ext
    return Path(name)


def package(
    target: BackupTarget,
    handle: SnapshotHandle,
    compressor: Optional[CompressorLike] = None,
    now: Optional[time.struct_time] = None,
) -> Path:
    """Write the snapshot contents to a timestamped archive and return its path.

    On success the working directory is removed. On failure the partial
    archive is left for inspection and PackagingPipelineError is raised.
    """
    base_dir = handle.staging_dir
    data_dir = handle.mount_path.name
    outfile = archive_path(target, compressor, now)

    pipeline = Pipeline(PipelineMode.PIPE)
    pipeline << privileged(["tar", "-cPf", "-", "-C", base_dir, data_dir], target.sudo)
    if compressor is not None:
        for command, _ in compressor.compress_with():
            pipeline << command

    logger.debug("%s packaging %s into %s", target.name, handle.mount_path, outfile)
    try:
        with open(outfile, "wb") as out:
            pipeline.run(stdout=out)
    except OSError as e:
        raise PackagingPipelineError(
            f"{target.name} failed to create compressed dump package:\n'{outfile}'\n{e}",
            outfile,
            target=target.name,
        ) from e

    if not pipeline.success:
        raise PackagingPipelineError(
            f"{target.name} failed to create compressed dump package:\n'{outfile}'",
            outfile,
            pipeline.error_messages(),
            target=target.name,
        )

    logger.info(
        "%s completed compressing and packaging:\n  '%s'", target.name, outfile
    )
    remove_working_dir(target.dump_path)
    return outfile


def remove_working_dir(path: Path) -> None:
    """Recursively remove ``path``, leaving mount points for teardown."""
    path = Path(path)
    if not path.exists():
        return

    try:
        children = list(path.iterdir())
        mounted = [child for child in children if os.path.ismount(child)]
        if not mounted:
            shutil.rmtree(path)
            logger.debug("Removed working directory %s", path)
            return

        for child in children:
            if child in mounted:
                logger.debug("Leaving mounted %s for teardown", child)
            elif child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()
    except OSError as e:
        logger.warning("Could not remove working directory %s: %s", path, e)
