"""Immutable description of one backup run."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config.loader import ConfigError

DEFAULT_OVERHEAD_MB = 10


@dataclass(frozen=True)
class BackupTarget:
    """Everything a single backup run needs to know.

    Attributes:
        name: Name of the backup, used for the snapshot device and mount point
        vg_name: LVM volume group, i.e. "VG Name" in 'vgdisplay' (e.g. /dev/vg0)
        lv_name: LVM logical volume holding the data (e.g. /dev/vg0/neo4j)
        source_dir: Directory with the live data, mounted from ``lv_name``
        dump_path: Working directory; the archive is written next to it
        sudo: Run storage commands through sudo
        lock_url: URL which must return 200 once the service is paused
        unlock_url: URL which must return 200 once the service is resumed
        overhead_mb: Extra space added to the measured usage when sizing the snapshot
    """

    name: str
    vg_name: str
    lv_name: str
    source_dir: str
    dump_path: Path
    sudo: bool = False
    lock_url: Optional[str] = None
    unlock_url: Optional[str] = None
    overhead_mb: int = DEFAULT_OVERHEAD_MB

    def __post_init__(self) -> None:
        for attr in ("name", "vg_name", "lv_name", "source_dir", "dump_path"):
            if not str(getattr(self, attr) or "").strip():
                raise ConfigError(f"Backup target missing required '{attr}' field")
        if "/" in self.name or any(ch.isspace() for ch in self.name):
            raise ConfigError(
                f"Backup target name '{self.name}' must not contain '/' or whitespace"
            )
        if (
            isinstance(self.overhead_mb, bool)
            or not isinstance(self.overhead_mb, int)
            or self.overhead_mb <= 0
        ):
            raise ConfigError(
                f"Backup target '{self.name}': overhead_mb must be a positive integer"
            )

        # Frozen dataclass: normalize through object.__setattr__
        object.__setattr__(self, "dump_path", Path(self.dump_path))
        object.__setattr__(self, "lock_url", self.lock_url or None)
        object.__setattr__(self, "unlock_url", self.unlock_url or None)
