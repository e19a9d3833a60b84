"""Configuration schema definitions using dataclasses.

Defines the structure for TOML configuration with sensible defaults.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

DEFAULT_WORK_DIR = "/var/tmp/lvsnap-backup"


@dataclass
class TargetConfig:
    """Backup target configuration.

    Attributes:
        name: Name of the backup, used for the snapshot device and archive name
        vg_name: LVM volume group (e.g. /dev/vg0)
        lv_name: LVM logical volume holding the data (e.g. /dev/vg0/neo4j)
        source_dir: Directory with the live data
        dump_path: Working directory (default: <work_dir>/<name>)
        sudo: Run storage commands through sudo (default: global setting)
        lock_url: URL that pauses the service, must return 200
        unlock_url: URL that resumes the service, must return 200
        overhead_mb: Extra snapshot space in MB (default: global setting)
        compress: Compression method (default: global setting)
        compress_level: Compression level (default: global setting)
        enabled: Whether this target is enabled for backup
    """

    name: str
    vg_name: str
    lv_name: str
    source_dir: str
    dump_path: Optional[str] = None
    sudo: Optional[bool] = None
    lock_url: Optional[str] = None
    unlock_url: Optional[str] = None
    overhead_mb: Optional[int] = None
    compress: Optional[str] = None
    compress_level: Optional[int] = None
    enabled: bool = True


@dataclass
class GlobalConfig:
    """Global configuration settings.

    Attributes:
        work_dir: Parent directory of per-target working directories
        compress: Default compression method ("none" disables compression)
        compress_level: Default compression level
        sudo: Run storage commands through sudo by default
        overhead_mb: Default extra snapshot space in MB
        log_file: Path to log file (None for no file logging)
        transaction_log: Path to the JSON-lines transaction log
    """

    work_dir: str = DEFAULT_WORK_DIR
    compress: str = "gzip"
    compress_level: Optional[int] = None
    sudo: bool = False
    overhead_mb: int = 10
    log_file: Optional[str] = None
    transaction_log: Optional[str] = None


@dataclass
class Config:
    """Root configuration object.

    Attributes:
        global_config: Global settings that apply to all targets
        targets: List of target configurations
    """

    global_config: GlobalConfig = field(default_factory=GlobalConfig)
    targets: list[TargetConfig] = field(default_factory=list)

    def get_enabled_targets(self) -> list[TargetConfig]:
        """Get list of enabled targets."""
        return [t for t in self.targets if t.enabled]

    def get_target(self, name: str) -> Optional[TargetConfig]:
        """Find a target by name."""
        for target in self.targets:
            if target.name == name:
                return target
        return None

    def get_compression(self, target: TargetConfig) -> tuple[str, Optional[int]]:
        """Effective (method, level); target settings override global ones."""
        method = target.compress or self.global_config.compress
        level = (
            target.compress_level
            if target.compress_level is not None
            else self.global_config.compress_level
        )
        return method, level

    def to_backup_target(self, target: TargetConfig):
        """Build the immutable BackupTarget used for one run."""
        from ..target import BackupTarget

        dump_path = target.dump_path or Path(self.global_config.work_dir) / target.name
        return BackupTarget(
            name=target.name,
            vg_name=target.vg_name,
            lv_name=target.lv_name,
            source_dir=target.source_dir,
            dump_path=Path(dump_path),
            sudo=self.global_config.sudo if target.sudo is None else target.sudo,
            lock_url=target.lock_url,
            unlock_url=target.unlock_url,
            overhead_mb=(
                self.global_config.overhead_mb
                if target.overhead_mb is None
                else target.overhead_mb
            ),
        )
