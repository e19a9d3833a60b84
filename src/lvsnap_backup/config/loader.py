"""TOML configuration loading and validation.

Handles config file discovery, parsing, and validation with helpful error messages.
"""

import tomllib
from pathlib import Path
from typing import Any

from .schema import DEFAULT_WORK_DIR, Config, GlobalConfig, TargetConfig


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


# Config file search paths in priority order
CONFIG_PATHS = [
    Path.home() / ".config" / "lvsnap-backup" / "config.toml",
    Path("/etc/lvsnap-backup/config.toml"),
]

VALID_COMPRESSION = ("none", "gzip", "pigz", "bzip2", "xz", "zstd", "lz4", "lzop")

REQUIRED_TARGET_FIELDS = ("name", "vg_name", "lv_name", "source_dir")


def find_config_file(explicit_path: str | None = None) -> Path | None:
    """Find configuration file.

    Args:
        explicit_path: Explicitly specified config path (highest priority)

    Returns:
        Path to config file, or None if not found
    """
    if explicit_path:
        path = Path(explicit_path)
        if path.exists():
            return path
        raise ConfigError(f"Config file not found: {explicit_path}")

    for path in CONFIG_PATHS:
        if path.exists():
            return path

    return None


def _check_compression(method: str | None, where: str) -> None:
    if method is not None and method not in VALID_COMPRESSION:
        raise ConfigError(
            f"Invalid compression method '{method}' in {where} "
            f"(valid: {', '.join(VALID_COMPRESSION)})"
        )


def _check_positive_int(value: Any, key: str, where: str) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"'{key}' in {where} must be a positive integer")


def _parse_target(data: dict[str, Any]) -> TargetConfig:
    """Parse target configuration from dict."""
    for key in REQUIRED_TARGET_FIELDS:
        if not data.get(key):
            label = data.get("name", "<unnamed>")
            raise ConfigError(f"Target '{label}' missing required '{key}' field")

    where = f"target '{data['name']}'"
    _check_compression(data.get("compress"), where)
    _check_positive_int(data.get("overhead_mb"), "overhead_mb", where)
    _check_positive_int(data.get("compress_level"), "compress_level", where)

    return TargetConfig(
        name=data["name"],
        vg_name=data["vg_name"],
        lv_name=data["lv_name"],
        source_dir=data["source_dir"],
        dump_path=data.get("dump_path"),
        sudo=data.get("sudo"),
        lock_url=data.get("lock_url") or None,
        unlock_url=data.get("unlock_url") or None,
        overhead_mb=data.get("overhead_mb"),
        compress=data.get("compress"),
        compress_level=data.get("compress_level"),
        enabled=data.get("enabled", True),
    )


def _parse_global(data: dict[str, Any]) -> GlobalConfig:
    """Parse global configuration from dict."""
    _check_compression(data.get("compress"), "[global]")
    _check_positive_int(data.get("overhead_mb"), "overhead_mb", "[global]")
    _check_positive_int(data.get("compress_level"), "compress_level", "[global]")

    return GlobalConfig(
        work_dir=data.get("work_dir", DEFAULT_WORK_DIR),
        compress=data.get("compress", "gzip"),
        compress_level=data.get("compress_level"),
        sudo=data.get("sudo", False),
        overhead_mb=data.get("overhead_mb", 10),
        log_file=data.get("log_file"),
        transaction_log=data.get("transaction_log"),
    )


def _validate_config(config: Config) -> list[str]:
    """Validate configuration and return list of warnings."""
    warnings = []

    if not config.targets:
        warnings.append("No targets configured")

    names = [t.name for t in config.targets]
    if len(names) != len(set(names)):
        warnings.append("Duplicate target names detected")

    for target in config.targets:
        if target.lock_url and not target.unlock_url:
            warnings.append(
                f"Target '{target.name}' has a lock_url but no unlock_url; "
                "the service will stay paused after the snapshot"
            )
        if target.unlock_url and not target.lock_url:
            warnings.append(f"Target '{target.name}' has an unlock_url but no lock_url")
        if not target.enabled:
            warnings.append(f"Target '{target.name}' is disabled")

    return warnings


def load_config(path: Path | str) -> tuple[Config, list[str]]:
    """Load and validate configuration from TOML file.

    Args:
        path: Path to configuration file

    Returns:
        Tuple of (Config object, list of warnings)

    Raises:
        ConfigError: If config is invalid or cannot be parsed
    """
    path = Path(path)

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML syntax: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read config file: {e}")

    global_config = _parse_global(data.get("global", {}))
    targets = [_parse_target(t) for t in data.get("targets", [])]

    config = Config(global_config=global_config, targets=targets)

    # Validate and collect warnings
    warnings = _validate_config(config)

    return config, warnings


def generate_example_config() -> str:
    """Generate example configuration file content."""
    return """# lvsnap-backup configuration
# See documentation for full options

[global]
work_dir = "/var/tmp/lvsnap-backup"
compress = "gzip"        # none, gzip, pigz, bzip2, xz, zstd, lz4, lzop
# compress_level = 6
sudo = true              # run lvcreate/mount/umount/lvremove/tar via sudo
overhead_mb = 10         # extra snapshot space on top of the data size
# log_file = "/var/log/lvsnap-backup.log"
# transaction_log = "/var/log/lvsnap-backup.jsonl"

# Neo4j data on an LVM logical volume
[[targets]]
name = "production"
vg_name = "/dev/vg0"
lv_name = "/dev/vg0/neo4j"
source_dir = "/data/neo4j/db/production"
# Pause the database only while the snapshot is taken
# lock_url = "http://localhost:4242/system/shutdown"
# unlock_url = "http://localhost:4242/system/startup"

# [[targets]]
# name = "metrics"
# vg_name = "/dev/vg0"
# lv_name = "/dev/vg0/metrics"
# source_dir = "/data/metrics"
# compress = "zstd"
# overhead_mb = 100
"""
