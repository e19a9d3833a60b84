"""Pytest configuration and shared fixtures."""

import shutil
import subprocess
from pathlib import Path

import pytest

from lvsnap_backup.target import BackupTarget
from lvsnap_backup.transaction import set_transaction_log

STORAGE_COMMANDS = {"lvcreate", "lvremove", "mount", "umount", "du"}


@pytest.fixture(autouse=True)
def _no_transaction_log():
    """Keep the module-level transaction log path from leaking between tests."""
    set_transaction_log(None)
    yield
    set_transaction_log(None)


@pytest.fixture
def source_dir(tmp_path):
    """A data directory with a couple of files."""
    data = tmp_path / "data"
    (data / "graph.db").mkdir(parents=True)
    (data / "graph.db" / "neostore").write_bytes(b"\x00" * 4096)
    (data / "messages.log").write_text("started\n")
    return data


@pytest.fixture
def make_target(tmp_path, source_dir):
    """Factory for BackupTargets working below tmp_path."""

    def _make(**overrides):
        fields = {
            "name": "production",
            "vg_name": "/dev/vg0",
            "lv_name": "/dev/vg0/neo4j",
            "source_dir": str(source_dir),
            "dump_path": tmp_path / "work" / "production",
        }
        fields.update(overrides)
        return BackupTarget(**fields)

    return _make


class FakeStorage:
    """Stand-in for the LVM and mount commands run through subprocess.run.

    Storage commands are recorded and answered from ``responses``; anything
    else (mkdir, rmdir) runs for real. ``mount`` copies the source directory
    into the mount point so archiving sees the snapshot contents, and
    ``umount`` empties it again. ``ismount`` reports the simulated mounts.
    """

    def __init__(self, source_dir: Path, used_mb: int = 5):
        self.source_dir = source_dir
        self.used_mb = used_mb
        self.calls: list[list[str]] = []
        self.responses: dict[str, tuple[int, bytes]] = {}
        self.mounted: set[Path] = set()
        self._real_run = subprocess.run

    def commands(self, name: str) -> list[list[str]]:
        return [argv for argv in self.calls if _program(argv) == name]

    def ismount(self, path) -> bool:
        return Path(path) in self.mounted

    def __call__(self, argv, **kwargs):
        program = _program(argv)
        if program not in STORAGE_COMMANDS:
            return self._real_run(argv, **kwargs)

        self.calls.append(list(argv))
        returncode, stderr = self.responses.get(program, (0, b""))
        stdout = b""
        if returncode == 0:
            if program == "du":
                stdout = f"{self.used_mb}\t{argv[-1]}\n".encode()
            elif program == "mount":
                mount_path = Path(argv[-1])
                shutil.copytree(self.source_dir, mount_path, dirs_exist_ok=True)
                self.mounted.add(mount_path)
            elif program == "umount":
                mount_path = Path(argv[-1])
                for child in mount_path.iterdir():
                    if child.is_dir():
                        shutil.rmtree(child)
                    else:
                        child.unlink()
                self.mounted.discard(mount_path)
        return subprocess.CompletedProcess(argv, returncode, stdout, stderr)


def _program(argv) -> str:
    argv = list(argv)
    if argv and argv[0] == "sudo":
        argv = argv[1:]
    return argv[0] if argv else ""


@pytest.fixture
def fake_storage(monkeypatch, source_dir):
    """Patch subprocess.run and mount detection with FakeStorage."""
    storage = FakeStorage(source_dir)
    monkeypatch.setattr("lvsnap_backup.pipeline.subprocess.run", storage)
    monkeypatch.setattr("lvsnap_backup.snapshot.os.path.ismount", storage.ismount)
    return storage


@pytest.fixture
def not_root(monkeypatch):
    """Pretend to run as an unprivileged user so sudo is prefixed."""
    monkeypatch.setattr("lvsnap_backup.__util__.os.geteuid", lambda: 1000)


@pytest.fixture
def sample_config_toml():
    """Return a sample valid TOML configuration string."""
    return """
[global]
work_dir = "/var/tmp/lvsnap-test"
compress = "zstd"
compress_level = 3
sudo = true
overhead_mb = 20

[[targets]]
name = "production"
vg_name = "/dev/vg0"
lv_name = "/dev/vg0/neo4j"
source_dir = "/data/neo4j/db/production"
lock_url = "http://localhost:4242/system/shutdown"
unlock_url = "http://localhost:4242/system/startup"

[[targets]]
name = "metrics"
vg_name = "/dev/vg1"
lv_name = "/dev/vg1/metrics"
source_dir = "/data/metrics"
dump_path = "/srv/backup/metrics"
sudo = false
compress = "none"
overhead_mb = 100
enabled = false
"""


@pytest.fixture
def minimal_config_toml():
    """Return a minimal valid TOML configuration string."""
    return """
[[targets]]
name = "production"
vg_name = "/dev/vg0"
lv_name = "/dev/vg0/neo4j"
source_dir = "/data/neo4j"
"""


@pytest.fixture
def tmp_config_dir(tmp_path):
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def config_file(tmp_config_dir, sample_config_toml):
    """Create a temporary config file with sample content."""
    config_path = tmp_config_dir / "config.toml"
    config_path.write_text(sample_config_toml)
    return config_path


@pytest.fixture
def minimal_config_file(tmp_config_dir, minimal_config_toml):
    """Create a temporary config file with minimal content."""
    config_path = tmp_config_dir / "minimal.toml"
    config_path.write_text(minimal_config_toml)
    return config_path
