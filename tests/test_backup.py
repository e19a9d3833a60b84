"""Tests for the backup orchestrator."""

import tarfile
from unittest.mock import Mock

import pytest

from lvsnap_backup.__util__ import (
    PackagingPipelineError,
    RemoteHandshakeError,
    SnapshotPipelineError,
    TeardownError,
)
from lvsnap_backup.backup import perform_backup
from lvsnap_backup.snapshot import snapshot_handle
from lvsnap_backup.transaction import read_transaction_log, set_transaction_log

LOCK_URL = "http://localhost:4242/system/shutdown"
UNLOCK_URL = "http://localhost:4242/system/startup"


@pytest.fixture
def steps(monkeypatch, tmp_path):
    """Replace every phase with a mock that records call order."""
    manager = Mock()
    archive = tmp_path / "production-2026-10-19_03-15.tar"
    archive.write_bytes(b"x" * 1024)
    manager.create_and_mount.side_effect = snapshot_handle
    manager.package.return_value = archive

    monkeypatch.setattr("lvsnap_backup.backup.handshake.lock", manager.lock)
    monkeypatch.setattr("lvsnap_backup.backup.handshake.unlock", manager.unlock)
    monkeypatch.setattr(
        "lvsnap_backup.backup.snapshot.create_and_mount", manager.create_and_mount
    )
    monkeypatch.setattr("lvsnap_backup.backup.snapshot.teardown", manager.teardown)
    monkeypatch.setattr("lvsnap_backup.backup.package.package", manager.package)
    return manager


def _order(manager):
    return [name for name, _, _ in manager.method_calls]


class TestPhaseOrdering:
    """Tests for the order of phases and the teardown guarantee."""

    def test_success_order(self, make_target, steps):
        """Test lock, snapshot, unlock, package and teardown run in order."""
        target = make_target(lock_url=LOCK_URL, unlock_url=UNLOCK_URL)

        outfile = perform_backup(target)

        assert outfile == steps.package.return_value
        assert _order(steps) == [
            "lock",
            "create_and_mount",
            "unlock",
            "package",
            "teardown",
        ]
        steps.lock.assert_called_once_with(LOCK_URL, "production")
        steps.unlock.assert_called_once_with(UNLOCK_URL, "production")

    def test_without_urls(self, make_target, steps):
        """Test the handshake is skipped when no URLs are configured."""
        perform_backup(make_target())
        assert _order(steps) == ["create_and_mount", "package", "teardown"]

    def test_compressor_is_passed_through(self, make_target, steps):
        """Test the compressor reaches the packager."""
        compressor = object()
        perform_backup(make_target(), compressor)
        assert steps.package.call_args.args[2] is compressor

    @pytest.mark.parametrize(
        "failing,error",
        [
            ("lock", RemoteHandshakeError("503", LOCK_URL, status=503, phase="lock")),
            ("create_and_mount", SnapshotPipelineError("no space", phase="snapshot")),
            ("unlock", RemoteHandshakeError("503", UNLOCK_URL, status=503, phase="unlock")),
            ("package", PackagingPipelineError("disk full", "/tmp/x.tar")),
        ],
    )
    def test_teardown_once_on_failure(self, make_target, steps, failing, error):
        """Test a failure in any phase tears down exactly once and re-raises."""
        getattr(steps, failing).side_effect = error
        target = make_target(lock_url=LOCK_URL, unlock_url=UNLOCK_URL)

        with pytest.raises(type(error)) as exc_info:
            perform_backup(target)

        assert exc_info.value is error
        assert steps.teardown.call_count == 1
        assert _order(steps)[-1] == "teardown"

    def test_no_unlock_after_snapshot_failure(self, make_target, steps):
        """Test the service is left paused when no snapshot was taken."""
        steps.create_and_mount.side_effect = SnapshotPipelineError("no space")
        target = make_target(lock_url=LOCK_URL, unlock_url=UNLOCK_URL)

        with pytest.raises(SnapshotPipelineError):
            perform_backup(target)

        steps.unlock.assert_not_called()
        steps.package.assert_not_called()

    def test_no_snapshot_after_lock_failure(self, make_target, steps):
        """Test nothing is created when the service refuses to pause."""
        steps.lock.side_effect = RemoteHandshakeError("refused", LOCK_URL)

        with pytest.raises(RemoteHandshakeError):
            perform_backup(make_target(lock_url=LOCK_URL))

        steps.create_and_mount.assert_not_called()

    def test_interrupt_still_tears_down(self, make_target, steps):
        """Test a KeyboardInterrupt while packaging still tears down."""
        steps.package.side_effect = KeyboardInterrupt

        with pytest.raises(KeyboardInterrupt):
            perform_backup(make_target())

        steps.teardown.assert_called_once()


class TestTeardownErrors:
    """Tests for errors raised by teardown itself."""

    def test_original_error_wins(self, make_target, steps):
        """Test a teardown failure is attached to the original error."""
        original = PackagingPipelineError("disk full", "/tmp/x.tar")
        steps.package.side_effect = original
        steps.teardown.side_effect = TeardownError("target is busy", phase="teardown")

        with pytest.raises(PackagingPipelineError) as exc_info:
            perform_backup(make_target())

        error = exc_info.value
        assert error is original
        assert isinstance(error.teardown_error, TeardownError)
        assert any("target is busy" in note for note in error.__notes__)

    def test_teardown_failure_after_success(self, make_target, steps):
        """Test a failing teardown after a good archive is still an error."""
        steps.teardown.side_effect = TeardownError("target is busy", phase="teardown")

        with pytest.raises(TeardownError):
            perform_backup(make_target())

        steps.teardown.assert_called_once()


class TestTransactionRecords:
    """Tests for the records a run leaves in the transaction log."""

    def test_success_record(self, make_target, steps, tmp_path):
        """Test a completed run records destination, snapshot and size."""
        log_path = tmp_path / "transactions.jsonl"
        set_transaction_log(log_path)

        perform_backup(make_target())

        records = read_transaction_log(log_path)
        assert [r["status"] for r in records] == ["started", "completed"]
        completed = records[-1]
        assert completed["action"] == "backup"
        assert completed["target"] == "production"
        assert completed["snapshot"] == "/dev/vg0/production_snapshot"
        assert completed["destination"] == str(steps.package.return_value)
        assert completed["size_bytes"] == 1024

    def test_failure_record_names_phase(self, make_target, steps, tmp_path):
        """Test a failed run records the failing phase and error."""
        log_path = tmp_path / "transactions.jsonl"
        set_transaction_log(log_path)
        steps.create_and_mount.side_effect = SnapshotPipelineError(
            "Insufficient free space", phase="snapshot"
        )

        with pytest.raises(SnapshotPipelineError):
            perform_backup(make_target())

        failed = read_transaction_log(log_path)[-1]
        assert failed["status"] == "failed"
        assert failed["details"] == {"phase": "snapshot"}
        assert "Insufficient free space" in failed["error"]

    def test_teardown_failure_record_names_phase(self, make_target, steps, tmp_path):
        """Test a teardown failure after packaging is recorded as such."""
        log_path = tmp_path / "transactions.jsonl"
        set_transaction_log(log_path)
        steps.teardown.side_effect = TeardownError("target is busy", phase="teardown")

        with pytest.raises(TeardownError):
            perform_backup(make_target())

        failed = read_transaction_log(log_path)[-1]
        assert failed["status"] == "failed"
        assert failed["details"] == {"phase": "teardown"}
        assert failed["destination"] == str(steps.package.return_value)


class TestEndToEnd:
    """Full runs against simulated storage commands and real tar."""

    def test_backup_run(self, make_target, fake_storage, tmp_path):
        """Test a run sizes, snapshots, archives and cleans up."""
        target = make_target()

        outfile = perform_backup(target)

        assert fake_storage.commands("lvcreate")[0][1] == "-L15M"
        assert outfile.exists()
        assert outfile.parent == tmp_path / "work"
        assert outfile.name.startswith("production-")
        assert outfile.suffix == ".tar"
        with tarfile.open(outfile) as tar:
            assert "production/graph.db/neostore" in tar.getnames()

        assert fake_storage.commands("umount")
        assert fake_storage.calls[-1] == ["lvremove", "-f", "/dev/vg0/production_snapshot"]
        assert not target.dump_path.exists()
        assert fake_storage.mounted == set()

    def test_mount_failure_leaves_nothing(self, make_target, fake_storage, tmp_path):
        """Test a failed mount produces no archive and no leftover directories."""
        fake_storage.responses["mount"] = (32, b"mount: wrong fs type")
        target = make_target()

        with pytest.raises(SnapshotPipelineError, match="wrong fs type"):
            perform_backup(target)

        assert list((tmp_path / "work").glob("production-*")) == []
        assert not snapshot_handle(target).mount_path.exists()
        assert not target.dump_path.exists()
        assert fake_storage.calls[-1][0] == "lvremove"

    def test_lock_refused(self, make_target, fake_storage, monkeypatch):
        """Test an HTTP 503 from the lock URL aborts before any snapshot."""
        get = Mock(return_value=Mock(status_code=503, reason="Service Unavailable"))
        monkeypatch.setattr("lvsnap_backup.handshake.requests.get", get)
        target = make_target(lock_url=LOCK_URL, unlock_url=UNLOCK_URL)

        with pytest.raises(RemoteHandshakeError) as exc_info:
            perform_backup(target)

        assert exc_info.value.status == 503
        get.assert_called_once_with(LOCK_URL)
        assert fake_storage.commands("lvcreate") == []
        assert len(fake_storage.commands("lvremove")) == 1

    def test_handshake_around_snapshot(self, make_target, fake_storage, monkeypatch):
        """Test the service is resumed before archiving starts."""
        events = []

        def fake_get(url):
            events.append(url)
            return Mock(status_code=200, reason="OK")

        monkeypatch.setattr("lvsnap_backup.handshake.requests.get", fake_get)
        real_storage = fake_storage.__call__

        def recording_storage(argv, **kwargs):
            events.append(" ".join(str(a) for a in argv))
            return real_storage(argv, **kwargs)

        monkeypatch.setattr("lvsnap_backup.pipeline.subprocess.run", recording_storage)

        perform_backup(make_target(lock_url=LOCK_URL, unlock_url=UNLOCK_URL))

        lock_at = events.index(LOCK_URL)
        unlock_at = events.index(UNLOCK_URL)
        mount_at = next(i for i, e in enumerate(events) if e.startswith("mount "))
        assert lock_at < mount_at < unlock_at
