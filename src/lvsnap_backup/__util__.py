# pyright: standard

"""lvsnap-backup: lvsnap_backup/__util__.py
Common errors and helpers shared by the backup core and the CLI.
"""

import os
import time
from pathlib import Path
from typing import Optional, Sequence


DATE_FORMAT = "%Y-%m-%d_%H-%M"


class AbortError(Exception):
    """Exception where lvsnap-backup should abort."""


class BackupError(AbortError):
    """A backup run failed.

    Attributes:
        target: Name of the backup target the run was for
        phase: Phase of the run that failed (lock, snapshot, unlock, package, teardown)
        teardown_error: Teardown failure raised while unwinding from this error
    """

    def __init__(
        self,
        message: str,
        target: Optional[str] = None,
        phase: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.target = target
        self.phase = phase
        self.teardown_error: Optional[BaseException] = None


class RemoteHandshakeError(BackupError):
    """The pause/resume endpoint did not answer with HTTP 200."""

    def __init__(
        self,
        message: str,
        url: str,
        status: Optional[int] = None,
        target: Optional[str] = None,
        phase: Optional[str] = None,
    ) -> None:
        super().__init__(message, target=target, phase=phase)
        self.url = url
        self.status = status


class PipelineError(BackupError):
    """An external command pipeline failed."""

    def __init__(
        self,
        message: str,
        transcript: str = "",
        target: Optional[str] = None,
        phase: Optional[str] = None,
    ) -> None:
        if transcript:
            message = f"{message}\n{transcript}"
        super().__init__(message, target=target, phase=phase)
        self.transcript = transcript


class SnapshotPipelineError(PipelineError):
    """Creating or mounting the snapshot failed."""


class PackagingPipelineError(PipelineError):
    """Archiving, compressing or writing the archive failed."""

    def __init__(
        self,
        message: str,
        output_path: Path,
        transcript: str = "",
        target: Optional[str] = None,
    ) -> None:
        super().__init__(message, transcript, target=target, phase="package")
        self.output_path = Path(output_path)


class TeardownError(PipelineError):
    """Unmounting or removing the snapshot failed while it was known to exist."""


def privileged(command: Sequence[str], sudo: bool) -> list[str]:
    """Return ``command`` prefixed with sudo when escalation is requested."""
    command = [str(part) for part in command]
    if sudo and os.geteuid() != 0:
        return ["sudo", *command]
    return command


def date_to_str(timestamp=None, fmt=DATE_FORMAT) -> str:
    """Format a struct_time (default: now) for use in file names."""
    if timestamp is None:
        timestamp = time.localtime()
    return time.strftime(fmt, timestamp)


def log_heading(caption) -> str:
    """Formatted heading for logging output sections."""
    return f"{f'--[ {caption} ]':-<50}"
