# pyright: standard

"""lvsnap-backup: lvsnap_backup/pipeline.py
Run external commands either as a connected pipe or as a gated chain.

This is the only place where lvsnap-backup spawns processes. Commands are
argument vectors, never shell strings, and every stage keeps its exit status
and standard error so failures can be reported stage by stage.
"""

import logging
import shlex
import subprocess
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from typing import IO, Optional, Sequence

logger = logging.getLogger(__name__)

# Exit status recorded for a command that could not be started at all,
# matching what a shell reports for "command not found".
SPAWN_FAILURE_STATUS = 127


class PipelineMode(Enum):
    """How the commands of a pipeline are connected."""

    PIPE = "pipe"  # stdout of stage n feeds stdin of stage n+1
    CHAIN = "chain"  # stage n must succeed before stage n+1 runs


@dataclass
class Command:
    """A single command of a pipeline."""

    argv: list[str]
    tolerate_failure: bool = False

    def __str__(self) -> str:
        return shlex.join(self.argv)


@dataclass
class StageResult:
    """Outcome of one command after the pipeline ran.

    ``returncode`` is None when the command was skipped because an earlier
    command of a chain failed.
    """

    command: Command
    returncode: Optional[int]
    stderr: str = ""
    stdout: bytes = field(default=b"", repr=False)

    @property
    def skipped(self) -> bool:
        return self.returncode is None

    @property
    def failed(self) -> bool:
        return self.returncode is not None and self.returncode != 0

    @property
    def ok(self) -> bool:
        return self.returncode == 0 or self.command.tolerate_failure


class Pipeline:
    """An ordered list of commands with an aggregate success verdict.

    Example:
        pipeline = Pipeline(PipelineMode.PIPE)
        pipeline << ["tar", "-cf", "-", "data"] << ["gzip", "-c"]
        with open("data.tar.gz", "wb") as out:
            pipeline.run(stdout=out)
        if not pipeline.success:
            raise SomeError(pipeline.error_messages())
    """

    def __init__(self, mode: PipelineMode = PipelineMode.PIPE) -> None:
        self.mode = mode
        self.commands: list[Command] = []
        self.results: list[StageResult] = []
        self.output = ""
        self._has_run = False

    def add(self, argv: Sequence[str], tolerate_failure: bool = False) -> "Pipeline":
        """Append a command; a tolerated command never fails the pipeline."""
        if not argv:
            raise ValueError("Cannot add an empty command to a pipeline")
        self.commands.append(Command([str(arg) for arg in argv], tolerate_failure))
        return self

    def __lshift__(self, argv: Sequence[str]) -> "Pipeline":
        return self.add(argv)

    def __len__(self) -> int:
        return len(self.commands)

    def __repr__(self) -> str:
        joiner = " | " if self.mode is PipelineMode.PIPE else " && "
        return f"Pipeline({joiner.join(str(c) for c in self.commands)})"

    def run(self, stdout: Optional[IO[bytes]] = None) -> None:
        """Execute all commands and record their results.

        Args:
            stdout: Binary file receiving the output of the final stage.
                When omitted the output is captured into ``self.output``.
        """
        self.results = []
        self.output = ""
        logger.debug("Running %r", self)
        if self.mode is PipelineMode.PIPE:
            self._run_pipe(stdout)
        else:
            self._run_chain(stdout)
        self._has_run = True

        for index, result in enumerate(self.results, start=1):
            if result.failed:
                log = logger.debug if result.command.tolerate_failure else logger.warning
                log(
                    "Stage %d (%s) exited with status %d",
                    index,
                    result.command,
                    result.returncode,
                )

    @property
    def success(self) -> bool:
        """True iff the pipeline ran and every command that matters exited 0."""
        return self._has_run and all(result.ok for result in self.results)

    def error_messages(self) -> str:
        """Human readable transcript of every stage that did not succeed."""
        total = len(self.results)
        lines = []
        for index, result in enumerate(self.results, start=1):
            if result.ok:
                continue
            if result.skipped:
                lines.append(f"  [{index}/{total}] {result.command}")
                lines.append("      not run: an earlier command failed")
                continue
            lines.append(f"  [{index}/{total}] {result.command}")
            lines.append(f"      exit status: {result.returncode}")
            stderr = result.stderr.strip()
            if stderr:
                lines.extend(f"      {line}" for line in stderr.splitlines())
        if not lines:
            return ""
        return "\n".join(["Pipeline STDERR Messages:", *lines])

    def _run_pipe(self, sink: Optional[IO[bytes]]) -> None:
        processes: list[Optional[subprocess.Popen]] = []
        spawn_errors: dict[int, OSError] = {}
        stderr_files: list[IO[bytes]] = []
        capture = None
        last = len(self.commands) - 1

        try:
            stdin = subprocess.DEVNULL
            for index, command in enumerate(self.commands):
                if index < last:
                    stdout = subprocess.PIPE
                elif sink is not None:
                    stdout = sink
                else:
                    capture = tempfile.TemporaryFile()
                    stdout = capture
                stderr = tempfile.TemporaryFile()
                stderr_files.append(stderr)

                logger.debug("Pipe stage %d: %s", index + 1, command)
                try:
                    process = subprocess.Popen(
                        command.argv, stdin=stdin, stdout=stdout, stderr=stderr
                    )
                except OSError as e:
                    spawn_errors[index] = e
                    process = None

                # Only the child may hold the read end, otherwise the upstream
                # stage never sees SIGPIPE when this one exits.
                if stdin is not subprocess.DEVNULL:
                    stdin.close()
                processes.append(process)
                if process is not None and index < last:
                    stdin = process.stdout
                else:
                    stdin = subprocess.DEVNULL

            for process in processes:
                if process is not None:
                    process.wait()
        except BaseException:
            for process in processes:
                if process is not None and process.poll() is None:
                    process.kill()
                    process.wait()
            raise
        finally:
            for process in processes:
                if process is not None and process.stdout:
                    process.stdout.close()

            for index, command in enumerate(self.commands):
                if index >= len(processes):
                    break
                process = processes[index]
                stderr_text = _read_text(stderr_files[index])
                if process is None:
                    self.results.append(
                        StageResult(
                            command, SPAWN_FAILURE_STATUS, str(spawn_errors[index])
                        )
                    )
                else:
                    self.results.append(
                        StageResult(command, process.returncode, stderr_text)
                    )

            for stderr in stderr_files:
                stderr.close()
            if capture is not None:
                capture.seek(0)
                data = capture.read()
                capture.close()
                if self.results:
                    self.results[-1].stdout = data
                self.output = data.decode("utf-8", errors="replace")

    def _run_chain(self, sink: Optional[IO[bytes]]) -> None:
        stop = False
        for index, command in enumerate(self.commands):
            if stop:
                self.results.append(StageResult(command, None))
                continue

            logger.debug("Chain stage %d: %s", index + 1, command)
            try:
                completed = subprocess.run(
                    command.argv,
                    stdin=subprocess.DEVNULL,
                    stdout=sink if sink is not None else subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    check=False,
                )
            except OSError as e:
                result = StageResult(command, SPAWN_FAILURE_STATUS, str(e))
            else:
                result = StageResult(
                    command,
                    completed.returncode,
                    (completed.stderr or b"").decode("utf-8", errors="replace"),
                    completed.stdout or b"",
                )
            self.results.append(result)

            if result.failed and not command.tolerate_failure:
                stop = True
            elif not result.failed:
                self.output = result.stdout.decode("utf-8", errors="replace")


def _read_text(handle: IO[bytes]) -> str:
    handle.seek(0)
    return handle.read().decode("utf-8", errors="replace")
