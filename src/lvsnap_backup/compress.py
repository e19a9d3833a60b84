"""Compression stages for the archive pipeline.

A compressor is anything with a ``compress_with()`` method yielding
``(command, extension)`` pairs; each command is appended to the archive
pipeline and each extension to the archive file name.
"""

from dataclasses import dataclass
from typing import Iterator, Optional, Protocol

# method -> (command, file extension, highest level accepted)
COMPRESSION_METHODS: dict[str, tuple[list[str], str, int]] = {
    "gzip": (["gzip", "-c"], ".gz", 9),
    "pigz": (["pigz", "-c"], ".gz", 9),
    "bzip2": (["bzip2", "-c"], ".bz2", 9),
    "xz": (["xz", "-c", "-T0"], ".xz", 9),
    "zstd": (["zstd", "-c", "-q", "-T0"], ".zst", 19),
    "lz4": (["lz4", "-c", "-q"], ".lz4", 12),
    "lzop": (["lzop", "-c"], ".lzo", 9),
}


class CompressorLike(Protocol):
    def compress_with(self) -> Iterator[tuple[list[str], str]]: ...


@dataclass(frozen=True)
class Compressor:
    """Compress the archive stream with one external program.

    Attributes:
        method: One of COMPRESSION_METHODS
        level: Optional compression level passed as ``-<level>``
    """

    method: str
    level: Optional[int] = None

    def __post_init__(self) -> None:
        if self.method not in COMPRESSION_METHODS:
            raise ValueError(
                f"Unknown compression method '{self.method}' "
                f"(valid: {', '.join(sorted(COMPRESSION_METHODS))})"
            )
        max_level = COMPRESSION_METHODS[self.method][2]
        if self.level is not None and not 1 <= self.level <= max_level:
            raise ValueError(
                f"Compression level for {self.method} must be between 1 and {max_level}"
            )

    def compress_with(self) -> Iterator[tuple[list[str], str]]:
        command, ext, _ = COMPRESSION_METHODS[self.method]
        command = list(command)
        if self.level is not None:
            command.append(f"-{self.level}")
        yield command, ext


def get_compressor(
    method: Optional[str], level: Optional[int] = None
) -> Optional[Compressor]:
    """Return a Compressor for ``method``, or None for no compression."""
    if method is None or method == "none":
        return None
    return Compressor(method, level)
