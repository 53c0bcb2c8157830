"""
Local file adapter — implements the FileStore port on pathlib.

Reads are tagged ACCESS_ERROR when the path is missing or unreadable.
Writes create parent directories as needed; text is always UTF-8.
"""

from __future__ import annotations

from pathlib import Path

import structlog

from fido_mds.errors import ErrorCode
from fido_mds.result import Result

log = structlog.get_logger()


class LocalFileStore:
    """Read and write files on the local filesystem."""

    def read_bytes(self, path: Path) -> Result[bytes]:
        return Result.from_computation(
            lambda: Path(path).read_bytes(),
            ErrorCode.ACCESS_ERROR,
            f"Cannot read file {path}",
        )

    def read_text(self, path: Path) -> Result[str]:
        return Result.from_computation(
            lambda: Path(path).read_text(encoding="utf-8"),
            ErrorCode.ACCESS_ERROR,
            f"Cannot read file {path}",
        )

    def write_bytes(self, path: Path, data: bytes) -> Result[Path]:
        return Result.from_computation(
            lambda: self._write(Path(path), data),
            ErrorCode.ACCESS_ERROR,
            f"Cannot write file {path}",
        )

    def write_text(self, path: Path, text: str) -> Result[Path]:
        return Result.from_computation(
            lambda: self._write(Path(path), text.encode("utf-8")),
            ErrorCode.ACCESS_ERROR,
            f"Cannot write file {path}",
        )

    @staticmethod
    def _write(path: Path, data: bytes) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        log.debug("file.written", path=str(path), size_bytes=len(data))
        return path
