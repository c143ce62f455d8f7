"""Deployable artifact packaging.

Archives are reproducible: entries are sorted, timestamps and permissions
are fixed, so the same source tree always yields the same bytes and the
same content digest.
"""

from __future__ import annotations

import base64
import fnmatch
import hashlib
import io
import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

logger = logging.getLogger(__name__)

_FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)
_FILE_MODE = 0o100644 << 16

DEFAULT_EXCLUDES: tuple[str, ...] = ("__pycache__/*", "*.pyc", ".DS_Store")


@dataclass(frozen=True)
class Artifact:
    path: Path
    content_digest: str
    size: int


def content_digest(data: bytes) -> str:
    """Base64-encoded SHA-256 of *data* (the ``source_code_hash`` format)."""
    return base64.b64encode(hashlib.sha256(data).digest()).decode("ascii")


def file_digest(path: Path) -> str:
    return content_digest(Path(path).read_bytes())


def _excluded(rel_path: str, patterns: Iterable[str]) -> bool:
    return any(
        fnmatch.fnmatch(rel_path, p) or fnmatch.fnmatch(Path(rel_path).name, p) for p in patterns
    )


def _iter_files(source_dir: Path, excludes: Iterable[str]) -> Iterator[tuple[str, Path]]:
    patterns = [*DEFAULT_EXCLUDES, *excludes]
    for path in sorted(source_dir.rglob("*")):
        if not path.is_file():
            continue
        rel = path.relative_to(source_dir).as_posix()
        if _excluded(rel, patterns):
            continue
        yield rel, path


def package_bytes(source_dir: Path | str, excludes: Iterable[str] = ()) -> bytes:
    """Zip *source_dir* into memory and return the archive bytes."""
    source_dir = Path(source_dir)
    if not source_dir.is_dir():
        raise FileNotFoundError(f"Source directory not found: {source_dir}")

    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for rel, path in _iter_files(source_dir, excludes):
            info = zipfile.ZipInfo(rel, date_time=_FIXED_DATE_TIME)
            info.external_attr = _FILE_MODE
            info.compress_type = zipfile.ZIP_DEFLATED
            zf.writestr(info, path.read_bytes())
    return buf.getvalue()


def build_artifact(
    source_dir: Path | str, output_path: Path | str, *, excludes: Iterable[str] = ()
) -> Artifact:
    """Package *source_dir* into a zip at *output_path*."""
    data = package_bytes(source_dir, excludes)
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(data)
    digest = content_digest(data)
    logger.debug("Built artifact %s (%d bytes, %s)", output_path, len(data), digest)
    return Artifact(path=output_path, content_digest=digest, size=len(data))
