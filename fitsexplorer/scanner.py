"""Directory scanning (metadata only)."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, List

from .config import DEFAULT_EXTENSIONS
from .errors import IoError, RootDirectoryError
from .model import FileIdentity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanWarning:
    path: str
    reason: str


@dataclass
class ScanResult:
    """Files found under ``root`` in presentation order, plus stat failures."""

    root: str
    files: List[FileIdentity] = field(default_factory=list)
    warnings: List[ScanWarning] = field(default_factory=list)

    def __iter__(self) -> Iterator[FileIdentity]:
        return iter(self.files)

    def __len__(self) -> int:
        return len(self.files)


def scan(
    root, extensions: Iterable[str] = DEFAULT_EXTENSIONS, recursive: bool = False
) -> ScanResult:
    """List candidate image files under ``root``, sorted by file name.

    Only ``stat`` is called; nothing is parsed. Files that cannot be stat'ed are
    left out and reported in ``ScanResult.warnings``.

    Raises:
        RootDirectoryError: ``root`` is missing, not a directory or unreadable.
    """
    root_path = Path(root)
    if not root_path.is_dir():
        raise RootDirectoryError(f"not a directory: {root_path}")
    exts = {e.lower() if e.startswith(".") else f".{e.lower()}" for e in extensions}

    try:
        candidates = list(root_path.rglob("*") if recursive else root_path.iterdir())
    except OSError as e:
        raise RootDirectoryError(f"cannot list {root_path}: {e}") from e

    result = ScanResult(root=str(root_path))
    for path in candidates:
        if path.suffix.lower() not in exts:
            continue
        try:
            result.files.append(FileIdentity.from_path(path))
        except IoError as e:
            logger.warning("Skipping %s: %s", path, e.reason)
            result.warnings.append(ScanWarning(str(path), e.reason))

    result.files.sort(key=lambda i: (Path(i.path).name, i.path))
    logger.debug(
        "Scanned %s: %d files, %d warnings",
        root_path,
        len(result.files),
        len(result.warnings),
    )
    return result
