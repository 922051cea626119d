"""Source-file access rooted at the project directory."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from codevolve.core.errors import ValidationError

logger = logging.getLogger(__name__)


class FileStorage:
    """Reads, writes, deletes and renames files by project-relative path.

    Paths that resolve outside the project root are rejected so a stored
    suggestion cannot write anywhere else on disk.
    """

    def __init__(self, root: Path):
        self.root = root.resolve()

    def resolve(self, path: str | Path) -> Path:
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.root / candidate
        candidate = candidate.resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise ValidationError(f"Path escapes project root: {path}")
        return candidate

    def relative(self, path: str | Path) -> str:
        return self.resolve(path).relative_to(self.root).as_posix()

    def exists(self, path: str | Path) -> bool:
        return self.resolve(path).exists()

    def read_bytes(self, path: str | Path) -> bytes:
        return self.resolve(path).read_bytes()

    def read_text(self, path: str | Path) -> str:
        return self.resolve(path).read_text(encoding="utf-8")

    def write_bytes(self, path: str | Path, data: bytes) -> None:
        target = self.resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    def write_text(self, path: str | Path, content: str) -> None:
        self.write_bytes(path, content.encode("utf-8"))

    def delete(self, path: str | Path) -> None:
        target = self.resolve(path)
        if target.exists():
            target.unlink()
            logger.debug("Deleted %s", target)

    def rename(self, old_path: str | Path, new_path: str | Path) -> None:
        source = self.resolve(old_path)
        target = self.resolve(new_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(source), str(target))
        logger.debug("Moved %s -> %s", source, target)
