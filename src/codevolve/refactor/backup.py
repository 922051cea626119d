"""Pre-change backups for refactor executions."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from codevolve.storage.files import FileStorage

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"


@dataclass
class BackupEntry:
    """One backed-up path. ``backup`` is None when the file did not exist."""

    file: str
    backup: str | None


class BackupManager:
    """Copies every touched file into ``backups/<execution>-<timestamp>/``.

    Files that did not exist before the execution are recorded too, so a
    restore deletes whatever the execution created.
    """

    def __init__(self, files: FileStorage, backup_root: Path):
        self.files = files
        self.backup_root = backup_root

    def create(self, execution_id: str, paths: list[str], when: datetime) -> Path:
        timestamp = when.strftime("%Y-%m-%dT%H-%M-%S-%f")
        session = self.backup_root / f"{execution_id}-{timestamp}"
        session.mkdir(parents=True, exist_ok=True)

        manifest = []
        for index, path in enumerate(paths):
            if self.files.exists(path):
                backup_file = session / f"{index:03d}-{Path(path).name}.bak"
                backup_file.write_bytes(self.files.read_bytes(path))
                manifest.append({"file": path, "backup": backup_file.name})
            else:
                manifest.append({"file": path, "backup": None})

        (session / MANIFEST_NAME).write_text(json.dumps({
            "execution_id": execution_id,
            "timestamp": timestamp,
            "entries": manifest,
        }, indent=2))
        logger.debug("Backed up %d path(s) for %s into %s", len(paths), execution_id, session)
        return session

    def entries(self, session: Path) -> list[BackupEntry]:
        manifest = json.loads((session / MANIFEST_NAME).read_text())
        return [BackupEntry(file=e["file"], backup=e.get("backup")) for e in manifest["entries"]]

    def restore(self, session: Path) -> list[str]:
        """Put every backed-up path back to its pre-execution state."""
        restored = []
        for entry in self.entries(session):
            if entry.backup is None:
                self.files.delete(entry.file)
            else:
                self.files.write_bytes(entry.file, (session / entry.backup).read_bytes())
            restored.append(entry.file)
        logger.info("Restored %d path(s) from %s", len(restored), session)
        return restored

    def list_sessions(self) -> list[Path]:
        """Backup sessions, newest first."""
        if not self.backup_root.exists():
            return []
        sessions = [p for p in self.backup_root.iterdir() if (p / MANIFEST_NAME).exists()]
        return sorted(sessions, key=lambda p: p.stat().st_mtime, reverse=True)
