"""Tests for execution backups."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from codevolve.refactor.backup import MANIFEST_NAME, BackupManager
from codevolve.storage.files import FileStorage

WHEN = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def files(project: Path) -> FileStorage:
    return FileStorage(project)


@pytest.fixture
def backups(files: FileStorage, project: Path) -> BackupManager:
    return BackupManager(files, project / ".codevolve" / "backups")


class TestBackupManager:
    def test_restore_is_byte_identical(self, backups: BackupManager, files: FileStorage, project: Path):
        """Restoring puts back exact bytes and removes files that did not exist."""
        original = b"x = 1\r\n# \xc3\xa9\n"
        (project / "app" / "a.py").write_bytes(original)
        session = backups.create("exec-1", ["app/a.py", "app/new.py"], WHEN)

        files.write_text("app/a.py", "x = 2\n")
        files.write_text("app/new.py", "y = 1\n")
        restored = backups.restore(session)

        assert restored == ["app/a.py", "app/new.py"]
        assert (project / "app" / "a.py").read_bytes() == original
        assert not (project / "app" / "new.py").exists()

    def test_manifest_layout(self, backups: BackupManager, project: Path):
        """Sessions are named by execution and timestamp and carry a manifest."""
        (project / "app" / "a.py").write_text("x = 1\n")
        session = backups.create("exec-1", ["app/a.py"], WHEN)

        assert session.name == "exec-1-2026-03-10T12-00-00-000000"
        manifest = json.loads((session / MANIFEST_NAME).read_text())
        assert manifest["execution_id"] == "exec-1"
        assert [e["file"] for e in manifest["entries"]] == ["app/a.py"]
        assert backups.list_sessions() == [session]

