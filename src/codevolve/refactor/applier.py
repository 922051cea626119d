"""Applies a suggestion's file changes in order."""

from __future__ import annotations

import logging

from codevolve.core.errors import ValidationError
from codevolve.core.models import ChangeOperation, FileChange
from codevolve.storage.files import FileStorage

logger = logging.getLogger(__name__)


class ChangeApplier:
    """Writes, removes or moves files for each :class:`FileChange`."""

    def __init__(self, files: FileStorage):
        self.files = files

    def apply(self, change: FileChange) -> None:
        if change.operation in (ChangeOperation.CREATE, ChangeOperation.UPDATE):
            if change.new_content is None:
                raise ValidationError(f"{change.operation.value} of {change.file} has no content")
            self.files.write_text(change.file, change.new_content)
        elif change.operation == ChangeOperation.DELETE:
            self.files.delete(change.file)
        elif change.operation == ChangeOperation.RENAME:
            self.files.rename(change.old_path or change.file, change.new_path or "")
        logger.debug("Applied %s to %s", change.operation.value, change.file)

    def apply_all(self, changes: list[FileChange]) -> None:
        for change in changes:
            self.apply(change)
