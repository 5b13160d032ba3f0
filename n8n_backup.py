"""
Write-once snapshots of full workflow documents.

BackupStore holds the automatic pre-mutation snapshots taken before every
delete and update. VersionStore holds versions the user saves explicitly,
one directory per workflow name.
"""

import json
import logging
import re
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from n8n_errors import LocalIoError
from n8n_workflow import sanitize_backup_name

logger = logging.getLogger(__name__)


def _dump(doc: Any) -> str:
    return json.dumps(doc, indent=2, ensure_ascii=False) + "\n"


def _write_once(path: Path, text: str) -> Path:
    """Create ``path`` exclusively; pick ``-N`` suffixes on collision."""
    candidate = path
    for n in range(1, 1000):
        try:
            with candidate.open("x", encoding="utf-8") as f:
                f.write(text)
            return candidate
        except FileExistsError:
            candidate = path.with_name(f"{path.stem}-{n}{path.suffix}")
    raise FileExistsError(path)


class BackupStore:
    def __init__(self, directory: Path, clock: Callable[[], datetime] | None = None):
        self.directory = Path(directory)
        self._clock = clock or datetime.now

    def stamp(self) -> str:
        return self._clock().strftime("%Y%m%d-%H%M%S")

    def snapshot_path(self, workflow_id: Any, name: str | None) -> Path:
        """Where ``snapshot`` would write right now. Writes nothing."""
        return self.directory / f"{self.stamp()}__{workflow_id or 'noid'}__{sanitize_backup_name(name)}.json"

    def snapshot(self, workflow_id: Any, name: str | None, workflow: dict[str, Any]) -> Path:
        """
        Persist the full, uncleaned ``workflow`` before it gets mutated.

        Raises:
            LocalIoError: the snapshot could not be written; callers must not
                go on to mutate the remote workflow.
        """
        path = self.snapshot_path(workflow_id, name)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path = _write_once(path, _dump(workflow))
        except (OSError, TypeError, ValueError) as e:
            raise LocalIoError(path, e) from e
        logger.info("Backup of workflow %s written to %s", workflow_id, path)
        return path

    def list_versions(self, name: str | None) -> list[Path]:
        """Snapshots of the workflow called ``name``, newest first."""
        suffix = f"__{sanitize_backup_name(name)}"
        if not self.directory.is_dir():
            return []
        found = [
            p for p in self.directory.glob("*.json")
            if re.sub(r"-\d+$", "", p.stem).endswith(suffix)
        ]
        return sorted(found, key=lambda p: p.name, reverse=True)


class VersionStore:
    """Explicitly saved versions under ``<root>/<safe-name>/<timestamp>[__comment].json``."""

    def __init__(self, root: Path, clock: Callable[[], datetime] | None = None):
        self.root = Path(root)
        self._clock = clock or datetime.now

    def directory_for(self, name: str | None) -> Path:
        return self.root / sanitize_backup_name(name or "untitled_workflow")

    def save(self, name: str | None, workflow: dict[str, Any], comment: str = "") -> Path:
        directory = self.directory_for(name)
        timestamp = self._clock().strftime("%Y-%m-%d_%H-%M-%S")
        safe_comment = re.sub(r"[^a-z0-9._-]+", "_", (comment or "").strip(), flags=re.IGNORECASE).strip("_")
        filename = f"{timestamp}__{safe_comment}.json" if safe_comment else f"{timestamp}.json"
        try:
            directory.mkdir(parents=True, exist_ok=True)
            path = _write_once(directory / filename, _dump(workflow))
        except OSError as e:
            raise LocalIoError(directory / filename, e) from e
        logger.info("Saved version of '%s' to %s", name, path)
        return path

    def list(self, name: str | None) -> list[Path]:
        directory = self.directory_for(name)
        if not directory.is_dir():
            return []
        return sorted(directory.glob("*.json"), key=lambda p: p.name, reverse=True)
