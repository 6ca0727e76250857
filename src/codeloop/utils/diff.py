"""Unified diffs and pre-write backups for the file tools."""

from __future__ import annotations

import difflib
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from codeloop.log import get_logger

logger = get_logger(__name__)

BACKUP_DIR = ".agent-backups"


def generate_diff(original: str, modified: str, filename: str = "file") -> str:
    """Unified diff of two texts without the ``---``/``+++`` header lines."""
    lines = difflib.unified_diff(
        original.splitlines(keepends=True),
        modified.splitlines(keepends=True),
        fromfile=f"a/{filename}",
        tofile=f"b/{filename}",
    )
    body = [line if line.endswith("\n") else line + "\n" for line in lines][2:]
    return "".join(body).rstrip("\n")


def change_stats(original: str, modified: str) -> tuple[int, int]:
    """Number of ``(added, removed)`` lines between two texts."""
    added = removed = 0
    for line in difflib.ndiff(original.splitlines(), modified.splitlines()):
        if line.startswith("+ "):
            added += 1
        elif line.startswith("- "):
            removed += 1
    return added, removed


@dataclass(frozen=True, slots=True)
class BackupInfo:
    backup_path: Path
    original_name: str
    timestamp: datetime
    size: int


class BackupManager:
    """Copies files into ``<workspace>/.agent-backups`` before they are overwritten."""

    def __init__(self, working_directory: str | Path):
        self._backup_dir = Path(working_directory) / BACKUP_DIR

    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    def create_backup(self, file_path: str | Path) -> Path | None:
        """Back up ``file_path``; returns None when there is nothing to back up yet."""
        source = Path(file_path)
        if not source.is_file():
            return None

        self._backup_dir.mkdir(parents=True, exist_ok=True)
        backup_path = self._backup_dir / f"{time.time_ns() // 1_000_000}-{source.name}"
        backup_path.write_bytes(source.read_bytes())
        logger.debug("backup_created", source=str(source), backup=str(backup_path))
        return backup_path

    def restore(self, backup_path: str | Path, original_path: str | Path) -> None:
        Path(original_path).write_bytes(Path(backup_path).read_bytes())
        logger.info("backup_restored", target=str(original_path), backup=str(backup_path))

    def list_backups(self, limit: int = 10) -> list[BackupInfo]:
        if not self._backup_dir.is_dir():
            return []

        backups = []
        for entry in self._backup_dir.iterdir():
            stamp, sep, name = entry.name.partition("-")
            if not sep or not stamp.isdigit():
                continue
            backups.append(
                BackupInfo(
                    backup_path=entry,
                    original_name=name,
                    timestamp=datetime.fromtimestamp(int(stamp) / 1000, tz=timezone.utc),
                    size=entry.stat().st_size,
                )
            )

        backups.sort(key=lambda b: b.timestamp, reverse=True)
        return backups[:limit]

    def clean_old_backups(self, keep_last: int = 50) -> int:
        stale = self.list_backups(limit=10_000)[keep_last:]
        for backup in stale:
            backup.backup_path.unlink(missing_ok=True)
        if stale:
            logger.info("backups_cleaned", removed=len(stale))
        return len(stale)
