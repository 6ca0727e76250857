"""Working context per session: project type, git state and the files it touched.

The context is rendered into the system prompt of a new session. File tracking
lives in memory only; it is a hint for the model and for /status, not state.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from codeloop.ai.tools.git import run_git
from codeloop.log import get_logger

logger = get_logger(__name__)

MAX_RECENT_FILES = 10
GIT_QUERY_TIMEOUT = 5

# Checked in order; the first marker file present decides.
PROJECT_MARKERS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("requirements.txt", "pyproject.toml"), "Python"),
    (("go.mod",), "Go"),
    (("Cargo.toml",), "Rust"),
    (("pom.xml", "build.gradle"), "Java"),
    (("composer.json",), "PHP"),
    (("Gemfile",), "Ruby"),
)

NODE_FRAMEWORKS = (("next", "Next.js"), ("react", "React"), ("vue", "Vue"), ("express", "Express"))


@dataclass
class SessionContext:
    working_directory: str
    project_type: str = "unknown"
    git_branch: Optional[str] = None
    git_status: Optional[str] = None
    recent_files: list[str] = field(default_factory=list)
    modified_files: list[str] = field(default_factory=list)

    def format(self) -> str:
        """One line for the system prompt."""
        parts = [f"Working directory: `{self.working_directory}`"]
        if self.project_type != "unknown":
            parts.append(f"Project: {self.project_type}")
        if self.git_branch:
            git = f"Git: `{self.git_branch}`"
            if self.git_status and self.git_status != "clean":
                git += f" ({self.git_status})"
            parts.append(git)
        if self.modified_files:
            parts.append("Modified: " + ", ".join(f"`{f}`" for f in self.modified_files[:5]))
        return " | ".join(parts)


def _node_project_type(package_json: Path) -> str:
    try:
        manifest = json.loads(package_json.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return "Node.js"
    deps = {**manifest.get("devDependencies", {}), **manifest.get("dependencies", {})}
    for package, label in NODE_FRAMEWORKS:
        if package in deps:
            return label
    return "Node.js"


async def _query_git(cwd: str, *args: str) -> Optional[str]:
    try:
        exit_code, output, _ = await run_git(list(args), cwd, timeout=GIT_QUERY_TIMEOUT)
    except (OSError, asyncio.TimeoutError) as e:
        logger.debug("git_query_failed", args=args, error=str(e))
        return None
    return output if exit_code == 0 else None


class ContextManager:
    def __init__(self):
        self._recent: dict[str, list[str]] = {}
        self._modified: dict[str, list[str]] = {}
        self._project_types: dict[str, str] = {}

    def track_file_access(self, session_id: str, path: str) -> None:
        """Move ``path`` to the front of the session's recently read files."""
        files = [f for f in self._recent.get(session_id, []) if f != path]
        files.insert(0, path)
        self._recent[session_id] = files[:MAX_RECENT_FILES]

    def track_file_modified(self, session_id: str, path: str) -> None:
        files = self._modified.setdefault(session_id, [])
        if path not in files:
            files.append(path)

    def recent_files(self, session_id: str) -> list[str]:
        return list(self._recent.get(session_id, []))

    def modified_files(self, session_id: str) -> list[str]:
        return list(self._modified.get(session_id, []))

    def clear_modified_files(self, session_id: str) -> None:
        self._modified.pop(session_id, None)

    def clear(self, session_id: str) -> None:
        self._recent.pop(session_id, None)
        self._modified.pop(session_id, None)
        logger.debug("context_cleared", session_id=session_id)

    def detect_project_type(self, working_directory: str) -> str:
        cached = self._project_types.get(working_directory)
        if cached is not None:
            return cached

        root = Path(working_directory)
        try:
            names = {p.name for p in root.iterdir()}
        except OSError:
            return "unknown"

        project_type = "unknown"
        if "package.json" in names:
            project_type = _node_project_type(root / "package.json")
        else:
            for markers, label in PROJECT_MARKERS:
                if any(m in names for m in markers):
                    project_type = label
                    break

        self._project_types[working_directory] = project_type
        return project_type

    async def git_branch(self, working_directory: str) -> Optional[str]:
        return await _query_git(working_directory, "branch", "--show-current") or None

    async def git_status(self, working_directory: str) -> Optional[str]:
        """``clean``, up to five short-status entries, or a changed-file count."""
        output = await _query_git(working_directory, "status", "--short")
        if output is None:
            return None
        lines = [line.strip() for line in output.splitlines() if line.strip()]
        if not lines:
            return "clean"
        if len(lines) <= 5:
            return ", ".join(lines)
        return f"{len(lines)} files changed"

    async def build(self, session_id: str, working_directory: str) -> SessionContext:
        branch, status = await asyncio.gather(
            self.git_branch(working_directory), self.git_status(working_directory)
        )
        return SessionContext(
            working_directory=working_directory,
            project_type=self.detect_project_type(working_directory),
            git_branch=branch,
            git_status=status,
            recent_files=self.recent_files(session_id),
            modified_files=self.modified_files(session_id),
        )
