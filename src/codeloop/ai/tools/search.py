"""Regex search across workspace files."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

from codeloop.ai.tools.base import Tool, ToolContext, ToolErrorKind, ToolResult
from codeloop.ai.tools.params import read_bool_param, read_number_param, read_string_param
from codeloop.core.safety import validate_path

IGNORED_DIRS = frozenset({"node_modules", ".git", "dist", "build", "coverage", "__pycache__", ".venv"})
IGNORED_SUFFIXES = (".min.js", ".map")
DEFAULT_EXTENSIONS = frozenset(
    {
        ".py", ".ts", ".tsx", ".js", ".jsx", ".json", ".md", ".go", ".rs",
        ".java", ".c", ".cpp", ".h", ".css", ".html", ".yaml", ".yml", ".toml",
    }
)
MAX_FILES = 1000
MAX_LINE_LENGTH = 200


def _candidate_files(root: Path, file_pattern: str | None) -> list[Path]:
    if root.is_file():
        return [root]

    files: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in IGNORED_DIRS and d != ".agent-backups")
        base = Path(dirpath)
        for filename in sorted(filenames):
            if filename.endswith(IGNORED_SUFFIXES):
                continue
            path = base / filename
            if file_pattern:
                if not (path.match(file_pattern) or Path(filename).match(file_pattern)):
                    continue
            elif path.suffix.lower() not in DEFAULT_EXTENSIONS:
                continue
            files.append(path)
            if len(files) >= MAX_FILES:
                return files
    return files


class GrepSearchTool(Tool):
    @property
    def name(self) -> str:
        return "grep_search"

    @property
    def description(self) -> str:
        return "Search for text patterns in files. Returns matching lines with file paths and line numbers."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Text or regex pattern to search for"},
                "path": {
                    "type": "string",
                    "description": "Directory or file to search in (relative to working directory). Default: '.'",
                },
                "file_pattern": {
                    "type": "string",
                    "description": "Glob pattern to filter files, e.g. '*.py'",
                },
                "case_sensitive": {"type": "boolean", "description": "Case sensitive search. Default: false"},
                "max_results": {
                    "type": "integer",
                    "description": "Maximum number of matches to return. Default: 50",
                },
            },
            "required": ["pattern"],
        }

    async def execute(self, args: dict[str, Any], context: ToolContext) -> ToolResult:
        pattern = read_string_param(args, "pattern", required=True, trim=False)
        path_str = read_string_param(args, "path", default=".")
        file_pattern = read_string_param(args, "file_pattern")
        case_sensitive = read_bool_param(args, "case_sensitive")
        max_results = int(read_number_param(args, "max_results", integer=True, minimum=1, default=50))

        validation = validate_path(path_str, context.working_directory, context.sandbox_policy)
        if not validation.allowed:
            return ToolResult.fail(validation.reason or "Access denied", ToolErrorKind.POLICY_DENIED)
        root = validation.normalized_path
        if not root.exists():
            return ToolResult.fail(f"Path not found: {path_str}")

        flags = 0 if case_sensitive else re.IGNORECASE
        try:
            regex = re.compile(pattern, flags)
        except re.error:
            regex = re.compile(re.escape(pattern), flags)

        files = _candidate_files(root, file_pattern)
        if not files:
            return ToolResult.ok("No files found matching the search criteria.")

        by_file: dict[str, list[str]] = {}
        total = 0
        for file in files:
            if total >= max_results:
                break
            try:
                text = file.read_text(encoding="utf-8")
            except (UnicodeDecodeError, OSError):
                continue
            for lineno, line in enumerate(text.splitlines(), start=1):
                if regex.search(line):
                    rel = os.path.relpath(file, context.working_directory)
                    by_file.setdefault(rel, []).append(f"  L{lineno}: {line.strip()[:MAX_LINE_LENGTH]}")
                    total += 1
                    if total >= max_results:
                        break

        if not total:
            return ToolResult.ok(f'No matches found for "{pattern}" in {len(files)} files.')

        lines = [f'Found {total} matches for "{pattern}" in {len(files)} files:', ""]
        for rel, matches in by_file.items():
            lines.append(f"{rel}:")
            lines.extend(matches)
            lines.append("")
        if total >= max_results:
            lines.append(f"(Results truncated at {max_results})")
        return ToolResult.ok("\n".join(lines).rstrip())
