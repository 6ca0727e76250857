"""Workspace file tools: read, write, edit and list."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from codeloop.ai.tools.base import Tool, ToolContext, ToolErrorKind, ToolResult
from codeloop.ai.tools.params import read_bool_param, read_number_param, read_string_param
from codeloop.core.safety import can_write, validate_path, validate_write_extension
from codeloop.utils.diff import BackupManager, generate_diff

IGNORED_DIR_NAMES = frozenset({"node_modules"})

WRITE_MODES = ("overwrite", "append", "create")


def _format_size(size: float) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.0f}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}TB"


def _resolve(path: str, context: ToolContext) -> Path | ToolResult:
    validation = validate_path(path, context.working_directory, context.sandbox_policy)
    if not validation.allowed:
        return ToolResult.fail(validation.reason or "Access denied", ToolErrorKind.POLICY_DENIED)
    return validation.normalized_path


def _write_denied(context: ToolContext) -> ToolResult | None:
    if not can_write(context.sandbox_policy):
        return ToolResult.fail(
            "Write operations not allowed in read-only mode", ToolErrorKind.POLICY_DENIED
        )
    return None


class ReadFileTool(Tool):
    """Read a text file, optionally a 1-based inclusive line range."""

    @property
    def name(self) -> str:
        return "read_file"

    @property
    def description(self) -> str:
        return "Read the contents of a file. Returns the file content as text."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Path to the file to read (relative to working directory)",
                },
                "start_line": {
                    "type": "integer",
                    "description": "Optional. Start line number (1-indexed) for partial read",
                },
                "end_line": {
                    "type": "integer",
                    "description": "Optional. End line number (1-indexed) for partial read",
                },
            },
            "required": ["path"],
        }

    async def execute(self, args: dict[str, Any], context: ToolContext) -> ToolResult:
        path_str = read_string_param(args, "path", required=True)
        start_line = read_number_param(args, "start_line", integer=True, minimum=1)
        end_line = read_number_param(args, "end_line", integer=True, minimum=1)

        resolved = _resolve(path_str, context)
        if isinstance(resolved, ToolResult):
            return resolved

        if not resolved.exists():
            return ToolResult.fail(f"File not found: {path_str}")
        if not resolved.is_file():
            return ToolResult.fail(f"Not a file: {path_str}")

        size = resolved.stat().st_size
        max_bytes = context.max_file_size_kb * 1024
        if size > max_bytes:
            return ToolResult.fail(
                f"File too large: {round(size / 1024)}KB exceeds limit of {context.max_file_size_kb}KB"
            )

        try:
            content = resolved.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            return ToolResult.fail(f"'{path_str}' is a binary file and cannot be read as text.")

        lines = content.split("\n")
        if start_line is not None or end_line is not None:
            start = int(start_line or 1)
            end = min(len(lines), int(end_line or len(lines)))
            selected = "\n".join(lines[start - 1:end])
            return ToolResult.ok(
                f"[File: {path_str}, lines {start}-{end} of {len(lines)}]\n\n{selected}"
            )

        return ToolResult.ok(f"[File: {path_str}, {len(lines)} lines]\n\n{content}")


class WriteFileTool(Tool):
    @property
    def name(self) -> str:
        return "write_file"

    @property
    def description(self) -> str:
        return (
            "Write content to a file. Creates the file if it doesn't exist, or overwrites "
            "if it does. A backup is created before overwriting."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Path to the file to write (relative to working directory)",
                },
                "content": {"type": "string", "description": "Content to write to the file"},
                "mode": {
                    "type": "string",
                    "enum": list(WRITE_MODES),
                    "description": (
                        "'overwrite' (default) replaces the file, "
                        "'append' adds to the end, "
                        "'create' fails if the file exists"
                    ),
                },
            },
            "required": ["path", "content"],
        }

    @property
    def mutating(self) -> bool:
        return True

    async def execute(self, args: dict[str, Any], context: ToolContext) -> ToolResult:
        path_str = read_string_param(args, "path", required=True)
        content = read_string_param(args, "content", required=True, trim=False, allow_empty=True)
        mode = read_string_param(args, "mode", default="overwrite")
        if mode not in WRITE_MODES:
            return ToolResult.fail(
                f"Unknown write mode '{mode}'. Use one of: {', '.join(WRITE_MODES)}",
                ToolErrorKind.BAD_ARGUMENTS,
            )

        if denied := _write_denied(context):
            return denied

        resolved = _resolve(path_str, context)
        if isinstance(resolved, ToolResult):
            return resolved

        allowed, reason = validate_write_extension(resolved)
        if not allowed:
            return ToolResult.fail(reason or "Extension not allowed", ToolErrorKind.POLICY_DENIED)

        exists = resolved.is_file()
        if mode == "create" and exists:
            return ToolResult.fail(f"File already exists: {path_str}. Use mode 'overwrite' to replace.")

        original = resolved.read_text(encoding="utf-8", errors="replace") if exists else ""

        backup_path = None
        if exists and mode == "overwrite":
            backup_path = BackupManager(context.working_directory).create_backup(resolved)

        final_content = original + content if mode == "append" else content
        resolved.parent.mkdir(parents=True, exist_ok=True)
        resolved.write_text(final_content, encoding="utf-8")

        match (exists, mode):
            case (False, _):
                action = "created"
            case (True, "append"):
                action = "appended to"
            case _:
                action = "updated"

        output = f"Successfully {action} {path_str}"
        if backup_path is not None:
            output += f" (backup: {backup_path.name})"
        if exists and mode != "append":
            diff = generate_diff(original, final_content, path_str)
            if diff.strip():
                output += f"\n\nChanges:\n```diff\n{diff}\n```"

        return ToolResult.ok(output, modified_files=[str(resolved)])


class EditFileTool(Tool):
    """Exact search/replace inside one file."""

    @property
    def name(self) -> str:
        return "edit_file"

    @property
    def description(self) -> str:
        return (
            "Edit a file by replacing specific content. "
            "Use for targeted changes without rewriting the entire file."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Path to the file to edit (relative to working directory)",
                },
                "search": {"type": "string", "description": "The exact text to search for and replace"},
                "replace": {"type": "string", "description": "The text to replace the search text with"},
                "all": {
                    "type": "boolean",
                    "description": "If true, replace all occurrences. Default: false (first only)",
                },
            },
            "required": ["path", "search", "replace"],
        }

    @property
    def mutating(self) -> bool:
        return True

    async def execute(self, args: dict[str, Any], context: ToolContext) -> ToolResult:
        path_str = read_string_param(args, "path", required=True)
        search = read_string_param(args, "search", required=True, trim=False)
        replace = read_string_param(args, "replace", required=True, trim=False, allow_empty=True)
        replace_all = read_bool_param(args, "all")

        if denied := _write_denied(context):
            return denied

        resolved = _resolve(path_str, context)
        if isinstance(resolved, ToolResult):
            return resolved
        if not resolved.is_file():
            return ToolResult.fail(f"File not found: {path_str}")

        original = resolved.read_text(encoding="utf-8")
        occurrences = original.count(search)
        if occurrences == 0:
            return ToolResult.fail(
                "Search text not found in file. Make sure the text matches exactly including whitespace."
            )

        BackupManager(context.working_directory).create_backup(resolved)

        if replace_all:
            updated = original.replace(search, replace)
            replaced = occurrences
        else:
            updated = original.replace(search, replace, 1)
            replaced = 1

        resolved.write_text(updated, encoding="utf-8")
        diff = generate_diff(original, updated, path_str)
        return ToolResult.ok(
            f"Replaced {replaced} occurrence(s) in {path_str}\n\n```diff\n{diff}\n```",
            modified_files=[str(resolved)],
        )


class ListDirectoryTool(Tool):
    @property
    def name(self) -> str:
        return "list_directory"

    @property
    def description(self) -> str:
        return "List contents of a directory. Returns files and subdirectories with their sizes."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "Directory to list (relative to working directory). Use '.' for the root.",
                },
                "recursive": {
                    "type": "boolean",
                    "description": "If true, list contents recursively. Default: false",
                },
                "max_depth": {
                    "type": "integer",
                    "description": "Maximum depth for recursive listing. Default: 3",
                },
            },
            "required": ["path"],
        }

    async def execute(self, args: dict[str, Any], context: ToolContext) -> ToolResult:
        path_str = read_string_param(args, "path", default=".")
        recursive = read_bool_param(args, "recursive")
        max_depth = int(read_number_param(args, "max_depth", integer=True, minimum=0, default=3))

        resolved = _resolve(path_str, context)
        if isinstance(resolved, ToolResult):
            return resolved
        if not resolved.exists():
            return ToolResult.fail(f"Directory not found: {path_str}")
        if not resolved.is_dir():
            return ToolResult.fail(f"Not a directory: {path_str}")

        lines = self._walk(resolved, recursive, max_depth, 0)
        if not lines:
            return ToolResult.ok(f"Directory {path_str} is empty.")
        return ToolResult.ok(f"Contents of {path_str}:\n\n" + "\n".join(lines))

    def _walk(self, path: Path, recursive: bool, max_depth: int, depth: int) -> list[str]:
        lines = []
        indent = "  " * depth
        for entry in sorted(path.iterdir(), key=lambda p: p.name):
            if entry.name.startswith(".") or entry.name in IGNORED_DIR_NAMES:
                continue
            if entry.is_dir():
                lines.append(f"{indent}[DIR] {entry.name}/")
                if recursive and depth < max_depth:
                    lines.extend(self._walk(entry, recursive, max_depth, depth + 1))
            elif entry.is_file():
                lines.append(f"{indent}[FILE] {entry.name} ({_format_size(entry.stat().st_size)})")
        return lines
