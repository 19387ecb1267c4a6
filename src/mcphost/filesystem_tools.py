"""
Filesystem tools.

The catalog mirrors the MCP filesystem server: read, write and edit files,
create, list, tree and move directories, search by glob pattern, stat a
path and list the allowed roots. Every path goes through the PathSandbox
before the filesystem is touched, and a rejected path comes back as a
ToolFailure naming the path instead of an exception.

Handlers are async; the blocking filesystem work runs in a worker thread.
"""

import asyncio
import difflib
import functools
import logging
import os
import re
import shutil
import stat
import tempfile
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from mcphost.sandbox import PathSandbox, SandboxViolation
from mcphost.schema import ParameterSpec, ToolDefinition
from mcphost.tools import ToolRegistry
from mcphost.types import ToolFailure

logger = logging.getLogger(__name__)

FILESYSTEM_TAG = "filesystem"


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """
    Translate a glob with * and ? into an anchored, case-insensitive regex.

    Every other character matches literally.
    """
    parts = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE | re.DOTALL)


def _file_tool(
    func: Callable[["FilesystemTools", dict[str, Any]], Any],
) -> Callable[["FilesystemTools", dict[str, Any]], Awaitable[Any]]:
    """Run a blocking tool body in a thread and turn path errors into ToolFailure."""

    @functools.wraps(func)
    async def wrapper(self: "FilesystemTools", args: dict[str, Any]) -> Any:
        try:
            return await asyncio.to_thread(func, self, args)
        except SandboxViolation as e:
            return ToolFailure(str(e), {"path": e.path})
        except FileNotFoundError as e:
            path = e.filename or args.get("path")
            return ToolFailure(f"No such file or directory: {path}", {"path": str(path)})
        except OSError as e:
            path = e.filename or args.get("path")
            return ToolFailure(f"{e.strerror or e}: {path}", {"path": str(path)})
        except ValueError as e:
            return ToolFailure(str(e), {"path": str(args.get("path", ""))})

    return wrapper


def _atomic_write(path: Path, text: str, newline: str | None = None) -> None:
    """Write through a temp file in the same directory, then swap it in."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline=newline) as handle:
            handle.write(text)
        if path.exists():
            shutil.copymode(path, tmp_name)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _dominant_newline(text: str) -> str:
    crlf = text.count("\r\n")
    return "\r\n" if crlf > text.count("\n") - crlf else "\n"


def _match_line_endings(buffer: str, old: str, new: str) -> tuple[str, str]:
    """
    Rewrite old/new to the line endings found at the match site.

    Multi-line oldText is tried as LF first, then CRLF; newText follows
    whichever matched. Single-line oldText gives newlines in newText the
    buffer's dominant ending. Lines no edit touches keep their own endings.
    """
    old = old.replace("\r\n", "\n")
    new = new.replace("\r\n", "\n")
    if "\n" in old:
        if old not in buffer:
            crlf_old = old.replace("\n", "\r\n")
            if crlf_old in buffer:
                return crlf_old, new.replace("\n", "\r\n")
        return old, new
    return old, new.replace("\n", _dominant_newline(buffer))


def apply_edits(text: str, edits: list[dict[str, Any]]) -> str:
    """
    Apply exact-text replacements in order against a buffer.

    Each edit replaces oldText with newText. oldText must occur exactly
    once unless the edit sets replaceAll. Any failing edit raises
    ValueError and nothing of the set is applied.
    """
    buffer = text
    for index, edit in enumerate(edits, start=1):
        if not edit["oldText"]:
            raise ValueError(f"Edit {index}: oldText must not be empty")
        old, new = _match_line_endings(buffer, edit["oldText"], edit["newText"])
        count = buffer.count(old)
        if count == 0:
            raise ValueError(f"Edit {index}: oldText not found in file: {old[:100]}")
        if count > 1 and not edit.get("replaceAll", False):
            raise ValueError(
                f"Edit {index}: oldText appears {count} times. Set replaceAll to replace "
                "every occurrence, or include more context to make it unique."
            )
        buffer = buffer.replace(old, new)
    return buffer


class FilesystemTools:
    """Sandboxed filesystem tool handlers."""

    def __init__(self, sandbox: PathSandbox) -> None:
        self.sandbox = sandbox

    @_file_tool
    def read_file(self, args: dict[str, Any]) -> str:
        path = self.sandbox.validate(args["path"])
        return path.read_text(encoding="utf-8", errors="replace")

    async def read_multiple_files(self, args: dict[str, Any]) -> list[dict[str, Any]]:
        """Read several files; a failure on one file is reported inline."""
        results = []
        for raw_path in args["paths"]:
            outcome = await self.read_file({"path": raw_path})
            if isinstance(outcome, ToolFailure):
                results.append({"path": raw_path, "error": outcome.error})
            else:
                results.append({"path": raw_path, "content": outcome})
        return results

    @_file_tool
    def write_file(self, args: dict[str, Any]) -> str:
        path = self.sandbox.validate(args["path"])
        if not path.parent.is_dir():
            raise FileNotFoundError(2, "No such file or directory", str(path.parent))
        _atomic_write(path, args["content"])
        return f"Successfully wrote to {args['path']}"

    @_file_tool
    def edit_file(self, args: dict[str, Any]) -> dict[str, Any]:
        """Apply all edits or none; dryRun only reports the diff."""
        path = self.sandbox.validate(args["path"])
        with path.open("r", encoding="utf-8", newline="") as handle:
            original = handle.read()

        edits = args["edits"]
        updated = apply_edits(original, edits)

        diff = "".join(difflib.unified_diff(
            original.splitlines(keepends=True),
            updated.splitlines(keepends=True),
            fromfile=str(path),
            tofile=str(path),
        ))

        dry_run = args.get("dryRun", False)
        if not dry_run:
            _atomic_write(path, updated, newline="")
            logger.info(f"Edited {path} ({len(edits)} edit(s))")
        return {"path": str(path), "diff": diff, "dryRun": dry_run}

    @_file_tool
    def create_directory(self, args: dict[str, Any]) -> str:
        path = self.sandbox.validate(args["path"])
        path.mkdir(parents=True, exist_ok=True)
        return f"Successfully created directory {args['path']}"

    @_file_tool
    def list_directory(self, args: dict[str, Any]) -> str:
        path = self.sandbox.validate(args["path"])
        lines = []
        with os.scandir(path) as entries:
            for entry in sorted(entries, key=lambda e: e.name.lower()):
                try:
                    kind = "[DIR]" if entry.is_dir() else "[FILE]"
                except OSError:
                    continue
                lines.append(f"{kind} {entry.name}")
        return "\n".join(lines)

    @_file_tool
    def directory_tree(self, args: dict[str, Any]) -> list[dict[str, Any]]:
        path = self.sandbox.validate(args["path"])
        if not path.is_dir():
            raise NotADirectoryError(20, "Not a directory", str(path))
        return self._tree(path, args.get("maxDepth"), depth=1)

    def _tree(self, path: Path, max_depth: int | None, depth: int) -> list[dict[str, Any]]:
        try:
            entries = sorted(os.scandir(path), key=lambda e: e.name.lower())
        except PermissionError:
            logger.debug(f"Skipping unreadable directory: {path}")
            return []

        nodes: list[dict[str, Any]] = []
        for entry in entries:
            try:
                is_dir = entry.is_dir(follow_symlinks=False)
            except OSError:
                continue
            node: dict[str, Any] = {"name": entry.name, "type": "directory" if is_dir else "file"}
            if is_dir:
                if max_depth is None or depth < max_depth:
                    node["children"] = self._tree(Path(entry.path), max_depth, depth + 1)
                else:
                    node["children"] = []
            nodes.append(node)
        return nodes

    def _entry_path(self, raw: str) -> Path:
        """
        Sandbox-checked path to a directory entry itself.

        The full path is validated with symlinks resolved, but the final
        component is kept so a symlink names the link and not its target.
        """
        self.sandbox.validate(raw)
        path = Path(raw).expanduser()
        if path.name in ("", ".", ".."):
            return self.sandbox.validate(raw)
        return self.sandbox.validate(path.parent) / path.name

    @_file_tool
    def move_file(self, args: dict[str, Any]) -> str:
        source = self._entry_path(args["source"])
        destination = self._entry_path(args["destination"])
        if not source.exists() and not source.is_symlink():
            raise FileNotFoundError(2, "No such file or directory", args["source"])
        if destination.exists() or destination.is_symlink():
            raise FileExistsError(17, "Destination already exists", args["destination"])
        shutil.move(str(source), str(destination))
        return f"Successfully moved {args['source']} to {args['destination']}"

    @_file_tool
    def search_files(self, args: dict[str, Any]) -> list[str]:
        """Recursive name search; unreadable directories are skipped."""
        root = self.sandbox.validate(args["path"])
        include = glob_to_regex(args["pattern"])
        excludes = [glob_to_regex(p) for p in args.get("excludePatterns", [])]

        def skip(error: OSError) -> None:
            logger.debug(f"Skipping during search: {error.filename}: {error.strerror}")

        matches = []
        for dirpath, dirnames, filenames in os.walk(root, onerror=skip):
            for name in sorted(dirnames) + sorted(filenames):
                if include.match(name):
                    matches.append(Path(dirpath) / name)

        results = []
        for match in matches:
            relative = match.relative_to(root).as_posix()
            if any(p.match(match.name) or p.match(relative) for p in excludes):
                continue
            results.append(str(match))
        return results

    @_file_tool
    def get_file_info(self, args: dict[str, Any]) -> dict[str, Any]:
        path = self.sandbox.validate(args["path"])
        info = path.stat()
        created = getattr(info, "st_birthtime", info.st_ctime)
        return {
            "path": str(path),
            "size": info.st_size,
            "created": datetime.fromtimestamp(created, UTC).isoformat(),
            "modified": datetime.fromtimestamp(info.st_mtime, UTC).isoformat(),
            "accessed": datetime.fromtimestamp(info.st_atime, UTC).isoformat(),
            "isDirectory": stat.S_ISDIR(info.st_mode),
            "isFile": stat.S_ISREG(info.st_mode),
            "permissions": oct(stat.S_IMODE(info.st_mode))[2:],
        }

    async def list_allowed_directories(self, args: dict[str, Any]) -> list[str]:
        return [str(root) for root in self.sandbox.roots]

    def definitions(self) -> list[tuple[ToolDefinition, Callable[[dict[str, Any]], Awaitable[Any]]]]:
        """Every filesystem tool paired with its handler."""
        tags = frozenset({FILESYSTEM_TAG})
        path_param = ParameterSpec("path", "string", "Path to operate on", required=True)
        edit_item = ParameterSpec(
            "edit",
            "object",
            properties=(
                ParameterSpec("oldText", "string", "Exact text to replace", required=True),
                ParameterSpec("newText", "string", "Replacement text", required=True),
                ParameterSpec("replaceAll", "boolean", "Replace every occurrence", default=False),
            ),
        )

        def tool(name: str, description: str, *params: ParameterSpec) -> ToolDefinition:
            return ToolDefinition(name=name, description=description, parameters=params, tags=tags)

        return [
            (tool("read_file", "Read the complete contents of a file.", path_param), self.read_file),
            (tool(
                "read_multiple_files",
                "Read several files at once. Failed reads are reported per file.",
                ParameterSpec("paths", "array", "Files to read", required=True,
                              items=ParameterSpec("path", "string")),
            ), self.read_multiple_files),
            (tool(
                "write_file",
                "Create a new file or overwrite an existing one.",
                path_param,
                ParameterSpec("content", "string", "Text to write", required=True),
            ), self.write_file),
            (tool(
                "edit_file",
                "Apply exact-text replacements to a file and return a unified diff. "
                "Either every edit applies or the file is left untouched.",
                path_param,
                ParameterSpec("edits", "array", "Replacements applied in order", required=True,
                              items=edit_item),
                ParameterSpec("dryRun", "boolean", "Only preview the diff", default=False),
            ), self.edit_file),
            (tool("create_directory", "Create a directory, including parents.", path_param),
             self.create_directory),
            (tool("list_directory", "List entries of a directory, marked [DIR] or [FILE].",
                  path_param), self.list_directory),
            (tool(
                "directory_tree",
                "Recursive tree of a directory as nested JSON.",
                path_param,
                ParameterSpec("maxDepth", "integer", "Levels to descend"),
            ), self.directory_tree),
            (tool(
                "move_file",
                "Move or rename a file or directory. Fails if the destination exists.",
                ParameterSpec("source", "string", "Existing path", required=True),
                ParameterSpec("destination", "string", "New path", required=True),
            ), self.move_file),
            (tool(
                "search_files",
                "Recursively find files and directories whose name matches a glob "
                "pattern (* and ?), case-insensitive.",
                path_param,
                ParameterSpec("pattern", "string", "Glob pattern for names", required=True),
                ParameterSpec("excludePatterns", "array", "Glob patterns to leave out",
                              default=[], items=ParameterSpec("pattern", "string")),
            ), self.search_files),
            (tool("get_file_info", "Size, timestamps, type and permissions of a path.",
                  path_param), self.get_file_info),
            (tool("list_allowed_directories", "Directories the file tools may access."),
             self.list_allowed_directories),
        ]

    def register(self, registry: ToolRegistry) -> None:
        for definition, handler in self.definitions():
            registry.register(definition, handler)
