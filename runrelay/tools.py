"""
Local tools the hosted assistants can request.

Each tool has:
  - An OpenAI-compatible function schema (configured on the assistant).
  - A Python implementation that receives the parsed argument record and
    returns a ToolResult. Failures are reported in the result text, never raised.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Literal

ErrorKind = Literal["not_found", "failed"]


@dataclass(frozen=True)
class ToolResult:
    text: str
    error: ErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, text: str) -> "ToolResult":
        return cls(text=text)

    @classmethod
    def not_found(cls, target: str) -> "ToolResult":
        return cls(text=f"{target} does not exist.", error="not_found")

    @classmethod
    def failed(cls, verb: str, detail: str) -> "ToolResult":
        return cls(text=f"{verb} failed with error {detail}", error="failed")


ToolHandler = Callable[[Path, dict[str, Any]], ToolResult]


def _require(args: dict[str, Any], key: str) -> Any:
    if key not in args or args[key] is None:
        raise ValueError(f"missing required argument '{key}'")
    return args[key]


def _resolve(root: Path, path: str) -> Path:
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = root / candidate
    return candidate


def _io_failure(exc: OSError, target: str, verb: str) -> ToolResult:
    if isinstance(exc, FileNotFoundError):
        return ToolResult.not_found(target)
    return ToolResult.failed(verb, exc.strerror or str(exc))


# ---------------------------------------------------------------------------
# Tool implementations
# ---------------------------------------------------------------------------


def _list_files(root: Path, args: dict[str, Any]) -> ToolResult:
    path = str(args.get("path") or ".")
    resolved = _resolve(root, path)
    target = "Current directory" if path == "." else f"Directory {path}"
    try:
        names = sorted(entry.name for entry in resolved.iterdir())
    except OSError as exc:
        return _io_failure(exc, target, "Listing")
    return ToolResult.success(json.dumps(names, ensure_ascii=False, separators=(",", ":")))


def _create_file(root: Path, args: dict[str, Any]) -> ToolResult:
    file_path = str(_require(args, "filePath"))
    content = args.get("content")
    resolved = _resolve(root, file_path)
    try:
        resolved.parent.mkdir(parents=True, exist_ok=True)
        resolved.write_text(content if isinstance(content, str) else "", encoding="utf-8")
    except OSError as exc:
        return _io_failure(exc, f"File {file_path}", "Creation")
    return ToolResult.success(f"File {file_path} created successfully.")


def _delete_file(root: Path, args: dict[str, Any]) -> ToolResult:
    file_path = str(_require(args, "filePath"))
    try:
        _resolve(root, file_path).unlink()
    except OSError as exc:
        return _io_failure(exc, f"File {file_path}", "Deletion")
    return ToolResult.success(f"File {file_path} deleted successfully.")


def _rename_file(root: Path, args: dict[str, Any]) -> ToolResult:
    file_path = str(_require(args, "filePath"))
    new_file_path = str(_require(args, "newFilePath"))
    try:
        _resolve(root, file_path).rename(_resolve(root, new_file_path))
    except OSError as exc:
        return _io_failure(exc, f"File {file_path}", "Renaming")
    return ToolResult.success(f"File {file_path} renamed to {new_file_path} successfully.")


def _read_file(root: Path, args: dict[str, Any]) -> ToolResult:
    """Return the file with 1-based line numbers so patches can target ranges."""
    file_path = str(_require(args, "filePath"))
    try:
        data = _resolve(root, file_path).read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        return _io_failure(exc, f"File {file_path}", "Reading")
    return ToolResult.success("\n".join(f"{i}: {line}" for i, line in enumerate(data.split("\n"), start=1)))


def _patch_file(root: Path, args: dict[str, Any]) -> ToolResult:
    """Apply each patch in order as ``lines[fromLine:toLine] = replacementLines``."""
    file_path = str(_require(args, "filePath"))
    patches = _require(args, "patches")
    if not isinstance(patches, list):
        raise ValueError("'patches' must be a list")
    resolved = _resolve(root, file_path)
    try:
        lines = resolved.read_text(encoding="utf-8").split("\n")
    except OSError as exc:
        return _io_failure(exc, f"File {file_path}", "Patching")
    for patch in patches:
        from_line = int(_require(patch, "fromLine"))
        to_line = int(_require(patch, "toLine"))
        replacement = [str(line) for line in (patch.get("replacementLines") or [])]
        lines[from_line:to_line] = replacement
    try:
        resolved.write_text("\n".join(lines), encoding="utf-8")
    except OSError as exc:
        return _io_failure(exc, f"File {file_path}", "Patching")
    return ToolResult.success(f"File {file_path} patched successfully.")


# ---------------------------------------------------------------------------
# Tool registry
# ---------------------------------------------------------------------------


class ToolRegistry:
    """Maps tool name -> handler and schema. ``execute`` never raises."""

    def __init__(self, *, workspace_dir: str | Path) -> None:
        self.workspace_dir = Path(workspace_dir).expanduser().resolve()
        self._impls: dict[str, ToolHandler] = {}
        self._definitions: list[dict[str, Any]] = []

    def register(
        self,
        name: str,
        description: str,
        parameters: dict[str, Any],
        fn: ToolHandler,
    ) -> None:
        """Register a tool (schema + implementation)."""
        self._impls[name] = fn
        self._definitions = [d for d in self._definitions if d["function"]["name"] != name]
        self._definitions.append(
            {
                "type": "function",
                "function": {
                    "name": name,
                    "description": description,
                    "parameters": parameters,
                },
            }
        )

    def names(self) -> list[str]:
        return list(self._impls)

    def execute(self, name: str, args: dict[str, Any]) -> str:
        fn = self._impls.get(name)
        if fn is None:
            return f"Tool {name} not found"
        try:
            result = fn(self.workspace_dir, args)
        except Exception as exc:
            return f"Tool {name} failed with error {exc}"
        return result.text

    def definitions(self) -> list[dict[str, Any]]:
        return list(self._definitions)


_FILE_PATH_PARAM = {"type": "string", "description": "File path relative to the working directory."}


def default_tool_registry(workspace_dir: str | Path) -> ToolRegistry:
    registry = ToolRegistry(workspace_dir=workspace_dir)
    registry.register(
        name="list_files",
        description="List the files in the current directory as a JSON array of names.",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Directory to list. Defaults to the current directory."},
            },
            "required": [],
        },
        fn=_list_files,
    )
    registry.register(
        name="create_file",
        description="Create a file (or overwrite it) with the given content.",
        parameters={
            "type": "object",
            "properties": {
                "filePath": _FILE_PATH_PARAM,
                "content": {"type": "string", "description": "Content to write. Defaults to an empty file."},
            },
            "required": ["filePath"],
        },
        fn=_create_file,
    )
    registry.register(
        name="delete_file",
        description="Delete a file.",
        parameters={
            "type": "object",
            "properties": {"filePath": _FILE_PATH_PARAM},
            "required": ["filePath"],
        },
        fn=_delete_file,
    )
    registry.register(
        name="rename_file",
        description="Rename or move a file.",
        parameters={
            "type": "object",
            "properties": {
                "filePath": _FILE_PATH_PARAM,
                "newFilePath": {"type": "string", "description": "New path of the file."},
            },
            "required": ["filePath", "newFilePath"],
        },
        fn=_rename_file,
    )
    registry.register(
        name="read_file",
        description="Read a file. Each line is prefixed with its 1-based line number.",
        parameters={
            "type": "object",
            "properties": {"filePath": _FILE_PATH_PARAM},
            "required": ["filePath"],
        },
        fn=_read_file,
    )
    registry.register(
        name="patch_file",
        description=(
            "Replace line ranges of a file. Each patch replaces lines[fromLine:toLine] "
            "(0-based, end exclusive) with replacementLines; patches apply in order."
        ),
        parameters={
            "type": "object",
            "properties": {
                "filePath": _FILE_PATH_PARAM,
                "patches": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "fromLine": {"type": "integer"},
                            "toLine": {"type": "integer"},
                            "replacementLines": {"type": "array", "items": {"type": "string"}},
                        },
                        "required": ["fromLine", "toLine", "replacementLines"],
                    },
                },
            },
            "required": ["filePath", "patches"],
        },
        fn=_patch_file,
    )
    return registry
