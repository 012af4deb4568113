"""Sandboxed file operations."""

from __future__ import annotations

import shutil
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path

from pydantic import Field

from task_orchestrator.errors import ToolCapabilityError
from task_orchestrator.tools.base import StrictModel, ToolCapability, ToolKind, ToolOperation
from task_orchestrator.tools.sandbox import relative_name, resolve_in_sandbox

MAX_FILE_SIZE = 50 * 1024 * 1024
ALLOWED_EXTENSIONS = frozenset(
    {
        "txt", "json", "csv", "md", "xml", "html", "css", "js", "ts",
        "jpg", "jpeg", "png", "gif", "svg", "pdf", "doc", "docx",
        "xls", "xlsx", "zip", "tar", "gz", "py", "ipynb", "r", "rb", "php", "log",
    }
)
DISALLOWED_EXTENSIONS = frozenset(
    {
        "exe", "dll", "sh", "bat", "cmd", "com", "jar", "msi", "app",
        "dmg", "sys", "so", "dylib", "bin",
    }
)


class PathInput(StrictModel):
    path: str = Field(min_length=1)


class ReadFileOutput(StrictModel):
    path: str
    content: str
    size: int


class WriteFileInput(StrictModel):
    path: str = Field(min_length=1)
    content: str
    append: bool = False


class WriteFileOutput(StrictModel):
    path: str
    size: int


class ListDirectoryInput(StrictModel):
    path: str = "."


class DirectoryEntry(StrictModel):
    name: str
    is_directory: bool
    size: int


class ListDirectoryOutput(StrictModel):
    path: str
    entries: list[DirectoryEntry]


class CreateDirectoryOutput(StrictModel):
    path: str
    created: bool


class DeleteInput(StrictModel):
    path: str = Field(min_length=1)
    recursive: bool = False


class DeleteOutput(StrictModel):
    path: str
    deleted: bool


class TransferInput(StrictModel):
    source: str = Field(min_length=1)
    destination: str = Field(min_length=1)


class TransferOutput(StrictModel):
    source: str
    destination: str


class StatOutput(StrictModel):
    path: str
    exists: bool
    is_directory: bool = False
    size: int = 0
    modified_at: datetime | None = None


class FilesystemTool(ToolCapability):
    """Read and write files under the sandbox root with extension and size limits."""

    kind = ToolKind.FILESYSTEM

    def __init__(
        self,
        root: Path,
        *,
        max_file_size: int = MAX_FILE_SIZE,
        allowed_extensions: frozenset[str] = ALLOWED_EXTENSIONS,
        disallowed_extensions: frozenset[str] = DISALLOWED_EXTENSIONS,
    ) -> None:
        self.root = Path(root)
        self.max_file_size = max_file_size
        self.allowed_extensions = allowed_extensions
        self.disallowed_extensions = disallowed_extensions

    def initialize(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def operations(self) -> Mapping[str, ToolOperation]:
        return {
            "read_file": ToolOperation(PathInput, ReadFileOutput, self.read_file),
            "write_file": ToolOperation(WriteFileInput, WriteFileOutput, self.write_file),
            "list_directory": ToolOperation(
                ListDirectoryInput, ListDirectoryOutput, self.list_directory
            ),
            "create_directory": ToolOperation(
                PathInput, CreateDirectoryOutput, self.create_directory
            ),
            "delete": ToolOperation(DeleteInput, DeleteOutput, self.delete),
            "copy": ToolOperation(TransferInput, TransferOutput, self.copy),
            "move": ToolOperation(TransferInput, TransferOutput, self.move),
            "stat": ToolOperation(PathInput, StatOutput, self.stat),
        }

    def read_file(self, payload: PathInput) -> ReadFileOutput:
        path = self._file_path(payload.path)
        if not path.is_file():
            raise ToolCapabilityError(f"File not found: {payload.path}")
        size = path.stat().st_size
        self._check_size(size)
        return ReadFileOutput(
            path=relative_name(self.root, path),
            content=path.read_text(encoding="utf-8", errors="replace"),
            size=size,
        )

    def write_file(self, payload: WriteFileInput) -> WriteFileOutput:
        path = self._file_path(payload.path)
        encoded = payload.content.encode("utf-8")
        existing = path.stat().st_size if payload.append and path.exists() else 0
        self._check_size(existing + len(encoded))
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("ab" if payload.append else "wb") as handle:
            handle.write(encoded)
        return WriteFileOutput(path=relative_name(self.root, path), size=path.stat().st_size)

    def list_directory(self, payload: ListDirectoryInput) -> ListDirectoryOutput:
        path = resolve_in_sandbox(self.root, payload.path)
        if not path.is_dir():
            raise ToolCapabilityError(f"Directory not found: {payload.path}")
        entries = [
            DirectoryEntry(
                name=child.name,
                is_directory=child.is_dir(),
                size=0 if child.is_dir() else child.stat().st_size,
            )
            for child in sorted(path.iterdir(), key=lambda item: item.name)
        ]
        return ListDirectoryOutput(path=relative_name(self.root, path), entries=entries)

    def create_directory(self, payload: PathInput) -> CreateDirectoryOutput:
        path = resolve_in_sandbox(self.root, payload.path)
        existed = path.is_dir()
        path.mkdir(parents=True, exist_ok=True)
        return CreateDirectoryOutput(path=relative_name(self.root, path), created=not existed)

    def delete(self, payload: DeleteInput) -> DeleteOutput:
        path = resolve_in_sandbox(self.root, payload.path)
        if path == self.root.resolve():
            raise ToolCapabilityError("Refusing to delete the sandbox root")
        if not path.exists():
            return DeleteOutput(path=payload.path, deleted=False)
        if path.is_dir():
            if not payload.recursive:
                raise ToolCapabilityError(f"Directory delete requires recursive=true: {payload.path}")
            shutil.rmtree(path)
        else:
            path.unlink()
        return DeleteOutput(path=payload.path, deleted=True)

    def copy(self, payload: TransferInput) -> TransferOutput:
        source, destination = self._transfer_paths(payload)
        if source.is_dir():
            shutil.copytree(source, destination, dirs_exist_ok=True)
        else:
            shutil.copy2(source, destination)
        return TransferOutput(
            source=relative_name(self.root, source),
            destination=relative_name(self.root, destination),
        )

    def move(self, payload: TransferInput) -> TransferOutput:
        source, destination = self._transfer_paths(payload)
        shutil.move(str(source), str(destination))
        return TransferOutput(
            source=payload.source,
            destination=relative_name(self.root, destination),
        )

    def stat(self, payload: PathInput) -> StatOutput:
        path = resolve_in_sandbox(self.root, payload.path)
        if not path.exists():
            return StatOutput(path=payload.path, exists=False)
        info = path.stat()
        return StatOutput(
            path=relative_name(self.root, path),
            exists=True,
            is_directory=path.is_dir(),
            size=0 if path.is_dir() else info.st_size,
            modified_at=datetime.fromtimestamp(info.st_mtime, tz=UTC),
        )

    def _file_path(self, raw_path: str) -> Path:
        path = resolve_in_sandbox(self.root, raw_path)
        self._check_extension(path)
        return path

    def _transfer_paths(self, payload: TransferInput) -> tuple[Path, Path]:
        source = resolve_in_sandbox(self.root, payload.source)
        if not source.exists():
            raise ToolCapabilityError(f"Source not found: {payload.source}")
        destination = resolve_in_sandbox(self.root, payload.destination)
        if source.is_file():
            self._check_extension(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        return source, destination

    def _check_extension(self, path: Path) -> None:
        extension = path.suffix.lstrip(".").lower()
        if not extension:
            return
        if extension in self.disallowed_extensions:
            raise ToolCapabilityError(f"File extension not allowed: {extension}")
        if self.allowed_extensions and extension not in self.allowed_extensions:
            raise ToolCapabilityError(f"File extension not in allowed list: {extension}")

    def _check_size(self, size: int) -> None:
        if size > self.max_file_size:
            raise ToolCapabilityError(
                f"File size exceeds maximum allowed: {size} > {self.max_file_size}"
            )
