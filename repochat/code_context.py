"""
Code context: the file tree and file contents of an ingested artifact.

Producers (archive extraction, repository traversal) build a CodeContext
with add_file(); once handed to the session store it is treated as
immutable.
"""

from __future__ import annotations

import base64
import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

from .config import LimitsConfig
from .exceptions import ResourceExhaustedError

logger = logging.getLogger(__name__)


def normalize_path(path: str) -> str:
    """Forward slashes, no leading ./ or /, no empty segments."""
    parts = [p for p in path.replace("\\", "/").split("/") if p and p != "."]
    return "/".join(parts)


@dataclass
class FileContent:
    """A file body, either raw text or base64 for binary data."""

    path: str
    content: str
    is_base64: bool = False


@dataclass
class TreeNode:
    """A node in the file tree. Directories have children, files do not."""

    name: str = ""
    is_dir: bool = True
    children: dict[str, TreeNode] = field(default_factory=dict)

    def add_path(self, path: str) -> None:
        """
        Add a file path below this node.

        Every segment but the last becomes a directory. Existing nodes are
        reused; a segment that was recorded as a file and later turns out to
        be an ancestor is promoted to a directory.
        """
        path = normalize_path(path)
        if not path:
            return

        parts = path.split("/")
        current = self
        for i, part in enumerate(parts):
            is_last = i == len(parts) - 1
            child = current.children.get(part)
            if child is None:
                child = TreeNode(name=part, is_dir=not is_last)
                current.children[part] = child
            elif not is_last and not child.is_dir:
                child.is_dir = True
            current = child

    def sorted_children(self) -> list[TreeNode]:
        """Directories first, then alphabetical."""
        return sorted(self.children.values(), key=lambda n: (not n.is_dir, n.name))

    def find(self, path: str) -> TreeNode | None:
        """Return the node at path, or None."""
        current = self
        for part in normalize_path(path).split("/"):
            if not part:
                continue
            current = current.children.get(part)
            if current is None:
                return None
        return current

    def render(self) -> str:
        """Render the tree with box-drawing connectors."""
        lines: list[str] = []
        self._render_into(lines, prefix="", is_last=True)
        return "\n".join(lines) + ("\n" if lines else "")

    def _render_into(self, lines: list[str], prefix: str, is_last: bool) -> None:
        if self.name:
            connector = "└── " if is_last else "├── "
            lines.append(prefix + connector + self.name)
            prefix += "    " if is_last else "│   "

        children = self.sorted_children()
        for i, child in enumerate(children):
            child._render_into(lines, prefix, i == len(children) - 1)


@dataclass
class CodeContext:
    """File tree plus normalized path -> content map."""

    file_tree: TreeNode = field(default_factory=TreeNode)
    file_contents: dict[str, FileContent] = field(default_factory=dict)

    def add_file(self, path: str, data: bytes | str) -> FileContent:
        """
        Record a file in both the tree and the content map.

        Text that decodes as UTF-8 without NUL bytes is stored as-is;
        anything else is base64-encoded.
        """
        path = normalize_path(path)
        if not path:
            raise ValueError("File path cannot be empty")

        if isinstance(data, str):
            entry = FileContent(path=path, content=data)
        else:
            entry = _encode(path, data)

        self.file_tree.add_path(path)
        self.file_contents[path] = entry
        return entry

    def text_files(self) -> Iterator[FileContent]:
        """Non-binary files in path order."""
        for path in sorted(self.file_contents):
            entry = self.file_contents[path]
            if not entry.is_base64:
                yield entry

    @property
    def file_count(self) -> int:
        return len(self.file_contents)

    @classmethod
    def from_files(cls, files: dict[str, bytes | str]) -> CodeContext:
        """Build a context from an in-memory path -> data mapping."""
        context = cls()
        for path, data in files.items():
            context.add_file(path, data)
        return context

    @classmethod
    def from_directory(cls, root: Path | str, limits: LimitsConfig | None = None) -> CodeContext:
        """
        Walk a local directory into a code context.

        Skips excluded directory prefixes, excluded extensions and files
        above limits.max_file_size.

        Raises:
            FileNotFoundError: If root is not a directory
            ResourceExhaustedError: If the total size exceeds limits.max_upload_size
        """
        limits = limits or LimitsConfig()
        root = Path(root)
        if not root.is_dir():
            raise FileNotFoundError(f"Not a directory: {root}")

        context = cls()
        total_bytes = 0
        skipped = 0

        for dirpath, dirnames, filenames in os.walk(root):
            rel_dir = normalize_path(os.path.relpath(dirpath, root))
            # Prune excluded directories in place so os.walk skips them
            dirnames[:] = sorted(
                d for d in dirnames
                if not _is_excluded_dir(f"{rel_dir}/{d}/" if rel_dir else f"{d}/", limits)
            )

            for name in sorted(filenames):
                rel_path = f"{rel_dir}/{name}" if rel_dir else name
                full_path = Path(dirpath) / name
                if os.path.splitext(name)[1].lower() in limits.excluded_extensions:
                    skipped += 1
                    continue

                # Dangling symlinks, sockets, FIFOs
                if not full_path.is_file():
                    logger.debug(f"Skipping non-regular file {rel_path}")
                    skipped += 1
                    continue

                try:
                    size = full_path.stat().st_size
                    if size > limits.max_file_size:
                        skipped += 1
                        continue
                    data = full_path.read_bytes()
                except OSError as e:
                    logger.warning(f"Skipping unreadable file {rel_path}: {e}")
                    skipped += 1
                    continue

                total_bytes += len(data)
                if total_bytes > limits.max_upload_size:
                    raise ResourceExhaustedError(
                        f"Directory exceeds maximum size of {limits.max_upload_size} bytes"
                    )

                context.add_file(rel_path, data)

        logger.info(f"Built code context from {root}: {context.file_count} files, {skipped} skipped")
        return context


def _is_excluded_dir(rel_dir: str, limits: LimitsConfig) -> bool:
    for prefix in limits.excluded_dir_prefixes:
        if rel_dir.startswith(prefix) or f"/{prefix}" in f"/{rel_dir}":
            return True
    return False


def _encode(path: str, data: bytes) -> FileContent:
    if b"\x00" not in data:
        try:
            return FileContent(path=path, content=data.decode("utf-8"))
        except UnicodeDecodeError:
            pass
    return FileContent(path=path, content=base64.b64encode(data).decode("ascii"), is_base64=True)


__all__ = ["CodeContext", "FileContent", "TreeNode", "normalize_path"]
