"""Per-group file workspace on local disk."""

from __future__ import annotations

import re
from pathlib import Path

from pocketclaw.config import MEMORY_FILE

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class GroupWorkspace:
    """Files owned by one conversation group, rooted under a shared directory.

    Every group gets its own directory. Relative paths passed by tools are
    resolved inside it and may not escape it.
    """

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    def group_dir(self, group_id: str) -> Path:
        path = self._root / _UNSAFE_CHARS.sub("_", group_id)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def resolve(self, group_id: str, path: str) -> Path:
        base = self.group_dir(group_id).resolve()
        target = (base / path).resolve()
        if target != base and base not in target.parents:
            raise ValueError(f"Path escapes the group workspace: {path}")
        return target

    def read_file(self, group_id: str, path: str) -> str:
        target = self.resolve(group_id, path)
        if not target.is_file():
            raise FileNotFoundError(f"File not found: {path}")
        return target.read_text(encoding="utf-8")

    def write_file(self, group_id: str, path: str, content: str) -> None:
        target = self.resolve(group_id, path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")

    def list_files(self, group_id: str, path: str = ".") -> list[str]:
        target = self.resolve(group_id, path)
        if not target.is_dir():
            raise NotADirectoryError(f"Not a directory: {path}")
        return sorted(
            f"{entry.name}/" if entry.is_dir() else entry.name for entry in target.iterdir()
        )

    def load_memory(self, group_id: str) -> str | None:
        """Return the group's memory file, or None when it does not exist yet."""

        try:
            return self.read_file(group_id, MEMORY_FILE)
        except FileNotFoundError:
            return None

    def write_memory(self, group_id: str, content: str) -> None:
        self.write_file(group_id, MEMORY_FILE, content)
