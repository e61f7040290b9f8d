"""JSON document store: hierarchical keys, one file per document.

Layout:
    ~/.mneme/data/
    ├── threads.json                   # Thread index
    ├── threads/
    │   └── thread-1a2b3c4d/
    │       ├── history.json           # Message log
    │       └── summary.json           # Narrative summary (optional)
    └── entity-memory.json             # Shared entity graph

Documents are whole-value overwrites. Each write lands in a temp file in the
target directory and is renamed over the old document, so a crash leaves
either the old or the new version, never a torn one.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from mneme.errors import StorageError

logger = logging.getLogger(__name__)

_SUFFIX = ".json"


class JSONDocumentStore:
    """Async read/write/delete/list over JSON files under ``root``."""

    def __init__(self, root: Path, *, pretty: bool = True) -> None:
        self.root = Path(root)
        self.pretty = pretty

    async def initialize(self) -> None:
        await asyncio.to_thread(self.root.mkdir, parents=True, exist_ok=True)

    async def close(self) -> None:
        """Nothing to release for file-backed storage."""

    # ── Key → path ───────────────────────────────────────────

    def _path(self, key: str) -> Path:
        parts = key.strip("/").split("/")
        if not key or key.startswith("/") or any(p in ("", ".", "..") for p in parts):
            raise ValueError(f"Invalid document key: {key!r}")
        return self.root.joinpath(*parts[:-1], parts[-1] + _SUFFIX)

    # ── Operations ───────────────────────────────────────────

    async def read(self, key: str) -> Any | None:
        path = self._path(key)
        return await asyncio.to_thread(self._read_sync, path, key)

    async def write(self, key: str, data: Any) -> None:
        path = self._path(key)
        await asyncio.to_thread(self._write_sync, path, data)

    async def delete(self, key: str) -> None:
        path = self._path(key)
        await asyncio.to_thread(path.unlink, missing_ok=True)

    async def exists(self, key: str) -> bool:
        path = self._path(key)
        return await asyncio.to_thread(path.is_file)

    async def list(self, prefix: str | None = None) -> list[str]:
        keys = await asyncio.to_thread(self._scan)
        if prefix:
            keys = [k for k in keys if k.startswith(prefix)]
        return keys

    # ── Blocking helpers (run in a worker thread) ─────────────

    def _read_sync(self, path: Path, key: str) -> Any | None:
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt document {key!r}: {e}") from e

    def _write_sync(self, path: Path, data: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(data, ensure_ascii=False, indent=2 if self.pretty else None)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}-", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _scan(self) -> list[str]:
        if not self.root.is_dir():
            return []
        keys = []
        for path in self.root.rglob(f"*{_SUFFIX}"):
            if not path.is_file():
                continue
            rel = path.relative_to(self.root).as_posix()
            keys.append(rel[: -len(_SUFFIX)])
        return sorted(keys)
