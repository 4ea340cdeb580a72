import asyncio
import logging
import os
from abc import ABC, abstractmethod
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional, Union

from labeler.core.errors import NotFoundError, StorageError

logger = logging.getLogger(__name__)

STORAGE_ERROR_CODE = "Failed to access local files"


class StorageProvider(ABC):
    """Async file-style persistence used for the schema, label and analysis files."""

    @abstractmethod
    async def is_valid_connection(self) -> bool: ...

    @abstractmethod
    async def is_file_exists(self, path: str, ignore_not_found: bool = False) -> bool: ...

    @abstractmethod
    async def list_files_in_folder(self, folder: str = "", extension: Optional[str] = None) -> List[str]: ...

    @abstractmethod
    async def read_text(self, path: str, ignore_not_found: bool = False) -> Optional[str]: ...

    @abstractmethod
    async def read_binary(self, path: str, ignore_not_found: bool = False) -> Optional[bytes]: ...

    @abstractmethod
    async def write_text(self, path: str, content: str) -> None: ...

    @abstractmethod
    async def write_binary(self, path: str, content: bytes) -> None: ...

    @abstractmethod
    async def delete_file(self, path: str, ignore_not_found: bool = False) -> None: ...


class LocalFileStorage(StorageProvider):
    """Files under a root folder. Blocking IO runs in worker threads."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        full = (self.root / path).resolve()
        if full != self.root and self.root not in full.parents:
            raise StorageError(STORAGE_ERROR_CODE, f"Path escapes storage root: {path}")
        return full

    async def is_valid_connection(self) -> bool:
        return self.root.is_dir()

    async def is_file_exists(self, path: str, ignore_not_found: bool = False) -> bool:
        return self._resolve(path).is_file()

    async def list_files_in_folder(self, folder: str = "", extension: Optional[str] = None) -> List[str]:
        base = self._resolve(folder)
        if not base.is_dir():
            raise StorageError(STORAGE_ERROR_CODE, f"Folder not found: {folder or '.'}")

        def _list() -> List[str]:
            names = [p.name for p in base.iterdir() if p.is_file()]
            if extension:
                names = [n for n in names if n.lower().endswith(extension.lower())]
            return sorted(names)

        return await asyncio.to_thread(_list)

    async def _read(self, path: str, mode: str, ignore_not_found: bool):
        full = self._resolve(path)

        def _do():
            if mode == "text":
                return full.read_text(encoding="utf-8")
            return full.read_bytes()

        try:
            return await asyncio.to_thread(_do)
        except FileNotFoundError:
            if ignore_not_found:
                return None
            raise NotFoundError(path)
        except OSError as e:
            raise StorageError(STORAGE_ERROR_CODE, f"Unable to read {path}: {e}") from e

    async def read_text(self, path: str, ignore_not_found: bool = False) -> Optional[str]:
        return await self._read(path, "text", ignore_not_found)

    async def read_binary(self, path: str, ignore_not_found: bool = False) -> Optional[bytes]:
        return await self._read(path, "binary", ignore_not_found)

    async def _write(self, path: str, content: Union[str, bytes]) -> None:
        full = self._resolve(path)

        def _do():
            full.parent.mkdir(parents=True, exist_ok=True)
            tmp = full.with_name(full.name + ".tmp")
            if isinstance(content, str):
                tmp.write_text(content, encoding="utf-8")
            else:
                tmp.write_bytes(content)
            os.replace(tmp, full)

        try:
            await asyncio.to_thread(_do)
        except OSError as e:
            raise StorageError(STORAGE_ERROR_CODE, f"Unable to write {path}: {e}") from e

    async def write_text(self, path: str, content: str) -> None:
        await self._write(path, content)

    async def write_binary(self, path: str, content: bytes) -> None:
        await self._write(path, content)

    async def delete_file(self, path: str, ignore_not_found: bool = False) -> None:
        full = self._resolve(path)
        try:
            await asyncio.to_thread(full.unlink)
        except FileNotFoundError:
            if not ignore_not_found:
                raise NotFoundError(path)
        except OSError as e:
            raise StorageError(STORAGE_ERROR_CODE, f"Unable to delete {path}: {e}") from e


_DELETED = object()


class QueuedStorage(StorageProvider):
    """
    Serializes writes and deletes per path in submission order.

    A read of a path with writes still in flight returns the content of the
    most recently submitted write instead of what is currently persisted.
    """

    def __init__(self, inner: StorageProvider):
        self.inner = inner
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._pending: Dict[str, object] = {}
        self._in_flight: Dict[str, int] = defaultdict(int)

    async def _enqueue(self, path: str, latest: object, operation):
        self._pending[path] = latest
        self._in_flight[path] += 1
        try:
            async with self._locks[path]:
                await operation()
        finally:
            self._in_flight[path] -= 1
            if self._in_flight[path] == 0:
                del self._in_flight[path]
                self._pending.pop(path, None)
                self._locks.pop(path, None)

    def _pending_read(self, path: str, ignore_not_found: bool):
        latest = self._pending[path]
        if latest is _DELETED:
            if ignore_not_found:
                return None
            raise NotFoundError(path)
        return latest

    async def is_valid_connection(self) -> bool:
        return await self.inner.is_valid_connection()

    async def is_file_exists(self, path: str, ignore_not_found: bool = False) -> bool:
        if path in self._pending:
            return self._pending[path] is not _DELETED
        return await self.inner.is_file_exists(path, ignore_not_found)

    async def list_files_in_folder(self, folder: str = "", extension: Optional[str] = None) -> List[str]:
        return await self.inner.list_files_in_folder(folder, extension)

    async def read_text(self, path: str, ignore_not_found: bool = False) -> Optional[str]:
        if path in self._pending:
            latest = self._pending_read(path, ignore_not_found)
            if latest is None or isinstance(latest, str):
                return latest
            return latest.decode("utf-8")
        return await self.inner.read_text(path, ignore_not_found)

    async def read_binary(self, path: str, ignore_not_found: bool = False) -> Optional[bytes]:
        if path in self._pending:
            latest = self._pending_read(path, ignore_not_found)
            if latest is None or isinstance(latest, bytes):
                return latest
            return latest.encode("utf-8")
        return await self.inner.read_binary(path, ignore_not_found)

    async def write_text(self, path: str, content: str) -> None:
        await self._enqueue(path, content, lambda: self.inner.write_text(path, content))

    async def write_binary(self, path: str, content: bytes) -> None:
        await self._enqueue(path, content, lambda: self.inner.write_binary(path, content))

    async def delete_file(self, path: str, ignore_not_found: bool = False) -> None:
        await self._enqueue(path, _DELETED, lambda: self.inner.delete_file(path, ignore_not_found))
