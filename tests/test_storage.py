import asyncio

import pytest

from labeler.core.errors import NotFoundError, StorageError
from labeler.services.storage import LocalFileStorage, QueuedStorage


def run(coro):
    return asyncio.run(coro)


class GatedStorage(LocalFileStorage):
    """Holds every write until the gate opens and records the order they land in."""

    def __init__(self, root):
        super().__init__(root)
        self.gate = asyncio.Event()
        self.landed = []

    async def write_text(self, path, content):
        await self.gate.wait()
        await super().write_text(path, content)
        self.landed.append((path, content))

    async def delete_file(self, path, ignore_not_found=False):
        await self.gate.wait()
        await super().delete_file(path, ignore_not_found)
        self.landed.append((path, None))


def test_read_missing_file(tmp_path):
    storage = LocalFileStorage(tmp_path)
    with pytest.raises(NotFoundError) as info:
        run(storage.read_text("missing.json"))
    assert info.value.code == "NotFound"
    assert run(storage.read_text("missing.json", ignore_not_found=True)) is None


def test_write_read_delete(tmp_path):
    storage = LocalFileStorage(tmp_path)
    run(storage.write_text("nested/a.json", "{}"))
    assert (tmp_path / "nested" / "a.json").read_text() == "{}"
    assert run(storage.read_text("nested/a.json")) == "{}"
    assert not (tmp_path / "nested" / "a.json.tmp").exists()

    run(storage.delete_file("nested/a.json"))
    assert not run(storage.is_file_exists("nested/a.json"))
    with pytest.raises(NotFoundError):
        run(storage.delete_file("nested/a.json"))
    run(storage.delete_file("nested/a.json", ignore_not_found=True))


def test_binary_files(tmp_path):
    storage = LocalFileStorage(tmp_path)
    run(storage.write_binary("doc.pdf", b"%PDF-1.7"))
    assert run(storage.read_binary("doc.pdf")) == b"%PDF-1.7"


def test_paths_outside_root_are_refused(tmp_path):
    storage = LocalFileStorage(tmp_path / "root")
    with pytest.raises(StorageError):
        run(storage.write_text("../escape.json", "{}"))
    assert not (tmp_path / "escape.json").exists()


def test_list_files_filters_by_extension(tmp_path):
    storage = LocalFileStorage(tmp_path)
    (tmp_path / "b.pdf").write_bytes(b"")
    (tmp_path / "a.pdf").write_bytes(b"")
    (tmp_path / "a.pdf.labels.json").write_text("{}")
    (tmp_path / "sub").mkdir()
    assert run(storage.list_files_in_folder()) == ["a.pdf", "a.pdf.labels.json", "b.pdf"]
    assert run(storage.list_files_in_folder(extension=".PDF")) == ["a.pdf", "b.pdf"]
    assert run(storage.is_valid_connection())


def test_queued_writes_land_in_submission_order(tmp_path):
    inner = GatedStorage(tmp_path)
    storage = QueuedStorage(inner)

    async def scenario():
        first = asyncio.create_task(storage.write_text("a.json", "1"))
        second = asyncio.create_task(storage.write_text("a.json", "2"))
        third = asyncio.create_task(storage.delete_file("a.json", ignore_not_found=True))
        fourth = asyncio.create_task(storage.write_text("a.json", "3"))
        await asyncio.sleep(0)
        inner.gate.set()
        await asyncio.gather(first, second, third, fourth)

    run(scenario())
    assert inner.landed == [("a.json", "1"), ("a.json", "2"), ("a.json", None), ("a.json", "3")]
    assert (tmp_path / "a.json").read_text() == "3"


def test_queued_reads_see_latest_pending_content(tmp_path):
    inner = GatedStorage(tmp_path)
    storage = QueuedStorage(inner)

    async def scenario():
        write = asyncio.create_task(storage.write_text("a.json", "pending"))
        await asyncio.sleep(0)
        assert not (tmp_path / "a.json").exists()
        assert await storage.read_text("a.json") == "pending"
        assert await storage.read_binary("a.json") == b"pending"
        assert await storage.is_file_exists("a.json")

        delete = asyncio.create_task(storage.delete_file("a.json"))
        await asyncio.sleep(0)
        assert await storage.read_text("a.json", ignore_not_found=True) is None
        with pytest.raises(NotFoundError):
            await storage.read_text("a.json")
        assert not await storage.is_file_exists("a.json")

        inner.gate.set()
        await asyncio.gather(write, delete)

    run(scenario())
    assert not (tmp_path / "a.json").exists()


def test_queue_is_released_once_idle(tmp_path):
    inner = LocalFileStorage(tmp_path)
    storage = QueuedStorage(inner)
    run(storage.write_text("a.json", "x"))
    assert storage._pending == {}
    assert not storage._locks
    # reads go straight to disk again
    (tmp_path / "a.json").write_text("changed")
    assert run(storage.read_text("a.json")) == "changed"


def test_failed_write_propagates_and_frees_the_queue(tmp_path):
    inner = LocalFileStorage(tmp_path / "root")
    storage = QueuedStorage(inner)
    with pytest.raises(StorageError):
        run(storage.write_text("../outside.json", "x"))
    assert storage._pending == {}
