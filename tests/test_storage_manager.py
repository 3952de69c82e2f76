import os

import pytest

from app.services.storage_manager import StorageManager


@pytest.mark.asyncio
async def test_initialize_creates_nested_root(tmp_path):
    """Missing parent directories are created, and repeating it is harmless."""
    upload_dir = tmp_path / "a" / "b" / "uploads"
    manager = StorageManager(upload_dir, tmp_path / "temp")

    await manager.initialize()
    await manager.initialize()

    assert upload_dir.is_dir()
    assert (tmp_path / "temp").is_dir()


@pytest.mark.asyncio
async def test_initialize_clears_stale_partial_uploads(storage_manager, temp_dir, upload_dir):
    temp_dir.mkdir(parents=True)
    (temp_dir / "leftover.part").write_bytes(b"half")
    upload_dir.mkdir(parents=True)
    (upload_dir / "kept.txt").write_bytes(b"kept")

    await storage_manager.initialize()

    assert list(temp_dir.iterdir()) == []
    assert (upload_dir / "kept.txt").exists()


def test_resolve_plain_name(storage_manager, upload_dir):
    storage_manager.ensure_root()
    assert storage_manager.resolve("report.pdf") == upload_dir.resolve() / "report.pdf"


@pytest.mark.parametrize("filename", ["", ".", "..", "../secret.txt", "a/b.txt", "..\\secret.txt", "bad\x00name"])
def test_resolve_rejects_names_outside_root(storage_manager, filename):
    storage_manager.ensure_root()
    assert storage_manager.resolve(filename) is None


def test_resolve_rejects_symlink_escape(storage_manager, upload_dir, tmp_path):
    storage_manager.ensure_root()
    (tmp_path / "secret.txt").write_text("top secret")
    os.symlink(tmp_path / "secret.txt", upload_dir / "link.txt")

    assert storage_manager.resolve("link.txt") is None


@pytest.mark.asyncio
async def test_list_files_reports_regular_files(storage_manager, upload_dir):
    await storage_manager.initialize()
    (upload_dir / "one.txt").write_bytes(b"1")
    (upload_dir / "three.txt").write_bytes(b"333")
    (upload_dir / "nested").mkdir()

    files = {f.filename: f for f in await storage_manager.list_files()}

    assert set(files) == {"one.txt", "three.txt"}
    assert files["three.txt"].size == 3
    assert files["three.txt"].created_at.tzinfo is not None


@pytest.mark.asyncio
async def test_list_files_empty_root(storage_manager):
    await storage_manager.initialize()
    assert await storage_manager.list_files() == []


@pytest.mark.asyncio
async def test_delete_file(storage_manager, upload_dir):
    await storage_manager.initialize()
    (upload_dir / "gone.txt").write_bytes(b"bye")

    assert await storage_manager.delete_file("gone.txt") is True
    assert not (upload_dir / "gone.txt").exists()
    assert await storage_manager.delete_file("gone.txt") is False
    assert await storage_manager.delete_file("../gone.txt") is False


@pytest.mark.asyncio
async def test_commit_moves_temp_file_into_root(storage_manager, upload_dir):
    await storage_manager.initialize()
    temp_path = storage_manager.temp_path("new.txt")
    temp_path.write_bytes(b"data")

    assert storage_manager.name_taken("new.txt")
    final_path = await storage_manager.commit(temp_path, "new.txt")

    assert final_path == upload_dir / "new.txt"
    assert final_path.read_bytes() == b"data"
    assert not temp_path.exists()
    assert await storage_manager.exists("new.txt")


@pytest.mark.asyncio
async def test_discard_missing_file_is_noop(storage_manager, temp_dir):
    await storage_manager.initialize()
    await storage_manager.discard(temp_dir / "never-written.part")
