import os
import stat as stat_module
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import aiofiles.os

from logger_config import setup_logger

logger = setup_logger()


@dataclass
class StoredFile:
    filename: str
    size: int
    created_at: datetime


def creation_time(stat: os.stat_result) -> datetime:
    """Birth time where the platform reports it, inode change time otherwise."""
    timestamp = getattr(stat, "st_birthtime", None) or stat.st_ctime
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


class StorageManager:
    def __init__(self, upload_dir: Path, temp_dir: Path):
        self.upload_dir = Path(upload_dir)
        self.temp_dir = Path(temp_dir)

    async def initialize(self):
        """Create the storage directories and clear leftovers of interrupted uploads."""
        logger.info("Initializing storage manager...")
        self.ensure_root()

        files_removed = 0
        for file in self.temp_dir.glob("*"):
            if file.is_file():
                await aiofiles.os.unlink(file)
                files_removed += 1
        logger.info(f"Cleaned temporary directory, removed {files_removed} files")

    def ensure_root(self):
        """Create the upload root (and the temp dir) if missing. Safe to call repeatedly."""
        self.upload_dir.mkdir(exist_ok=True, parents=True)
        self.temp_dir.mkdir(exist_ok=True, parents=True)
        logger.debug(f"Storage directories created/verified: {self.upload_dir}, {self.temp_dir}")

    def resolve(self, filename: str) -> Optional[Path]:
        """Map a filename from a URL onto the root.

        Returns None for anything that is not a plain name directly inside the
        root (separators, dot segments, NUL bytes, symlink escapes).
        """
        if not filename or filename in (".", ".."):
            return None
        if "/" in filename or "\\" in filename or "\x00" in filename:
            return None

        root = self.upload_dir.resolve()
        path = (root / filename).resolve()
        if path.parent != root:
            logger.warning(f"Rejected filename outside upload root: {filename!r}")
            return None
        return path

    async def exists(self, filename: str) -> bool:
        path = self.resolve(filename)
        return path is not None and await aiofiles.os.path.isfile(path)

    async def list_files(self) -> List[StoredFile]:
        """List regular files in the root in directory order."""
        files = []
        for name in await aiofiles.os.listdir(self.upload_dir):
            path = self.upload_dir / name
            try:
                stat = await aiofiles.os.stat(path)
            except FileNotFoundError:
                # Deleted between listdir and stat
                continue
            if not stat_module.S_ISREG(stat.st_mode):
                continue
            files.append(StoredFile(filename=name, size=stat.st_size, created_at=creation_time(stat)))
        return files

    async def delete_file(self, filename: str) -> bool:
        """Delete a stored file. Returns False if it was not there."""
        path = self.resolve(filename)
        if path is None or not await aiofiles.os.path.isfile(path):
            return False
        await aiofiles.os.unlink(path)
        logger.info(f"Deleted file: {filename}")
        return True

    def name_taken(self, filename: str) -> bool:
        """True if the name is stored or currently being written."""
        return (self.upload_dir / filename).exists() or self.temp_path(filename).exists()

    def temp_path(self, filename: str) -> Path:
        return self.temp_dir / f"{filename}.part"

    async def commit(self, temp_path: Path, filename: str) -> Path:
        """Move a fully written temp file into the root under its final name."""
        final_path = self.upload_dir / filename
        await aiofiles.os.rename(str(temp_path), str(final_path))
        return final_path

    async def discard(self, path: Path):
        """Remove a file if it exists; used to roll back failed uploads."""
        try:
            await aiofiles.os.unlink(path)
        except FileNotFoundError:
            pass
