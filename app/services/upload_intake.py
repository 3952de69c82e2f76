from pathlib import Path
from typing import List, Optional

import aiofiles
from fastapi import Request

from app.models.file_record import UploadedFileRecord, file_urls
from app.services.errors import (
    FileTooLargeError,
    MultipartError,
    NoFileUploadedError,
    TooManyFilesError,
)
from app.services.filename_generator import generate_unique_filename
from app.services.multipart_stream import MultipartStream, PartHeaders, get_boundary
from app.services.storage_manager import StorageManager
from logger_config import setup_logger
import config

logger = setup_logger()

DEFAULT_CONTENT_TYPE = "application/octet-stream"
# Allowance for boundaries, part headers and small text fields on top of the file bytes
FORM_OVERHEAD = 1024 * 1024


def get_content_length(request: Request) -> Optional[int]:
    """Declared body size, None when the body is sent chunked."""
    content_length = request.headers.get("content-length")
    if content_length is None:
        return None

    try:
        return int(content_length)
    except ValueError:
        raise MultipartError("Invalid Content-Length header")


class PendingFile:
    """A file part being written to the temp directory."""

    def __init__(self, headers: PartHeaders, filename: str, temp_path: Path):
        self.original_name = headers.filename or ""
        self.content_type = headers.content_type or DEFAULT_CONTENT_TYPE
        self.filename = filename
        self.temp_path = temp_path
        self.size = 0
        self.handle = None


class UploadIntake:
    def __init__(
        self,
        storage_manager: StorageManager,
        max_file_size: int = config.MAX_FILE_SIZE,
        max_files: int = config.MAX_FILES,
    ):
        self.storage_manager = storage_manager
        self.max_file_size = max_file_size
        self.max_files = max_files

    async def save_single(self, request: Request, base_url: str) -> UploadedFileRecord:
        records = await self.receive(request, "file", 1, base_url, "No file uploaded")
        return records[0]

    async def save_many(self, request: Request, base_url: str) -> List[UploadedFileRecord]:
        return await self.receive(request, "files", self.max_files, base_url, "No files uploaded")

    async def receive(
        self,
        request: Request,
        field_name: str,
        max_files: int,
        base_url: str,
        empty_message: str,
    ) -> List[UploadedFileRecord]:
        """Stream the file parts of ``field_name`` from the request body into storage.

        Parts are written as they arrive. A part that grows past the size
        ceiling stops the read immediately. When anything fails, every file
        already stored for this request is removed.
        """
        # A declared body that cannot fit is refused before reading any of it
        content_length = get_content_length(request)
        if content_length is not None and content_length > max_files * self.max_file_size + FORM_OVERHEAD:
            logger.warning(f"Rejected upload announcing {content_length} bytes")
            raise FileTooLargeError(self.max_file_size)

        boundary = get_boundary(request.headers.get("content-type", ""))
        if boundary is None:
            # Not a multipart body, so there is no file field at all
            raise NoFileUploadedError(empty_message)

        records = []
        current: Optional[PendingFile] = None
        try:
            async for kind, payload in MultipartStream(boundary).events(request.stream()):
                if kind == "start":
                    current = None
                    headers = payload
                    if headers.name == field_name and headers.filename is not None:
                        if len(records) >= max_files:
                            raise TooManyFilesError(max_files)
                        current = await self._open(headers)
                elif kind == "data" and current is not None:
                    await self._write(current, payload)
                elif kind == "end" and current is not None:
                    record = await self._close(current, base_url)
                    if record is not None:
                        records.append(record)
                    current = None
        except Exception as e:
            if current is not None:
                await self._abort(current)
            for record in records:
                await self.storage_manager.discard(self.storage_manager.upload_dir / record.filename)
            if isinstance(e, FileTooLargeError):
                logger.warning(f"Upload exceeded {self.max_file_size} bytes, aborted")
            elif not isinstance(e, (NoFileUploadedError, TooManyFilesError, MultipartError)):
                logger.error(f"Error storing upload: {str(e)}", exc_info=True)
            if records:
                logger.warning(f"Upload aborted, rolled back {len(records)} stored files")
            raise

        if not records:
            raise NoFileUploadedError(empty_message)
        return records

    async def _open(self, headers: PartHeaders) -> PendingFile:
        filename = generate_unique_filename(headers.filename, exists=self.storage_manager.name_taken)
        pending = PendingFile(headers, filename, self.storage_manager.temp_path(filename))
        pending.handle = await aiofiles.open(pending.temp_path, 'wb')
        logger.info(f"Receiving upload: {pending.original_name!r} -> {filename}")
        return pending

    async def _write(self, pending: PendingFile, chunk: bytes):
        pending.size += len(chunk)
        if pending.size > self.max_file_size:
            raise FileTooLargeError(self.max_file_size)
        await pending.handle.write(chunk)

    async def _close(self, pending: PendingFile, base_url: str) -> Optional[UploadedFileRecord]:
        await pending.handle.close()
        pending.handle = None

        # A browser form with no file chosen still sends an empty, unnamed part
        if not pending.original_name and pending.size == 0:
            await self.storage_manager.discard(pending.temp_path)
            return None

        await self.storage_manager.commit(pending.temp_path, pending.filename)
        logger.debug(f"Stored {pending.filename} ({pending.size} bytes)")
        return UploadedFileRecord(
            filename=pending.filename,
            original_name=pending.original_name,
            mimetype=pending.content_type,
            size=pending.size,
            **file_urls(base_url, pending.filename),
        )

    async def _abort(self, pending: PendingFile):
        if pending.handle is not None:
            await pending.handle.close()
        await self.storage_manager.discard(pending.temp_path)
