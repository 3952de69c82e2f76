import mimetypes
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
from app.models.file_record import StoredFileRecord, file_urls, format_timestamp
from app.services.errors import UploadError
from app.services.response_formatter import error_response, success_response
from app.services.storage_manager import StorageManager
from app.services.upload_intake import UploadIntake
from logger_config import setup_logger

# Logger setup
logger = setup_logger()


def base_url(request: Request) -> str:
    """Scheme and Host header of the incoming request, e.g. http://localhost:3000."""
    host = request.headers.get("host") or request.url.netloc
    return f"{request.url.scheme}://{host}"


def guess_media_type(filename: str) -> str:
    guessed_type, _ = mimetypes.guess_type(filename)
    return guessed_type or "application/octet-stream"


def create_app(
    upload_dir: Optional[Path] = None,
    temp_dir: Optional[Path] = None,
    public_dir: Optional[Path] = None,
    max_file_size: int = config.MAX_FILE_SIZE,
    max_files: int = config.MAX_FILES,
) -> FastAPI:
    """Build the file server around an explicit upload root and limits."""
    upload_dir = Path(upload_dir or config.UPLOAD_DIR).absolute()
    temp_dir = Path(temp_dir or config.TEMP_DIR).absolute()
    public_dir = Path(public_dir or config.PUBLIC_DIR).absolute()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Failing to create the root is fatal: let it propagate and stop startup
        await app.state.storage_manager.initialize()
        app.state.started_at = time.monotonic()
        logger.info(f"Upload directory: {upload_dir}")
        yield

    app = FastAPI(title="Ladybug File Server", lifespan=lifespan)
    app.state.storage_manager = StorageManager(upload_dir, temp_dir)
    app.state.upload_intake = UploadIntake(app.state.storage_manager, max_file_size, max_files)
    app.state.started_at = time.monotonic()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(UploadError)
    async def upload_error_handler(request: Request, exc: UploadError):
        logger.info(f"Rejected upload on {request.url.path}: {exc.message}")
        return error_response(exc.message, exc.status_code)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return error_response(message, exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        detail = "; ".join(str(e.get("msg", "")) for e in errors) if errors else None
        return error_response("Invalid request", 400, error=detail)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"Server error on {request.method} {request.url.path}: {str(exc)}", exc_info=exc)
        return error_response("Internal server error", 500)

    @app.get("/")
    async def index():
        index_path = public_dir / "index.html"
        if not index_path.is_file():
            return error_response("Not Found", 404)
        return FileResponse(index_path, media_type="text/html")

    @app.post("/upload")
    async def upload_file(request: Request):
        """Stream a single file from the multipart field ``file`` into storage."""
        intake = request.app.state.upload_intake
        try:
            record = await intake.save_single(request, base_url(request))
        except UploadError:
            raise
        except Exception as e:
            logger.error(f"Upload error: {str(e)}", exc_info=True)
            return error_response("Error uploading file", 500, error=str(e))

        logger.info(f"Uploaded {record.filename} ({record.size} bytes)")
        return success_response("File uploaded successfully", data=record)

    @app.post("/upload-multiple")
    async def upload_multiple(request: Request):
        """Stream up to ``max_files`` files from the repeated multipart field ``files``."""
        intake = request.app.state.upload_intake
        try:
            records = await intake.save_many(request, base_url(request))
        except UploadError:
            raise
        except Exception as e:
            logger.error(f"Upload error: {str(e)}", exc_info=True)
            return error_response("Error uploading files", 500, error=str(e))

        logger.info(f"Uploaded {len(records)} files")
        return success_response(f"{len(records)} files uploaded successfully", data=records)

    @app.get("/files/{filename}")
    async def view_file(filename: str, request: Request):
        storage_manager = request.app.state.storage_manager
        if not await storage_manager.exists(filename):
            return error_response("File not found", 404)

        return FileResponse(
            storage_manager.resolve(filename),
            media_type=guess_media_type(filename),
            filename=filename,
            content_disposition_type="inline",
        )

    @app.get("/download/{filename}")
    async def download_file(filename: str, request: Request):
        storage_manager = request.app.state.storage_manager
        if not await storage_manager.exists(filename):
            return error_response("File not found", 404)

        return FileResponse(
            storage_manager.resolve(filename),
            media_type=guess_media_type(filename),
            filename=filename,
        )

    @app.get("/api/files")
    async def list_files(request: Request):
        storage_manager = request.app.state.storage_manager
        try:
            stored_files = await storage_manager.list_files()
        except Exception as e:
            logger.error(f"Error reading files: {str(e)}", exc_info=True)
            return error_response("Error reading files", 500, error=str(e))

        url_base = base_url(request)
        records = [
            StoredFileRecord(
                filename=stored.filename,
                size=stored.size,
                upload_date=format_timestamp(stored.created_at),
                **file_urls(url_base, stored.filename),
            )
            for stored in stored_files
        ]
        return success_response(
            f"{len(records)} files found",
            data=records,
            count=len(records),
        )

    @app.delete("/api/files/{filename}")
    async def delete_file(filename: str, request: Request):
        storage_manager = request.app.state.storage_manager
        logger.info(f"Receiving delete request for: {filename}")
        try:
            deleted = await storage_manager.delete_file(filename)
        except Exception as e:
            logger.error(f"Delete error for {filename}: {str(e)}", exc_info=True)
            return error_response("Error deleting file", 500, error=str(e))

        if not deleted:
            return error_response("File not found", 404)
        return success_response("File deleted successfully")

    @app.get("/health")
    async def health(request: Request):
        uptime = time.monotonic() - request.app.state.started_at
        return success_response("Ladybug server is running!", uptime=uptime)

    # Remaining static assets of the client UI
    if public_dir.is_dir():
        app.mount("/", StaticFiles(directory=public_dir), name="public")

    return app


app = create_app()


if __name__ == "__main__":
    logger.info("Starting Ladybug File Server...")
    logger.info(f"Upload directory: {Path(config.UPLOAD_DIR).absolute()}")
    logger.info(f"Maximum file size: {config.MAX_FILE_SIZE / (1024*1024):.2f} MB")
    uvicorn.run(app, host=config.HOST, port=config.PORT)
