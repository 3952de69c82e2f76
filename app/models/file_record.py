from datetime import datetime
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field


def file_urls(base_url: str, filename: str) -> dict:
    """Build the view and download URLs for a stored file."""
    name = quote(filename)
    return {
        "url": f"{base_url}/files/{name}",
        "download_url": f"{base_url}/download/{name}",
    }


def format_timestamp(value: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision, e.g. 2024-05-01T12:00:00.000Z."""
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class UploadedFileRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    filename: str
    original_name: str = Field(alias="originalName")
    mimetype: str
    size: int
    url: str
    download_url: str = Field(alias="downloadUrl")


class StoredFileRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    filename: str
    size: int
    upload_date: str = Field(alias="uploadDate")
    url: str
    download_url: str = Field(alias="downloadUrl")
