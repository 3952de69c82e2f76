"""Upload errors that are the client's fault and map to a 400 response."""


class UploadError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NoFileUploadedError(UploadError):
    def __init__(self, message: str = "No file uploaded"):
        super().__init__(message)


class TooManyFilesError(UploadError):
    def __init__(self, max_files: int):
        super().__init__(f"Too many files. Maximum is {max_files}")
        self.max_files = max_files


class FileTooLargeError(UploadError):
    def __init__(self, max_size: int):
        super().__init__(f"File is too large. Maximum size is {format_size(max_size)}")
        self.max_size = max_size


def format_size(size: int) -> str:
    """Render a byte count the way the limit is configured (100MB, 512KB, 10 bytes)."""
    for unit, factor in (("GB", 1024 ** 3), ("MB", 1024 ** 2), ("KB", 1024)):
        if size >= factor and size % factor == 0:
            return f"{size // factor}{unit}"
    return f"{size} bytes"


class MultipartError(UploadError):
    """The request body could not be parsed as multipart/form-data."""
