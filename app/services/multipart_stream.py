"""Incremental multipart/form-data parsing over a request body stream.

python_multipart reports parts through synchronous callbacks. They are
collected per body chunk and replayed as ("start" | "data" | "end", payload)
events, so the consumer can do async file I/O between chunks and stop reading
the body as soon as it raises.
"""
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional, Tuple

from python_multipart import MultipartParser
from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import parse_options_header

from app.services.errors import MultipartError


@dataclass
class PartHeaders:
    name: str
    filename: Optional[str]
    content_type: Optional[str]


def get_boundary(content_type_header: str) -> Optional[bytes]:
    """Boundary of a multipart/form-data Content-Type, None if the body is not multipart."""
    content_type, params = parse_options_header(content_type_header or "")
    if content_type.strip().lower() != b"multipart/form-data":
        return None
    boundary = params.get(b"boundary")
    if not boundary:
        raise MultipartError("Missing boundary in multipart.")
    return boundary


class MultipartStream:
    def __init__(self, boundary: bytes, charset: str = "utf-8"):
        self.charset = charset
        self._events: List[Tuple[str, object]] = []
        self._headers: Dict[bytes, bytes] = {}
        self._header_field = b""
        self._header_value = b""
        self._in_part = False
        self._parser = MultipartParser(boundary, {
            "on_part_begin": self._on_part_begin,
            "on_header_field": self._on_header_field,
            "on_header_value": self._on_header_value,
            "on_header_end": self._on_header_end,
            "on_headers_finished": self._on_headers_finished,
            "on_part_data": self._on_part_data,
            "on_part_end": self._on_part_end,
        })

    def _on_part_begin(self):
        self._headers = {}
        self._in_part = True

    def _on_header_field(self, data: bytes, start: int, end: int):
        self._header_field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int):
        self._header_value += data[start:end]

    def _on_header_end(self):
        self._headers[self._header_field.lower()] = self._header_value
        self._header_field = b""
        self._header_value = b""

    def _on_headers_finished(self):
        self._events.append(("start", self._part_headers()))

    def _on_part_data(self, data: bytes, start: int, end: int):
        self._events.append(("data", data[start:end]))

    def _on_part_end(self):
        self._in_part = False
        self._events.append(("end", None))

    def _part_headers(self) -> PartHeaders:
        disposition = self._headers.get(b"content-disposition")
        if disposition is None:
            raise MultipartError("Missing Content-Disposition header")
        _, options = parse_options_header(disposition)
        if b"name" not in options:
            raise MultipartError('The Content-Disposition header field "name" must be provided.')

        filename = options.get(b"filename")
        content_type = self._headers.get(b"content-type")
        return PartHeaders(
            name=options[b"name"].decode(self.charset),
            filename=filename.decode(self.charset) if filename is not None else None,
            content_type=content_type.decode("latin-1") if content_type else None,
        )

    def _drain(self) -> List[Tuple[str, object]]:
        events, self._events = self._events, []
        return events

    async def events(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[Tuple[str, object]]:
        async for chunk in chunks:
            try:
                self._parser.write(chunk)
            except MultipartParseError as e:
                raise MultipartError(str(e) or "Invalid multipart data.") from e
            for event in self._drain():
                yield event

        self._parser.finalize()
        for event in self._drain():
            yield event

        if self._in_part:
            raise MultipartError("Unexpected end of multipart body")
