"""Upload sources and their conversion to self-describing data URIs."""

import asyncio
import base64
import mimetypes
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlparse

import httpx

DEFAULT_MIME_TYPE = "image/png"


@dataclass(frozen=True)
class UploadSource:
    """A screenshot to ingest: a local path or an http(s) URL."""

    location: str

    @classmethod
    def of(cls, value: "str | Path | UploadSource") -> "UploadSource":
        if isinstance(value, UploadSource):
            return value
        return cls(location=str(value))

    @property
    def is_url(self) -> bool:
        return urlparse(self.location).scheme in ("http", "https")

    @property
    def name(self) -> str:
        """File name, used for timestamp parsing and error messages."""
        if self.is_url:
            return PurePosixPath(unquote(urlparse(self.location).path)).name or self.location
        return Path(self.location).name

    @property
    def mime_type(self) -> str:
        return mimetypes.guess_type(self.name)[0] or DEFAULT_MIME_TYPE


def encode_data_uri(data: bytes, mime_type: str = DEFAULT_MIME_TYPE) -> str:
    """Encode raw bytes as a base64 ``data:`` URI."""
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


async def read_payload(
    source: UploadSource, http_client: httpx.AsyncClient | None = None
) -> str:
    """Read a source and return it as a data URI.

    Args:
        source: Local file or URL
        http_client: Client used for URL sources

    Returns:
        ``data:<mime>;base64,...`` URI

    Raises:
        OSError: If a local file cannot be read
        httpx.HTTPError: If a URL cannot be fetched
        ValueError: If the source is empty
    """
    if source.is_url:
        if http_client is None:
            raise ValueError(f"No HTTP client to fetch {source.location}")
        response = await http_client.get(source.location, follow_redirects=True)
        response.raise_for_status()
        data = response.content
        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        mime_type = content_type if content_type.startswith("image/") else source.mime_type
    else:
        data = await asyncio.to_thread(Path(source.location).read_bytes)
        mime_type = source.mime_type

    if not data:
        raise ValueError(f"Empty file: {source.name}")

    return encode_data_uri(data, mime_type)
