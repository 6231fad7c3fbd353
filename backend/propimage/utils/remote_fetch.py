from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import unquote, urlparse

import requests

from propimage.errors import RemoteFetchError


logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 10.0
CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class FetchedImage:
    raw: bytes
    content_type: str
    filename: str


class RemoteImageTooLarge(RemoteFetchError):
    def __init__(self, max_bytes: int) -> None:
        super().__init__(f"remote image exceeds {max_bytes} bytes")
        self.max_bytes = max_bytes


def url_host(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def is_allowed_remote_url(url: str, allowed_hosts: tuple[str, ...]) -> bool:
    """https only, and the host must be one of `allowed_hosts` (or a subdomain of one)."""
    u = (url or "").strip()
    if not u.lower().startswith("https://"):
        return False
    host = url_host(u)
    if not host:
        return False
    return any(host == h or host.endswith("." + h) for h in allowed_hosts)


def filename_from_url(url: str) -> str:
    # Firebase object paths are percent-encoded ("properties%2F12%2Fa.jpg").
    path = unquote(urlparse(url).path or "")
    return path.rsplit("/", 1)[-1] or "remote_image.jpg"


def fetch_image(url: str, *, max_bytes: int, timeout: float) -> FetchedImage:
    """
    Download `url` with bounded connect/read time and a hard byte ceiling.

    Raises RemoteFetchError (non-200, network/TLS failure, empty body) or
    RemoteImageTooLarge.
    """
    try:
        with requests.get(url, stream=True, timeout=(CONNECT_TIMEOUT_SECONDS, timeout)) as resp:
            if resp.status_code != 200:
                raise RemoteFetchError(f"HTTP {resp.status_code}")
            declared = int(resp.headers.get("Content-Length") or 0)
            if declared > max_bytes:
                raise RemoteImageTooLarge(max_bytes)
            buf = bytearray()
            for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                if not chunk:
                    continue
                buf.extend(chunk)
                if len(buf) > max_bytes:
                    raise RemoteImageTooLarge(max_bytes)
            content_type = (resp.headers.get("Content-Type") or "").split(";", 1)[0].strip().lower()
    except requests.RequestException as exc:
        logger.warning("Remote fetch failed host=%s: %s", url_host(url), exc.__class__.__name__)
        raise RemoteFetchError(f"{exc.__class__.__name__}") from exc
    except ValueError as exc:
        raise RemoteFetchError("invalid response headers") from exc

    if not buf:
        raise RemoteFetchError("empty response")
    return FetchedImage(raw=bytes(buf), content_type=content_type, filename=filename_from_url(url))
