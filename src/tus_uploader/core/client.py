"""tus protocol client for resumable upload sessions."""

import base64
import hashlib
import logging
from typing import Dict, List, Optional, Any
from urllib.parse import urljoin

import requests

from .exceptions import ChecksumMismatchError, NetworkError, ProtocolError
from .models import OFFSET_UNKNOWN, UploadSession


logger = logging.getLogger(__name__)

TUS_VERSION = "1.0.0"


def encode_metadata(metadata: Optional[Dict[str, str]]) -> str:
    """Encode metadata as an Upload-Metadata header value, keeping key order."""
    if not metadata:
        return ""
    pairs = []
    for key, value in metadata.items():
        if " " in key or "," in key:
            raise ValueError(f"Invalid metadata key: {key!r}")
        encoded = base64.b64encode(str(value).encode("utf-8")).decode("ascii")
        pairs.append(f"{key} {encoded}")
    return ",".join(pairs)


def decode_metadata(header: Optional[str]) -> Dict[str, str]:
    """Decode an Upload-Metadata header value."""
    metadata = {}
    if not header:
        return metadata
    for pair in header.split(","):
        pair = pair.strip()
        if not pair:
            continue
        key, _, value = pair.partition(" ")
        metadata[key] = base64.b64decode(value).decode("utf-8") if value else ""
    return metadata


class TusClient:
    """Client for a tus 1.0.0 upload server."""

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = 30,
        headers: Optional[Dict[str, str]] = None,
    ):
        """Initialize the tus client.

        Args:
            base_url: Creation endpoint, e.g. http://127.0.0.1:8080/files/
            session: Optional requests session to reuse
            timeout: Per-request timeout in seconds
            headers: Extra headers sent with every request
        """
        self.base_url = base_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Tus-Resumable": TUS_VERSION})
        if headers:
            self.session.headers.update(headers)

        self.capabilities: Dict[str, Any] = {}

    def _make_request(
        self, method: str, url: str, expected: tuple = (200, 201, 204), **kwargs
    ) -> requests.Response:
        """Send a request and map failures onto the uploader error types."""
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self.session.request(method, url, **kwargs)
        except (
            requests.exceptions.ConnectionError,
            requests.exceptions.Timeout,
            requests.exceptions.ChunkedEncodingError,
        ) as e:
            logger.warning(f"{method} {url} failed: {e}")
            raise NetworkError(f"{method} {url} failed: {e}") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"{method} {url} failed: {e}")
            raise ProtocolError(f"{method} {url} failed: {e}") from e

        status = response.status_code
        if status in expected:
            return response

        logger.debug(f"{method} {url} returned {status}: {response.text[:200]}")
        if status == 460:
            raise ChecksumMismatchError(url, _int_header(response, "Upload-Offset"))
        if status >= 500:
            raise NetworkError(f"{method} {url} returned {status}", status)
        if status == 409:
            raise ProtocolError(f"Upload offset mismatch for {url}", status)
        if status in (404, 410):
            raise ProtocolError(f"Upload not found: {url}", status)
        raise ProtocolError(f"{method} {url} returned unexpected status {status}", status)

    def update_capabilities(self) -> Dict[str, Any]:
        """Query the server's supported version, extensions and limits."""
        response = self._make_request("OPTIONS", self.base_url, expected=(200, 204))
        headers = response.headers
        self.capabilities = {
            "versions": _list_header(headers.get("Tus-Version")),
            "extensions": _list_header(headers.get("Tus-Extension")),
            "checksum_algorithms": _list_header(headers.get("Tus-Checksum-Algorithm")),
            "max_size": _int_header(response, "Tus-Max-Size"),
        }
        logger.debug(f"Server capabilities: {self.capabilities}")
        return self.capabilities

    def supports(self, extension: str) -> bool:
        """Check a tus extension reported by update_capabilities()."""
        return extension in self.capabilities.get("extensions", [])

    def create_upload(
        self,
        size: int,
        partial: bool = False,
        metadata: Optional[Dict[str, str]] = None,
    ) -> UploadSession:
        """Create a new upload session.

        Args:
            size: Declared upload length in bytes
            partial: Mark the upload as a fragment for later concatenation
            metadata: Upload-Metadata pairs

        Returns:
            The created session with a confirmed offset of 0
        """
        max_size = self.capabilities.get("max_size")
        if max_size is not None and size > max_size:
            raise ProtocolError(f"Upload size {size} exceeds server limit {max_size}")

        headers = {"Upload-Length": str(size)}
        if metadata:
            headers["Upload-Metadata"] = encode_metadata(metadata)
        if partial:
            headers["Upload-Concat"] = "partial"

        response = self._make_request("POST", self.base_url, expected=(201,), headers=headers)
        location = self._location(response)
        logger.debug(f"Created upload {location} ({size} bytes, partial={partial})")

        return UploadSession(
            location=location,
            remote_offset=0,
            remote_size=size,
            metadata=dict(metadata or {}),
            partial=partial,
        )

    def get_upload(self, location: str) -> UploadSession:
        """Fetch the confirmed offset and size of an upload."""
        response = self._make_request("HEAD", location, expected=(200, 204))
        offset = _int_header(response, "Upload-Offset")
        size = _int_header(response, "Upload-Length")
        concat = response.headers.get("Upload-Concat", "")

        return UploadSession(
            location=location,
            remote_offset=OFFSET_UNKNOWN if offset is None else offset,
            remote_size=OFFSET_UNKNOWN if size is None else size,
            metadata=decode_metadata(response.headers.get("Upload-Metadata")),
            partial=concat == "partial",
        )

    def concatenate_uploads(
        self,
        parts: List[UploadSession],
        metadata: Optional[Dict[str, str]] = None,
    ) -> UploadSession:
        """Ask the server to merge partial uploads, in the given order."""
        if not parts:
            raise ValueError("No partial uploads to concatenate")

        headers = {
            "Upload-Concat": "final;" + " ".join(p.location for p in parts),
        }
        if metadata:
            headers["Upload-Metadata"] = encode_metadata(metadata)

        response = self._make_request("POST", self.base_url, expected=(201,), headers=headers)
        location = self._location(response)
        logger.info(f"Concatenation requested: {location} ({len(parts)} parts)")

        return UploadSession(
            location=location,
            remote_offset=OFFSET_UNKNOWN,
            remote_size=OFFSET_UNKNOWN,
            metadata=dict(metadata or {}),
        )

    def patch_upload(self, location: str, offset: int, data: bytes, checksum: bool = False) -> int:
        """Append data at ``offset``. Returns the new confirmed offset."""
        headers = {
            "Content-Type": "application/offset+octet-stream",
            "Upload-Offset": str(offset),
        }
        if checksum:
            digest = base64.b64encode(hashlib.sha1(data).digest()).decode("ascii")
            headers["Upload-Checksum"] = f"sha1 {digest}"

        response = self._make_request(
            "PATCH", location, expected=(204, 200), headers=headers, data=data
        )
        new_offset = _int_header(response, "Upload-Offset")
        if new_offset is None:
            raise ProtocolError("PATCH response has no Upload-Offset header", response.status_code)
        return new_offset

    def delete_upload(self, location: str) -> bool:
        """Terminate an upload. Returns False if it was already gone."""
        try:
            self._make_request("DELETE", location, expected=(200, 204))
            return True
        except ProtocolError as e:
            if e.status_code in (404, 410):
                return False
            raise

    def _location(self, response: requests.Response) -> str:
        location = response.headers.get("Location")
        if not location:
            raise ProtocolError("Server response has no Location header", response.status_code)
        return urljoin(self.base_url, location)


class UploadStream:
    """Append-only writer for one upload session."""

    def __init__(self, client: TusClient, upload: UploadSession, checksum: bool = False):
        self.client = client
        self.upload = upload
        self.checksum = checksum

    def tell(self) -> int:
        """Return the last offset confirmed by the server."""
        return self.upload.remote_offset

    def sync(self) -> int:
        """Refresh the confirmed offset from the server."""
        remote = self.client.get_upload(self.upload.location)
        self.upload.remote_offset = remote.remote_offset
        if remote.remote_size != OFFSET_UNKNOWN:
            self.upload.remote_size = remote.remote_size
        return self.upload.remote_offset

    def write(self, data: bytes) -> int:
        """Send data at the confirmed offset.

        Returns:
            Number of bytes the server acknowledged
        """
        offset = self.upload.remote_offset
        if offset == OFFSET_UNKNOWN:
            offset = self.sync()

        new_offset = self.client.patch_upload(self.upload.location, offset, data, self.checksum)
        if new_offset < offset:
            raise ProtocolError(f"Server offset went backwards: {offset} -> {new_offset}")

        self.upload.remote_offset = new_offset
        return new_offset - offset


def _int_header(response: requests.Response, name: str) -> Optional[int]:
    value = response.headers.get(name)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        raise ProtocolError(f"Malformed {name} header: {value!r}", response.status_code)


def _list_header(value: Optional[str]) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()] if value else []
