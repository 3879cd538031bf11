"""Shared fixtures: an in-memory tus server and test files."""

import threading

import pytest

from tus_uploader.core.exceptions import ProtocolError
from tus_uploader.core.models import OFFSET_UNKNOWN, UploadSession


class FakeTusService:
    """Thread-safe stand-in for TusClient backed by dictionaries.

    ``patch_hook(location, offset, data)`` runs before every PATCH and may
    raise to simulate transport failures, and ``poll_hook(location)`` does the
    same for every status poll. ``merge_pending_polls`` is the
    number of status polls a final upload reports an unknown offset for.
    """

    base_url = "http://tus.test/files/"

    def __init__(self):
        self.lock = threading.Lock()
        self.uploads = {}
        self.capabilities = {"extensions": ["creation", "concatenation", "termination"]}
        self.created = []
        self.deleted = []
        self.concatenations = []
        self.polls = []
        self.patch_hook = None
        self.poll_hook = None
        self.create_hook = None
        self.merge_pending_polls = 0
        self.capability_calls = 0
        self._next_id = 0

    def update_capabilities(self):
        self.capability_calls += 1
        return self.capabilities

    def _session(self, location):
        upload = self.uploads.get(location)
        if upload is None:
            raise ProtocolError(f"Upload not found: {location}", 404)
        return upload

    def create_upload(self, size, partial=False, metadata=None):
        if self.create_hook:
            self.create_hook(size, partial, metadata)
        with self.lock:
            self._next_id += 1
            location = f"{self.base_url}{self._next_id}"
            self.uploads[location] = {
                "data": bytearray(),
                "size": size,
                "metadata": dict(metadata or {}),
                "partial": partial,
                "pending_polls": 0,
            }
            self.created.append(location)
        return UploadSession(
            location=location,
            remote_offset=0,
            remote_size=size,
            metadata=dict(metadata or {}),
            partial=partial,
        )

    def get_upload(self, location):
        if self.poll_hook:
            self.poll_hook(location)
        with self.lock:
            upload = self._session(location)
            self.polls.append(location)
            if upload["pending_polls"] > 0:
                upload["pending_polls"] -= 1
                offset, size = OFFSET_UNKNOWN, OFFSET_UNKNOWN
            else:
                offset, size = len(upload["data"]), upload["size"]
            return UploadSession(
                location=location,
                remote_offset=offset,
                remote_size=size,
                metadata=dict(upload["metadata"]),
                partial=upload["partial"],
            )

    def patch_upload(self, location, offset, data, checksum=False):
        if self.patch_hook:
            self.patch_hook(location, offset, data)
        with self.lock:
            upload = self._session(location)
            if offset != len(upload["data"]):
                raise ProtocolError(f"Upload offset mismatch for {location}", 409)
            if offset + len(data) > upload["size"]:
                raise ProtocolError("Upload exceeds declared length", 413)
            upload["data"].extend(data)
            return len(upload["data"])

    def accept(self, location, data):
        """Store bytes server-side without the client seeing the response."""
        with self.lock:
            self.uploads[location]["data"].extend(data)

    def concatenate_uploads(self, parts, metadata=None):
        with self.lock:
            merged = bytearray()
            for part in parts:
                upload = self._session(part.location)
                if not upload["partial"] or len(upload["data"]) != upload["size"]:
                    raise ProtocolError(f"Part {part.location} is not a finished partial upload", 400)
                merged.extend(upload["data"])
            self._next_id += 1
            location = f"{self.base_url}{self._next_id}"
            self.uploads[location] = {
                "data": merged,
                "size": len(merged),
                "metadata": dict(metadata or {}),
                "partial": False,
                "pending_polls": self.merge_pending_polls,
            }
            self.concatenations.append([p.location for p in parts])
        return UploadSession(location=location, metadata=dict(metadata or {}))

    def delete_upload(self, location):
        with self.lock:
            if location not in self.uploads:
                return False
            del self.uploads[location]
            self.deleted.append(location)
            return True

    def data(self, location):
        return bytes(self.uploads[location]["data"])


@pytest.fixture
def service():
    return FakeTusService()


@pytest.fixture
def make_file(tmp_path):
    """Create a file of ``size`` deterministic bytes."""

    def _make(size, name="payload.bin"):
        path = tmp_path / name
        path.write_bytes(bytes(i % 251 for i in range(size)))
        return path

    return _make


@pytest.fixture
def sleeps():
    """Recording replacement for time.sleep."""

    class Recorder(list):
        def __call__(self, seconds):
            self.append(seconds)

    return Recorder()
