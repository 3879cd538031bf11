"""End-to-end tests of TusUploader against the in-memory server."""

import threading

import pytest

from tus_uploader.core.api import TusUploader
from tus_uploader.core.exceptions import (
    MergeTimeoutError,
    NetworkError,
    PartialUploadFailure,
    ProtocolError,
    ValidationError,
)
from tus_uploader.core.models import UploaderConfig


def make_uploader(service, sleeps, progress=None, **overrides):
    values = {
        "base_url": service.base_url,
        "chunk_size": 1000,
        "concurrency": 3,
        "retries": 3,
        "stream_block_size": 400,
        "merge_poll_interval": 0,
    }
    values.update(overrides)
    return TusUploader(UploaderConfig(**values), client=service, progress_callback=progress, sleep=sleeps)


def test_upload_by_concat(service, make_file, sleeps):
    path = make_file(4_500, "big.zip")
    progress = []
    uploader = make_uploader(service, sleeps, progress=lambda done, total, speed: progress.append((done, total)))

    result = uploader.upload_by_concat(path, copy_path="/data/big.zip")

    assert result.chunks == 5
    assert result.size == 4_500
    assert service.data(result.location) == path.read_bytes()
    assert service.uploads[result.location]["metadata"] == {
        "filename": "big.zip",
        "Upload-Copy-Path": "/data/big.zip",
    }
    assert service.capability_calls == 1
    assert progress[-1] == (4_500, 4_500)
    assert len(progress) == 5


def test_copy_path_only_on_final_upload(service, make_file, sleeps):
    path = make_file(2_500)
    uploader = make_uploader(service, sleeps)

    result = uploader.upload_by_concat(path, copy_path="/data/x")

    parts = service.concatenations[0]
    for location in parts:
        metadata = service.uploads[location]["metadata"]
        assert metadata["filename"] == "payload.bin"
        assert "Upload-Copy-Path" not in metadata
    assert [service.uploads[p]["metadata"]["chunk"] for p in parts] == ["1", "2", "3"]
    assert service.uploads[result.location]["metadata"]["Upload-Copy-Path"] == "/data/x"


def test_retried_chunk_attempts_are_cleaned_up(service, make_file, sleeps):
    path = make_file(3_000)
    failed = []

    def hook(location, offset, data):
        metadata = service.uploads[location]["metadata"]
        if metadata.get("chunk") == "2" and not failed:
            failed.append(location)
            raise NetworkError("connection reset")

    service.patch_hook = hook
    uploader = make_uploader(service, sleeps)

    result = uploader.upload_by_concat(path)

    assert service.data(result.location) == path.read_bytes()
    assert service.deleted == failed
    assert len(sleeps) == 1


def test_partial_failure_cleans_up_and_skips_merge(service, make_file, sleeps):
    path = make_file(5_000)

    def hook(location, offset, data):
        if service.uploads[location]["metadata"].get("chunk") == "3":
            raise NetworkError("connection reset")

    service.patch_hook = hook
    uploader = make_uploader(service, sleeps, concurrency=1, retries=2)

    with pytest.raises(PartialUploadFailure) as excinfo:
        uploader.upload_by_concat(path)

    assert sorted(excinfo.value.errors) == [3]
    assert excinfo.value.skipped == [4, 5]
    assert service.concatenations == []
    assert sorted(service.deleted) == sorted(service.created)
    assert service.uploads == {}


def test_cleanup_can_be_disabled(service, make_file, sleeps):
    path = make_file(2_000)

    def hook(location, offset, data):
        raise ProtocolError("rejected", 400)

    service.patch_hook = hook
    uploader = make_uploader(service, sleeps, cleanup_on_failure=False)

    with pytest.raises(PartialUploadFailure):
        uploader.upload_by_concat(path)

    assert service.deleted == []


def test_server_without_concatenation(service, make_file, sleeps):
    service.capabilities = {"extensions": ["creation"]}
    uploader = make_uploader(service, sleeps)

    with pytest.raises(ProtocolError):
        uploader.upload_by_concat(make_file(100))


def test_upload_sequential(service, make_file, sleeps):
    path = make_file(2_345, "movie.mp4")
    uploader = make_uploader(service, sleeps)

    result = uploader.upload_sequential(path, copy_path="/videos/movie.mp4")

    upload = service.uploads[result.location]
    assert bytes(upload["data"]) == path.read_bytes()
    assert upload["partial"] is False
    assert upload["metadata"] == {"filename": "movie.mp4", "Upload-Copy-Path": "/videos/movie.mp4"}
    assert result.size == 2_345
    assert result.chunks == 1


def test_sequential_upload_survives_network_errors(service, make_file, sleeps):
    path = make_file(2_000)
    failures = [1, 1]

    def hook(location, offset, data):
        if offset == 800 and failures:
            failures.pop()
            raise NetworkError("connection reset")

    service.patch_hook = hook
    uploader = make_uploader(service, sleeps, resume_interval=5.0)

    result = uploader.upload_sequential(path)

    assert service.data(result.location) == path.read_bytes()
    assert sleeps == [5.0, 5.0]


def test_resume_existing_upload(service, make_file, sleeps):
    path = make_file(3_000)
    content = path.read_bytes()
    upload = service.create_upload(3_000)
    service.accept(upload.location, content[:1_234])
    uploader = make_uploader(service, sleeps)

    result = uploader.resume(upload.location, path)

    assert result.location == upload.location
    assert service.data(upload.location) == content


def test_resume_rejects_different_file(service, make_file, sleeps):
    upload = service.create_upload(3_000)
    uploader = make_uploader(service, sleeps)

    with pytest.raises(ValidationError):
        uploader.resume(upload.location, make_file(10))


def test_empty_file_uploads_without_chunks(service, make_file, sleeps):
    path = make_file(0)
    uploader = make_uploader(service, sleeps)

    result = uploader.upload_by_concat(path)

    assert result.size == 0
    assert service.concatenations == []


def test_missing_file(service, tmp_path, sleeps):
    uploader = make_uploader(service, sleeps)
    with pytest.raises(FileNotFoundError):
        uploader.upload_by_concat(tmp_path / "nope.bin")


def test_create_upload_from_file(service, make_file, sleeps):
    path = make_file(77, "notes.txt")
    uploader = make_uploader(service, sleeps)

    upload = uploader.create_upload_from_file(path, partial=True)

    assert upload.remote_size == 77
    assert upload.partial is True
    assert service.uploads[upload.location]["metadata"] == {"filename": "notes.txt"}


def test_failed_merge_poll_keeps_parts(service, make_file, sleeps):
    path = make_file(3_000)
    service.merge_pending_polls = 2
    failed_polls = []

    def poll(location):
        if location not in service.created and not failed_polls:
            failed_polls.append(location)
            raise NetworkError("HEAD timed out")

    service.poll_hook = poll
    uploader = make_uploader(service, sleeps)

    with pytest.raises(NetworkError):
        uploader.upload_by_concat(path)

    assert len(service.concatenations) == 1
    assert service.deleted == []
    for location in service.concatenations[0]:
        assert location in service.uploads
    assert failed_polls[0] in service.uploads


def test_merge_timeout_keeps_parts(service, make_file, sleeps):
    path = make_file(2_000)
    service.merge_pending_polls = 100
    uploader = make_uploader(service, sleeps, merge_poll_interval=1.0, merge_timeout=0.5)

    with pytest.raises(MergeTimeoutError):
        uploader.upload_by_concat(path)

    assert len(service.concatenations) == 1
    assert service.deleted == []


def test_rejected_concatenation_cleans_up(service, make_file, sleeps, monkeypatch):
    path = make_file(2_000)

    def reject(parts, metadata=None):
        raise ProtocolError("concatenation rejected", 400)

    monkeypatch.setattr(service, "concatenate_uploads", reject)
    uploader = make_uploader(service, sleeps)

    with pytest.raises(ProtocolError):
        uploader.upload_by_concat(path)

    assert sorted(service.deleted) == sorted(service.created)
    assert service.uploads == {}


def test_concurrent_uploads_clean_up_only_their_own_parts(service, make_file, sleeps):
    good = make_file(3_000, "good.bin")
    bad = make_file(2_000, "bad.bin")
    good_started = threading.Event()

    def create(size, partial, metadata):
        if metadata and metadata.get("filename") == "good.bin":
            good_started.set()

    def patch(location, offset, data):
        if service.uploads[location]["metadata"].get("filename") == "bad.bin":
            good_started.wait(5)
            raise ProtocolError("rejected", 400)

    service.create_hook = create
    service.patch_hook = patch
    uploader = make_uploader(service, sleeps)
    results = {}

    def run(name, path):
        try:
            results[name] = uploader.upload_by_concat(path)
        except Exception as e:
            results[name] = e

    threads = [
        threading.Thread(target=run, args=("good", good)),
        threading.Thread(target=run, args=("bad", bad)),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(10)

    assert isinstance(results["bad"], PartialUploadFailure)
    merged = results["good"]
    assert service.data(merged.location) == good.read_bytes()

    good_parts = set(service.concatenations[0])
    assert good_parts.isdisjoint(service.deleted)
    assert set(service.deleted) == set(service.created) - good_parts
