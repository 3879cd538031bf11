"""Tests for concatenation and merge polling."""

import threading

import pytest

from tus_uploader.core.exceptions import MergeTimeoutError, UploadCancelledError
from tus_uploader.core.merge import merge_and_await, wait_for_merge


def finished_parts(service, payloads):
    parts = []
    for payload in payloads:
        session = service.create_upload(len(payload), partial=True)
        service.accept(session.location, payload)
        parts.append(session)
    return parts


def test_polls_until_offset_matches_size(service, sleeps):
    parts = finished_parts(service, [b"hello ", b"world"])
    service.merge_pending_polls = 2

    merged = merge_and_await(service, parts, {"filename": "greeting.txt"}, sleep=sleeps)

    assert merged.remote_offset == merged.remote_size == 11
    assert service.polls.count(merged.location) == 3
    assert sleeps == [1.0, 1.0]
    assert service.data(merged.location) == b"hello world"
    assert merged.metadata == {"filename": "greeting.txt"}


def test_parts_are_concatenated_in_given_order(service, sleeps):
    parts = finished_parts(service, [b"a", b"b", b"c"])

    merged = merge_and_await(service, parts, sleep=sleeps)

    assert service.concatenations == [[p.location for p in parts]]
    assert service.data(merged.location) == b"abc"
    assert sleeps == []


def test_merge_timeout(service, sleeps):
    parts = finished_parts(service, [b"data"])
    service.merge_pending_polls = 100
    now = [0.0]

    def clock():
        return now[0]

    def fake_sleep(seconds):
        sleeps(seconds)
        now[0] += seconds

    final = service.concatenate_uploads(parts)
    with pytest.raises(MergeTimeoutError) as excinfo:
        wait_for_merge(service, final.location, poll_interval=1.0, timeout=3.0, sleep=fake_sleep, clock=clock)

    assert excinfo.value.location == final.location
    assert len(sleeps) == 3


def test_merge_wait_can_be_cancelled(service):
    parts = finished_parts(service, [b"data"])
    service.merge_pending_polls = 100
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(UploadCancelledError):
        merge_and_await(service, parts, poll_interval=30, cancel_event=cancel)


def test_accepted_final_upload_is_reported_before_polling(service, sleeps):
    parts = finished_parts(service, [b"ab", b"cd"])
    service.merge_pending_polls = 1
    accepted = []

    def poll(location):
        if location not in service.created:
            assert len(accepted) == 1

    service.poll_hook = poll
    merged = merge_and_await(service, parts, sleep=sleeps, on_accepted=accepted.append)

    assert [u.location for u in accepted] == [merged.location]
