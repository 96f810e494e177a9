import threading

import pytest
import requests

import chromasort.engine as engine
from chromasort.scanner import FileHandle
from chromasort.vision import Classification, ClassificationClient
from chromasort.vision_providers import OpenAICompatProvider


def _record(registry, path, colors=(), tags=()):
    return engine.make_record(FileHandle(path), Classification(tuple(colors), tuple(tags)), registry)


def test_merge_facet_sorted_union_and_idempotent() -> None:
    merged = engine.merge_facet(["Warm", "Cool"], ["Cool", "Earthy"])

    assert merged == ["Cool", "Earthy", "Warm"]
    assert engine.merge_facet(merged, ["Warm"]) == merged
    assert engine.merge_facet([], []) == []


def test_merge_records_keeps_first_per_name_and_size(make_image) -> None:
    registry = engine.DisplayRegistry()
    first = _record(registry, make_image("a/photo.jpg", b"abc"), ["#111111"])
    same_identity = _record(registry, make_image("b/photo.jpg", b"xyz"), ["#222222"])
    other_size = _record(registry, make_image("c/photo.jpg", b"abcd"))

    merged, dropped = engine.merge_records([first], [same_identity, other_size])

    assert merged == [first, other_size]
    assert dropped == [same_identity]


def test_failure_summary() -> None:
    assert engine.failure_summary([]) is None
    assert engine.failure_summary(["a", "b"]) == "Could not process 2 image(s). Check the log and API key."


def test_display_registry_acquire_resolve_release(make_image) -> None:
    registry = engine.DisplayRegistry()
    handle = registry.acquire(FileHandle(make_image("x.png", b"pixels")))

    assert handle.url.startswith("chromasort://")
    assert handle.url.endswith("/x.png")
    assert registry.resolve(handle.url) == b"pixels"
    assert len(registry) == 1

    registry.release(handle)
    assert len(registry) == 0
    with pytest.raises(KeyError):
        registry.resolve(handle.url)
    with pytest.raises(KeyError):
        registry.resolve("https://elsewhere/x.png")
    registry.release(handle)


def test_ingest_files_sequential_order_and_continues_after_failure(make_image, make_client) -> None:
    files = [FileHandle(make_image(f"{n}.png", n.encode())) for n in ("one", "two", "three")]
    client = make_client({
        b"one": {"colors": ["#FF0000"], "tags": ["Warm"]},
        b"two": requests.exceptions.ConnectionError("quota"),
        b"three": {"colors": ["#0000FF"], "tags": ["Cool"]},
    })
    registry = engine.DisplayRegistry()
    progress = []
    tracker = engine.StatsTracker()

    result = engine.ingest_files(
        files, client, registry,
        progress_callback=lambda i, t, n: progress.append((i, t, n)),
        tracker=tracker,
    )

    assert [r.name for r in result.records] == ["one.png", "three.png"]
    assert result.failures == ["two.png"]
    assert not result.stopped
    assert progress == [(1, 3, "one.png"), (2, 3, "two.png"), (3, 3, "three.png")]
    assert tracker.get("analyzed") == 2
    assert tracker.get("failed") == 1
    assert tracker.get("time").endswith("s")
    assert len(registry) == 2


def test_ingest_files_one_request_in_flight_by_default(make_image, make_client) -> None:
    files = [FileHandle(make_image(f"{i}.jpg", bytes([i]))) for i in range(4)]
    client = make_client(default={"colors": [], "tags": []})
    in_flight = []
    peak = []
    original = client.provider.send_request

    def counting(payload, timeout):
        in_flight.append(1)
        peak.append(len(in_flight))
        try:
            return original(payload, timeout)
        finally:
            in_flight.pop()

    client.provider.send_request = counting

    engine.ingest_files(files, client, engine.DisplayRegistry())

    assert max(peak) == 1
    assert len(client.provider.requests) == 4


def test_ingest_files_stop_event_halts_before_next_file(make_image, make_client) -> None:
    files = [FileHandle(make_image(f"{i}.png", bytes([i]))) for i in range(5)]
    client = make_client(default={"colors": ["#000000"], "tags": []})
    stop = threading.Event()

    def progress(index, total, name):
        if index == 2:
            stop.set()

    result = engine.ingest_files(files, client, engine.DisplayRegistry(), progress_callback=progress, stop_event=stop)

    assert result.stopped
    assert [r.name for r in result.records] == ["0.png", "1.png"]


def test_ingest_files_worker_pool_keeps_input_order(make_image, make_client) -> None:
    names = [f"img{i}.webp" for i in range(6)]
    files = [FileHandle(make_image(n, n.encode())) for n in names]
    client = make_client(default={"colors": ["#ABCDEF"], "tags": ["Calm"]})
    client.provider.answers[b"img3.webp"] = requests.exceptions.ConnectionError("boom")

    result = engine.ingest_files(files, client, engine.DisplayRegistry(), max_workers=3)

    assert [r.name for r in result.records] == [n for n in names if n != "img3.webp"]
    assert result.failures == ["img3.webp"]


def test_ingest_files_empty_list() -> None:
    result = engine.ingest_files([], client=None, registry=engine.DisplayRegistry())

    assert result.records == []
    assert result.failures == []


def test_process_single_image_logs_failure(make_image, make_client) -> None:
    path = make_image("bad.png", b"bad")
    client = make_client(default="{broken")
    messages = []

    assert engine.process_single_image(FileHandle(path), client, engine.DisplayRegistry(), messages.append) is None
    assert any("bad.png" in m and "invalid JSON" in m for m in messages)


def test_stats_tracker_callback_and_reset() -> None:
    seen = []
    tracker = engine.StatsTracker(callback=lambda k, v: seen.append((k, v)))

    tracker.increment("analyzed")
    tracker.increment("analyzed")
    tracker.reset()

    assert seen == [("analyzed", 1), ("analyzed", 2)]
    assert tracker.get("analyzed") == 0
    assert tracker.get("time") == "--"


class _Reply:
    def __init__(self, data):
        self._data = data
        self.status_code = 200

    def json(self):
        return self._data

    def raise_for_status(self):
        pass


def test_malformed_provider_body_fails_only_that_file(make_image, monkeypatch) -> None:
    files = [FileHandle(make_image(f"{n}.png", n.encode())) for n in ("first", "second", "third")]
    good = {"choices": [{"message": {"content": '{"colors": ["#FF0000"], "tags": ["Warm"]}'}}]}
    replies = [good, {"choices": [{"message": None}]}, good]
    monkeypatch.setattr(requests, "post", lambda *args, **kwargs: _Reply(replies.pop(0)))
    client = ClassificationClient(OpenAICompatProvider("http://llm.test/v1/chat/completions"), model="m")
    registry = engine.DisplayRegistry()
    messages = []

    result = engine.ingest_files(files, client, registry, log_callback=messages.append)

    assert [r.name for r in result.records] == ["first.png", "third.png"]
    assert result.failures == ["second.png"]
    assert len(registry) == 2
    assert any("second.png" in m and "unexpected response from openai" in m for m in messages)


def test_unexpected_provider_exception_does_not_abort_batch(make_image, make_client) -> None:
    files = [FileHandle(make_image(f"{n}.jpg", n.encode())) for n in ("a", "b", "c")]
    client = make_client(default={"colors": ["#010101"], "tags": []})
    client.provider.answers[b"b"] = RuntimeError("provider bug")
    messages = []

    result = engine.ingest_files(files, client, engine.DisplayRegistry(), log_callback=messages.append)

    assert [r.name for r in result.records] == ["a.jpg", "c.jpg"]
    assert result.failures == ["b.jpg"]
    assert any("RuntimeError" in m for m in messages)


def test_non_text_provider_answer_is_a_failure(make_image, make_client) -> None:
    files = [FileHandle(make_image("odd.png", b"odd"))]
    client = make_client(default=["#FF0000"])

    result = engine.ingest_files(files, client, engine.DisplayRegistry())

    assert result.records == []
    assert result.failures == ["odd.png"]


def test_worker_pool_honours_stop_set_before_start(make_image, make_client) -> None:
    files = [FileHandle(make_image(f"{i}.png", bytes([i]))) for i in range(4)]
    client = make_client(default={"colors": [], "tags": []})
    stop = threading.Event()
    stop.set()
    progress = []

    result = engine.ingest_files(
        files, client, engine.DisplayRegistry(),
        progress_callback=lambda i, t, n: progress.append(n),
        max_workers=2, stop_event=stop,
    )

    assert result.stopped
    assert result.records == []
    assert result.failures == []
    assert progress == []
    assert client.provider.requests == []


def test_worker_pool_stop_skips_files_not_yet_started(make_image, make_client) -> None:
    files = [FileHandle(make_image(f"{i}.png", bytes([i]))) for i in range(6)]
    client = make_client(default={"colors": ["#000000"], "tags": []})
    stop = threading.Event()
    started = []

    def progress(index, total, name):
        started.append(name)
        stop.set()

    result = engine.ingest_files(
        files, client, engine.DisplayRegistry(),
        progress_callback=progress, max_workers=2, stop_event=stop,
    )

    assert result.stopped
    assert 1 <= len(client.provider.requests) <= 2
    assert len(started) == len(client.provider.requests)
    assert sorted(r.name for r in result.records) == sorted(started)
    assert [r.name for r in result.records] == [f.name for f in files if f.name in started]


def test_worker_pool_reports_progress_per_started_file(make_image, make_client) -> None:
    files = [FileHandle(make_image(f"{i}.webp", bytes([i]))) for i in range(5)]
    client = make_client(default={"colors": [], "tags": []})
    seen = []

    def progress(index, total, name):
        seen.append((index, total, name, threading.current_thread() is threading.main_thread()))

    engine.ingest_files(files, client, engine.DisplayRegistry(), progress_callback=progress, max_workers=3)

    assert sorted(s[:3] for s in seen) == [(i, 5, f"{i - 1}.webp") for i in range(1, 6)]
    # Reported by the worker that is about to analyze the file
    assert not any(s[3] for s in seen)
