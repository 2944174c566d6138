#!/usr/bin/env python3
"""
Tests for the yt-dlp provider, the asset ingestor worker pool and the
share service.  yt-dlp is replaced by an in-process command runner stub.
"""

import sys
import io
import json
import time
import logging
import tempfile
import threading
import subprocess
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

from vidfriends.core.constants import AssetStatus, AssetType, ErrorCode, YTDLP_BASE_ARGS
from vidfriends.core.error_codes import MediaError
from vidfriends.core.security_utils import SubprocessCancelled
from vidfriends.core.models import Metadata, DownloadedAsset, VideoShare
from vidfriends.core.ytdlp_provider import YTDLPProvider
from vidfriends.core.ingestor import AssetIngestor, fetch_timeout_for
from vidfriends.core.metadata_cache import CachingProvider
from vidfriends.core.interfaces import ProviderFunc
from vidfriends.core.db_sqlite import Database
from vidfriends.core.share_service import ShareService

QUIET = logging.getLogger("vidfriends.tests")
QUIET.addHandler(logging.NullHandler())
QUIET.propagate = False


def wait_for_condition(predicate, timeout=5.0, interval=0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class MemoryStorage:
    """Asset storage stub keeping uploads in memory."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.saved = {}
        self._lock = threading.Lock()

    def save(self, name, stream):
        if self.error:
            raise self.error
        data = stream.read()
        with self._lock:
            self.saved[name] = data
        return f"stored://{name}"


class RecordingUpdater:
    """Share status updater stub."""

    def __init__(self, ready_error: Exception | None = None,
                 failed_error: Exception | None = None):
        self.ready_error = ready_error
        self.failed_error = failed_error
        self.ready = []
        self.failed = []
        self._lock = threading.Lock()

    def mark_asset_ready(self, share_id, location, size):
        with self._lock:
            self.ready.append((share_id, location, size))
        if self.ready_error:
            raise self.ready_error

    def mark_asset_failed(self, share_id):
        with self._lock:
            self.failed.append(share_id)
        if self.failed_error:
            raise self.failed_error

    def outcomes(self) -> int:
        with self._lock:
            return len(self.ready) + len(self.failed)


class StubRunner:
    """Command runner stub returning a fixed CompletedProcess."""

    def __init__(self, payload=None, stdout=None, returncode=0, stderr="",
                 error: Exception | None = None, on_call=None):
        self.stdout = stdout if stdout is not None else json.dumps(payload or {})
        self.returncode = returncode
        self.stderr = stderr
        self.error = error
        self.on_call = on_call
        self.calls = []

    def __call__(self, args, timeout, cancel_event):
        self.calls.append((list(args), timeout))
        if self.on_call:
            self.on_call(args)
        if self.error:
            raise self.error
        return subprocess.CompletedProcess(args, self.returncode,
                                           stdout=self.stdout, stderr=self.stderr)


class StubFetcher:
    """Provider stub exposing fetch() directly, for ingestor tests."""

    timeout_sec = 1

    def __init__(self, fetch_func):
        self.fetch_func = fetch_func
        self.calls = []
        self._lock = threading.Lock()

    def fetch(self, url, download=False, storage=None, timeout_sec=None, cancel_event=None):
        with self._lock:
            self.calls.append(url)
        return self.fetch_func(url, storage)


def save_video(url, storage):
    location = storage.save("video.mp4", io.BytesIO(b"video-bytes"))
    return Metadata(title="t"), [DownloadedAsset(location=location, name="video.mp4", size=11)]


class TestYTDLPProvider(unittest.TestCase):
    """Test yt-dlp invocation and output handling."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.download_dir = Path(self.tmpdir.name)

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_defaults_normalized(self):
        provider = YTDLPProvider("  ", timeout_sec=0)
        self.assertEqual(provider.binary, "yt-dlp")
        self.assertEqual(provider.timeout_sec, 30)

    def test_lookup_args_and_metadata(self):
        runner = StubRunner({"title": "Video", "description": "Desc", "thumbnail": "thumb.jpg"})
        provider = YTDLPProvider("yt-dlp", timeout_sec=1, runner=runner)

        meta = provider.lookup("https://example.com")

        self.assertEqual(meta, Metadata(title="Video", description="Desc", thumbnail="thumb.jpg"))
        self.assertEqual(len(runner.calls), 1)
        args, timeout = runner.calls[0]
        self.assertEqual(args, ["yt-dlp", *YTDLP_BASE_ARGS, "--skip-download", "https://example.com"])
        self.assertEqual(timeout, 1)

    def test_lookup_empty_metadata(self):
        provider = YTDLPProvider(runner=StubRunner({"id": "abc"}))
        with self.assertRaises(MediaError) as ctx:
            provider.lookup("https://example.com")
        self.assertEqual(ctx.exception.code, ErrorCode.EMPTY_METADATA)

    def test_lookup_nonzero_exit(self):
        provider = YTDLPProvider(runner=StubRunner(stdout="", returncode=1,
                                                   stderr="ERROR: Unsupported URL"))
        with self.assertRaises(MediaError) as ctx:
            provider.lookup("https://example.com")
        self.assertEqual(ctx.exception.code, ErrorCode.EXTERNAL_TOOL_FAILURE)
        self.assertIn("Unsupported URL", ctx.exception.message)

    def test_lookup_invalid_json(self):
        provider = YTDLPProvider(runner=StubRunner(stdout="not json"))
        with self.assertRaises(MediaError) as ctx:
            provider.lookup("https://example.com")
        self.assertEqual(ctx.exception.code, ErrorCode.EXTERNAL_TOOL_FAILURE)

    def test_lookup_bytes_output(self):
        provider = YTDLPProvider(runner=StubRunner(stdout=b'{"title": "Bytes"}'))
        self.assertEqual(provider.lookup("https://example.com").title, "Bytes")

    def test_runner_timeout_and_cancel(self):
        provider = YTDLPProvider(runner=StubRunner(error=subprocess.TimeoutExpired(["yt-dlp"], 1)))
        with self.assertRaises(MediaError) as ctx:
            provider.lookup("https://example.com")
        self.assertEqual(ctx.exception.code, ErrorCode.EXTERNAL_TOOL_FAILURE)

        provider = YTDLPProvider(runner=StubRunner(error=SubprocessCancelled("yt-dlp cancelled")))
        with self.assertRaises(MediaError) as ctx:
            provider.lookup("https://example.com")
        self.assertEqual(ctx.exception.code, ErrorCode.CANCELLED)

    def test_runner_launch_failure(self):
        provider = YTDLPProvider(runner=StubRunner(error=FileNotFoundError("yt-dlp")))
        with self.assertRaises(MediaError) as ctx:
            provider.lookup("https://example.com")
        self.assertEqual(ctx.exception.code, ErrorCode.EXTERNAL_TOOL_FAILURE)

    def test_fetch_metadata_only(self):
        runner = StubRunner({"title": "Video"})
        provider = YTDLPProvider(runner=runner, download_dir=self.download_dir)
        meta, assets = provider.fetch("https://example.com")
        self.assertEqual(meta.title, "Video")
        self.assertEqual(assets, [])
        self.assertIn("--skip-download", runner.calls[0][0])

    def test_fetch_download_requires_storage(self):
        runner = StubRunner({"title": "Video"})
        provider = YTDLPProvider(runner=runner, download_dir=self.download_dir)
        with self.assertRaises(MediaError) as ctx:
            provider.fetch("https://example.com", download=True)
        self.assertEqual(ctx.exception.code, ErrorCode.ASSET_STORAGE_UNAVAILABLE)
        self.assertEqual(runner.calls, [])

    def test_fetch_downloads_and_persists(self):
        media = self.download_dir / "video.mp4"
        media.write_bytes(b"content")
        runner = StubRunner({
            "title": "Video",
            "requested_downloads": [{"filepath": str(media), "filesize": 7}],
        })
        provider = YTDLPProvider("yt-dlp", timeout_sec=1, runner=runner,
                                 download_dir=self.download_dir)
        storage = MemoryStorage()

        meta, assets = provider.fetch("https://example.com", download=True,
                                      storage=storage, timeout_sec=120)

        self.assertEqual(meta.title, "Video")
        self.assertEqual(storage.saved, {"video.mp4": b"content"})
        self.assertEqual(assets, [DownloadedAsset(location="stored://video.mp4",
                                                  name="video.mp4", size=7,
                                                  type=AssetType.VIDEO)])
        self.assertFalse(media.exists())

        args, timeout = runner.calls[0]
        self.assertEqual(timeout, 120)
        self.assertNotIn("--skip-download", args)
        self.assertIn("--no-simulate", args)
        output = Path(args[args.index("-o") + 1])
        self.assertEqual(output.name, "%(id)s.%(ext)s")
        self.assertEqual(output.parent.parent, self.download_dir)
        self.assertTrue(output.parent.name.startswith("fetch-"))
        self.assertEqual(args[-1], "https://example.com")
        self.assertEqual(list(self.download_dir.iterdir()), [])

    def test_fetch_size_falls_back_to_file(self):
        media = self.download_dir / "clip.webm"
        media.write_bytes(b"12345")
        runner = StubRunner({"title": "Video", "requested_downloads": [{"filename": str(media)}]})
        provider = YTDLPProvider(runner=runner, download_dir=self.download_dir)

        _, assets = provider.fetch("https://example.com", download=True, storage=MemoryStorage())
        self.assertEqual(assets[0].size, 5)
        self.assertEqual(assets[0].name, "clip.webm")

    def test_fetch_storage_failure_still_removes_file(self):
        media = self.download_dir / "video.mp4"
        media.write_bytes(b"content")
        runner = StubRunner({"title": "Video", "requested_downloads": [{"filepath": str(media)}]})
        provider = YTDLPProvider(runner=runner, download_dir=self.download_dir)
        storage = MemoryStorage(error=MediaError(ErrorCode.PERSISTENCE_FAILURE, "bucket down"))

        with self.assertRaises(MediaError) as ctx:
            provider.fetch("https://example.com", download=True, storage=storage)
        self.assertEqual(ctx.exception.code, ErrorCode.PERSISTENCE_FAILURE)
        self.assertFalse(media.exists())

    def test_fetch_storage_unexpected_error(self):
        media = self.download_dir / "video.mp4"
        media.write_bytes(b"content")
        runner = StubRunner({"title": "Video", "requested_downloads": [{"filepath": str(media)}]})
        provider = YTDLPProvider(runner=runner, download_dir=self.download_dir)

        with self.assertRaises(MediaError) as ctx:
            provider.fetch("https://example.com", download=True,
                           storage=MemoryStorage(error=OSError("disk full")))
        self.assertEqual(ctx.exception.code, ErrorCode.PERSISTENCE_FAILURE)

    def test_fetch_missing_download_file(self):
        runner = StubRunner({"title": "Video",
                             "requested_downloads": [{"filepath": str(self.download_dir / "gone.mp4")}]})
        provider = YTDLPProvider(runner=runner, download_dir=self.download_dir)
        storage = MemoryStorage()
        with self.assertRaises(MediaError) as ctx:
            provider.fetch("https://example.com", download=True, storage=storage)
        self.assertEqual(ctx.exception.code, ErrorCode.EXTERNAL_TOOL_FAILURE)
        self.assertEqual(storage.saved, {})

    def test_fetch_without_requested_downloads(self):
        provider = YTDLPProvider(runner=StubRunner({"title": "Video"}),
                                 download_dir=self.download_dir)
        with self.assertRaises(MediaError) as ctx:
            provider.fetch("https://example.com", download=True, storage=MemoryStorage())
        self.assertEqual(ctx.exception.code, ErrorCode.EXTERNAL_TOOL_FAILURE)

    def test_fetch_keeps_basename_verbatim(self):
        media = self.download_dir / "Ep..1.mp4"
        media.write_bytes(b"content")
        runner = StubRunner({"title": "Video", "requested_downloads": [{"filepath": str(media)}]})
        provider = YTDLPProvider(runner=runner, download_dir=self.download_dir)
        storage = MemoryStorage()

        _, assets = provider.fetch("https://example.com", download=True, storage=storage)

        self.assertEqual(list(storage.saved), ["Ep..1.mp4"])
        self.assertEqual(assets[0].name, "Ep..1.mp4")

    def test_fetch_unusable_name_still_removes_file(self):
        media = self.download_dir / "   "
        media.write_bytes(b"content")
        runner = StubRunner({"title": "Video", "requested_downloads": [{"filepath": str(media)}]})
        provider = YTDLPProvider(runner=runner, download_dir=self.download_dir)
        storage = MemoryStorage()

        with self.assertRaises(MediaError) as ctx:
            provider.fetch("https://example.com", download=True, storage=storage)
        self.assertEqual(ctx.exception.code, ErrorCode.EXTERNAL_TOOL_FAILURE)
        self.assertFalse(media.exists())
        self.assertEqual(storage.saved, {})

    def test_fetch_failure_removes_scratch_dir(self):
        def write_partial(args):
            output = Path(args[args.index("-o") + 1])
            output.with_name("abc.mp4.part").write_bytes(b"partial")

        runner = StubRunner(stdout="", returncode=1, stderr="ERROR: interrupted", on_call=write_partial)
        provider = YTDLPProvider(runner=runner, download_dir=self.download_dir)

        with self.assertRaises(MediaError):
            provider.fetch("https://example.com", download=True, storage=MemoryStorage())
        self.assertEqual(list(self.download_dir.iterdir()), [])


class TestAssetIngestor(unittest.TestCase):
    """Test the ingestion worker pool."""

    def setUp(self):
        self.ingestors = []
        self.tmpdir = tempfile.TemporaryDirectory()

    def tearDown(self):
        for ingestor in self.ingestors:
            try:
                ingestor.shutdown(timeout_sec=5)
            except MediaError:
                pass
        self.tmpdir.cleanup()

    def make_ingestor(self, provider, storage=None, updater=None, **kwargs):
        ingestor = AssetIngestor(provider, storage or MemoryStorage(),
                                 updater or RecordingUpdater(), logger=QUIET, **kwargs)
        self.ingestors.append(ingestor)
        return ingestor

    def test_fetch_timeout_for(self):
        self.assertEqual(fetch_timeout_for(YTDLPProvider(timeout_sec=30)), 120)
        self.assertEqual(fetch_timeout_for(YTDLPProvider(timeout_sec=90)), 180)

    def test_requires_dependencies(self):
        with self.assertRaises(ValueError):
            AssetIngestor(None, MemoryStorage(), RecordingUpdater())
        with self.assertRaises(ValueError):
            AssetIngestor(StubFetcher(save_video), None, RecordingUpdater())
        with self.assertRaises(ValueError):
            AssetIngestor(StubFetcher(save_video), MemoryStorage(), None)

    def test_sizes_normalized(self):
        ingestor = self.make_ingestor(StubFetcher(save_video), queue_size=0, workers=-1)
        self.assertEqual(ingestor.queue_size, 16)
        self.assertEqual(ingestor.worker_count, 1)

    def test_successful_ingestion(self):
        download_dir = Path(self.tmpdir.name)
        media = download_dir / "video.mp4"

        def write_media(args):
            media.write_bytes(b"video-bytes")

        runner = StubRunner({
            "title": "Title",
            "requested_downloads": [{"filepath": str(media), "filesize": 11}],
        }, on_call=write_media)
        provider = YTDLPProvider("yt-dlp", timeout_sec=1, runner=runner, download_dir=download_dir)
        storage = MemoryStorage()
        updater = RecordingUpdater()
        ingestor = self.make_ingestor(provider, storage, updater, queue_size=1, workers=1)

        ingestor.enqueue(VideoShare(id="s1", url="https://example.com/v"))

        self.assertTrue(wait_for_condition(lambda: updater.outcomes() == 1))
        self.assertEqual(updater.ready, [("s1", "stored://s1/video.mp4", 11)])
        self.assertEqual(updater.failed, [])
        self.assertEqual(storage.saved, {"s1/video.mp4": b"video-bytes"})
        self.assertFalse(media.exists())
        self.assertEqual(runner.calls[0][1], 120)

    def test_concurrent_downloads_of_same_video(self):
        barrier = threading.Barrier(2, timeout=5)

        def runner(args, timeout, cancel_event):
            template = args[args.index("-o") + 1]
            media = Path(template.replace("%(id)s", "abc").replace("%(ext)s", "mp4"))
            media.write_bytes(b"video-bytes")
            barrier.wait()
            payload = {"title": "Title", "requested_downloads": [{"filepath": str(media)}]}
            return subprocess.CompletedProcess(args, 0, stdout=json.dumps(payload), stderr="")

        download_dir = Path(self.tmpdir.name)
        provider = YTDLPProvider("yt-dlp", timeout_sec=1, runner=runner, download_dir=download_dir)
        storage = MemoryStorage()
        updater = RecordingUpdater()
        ingestor = self.make_ingestor(provider, storage, updater, queue_size=2, workers=2)

        ingestor.enqueue(VideoShare(id="s1", url="https://example.com/v"))
        ingestor.enqueue(VideoShare(id="s2", url="https://example.com/v"))
        ingestor.shutdown(timeout_sec=5)

        self.assertEqual(updater.failed, [])
        self.assertEqual(sorted(r[0] for r in updater.ready), ["s1", "s2"])
        self.assertEqual(storage.saved, {"s1/abc.mp4": b"video-bytes",
                                         "s2/abc.mp4": b"video-bytes"})
        self.assertEqual(list(download_dir.iterdir()), [])

    def test_fetch_failure_marks_failed(self):
        runner = StubRunner(error=OSError("yt-dlp error"))
        provider = YTDLPProvider(timeout_sec=1, runner=runner, download_dir=Path(self.tmpdir.name))
        updater = RecordingUpdater()
        ingestor = self.make_ingestor(provider, updater=updater)

        ingestor.enqueue(VideoShare(id="s1", url="https://example.com/v"))

        self.assertTrue(wait_for_condition(lambda: updater.outcomes() == 1))
        self.assertEqual(updater.failed, ["s1"])
        self.assertEqual(updater.ready, [])

    def test_unexpected_error_marks_failed(self):
        def explode(url, storage):
            raise ValueError("boom")

        updater = RecordingUpdater()
        ingestor = self.make_ingestor(StubFetcher(explode), updater=updater)
        ingestor.enqueue(VideoShare(id="s1", url="https://example.com/v"))

        self.assertTrue(wait_for_condition(lambda: updater.outcomes() == 1))
        self.assertEqual(updater.failed, ["s1"])

    def test_no_video_asset_marks_failed(self):
        updater = RecordingUpdater()
        ingestor = self.make_ingestor(StubFetcher(lambda url, storage: (Metadata(title="t"), [])),
                                      updater=updater)
        ingestor.enqueue(VideoShare(id="s1", url="https://example.com/v"))

        self.assertTrue(wait_for_condition(lambda: updater.outcomes() == 1))
        self.assertEqual(updater.failed, ["s1"])
        self.assertEqual(updater.ready, [])

    def test_ready_failure_falls_back_to_failed(self):
        updater = RecordingUpdater(ready_error=MediaError(ErrorCode.PERSISTENCE_FAILURE, "db down"))
        ingestor = self.make_ingestor(StubFetcher(save_video), updater=updater)
        ingestor.enqueue(VideoShare(id="s1", url="https://example.com/v"))

        self.assertTrue(wait_for_condition(lambda: updater.failed == ["s1"]))
        self.assertEqual([r[0] for r in updater.ready], ["s1"])

    def test_failed_update_error_keeps_worker_alive(self):
        def explode(url, storage):
            raise MediaError(ErrorCode.EXTERNAL_TOOL_FAILURE, "boom")

        updater = RecordingUpdater(failed_error=MediaError(ErrorCode.PERSISTENCE_FAILURE, "db down"))
        ingestor = self.make_ingestor(StubFetcher(explode), updater=updater, workers=1)
        ingestor.enqueue(VideoShare(id="s1", url="https://example.com/1"))
        ingestor.enqueue(VideoShare(id="s2", url="https://example.com/2"))

        self.assertTrue(wait_for_condition(lambda: updater.failed == ["s1", "s2"]))
        self.assertEqual(ingestor.stats()['failed'], 2)

    def test_exactly_one_outcome_per_job(self):
        def alternate(url, storage):
            if url.endswith("odd"):
                raise MediaError(ErrorCode.EXTERNAL_TOOL_FAILURE, "unsupported")
            return save_video(url, storage)

        updater = RecordingUpdater()
        ingestor = self.make_ingestor(StubFetcher(alternate), updater=updater,
                                      queue_size=4, workers=3)
        for i in range(12):
            suffix = "odd" if i % 2 else "even"
            ingestor.enqueue(VideoShare(id=f"s{i}", url=f"https://example.com/{suffix}"))
        ingestor.shutdown(timeout_sec=5)

        ready_ids = [r[0] for r in updater.ready]
        self.assertEqual(len(ready_ids) + len(updater.failed), 12)
        self.assertEqual(set(ready_ids) | set(updater.failed), {f"s{i}" for i in range(12)})
        self.assertFalse(set(ready_ids) & set(updater.failed))
        self.assertEqual(ingestor.stats()['processed'], 12)

    def test_concurrency_bounded_by_workers(self):
        lock = threading.Lock()
        state = {'active': 0, 'max': 0}

        def slow(url, storage):
            with lock:
                state['active'] += 1
                state['max'] = max(state['max'], state['active'])
            time.sleep(0.02)
            with lock:
                state['active'] -= 1
            return save_video(url, storage)

        updater = RecordingUpdater()
        ingestor = self.make_ingestor(StubFetcher(slow), updater=updater, queue_size=8, workers=2)
        for i in range(8):
            ingestor.enqueue(VideoShare(id=f"s{i}", url="https://example.com/v"))
        ingestor.shutdown(timeout_sec=5)

        self.assertEqual(len(updater.ready), 8)
        self.assertLessEqual(state['max'], 2)

    def _blocking_ingestor(self, queue_size=1, updater=None):
        started = threading.Event()
        gate = threading.Event()

        def blocked(url, storage):
            started.set()
            gate.wait(5)
            return save_video(url, storage)

        updater = updater or RecordingUpdater()
        ingestor = self.make_ingestor(StubFetcher(blocked), updater=updater,
                                      queue_size=queue_size, workers=1)
        return ingestor, updater, started, gate

    def test_enqueue_full_queue_cancellable(self):
        ingestor, updater, started, gate = self._blocking_ingestor(queue_size=1)
        ingestor.enqueue(VideoShare(id="s1", url="https://example.com/1"))
        self.assertTrue(started.wait(5))
        ingestor.enqueue(VideoShare(id="s2", url="https://example.com/2"))

        with self.assertRaises(MediaError) as ctx:
            ingestor.enqueue(VideoShare(id="s3", url="https://example.com/3"), timeout_sec=0.05)
        self.assertEqual(ctx.exception.code, ErrorCode.CANCELLED)

        cancel = threading.Event()
        threading.Timer(0.05, cancel.set).start()
        with self.assertRaises(MediaError) as ctx:
            ingestor.enqueue(VideoShare(id="s4", url="https://example.com/4"), cancel_event=cancel)
        self.assertEqual(ctx.exception.code, ErrorCode.CANCELLED)

        gate.set()
        ingestor.shutdown(timeout_sec=5)
        self.assertEqual(sorted(r[0] for r in updater.ready), ["s1", "s2"])
        self.assertEqual(updater.failed, [])

    def test_blocked_enqueue_released_by_shutdown(self):
        ingestor, updater, started, gate = self._blocking_ingestor(queue_size=1)
        ingestor.enqueue(VideoShare(id="s1", url="https://example.com/1"))
        self.assertTrue(started.wait(5))
        ingestor.enqueue(VideoShare(id="s2", url="https://example.com/2"))

        errors = []

        def blocked_enqueue():
            try:
                ingestor.enqueue(VideoShare(id="s3", url="https://example.com/3"), timeout_sec=5)
            except MediaError as e:
                errors.append(e)

        producer = threading.Thread(target=blocked_enqueue)
        producer.start()
        time.sleep(0.05)
        closer = threading.Thread(target=ingestor.shutdown, kwargs={'timeout_sec': 5})
        closer.start()

        producer.join(5)
        self.assertEqual(len(errors), 1)
        self.assertEqual(errors[0].code, ErrorCode.QUEUE_CLOSED)

        gate.set()
        closer.join(5)
        self.assertEqual(sorted(r[0] for r in updater.ready), ["s1", "s2"])

    def test_enqueue_after_shutdown(self):
        fetcher = StubFetcher(save_video)
        ingestor = self.make_ingestor(fetcher)
        ingestor.shutdown(timeout_sec=5)

        with self.assertRaises(MediaError) as ctx:
            ingestor.enqueue(VideoShare(id="s1", url="https://example.com/v"))
        self.assertEqual(ctx.exception.code, ErrorCode.QUEUE_CLOSED)
        self.assertTrue(ctx.exception.cancellation)
        self.assertEqual(fetcher.calls, [])

    def test_shutdown_idempotent(self):
        ingestor = self.make_ingestor(StubFetcher(save_video), workers=2)
        ingestor.shutdown(timeout_sec=5)
        ingestor.shutdown(timeout_sec=5)
        self.assertTrue(ingestor.closed)

    def test_shutdown_deadline_and_drain(self):
        ingestor, updater, started, gate = self._blocking_ingestor(queue_size=4)
        for i in range(3):
            ingestor.enqueue(VideoShare(id=f"s{i}", url="https://example.com/v"))
        self.assertTrue(started.wait(5))

        with self.assertRaises(MediaError) as ctx:
            ingestor.shutdown(timeout_sec=0.05)
        self.assertEqual(ctx.exception.code, ErrorCode.CANCELLED)
        self.assertEqual(ingestor.in_flight(), ["s0"])
        self.assertIn("s0", ctx.exception.message)

        gate.set()
        ingestor.shutdown(timeout_sec=5)
        self.assertEqual(sorted(r[0] for r in updater.ready), ["s0", "s1", "s2"])
        self.assertEqual(ingestor.in_flight(), [])


class TestShareService(unittest.TestCase):
    """Test the share creation flow end to end with stub collaborators."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db = Database(Path(self.tmpdir.name) / "shares.db")
        self.lookups = []

        def lookup(url):
            self.lookups.append(url)
            if "broken" in url:
                raise MediaError(ErrorCode.EMPTY_METADATA, "yt-dlp returned empty metadata")
            return Metadata(title="Shared", description="D", thumbnail="t.jpg")

        self.metadata = CachingProvider(ProviderFunc(lookup), ttl_sec=60)
        self.ingestor = AssetIngestor(StubFetcher(save_video), MemoryStorage(), self.db, logger=QUIET)
        self.service = ShareService(self.metadata, self.db, self.ingestor)

    def tearDown(self):
        self.service.close(timeout_sec=5)
        self.tmpdir.cleanup()

    def test_share_video_ingests_asset(self):
        share = self.service.share_video("u1", " https://example.com/v ")

        self.assertEqual(share.asset_status, AssetStatus.PENDING)
        self.assertEqual(share.title, "Shared")
        self.assertEqual(share.url, "https://example.com/v")
        self.assertTrue(wait_for_condition(
            lambda: self.service.get_share(share.id).asset_status == AssetStatus.READY))
        stored = self.service.get_share(share.id)
        self.assertEqual(stored.asset_url, f"stored://{share.id}/video.mp4")
        self.assertEqual(stored.asset_size, 11)

    def test_lookup_is_cached(self):
        self.service.lookup("https://example.com/v")
        self.service.share_video("u1", "https://example.com/v")
        self.assertEqual(self.lookups, ["https://example.com/v"])

    def test_invalid_url_creates_nothing(self):
        with self.assertRaises(MediaError) as ctx:
            self.service.share_video("u1", "ftp://example.com/v")
        self.assertEqual(ctx.exception.code, ErrorCode.INVALID_URL)
        self.assertEqual(self.service.list_shares(), [])
        self.assertEqual(self.lookups, [])

    def test_enqueue_after_close_marks_share_failed(self):
        self.ingestor.shutdown(timeout_sec=5)
        with self.assertRaises(MediaError) as ctx:
            self.service.share_video("u1", "https://example.com/v")
        self.assertEqual(ctx.exception.code, ErrorCode.QUEUE_CLOSED)

        shares = self.service.list_shares(owner_id="u1")
        self.assertEqual(len(shares), 1)
        self.assertEqual(shares[0].asset_status, AssetStatus.FAILED)

    def test_share_file_continues_past_failures(self):
        url_file = Path(self.tmpdir.name) / "urls.txt"
        url_file.write_text(
            "# weekend picks\n"
            "https://example.com/a\n"
            "https://example.com/broken\n"
            "not a url\n"
            "https://example.com/b\n",
            encoding="utf-8",
        )

        results = self.service.share_file("u1", str(url_file))

        self.assertEqual([url for url, _ in results],
                         ["https://example.com/a", "https://example.com/broken", "https://example.com/b"])
        self.assertIsInstance(results[0][1], VideoShare)
        self.assertEqual(results[1][1].code, ErrorCode.EMPTY_METADATA)
        self.assertIsInstance(results[2][1], VideoShare)
        self.assertEqual(len(self.service.list_shares(owner_id="u1")), 2)

    def test_pending_shares(self):
        pending = self.db.create_share("https://example.com/p", owner_id="u1")
        done = self.db.create_share("https://example.com/d", owner_id="u1")
        self.db.mark_asset_failed(done.id)

        self.assertEqual([s.id for s in self.service.pending_shares()], [pending.id])

    def test_close_keeps_database_open_while_workers_busy(self):
        started = threading.Event()
        gate = threading.Event()

        def blocked(url, storage):
            started.set()
            gate.wait(5)
            return save_video(url, storage)

        db = Database(Path(self.tmpdir.name) / "busy.db")
        ingestor = AssetIngestor(StubFetcher(blocked), MemoryStorage(), db, logger=QUIET)
        service = ShareService(self.metadata, db, ingestor)
        share = service.share_video("u1", "https://example.com/slow")
        self.assertTrue(started.wait(5))

        with self.assertRaises(MediaError) as ctx:
            service.close(timeout_sec=0.05)
        self.assertEqual(ctx.exception.code, ErrorCode.CANCELLED)
        self.assertEqual(ingestor.in_flight(), [share.id])

        gate.set()
        self.assertTrue(wait_for_condition(
            lambda: service.get_share(share.id).asset_status == AssetStatus.READY))
        service.close(timeout_sec=5)
        self.assertEqual(ingestor.in_flight(), [])


if __name__ == "__main__":
    unittest.main()
