"""生成调度测试：同步路径与工作线程路径"""

import os
import time
from unittest.mock import MagicMock

import pytest
import requests
from conftest import DONE, FakeResponse, sse

from generation_service import GenerationService
from models.task_model import GenerationMode, GenerationTask, InvalidTransitionError, TaskStatus
from sora_client import SoraClient
from task_ledger import TaskLedger
from utils.api_utils import RESTRICTION_MESSAGE
from utils.global_thread_pool import GlobalThreadPool

VIDEO_URL = "https://cdn.example.com/v/abc.mp4"


def success_stream(url=VIDEO_URL):
    return FakeResponse([
        sse({"reasoning_content": "20% queued"}),
        sse({"reasoning_content": "80% rendering"}),
        sse({"content": f"<video src='{url}'>"}),
        DONE,
    ])


def text_task(prompt="海边日落"):
    return GenerationTask(mode=GenerationMode.TEXT_TO_VIDEO, prompt=prompt)


@pytest.fixture
def ledger(clock):
    return TaskLedger(clock=clock)


@pytest.fixture
def client(ledger):
    client = SoraClient(base_url="http://gateway.test", api_key="sk-test", on_api_call=ledger.record_api_call)
    client.session.post = MagicMock()
    return client


@pytest.fixture
def thumbnailer():
    return MagicMock(side_effect=lambda url, path: path)


@pytest.fixture
def service(ledger, client, tmp_path, thumbnailer):
    return GenerationService(ledger, client, thumbnails_dir=str(tmp_path / "thumbs"), thumbnailer=thumbnailer)


def test_generate_now_completes_task_and_counts_usage(service, ledger, client, thumbnailer, tmp_path):
    client.session.post.return_value = success_stream()
    task = service.submit(text_task())
    changed = []
    service.task_changed.connect(changed.append)

    assert service.generate_now(task.id) == VIDEO_URL

    done = ledger.get(task.id)
    assert done.status is TaskStatus.COMPLETED
    assert done.progress == 100
    assert done.artifact_url == VIDEO_URL
    assert done.thumbnail == os.path.join(str(tmp_path / "thumbs"), f"{task.id}.jpg")
    thumbnailer.assert_called_once_with(VIDEO_URL, done.thumbnail)
    assert ledger.api_calls.total == 1
    assert ledger.artifacts.total == 1
    assert set(changed) == {task.id}


def test_generate_now_failure_records_message(service, ledger, client):
    client.session.post.return_value = FakeResponse([
        sse({"reasoning_content": "30%"}),
        requests.exceptions.ChunkedEncodingError("Connection broken: IncompleteRead(0 bytes read)"),
    ])
    task = service.submit(text_task())

    assert service.generate_now(task.id) is None

    failed = ledger.get(task.id)
    assert failed.status is TaskStatus.FAILED
    assert failed.progress == 30
    assert failed.progress_message == f"Error: {RESTRICTION_MESSAGE}"
    assert ledger.api_calls.total == 1
    assert ledger.artifacts.total == 0


def test_thumbnail_failure_leaves_task_completed(service, ledger, client, thumbnailer):
    client.session.post.return_value = success_stream()
    thumbnailer.side_effect = RuntimeError("未找到 ffmpeg，无法生成缩略图")
    task = service.submit(text_task())

    service.generate_now(task.id)

    done = ledger.get(task.id)
    assert done.status is TaskStatus.COMPLETED
    assert done.thumbnail is None


def test_delete_during_stream_ignores_late_callbacks(service, ledger, client, thumbnailer):
    task = service.submit(text_task())
    other = service.submit(text_task("另一个"))
    client.session.post.return_value = FakeResponse([
        sse({"reasoning_content": "20%"}),
        lambda: service.delete(task.id),
        sse({"reasoning_content": "80%"}),
        sse({"content": f"<video src='{VIDEO_URL}'>"}),
        DONE,
    ])

    assert service.generate_now(task.id) == VIDEO_URL

    assert task.id not in ledger
    assert [t.id for t in ledger.tasks] == [other.id]
    assert ledger.get(other.id).status is TaskStatus.PENDING
    # 视频确实产出了，计数照常增加
    assert ledger.artifacts.total == 1
    thumbnailer.assert_not_called()


def test_regenerate_keeps_record(service, ledger, client):
    client.session.post.side_effect = [success_stream(), success_stream("https://cdn.example.com/v/new.mp4")]
    task = service.submit(text_task())
    service.generate_now(task.id)

    service.generate_now(task.id)

    again = ledger.get(task.id)
    assert again.sequence_number == task.sequence_number
    assert again.attempt == 2
    assert again.artifact_url == "https://cdn.example.com/v/new.mp4"
    assert len(ledger) == 1
    assert ledger.api_calls.total == 2
    assert ledger.artifacts.total == 2


def test_unknown_task_raises(service):
    with pytest.raises(KeyError):
        service.generate_now("missing")


def test_start_requires_thread_pool(service):
    task = service.submit(text_task())
    with pytest.raises(RuntimeError):
        service.start(task.id)
    assert service.ledger.get(task.id).status is TaskStatus.PENDING


def _wait_for(qapp, condition, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        qapp.processEvents()
        if condition():
            return True
        time.sleep(0.01)
    return False


def test_start_runs_on_worker_thread(qapp, ledger, client, thumbnailer, tmp_path):
    client.session.post.return_value = success_stream()
    pool = GlobalThreadPool(max_workers=2)
    service = GenerationService(ledger, client, thread_pool=pool,
                                thumbnails_dir=str(tmp_path / "thumbs"), thumbnailer=thumbnailer)
    task = service.submit(text_task())

    attempt = service.start(task.id)
    assert attempt == 1
    assert ledger.get(task.id).status is TaskStatus.PROCESSING
    with pytest.raises(InvalidTransitionError):
        service.start(task.id)

    assert _wait_for(qapp, lambda: ledger.get(task.id).thumbnail is not None)
    done = ledger.get(task.id)
    assert done.status is TaskStatus.COMPLETED
    assert done.artifact_url == VIDEO_URL
    assert ledger.artifacts.total == 1
    assert ledger.api_calls.total == 1
    assert _wait_for(qapp, lambda: pool.active_count() == 0)
    pool.wait_all(2000)


def test_worker_exception_becomes_failure(qapp, ledger, client):
    client.session.post.side_effect = TypeError("unexpected")
    pool = GlobalThreadPool(max_workers=1)
    service = GenerationService(ledger, client, thread_pool=pool)
    task = service.submit(text_task())

    service.start(task.id)

    assert _wait_for(qapp, lambda: ledger.get(task.id).status is TaskStatus.FAILED)
    assert ledger.get(task.id).progress_message == "Error: unexpected"
    assert _wait_for(qapp, lambda: pool.active_count() == 0)
    pool.wait_all(2000)


def test_pool_queues_beyond_max_workers(qapp, ledger, client):
    client.session.post.side_effect = lambda *args, **kwargs: success_stream()
    pool = GlobalThreadPool(max_workers=1)
    service = GenerationService(ledger, client, thread_pool=pool)
    first = service.submit(text_task("一"))
    second = service.submit(text_task("二"))

    service.start(first.id)
    service.start(second.id)
    assert pool.active_count() + pool.queued_count() == 2
    assert pool.contains(first.id) and pool.contains(second.id)

    assert _wait_for(qapp, lambda: all(
        ledger.get(t.id).status is TaskStatus.COMPLETED for t in (first, second)))
    assert ledger.artifacts.total == 2
    assert _wait_for(qapp, lambda: pool.active_count() == 0)
    pool.wait_all(2000)


def test_unexpected_thumbnail_error_leaves_task_completed(service, ledger, client, thumbnailer):
    client.session.post.return_value = success_stream()
    thumbnailer.side_effect = PermissionError(13, "Permission denied: 'ffmpeg'")
    task = service.submit(text_task())

    assert service.generate_now(task.id) == VIDEO_URL

    done = ledger.get(task.id)
    assert done.status is TaskStatus.COMPLETED
    assert done.thumbnail is None


def test_ffmpeg_permission_error_does_not_escape(ledger, client, tmp_path, monkeypatch):
    def denied(*args, **kwargs):
        raise PermissionError(13, "Permission denied: 'ffmpeg'")

    monkeypatch.setattr("threads.thumbnail_thread.subprocess.run", denied)
    client.session.post.return_value = success_stream()
    service = GenerationService(ledger, client, thumbnails_dir=str(tmp_path / "thumbs"))
    task = service.submit(text_task())

    assert service.generate_now(task.id) == VIDEO_URL
    assert ledger.get(task.id).status is TaskStatus.COMPLETED


def _complete(service, client, url=VIDEO_URL):
    client.session.post.return_value = success_stream(url)
    task = service.submit(text_task())
    service.generate_now(task.id)
    return task


def test_download_now_saves_completed_video(service, client, tmp_path, monkeypatch):
    task = _complete(service, client)
    requested = []

    def fake_get(url, **kwargs):
        requested.append((url, kwargs))
        return FakeResponse([b"mp4-", b"bytes"], headers={"content-length": "9"})

    monkeypatch.setattr("threads.video_download_thread.requests.get", fake_get)
    progress = []

    path = service.download_now(task.id, str(tmp_path), on_progress=lambda done, total: progress.append((done, total)))

    assert path == str(tmp_path / f"sora-video-{task.id[:8]}.mp4")
    assert (tmp_path / f"sora-video-{task.id[:8]}.mp4").read_bytes() == b"mp4-bytes"
    assert requested[0][0] == VIDEO_URL
    assert requested[0][1]["stream"] is True
    assert progress == [(4, 9), (9, 9)]


def test_download_rejects_unfinished_task(service, tmp_path):
    task = service.submit(text_task())
    with pytest.raises(ValueError):
        service.download_now(task.id, str(tmp_path))
    with pytest.raises(KeyError):
        service.download_now("missing", str(tmp_path))


def test_start_download_reports_through_signal(qapp, ledger, client, tmp_path, monkeypatch):
    monkeypatch.setattr("threads.video_download_thread.requests.get",
                        lambda url, **kwargs: FakeResponse([b"video"]))
    pool = GlobalThreadPool(max_workers=1)
    service = GenerationService(ledger, client, thread_pool=pool)
    client.session.post.return_value = success_stream()
    task = service.submit(text_task())
    service.generate_now(task.id)
    results = []
    service.download_finished.connect(lambda task_id, ok, detail: results.append((task_id, ok, detail)))

    target = service.start_download(task.id, str(tmp_path / "out.mp4"))

    assert _wait_for(qapp, lambda: bool(results))
    assert results == [(task.id, True, target)]
    assert (tmp_path / "out.mp4").read_bytes() == b"video"
    assert _wait_for(qapp, lambda: pool.active_count() == 0)
    pool.wait_all(2000)
