"""命令行入口测试"""

import pytest
import requests
from conftest import DONE, FakeResponse, sse

import main

VIDEO_URL = "https://cdn.example.com/v/abc.mp4"


@pytest.fixture(autouse=True)
def quiet(monkeypatch):
    # 不改动全局日志配置，也不截取缩略图
    monkeypatch.setattr(main, "setup_logging", lambda *args, **kwargs: "")
    monkeypatch.setattr("generation_service.extract_thumbnail", lambda url, path: path)
    monkeypatch.setenv("SORA_API_KEY", "sk-test")


@pytest.fixture
def data_dir(tmp_path):
    return str(tmp_path / "appdata")


def run(data_dir, *args):
    return main.main(["--data-dir", data_dir, *args])


def test_submit_then_list(data_dir, capsys):
    assert run(data_dir, "submit", "--prompt", "海边日落") == 0
    assert run(data_dir, "list") == 0
    out = capsys.readouterr().out
    assert "任务已创建 #1" in out
    assert "pending" in out


def test_submit_rejects_missing_input(data_dir, capsys):
    assert run(data_dir, "submit", "--mode", "image-to-video", "--prompt", "动起来") == 2
    assert "参考图片" in capsys.readouterr().out
    assert run(data_dir, "list") == 0
    assert "暂无任务" in capsys.readouterr().out


def test_submit_and_run(data_dir, capsys, monkeypatch):
    calls = []

    def fake_post(self, url, **kwargs):
        calls.append((url, kwargs["json"]))
        return FakeResponse([sse({"reasoning_content": "50%"}), sse({"content": f"<video src='{VIDEO_URL}'>"}), DONE])

    monkeypatch.setattr(requests.Session, "post", fake_post)

    assert run(data_dir, "submit", "--prompt", "海边日落", "--orientation", "portrait", "--run") == 0
    out = capsys.readouterr().out
    assert VIDEO_URL in out
    assert calls[0][0].endswith("/v1/chat/completions")
    assert calls[0][1]["model"] == "sora-video-portrait-10s"

    assert run(data_dir, "stats") == 0
    out = capsys.readouterr().out
    assert "视频产出(24h/总计): 1/1" in out
    assert "API调用(24h/总计):  1/1" in out


def test_image_file_is_sent_as_data_url(data_dir, tmp_path, monkeypatch):
    image = tmp_path / "cat.png"
    image.write_bytes(b"\x89PNG")
    sent = []

    def fake_post(self, url, **kwargs):
        sent.append(kwargs["json"])
        return FakeResponse([sse({"content": f"<video src='{VIDEO_URL}'>"}), DONE])

    monkeypatch.setattr(requests.Session, "post", fake_post)

    assert run(data_dir, "submit", "--mode", "image-to-video", "--image", str(image), "--run") == 0
    content = sent[0]["messages"][0]["content"]
    assert content[1]["image_url"]["url"] == "data:image/png;base64,iVBORw=="


def test_failed_run_returns_error(data_dir, capsys, monkeypatch):
    monkeypatch.setattr(requests.Session, "post",
                        lambda self, url, **kwargs: FakeResponse(status_code=500, text="upstream exploded"))

    assert run(data_dir, "submit", "--prompt", "x", "--run") == 1
    assert "Error: upstream exploded" in capsys.readouterr().out


def test_delete_by_prefix(data_dir, capsys):
    run(data_dir, "submit", "--prompt", "x")
    out = capsys.readouterr().out
    task_id = out.strip().split()[-1]

    assert run(data_dir, "delete", task_id[:8]) == 0
    assert run(data_dir, "run", task_id[:8]) == 1
    assert "未找到任务" in capsys.readouterr().out


def test_models_lists_only_video_models(data_dir, capsys, monkeypatch):
    class ModelsResponse:
        def raise_for_status(self):
            pass

        def json(self):
            return {"data": [{"id": "sora-video-landscape-10s", "description": "横屏"}, {"id": "gpt-image"}]}

    monkeypatch.setattr(requests.Session, "get", lambda self, url, **kwargs: ModelsResponse())

    assert run(data_dir, "models") == 0
    out = capsys.readouterr().out
    assert "sora-video-landscape-10s" in out
    assert "gpt-image" not in out


def _submit_completed(data_dir, capsys, monkeypatch):
    monkeypatch.setattr(requests.Session, "post",
                        lambda self, url, **kwargs: FakeResponse([sse({"content": f"<video src='{VIDEO_URL}'>"}), DONE]))
    assert run(data_dir, "submit", "--prompt", "海边日落", "--run") == 0
    out = capsys.readouterr().out
    return out.split("任务已创建 #1 ")[1].split()[0]


def test_download_completed_task(data_dir, capsys, monkeypatch, tmp_path):
    task_id = _submit_completed(data_dir, capsys, monkeypatch)
    monkeypatch.setattr(requests, "get", lambda url, **kwargs: FakeResponse([b"mp4"]))
    out_dir = tmp_path / "videos"
    out_dir.mkdir()

    assert run(data_dir, "download", task_id[:8], "--output", str(out_dir)) == 0
    saved = out_dir / f"sora-video-{task_id[:8]}.mp4"
    assert saved.read_bytes() == b"mp4"
    assert str(saved) in capsys.readouterr().out


def test_download_defaults_to_current_directory(data_dir, capsys, monkeypatch, tmp_path):
    task_id = _submit_completed(data_dir, capsys, monkeypatch)
    monkeypatch.setattr(requests, "get", lambda url, **kwargs: FakeResponse([b"mp4"]))
    monkeypatch.chdir(tmp_path)

    assert run(data_dir, "download", task_id) == 0
    assert (tmp_path / f"sora-video-{task_id[:8]}.mp4").read_bytes() == b"mp4"


def test_download_rejects_pending_task(data_dir, capsys):
    run(data_dir, "submit", "--prompt", "x")
    task_id = capsys.readouterr().out.strip().split()[-1]

    assert run(data_dir, "download", task_id) == 1
    assert "尚未完成" in capsys.readouterr().out


def test_download_failure_is_reported(data_dir, capsys, monkeypatch, tmp_path):
    task_id = _submit_completed(data_dir, capsys, monkeypatch)
    monkeypatch.setattr(requests, "get", lambda url, **kwargs: FakeResponse(status_code=403))

    assert run(data_dir, "download", task_id, "-o", str(tmp_path / "out.mp4")) == 1
    assert "下载出错" in capsys.readouterr().out
