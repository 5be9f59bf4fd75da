"""测试公共 fixtures：临时数据目录、可控时钟、伪造的流式响应"""

import json

import pytest
import requests
from PyQt5.QtCore import QCoreApplication

from database_manager import DatabaseManager

START_TIME = 1_700_000_000.0


class FakeClock:
    """可手动推进的时钟"""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeResponse:
    """
    模拟 requests 的流式响应

    chunks 中的元素：str/bytes 作为数据块返回，Exception 在读取到该位置时抛出，
    可调用对象在读取到该位置时执行（用于模拟流进行中的用户操作）。
    """

    def __init__(self, chunks=(), status_code: int = 200, text: str = "", headers=None):
        self.chunks = list(chunks)
        self.status_code = status_code
        self.text = text
        self.headers = headers or {}
        self.closed = False

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def iter_content(self, chunk_size=None):
        for chunk in self.chunks:
            if isinstance(chunk, Exception):
                raise chunk
            if callable(chunk):
                chunk()
                continue
            yield chunk.encode("utf-8") if isinstance(chunk, str) else chunk

    def raise_for_status(self):
        if not self.ok:
            raise requests.exceptions.HTTPError(f"{self.status_code} Error")

    def close(self):
        self.closed = True


def sse(delta: dict) -> str:
    """构造一行 data: {...} 流数据（带换行）"""
    return "data: " + json.dumps({"choices": [{"delta": delta}]}, ensure_ascii=False) + "\n"


DONE = "data: [DONE]\n"


@pytest.fixture(scope="session")
def qapp():
    """跨线程信号需要 Qt 事件循环"""
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db(tmp_path):
    return DatabaseManager(str(tmp_path / "appdata"))
