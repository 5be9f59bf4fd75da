"""
Sora 2 视频生成客户端
通过 chat completions 流式接口提交生成任务并跟踪进度
"""

import codecs
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

import requests
from loguru import logger

from constants import (
    CHAT_COMPLETIONS_PATH,
    DEFAULT_API_BASE_URL,
    MODELS_PATH,
    MODELS_REQUEST_TIMEOUT,
    USER_AGENT,
    VIDEO_GENERATION_TIMEOUT,
)
from models.model_info import ModelInfo
from models.stream_event import ArtifactReadyEvent, ProgressEvent, TerminalEvent
from models.task_model import GenerationMode, GenerationTask
from utils.api_utils import NO_ARTIFACT_MESSAGE, RestrictionClassifier, parse_api_error, parse_models_response
from utils.sse_utils import parse_sse_line

# 读流过程中可能出现的传输错误（断线、分块不完整、读超时）
_READ_ERRORS = (requests.exceptions.RequestException, OSError)

Content = Union[str, List[Dict[str, Any]]]


@dataclass
class GenerationCallbacks:
    """生成回调，同一次调用中 on_complete 与 on_error 至多触发其一"""
    on_progress: Optional[Callable[[Optional[int], str], None]] = None
    on_complete: Optional[Callable[[str], None]] = None
    on_error: Optional[Callable[[str], None]] = None


@dataclass
class _StreamState:
    video_url: Optional[str] = None
    finished: bool = False
    terminal: bool = False


def build_content(task: GenerationTask) -> Content:
    """
    按生成模式构建 messages[0].content

    Args:
        task: 生成任务

    Returns:
        字符串或多段内容列表
    """
    mode = task.mode
    prompt = task.prompt or ""

    if mode is GenerationMode.IMAGE_TO_VIDEO:
        if not task.image_data:
            return prompt
        return [
            {"type": "text", "text": prompt},
            {"type": "image_url", "image_url": {"url": task.image_data}},
        ]

    if mode is GenerationMode.REMIX:
        return f"{task.remix_source}{prompt}" if task.remix_source else prompt

    if mode is GenerationMode.CREATE_CHARACTER:
        if not task.video_data:
            return prompt
        return [{"type": "video_url", "video_url": {"url": task.video_data}}]

    if mode is GenerationMode.CHARACTER_TO_VIDEO:
        if not task.video_data:
            return prompt
        return [
            {"type": "video_url", "video_url": {"url": task.video_data}},
            {"type": "text", "text": prompt},
        ]

    return prompt


class SoraClient:
    """Sora 2 视频生成客户端"""

    def __init__(
        self,
        base_url: str = DEFAULT_API_BASE_URL,
        api_key: Optional[str] = None,
        timeout: int = VIDEO_GENERATION_TIMEOUT,
        on_api_call: Optional[Callable[[], None]] = None,
        classifier: Optional[RestrictionClassifier] = None,
    ):
        """
        初始化Sora客户端

        Args:
            base_url: API基础URL
            api_key: API密钥（Bearer）
            timeout: 单次生成的读超时（秒）
            on_api_call: 每发出一次生成请求时调用，用于累计API调用次数
            classifier: 传输错误分类器
        """
        self.base_url = base_url.rstrip('/')
        self.api_key = (api_key or "").strip()
        self.timeout = timeout
        self.on_api_call = on_api_call
        self.classifier = classifier or RestrictionClassifier()
        self.session = requests.Session()
        self.session.headers.update({
            'Accept': 'text/event-stream, application/json',
            'Content-Type': 'application/json',
            'User-Agent': USER_AGENT,
        })
        if self.api_key:
            self.session.headers['Authorization'] = f'Bearer {self.api_key}'
        else:
            logger.warning("SoraClient 未设置API密钥")

    def build_payload(self, task: GenerationTask) -> Dict[str, Any]:
        return {
            "model": task.model,
            "messages": [{"role": "user", "content": build_content(task)}],
            "stream": True,
        }

    def list_models(self) -> List[ModelInfo]:
        """
        获取可用模型列表

        Returns:
            List[ModelInfo]: 模型列表，请求失败或格式错误时返回空列表
        """
        url = f"{self.base_url}{MODELS_PATH}"
        try:
            response = self.session.get(url, timeout=MODELS_REQUEST_TIMEOUT)
            response.raise_for_status()
            models = parse_models_response(response.json())
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"获取模型列表失败: {e}")
            return []
        logger.info(f"获取到 {len(models)} 个模型")
        return models

    def generate(self, task: GenerationTask, callbacks: Optional[GenerationCallbacks] = None) -> Optional[str]:
        """
        提交生成请求并跟踪流式进度

        Args:
            task: 生成任务
            callbacks: 进度/完成/失败回调

        Returns:
            视频地址；失败时返回 None

        Raises:
            TaskValidationError: 任务缺少当前模式必需的输入（此时不会发出请求）
        """
        task.validate()
        callbacks = callbacks or GenerationCallbacks()

        url = f"{self.base_url}{CHAT_COMPLETIONS_PATH}"
        payload = self.build_payload(task)
        logger.info(f"创建视频任务 task={task.id} mode={task.mode.value} model={task.model}")

        if self.on_api_call is not None:
            self.on_api_call()

        try:
            response = self.session.post(url, json=payload, stream=True, timeout=self.timeout)
        except _READ_ERRORS as e:
            logger.error(f"请求发送失败 task={task.id}: {e}")
            self._emit_error(callbacks, self.classifier.classify(str(e)).message)
            return None

        try:
            if not response.ok:
                return self._handle_http_error(task, response, callbacks)
            return self._consume_stream(task, response, callbacks)
        finally:
            response.close()

    def _handle_http_error(self, task: GenerationTask, response, callbacks: GenerationCallbacks) -> None:
        try:
            error_text = response.text or f"HTTP error {response.status_code}"
        except _READ_ERRORS as e:
            logger.warning(f"读取错误响应内容失败 task={task.id} status={response.status_code}: {e}")
            error_text = f"HTTP error {response.status_code}"
        try:
            logger.error(f"生成请求被拒绝 task={task.id} status={response.status_code}: "
                         f"{parse_api_error(json.loads(error_text))}")
        except (ValueError, TypeError, AttributeError):
            logger.error(f"生成请求被拒绝 task={task.id} status={response.status_code}: {error_text[:500]}")
        self._emit_error(callbacks, error_text)
        return None

    def _consume_stream(self, task: GenerationTask, response, callbacks: GenerationCallbacks) -> Optional[str]:
        state = _StreamState()
        decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        buffer = ""
        chunks = response.iter_content(chunk_size=None)

        while not state.terminal:
            try:
                chunk = next(chunks)
            except StopIteration:
                break
            except _READ_ERRORS as e:
                return self._reconcile_read_failure(task, state, e, callbacks)

            if not chunk:
                continue
            buffer += decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
            lines = buffer.split('\n')
            buffer = lines.pop()

            for line in lines:
                self._dispatch_line(task, line, state, callbacks)
                if state.terminal:
                    break

        if not state.terminal:
            buffer += decoder.decode(b"", final=True)
            if buffer.strip():
                self._dispatch_line(task, buffer, state, callbacks)

        if state.video_url:
            self._emit_complete(task, state, callbacks)
            return state.video_url

        logger.error(f"流结束但没有返回视频地址 task={task.id}")
        self._emit_error(callbacks, NO_ARTIFACT_MESSAGE)
        return None

    def _dispatch_line(self, task: GenerationTask, line: str, state: _StreamState,
                       callbacks: GenerationCallbacks) -> None:
        line = line.strip()
        if not line:
            return
        event = parse_sse_line(line)
        if event is None:
            return

        if isinstance(event, ProgressEvent):
            logger.debug(f"生成进度 task={task.id} {event.percent}% {event.message}")
            if callbacks.on_progress is not None:
                callbacks.on_progress(event.percent, event.message)
        elif isinstance(event, ArtifactReadyEvent):
            if state.video_url is None:
                state.video_url = event.url
                logger.info(f"获取到视频地址 task={task.id}: {event.url}")
            else:
                logger.debug(f"忽略重复的视频地址 task={task.id}: {event.url}")
        elif isinstance(event, TerminalEvent):
            state.terminal = True
            if state.video_url:
                self._emit_complete(task, state, callbacks)

    def _reconcile_read_failure(self, task: GenerationTask, state: _StreamState, error: Exception,
                                callbacks: GenerationCallbacks) -> Optional[str]:
        if state.video_url:
            # 视频地址已经拿到，连接断开不影响结果
            logger.warning(f"读取流中断，但已获取视频地址，按成功处理 task={task.id}: {error}")
            self._emit_complete(task, state, callbacks)
            return state.video_url

        result = self.classifier.classify(str(error))
        if result.restricted:
            logger.error(f"生成失败，疑似内容限制 task={task.id} pattern={result.matched_pattern}: {error}")
        else:
            logger.error(f"读取流中断且没有视频地址 task={task.id}: {error}")
        self._emit_error(callbacks, result.message)
        return None

    @staticmethod
    def _emit_complete(task: GenerationTask, state: _StreamState, callbacks: GenerationCallbacks) -> None:
        if state.finished:
            return
        state.finished = True
        logger.info(f"视频生成完成 task={task.id}")
        if callbacks.on_complete is not None:
            callbacks.on_complete(state.video_url)

    @staticmethod
    def _emit_error(callbacks: GenerationCallbacks, message: str) -> None:
        if callbacks.on_error is not None:
            callbacks.on_error(message)
