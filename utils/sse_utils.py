"""
流式响应解析工具

把 chat completions 流式响应中的单行文本解析为事件。解析是无状态的，
缓冲与按行切分由 SoraClient 负责。
"""

import json
import re
from typing import Optional

from constants import SSE_DATA_PREFIX, SSE_DONE_LINE
from models.stream_event import ArtifactReadyEvent, ProgressEvent, StreamEvent, TerminalEvent

_PERCENT_PATTERN = re.compile(r"(\d+)%")
_VIDEO_SRC_PATTERN = re.compile(r"src='([^']+)'")


def parse_sse_line(line: str) -> Optional[StreamEvent]:
    """
    解析一行流数据

    Args:
        line: 已去掉换行的一行文本

    Returns:
        事件对象；无法识别或格式错误时返回 None，不抛异常
    """
    if line == SSE_DONE_LINE:
        return TerminalEvent()

    if not line.startswith(SSE_DATA_PREFIX):
        return None

    try:
        data = json.loads(line[len(SSE_DATA_PREFIX):])
        delta = data['choices'][0]['delta']
    except (ValueError, KeyError, IndexError, TypeError):
        # keep-alive、半截帧等都直接忽略
        return None

    if not isinstance(delta, dict):
        return None

    reasoning = delta.get('reasoning_content')
    if isinstance(reasoning, str) and reasoning:
        message = reasoning.strip()
        match = _PERCENT_PATTERN.search(reasoning)
        if match:
            return ProgressEvent(percent=int(match.group(1)), message=message)
        return ProgressEvent(percent=None, message=message)

    content = delta.get('content')
    if isinstance(content, str) and content:
        match = _VIDEO_SRC_PATTERN.search(content)
        if match:
            return ArtifactReadyEvent(url=match.group(1))

    return None
