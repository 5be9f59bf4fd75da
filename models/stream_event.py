"""
流式事件数据模型

每一行流数据最多解析出一个事件，事件只在生成过程中短暂存在，不做持久化。
"""

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class ProgressEvent:
    """进度事件，percent 为 None 表示这一行没有百分比"""
    percent: Optional[int]
    message: str


@dataclass(frozen=True)
class ArtifactReadyEvent:
    """视频地址已就绪"""
    url: str


@dataclass(frozen=True)
class TerminalEvent:
    """流结束标记 data: [DONE]"""


StreamEvent = Union[ProgressEvent, ArtifactReadyEvent, TerminalEvent]
