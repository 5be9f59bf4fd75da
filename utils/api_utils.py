"""
API工具类
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from constants import DEFAULT_RESTRICTION_PATTERNS
from models.model_info import ModelInfo

RESTRICTION_MESSAGE = (
    "Video generation failed. This may be due to content restrictions or copyright issues. "
    "Please try a different prompt or style."
)
INTERRUPTED_MESSAGE = "Connection interrupted - video generation may still be in progress on server"
NO_ARTIFACT_MESSAGE = "Generation finished without returning a video"


@dataclass(frozen=True)
class RestrictionMatch:
    """分类结果"""
    restricted: bool
    matched_pattern: Optional[str]
    message: str


class RestrictionClassifier:
    """
    传输错误分类器

    网关在内容审核不通过时通常直接断开连接，客户端只能看到
    "network error"、分块传输不完整之类的错误文本。这里按特征串
    （不区分大小写）把这类错误改写成可读的提示。
    """

    def __init__(self, patterns: Iterable[str] = DEFAULT_RESTRICTION_PATTERNS):
        self.patterns = tuple(p.lower() for p in patterns if p)

    def match(self, error_text: str) -> Optional[str]:
        haystack = (error_text or "").lower()
        for pattern in self.patterns:
            if pattern in haystack:
                return pattern
        return None

    def classify(self, error_text: str) -> RestrictionMatch:
        """
        对没有拿到视频地址的传输错误进行分类

        Args:
            error_text: 原始错误文本

        Returns:
            RestrictionMatch: 是否命中内容限制，以及面向用户的提示
        """
        pattern = self.match(error_text)
        if pattern is not None:
            return RestrictionMatch(True, pattern, RESTRICTION_MESSAGE)
        detail = (error_text or "").strip()
        message = f"{INTERRUPTED_MESSAGE}: {detail}" if detail else INTERRUPTED_MESSAGE
        return RestrictionMatch(False, None, message)


def parse_models_response(response_data: Any) -> List[ModelInfo]:
    """
    解析 /v1/models 响应

    Args:
        response_data: 响应JSON

    Returns:
        List[ModelInfo]: 模型列表，格式不对时返回空列表
    """
    if not isinstance(response_data, dict):
        return []
    items = response_data.get('data')
    if not isinstance(items, list):
        return []
    models = []
    for item in items:
        info = ModelInfo.from_dict(item)
        if info is not None:
            models.append(info)
    return models


def parse_api_error(response_data: Dict[str, Any]) -> str:
    """
    从JSON错误响应中提取错误信息，仅用于日志

    Args:
        response_data: API响应数据

    Returns:
        str: 错误信息
    """
    if 'message' in response_data:
        return str(response_data['message'])

    if 'error' in response_data:
        error = response_data['error']
        if isinstance(error, dict) and 'message' in error:
            return str(error['message'])
        return str(error)

    return "未知错误"
