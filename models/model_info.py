"""
模型信息数据模型
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class ModelInfo:
    """网关 /v1/models 返回的模型信息"""
    id: str = ""
    object: str = "model"
    owned_by: str = ""
    description: str = ""

    @property
    def is_video_model(self) -> bool:
        return self.id.startswith("sora-video")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["ModelInfo"]:
        """解析单个模型条目，缺少 id 时返回 None"""
        if not isinstance(data, dict):
            return None
        model_id = data.get('id')
        if not isinstance(model_id, str) or not model_id:
            return None
        return cls(
            id=model_id,
            object=str(data.get('object') or 'model'),
            owned_by=str(data.get('owned_by') or ''),
            description=str(data.get('description') or ''),
        )
