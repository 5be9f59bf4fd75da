"""
任务数据模型
"""

import time
import uuid
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Optional

from constants import DEFAULT_DURATION, DEFAULT_ORIENTATION


class GenerationMode(Enum):
    """生成模式枚举"""
    TEXT_TO_VIDEO = "text-to-video"
    IMAGE_TO_VIDEO = "image-to-video"
    REMIX = "remix"
    CREATE_CHARACTER = "create-character"
    CHARACTER_TO_VIDEO = "character-to-video"


class TaskStatus(Enum):
    """任务状态枚举"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class TaskValidationError(ValueError):
    """任务缺少当前模式必需的输入"""


class InvalidTransitionError(RuntimeError):
    """非法的任务状态迁移"""

    def __init__(self, task_id: str, current: TaskStatus, target: TaskStatus):
        super().__init__(f"任务 {task_id} 不能从 {current.value} 迁移到 {target.value}")
        self.task_id = task_id
        self.current = current
        self.target = target


# 允许的状态迁移；终态回到 processing 只能通过新一轮生成（attempt 递增）
ALLOWED_TRANSITIONS = {
    TaskStatus.PENDING: {TaskStatus.PROCESSING},
    TaskStatus.PROCESSING: {TaskStatus.PROCESSING, TaskStatus.COMPLETED, TaskStatus.FAILED},
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
}

# 创建后不可修改的字段
IMMUTABLE_FIELDS = (
    'id', 'sequence_number', 'mode', 'prompt', 'image_data', 'video_data',
    'remix_source', 'created_at',
)


def build_model_id(orientation: str = DEFAULT_ORIENTATION, duration: str = DEFAULT_DURATION) -> str:
    """根据方向和时长拼出网关的模型ID，例如 sora-video-landscape-10s"""
    return f"sora-video-{orientation}-{duration}"


@dataclass
class GenerationTask:
    """视频生成任务模型"""
    mode: GenerationMode = GenerationMode.TEXT_TO_VIDEO
    prompt: str = ""
    image_data: Optional[str] = None
    video_data: Optional[str] = None
    remix_source: Optional[str] = None
    model: str = ""
    aspect_ratio: str = DEFAULT_ORIENTATION
    duration: str = DEFAULT_DURATION
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    sequence_number: int = 0
    status: TaskStatus = TaskStatus.PENDING
    progress: int = 0
    progress_message: Optional[str] = None
    artifact_url: Optional[str] = None
    thumbnail: Optional[str] = None
    attempt: int = 0
    created_at: float = field(default_factory=time.time)
    updated_at: Optional[float] = None

    def __post_init__(self):
        if isinstance(self.mode, str):
            self.mode = GenerationMode(self.mode)
        if isinstance(self.status, str):
            self.status = TaskStatus(self.status)
        if not self.model:
            self.model = build_model_id(self.aspect_ratio, self.duration)
        # 只保留当前模式需要的那一份输入
        if self.mode is not GenerationMode.IMAGE_TO_VIDEO:
            self.image_data = None
        if self.mode is not GenerationMode.REMIX:
            self.remix_source = None
        if self.mode not in (GenerationMode.CREATE_CHARACTER, GenerationMode.CHARACTER_TO_VIDEO):
            self.video_data = None

    def validate(self) -> None:
        """
        检查当前模式必需的输入是否齐全

        Raises:
            TaskValidationError: 缺少必需输入
        """
        mode = self.mode
        if mode is GenerationMode.IMAGE_TO_VIDEO and not self.image_data:
            raise TaskValidationError("图生视频模式需要上传参考图片")
        if mode is GenerationMode.REMIX and not self.remix_source:
            raise TaskValidationError("Remix 模式需要填写源视频地址")
        if mode in (GenerationMode.CREATE_CHARACTER, GenerationMode.CHARACTER_TO_VIDEO) and not self.video_data:
            raise TaskValidationError("角色模式需要上传参考视频")
        if mode in (GenerationMode.TEXT_TO_VIDEO, GenerationMode.CHARACTER_TO_VIDEO) and not self.prompt.strip():
            raise TaskValidationError("提示词不能为空")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['mode'] = self.mode.value
        data['status'] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationTask":
        """从数据库行或JSON恢复任务，未知字段忽略"""
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__ and v is not None}
        return cls(**known)
