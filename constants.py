from version import __version__ as APP_VERSION

# 默认网关地址，可通过设置或环境变量 SORA_API_BASE_URL 覆盖
DEFAULT_API_BASE_URL = "http://localhost:8000"

CHAT_COMPLETIONS_PATH = "/v1/chat/completions"
MODELS_PATH = "/v1/models"

USER_AGENT = f"sora2-studio/{APP_VERSION}"

# 视频生成耗时较长，给足5分钟
VIDEO_GENERATION_TIMEOUT = 300
MODELS_REQUEST_TIMEOUT = 30

DEFAULT_MAX_WORKERS = 4

# 流式协议
SSE_DATA_PREFIX = "data: "
SSE_DONE_LINE = "data: [DONE]"

# 用量统计窗口
USAGE_RETENTION_SECONDS = 30 * 24 * 60 * 60
ROLLING_WINDOW_SECONDS = 24 * 60 * 60

# 缩略图截取时间点（秒）与超时
THUMBNAIL_SEEK_SECONDS = 0.1
THUMBNAIL_TIMEOUT = 10

# 存储估算：每5秒视频约50MB
ESTIMATED_MB_PER_5_SECONDS = 50

DEFAULT_ORIENTATION = "landscape"
DEFAULT_DURATION = "10s"

# 默认的内容限制特征（不区分大小写），可通过 SORA_RESTRICTION_PATTERNS 覆盖
DEFAULT_RESTRICTION_PATTERNS = (
    "network error",
    "incomplete_chunked_encoding",
    "incompleteread",
    "content policy",
    "content_policy",
    "copyright",
    "moderation",
)

# 视频下载
DOWNLOAD_TIMEOUT = 300
DOWNLOAD_CHUNK_SIZE = 8192
