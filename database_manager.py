"""
数据库管理模块
用于持久化生成任务、用量时间戳和用户配置
"""

import json
import os
import platform
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from loguru import logger

TASK_COLUMNS = (
    'id', 'sequence_number', 'mode', 'status', 'prompt', 'image_data', 'video_data',
    'remix_source', 'model', 'aspect_ratio', 'duration', 'progress', 'progress_message',
    'artifact_url', 'thumbnail', 'attempt', 'created_at', 'updated_at',
)

REQUIRED_TABLES = ('config', 'tasks', 'usage_events')


def get_app_data_dir() -> str:
    """获取应用数据目录（跨平台兼容），可用 SORA_APP_DATA_DIR 覆盖"""
    override = os.environ.get("SORA_APP_DATA_DIR")
    if override:
        return os.path.expanduser(override)

    system = platform.system()
    if system == "Darwin":  # macOS
        return os.path.expanduser("~/Library/Application Support/Sora2")
    if system == "Windows":
        return os.path.join(os.environ.get("APPDATA", ""), "Sora2")
    # Linux和其他Unix系统
    return os.path.expanduser("~/.local/share/sora2")


class DatabaseManager:
    """数据库管理器"""

    def __init__(self, app_data_dir: Optional[str] = None):
        """
        初始化数据库管理器

        Args:
            app_data_dir: 应用数据目录，默认按平台选择
        """
        self.app_data_dir = app_data_dir or get_app_data_dir()

        # 在应用数据目录下创建 logs、database、thumbnails 三个文件夹
        self.logs_dir = os.path.join(self.app_data_dir, "logs")
        self.database_dir = os.path.join(self.app_data_dir, "database")
        self.thumbnails_dir = os.path.join(self.app_data_dir, "thumbnails")
        self.db_path = os.path.join(self.database_dir, "sora2.db")

        for path in (self.app_data_dir, self.logs_dir, self.database_dir, self.thumbnails_dir):
            os.makedirs(path, exist_ok=True)

        logger.info(f"数据库路径: {self.db_path}")
        self._check_and_init_database()

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(self.db_path)
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _existing_tables(self) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
        return [row[0] for row in rows]

    def _check_and_init_database(self):
        """检查并初始化数据库，文件损坏时备份后重建"""
        try:
            existing_tables = self._existing_tables()
        except sqlite3.DatabaseError as e:
            backup_path = f"{self.db_path}.corrupt"
            logger.error(f"数据库文件损坏，备份到 {backup_path} 后重建: {e}")
            os.replace(self.db_path, backup_path)
            existing_tables = []

        for table in REQUIRED_TABLES:
            if table not in existing_tables:
                logger.info(f"创建数据表: {table}")

        self._init_database()

        missing_tables = [t for t in REQUIRED_TABLES if t not in self._existing_tables()]
        if missing_tables:
            logger.error(f"以下表创建失败: {missing_tables}")
            raise RuntimeError(f"数据库表创建失败: {missing_tables}")
        logger.info("所有数据表创建/验证完成")

    def _init_database(self):
        """初始化数据库表"""
        with self._connect() as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS config (
                    key TEXT PRIMARY KEY,
                    value TEXT,
                    type TEXT DEFAULT 'string',
                    description TEXT,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            conn.execute('''
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    sequence_number INTEGER NOT NULL,
                    mode TEXT NOT NULL,
                    status TEXT DEFAULT 'pending',
                    prompt TEXT,
                    image_data TEXT,
                    video_data TEXT,
                    remix_source TEXT,
                    model TEXT,
                    aspect_ratio TEXT,
                    duration TEXT,
                    progress INTEGER DEFAULT 0,
                    progress_message TEXT,
                    artifact_url TEXT,
                    thumbnail TEXT,
                    attempt INTEGER DEFAULT 0,
                    created_at REAL NOT NULL,
                    updated_at REAL
                )
            ''')
            conn.execute('CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status)')
            conn.execute('CREATE INDEX IF NOT EXISTS idx_tasks_created_at ON tasks(created_at)')

            conn.execute('''
                CREATE TABLE IF NOT EXISTS usage_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    kind TEXT NOT NULL,
                    timestamp REAL NOT NULL
                )
            ''')
            conn.execute('CREATE INDEX IF NOT EXISTS idx_usage_kind_ts ON usage_events(kind, timestamp)')

    def save_config(self, key: str, value: Any, type_: str = 'string', description: Optional[str] = None) -> bool:
        """保存配置到config表"""
        if isinstance(value, bool):
            value_str = 'true' if value else 'false'
        elif isinstance(value, (dict, list, tuple)):
            value_str = json.dumps(list(value) if isinstance(value, tuple) else value)
        else:
            value_str = str(value)

        try:
            with self._connect() as conn:
                conn.execute('''
                    INSERT OR REPLACE INTO config (key, value, type, description, updated_at)
                    VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
                ''', (key, value_str, type_, description))
            return True
        except sqlite3.Error as e:
            logger.error(f"保存配置失败 key={key}: {e}")
            return False

    def load_config(self, key: str, default: Any = None) -> Any:
        """从config表加载配置，读取或类型转换失败时返回默认值"""
        try:
            with self._connect() as conn:
                row = conn.execute('SELECT value, type FROM config WHERE key = ?', (key,)).fetchone()
        except sqlite3.Error as e:
            logger.error(f"加载配置失败 key={key}: {e}")
            return default

        if not row:
            return default

        value_str, type_ = row
        try:
            if type_ == 'boolean':
                return value_str.lower() == 'true'
            if type_ == 'integer':
                return int(value_str)
            if type_ == 'float':
                return float(value_str)
            if type_ == 'json':
                return json.loads(value_str)
            return value_str
        except (ValueError, AttributeError) as e:
            logger.warning(f"配置值格式错误 key={key} value={value_str!r}: {e}")
            return default

    def add_task(self, task_data: Dict[str, Any]) -> bool:
        """添加任务到tasks表"""
        columns = [c for c in TASK_COLUMNS if c in task_data]
        placeholders = ", ".join("?" for _ in columns)
        try:
            with self._connect() as conn:
                conn.execute(
                    f"INSERT OR REPLACE INTO tasks ({', '.join(columns)}) VALUES ({placeholders})",
                    [task_data[c] for c in columns],
                )
            logger.debug(f"添加任务成功: {task_data.get('id')}")
            return True
        except sqlite3.Error as e:
            logger.error(f"添加任务失败 {task_data.get('id')}: {e}")
            return False

    def get_tasks(self) -> List[Dict[str, Any]]:
        """获取全部任务，按创建时间倒序"""
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"SELECT {', '.join(TASK_COLUMNS)} FROM tasks ORDER BY created_at DESC, sequence_number DESC"
                ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"获取任务失败: {e}")
            return []
        return [dict(zip(TASK_COLUMNS, row)) for row in rows]

    def update_task(self, task_id: str, updates: Dict[str, Any]) -> bool:
        """更新任务，只接受已知列"""
        updates = {k: v for k, v in updates.items() if k in TASK_COLUMNS and k != 'id'}
        if not updates:
            return True

        set_clauses = ", ".join(f"{key} = ?" for key in updates)
        values = list(updates.values()) + [task_id]
        try:
            with self._connect() as conn:
                conn.execute(f"UPDATE tasks SET {set_clauses} WHERE id = ?", values)
            return True
        except sqlite3.Error as e:
            logger.error(f"更新任务失败 {task_id}: {e}")
            return False

    def delete_task(self, task_id: str) -> bool:
        """删除任务"""
        try:
            with self._connect() as conn:
                deleted = conn.execute('DELETE FROM tasks WHERE id = ?', (task_id,)).rowcount
        except sqlite3.Error as e:
            logger.error(f"删除任务失败 {task_id}: {e}")
            return False

        if deleted > 0:
            logger.info(f"删除任务成功: {task_id}")
            return True
        logger.warning(f"未找到要删除的任务: {task_id}")
        return False

    def add_usage_event(self, kind: str, timestamp: float) -> bool:
        try:
            with self._connect() as conn:
                conn.execute('INSERT INTO usage_events (kind, timestamp) VALUES (?, ?)', (kind, timestamp))
            return True
        except sqlite3.Error as e:
            logger.error(f"记录用量失败 kind={kind}: {e}")
            return False

    def get_usage_events(self, kind: str) -> List[float]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    'SELECT timestamp FROM usage_events WHERE kind = ? ORDER BY timestamp', (kind,)
                ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"读取用量失败 kind={kind}: {e}")
            return []
        return [float(row[0]) for row in rows if isinstance(row[0], (int, float))]

    def prune_usage_events(self, kind: str, cutoff: float) -> int:
        """删除早于 cutoff（含）的时间戳，返回删除条数"""
        try:
            with self._connect() as conn:
                return conn.execute(
                    'DELETE FROM usage_events WHERE kind = ? AND timestamp <= ?', (kind, cutoff)
                ).rowcount
        except sqlite3.Error as e:
            logger.error(f"清理用量失败 kind={kind}: {e}")
            return 0
