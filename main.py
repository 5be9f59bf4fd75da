#!/usr/bin/env python3
"""
Sora 2 视频生成工具命令行入口

    python main.py submit --mode text-to-video --prompt "海边日落" --run
    python main.py list
    python main.py run <任务ID前缀>
    python main.py stats
    python main.py download <任务ID前缀> -o ./videos

API地址与密钥从环境变量 SORA_API_BASE_URL / SORA_API_KEY 或数据库配置读取。
"""

import argparse
import datetime
import sys
from typing import List, Optional

import requests
from loguru import logger

from database_manager import DatabaseManager
from generation_service import GenerationService
from models.config_model import load_settings
from models.task_model import GenerationMode, GenerationTask, InvalidTransitionError, TaskValidationError
from sora_client import SoraClient
from task_ledger import TaskLedger
from utils.api_utils import RestrictionClassifier
from utils.file_utils import file_to_data_url
from utils.log_utils import setup_logging
from version import __version__


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sora2-studio", description="Sora 2 视频生成任务管理")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--data-dir", help="应用数据目录（默认按平台选择）")
    parser.add_argument("-v", "--verbose", action="store_true", help="控制台输出调试日志")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("models", help="列出网关可用的视频模型")

    submit = sub.add_parser("submit", help="新建生成任务")
    submit.add_argument("--mode", choices=[m.value for m in GenerationMode], default=GenerationMode.TEXT_TO_VIDEO.value)
    submit.add_argument("--prompt", default="")
    submit.add_argument("--image", help="参考图片文件（图生视频）")
    submit.add_argument("--video", help="参考视频文件（角色模式）")
    submit.add_argument("--remix-url", help="Remix 源视频地址")
    submit.add_argument("--orientation", choices=["landscape", "portrait"], default="landscape")
    submit.add_argument("--duration", choices=["10s", "15s"], default="10s")
    submit.add_argument("--model", help="直接指定模型ID，覆盖方向/时长推导")
    submit.add_argument("--run", action="store_true", help="创建后立即生成并等待结果")

    run = sub.add_parser("run", help="生成（或重新生成）指定任务")
    run.add_argument("task_id", help="任务ID或其前缀")

    list_cmd = sub.add_parser("list", help="列出任务")
    list_cmd.add_argument("--status", choices=["pending", "processing", "completed", "failed"])

    delete = sub.add_parser("delete", help="删除任务")
    delete.add_argument("task_id", help="任务ID或其前缀")

    download = sub.add_parser("download", help="下载已完成任务的视频")
    download.add_argument("task_id", help="任务ID或其前缀")
    download.add_argument("-o", "--output", help="保存路径或目录（默认当前目录下 sora-video-<ID前8位>.mp4）")

    sub.add_parser("stats", help="查看任务与用量统计")
    return parser


def resolve_task_id(ledger: TaskLedger, prefix: str) -> Optional[str]:
    """按ID前缀查找唯一任务"""
    matches = [t.id for t in ledger.tasks if t.id.startswith(prefix)]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        print(f"[ERROR] 前缀 {prefix} 匹配到多个任务，请输入更长的ID")
    else:
        print(f"[ERROR] 未找到任务: {prefix}")
    return None


def print_task(task: GenerationTask):
    created = datetime.datetime.fromtimestamp(task.created_at).strftime("%Y-%m-%d %H:%M:%S")
    line = f"#{task.sequence_number:<4} {task.id[:12]}  {task.status.value:<10} {task.progress:>3}%  {task.mode.value:<18} {created}"
    print(line)
    if task.progress_message:
        print(f"       {task.progress_message}")
    if task.artifact_url:
        print(f"       视频: {task.artifact_url}")
    if task.thumbnail:
        print(f"       缩略图: {task.thumbnail}")


def _run_generation(service: GenerationService, task_id: str) -> int:
    def show_progress(changed_id: str):
        task = service.ledger.get(changed_id)
        if task is not None and task.status.value == "processing":
            print(f"\r[{task.progress:>3}%] {task.progress_message or ''}", end="", flush=True)

    service.task_changed.connect(show_progress)
    try:
        video_url = service.generate_now(task_id)
    except InvalidTransitionError as e:
        print(f"[ERROR] {e}")
        return 1
    finally:
        service.task_changed.disconnect(show_progress)
    print()

    task = service.ledger.get(task_id)
    if video_url:
        print(f"[SUCCESS] 视频生成完成: {video_url}")
        return 0
    print(f"[ERROR] {task.progress_message if task else '生成失败'}")
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    db = DatabaseManager(args.data_dir)
    setup_logging(db.logs_dir, console_level="DEBUG" if args.verbose else "WARNING")
    settings = load_settings(db)

    ledger = TaskLedger(db)
    client = SoraClient(
        base_url=settings.api_base_url,
        api_key=settings.api_key,
        timeout=settings.request_timeout,
        on_api_call=ledger.record_api_call,
        classifier=RestrictionClassifier(settings.restriction_patterns),
    )
    service = GenerationService(ledger, client, thumbnails_dir=db.thumbnails_dir)

    if args.command == "models":
        models = [m for m in client.list_models() if m.is_video_model]
        if not models:
            print("没有获取到视频模型")
        for model in models:
            print(f"{model.id:<32} {model.description}")
        return 0

    if args.command == "submit":
        try:
            task = GenerationTask(
                mode=GenerationMode(args.mode),
                prompt=args.prompt,
                image_data=file_to_data_url(args.image) if args.image else None,
                video_data=file_to_data_url(args.video) if args.video else None,
                remix_source=args.remix_url,
                aspect_ratio=args.orientation,
                duration=args.duration,
                model=args.model or "",
            )
            task = service.submit(task)
        except (TaskValidationError, FileNotFoundError) as e:
            print(f"[ERROR] {e}")
            return 2
        print(f"[OK] 任务已创建 #{task.sequence_number} {task.id}")
        if args.run:
            return _run_generation(service, task.id)
        return 0

    if args.command == "run":
        task_id = resolve_task_id(ledger, args.task_id)
        if task_id is None:
            return 1
        return _run_generation(service, task_id)

    if args.command == "list":
        tasks = [t for t in ledger.tasks if not args.status or t.status.value == args.status]
        if not tasks:
            print("暂无任务")
        for task in tasks:
            print_task(task)
        return 0

    if args.command == "delete":
        task_id = resolve_task_id(ledger, args.task_id)
        if task_id is None:
            return 1
        service.delete(task_id)
        print(f"[OK] 已删除任务 {task_id}")
        return 0

    if args.command == "download":
        task_id = resolve_task_id(ledger, args.task_id)
        if task_id is None:
            return 1
        try:
            path = service.download_now(task_id, args.output)
        except ValueError as e:
            print(f"[ERROR] {e}")
            return 1
        except (requests.exceptions.RequestException, OSError) as e:
            print(f"[ERROR] 下载出错: {e}")
            return 1
        print(f"[SUCCESS] 视频已保存: {path}")
        return 0

    if args.command == "stats":
        stats = ledger.get_statistics()
        print(f"视频产出(24h/总计): {stats['artifacts_display']}")
        print(f"API调用(24h/总计):  {stats['api_calls_display']}")
        print(f"生成中: {stats['processing']}  失败: {stats['failed']}  "
              f"已完成: {stats['completed']}  待生成: {stats['pending']}")
        print(f"预估占用空间: {stats['estimated_storage']}")
        return 0

    logger.error(f"未知命令: {args.command}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
