"""CLI 入口模块 -- python -m dqaflow.host <command>

支持的命令：
  replay <snapshots.jsonl> --viewer <id> --role <MANAGER|AGENT>
      逐行读取全量集合（每行一个 CollectionSet JSON）交给引擎，
      打印每个周期的通知与同步指令
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

import structlog
from dqaflow.core.config import load_engine_settings
from dqaflow.core.models import CollectionSet, UserRole, Viewer
from dqaflow.core.reconcile import ReconcileResult, WorkflowEngine
from pydantic import ValidationError as PydanticValidationError

from .alert_channel import create_alert_channel
from .logging_config import setup_logging
from .runner import CycleRunner
from .sync_sink import InMemorySyncSink

log = structlog.get_logger()

# --settle 时单条快照最多追加的回写周期数
MAX_SETTLE_ROUNDS = 10


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m dqaflow.host")
    subparsers = parser.add_subparsers(dest="command", required=True)

    replay = subparsers.add_parser("replay", help="回放快照文件")
    replay.add_argument("path", type=Path, help="JSONL 文件，每行一个全量集合")
    replay.add_argument("--viewer", required=True, help="viewer 用户 ID")
    replay.add_argument(
        "--role",
        required=True,
        choices=[role.value for role in UserRole],
        type=str.upper,
        help="viewer 角色",
    )
    replay.add_argument(
        "--settle",
        action="store_true",
        help="把引擎产生的指令应用回集合并继续调和，直到没有新指令",
    )
    replay.add_argument("--json", action="store_true", help="每个周期输出一行 JSON")
    return parser


def load_snapshots(path: Path) -> list[CollectionSet]:
    """读取 JSONL 快照文件，忽略空行

    Raises:
        ValueError: 某一行不是合法的 CollectionSet
    """
    snapshots = []
    with path.open(encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                snapshots.append(CollectionSet.model_validate_json(line))
            except PydanticValidationError as e:
                raise ValueError(f"第 {line_no} 行不是合法的集合: {e}") from e
    return snapshots


def render_cycle(result: ReconcileResult, as_json: bool) -> str:
    if as_json:
        return json.dumps(
            {
                "cycle_no": result.cycle_no,
                "baseline": result.baseline,
                "notifications": [n.model_dump(mode="json") for n in result.notifications],
                "commands": [
                    {"op": c.op.value, "entity_id": c.entity_id, "origin": c.origin}
                    for c in result.commands
                ],
                "alerts": result.alerts,
            },
            ensure_ascii=False,
        )

    header = f"== cycle {result.cycle_no}" + (" (baseline)" if result.baseline else "")
    lines = [header]
    for notification in result.notifications:
        lines.append(f"  notify  {notification.title}: {notification.message}")
    for command in result.commands:
        lines.append(f"  command {command.op.value} {command.entity_id} [{command.origin}]")
    for text in result.alerts:
        lines.append(f"  alert   {text}")
    return "\n".join(lines)


async def replay(
    snapshots: list[CollectionSet],
    viewer: Viewer,
    *,
    settle: bool = False,
    as_json: bool = False,
) -> list[ReconcileResult]:
    """把快照逐个交给引擎"""
    settings = load_engine_settings()
    sink = InMemorySyncSink()
    alerts = create_alert_channel(settings)
    runner = CycleRunner(WorkflowEngine(viewer, settings), sink, alerts=alerts)

    results = []
    try:
        for collections in snapshots:
            sink.load(collections)
            result = await runner.process(sink.snapshot())
            await runner.drain()
            results.append(result)
            print(render_cycle(result, as_json))

            rounds = 0
            while settle and result.commands and rounds < MAX_SETTLE_ROUNDS:
                rounds += 1
                result = await runner.process(sink.snapshot())
                await runner.drain()
                results.append(result)
                print(render_cycle(result, as_json))
            if settle and result.commands:
                log.warning("replay_settle_limit_reached", rounds=rounds)
    finally:
        await alerts.aclose()
    return results


def main(argv: list[str] | None = None) -> None:
    """CLI 主入口"""
    args = build_parser().parse_args(argv)
    setup_logging()

    if args.command == "replay":
        try:
            snapshots = load_snapshots(args.path)
        except (OSError, ValueError) as e:
            print(f"无法读取快照文件: {e}", file=sys.stderr)
            sys.exit(1)
        viewer = Viewer(user_id=args.viewer, role=UserRole(args.role))
        asyncio.run(replay(snapshots, viewer, settle=args.settle, as_json=args.json))
    else:
        print(f"未知命令: {args.command}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
