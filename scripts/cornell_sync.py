#!/usr/bin/env python3
"""
康奈尔笔记同步 CLI

在本地笔记目录上执行脚注同步和注册表维护。

用法：
    python scripts/cornell_sync.py sync-all ~/vault                         # 批量 Source -> Cue
    python scripts/cornell_sync.py sync ~/vault notes/lecture.md            # 单篇 Source -> Cue
    python scripts/cornell_sync.py sync ~/vault notes/lecture-cue.md --direction c2s
    python scripts/cornell_sync.py rebuild ~/vault                          # 重建注册表
    python scripts/cornell_sync.py status ~/vault                           # 查看关联状态
    python scripts/cornell_sync.py generate-cue ~/vault notes/lecture.md --start 10 --end 42
    python scripts/cornell_sync.py arrange ~/vault notes/lecture.md         # 创建 Cue/Summary 并排列视图
"""

import argparse
import asyncio
import sys
from pathlib import Path

# 添加 backend 到 Python 路径
backend_dir = Path(__file__).parent.parent / "backend"
sys.path.insert(0, str(backend_dir))


def _open_plugin(vault: str):
    from domains.core.exceptions import ConfigurationError
    from domains.cornell_hub import CornellPlugin
    from domains.cornell_hub.hosts import VaultHost

    try:
        host = VaultHost(Path(vault))
    except ConfigurationError as e:
        print(f"错误: {e.message}")
        return None, None
    return host, CornellPlugin(host)


def _print_notices(host) -> None:
    for notice in host.notices:
        print(f"  提示: {notice}")
    host.notices.clear()


def cmd_sync_all(args):
    """批量 Source -> Cue"""
    host, plugin = _open_plugin(args.vault)
    if plugin is None:
        return 1

    async def run():
        await plugin.load()
        return await plugin.sync_all()

    print("正在同步所有 Source 笔记...")
    print(f"笔记目录: {host.root}")
    print()

    stats = asyncio.run(run())
    _print_notices(host)

    print()
    print("同步结果:")
    print("-" * 50)
    print(f"  文档总数: {stats.total}")
    print(f"  已处理: {stats.processed}, 跳过: {stats.skipped}, 错误: {stats.errors}")
    return 0 if stats.errors == 0 else 1


def cmd_sync(args):
    """单篇同步"""
    from domains.cornell_hub.core.models import SyncDirection

    host, plugin = _open_plugin(args.vault)
    if plugin is None:
        return 1

    direction = SyncDirection.SOURCE_TO_CUE if args.direction == "s2c" else SyncDirection.CUE_TO_SOURCE

    async def run():
        await plugin.load()
        return await plugin.manual_sync(args.document, direction)

    result = asyncio.run(run())
    _print_notices(host)

    print(f"{args.document}: {result.status.value}")
    if result.error:
        print(f"  错误: {result.error}")
    return 0 if result.ok else 1


def cmd_rebuild(args):
    """重建注册表"""
    host, plugin = _open_plugin(args.vault)
    if plugin is None:
        return 1

    async def run():
        await plugin.state.load()
        stats = plugin.registry.rebuild(await host.list_documents())
        await plugin.state.save()
        return stats

    stats = asyncio.run(run())
    print("注册表重建完成:")
    print(f"  新增 {stats.added}, 更新 {stats.updated}, 移除 {stats.removed}")
    print(f"  当前共 {len(plugin.registry)} 篇 Source 笔记")
    return 0


def cmd_status(args):
    """查看关联状态"""
    host, plugin = _open_plugin(args.vault)
    if plugin is None:
        return 1

    asyncio.run(plugin.load())

    print("笔记关联状态")
    print("=" * 50)
    for info in sorted(plugin.registry, key=lambda i: i.source_id):
        print(f"\n{info.source_id}")
        print(f"  Cue: {info.cue_id or '-'}")
        print(f"  Summary: {info.summary_id or '-'}")
        if info.last_sync_source_to_cue:
            print(f"  上次 Source -> Cue: {info.last_sync_source_to_cue.isoformat()}")
        if info.last_sync_cue_to_source:
            print(f"  上次 Cue -> Source: {info.last_sync_cue_to_source.isoformat()}")

    print()
    print(f"共 {len(plugin.registry)} 篇 Source 笔记")
    return 0


def cmd_generate_cue(args):
    """把选中文本生成为脚注"""
    host, plugin = _open_plugin(args.vault)
    if plugin is None:
        return 1

    async def run():
        await plugin.load()
        return await plugin.generate_cue(args.document, args.start, args.end)

    ref = asyncio.run(run())
    _print_notices(host)

    if ref is None:
        return 1
    print(f"已生成脚注: [^{ref}]")
    return 0


def cmd_arrange(args):
    """排列康奈尔笔记视图（创建缺失的 Cue/Summary 并同步）"""
    host, plugin = _open_plugin(args.vault)
    if plugin is None:
        return 1

    async def run():
        await plugin.load()
        result = await plugin.arrange_view(args.document)
        documents = {
            position.value: await host.slot_document(handle)
            for position, handle in result.slots.items()
        }
        await plugin.unload()
        return result, documents

    result, documents = asyncio.run(run())
    _print_notices(host)

    print(f"{args.document}: {result.status.value}")
    for position, doc_id in documents.items():
        print(f"  {position}: {doc_id}")
    if result.error:
        print(f"  错误: {result.error}")
    return 0 if result.ok else 1


def main():
    parser = argparse.ArgumentParser(
        description="康奈尔笔记同步工具",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--json-logs", action="store_true", help="使用 JSON 格式输出日志")
    parser.add_argument("--log-level", default=None, help="日志级别 (DEBUG/INFO/WARNING/ERROR)")

    subparsers = parser.add_subparsers(dest="command", help="子命令")

    # sync-all 命令
    sync_all_parser = subparsers.add_parser("sync-all", help="批量 Source -> Cue 同步")
    sync_all_parser.add_argument("vault", help="笔记目录")

    # sync 命令
    sync_parser = subparsers.add_parser("sync", help="同步单篇笔记")
    sync_parser.add_argument("vault", help="笔记目录")
    sync_parser.add_argument("document", help="笔记相对路径")
    sync_parser.add_argument(
        "--direction", choices=["s2c", "c2s"], default="s2c",
        help="同步方向: s2c (Source -> Cue) 或 c2s (Cue -> Source)",
    )

    # rebuild 命令
    rebuild_parser = subparsers.add_parser("rebuild", help="重建笔记关联注册表")
    rebuild_parser.add_argument("vault", help="笔记目录")

    # status 命令
    status_parser = subparsers.add_parser("status", help="查看笔记关联状态")
    status_parser.add_argument("vault", help="笔记目录")

    # generate-cue 命令
    generate_parser = subparsers.add_parser("generate-cue", help="把一段文本生成为脚注")
    generate_parser.add_argument("vault", help="笔记目录")
    generate_parser.add_argument("document", help="Source 笔记相对路径")
    generate_parser.add_argument("--start", type=int, required=True, help="选区起始偏移")
    generate_parser.add_argument("--end", type=int, required=True, help="选区结束偏移")

    # arrange 命令
    arrange_parser = subparsers.add_parser("arrange", help="排列康奈尔笔记视图（Cue + Source + Summary）")
    arrange_parser.add_argument("vault", help="笔记目录")
    arrange_parser.add_argument("document", help="Source 笔记相对路径")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    from domains.cornell_core.logging import LogConfig, LogFormat, configure_logging

    config = LogConfig.from_settings(service_name="cornell-cli")
    if args.json_logs:
        config.format = LogFormat.JSON
    if args.log_level:
        config.level = args.log_level.upper()
    configure_logging(config)

    if args.command == "sync-all":
        return cmd_sync_all(args)
    elif args.command == "sync":
        return cmd_sync(args)
    elif args.command == "rebuild":
        return cmd_rebuild(args)
    elif args.command == "status":
        return cmd_status(args)
    elif args.command == "generate-cue":
        return cmd_generate_cue(args)
    elif args.command == "arrange":
        return cmd_arrange(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
