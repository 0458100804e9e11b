"""
脚注同步服务

负责单方向的同步编排：读取 -> 解析 -> 协调 -> 写入 -> 更新注册表。
- Source -> Cue: Source 的脚注定义镜像到 Cue
- Cue -> Source: Cue 的定义作为权威，重建 Source 末尾的定义块

任一方向的同步与布局切换共用同一个互斥令牌；令牌被占用时请求直接丢弃。
所有读写/解析错误都在操作边界捕获，记录日志并提示用户，不会中断进程。
"""

import asyncio
from typing import Optional

from domains.core.exceptions import (
    ApplicationError,
    DocumentCreateError,
    DocumentIOError,
    OperationInProgressError,
    SourceResolutionError,
    ValidationError,
)
from domains.cornell_core.logging import bind_operation_context, get_logger
from domains.cornell_core.settings import SyncSettings, get_sync_settings
from domains.cornell_core.sync import OperationCoordinator, OperationState, OperationToken

from ..core.config import PluginSettings
from ..core.footnotes import format_definition, next_cue_ref, parse
from ..core.models import (
    BatchSyncStats,
    NoteInfo,
    SyncDirection,
    SyncResult,
    SyncStatus,
    ViewBehavior,
)
from ..core.paths import basename, cue_path_for, is_cue_note, is_source_note, normalize_path
from ..core.reconciler import build_cue_content, orphaned_refs, rebuild_source_content
from ..core.store import NoteInfoRegistry, PluginStateStore
from ..hosts.base import CornellHost

logger = get_logger(__name__)


class FootnoteSyncService:
    """
    脚注同步服务

    使用示例:
        service = FootnoteSyncService(host, state, coordinator)
        result = await service.sync_source_to_cue("notes/lecture.md")
        if result.changed:
            ...
    """

    def __init__(
        self,
        host: CornellHost,
        state: PluginStateStore,
        coordinator: OperationCoordinator,
        sync_settings: Optional[SyncSettings] = None,
    ):
        self.host = host
        self.state = state
        self.coordinator = coordinator
        self.sync_settings = sync_settings or get_sync_settings()

    @property
    def settings(self) -> PluginSettings:
        return self.state.settings

    @property
    def registry(self) -> NoteInfoRegistry:
        return self.state.registry

    # ===== 公开操作 =====

    async def sync_source_to_cue(
        self,
        source_id: str,
        *,
        token: Optional[OperationToken] = None,
        user_initiated: bool = False,
    ) -> SyncResult:
        """
        Source -> Cue 同步

        Args:
            source_id: Source 笔记路径
            token: 外层操作（布局切换）持有的令牌，传入时作为嵌套操作执行
            user_initiated: 是否为用户手动触发（决定占用时是否提示）

        Returns:
            SyncResult
        """
        source_id = normalize_path(source_id)
        direction = SyncDirection.SOURCE_TO_CUE

        if not is_source_note(source_id):
            return self._reject_role(direction, source_id, "当前笔记不是 Source 笔记", user_initiated)

        try:
            async with self.coordinator.exclusive(
                OperationState.SYNCING,
                token=token,
                label=f"{direction.value}:{source_id}",
                grace=self.sync_settings.release_grace_seconds,
            ):
                return await self._source_to_cue(source_id)
        except OperationInProgressError as e:
            return self._skip_busy(direction, source_id, e, user_initiated)

    async def sync_cue_to_source(
        self,
        cue_id: str,
        *,
        token: Optional[OperationToken] = None,
        user_initiated: bool = False,
    ) -> SyncResult:
        """
        Cue -> Source 同步

        Cue 中的定义为权威；Source 中已不在 Cue 里的定义被移除，
        开启 deleteReferencesOnDefinitionDelete 时其引用也一并删除。
        """
        cue_id = normalize_path(cue_id)
        direction = SyncDirection.CUE_TO_SOURCE

        if not is_cue_note(cue_id):
            return self._reject_role(direction, cue_id, "当前笔记不是 Cue 笔记", user_initiated)

        try:
            async with self.coordinator.exclusive(
                OperationState.SYNCING,
                token=token,
                label=f"{direction.value}:{cue_id}",
                grace=self.sync_settings.release_grace_seconds,
            ):
                return await self._cue_to_source(cue_id)
        except OperationInProgressError as e:
            return self._skip_busy(direction, cue_id, e, user_initiated)

    async def sync_all_source_to_cue(self) -> BatchSyncStats:
        """
        批量 Source -> Cue 同步

        派生笔记跳过；遇到令牌占用时等待一个防抖窗口后重试，最多 batch_retry_limit 次。

        Returns:
            BatchSyncStats {"total": N, "processed": M, "skipped": K, "errors": E}
        """
        documents = await self.host.list_documents()
        sources = [doc_id for doc_id in documents if is_source_note(doc_id)]
        stats = BatchSyncStats(total=len(documents), skipped=len(documents) - len(sources))
        interval = self.sync_settings.batch_progress_interval

        self.host.notify(f"开始同步 {len(sources)} 篇 Source 笔记...")
        logger.info("batch_sync_started", total=len(documents), sources=len(sources))

        for index, source_id in enumerate(sources, 1):
            result = await self.sync_source_to_cue(source_id)
            attempts = 0
            while (
                result.status == SyncStatus.SKIPPED
                and self.coordinator.busy
                and attempts < self.sync_settings.batch_retry_limit
            ):
                attempts += 1
                await asyncio.sleep(self.sync_settings.debounce_seconds)
                result = await self.sync_source_to_cue(source_id)

            if result.ok:
                stats.processed += 1
            elif result.status == SyncStatus.SKIPPED:
                stats.skipped += 1
            else:
                stats.errors += 1

            if index % interval == 0 and index < len(sources):
                self.host.notify(f"同步进度: {index}/{len(sources)}")

        logger.info("batch_sync_finished", **stats.to_dict())
        message = f"同步完成: 处理 {stats.processed} 篇"
        if stats.errors:
            message += f"，失败 {stats.errors} 篇"
        self.host.notify(message)
        return stats

    async def generate_cue(self, source_id: str, start: int, end: int) -> Optional[str]:
        """
        把 Source 中选中的文本变成一条新脚注

        在选区末尾插入 `[^<prefix><n>]` 引用，定义追加到 Source 文末，
        随后执行一次 Source -> Cue 同步让 Cue 镜像新定义。

        Args:
            source_id: Source 笔记路径
            start: 选区起始偏移
            end: 选区结束偏移

        Returns:
            新脚注的 ref，失败时返回 None
        """
        source_id = normalize_path(source_id)
        try:
            async with self.coordinator.exclusive(
                OperationState.SYNCING,
                label=f"generate_cue:{source_id}",
                grace=self.sync_settings.release_grace_seconds,
            ) as token:
                try:
                    ref = await self._insert_cue(source_id, start, end)
                except Exception as e:
                    self._report(SyncDirection.SOURCE_TO_CUE, source_id, None, e)
                    return None

                result = await self.sync_source_to_cue(source_id, token=token)
                if result.ok:
                    self.host.notify(f"已生成 Cue: [^{ref}]")
                return ref
        except OperationInProgressError as e:
            self.host.notify(e.message)
            return None

    # ===== 同步实现 =====

    async def _source_to_cue(self, source_id: str) -> SyncResult:
        direction = SyncDirection.SOURCE_TO_CUE
        settings = self.settings
        title = basename(source_id)
        cue_id: Optional[str] = None
        with bind_operation_context("sync_source_to_cue", source_id):
            try:
                source_text = await self._read(source_id)
                parsed = parse(source_text)
                info = self.registry.snapshot(source_id) or NoteInfo(source_id=source_id)

                cue_id = await self._ensure_cue(source_id, info, title)

                definitions = parsed.definition_map()
                if settings.delete_definitions_on_reference_delete:
                    referenced = parsed.referenced_refs()
                    pruned = [ref for ref in definitions if ref not in referenced]
                    if pruned:
                        definitions = {ref: body for ref, body in definitions.items() if ref in referenced}
                        logger.info("unreferenced_definitions_pruned", source_id=source_id, refs=pruned)

                cue_text = await self._read(cue_id)
                new_cue_text = build_cue_content(cue_text, title, definitions, settings.link_to_source_template)
                changed = new_cue_text != cue_text
                if changed:
                    await self._write(cue_id, new_cue_text)

                info.cue_id = cue_id
                if changed:
                    info.touch_source_to_cue()
                self.registry.set(source_id, info)
                await self.state.save()

                await self._refresh_preview_slots(cue_id)

                logger.info(
                    "source_to_cue_synced",
                    source_id=source_id,
                    cue_id=cue_id,
                    definitions=len(definitions),
                    changed=changed,
                )
                return SyncResult(
                    direction=direction,
                    status=SyncStatus.UPDATED if changed else SyncStatus.UNCHANGED,
                    source_id=source_id,
                    cue_id=cue_id,
                    changed=changed,
                )
            except Exception as e:
                return self._report(direction, source_id, cue_id, e)

    async def _cue_to_source(self, cue_id: str) -> SyncResult:
        direction = SyncDirection.CUE_TO_SOURCE
        settings = self.settings
        source_id: Optional[str] = None
        with bind_operation_context("sync_cue_to_source", cue_id):
            try:
                cue_text = await self._read(cue_id)
                definitions = parse(cue_text).definition_map()

                source_id = await self.registry.resolve_source(cue_id, self.host.document_exists)
                if source_id is None:
                    raise SourceResolutionError(cue_id)

                source_text = await self._read(source_id)
                removed = (
                    orphaned_refs(source_text, definitions)
                    if settings.delete_references_on_definition_delete
                    else []
                )
                new_source_text = rebuild_source_content(
                    source_text,
                    definitions,
                    delete_orphan_references=settings.delete_references_on_definition_delete,
                    move_footnotes_to_end=settings.move_footnotes_to_end,
                )
                changed = new_source_text != source_text
                if changed:
                    await self._write(source_id, new_source_text)

                info = self.registry.snapshot(source_id) or NoteInfo(source_id=source_id)
                info.cue_id = cue_id
                if changed:
                    info.touch_cue_to_source()
                self.registry.set(source_id, info)
                await self.state.save()

                if changed and removed:
                    self.host.notify("已从 Source 中删除引用: " + ", ".join(f"[^{ref}]" for ref in removed))

                logger.info(
                    "cue_to_source_synced",
                    source_id=source_id,
                    cue_id=cue_id,
                    definitions=len(definitions),
                    removed_refs=removed,
                    changed=changed,
                )
                return SyncResult(
                    direction=direction,
                    status=SyncStatus.UPDATED if changed else SyncStatus.UNCHANGED,
                    source_id=source_id,
                    cue_id=cue_id,
                    changed=changed,
                )
            except Exception as e:
                return self._report(direction, source_id, cue_id, e)

    async def _ensure_cue(self, source_id: str, info: NoteInfo, title: str) -> str:
        """确保 Cue 存在；创建失败时清除注册表中的过期指针"""
        cue_path = cue_path_for(source_id)
        initial = build_cue_content(None, title, {}, self.settings.link_to_source_template)
        try:
            return await self.host.create_document_if_missing(cue_path, initial)
        except Exception as e:
            if info.cue_id is not None:
                info.cue_id = None
                self.registry.set(source_id, info)
                await self.state.save()
                logger.info("stale_cue_pointer_cleared", source_id=source_id)
            raise DocumentCreateError(cue_path, cause=e) from e

    async def _insert_cue(self, source_id: str, start: int, end: int) -> str:
        if not is_source_note(source_id):
            raise ValidationError("只能在 Source 笔记中生成 Cue", field="source_id")

        text = await self._read(source_id)
        start, end = sorted((max(0, start), max(0, end)))
        end = min(end, len(text))
        selected = text[start:end]
        body = '\n'.join(line.strip() for line in selected.splitlines() if line.strip())
        if not body:
            raise ValidationError("请先选中要生成 Cue 的文本", field="selection")

        existing = {d.ref for d in parse(text).definitions} | {r.ref for r in parse(text).references}
        cue_id = cue_path_for(source_id)
        if await self.host.document_exists(cue_id):
            existing |= {d.ref for d in parse(await self._read(cue_id)).definitions}
        ref = next_cue_ref(existing, self.settings.cue_prefix)

        new_text = text[:end] + f"[^{ref}]" + text[end:]
        new_text = new_text.rstrip() + "\n\n" + format_definition(ref, body) + "\n"
        await self._write(source_id, new_text)
        logger.info("cue_generated", source_id=source_id, ref=ref)
        return ref

    # ===== 工具方法 =====

    async def _read(self, doc_id: str) -> str:
        try:
            return await self.host.read_document(doc_id)
        except ApplicationError:
            raise
        except Exception as e:
            raise DocumentIOError("read", doc_id, cause=e) from e

    async def _write(self, doc_id: str, text: str) -> None:
        try:
            await self.host.write_document(doc_id, text)
        except ApplicationError:
            raise
        except Exception as e:
            raise DocumentIOError("write", doc_id, cause=e) from e

    async def _refresh_preview_slots(self, doc_id: str) -> None:
        """刷新正在只读显示该文档的槽位，失败只记录日志"""
        try:
            for slot in await self.host.list_slots():
                if slot.doc_id == doc_id and slot.behavior == ViewBehavior.PREVIEW:
                    await self.host.refresh_slot(slot.handle)
        except Exception as e:
            logger.warning("preview_refresh_failed", document_id=doc_id, error=str(e))

    def _reject_role(
        self,
        direction: SyncDirection,
        doc_id: str,
        message: str,
        user_initiated: bool,
    ) -> SyncResult:
        logger.warning("sync_wrong_document_role", direction=direction.value, document_id=doc_id)
        if user_initiated:
            self.host.notify(message)
        return SyncResult(direction=direction, status=SyncStatus.SKIPPED, source_id=doc_id, error=message)

    def _skip_busy(
        self,
        direction: SyncDirection,
        doc_id: str,
        error: OperationInProgressError,
        user_initiated: bool,
    ) -> SyncResult:
        logger.info("sync_skipped_busy", direction=direction.value, document_id=doc_id, current=error.current)
        if user_initiated:
            self.host.notify(error.message)
        return SyncResult(direction=direction, status=SyncStatus.SKIPPED, source_id=doc_id, error=error.message)

    def _report(
        self,
        direction: SyncDirection,
        source_id: Optional[str],
        cue_id: Optional[str],
        error: Exception,
    ) -> SyncResult:
        """记录并提示同步失败"""
        if isinstance(error, ApplicationError):
            message = error.message
            logger.error(
                "sync_failed",
                direction=direction.value,
                source_id=source_id,
                cue_id=cue_id,
                **error.to_dict(),
            )
        else:
            message = f"同步失败: {error}"
            logger.error(
                "sync_failed",
                direction=direction.value,
                source_id=source_id,
                cue_id=cue_id,
                error=str(error),
                exc_info=True,
            )
        self.host.notify(message)
        return SyncResult(
            direction=direction,
            status=SyncStatus.FAILED,
            source_id=source_id,
            cue_id=cue_id,
            error=message,
        )
