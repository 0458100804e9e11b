"""
Tests for FootnoteSyncService (Source -> Cue and Cue -> Source).
"""

import asyncio

from domains.cornell_core.sync import OperationCoordinator, OperationState
from domains.cornell_hub.core.models import NoteInfo, SyncStatus, ViewBehavior
from domains.cornell_hub.core.reconciler import FOOTNOTE_LINKS_BLOCK
from domains.cornell_hub.core.store import PluginStateStore
from domains.cornell_hub.hosts import MemoryHost
from domains.cornell_hub.services.sync_service import FootnoteSyncService

SOURCE = "notes/lecture.md"
CUE = "notes/lecture-cue.md"
LINK = "[[lecture|⬅️ Back to Source]]"


def make_service(host, sync_settings):
    state = PluginStateStore(host)
    coordinator = OperationCoordinator(grace_seconds=0)
    return FootnoteSyncService(host, state, coordinator, sync_settings)


class TestSourceToCue:
    """Test suite for Source -> Cue synchronization."""

    def test_creates_cue(self, lecture_host, fast_settings):
        service = make_service(lecture_host, fast_settings)

        result = asyncio.run(service.sync_source_to_cue(SOURCE))

        assert result.status == SyncStatus.UPDATED
        assert result.cue_id == CUE
        assert lecture_host.documents[CUE] == (
            f"{LINK}\n\n[^1]: alpha\n\n[^2]: beta\n\n{FOOTNOTE_LINKS_BLOCK}\n"
        )
        info = service.registry.get(SOURCE)
        assert info.cue_id == CUE
        assert info.last_sync_source_to_cue is not None
        assert lecture_host.data["noteInfoMap"][SOURCE]["cueId"] == CUE

    def test_second_sync_is_unchanged(self, lecture_host, fast_settings):
        service = make_service(lecture_host, fast_settings)
        asyncio.run(service.sync_source_to_cue(SOURCE))
        writes = len(lecture_host.writes)
        stamp = service.registry.get(SOURCE).last_sync_source_to_cue

        result = asyncio.run(service.sync_source_to_cue(SOURCE))

        assert result.status == SyncStatus.UNCHANGED
        assert result.ok
        assert len(lecture_host.writes) == writes
        assert service.registry.get(SOURCE).last_sync_source_to_cue == stamp

    def test_cue_header_survives(self, lecture_host, fast_settings):
        lecture_host.documents[CUE] = f"{LINK}\n\n## CUE\nmy questions\n\n[^old]: stale\n"
        service = make_service(lecture_host, fast_settings)

        asyncio.run(service.sync_source_to_cue(SOURCE))

        cue = lecture_host.documents[CUE]
        assert cue.startswith(f"{LINK}\n\n## CUE\nmy questions\n\n[^1]: alpha")
        assert "[^old]" not in cue

    def test_unreferenced_definitions_pruned(self, fast_settings):
        host = MemoryHost({SOURCE: "Only [^1].\n\n[^1]: alpha\n[^2]: beta\n"})
        service = make_service(host, fast_settings)
        service.settings.delete_definitions_on_reference_delete = True

        asyncio.run(service.sync_source_to_cue(SOURCE))

        assert "[^1]: alpha" in host.documents[CUE]
        assert "[^2]" not in host.documents[CUE]
        assert host.documents[SOURCE] == "Only [^1].\n\n[^1]: alpha\n[^2]: beta\n"

    def test_preview_slot_refreshed(self, lecture_host, fast_settings):
        handle = lecture_host.open_standalone(CUE, ViewBehavior.PREVIEW)
        service = make_service(lecture_host, fast_settings)

        asyncio.run(service.sync_source_to_cue(SOURCE))

        assert lecture_host.slots[handle].refresh_count == 1

    def test_wrong_role_skipped(self, lecture_host, fast_settings):
        service = make_service(lecture_host, fast_settings)

        result = asyncio.run(service.sync_source_to_cue(CUE, user_initiated=True))

        assert result.status == SyncStatus.SKIPPED
        assert lecture_host.notices == ["当前笔记不是 Source 笔记"]
        assert lecture_host.writes == []

    def test_skipped_while_busy(self, lecture_host, fast_settings):
        service = make_service(lecture_host, fast_settings)
        token = service.coordinator.try_acquire(OperationState.SWITCHING_MODE)

        result = asyncio.run(service.sync_source_to_cue(SOURCE))

        assert result.status == SyncStatus.SKIPPED
        assert CUE not in lecture_host.documents
        assert lecture_host.notices == []
        service.coordinator.release(token)

    def test_create_failure_clears_stale_pointer(self, lecture_host, fast_settings):
        lecture_host.fail_creates.add(CUE)
        service = make_service(lecture_host, fast_settings)
        service.registry.set(SOURCE, NoteInfo(source_id=SOURCE, cue_id=CUE))

        result = asyncio.run(service.sync_source_to_cue(SOURCE))

        assert result.status == SyncStatus.FAILED
        assert service.registry.get(SOURCE).cue_id is None
        assert lecture_host.data["noteInfoMap"][SOURCE]["cueId"] is None
        assert lecture_host.notices == [f"无法创建笔记: {CUE}"]
        assert not service.coordinator.busy

    def test_write_failure_leaves_registry_untouched(self, lecture_host, fast_settings):
        lecture_host.documents[CUE] = "stale\n"
        lecture_host.fail_writes.add(CUE)
        service = make_service(lecture_host, fast_settings)

        result = asyncio.run(service.sync_source_to_cue(SOURCE))

        assert result.status == SyncStatus.FAILED
        assert service.registry.get(SOURCE) is None
        assert lecture_host.documents[CUE] == "stale\n"
        assert lecture_host.notices == [f"笔记写入失败: {CUE}"]

    def test_missing_source_reported(self, fast_settings):
        host = MemoryHost()
        service = make_service(host, fast_settings)

        result = asyncio.run(service.sync_source_to_cue("missing.md"))

        assert result.status == SyncStatus.FAILED
        assert len(host.notices) == 1


class TestCueToSource:
    """Test suite for Cue -> Source synchronization."""

    def setup_method(self):
        self.cue_text = (
            f"{LINK}\n\n[^1]: ALPHA\n\n{FOOTNOTE_LINKS_BLOCK}\n"
        )

    def test_cue_is_authoritative(self, lecture_host, fast_settings):
        lecture_host.documents[CUE] = self.cue_text
        service = make_service(lecture_host, fast_settings)

        result = asyncio.run(service.sync_cue_to_source(CUE))

        assert result.status == SyncStatus.UPDATED
        assert result.source_id == SOURCE
        assert lecture_host.documents[SOURCE] == "## MAIN\nSee [^1] and [^2].\n\n[^1]: ALPHA\n"
        info = service.registry.get(SOURCE)
        assert info.cue_id == CUE
        assert info.last_sync_cue_to_source is not None
        assert lecture_host.notices == []

    def test_orphan_references_deleted(self, lecture_host, fast_settings):
        lecture_host.documents[CUE] = self.cue_text
        service = make_service(lecture_host, fast_settings)
        service.settings.delete_references_on_definition_delete = True

        asyncio.run(service.sync_cue_to_source(CUE))

        assert lecture_host.documents[SOURCE] == "## MAIN\nSee [^1] and .\n\n[^1]: ALPHA\n"
        assert lecture_host.notices == ["已从 Source 中删除引用: [^2]"]

    def test_round_trip_is_stable(self, lecture_host, fast_settings):
        """Syncing one way then the other leaves both documents unchanged."""
        service = make_service(lecture_host, fast_settings)
        asyncio.run(service.sync_source_to_cue(SOURCE))
        asyncio.run(service.sync_cue_to_source(CUE))
        source = lecture_host.documents[SOURCE]
        cue = lecture_host.documents[CUE]

        assert asyncio.run(service.sync_source_to_cue(SOURCE)).status == SyncStatus.UNCHANGED
        assert asyncio.run(service.sync_cue_to_source(CUE)).status == SyncStatus.UNCHANGED
        assert lecture_host.documents[SOURCE] == source
        assert lecture_host.documents[CUE] == cue

    def test_unresolvable_source(self, fast_settings):
        host = MemoryHost({"notes/orphan-cue.md": "[^1]: a\n"})
        service = make_service(host, fast_settings)

        result = asyncio.run(service.sync_cue_to_source("notes/orphan-cue.md"))

        assert result.status == SyncStatus.FAILED
        assert host.notices == ["找不到 notes/orphan-cue.md 对应的 Source 笔记"]
        assert host.writes == []

    def test_wrong_role_skipped(self, lecture_host, fast_settings):
        service = make_service(lecture_host, fast_settings)
        result = asyncio.run(service.sync_cue_to_source(SOURCE))
        assert result.status == SyncStatus.SKIPPED
        assert lecture_host.notices == []

    def test_write_failure_leaves_registry_untouched(self, lecture_host, fast_settings):
        """A Source found by name is only recorded once the write succeeds."""
        lecture_host.documents[CUE] = self.cue_text
        lecture_host.fail_writes.add(SOURCE)
        service = make_service(lecture_host, fast_settings)

        result = asyncio.run(service.sync_cue_to_source(CUE))

        assert result.status == SyncStatus.FAILED
        assert result.source_id == SOURCE
        assert service.registry.get(SOURCE) is None
        assert lecture_host.documents[SOURCE].endswith("[^2]: beta\n")
        assert lecture_host.notices == [f"笔记写入失败: {SOURCE}"]


class TestBatchAndGenerate:
    """Test suite for batch sync and cue generation."""

    def test_sync_all(self, fast_settings):
        host = MemoryHost({
            "a.md": "A [^1]\n\n[^1]: one\n",
            "b.md": "B\n",
            "b-cue.md": "[[b|⬅️ Back to Source]]\n",
            "image.png": "binary",
        })
        service = make_service(host, fast_settings)

        stats = asyncio.run(service.sync_all_source_to_cue())

        assert stats.to_dict() == {"total": 3, "processed": 2, "skipped": 1, "errors": 0}
        assert "a-cue.md" in host.documents
        assert host.notices[0] == "开始同步 2 篇 Source 笔记..."
        assert host.notices[-1] == "同步完成: 处理 2 篇"

    def test_sync_all_counts_errors(self, fast_settings):
        host = MemoryHost({"a.md": "A\n", "b.md": "B\n"})
        host.fail_reads.add("b.md")
        service = make_service(host, fast_settings)

        stats = asyncio.run(service.sync_all_source_to_cue())

        assert stats.processed == 1
        assert stats.errors == 1
        assert host.notices[-1] == "同步完成: 处理 1 篇，失败 1 篇"

    def test_generate_cue(self, fast_settings):
        host = MemoryHost({SOURCE: "## MAIN\nImportant idea here.\n"})
        service = make_service(host, fast_settings)

        ref = asyncio.run(service.generate_cue(SOURCE, 8, 22))

        assert ref == "cue1"
        assert host.documents[SOURCE] == "## MAIN\nImportant idea[^cue1] here.\n\n[^cue1]: Important idea\n"
        assert "[^cue1]: Important idea" in host.documents[CUE]
        assert host.notices == ["已生成 Cue: [^cue1]"]
        assert not service.coordinator.busy

        assert asyncio.run(service.generate_cue(SOURCE, 8, 17)) == "cue2"

    def test_generate_cue_requires_selection(self, fast_settings):
        host = MemoryHost({SOURCE: "## MAIN\ntext\n"})
        service = make_service(host, fast_settings)

        assert asyncio.run(service.generate_cue(SOURCE, 3, 3)) is None
        assert host.notices == ["请先选中要生成 Cue 的文本"]
        assert host.writes == []
