"""
Tests for the mode layout state machine.
"""

import asyncio

import pytest

from domains.cornell_core.sync import OperationCoordinator, OperationState
from domains.cornell_hub.core.models import LayoutStatus, Mode, Position, SyncStatus, ViewBehavior
from domains.cornell_hub.core.store import PluginStateStore
from domains.cornell_hub.hosts import MemoryHost
from domains.cornell_hub.services.layout_service import LayoutStateMachine, find_section_line
from domains.cornell_hub.services.sync_service import FootnoteSyncService

SOURCE = "notes/lecture.md"
CUE = "notes/lecture-cue.md"
SUMMARY = "notes/lecture-summary.md"


def make_layout(host, sync_settings):
    state = PluginStateStore(host)
    coordinator = OperationCoordinator(grace_seconds=0)
    sync_service = FootnoteSyncService(host, state, coordinator, sync_settings)
    return LayoutStateMachine(host, state, coordinator, sync_service, sync_settings)


class SlowHost(MemoryHost):
    """Allocating a slot yields to the event loop."""

    async def allocate_view_slot(self, position, doc_id):
        await asyncio.sleep(0.02)
        return await super().allocate_view_slot(position, doc_id)


class SlowWriteHost(MemoryHost):
    """Writing a document yields to the event loop."""

    async def write_document(self, doc_id, text):
        await asyncio.sleep(0.02)
        await super().write_document(doc_id, text)


class TestActivateMode:
    """Test suite for activate_mode()."""

    def test_show_all(self, lecture_host, fast_settings):
        layout = make_layout(lecture_host, fast_settings)

        result = asyncio.run(layout.activate_mode(Mode.SHOW_ALL, SOURCE))

        assert result.status == LayoutStatus.ACTIVE
        assert result.slots == {Position.LEFT: "slot-1", Position.CENTER: "slot-2", Position.RIGHT: "slot-3"}
        assert lecture_host.order == ["slot-1", "slot-2", "slot-3"]
        assert [lecture_host.slots[h].doc_id for h in lecture_host.order] == [CUE, SOURCE, SUMMARY]
        assert lecture_host.slots["slot-1"].behavior == ViewBehavior.PREVIEW
        assert lecture_host.slots["slot-2"].behavior == ViewBehavior.EDIT
        assert lecture_host.slots["slot-3"].behavior == ViewBehavior.EDIT
        assert [lecture_host.slots[h].width for h in lecture_host.order] == [33.0, 34.0, 33.0]
        assert lecture_host.focused == "slot-2"
        assert lecture_host.slots["slot-3"].scroll_line == 3
        assert "[^1]: alpha" in lecture_host.documents[CUE]
        assert layout.settings.last_mode is None

    def test_capture(self, lecture_host, fast_settings):
        layout = make_layout(lecture_host, fast_settings)

        result = asyncio.run(layout.activate_mode(Mode.CAPTURE, SOURCE))

        assert result.ok
        assert result.slots == {Position.LEFT: "slot-1", Position.CENTER: "slot-2"}
        assert SUMMARY not in lecture_host.documents
        assert lecture_host.focused == "slot-2"
        assert lecture_host.slots["slot-1"].width == pytest.approx(100 / 3)
        assert lecture_host.slots["slot-2"].width == pytest.approx(200 / 3)
        assert lecture_host.slots["slot-2"].grow == 50
        assert layout.settings.last_mode == Mode.CAPTURE
        assert lecture_host.data["settings"]["lastSourceId"] == SOURCE
        assert layout.registry.get(SOURCE).cue_id == CUE

    def test_recall_focuses_summary(self, lecture_host, fast_settings):
        layout = make_layout(lecture_host, fast_settings)

        result = asyncio.run(layout.activate_mode(Mode.RECALL, SOURCE))

        assert set(result.slots) == {Position.LEFT, Position.RIGHT}
        right = result.slots[Position.RIGHT]
        assert lecture_host.focused == right
        assert lecture_host.slots[right].width == pytest.approx(50)
        assert layout.registry.get(SOURCE).summary_id == SUMMARY

    def test_switch_mode_keeps_shared_slot(self, lecture_host, fast_settings):
        layout = make_layout(lecture_host, fast_settings)
        asyncio.run(layout.activate_mode(Mode.CAPTURE, SOURCE))

        result = asyncio.run(layout.activate_mode(Mode.REVIEW, SOURCE))

        assert result.slots == {Position.CENTER: "slot-2", Position.RIGHT: "slot-3"}
        assert "slot-1" not in lecture_host.slots
        assert lecture_host.order == ["slot-2", "slot-3"]
        assert layout.active_mode == Mode.REVIEW

    def test_target_from_focused_derived_note(self, lecture_host, fast_settings):
        """A focused Cue resolves to its Source by name."""
        lecture_host.documents[CUE] = "[[lecture|⬅️ Back to Source]]\n"
        lecture_host.open_standalone(CUE)
        layout = make_layout(lecture_host, fast_settings)

        result = asyncio.run(layout.activate_mode(Mode.CAPTURE))

        assert result.ok
        assert result.source_id == SOURCE
        assert lecture_host.slots[result.slots[Position.LEFT]].doc_id == CUE

    def test_existing_slot_is_rearranged(self, lecture_host, fast_settings):
        """A Source slot left of the new Cue slot is replaced by a split."""
        lecture_host.open_standalone(SOURCE)
        layout = make_layout(lecture_host, fast_settings)

        result = asyncio.run(layout.activate_mode(Mode.CAPTURE))

        assert result.ok
        assert lecture_host.order == ["slot-2", "slot-3"]
        assert lecture_host.slots["slot-3"].doc_id == SOURCE
        assert len(lecture_host.calls_of("split_slot")) == 1

    def test_changing_source_tears_down(self, lecture_host, fast_settings):
        lecture_host.documents["notes/other.md"] = "other\n"
        layout = make_layout(lecture_host, fast_settings)
        asyncio.run(layout.activate_mode(Mode.CAPTURE, SOURCE))

        result = asyncio.run(layout.activate_mode(Mode.CAPTURE, "notes/other.md"))

        assert result.source_id == "notes/other.md"
        assert set(lecture_host.slots) == {"slot-3", "slot-4"}

    def test_no_source(self, lecture_host, fast_settings):
        layout = make_layout(lecture_host, fast_settings)

        result = asyncio.run(layout.activate_mode(Mode.CAPTURE))

        assert result.status == LayoutStatus.FAILED
        assert lecture_host.notices == ["无法确定 Source 笔记，请先打开一篇笔记"]
        assert lecture_host.slots == {}

    def test_failure_tears_down_and_clears_last_state(self, lecture_host, fast_settings):
        lecture_host.open_standalone(SOURCE)
        lecture_host.fail_on.add("split_slot")
        layout = make_layout(lecture_host, fast_settings)

        result = asyncio.run(layout.activate_mode(Mode.CAPTURE))

        assert result.status == LayoutStatus.FAILED
        assert lecture_host.notices == ["切换到 capture 模式失败: 布局失败 [split]: 无法为 center 分屏"]
        assert lecture_host.slots == {}
        assert not layout.is_active
        assert layout.assignment.is_empty
        assert lecture_host.data["settings"]["lastMode"] is None
        assert not layout.coordinator.busy

    def test_skipped_while_syncing(self, lecture_host, fast_settings):
        layout = make_layout(lecture_host, fast_settings)
        token = layout.coordinator.try_acquire(OperationState.SYNCING)

        result = asyncio.run(layout.activate_mode(Mode.CAPTURE, SOURCE))
        restored = asyncio.run(layout.activate_mode(Mode.CAPTURE, SOURCE, is_restore=True))

        assert result.status == LayoutStatus.SKIPPED
        assert restored.status == LayoutStatus.SKIPPED
        assert lecture_host.notices == ["同步或布局切换正在进行中，请稍候"]
        assert lecture_host.calls == []
        layout.coordinator.release(token)

    def test_sync_rejected_during_switch(self, fast_settings):
        host = SlowHost({SOURCE: "See [^1].\n\n[^1]: alpha\n"})
        layout = make_layout(host, fast_settings)

        async def run():
            async def sync_later():
                await asyncio.sleep(0.005)
                return await layout.sync_service.sync_cue_to_source(CUE)

            return await asyncio.gather(layout.activate_mode(Mode.CAPTURE, SOURCE), sync_later())

        layout_result, sync_result = asyncio.run(run())

        assert layout_result.ok
        assert sync_result.status == SyncStatus.SKIPPED
        assert layout.coordinator.state == OperationState.IDLE
        assert (OperationState.IDLE, OperationState.SYNCING) not in layout.coordinator.transitions

    def test_switch_skipped_during_running_sync(self, fast_settings):
        host = SlowWriteHost({SOURCE: "See [^1].\n\n[^1]: alpha\n"})
        layout = make_layout(host, fast_settings)

        async def run():
            async def switch_later():
                await asyncio.sleep(0.005)
                return await layout.activate_mode(Mode.SHOW_ALL, SOURCE)

            return await asyncio.gather(layout.sync_service.sync_source_to_cue(SOURCE), switch_later())

        sync_result, layout_result = asyncio.run(run())

        assert sync_result.status == SyncStatus.UPDATED
        assert layout_result.status == LayoutStatus.SKIPPED
        assert host.calls == []
        assert host.slots == {}
        assert host.notices == ["同步或布局切换正在进行中，请稍候"]
        assert not layout.is_active
        assert layout.coordinator.state == OperationState.IDLE


class TestRestoreAndViews:
    """Test suite for restore, view behavior and reference navigation."""

    def test_restore_last_layout(self, lecture_host, fast_settings):
        layout = make_layout(lecture_host, fast_settings)
        layout.settings.last_mode = Mode.CAPTURE
        layout.settings.last_source_id = SOURCE

        result = asyncio.run(layout.restore_last_layout())

        assert result.ok
        assert layout.active_mode == Mode.CAPTURE
        assert layout.settings.last_mode is None
        assert lecture_host.data["settings"]["lastSourceId"] is None

    def test_restore_skips_show_all_and_missing_source(self, lecture_host, fast_settings):
        layout = make_layout(lecture_host, fast_settings)
        layout.settings.last_mode = Mode.SHOW_ALL
        layout.settings.last_source_id = SOURCE
        assert asyncio.run(layout.restore_last_layout()) is None
        assert layout.settings.last_mode is None

        layout.settings.last_mode = Mode.RECALL
        layout.settings.last_source_id = "notes/gone.md"
        assert asyncio.run(layout.restore_last_layout()) is None
        assert lecture_host.calls == []

    def test_cue_stays_preview(self, lecture_host, fast_settings):
        layout = make_layout(lecture_host, fast_settings)
        asyncio.run(layout.activate_mode(Mode.CAPTURE, SOURCE))
        left = layout.assignment.left

        assert asyncio.run(layout.set_slot_behavior(left, ViewBehavior.EDIT)) is False
        assert lecture_host.notices[-1] == "Cue 视图已锁定为只读，可在设置中关闭"

        lecture_host.slots[left].behavior = ViewBehavior.EDIT
        asyncio.run(layout.handle_slot_focus(left))
        assert lecture_host.slots[left].behavior == ViewBehavior.PREVIEW

        layout.settings.enforce_cue_preview = False
        assert asyncio.run(layout.set_slot_behavior(left, ViewBehavior.EDIT)) is True
        assert lecture_host.slots[left].behavior == ViewBehavior.EDIT

    def test_reveal_reference(self, lecture_host, fast_settings):
        source_slot = lecture_host.open_standalone(SOURCE)
        cue_slot = lecture_host.open_standalone(CUE)
        layout = make_layout(lecture_host, fast_settings)

        found = asyncio.run(layout.reveal_reference(CUE, "2", focus=False))

        slot = lecture_host.slots[source_slot]
        text = lecture_host.documents[SOURCE]
        assert found is True
        assert slot.scroll_line == 1
        assert text[slot.highlight[0]:slot.highlight[1]] == "[^2]"
        assert lecture_host.focused == cue_slot
        assert len(layout.registry) == 0

        assert asyncio.run(layout.reveal_reference(CUE, "1", focus=True)) is True
        assert lecture_host.focused == source_slot

    def test_reveal_missing_reference(self, lecture_host, fast_settings):
        source_slot = lecture_host.open_standalone(SOURCE)
        layout = make_layout(lecture_host, fast_settings)

        assert asyncio.run(layout.reveal_reference(CUE, "9", focus=True)) is False
        assert lecture_host.notices == ["未在 Source 中找到引用 [^9]"]
        assert lecture_host.slots[source_slot].scroll_line == 0

    def test_highlight_clears_after_duration(self, lecture_host, fast_settings):
        source_slot = lecture_host.open_standalone(SOURCE)
        layout = make_layout(lecture_host, fast_settings)

        async def run():
            await layout.reveal_reference(CUE, "1", focus=False)
            shown = lecture_host.slots[source_slot].highlight
            await asyncio.sleep(fast_settings.highlight_duration_seconds * 3)
            return shown

        shown = asyncio.run(run())

        assert shown is not None
        assert lecture_host.slots[source_slot].highlight is None
        assert lecture_host.calls_of("clear_highlight") == [("clear_highlight", source_slot)]

    def test_new_highlight_replaces_previous(self, lecture_host, fast_settings):
        source_slot = lecture_host.open_standalone(SOURCE)
        layout = make_layout(lecture_host, fast_settings)

        async def run():
            await layout.reveal_reference(CUE, "1", focus=False)
            await layout.reveal_reference(CUE, "2", focus=False)
            current = lecture_host.slots[source_slot].highlight
            await asyncio.sleep(fast_settings.highlight_duration_seconds * 3)
            return current

        current = asyncio.run(run())

        text = lecture_host.documents[SOURCE]
        assert text[current[0]:current[1]] == "[^2]"
        operations = [
            call[0] for call in lecture_host.calls
            if call[0] in ("highlight_range", "clear_highlight")
        ]
        assert operations == ["highlight_range", "clear_highlight", "highlight_range", "clear_highlight"]
        assert lecture_host.slots[source_slot].highlight is None

    def test_find_section_line(self):
        content = "link\n\n## Summary notes\ntext"
        assert find_section_line(content, "SUMMARY") == 2
        assert find_section_line(content, "MAIN") is None
