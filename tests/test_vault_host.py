"""
Tests for the directory-backed host.
"""

import asyncio
import json

import pytest

from domains.core.exceptions import ConfigurationError, DocumentNotFoundError
from domains.cornell_hub import CornellPlugin, SyncDirection
from domains.cornell_hub.hosts import VaultHost


class TestVaultHost:
    """Test suite for VaultHost."""

    def test_documents(self, tmp_path):
        (tmp_path / "notes").mkdir()
        (tmp_path / "notes" / "a.md").write_text("A\n", encoding="utf-8")
        (tmp_path / ".obsidian").mkdir()
        (tmp_path / ".obsidian" / "hidden.md").write_text("x", encoding="utf-8")
        (tmp_path / "image.png").write_bytes(b"\x89PNG")
        host = VaultHost(tmp_path)

        async def run():
            listed = await host.list_documents()
            await host.write_document("notes/a.md", "B\n")
            created = await host.create_document_if_missing("notes/sub/new.md", "new\n")
            kept = await host.create_document_if_missing("notes/a.md", "ignored\n")
            return listed, created, kept, await host.read_document("notes/a.md")

        listed, created, kept, text = asyncio.run(run())

        assert listed == ["notes/a.md"]
        assert created == "notes/sub/new.md"
        assert kept == "notes/a.md"
        assert text == "B\n"
        assert (tmp_path / "notes" / "sub" / "new.md").read_text(encoding="utf-8") == "new\n"

    def test_missing_document(self, tmp_path):
        host = VaultHost(tmp_path)

        with pytest.raises(DocumentNotFoundError):
            asyncio.run(host.read_document("nope.md"))
        with pytest.raises(DocumentNotFoundError):
            asyncio.run(host.write_document("nope.md", "text"))

    def test_missing_root(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            VaultHost(tmp_path / "absent")
        assert exc_info.value.details == {"config_key": "vault_root"}

    def test_paths_cannot_escape_root(self, tmp_path):
        (tmp_path / "vault").mkdir()
        host = VaultHost(tmp_path / "vault")
        (tmp_path / "outside.md").write_text("secret", encoding="utf-8")

        assert asyncio.run(host.document_exists("../outside.md")) is False
        with pytest.raises(ValueError):
            asyncio.run(host.read_document("../outside.md"))

    def test_data_round_trip(self, tmp_path):
        host = VaultHost(tmp_path)

        assert asyncio.run(host.load_data()) is None
        asyncio.run(host.save_data({"settings": {"cuePrefix": "笔记"}}))

        assert asyncio.run(host.load_data()) == {"settings": {"cuePrefix": "笔记"}}
        stored = json.loads((tmp_path / ".cornell" / "data.json").read_text(encoding="utf-8"))
        assert stored["settings"]["cuePrefix"] == "笔记"

    def test_corrupt_data_ignored(self, tmp_path):
        (tmp_path / ".cornell").mkdir()
        (tmp_path / ".cornell" / "data.json").write_text("{not json", encoding="utf-8")

        assert asyncio.run(VaultHost(tmp_path).load_data()) is None

    def test_sync_against_directory(self, tmp_path, fast_settings):
        (tmp_path / "lecture.md").write_text("Text [^1]\n\n[^1]: alpha\n", encoding="utf-8")
        host = VaultHost(tmp_path)
        plugin = CornellPlugin(host, fast_settings)

        async def run():
            await plugin.load()
            return await plugin.manual_sync("lecture.md", SyncDirection.SOURCE_TO_CUE)

        result = asyncio.run(run())

        assert result.ok
        cue = (tmp_path / "lecture-cue.md").read_text(encoding="utf-8")
        assert "[^1]: alpha" in cue
        assert host.notices == ["同步完成"]

        restored = CornellPlugin(VaultHost(tmp_path), fast_settings)
        asyncio.run(restored.load())
        assert restored.registry.get("lecture.md").cue_id == "lecture-cue.md"
