"""
Tests for persisted plugin settings and runtime settings.
"""

import pytest
from pydantic import ValidationError

from domains.cornell_core.settings import LoggingSettings, SyncSettings, get_settings, reload_settings
from domains.cornell_hub.core.config import PaneWidthRatio, PluginSettings
from domains.cornell_hub.core.models import Mode, Position


class TestPluginSettings:
    """Test suite for PluginSettings."""

    def test_defaults(self):
        settings = PluginSettings()

        assert settings.cue_prefix == "cue"
        assert settings.enforce_cue_preview is True
        assert settings.sync_on_save is False
        assert settings.move_footnotes_to_end is True
        assert settings.last_mode is None
        assert settings.pane_width_ratio == PaneWidthRatio(left=25, center=50, right=25)

    def test_persisted_keys_are_camel_case(self):
        data = PluginSettings(last_mode=Mode.SHOW_ALL).to_persisted()

        assert data["lastMode"] == "show-all"
        assert data["syncOnSave"] is False
        assert data["paneWidthRatio"] == {"left": 25.0, "center": 50.0, "right": 25.0}

    def test_invalid_values_revert_individually(self):
        settings = PluginSettings.from_persisted({
            "syncOnSave": "yes",
            "cuePrefix": "q",
            "enableHighlight": False,
            "paneWidthRatio": {"left": -1},
        })

        assert settings.sync_on_save is False
        assert settings.cue_prefix == "q"
        assert settings.enable_highlight is False
        assert settings.pane_width_ratio.left == 25

    def test_unknown_last_mode_becomes_none(self):
        settings = PluginSettings.from_persisted({"lastMode": "bogus", "lastSourceId": "a.md"})
        assert settings.last_mode is None
        assert settings.last_source_id == "a.md"

        settings = PluginSettings.from_persisted({"lastMode": "recall"})
        assert settings.last_mode == Mode.RECALL

    def test_legacy_last_file_migrated(self):
        settings = PluginSettings.from_persisted({"lastFile": "notes/a.md"})
        assert settings.last_source_id == "notes/a.md"

    def test_garbage_blob(self):
        assert PluginSettings.from_persisted("not a dict") == PluginSettings()
        assert PluginSettings.from_persisted(None) == PluginSettings()

    def test_assignment_is_validated(self):
        settings = PluginSettings()
        with pytest.raises(ValidationError):
            settings.sync_on_save = "nope"

    def test_clear_last_state(self):
        settings = PluginSettings(last_mode=Mode.CAPTURE, last_source_id="a.md")
        settings.clear_last_state()
        assert settings.last_mode is None
        assert settings.last_source_id is None

    def test_width_for_position(self):
        ratio = PaneWidthRatio(left=20, center=60, right=20)
        assert ratio.for_position(Position.CENTER) == 60


class TestRuntimeSettings:
    """Test suite for environment-driven settings."""

    def test_sync_defaults(self):
        settings = SyncSettings()
        assert settings.debounce_seconds == 1.5
        assert settings.release_grace_seconds == 0.1
        assert settings.batch_retry_limit == 3

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("CORNELL_SYNC_DEBOUNCE_SECONDS", "0.25")
        assert SyncSettings().debounce_seconds == 0.25

    def test_negative_delay_rejected(self):
        with pytest.raises(ValidationError):
            SyncSettings(debounce_seconds=-1)

    def test_log_level_normalized(self):
        assert LoggingSettings(level="debug").level == "DEBUG"
        with pytest.raises(ValidationError):
            LoggingSettings(level="loud")

    def test_reload_settings(self, monkeypatch):
        monkeypatch.setenv("CORNELL_ENVIRONMENT", "production")
        try:
            settings = reload_settings()
            assert settings.environment == "production"
            assert settings.is_development is False
            assert get_settings() is settings
        finally:
            monkeypatch.delenv("CORNELL_ENVIRONMENT")
            reload_settings()
