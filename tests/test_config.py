"""Tests for settings, engine assembly and provider loading."""

from unittest.mock import patch

import pytest

from dictation_learning.config import Settings, get_settings
from dictation_learning.engine import build_cloud_store, build_engine
from dictation_learning.main import create_app, load_provider

from fakes import FakeProvider


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.learning_ema_alpha == 0.2
        assert settings.learning_seed_confidence == 0.3
        assert settings.decision_trivial_change_threshold == 0.1
        assert settings.sync_max_attempts == 8

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("SYNC_MAX_ATTEMPTS", "3")
        get_settings.cache_clear()
        try:
            assert get_settings().sync_max_attempts == 3
        finally:
            get_settings.cache_clear()


class TestAssembly:
    """Tests for build_engine and build_cloud_store."""

    def test_no_credentials_means_offline(self, db_path):
        settings = Settings(database_path=db_path, supabase_url=None, supabase_key=None)
        assert build_cloud_store(settings) is None

    def test_credentials_build_supabase_store(self, db_path):
        settings = Settings(
            database_path=db_path,
            supabase_url="https://example.supabase.co",
            supabase_key="key",
        )
        with patch("dictation_learning.engine.SupabaseCloudStore") as store_cls:
            store = build_cloud_store(settings)
        store_cls.assert_called_once_with("https://example.supabase.co", "key")
        assert store is store_cls.return_value

    def test_settings_reach_components(self, db_path):
        settings = Settings(
            database_path=db_path,
            learning_ema_alpha=0.5,
            decision_trivial_change_threshold=0.25,
            sync_max_attempts=4,
            refine_timeout_seconds=7.0,
        )
        engine = build_engine(settings, FakeProvider())

        assert engine.pattern_store.ema_alpha == 0.5
        assert engine.decision_engine.trivial_change_threshold == 0.25
        assert engine.sync_queue.max_attempts == 4
        assert engine.coordinator.refine_timeout == 7.0


class TestProviderLoading:
    """Tests for load_provider and create_app."""

    def test_load_provider(self):
        assert isinstance(load_provider("fakes:FakeProvider"), FakeProvider)

    def test_malformed_path(self):
        with pytest.raises(ValueError):
            load_provider("fakes.FakeProvider")

    def test_not_a_provider(self):
        with pytest.raises(ValueError):
            load_provider("fakes:FakeOutput")

    def test_create_app_from_settings(self, db_path):
        settings = Settings(database_path=db_path, ai_provider="fakes:FakeProvider")
        app = create_app(settings=settings)
        assert app.state.engine.coordinator is not None

    def test_create_app_requires_provider(self, db_path):
        settings = Settings(database_path=db_path, ai_provider=None)
        with pytest.raises(ValueError):
            create_app(settings=settings)
