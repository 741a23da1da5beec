# ─────────────────────────────────────────────────────────────────────────────
# Tests: Application factory + lifespan
# ─────────────────────────────────────────────────────────────────────────────

import pytest

from greenlight.config import Settings, get_settings
from greenlight.main import create_app
from greenlight.services.accounts import AccountService
from greenlight.services.tokens import TokenService
from greenlight.store import MemoryStore


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        db_dsn="",
        log_json=False,
        limiter_cleanup_interval_seconds=0.01,
    )


class TestLifespan:
    async def test_wires_state_and_sweeper(self, settings):
        app = create_app(settings)
        buckets = app.state.buckets

        async with app.router.lifespan_context(app):
            assert isinstance(app.state.store, MemoryStore)
            assert isinstance(app.state.token_service, TokenService)
            assert isinstance(app.state.account_service, AccountService)
            assert buckets._sweeper is not None
            sweeper = buckets._sweeper

        assert buckets._sweeper is None
        assert sweeper.done()

    def test_limiter_settings_applied(self, settings):
        app = create_app(settings.model_copy(update={"limiter_rps": 5.0, "limiter_burst": 10}))
        assert app.state.buckets.rps == 5.0
        assert app.state.buckets.burst == 10


class TestSettings:
    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("LIMITER_RPS", "7.5")
        monkeypatch.setenv("LIMITER_ENABLED", "false")
        monkeypatch.setenv("CORS_TRUSTED_ORIGINS", "https://a.example https://b.example")
        get_settings.cache_clear()
        try:
            settings = get_settings()
            assert settings.limiter_rps == 7.5
            assert settings.limiter_enabled is False
            assert settings.cors_trusted_origins == "https://a.example https://b.example"
        finally:
            get_settings.cache_clear()

    def test_secrets_hidden_in_repr(self):
        settings = Settings(_env_file=None, db_dsn="postgresql+asyncpg://u:hunter2@db/greenlight")
        assert "hunter2" not in repr(settings)
