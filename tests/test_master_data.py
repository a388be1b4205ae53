"""Tests for master data loading and configuration."""
import logging

import pytest

from capa.core.config import Settings
from capa.core.exceptions import MasterDataUnavailable
from capa.core.master_data import default_severities, fetch_severities, load_severities


class TestLoadSeverities:
    """Severity loading with the hard-coded fallback."""

    @pytest.mark.asyncio
    async def test_loaded_from_store(self, store):
        result = await load_severities(store)
        assert result.is_fallback is False
        assert result.names() == ["Minor", "Major"]
        assert result.error is None

    @pytest.mark.asyncio
    async def test_fallback_on_failure(self, backend, store, caplog):
        backend.failures["list_severities"] = 500

        with caplog.at_level(logging.WARNING, logger="capa.core.master_data"):
            result = await load_severities(store)

        assert result.is_fallback is True
        assert result.names() == ["Minor", "Medium", "Major", "Critical"]
        assert "HTTP 500" in result.error
        assert "using fallback severities" in caplog.text

    @pytest.mark.asyncio
    async def test_fallback_on_empty_list(self, backend, store):
        backend.severities = []
        result = await load_severities(store)
        assert result.is_fallback is True
        assert "no severities defined" in result.error

    @pytest.mark.asyncio
    async def test_fetch_raises(self, backend, store):
        backend.failures["list_severities"] = 503
        with pytest.raises(MasterDataUnavailable) as exc_info:
            await fetch_severities(store)
        assert exc_info.value.resource == "severities"

    @pytest.mark.asyncio
    async def test_service_delegates(self, service):
        result = await service.load_severities()
        assert result.names() == ["Minor", "Major"]


class TestDefaults:

    def test_default_severities(self):
        assert [s.name for s in default_severities()] == ["Minor", "Medium", "Major", "Critical"]

    def test_explicit_names(self):
        options = default_severities(["Low", "High"])
        assert [s.name for s in options] == ["Low", "High"]
        assert all(s.severity_id is None for s in options)


class TestSettings:

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("CAPA_FALLBACK_SEVERITIES", "Low, ,High ")
        monkeypatch.setenv("CAPA_ATTACHMENT_RETENTION_MONTHS", "3")
        settings = Settings()
        assert settings.get_fallback_severities() == ["Low", "High"]
        assert settings.ATTACHMENT_RETENTION_MONTHS == 3

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("CAPA_CACHE_BUST_PARAM", raising=False)
        assert Settings().CACHE_BUST_PARAM == "_t"
