"""Unit tests for environment-driven settings."""
import pytest

from common.config import get_settings, reset_settings_cache


@pytest.fixture()
def fresh_settings():
    """Rebuild settings after the test changes the environment."""
    reset_settings_cache()
    yield get_settings
    reset_settings_cache()


class TestSettings:
    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_reset_settings_cache(self):
        """A reset forces the next call to build a new instance."""
        before = get_settings()
        reset_settings_cache()

        assert get_settings() is not before

    def test_ward_defaults(self):
        settings = get_settings()

        assert settings.ward_summary_cache_ttl > 0
        assert settings.patient_page_size == 10
        assert settings.patient_search_limit == 10
        assert settings.bed_events_queue == "bed_events"

    def test_jwt_configuration(self):
        settings = get_settings()

        assert settings.jwt_algorithm == "HS256"
        assert settings.access_token_expire_minutes > 0

    def test_service_ports(self):
        settings = get_settings()

        assert (settings.users_service_port, settings.wards_service_port, settings.schedules_service_port) == (
            8001,
            8002,
            8003,
        )

    def test_environment_overrides(self, monkeypatch, fresh_settings):
        monkeypatch.setenv("PATIENT_PAGE_SIZE", "25")
        monkeypatch.setenv("EVENT_PUBLISHING_ENABLED", "true")
        monkeypatch.setenv("RABBITMQ_HOST", "broker.local")

        settings = fresh_settings()

        assert settings.patient_page_size == 25
        assert settings.event_publishing_enabled is True
        assert settings.rabbitmq_host == "broker.local"

    def test_test_environment_disables_side_effects(self):
        """The suite runs without rate limits or broker traffic."""
        settings = get_settings()

        assert settings.rate_limiting_enabled is False
        assert settings.event_publishing_enabled is False
        assert settings.database_url.startswith("sqlite")
