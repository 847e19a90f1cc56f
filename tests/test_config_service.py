"""
Alert engine configuration tests
"""

from datetime import timedelta

import pytest

from alert_triage.services.alert_engine.config_service import AlertConfigService, AlertEngineConfig


class TestAlertEngineConfig:

    def test_defaults(self):
        config = AlertEngineConfig()
        assert config.severity_multipliers == {"CRITICAL": 2.0, "HIGH": 1.5, "MEDIUM": 1.0, "LOW": 0.5}
        assert config.sla_window("HIGH") == timedelta(minutes=120)
        assert config.escalation_delay("CRITICAL") == timedelta(minutes=30)
        assert config.escalation_delay("LOW") is None
        assert "CLINICAL_SUPERVISOR" in config.supervisory_roles

    def test_unknown_severity_uses_medium_window(self):
        assert AlertEngineConfig().sla_window("UNKNOWN") == timedelta(minutes=480)

    def test_dict_round_trip_ignores_unknown_keys(self):
        data = AlertEngineConfig(claim_timeout_minutes=90).to_dict()
        data["not_a_setting"] = 1
        config = AlertEngineConfig.from_dict(data)
        assert config.claim_timeout_minutes == 90
        assert isinstance(config.supervisory_roles, tuple)


class TestAlertConfigService:

    @pytest.fixture(autouse=True)
    def reset(self):
        AlertConfigService().reset_to_defaults()
        yield
        AlertConfigService().reset_to_defaults()

    def test_singleton(self):
        assert AlertConfigService() is AlertConfigService()

    def test_update_and_reset(self):
        service = AlertConfigService()
        service.update_config({"stale_alert_hours": 48})
        assert AlertConfigService().config.stale_alert_hours == 48

        service.reset_to_defaults()
        assert service.config.stale_alert_hours == 72
