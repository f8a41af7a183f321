"""
apmagent Configuration Tests

Tests cover: defaults, environment loading, dotted lookups, validated
updates with change notifications, aggregator settings and logging setup.
"""

import json

import pytest


class TestAgentConfig:
    """Test configuration loading and lookups."""

    def test_defaults(self):
        """Test per-stream default limits."""
        from apmagent.core.config import AgentConfig

        config = AgentConfig()

        assert config.transaction_events.max_samples_stored == 10000
        assert config.custom_insights_events.max_samples_stored == 3000
        assert config.error_collector.max_samples_stored == 100
        assert config.span_events.max_samples_stored == 2000
        assert config.browser_monitoring.attributes.enabled is False

    def test_env_loading(self, monkeypatch):
        """Test nested settings load from prefixed environment variables."""
        from apmagent.core.config import AgentConfig

        monkeypatch.setenv("APMAGENT_APP_NAME", "billing")
        monkeypatch.setenv("APMAGENT_SPAN_EVENTS__ENABLED", "false")

        config = AgentConfig()

        assert config.app_name == "billing"
        assert config.span_events.enabled is False

    def test_from_file(self, tmp_path):
        """Test loading from a JSON file."""
        from apmagent.core.config import AgentConfig

        path = tmp_path / "apmagent.json"
        path.write_text(json.dumps({"app_name": "from-file", "attributes": {"exclude": ["x"]}}))

        config = AgentConfig.from_file(path)

        assert config.app_name == "from-file"
        assert config.attributes.exclude == ["x"]

    def test_from_missing_file(self, tmp_path):
        """Test a missing file raises."""
        from apmagent.core.config import AgentConfig

        with pytest.raises(FileNotFoundError):
            AgentConfig.from_file(tmp_path / "missing.json")

    def test_get_dotted_key(self):
        """Test dotted lookups and unknown keys."""
        from apmagent.core.config import AgentConfig

        config = AgentConfig()

        assert config.get("transaction_tracer.threshold_ms") == 500.0
        with pytest.raises(KeyError):
            config.get("transaction_tracer.nope")


class TestConfigUpdate:
    """Test validated updates and notifications."""

    def test_update_notifies_changed_keys(self):
        """Test listeners receive the new value, then the change event."""
        from apmagent.core.config import AgentConfig

        config = AgentConfig()
        received = []
        config.subscribe("span_events.enabled", lambda value: received.append(("key", value)))
        config.subscribe("change", lambda cfg: received.append(("change", cfg)))

        changed = config.update({"span_events": {"enabled": False}})

        assert changed == ["span_events.enabled"]
        assert received == [("key", False), ("change", config)]

    def test_unchanged_value_not_notified(self):
        """Test setting the current value notifies nobody."""
        from apmagent.core.config import AgentConfig

        config = AgentConfig()
        received = []
        config.subscribe("change", received.append)

        assert config.update({"app_name": config.app_name}) == []
        assert received == []

    def test_invalid_value_retains_previous(self):
        """Test a value failing validation is ignored."""
        from apmagent.core.config import AgentConfig

        config = AgentConfig()

        changed = config.update({"transaction_tracer.threshold_ms": "not a number"})

        assert changed == []
        assert config.transaction_tracer.threshold_ms == 500.0

    def test_unknown_key_ignored(self):
        """Test unknown keys are skipped without error."""
        from apmagent.core.config import AgentConfig

        config = AgentConfig()

        assert config.update({"does_not_exist": 1, "app_name": "renamed"}) == ["app_name"]
        assert config.app_name == "renamed"

    def test_unsubscribe(self):
        """Test unsubscribed listeners are no longer called."""
        from apmagent.core.config import AgentConfig

        config = AgentConfig()
        received = []
        config.subscribe("app_name", received.append)
        config.unsubscribe("app_name", received.append)

        config.update({"app_name": "other"})

        assert received == []

    def test_failing_listener_isolated(self):
        """Test one failing listener does not stop the others."""
        from apmagent.core.config import AgentConfig

        def broken(value):
            raise RuntimeError("listener bug")

        config = AgentConfig()
        received = []
        config.subscribe("app_name", broken)
        config.subscribe("app_name", received.append)

        config.update({"app_name": "other"})

        assert received == ["other"]


class TestAggregatorSettings:
    """Test per-method aggregator settings."""

    def test_event_stream_settings(self):
        """Test limits and period come from the stream section."""
        from apmagent.core.config import AgentConfig

        config = AgentConfig(data_report_period=30)

        settings = config.get_aggregator_config("span_event_data")

        assert settings.period_ms == 30000
        assert settings.limit == 2000
        assert settings.enabled is True

    def test_harvest_limits_override(self):
        """Test server-side harvest limits win."""
        from apmagent.core.config import AgentConfig

        config = AgentConfig(
            event_harvest_config={"report_period_ms": 5000, "harvest_limits": {"log_event_data": 50}}
        )

        settings = config.get_aggregator_config("log_event_data")

        assert settings.period_ms == 5000
        assert settings.limit == 50

    def test_metric_data_always_enabled(self):
        """Test the metric stream has no section of its own."""
        from apmagent.core.config import AgentConfig

        settings = AgentConfig().get_aggregator_config("metric_data")

        assert settings.enabled is True
        assert settings.limit == 0


class TestLogging:
    """Test logging configuration."""

    def test_level_mapping(self):
        """Test level names map onto numeric thresholds."""
        import logging

        from apmagent.core.logging import level_to_int

        assert level_to_int("trace") == logging.DEBUG
        assert level_to_int("WARN") == logging.WARNING
        assert level_to_int("bogus") == logging.INFO

    def test_configure_logging(self, capsys):
        """Test JSON output honours the level filter."""
        import structlog

        from apmagent.core.logging import configure_logging

        configure_logging("warning", json_output=True)
        try:
            logger = structlog.get_logger("apmagent.test")
            logger.info("hidden")
            logger.warning("shown", key="value")

            lines = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line]
            assert [line["event"] for line in lines] == ["shown"]
            assert lines[0]["component"] == "apmagent"
            assert lines[0]["key"] == "value"
        finally:
            structlog.reset_defaults()
