"""
Unit tests for engine settings and execution config merging
"""

import pytest
from pydantic import ValidationError

from flowrunner.config import Settings, get_execution_config
from flowrunner.schemas.workflow import NodeConfiguration


class TestSettings:
    """Test Settings loading"""

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("FLOWRUNNER_MAX_CONCURRENT_NODES", "9")
        monkeypatch.setenv("FLOWRUNNER_NODE_TIMEOUT", "12.5")

        settings = Settings()

        assert settings.MAX_CONCURRENT_NODES == 9
        assert settings.NODE_TIMEOUT == 12.5

    def test_log_level_normalized(self):
        assert Settings(LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            Settings(LOG_LEVEL="chatty")

    def test_concurrency_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(MAX_CONCURRENT_NODES=0)


class TestExecutionConfig:
    """Test merging workflow overrides over global settings"""

    def test_defaults_from_settings(self):
        base = Settings(MAX_CONCURRENT_NODES=3, NODE_TIMEOUT=10, EXECUTION_TIMEOUT=60)

        assert get_execution_config(base) == {
            "max_concurrent_nodes": 3,
            "node_timeout": 10,
            "execution_timeout": 60,
        }

    def test_workflow_overrides_win(self):
        base = Settings(MAX_CONCURRENT_NODES=3)

        config = get_execution_config(base, {"max_concurrent_nodes": 1, "node_timeout": None, "color": "red"})

        assert config["max_concurrent_nodes"] == 1
        assert config["node_timeout"] == base.NODE_TIMEOUT
        assert "color" not in config


class TestNodeDefaults:
    """Test node configuration defaults"""

    def test_wait_between_tries_default(self):
        node = NodeConfiguration(node_id="a", node_type="set")
        assert node.wait_between_tries_ms == 1000
        assert node.max_tries == 3
        assert node.retry_on_fail is False

    def test_empty_node_id_rejected(self):
        with pytest.raises(ValidationError):
            NodeConfiguration(node_id=" ", node_type="set")

    def test_only_engine_fields(self):
        assert "metadata" not in NodeConfiguration.model_fields
