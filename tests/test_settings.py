"""
配置校验测试
"""

import pytest
from pydantic import ValidationError

from config import AgentSettings, LoggingSettings, SessionSettings, Settings, VectorStoreSettings


class TestSettingsValidation:

    def test_defaults(self):
        settings = Settings(environment="testing")
        assert settings.agent.max_attempts == 2
        assert settings.session.busy_policy == "queue"
        assert not settings.is_production

    def test_normalizes_case(self):
        assert VectorStoreSettings(backend="MEMORY").backend == "memory"
        assert SessionSettings(busy_policy="Reject").busy_policy == "reject"
        assert LoggingSettings(level="debug").level == "DEBUG"

    @pytest.mark.parametrize("factory", [
        lambda: VectorStoreSettings(backend="faiss"),
        lambda: SessionSettings(busy_policy="drop"),
        lambda: LoggingSettings(level="verbose"),
        lambda: Settings(environment="qa"),
        lambda: AgentSettings(max_attempts=3),
    ])
    def test_invalid_values(self, factory):
        with pytest.raises(ValidationError):
            factory()

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("SESSION_BUSY_POLICY", "reject")
        monkeypatch.setenv("AGENT_HISTORY_WINDOW", "10")
        assert SessionSettings().busy_policy == "reject"
        assert AgentSettings().history_window == 10

    def test_to_dict_hides_api_key(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-secret")
        data = Settings(environment="testing").to_dict()

        assert data["openai"]["has_api_key"] is True
        assert "sk-secret" not in str(data)
