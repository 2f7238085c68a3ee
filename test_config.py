"""Environment-driven configuration."""

import config
from config import load_app_config


def test_app_config_is_read_from_the_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("ALLOWED_CONVERSATION_IDS", " 42, 7 ,")
    monkeypatch.setenv("MAX_TURNS", "4")
    monkeypatch.setenv("UNSAFE_MODE", "yes")
    monkeypatch.setenv("WORKSPACE_DIR", str(tmp_path))

    cfg = load_app_config()

    assert cfg.allowed_conversation_ids == ["42", "7"]
    assert cfg.is_allowed("7") and not cfg.is_allowed("8")
    assert cfg.max_turns == 4
    assert cfg.unsafe_mode is True
    assert cfg.resolve_workspace() == str(tmp_path)


def test_each_load_sees_the_current_environment(monkeypatch):
    monkeypatch.delenv("ALLOWED_CONVERSATION_IDS", raising=False)
    assert load_app_config().is_allowed("anyone")
    monkeypatch.setenv("ALLOWED_CONVERSATION_IDS", "1")
    assert not load_app_config().is_allowed("anyone")
    assert not hasattr(config, "app_config")
