import pytest

from adapters.local.manual_capture import ManualCaptureAdapter
from adapters.local.scripted_ai import ScriptedAIBackend
from adapters.local.scripted_stt import ScriptedSTTAdapter
from config import create_providers, create_session_controller, create_session_settings, get_config
from domain.models import SessionState


@pytest.fixture
def cfg(monkeypatch):
    config = get_config()
    monkeypatch.setattr(config, "engine", "local")
    monkeypatch.setattr(config, "stt_api_key", None)
    monkeypatch.setattr(config, "ai_api_key", None)
    return config


def test_singleton(cfg):
    assert get_config() is cfg


def test_local_engine_providers(cfg, monkeypatch):
    monkeypatch.setattr(cfg, "ai_api_key", "ai-secret")

    capture, stt, ai_backend = create_providers(cfg)

    assert isinstance(capture, ManualCaptureAdapter)
    assert isinstance(stt, ScriptedSTTAdapter)
    assert isinstance(ai_backend, ScriptedAIBackend)
    assert ai_backend.api_key == "ai-secret"
    assert stt.api_key is None


def test_hosted_engine_not_bundled(cfg, monkeypatch):
    monkeypatch.setattr(cfg, "engine", "deepgram")
    with pytest.raises(NotImplementedError):
        create_providers(cfg)


def test_unknown_engine(cfg, monkeypatch):
    monkeypatch.setattr(cfg, "engine", "carrier-pigeon")
    with pytest.raises(ValueError):
        create_providers(cfg)


def test_as_dict_hides_secrets(cfg, monkeypatch):
    monkeypatch.setattr(cfg, "stt_api_key", "stt-secret")

    data = cfg.as_dict()

    assert data["has_stt_api_key"] is True
    assert data["has_ai_api_key"] is False
    assert data["context_max_duration_ms"] == cfg.context_max_duration_ms
    assert data["stt_filter_non_speech"] is cfg.stt_filter_non_speech
    assert "stt-secret" not in data.values()


def test_controller_uses_configured_policy(cfg, monkeypatch):
    monkeypatch.setattr(cfg, "auto_suggest_min_interval_ms", 4000)
    monkeypatch.setattr(cfg, "context_max_segments", 50)

    controller = create_session_controller(cfg)
    state = controller.get_state().value

    assert controller.state is SessionState.IDLE
    assert state["auto_suggest"]["config"]["min_interval_ms"] == 4000


def test_settings_carry_retention_and_filter(cfg, monkeypatch):
    monkeypatch.setattr(cfg, "context_max_duration_ms", 60_000)
    monkeypatch.setattr(cfg, "stt_filter_non_speech", False)

    settings = create_session_settings(cfg)

    assert settings.max_context_duration_ms == 60_000
    assert settings.stt_filter_non_speech is False
