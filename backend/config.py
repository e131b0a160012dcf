import os
import logging
from typing import Dict, Optional, Any

logger = logging.getLogger(__name__)

try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8765
DEFAULT_AI_TIMEOUT_MS = 20000
DEFAULT_SWEEP_INTERVAL_MS = 1000
DEFAULT_MAX_SEGMENTS = 500
DEFAULT_KEY_POINT_INTERVAL = 20
DEFAULT_MAX_CONTEXT_DURATION_MS = 30 * 60 * 1000


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


class Config:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(Config, cls).__new__(cls)
            cls._instance._initialize()
        return cls._instance

    def _initialize(self):
        self.host = os.environ.get("HOST", DEFAULT_HOST)
        self.port = int(os.environ.get("PORT", DEFAULT_PORT))
        self.debug = os.environ.get("DEBUG", "0") == "1"
        self.engine = os.environ.get("ENGINE", "local").lower()
        self.stt_api_key = os.environ.get("STT_API_KEY") or None
        self.ai_api_key = os.environ.get("AI_API_KEY") or None

        self.auto_suggest_enabled = _env_bool("AUTO_SUGGEST_ENABLED", "true")
        self.auto_suggest_min_interval_ms = int(os.environ.get("AUTO_SUGGEST_MIN_INTERVAL_MS", "15000"))
        self.auto_suggest_min_new_segments = int(os.environ.get("AUTO_SUGGEST_MIN_NEW_SEGMENTS", "3"))

        self.ai_timeout_ms = int(os.environ.get("AI_REQUEST_TIMEOUT_MS", DEFAULT_AI_TIMEOUT_MS))
        self.timeout_sweep_interval_ms = int(os.environ.get("TIMEOUT_SWEEP_INTERVAL_MS", DEFAULT_SWEEP_INTERVAL_MS))
        self.context_max_segments = int(os.environ.get("CONTEXT_MAX_SEGMENTS", DEFAULT_MAX_SEGMENTS))
        self.context_max_duration_ms = int(os.environ.get("CONTEXT_MAX_DURATION_MS", DEFAULT_MAX_CONTEXT_DURATION_MS))
        self.key_point_interval = int(os.environ.get("KEY_POINT_INTERVAL", DEFAULT_KEY_POINT_INTERVAL))
        self.stt_reconnect_attempts = int(os.environ.get("STT_RECONNECT_ATTEMPTS", "3"))
        self.stt_reconnect_delay_ms = int(os.environ.get("STT_RECONNECT_DELAY_MS", "1000"))
        self.stt_filter_non_speech = _env_bool("STT_FILTER_NON_SPEECH", "true")

    def get_stt_api_key(self) -> Optional[str]:
        return self.stt_api_key

    def get_ai_api_key(self) -> Optional[str]:
        return self.ai_api_key

    def as_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "debug": self.debug,
            "engine": self.engine,
            "has_stt_api_key": self.stt_api_key is not None,
            "has_ai_api_key": self.ai_api_key is not None,
            "auto_suggest_enabled": self.auto_suggest_enabled,
            "auto_suggest_min_interval_ms": self.auto_suggest_min_interval_ms,
            "auto_suggest_min_new_segments": self.auto_suggest_min_new_segments,
            "ai_timeout_ms": self.ai_timeout_ms,
            "timeout_sweep_interval_ms": self.timeout_sweep_interval_ms,
            "context_max_segments": self.context_max_segments,
            "context_max_duration_ms": self.context_max_duration_ms,
            "key_point_interval": self.key_point_interval,
            "stt_reconnect_attempts": self.stt_reconnect_attempts,
            "stt_reconnect_delay_ms": self.stt_reconnect_delay_ms,
            "stt_filter_non_speech": self.stt_filter_non_speech,
        }


config = Config()


def get_config() -> Config:
    return config


def create_providers(cfg: Config):
    """Create capture, STT and AI adapters based on ENGINE env var.

    Uses lazy imports so unused provider SDKs are never loaded.
    """
    engine = cfg.engine

    if engine == "local":
        from adapters.local.manual_capture import ManualCaptureAdapter
        from adapters.local.scripted_stt import ScriptedSTTAdapter
        from adapters.local.scripted_ai import DEFAULT_CANNED_RESPONSE, ScriptedAIBackend
        capture = ManualCaptureAdapter()
        stt = ScriptedSTTAdapter()
        ai_backend = ScriptedAIBackend(canned_response=DEFAULT_CANNED_RESPONSE, chunk_delay=0.02)
    elif engine == "deepgram":
        # Hosted STT/AI adapters live outside the core and are not bundled yet
        raise NotImplementedError("Hosted provider adapters are not bundled with this build")
    else:
        raise ValueError(f"Unknown ENGINE: {engine!r}. Valid options: local, deepgram")

    if cfg.stt_api_key:
        stt.set_api_key(cfg.stt_api_key)
    if cfg.ai_api_key:
        ai_backend.set_api_key(cfg.ai_api_key)

    logger.info(
        f"Providers: engine={engine}, capture={type(capture).__name__}, "
        f"stt={type(stt).__name__}, ai={type(ai_backend).__name__}"
    )
    return capture, stt, ai_backend


def create_session_settings(cfg: Config):
    from domain.models import AutoSuggestConfig
    from use_cases.session import SessionSettings

    return SessionSettings(
        ai_timeout_ms=cfg.ai_timeout_ms,
        timeout_sweep_interval_ms=cfg.timeout_sweep_interval_ms,
        max_segments=cfg.context_max_segments,
        max_context_duration_ms=cfg.context_max_duration_ms,
        key_point_interval=cfg.key_point_interval,
        stt_reconnect_attempts=cfg.stt_reconnect_attempts,
        stt_reconnect_delay_ms=cfg.stt_reconnect_delay_ms,
        stt_filter_non_speech=cfg.stt_filter_non_speech,
        auto_suggest=AutoSuggestConfig(
            enabled=cfg.auto_suggest_enabled,
            min_interval_ms=cfg.auto_suggest_min_interval_ms,
            min_new_segments_before_trigger=cfg.auto_suggest_min_new_segments,
        ),
    )


def create_session_controller(cfg: Config):
    """Wire providers, clock and settings into a SessionController."""
    from adapters.local.system_clock import SystemClock
    from use_cases.session import SessionController

    capture, stt, ai_backend = create_providers(cfg)
    return SessionController(
        capture, stt, ai_backend, clock=SystemClock(), settings=create_session_settings(cfg),
    )
