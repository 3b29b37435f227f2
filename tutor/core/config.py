import json
import os
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import BaseModel, Field

from core.errors import ConfigurationError


class TutorConfig(BaseModel):
    name: str = "Echo"
    language: str = "en-US"


class ChatConfig(BaseModel):
    provider: str = "gemini"  # "gemini" or "openai"
    model: Optional[str] = None  # provider default when unset
    api_key_env: str = "API_KEY"
    timeout_seconds: float = 30.0


class SpeechConfig(BaseModel):
    api_key_env: str = "OPENAI_API_KEY"
    stt_model: str = "whisper-1"
    tts_model: str = "gpt-4o-mini-tts"
    voice: str = "alloy"
    silence_duration: float = 0.8   # seconds of silence that end an utterance
    max_duration: float = 15.0      # max recording length in seconds
    initial_wait: float = 5.0       # give up if no speech starts within this
    speech_rms_threshold: float = 300.0


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8080


class AppConfig(BaseModel):
    tutor: TutorConfig = Field(default_factory=TutorConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    speech: SpeechConfig = Field(default_factory=SpeechConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)


_MISSING_KEY_MESSAGE = """Chat API key not found.

This application requires an API key to function. It is read from an environment variable named '{env}'.

If you are running this locally, export the variable in the shell that starts the tutor, or put it in the service unit's environment."""


class ConfigManager:
    """Manages application configuration persisted as JSON.

    Credentials never touch the config file; they come from the environment.
    """

    def __init__(self, data_dir: Path):
        self.data_dir = data_dir
        self.config_path = data_dir / "config.json"
        self._config: Optional[AppConfig] = None

    @property
    def config(self) -> AppConfig:
        if self._config is None:
            self._config = self._load()
        return self._config

    def _load(self) -> AppConfig:
        """Load config from disk. Returns defaults if no config exists."""
        if self.config_path.exists():
            try:
                data = json.loads(self.config_path.read_text())
                logger.info("Configuration loaded from {}", self.config_path)
                return AppConfig(**data)
            except Exception as e:
                logger.error("Failed to load config: {}. Using defaults.", e)
        logger.info("No existing config found. Using defaults.")
        return AppConfig()

    def save(self) -> None:
        """Persist current config to disk."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.config_path.write_text(self.config.model_dump_json(indent=2))
        logger.debug("Configuration saved to {}", self.config_path)

    def update(self, **kwargs) -> AppConfig:
        """Update top-level config fields and save."""
        current = self.config.model_dump()
        for key, value in kwargs.items():
            if key in current:
                if isinstance(current[key], dict) and isinstance(value, dict):
                    current[key].update(value)
                else:
                    current[key] = value
        self._config = AppConfig(**current)
        self.save()
        return self._config

    def update_nested(self, section: str, **kwargs) -> AppConfig:
        """Update fields within a nested config section."""
        current = self.config.model_dump()
        if section in current and isinstance(current[section], dict):
            current[section].update(kwargs)
        self._config = AppConfig(**current)
        self.save()
        return self._config

    def reset(self) -> None:
        """Reset config to defaults."""
        self._config = AppConfig()
        if self.config_path.exists():
            self.config_path.unlink()
        logger.info("Configuration reset to defaults.")

    def chat_api_key(self) -> str:
        """Return the chat credential or raise ConfigurationError."""
        env = self.config.chat.api_key_env
        key = os.environ.get(env, "").strip()
        if not key:
            raise ConfigurationError(_MISSING_KEY_MESSAGE.format(env=env))
        return key

    def speech_api_key(self) -> str:
        """Return the speech credential, or an empty string if unset."""
        return os.environ.get(self.config.speech.api_key_env, "").strip()

    @property
    def has_chat_key(self) -> bool:
        return bool(os.environ.get(self.config.chat.api_key_env, "").strip())
