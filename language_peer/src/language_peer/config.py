"""
Runtime Configuration

Pydantic model for every tunable of the conversation engine. Values come
from defaults, a JSON file, or LANGUAGE_PEER_* environment variables
(a .env file is honoured).
"""

import functools
import json
import os
from pathlib import Path
from typing import Callable, Literal, Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from language_peer.connectivity import probe_network, reachability_target
from language_peer.conversation_store import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStore,
    SupabaseKeyValueStore,
)
from language_peer.errors import ConfigurationError
from language_peer.logger import get_logger
from language_peer.remote_client import HttpReasoningClient, OpenAIReasoningClient, ReasoningClient
from language_peer.speech_output import Pyttsx3SpeechBackend, SpeechBackend

logger = get_logger("language_peer.config")

ENV_PREFIX = "LANGUAGE_PEER_"


class EngineConfig(BaseModel):
    """Complete runtime configuration."""
    # Remote reasoning
    reasoning_backend: Literal["http", "openai", "none"] = "http"
    remote_url: Optional[str] = Field(default=None, description="Conversation backend root URL")
    remote_timeout_s: float = Field(default=4.0, gt=0, le=60, description="Bound on one remote attempt")
    cooldown_s: float = Field(default=5.0, ge=0, le=300, description="Remote back-off after a failure")
    recheck_interval_s: float = Field(default=30.0, gt=0, description="Connectivity re-check period")
    openai_model: str = "gpt-4o-mini"
    openai_api_key: Optional[str] = None

    # Storage
    storage_backend: Literal["memory", "file", "supabase"] = "file"
    storage_path: str = "~/.language_peer/conversations.json"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    supabase_table: str = "client_storage"
    autosave: bool = True
    recent_limit: int = Field(default=10, ge=1)

    # Speech
    speech_enabled: bool = True
    language: str = "en-US"

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "EngineConfig":
        """Build config from environment variables (after loading .env)."""
        load_dotenv(env_file)

        data = {}
        for name in cls.model_fields:
            value = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if value is not None:
                data[name] = value

        # Conventional names shared with other tools
        data.setdefault("openai_api_key", os.getenv("OPENAI_API_KEY"))
        if os.getenv("OPENAI_MODEL"):
            data.setdefault("openai_model", os.getenv("OPENAI_MODEL"))
        data.setdefault("supabase_url", os.getenv("SUPABASE_URL"))
        data.setdefault("supabase_key", os.getenv("SUPABASE_SERVICE_KEY"))

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    @classmethod
    def load(cls, path: Union[str, Path]) -> "EngineConfig":
        """Load config from a JSON file. Returns defaults if the file doesn't exist."""
        p = Path(path)
        if not p.exists():
            logger.info(f"No config at {p}, using defaults")
            return cls()
        try:
            return cls.model_validate(json.loads(p.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise ConfigurationError(f"Cannot load config from {p}: {e}") from e

    def save(self, path: Union[str, Path]) -> None:
        """Persist config to a JSON file (secrets excluded)."""
        p = Path(path)
        p.write_text(
            self.model_dump_json(indent=2, exclude_none=True, exclude={"openai_api_key", "supabase_key"}),
            encoding="utf-8",
        )
        logger.info(f"Config saved to {p}")


# ==================== Factories ====================

def build_reasoning_client(config: EngineConfig) -> Optional[ReasoningClient]:
    """Remote reasoning client for the config, or None for local-only operation."""
    if config.reasoning_backend == "none":
        return None
    if config.reasoning_backend == "openai":
        if not config.openai_api_key:
            raise ConfigurationError("OPENAI_API_KEY is required for the openai reasoning backend")
        return OpenAIReasoningClient(api_key=config.openai_api_key, model=config.openai_model)
    if not config.remote_url:
        logger.warning("No remote_url configured, running in local mode")
        return None
    return HttpReasoningClient(config.remote_url, timeout_s=config.remote_timeout_s)


OPENAI_CHECK_TARGET = ("api.openai.com", 443)


def build_network_check(config: EngineConfig) -> Callable[[], bool]:
    """Reachability check aimed at the service the engine actually talks to."""
    if config.reasoning_backend == "openai":
        return functools.partial(probe_network, *OPENAI_CHECK_TARGET)
    if config.reasoning_backend == "http" and config.remote_url:
        try:
            host, port = reachability_target(config.remote_url)
        except ValueError as e:
            raise ConfigurationError(f"Invalid remote_url: {e}") from e
        return functools.partial(probe_network, host, port)
    return probe_network


def build_key_value_store(config: EngineConfig) -> KeyValueStore:
    if config.storage_backend == "memory":
        return InMemoryKeyValueStore()
    if config.storage_backend == "supabase":
        from language_peer.supabase_client import get_supabase_client

        client = get_supabase_client(config.supabase_url, config.supabase_key)
        return SupabaseKeyValueStore(client, table=config.supabase_table)
    return JsonFileKeyValueStore(config.storage_path)


def build_speech_backend(config: EngineConfig) -> Optional[SpeechBackend]:
    if not config.speech_enabled:
        return None
    return Pyttsx3SpeechBackend()
