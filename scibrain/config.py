"""Configuration for the SciBrain API server."""

import os
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class Settings:
    """
    Everything the server needs to pick a storage backend and a generator.

    Every field is overridable at construction for testing; environment
    variables are only consulted for fields left at their defaults.
    """
    redis_url: Optional[str] = None
    redis_socket_timeout_s: float = 5.0
    session_ttl_hours: int = 24
    reviewer_list_limit: int = 50
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    # AI generation (Ollama)
    ai_provider: str = "ollama"
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.2"
    ollama_timeout_s: int = 120
    max_input_chars: int = 12000

    def __post_init__(self):
        if self.redis_url is None:
            # KV_URL is what hosted key-value add-ons export
            self.redis_url = os.environ.get("REDIS_URL") or os.environ.get("KV_URL") or None

        env_timeout = os.environ.get("REDIS_SOCKET_TIMEOUT_S")
        if env_timeout is not None:
            try:
                self.redis_socket_timeout_s = float(env_timeout)
            except ValueError:
                pass
        env_ttl = os.environ.get("SESSION_TTL_HOURS")
        if env_ttl is not None:
            try:
                self.session_ttl_hours = int(env_ttl)
            except ValueError:
                pass
        env_limit = os.environ.get("REVIEWER_LIST_LIMIT")
        if env_limit is not None:
            try:
                self.reviewer_list_limit = int(env_limit)
            except ValueError:
                pass

        if os.environ.get("CORS_ORIGINS"):
            self.cors_origins = [o.strip() for o in os.environ["CORS_ORIGINS"].split(",") if o.strip()]

        if os.environ.get("AI_PROVIDER"):
            self.ai_provider = os.environ["AI_PROVIDER"]
        if os.environ.get("OLLAMA_BASE_URL"):
            self.ollama_base_url = os.environ["OLLAMA_BASE_URL"]
        if os.environ.get("OLLAMA_MODEL"):
            self.ollama_model = os.environ["OLLAMA_MODEL"]
        try:
            if v := os.environ.get("OLLAMA_TIMEOUT_S"):
                self.ollama_timeout_s = int(v)
        except ValueError:
            pass
        try:
            if v := os.environ.get("AI_MAX_INPUT_CHARS"):
                self.max_input_chars = int(v)
        except ValueError:
            pass

    @property
    def storage_name(self) -> str:
        return "redis" if self.redis_url else "in-memory"
