"""Environment-driven configuration for the chat relay."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()  # Load environment variables from .env file if present

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "anthropic/claude-3.5-sonnet"


def _int_env(name: str, default: int) -> int:
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	try:
		return int(raw)
	except ValueError as exc:
		raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc


def _float_env(name: str, default: float) -> float:
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	try:
		return float(raw)
	except ValueError as exc:
		raise RuntimeError(f"{name} must be a number, got {raw!r}") from exc


@dataclass
class Settings:
	"""Application settings; keep credentials and tunables centralized here."""

	api_key: Optional[str] = None
	base_url: str = DEFAULT_BASE_URL
	model: str = DEFAULT_MODEL
	max_tokens: int = 4000
	timeout_seconds: float = 120.0
	max_retries: int = 0
	referer: Optional[str] = None
	title: Optional[str] = None
	session_ttl_seconds: float = 3600.0
	eviction_interval_seconds: float = 60.0
	keepalive_seconds: float = 15.0
	cors_allow_origins: List[str] = field(default_factory=lambda: ["*"])
	log_level: str = "INFO"
	port: int = 3000

	@classmethod
	def from_env(cls) -> "Settings":
		origins = os.getenv("CORS_ALLOW_ORIGINS", "*")
		return cls(
			api_key=os.getenv("OPENROUTER_API_KEY") or os.getenv("OPENAI_API_KEY"),
			base_url=os.getenv("UPSTREAM_BASE_URL", DEFAULT_BASE_URL),
			model=os.getenv("UPSTREAM_MODEL", DEFAULT_MODEL),
			max_tokens=_int_env("UPSTREAM_MAX_TOKENS", 4000),
			timeout_seconds=_float_env("UPSTREAM_TIMEOUT_SECONDS", 120.0),
			max_retries=_int_env("UPSTREAM_MAX_RETRIES", 0),
			referer=os.getenv("APP_REFERER") or None,
			title=os.getenv("APP_TITLE") or None,
			session_ttl_seconds=_float_env("SESSION_TTL_SECONDS", 3600.0),
			eviction_interval_seconds=_float_env("EVICTION_INTERVAL_SECONDS", 60.0),
			keepalive_seconds=_float_env("KEEPALIVE_SECONDS", 15.0),
			cors_allow_origins=[o.strip() for o in origins.split(",") if o.strip()],
			log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
			port=_int_env("PORT", 3000),
		)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
	return Settings.from_env()
