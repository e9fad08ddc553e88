"""Runtime settings, read once per process from the environment.

Entry points call ``load_dotenv()`` before ``Settings.from_env()`` so a local
``.env`` file works the same as real environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import List, Optional

DEFAULT_EVAL_MODELS = {
    "gemini": "gemini-2.5-flash",
    "openai": "gpt-4o-mini",
    "anthropic": "claude-sonnet-4-5",
}

IMAGE_PROVIDERS = ("gemini", "replicate")
EVAL_PROVIDERS = tuple(DEFAULT_EVAL_MODELS)
GOAL_POLICIES = ("combined", "color_gated")
DIMENSION_MODES = ("exact", "aspect")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _env_choice(name: str, default: str, choices: tuple) -> str:
    value = (os.environ.get(name) or default).strip().lower()
    if value not in choices:
        raise ValueError(f"{name} must be one of {', '.join(choices)}, got {value!r}")
    return value


@dataclass(frozen=True)
class Settings:
    gemini_api_key: str = ""
    gemini_image_model: str = "gemini-2.5-flash-image"
    gemini_text_model: str = "gemini-2.5-flash"

    image_provider: str = "gemini"
    replicate_api_token: str = ""
    replicate_image_model: str = "google/nano-banana"

    eval_provider: str = "gemini"
    eval_model: str = ""
    openai_api_key: str = ""
    anthropic_api_key: str = ""

    oracle_timeout: float = 120.0
    pace_seconds: float = 1.0
    error_backoff_seconds: float = 2.0

    goal_policy: str = "combined"
    dimension_mode: str = "exact"
    aspect_tolerance: float = 0.1

    gmail_client_id: str = ""
    gmail_client_secret: str = ""
    gmail_refresh_token: str = ""
    gmail_sender_email: str = ""

    log_level: str = "INFO"
    port: int = 5000

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ.get
        eval_provider = _env_choice("EVAL_PROVIDER", "gemini", EVAL_PROVIDERS)
        return cls(
            gemini_api_key=env("GEMINI_API_KEY", ""),
            gemini_image_model=env("GEMINI_IMAGE_MODEL") or cls.gemini_image_model,
            gemini_text_model=env("GEMINI_TEXT_MODEL") or cls.gemini_text_model,
            image_provider=_env_choice("IMAGE_PROVIDER", "gemini", IMAGE_PROVIDERS),
            replicate_api_token=env("REPLICATE_API_TOKEN", ""),
            replicate_image_model=env("REPLICATE_IMAGE_MODEL") or cls.replicate_image_model,
            eval_provider=eval_provider,
            eval_model=env("EVAL_MODEL", ""),
            openai_api_key=env("OPENAI_API_KEY", ""),
            anthropic_api_key=env("ANTHROPIC_API_KEY", ""),
            oracle_timeout=_env_float("ORACLE_TIMEOUT", 120.0),
            pace_seconds=_env_float("PACE_SECONDS", 1.0),
            error_backoff_seconds=_env_float("ERROR_BACKOFF_SECONDS", 2.0),
            goal_policy=_env_choice("GOAL_POLICY", "combined", GOAL_POLICIES),
            dimension_mode=_env_choice("DIMENSION_MODE", "exact", DIMENSION_MODES),
            aspect_tolerance=_env_float("ASPECT_TOLERANCE", 0.1),
            gmail_client_id=env("GMAIL_CLIENT_ID", ""),
            gmail_client_secret=env("GMAIL_CLIENT_SECRET", ""),
            gmail_refresh_token=env("GMAIL_REFRESH_TOKEN", ""),
            gmail_sender_email=env("GMAIL_SENDER_EMAIL", ""),
            log_level=env("LOG_LEVEL", "INFO"),
            port=int(env("PORT", "5000")),
        )

    def with_overrides(self, **changes) -> "Settings":
        return replace(self, **changes)

    @property
    def resolved_eval_model(self) -> str:
        if self.eval_provider == "gemini":
            return self.eval_model or self.gemini_text_model
        return self.eval_model or DEFAULT_EVAL_MODELS[self.eval_provider]

    @property
    def notifications_configured(self) -> bool:
        return all((
            self.gmail_client_id,
            self.gmail_client_secret,
            self.gmail_refresh_token,
            self.gmail_sender_email,
        ))

    def missing_keys(self) -> List[str]:
        """Credentials required by the selected providers that are not set."""
        missing: List[str] = []
        if self.image_provider == "gemini" and not self.gemini_api_key:
            missing.append("GEMINI_API_KEY")
        if self.image_provider == "replicate" and not self.replicate_api_token:
            missing.append("REPLICATE_API_TOKEN")

        eval_key: Optional[str] = {
            "gemini": None if self.gemini_api_key else "GEMINI_API_KEY",
            "openai": None if self.openai_api_key else "OPENAI_API_KEY",
            "anthropic": None if self.anthropic_api_key else "ANTHROPIC_API_KEY",
        }[self.eval_provider]
        if eval_key and eval_key not in missing:
            missing.append(eval_key)
        return missing
