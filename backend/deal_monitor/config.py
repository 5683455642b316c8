"""Application configuration with Pydantic Settings validation."""

from __future__ import annotations

from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import SecretStr, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from deal_monitor.extraction.prompts import EXTRACTION_PROMPT_INSTRUCTIONS, frame_prompt


class ConfigurationError(RuntimeError):
    """Raised when required settings are missing or invalid."""


class AppConfig(BaseSettings):
    """All job settings, loaded from environment / .env file."""

    model_config = SettingsConfigDict(
        env_file=("../.env", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── IMAP ──────────────────────────────────────────────
    imap_host: str = "imap.gmail.com"
    imap_port: int = 993
    email_username: str
    email_password: SecretStr
    email_folder: str = "[Gmail]/All Mail"
    imap_timeout_sec: int = 30

    # ── Mailbox query ─────────────────────────────────────
    search_query: str = "label:flipping-search -label:flipping-search-ai-processed"
    processed_label: str = "Flipping/Search/AI Processed"
    max_threads_per_run: int = 1

    # ── Spreadsheet ───────────────────────────────────────
    spreadsheet_path: Path = Path("wholesale_deals.xlsx")
    sheet_name: str = "Wholesale Emails"
    log_to_sheet: bool = True
    display_timezone: str = "America/Denver"

    # ── Gemini ────────────────────────────────────────────
    gemini_api_key: SecretStr
    gemini_model: str = "gemini-2.0-flash-lite"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_timeout_sec: float = 60.0
    max_prompt_chars: int = 15000
    extraction_prompt: str = EXTRACTION_PROMPT_INSTRUCTIONS

    # ── Owner lookup ──────────────────────────────────────
    owner_lookup_url: str = ""  # empty disables enrichment
    owner_lookup_timeout_sec: float = 60.0
    owner_lookup_required: bool = False

    # ── Logging ───────────────────────────────────────────
    log_level: str = "INFO"
    log_file: Optional[str] = None
    log_json: bool = False

    # ── Validators ────────────────────────────────────────
    @field_validator("log_to_sheet", "owner_lookup_required", "log_json", mode="before")
    @classmethod
    def parse_bool(cls, v: object) -> bool:
        if isinstance(v, str):
            return v.strip().lower() in {"1", "true", "yes", "on"}
        return bool(v)

    @field_validator("max_threads_per_run")
    @classmethod
    def positive_cap(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("gemini_api_key")
    @classmethod
    def non_empty_key(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value().strip():
            raise ValueError("must not be empty")
        return v

    @field_validator("display_timezone")
    @classmethod
    def known_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
            raise ValueError(f"unknown time zone {v!r}") from exc
        return v

    @model_validator(mode="after")
    def _prompt_fits(self) -> "AppConfig":
        """The framed instructions alone must leave room for some email body."""
        framed = len(frame_prompt(self.extraction_prompt, "", truncated=True))
        if framed >= self.max_prompt_chars:
            raise ValueError(
                f"extraction_prompt with body markers ({framed} chars) must be "
                f"shorter than max_prompt_chars ({self.max_prompt_chars})"
            )
        return self

    @property
    def gemini_endpoint(self) -> str:
        return f"{self.gemini_base_url.rstrip('/')}/models/{self.gemini_model}:generateContent"

    @property
    def owner_lookup_enabled(self) -> bool:
        return bool(self.owner_lookup_url.strip())


def load_config(**overrides: object) -> AppConfig:
    """Load and validate the job config.

    Raises:
        ConfigurationError: naming every missing or invalid setting, so the
            operator can fix the environment before any mail is touched.
    """
    try:
        return AppConfig(**overrides)  # type: ignore[arg-type]
    except ValidationError as exc:
        problems = []
        for err in exc.errors():
            name = ".".join(str(p) for p in err["loc"]) or "config"
            if err["type"] == "missing":
                problems.append(f"{name.upper()} is not set")
            else:
                problems.append(f"{name.upper()}: {err['msg']}")
        raise ConfigurationError("; ".join(problems)) from exc
