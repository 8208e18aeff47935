from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import os


PROVIDERS = ("anthropic", "openai", "google")

FREQUENCIES = ("hourly", "twicedaily", "daily")

DEFAULT_FREQUENCY = "daily"


@dataclass
class Config:
    state_path: Path
    site_url: str
    poll_seconds: int
    max_cycles: int
    anthropic_api_key: Optional[str]
    anthropic_base_url: str
    anthropic_model: str
    openai_api_key: Optional[str]
    openai_base_url: str
    openai_model: str
    google_api_key: Optional[str]
    google_base_url: str
    google_model: str
    llm_temperature: float
    log_level: str
    log_path: Optional[Path]


def load_config() -> Config:
    state_path = Path(os.getenv("MARGINALIA_STATE_PATH", "memory/marginalia-options.json"))
    site_url = os.getenv("MARGINALIA_SITE_URL", "http://localhost:8080").strip().rstrip("/")
    poll_seconds = int(os.getenv("MARGINALIA_POLL_SECONDS", "60"))
    max_cycles = int(os.getenv("MARGINALIA_MAX_CYCLES", "0"))

    anthropic_api_key = os.getenv("ANTHROPIC_API_KEY") or os.getenv("CLAUDE_API_KEY")
    anthropic_base_url = os.getenv("ANTHROPIC_BASE_URL", "https://api.anthropic.com/v1").rstrip("/")
    anthropic_model = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-5")

    openai_api_key = os.getenv("OPENAI_API_KEY")
    openai_base_url = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/")
    openai_model = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

    google_api_key = os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY")
    google_base_url = os.getenv("GOOGLE_BASE_URL", "https://generativelanguage.googleapis.com").rstrip("/")
    google_model = os.getenv("GOOGLE_MODEL", "gemini-2.0-flash")

    llm_temperature = float(os.getenv("MARGINALIA_LLM_TEMPERATURE", "0.7"))

    log_level = os.getenv("MARGINALIA_LOG_LEVEL", "INFO").strip().upper()
    log_path_str = os.getenv("MARGINALIA_LOG_PATH", "").strip()
    log_path = Path(log_path_str) if log_path_str else None

    return Config(
        state_path=state_path,
        site_url=site_url,
        poll_seconds=poll_seconds,
        max_cycles=max_cycles,
        anthropic_api_key=anthropic_api_key,
        anthropic_base_url=anthropic_base_url,
        anthropic_model=anthropic_model,
        openai_api_key=openai_api_key,
        openai_base_url=openai_base_url,
        openai_model=openai_model,
        google_api_key=google_api_key,
        google_base_url=google_base_url,
        google_model=google_model,
        llm_temperature=llm_temperature,
        log_level=log_level,
        log_path=log_path,
    )
