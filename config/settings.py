"""
Settings Configuration
Pydantic-backed configuration for trend selection, script gating and step orchestration.
"""
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


def split_csv(value: Optional[str]) -> List[str]:
    """Split a comma separated env value into trimmed, non-empty entries."""
    if not value:
        return []
    return [part.strip() for part in str(value).split(",") if part.strip()]


class SelectionSettings(BaseSettings):
    """Topic composition for one episode"""
    target_total: int = Field(default=10, description="Total topics per episode")
    target_deep_dive: int = Field(default=3, description="Deep-dive slots")
    target_quick_news: int = Field(default=6, description="Quick-news slots")
    max_hard_topics: int = Field(default=2, description="Upper bound on policy/hard-news topics")
    min_entertainment: int = Field(default=3, description="Lower bound on entertainment-family topics")
    source_diversity_window: int = Field(default=2, description="Recent selections checked for repeated domains")
    lookback_hours: int = Field(default=36, description="Trend lookback window (clamped to 24-48)")
    candidate_pool_size: int = Field(default=200, description="Maximum trend rows loaded per plan")
    category_caps: Dict[str, int] = Field(default_factory=dict, description="Per-category caps (JSON map)")
    max_clusters: int = Field(default=60, description="Maximum cluster representatives kept")

    class Config:
        env_prefix = "TREND_"


class DigestSettings(BaseSettings):
    """Trend digest filter"""
    deny_keywords: str = Field(default="", description="CSV deny keywords (empty = built-in list)")
    allow_categories: str = Field(default="", description="CSV allowed categories (empty = all)")
    max_hard_news: int = Field(default=1, description="Hard-news items allowed in the digest")
    max_items: int = Field(default=12, description="Digest size")
    excluded_source_categories: str = Field(
        default="", description="CSV raw source categories to drop (empty = investment/stocks/fx/crypto/finance)"
    )
    excluded_keywords: str = Field(default="", description="CSV finance keywords to drop (empty = built-in list)")

    class Config:
        env_prefix = "TREND_DIGEST_"

    @property
    def deny_keyword_list(self) -> List[str]:
        return split_csv(self.deny_keywords)

    @property
    def allow_category_list(self) -> List[str]:
        return split_csv(self.allow_categories)


class ScriptGateSettings(BaseSettings):
    """Script length and quality gate"""
    min_chars: int = Field(default=2500, description="Minimum script characters")
    target_chars: int = Field(default=3200, description="Target script characters")
    max_chars: int = Field(default=5200, description="Maximum script characters")
    chars_per_min: int = Field(default=300, description="Speech rate used for duration estimates")
    max_duplicate_ratio: float = Field(default=0.05, description="Allowed share of near-duplicate lines")
    max_expand_attempts: int = Field(default=2, description="Expansion retries when the script is short")

    class Config:
        env_prefix = "SCRIPT_"


class StepSettings(BaseSettings):
    """Remote step actions"""
    functions_base_url: Optional[str] = Field(default=None, description="Base URL of step actions")
    service_role_key: Optional[str] = Field(default=None, description="Bearer credential for step calls")
    max_attempts: int = Field(default=3, description="Attempts per step call")
    retry_backoff_ms: int = Field(default=150, description="Linear backoff base (ms)")
    timeout_s: float = Field(default=120.0, description="Per-call timeout (s)")
    polish_enabled: bool = Field(default=False, description="Run polish-script steps")
    skip_tts: bool = Field(default=False, description="Skip TTS steps")

    class Config:
        env_prefix = "STEP_"

    @field_validator("functions_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip().rstrip("/")
        return value or None


class StorageSettings(BaseSettings):
    """Storage backend"""
    backend: str = Field(default="memory", description="memory | sqlite")
    sqlite_path: str = Field(default="./data/podcast_engine.sqlite3", description="SQLite database file")

    class Config:
        env_prefix = "STORAGE_"

    @field_validator("backend")
    @classmethod
    def _known_backend(cls, value: str) -> str:
        backend = str(value or "memory").strip().lower()
        if backend not in {"memory", "sqlite"}:
            raise ValueError(f"unsupported storage backend: {value}")
        return backend


class Settings(BaseSettings):
    """Aggregate settings"""

    selection: SelectionSettings = Field(default_factory=SelectionSettings)
    digest: DigestSettings = Field(default_factory=DigestSettings)
    script: ScriptGateSettings = Field(default_factory=ScriptGateSettings)
    steps: StepSettings = Field(default_factory=StepSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def load_from_env_file(cls, env_path: Optional[Path] = None) -> "Settings":
        """Load settings, reading ``config/.env`` first when it exists."""
        if env_path is None:
            env_path = Path(__file__).parent / ".env"

        if env_path.exists():
            from dotenv import load_dotenv
            load_dotenv(env_path)

        return cls(
            selection=SelectionSettings(),
            digest=DigestSettings(),
            script=ScriptGateSettings(),
            steps=StepSettings(),
            storage=StorageSettings(),
        )


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings singleton."""
    return Settings.load_from_env_file()


def get_selection_settings() -> SelectionSettings:
    return get_settings().selection


def get_step_settings() -> StepSettings:
    return get_settings().steps


def get_storage_settings() -> StorageSettings:
    return get_settings().storage
