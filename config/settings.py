"""
Settings Configuration
Pydantic-based configuration for the copy pipeline.
"""
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class FetchSettings(BaseSettings):
    """Evidence fetching"""
    timeout_seconds: float = Field(default=10.0, description="Per-request timeout")
    max_retries: int = Field(default=3, description="Attempts for network/rate-limit failures")
    backoff_initial: float = Field(default=0.75, description="First backoff delay (seconds)")
    backoff_max: float = Field(default=8.0, description="Backoff ceiling (seconds)")
    user_agent: str = Field(
        default="CatalogCopyBot/1.0 (+evidence-fetcher)",
        description="Fixed client identifier",
    )
    min_blocks: int = Field(default=6, description="Minimum extracted content blocks")
    min_chars: int = Field(default=800, description="Minimum extracted characters")
    cache_ttl: int = Field(default=7 * 24 * 3600, description="Evidence cache TTL (seconds)")
    max_host_concurrency: int = Field(default=2, description="Concurrent requests per host")
    allowed_hosts: List[str] = Field(default_factory=list, description="Host glob allowlist (empty = any)")
    max_redirects: int = Field(default=5, description="Redirect hops followed per fetch")
    force_recrawl: bool = Field(default=False, description="Bypass the evidence cache")

    class Config:
        env_prefix = "FETCH_"


class GenerationSettings(BaseSettings):
    """Text-generation service"""
    provider: str = Field(default="openai", description="openai or anthropic")
    primary_model: Optional[str] = Field(default=None, description="Primary tier model")
    escalated_model: Optional[str] = Field(default=None, description="Escalated tier model")
    temperature: float = Field(default=0.5, description="Sampling temperature")
    max_tokens: int = Field(default=2200, description="Completion token cap")
    timeout_seconds: float = Field(default=90.0, description="Provider timeout")
    max_retries: int = Field(default=3, description="Attempts on rate-limit/5xx")
    # USD per 1k tokens
    primary_input_price: float = Field(default=0.00015)
    primary_output_price: float = Field(default=0.0006)
    escalated_input_price: float = Field(default=0.0025)
    escalated_output_price: float = Field(default=0.01)

    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API Key")
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API Key")

    class Config:
        env_prefix = "GENERATION_"


class ValidationSettings(BaseSettings):
    """Guardrail tunables, including relaxed-pass factors"""
    primary_suffix: str = Field(default="promo code", description="Primary keyword suffix after the display name")
    grounding_min_overlap: float = Field(default=0.30)
    platform_name: str = Field(default="Whop")
    platform_host: str = Field(default="whop.com")
    ensure_closing_cta: bool = Field(default=True)
    relax_word_widen: float = Field(default=0.25, description="Fractional widening of word bands")
    relax_count_slack: int = Field(default=1, description="Extra items/paragraphs allowed each side")
    relax_grounding_overlap: float = Field(default=0.20)
    relax_cadence_slack: float = Field(default=3.0, description="Widening of sentence mean/stdev bands")

    class Config:
        env_prefix = "VALIDATION_"


class OriginalitySettings(BaseSettings):
    """Cross-item fingerprint window"""
    window_size: int = Field(default=1000)
    reload_tail: int = Field(default=2000)
    rotate_ceiling: int = Field(default=250_000, description="Log line count that triggers compaction")
    threshold: float = Field(default=0.40)
    shingle_size: int = Field(default=3)

    class Config:
        env_prefix = "ORIGINALITY_"


class BudgetSettings(BaseSettings):
    """Spend control"""
    cap_usd: float = Field(default=0.0, description="Hard cap (0 disables)")
    min_items_for_projection: int = Field(default=5)
    seed_call_cost_usd: float = Field(
        default=0.0, description="Estimated cost of a call before any has completed (0 derives it from the price table)"
    )
    seed_prompt_tokens: int = Field(default=3000, description="Prompt size assumed when deriving the seed estimate")

    class Config:
        env_prefix = "BUDGET_"


class RunSettings(BaseSettings):
    """Run control"""
    data_dir: str = Field(default="./data/content")
    concurrency: int = Field(default=4)
    max_repairs: int = Field(default=2)
    allow_escalation: bool = Field(default=True)
    lease_timeout_seconds: int = Field(default=30 * 60)
    stale_lock_seconds: int = Field(default=10 * 60)
    retry_ceiling: int = Field(default=3)
    probe_only: bool = Field(default=False, description="Evidence-only probe toggle")
    dry_run: bool = Field(default=False, description="Fetch evidence and write previews without generation")
    relaxed: bool = Field(default=False, description="Relaxed-threshold toggle")
    override: bool = Field(default=False, description="Checkpoint-override toggle")
    log_level: str = Field(default="INFO")

    class Config:
        env_prefix = "RUN_"


class Settings(BaseSettings):
    """Aggregated settings"""

    fetch: FetchSettings = Field(default_factory=FetchSettings)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    originality: OriginalitySettings = Field(default_factory=OriginalitySettings)
    budget: BudgetSettings = Field(default_factory=BudgetSettings)
    run: RunSettings = Field(default_factory=RunSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def load_from_env_file(cls, env_path: Optional[Path] = None) -> "Settings":
        """Load settings, reading config/.env first when present."""
        if env_path is None:
            env_path = Path(__file__).parent / ".env"

        if env_path.exists():
            from dotenv import load_dotenv
            load_dotenv(env_path)

        return cls(
            fetch=FetchSettings(),
            generation=GenerationSettings(),
            validation=ValidationSettings(),
            originality=OriginalitySettings(),
            budget=BudgetSettings(),
            run=RunSettings(),
        )


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings singleton"""
    return Settings.load_from_env_file()


def get_fetch_settings() -> FetchSettings:
    return get_settings().fetch


def get_generation_settings() -> GenerationSettings:
    return get_settings().generation


def get_run_settings() -> RunSettings:
    return get_settings().run
