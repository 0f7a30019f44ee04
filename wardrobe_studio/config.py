"""Configuration management for the Wardrobe Studio generation pipeline."""

from pathlib import Path
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class VendorConfig(BaseModel):
    """Try-on vendor connection settings."""
    base_url: str = "https://api.fashn.ai/v1"
    cdn_base_url: str = "https://cdn.fashn.ai"
    model_name: str = "tryon-v1.6"
    timeout_s: float = 60.0
    max_retries: int = 2


class ImageEditConfig(BaseModel):
    """Image-edit vendor settings (touch-up and photo tuning)."""
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-image-1-mini"
    quality: str = "medium"  # "low", "medium", or "high"
    timeout_s: float = 90.0
    max_retries: int = 2


class PollingConfig(BaseModel):
    """Async job polling settings."""
    interval_s: float = 2.0
    timeout_s: float = 60.0  # Hard ceiling per studio request


class AnalysisConfig(BaseModel):
    """Photo quality analysis settings."""
    downscale_max: int = 512
    server_budget_s: float = 12.0
    cache_ttl_s: float = 3600.0
    cache_max_entries: int = 100
    version: str = "1.0"


class NormalizeConfig(BaseModel):
    """Upload normalization limits imposed by the vendor APIs."""
    max_dimension: int = 2048
    max_bytes: int = 4 * 1024 * 1024
    shrink_factor: float = 0.85
    max_attempts: int = 5
    fallback_dimension: int = 1024


class StudioConfig(BaseSettings):
    """Main pipeline configuration."""

    # Provider selection: "stub" or "fashn"
    tryon_provider: str = "stub"

    # Paths / storage
    storage_dir: Path = Path("output/storage")
    public_base_url: str = "http://127.0.0.1:8000"
    storage_signing_secret: str = "change-me"
    results_bucket: str = "tryons"

    # Behaviour
    touch_up: bool = False
    result_cache_max_entries: int = 256
    log_level: str = "INFO"

    # Sub-configs
    vendor: VendorConfig = Field(default_factory=VendorConfig)
    image_edit: ImageEditConfig = Field(default_factory=ImageEditConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    normalize: NormalizeConfig = Field(default_factory=NormalizeConfig)

    # API keys (loaded from .env)
    fashn_api_key: str | None = None
    openai_api_key: str | None = None

    class Config:
        env_file = ".env"
        env_prefix = ""
        env_nested_delimiter = "__"
        extra = "ignore"


def load_config() -> StudioConfig:
    """Load configuration from environment and defaults."""
    return StudioConfig()
