"""Application configuration settings."""

from pydantic_settings import BaseSettings
from typing import Optional
import logging
import os


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "RF Coverage Engine"
    APP_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"

    # Redis (background coverage jobs)
    REDIS_URL: str = "redis://localhost:6379/0"

    # File storage
    HEATMAP_PATH: str = "./static/heatmaps"

    # Accelerated propagation
    PREFER_GPU: bool = True
    GPU_DEVICE: Optional[str] = None  # e.g. "cuda:0", "mps"; auto-detect when unset

    # RF Propagation defaults
    DEFAULT_FREQUENCY_BAND: str = "2.4GHz"
    DEFAULT_SAMPLE_RESOLUTION_M: float = 0.5

    # Heatmap defaults
    DEFAULT_INTERPOLATION: str = "idw"
    DEFAULT_COLOR_SCHEME: str = "traditional"
    DEFAULT_SMOOTHING_SIGMA: float = 2.0

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()


def configure_logging(level: Optional[str] = None):
    """Configure root logging for scripts and workers."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def ensure_directories():
    """Create necessary directories if they don't exist."""
    os.makedirs(settings.HEATMAP_PATH, exist_ok=True)


def default_configuration():
    """Build an engine Configuration from the environment defaults."""
    # Imported here to keep settings importable without the schema package
    from rfcoverage.schemas.configuration import Configuration
    from rfcoverage.schemas.enums import ColorScheme, FrequencyBand, InterpolationMethod

    return Configuration(
        frequency_band=FrequencyBand(settings.DEFAULT_FREQUENCY_BAND),
        sample_resolution_m=settings.DEFAULT_SAMPLE_RESOLUTION_M,
        interpolation_method=InterpolationMethod(settings.DEFAULT_INTERPOLATION),
        color_scheme=ColorScheme(settings.DEFAULT_COLOR_SCHEME),
        smoothing_sigma=settings.DEFAULT_SMOOTHING_SIGMA,
    )
