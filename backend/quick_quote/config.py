# config.py

import logging
from decimal import Decimal
from typing import Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.common_types import PricingConfig

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


class Settings(BaseSettings):
    """
    Application configuration settings loaded from environment variables and .env file.
    """
    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore'
    )

    # External slicer
    # If None, the slicer module will attempt auto-detection.
    slicer_path: Optional[str] = Field(None, description="Optional override path for the PrusaSlicer executable (SLICER_PATH).")
    slicer_timeout_sec: int = Field(120, description="Seconds before a slicer run is killed and the fallback estimate is used.")
    slicer_disable: bool = Field(False, description="Skip the slicer entirely and always use the fallback estimate.")

    # Geometry analysis
    overhang_threshold_deg: float = Field(45.0, ge=0, le=90, description="Default overhang threshold angle in degrees.")
    overhang_worker_min_triangles: int = Field(20000, ge=0, description="Meshes at least this large are analyzed in a worker process.")

    # Pricing defaults (the settings store normally supplies these per business)
    hourly_rate: Decimal = Field(Decimal("45"), ge=0)
    setup_fee: Decimal = Field(Decimal("20"), ge=0)
    minimum_price: Decimal = Field(Decimal("35"), ge=0)
    tax_rate: Decimal = Field(Decimal("0"), ge=0, le=100, description="Tax rate in percent.")
    default_cost_per_gram: Decimal = Field(Decimal("0.05"), ge=0)
    material_costs: Dict[str, Decimal] = Field(default_factory=dict, description="Cost per gram by material id (JSON object in MATERIAL_COSTS).")

    # Logging Configuration
    log_level: str = Field("INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)")

    @field_validator('slicer_timeout_sec')
    @classmethod
    def clamp_slicer_timeout(cls, v):
        return max(30, min(300, v))

    @field_validator('log_level')
    @classmethod
    def log_level_must_be_valid(cls, v):
        if v.upper() not in VALID_LOG_LEVELS:
            raise ValueError(f'log_level must be one of {VALID_LOG_LEVELS}')
        return v.upper()

    def pricing_config(self, **overrides) -> PricingConfig:
        """Builds a PricingConfig from the configured defaults."""
        values = dict(
            hourly_rate=self.hourly_rate,
            setup_fee=self.setup_fee,
            minimum_price=self.minimum_price,
            tax_rate=self.tax_rate,
            default_cost_per_gram=self.default_cost_per_gram,
        )
        values.update(overrides)
        return PricingConfig(**values)


def setup_logging(level: Optional[str] = None):
    """Configures the root logger with the application format."""
    logging.basicConfig(level=(level or settings.log_level), format=LOG_FORMAT)


# --- Singleton Instance ---
settings = Settings()
logger.debug(
    f"Configuration loaded. Log level: {settings.log_level}, slicer timeout: {settings.slicer_timeout_sec}s, "
    f"slicer disabled: {settings.slicer_disable}"
)
if settings.slicer_path:
    logger.info(f"Using Slicer Path: {settings.slicer_path}")
