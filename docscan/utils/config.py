"""Configuration management for the document scanner.

Loads and validates YAML configuration with sensible defaults for
preprocessing, the remote and local engines, and orchestration.
"""

import logging
import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field

from docscan.ocr.models import ProcessingOptions

logger = logging.getLogger(__name__)

API_KEY_ENV_VAR = "OCR_REMOTE_API_KEY"

Mitigation = Literal["switch_variant", "flip_orientation"]


class PreprocessingConfig(BaseModel):
    """Configuration for the image preprocessing pipeline."""

    enabled: bool = True
    max_width: int = Field(default=2000, gt=0)
    max_height: int = Field(default=2000, gt=0)
    grayscale: bool = True
    contrast: bool = True
    contrast_factor: float = 1.2
    binarize: bool = False
    sharpen: bool = False

    def to_options(self) -> ProcessingOptions:
        """Build the immutable per-call options from this configuration."""
        return ProcessingOptions(
            max_width=self.max_width,
            max_height=self.max_height,
            grayscale=self.grayscale,
            contrast=self.contrast,
            contrast_factor=self.contrast_factor,
            binarize=self.binarize,
            sharpen=self.sharpen,
        )


class RemoteEngineConfig(BaseModel):
    """Configuration for the networked OCR.space-compatible engine."""

    endpoint: str = "https://api.ocr.space/parse/image"
    api_key: str | None = None
    language: str = "eng"
    variant: Literal["accurate", "alternate"] = "accurate"
    detect_orientation: bool = True
    scale: bool = True
    timeout_s: float = Field(default=15.0, gt=0)
    backoff_s: list[float] = Field(default_factory=lambda: [0.5, 1.5])
    mitigations: list[Mitigation] = Field(
        default_factory=lambda: ["switch_variant", "flip_orientation"]
    )


class LocalEngineConfig(BaseModel):
    """Configuration for the in-process Tesseract engine."""

    tesseract_cmd: str | None = None
    language: str = "eng"
    primary_psm: int = 6
    fallback_psm: int = 11
    confidence_threshold: float = Field(default=30.0, ge=0, le=100)


class AppConfig(BaseModel):
    """Top-level application configuration."""

    preprocessing: PreprocessingConfig = Field(default_factory=PreprocessingConfig)
    remote: RemoteEngineConfig = Field(default_factory=RemoteEngineConfig)
    local: LocalEngineConfig = Field(default_factory=LocalEngineConfig)
    pipeline_enabled: bool = True
    debug: bool = False
    default_mode: Literal["auto", "local", "remote"] = "auto"
    log_level: str = "INFO"


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from a YAML file.

    The remote API key falls back to the ``OCR_REMOTE_API_KEY``
    environment variable when the file does not set one.

    Args:
        path: Path to the YAML configuration file.
            Defaults to configs/config.yaml.

    Returns:
        Validated application configuration.
    """
    if path is None:
        path = Path("configs/config.yaml")

    if path.exists():
        logger.info("Loading configuration from %s", path)
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        config = AppConfig(**raw)
    else:
        logger.info("No config file found at %s, using defaults", path)
        config = AppConfig()

    if not config.remote.api_key and os.environ.get(API_KEY_ENV_VAR):
        config.remote.api_key = os.environ[API_KEY_ENV_VAR]
    return config
