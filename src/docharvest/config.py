"""
Configuration management for docharvest.

Configuration is loaded from:
1. Environment variables (highest priority), prefixed DOCHARVEST_
2. docharvest.yaml file
3. Default values (lowest priority)

Nested sections use "__" in environment variables, e.g.
DOCHARVEST_LEGACY__DENSITY=200. YAML files may spell the top-level
extraction keys in camelCase (pdfMinDocTextLength, ...).
"""

import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from docharvest.core.constants import (
    DATA_DIR,
    DEFAULT_CONVERSION_DENSITY,
    DEFAULT_CONVERSION_TIMEOUT,
    DEFAULT_CONVERT_BINARY,
    DEFAULT_LEGACY_OCR_TIMEOUT,
    DEFAULT_OCR_LANGUAGE,
    DEFAULT_OCR_TIMEOUT,
    DEFAULT_PDF_MIN_DOC_BYTE_SIZE,
    DEFAULT_PDF_MIN_DOC_TEXT_LENGTH,
    MAX_DOCUMENT_SIZE,
)
from docharvest.exceptions import ConfigurationError

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _to_snake(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


class LegacyOcrSettings(BaseModel):
    """Single-page legacy OCR backend (ImageMagick conversion + OCR)."""

    model_config = ConfigDict(frozen=True)

    ocr_timeout: int = DEFAULT_LEGACY_OCR_TIMEOUT
    conversion_timeout: int = DEFAULT_CONVERSION_TIMEOUT
    convert_binary: str = DEFAULT_CONVERT_BINARY
    density: int = DEFAULT_CONVERSION_DENSITY

    @model_validator(mode="before")
    @classmethod
    def normalize_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {_to_snake(k): v for k, v in data.items()}
        return data

    @field_validator("ocr_timeout", "conversion_timeout", "density")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v


class LoggingSettings(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(frozen=True)

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    file: str | None = None
    json_format: bool = False


class ExtractionSettings(BaseSettings):
    """Process-wide extraction settings. Frozen once loaded."""

    model_config = SettingsConfigDict(
        env_prefix="DOCHARVEST_",
        env_nested_delimiter="__",
        extra="ignore",
        frozen=True,
    )

    # Escalation thresholds
    pdf_min_doc_text_length: int = DEFAULT_PDF_MIN_DOC_TEXT_LENGTH  # UTF-8 bytes
    pdf_min_doc_byte_size: int = DEFAULT_PDF_MIN_DOC_BYTE_SIZE

    # OCR
    ocr_timeout: int = DEFAULT_OCR_TIMEOUT
    ocr_apply_rotation: bool = False
    ocr_enable_image_processing: bool = False
    ocr_language: str = DEFAULT_OCR_LANGUAGE
    pdf_ocr_only_strategy: bool = True
    models_dir: Path | None = None

    use_legacy_ocr_parser_for_single_page_documents: bool = False
    legacy: LegacyOcrSettings = Field(default_factory=LegacyOcrSettings)

    max_document_size: int = MAX_DOCUMENT_SIZE
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML values arrive as init kwargs; environment variables override them
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @model_validator(mode="before")
    @classmethod
    def normalize_keys(cls, data: Any) -> Any:
        """Accept camelCase keys (pdfMinDocTextLength) alongside snake_case."""
        if isinstance(data, dict):
            return {_to_snake(k) if isinstance(k, str) else k: v for k, v in data.items()}
        return data

    @field_validator("pdf_min_doc_text_length", "pdf_min_doc_byte_size")
    @classmethod
    def must_be_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @field_validator("ocr_timeout", "max_document_size")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @field_validator("ocr_language")
    @classmethod
    def language_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v.strip()


def load_yaml_config(path: Path | None = None) -> dict:
    """Load configuration from YAML file."""
    if path is None:
        # Look for docharvest.yaml in standard locations
        candidates = [
            Path("docharvest.yaml"),
            Path("config/docharvest.yaml"),
            DATA_DIR / "config.yaml",
            Path("/etc/docharvest/config.yaml"),
        ]
        for candidate in candidates:
            if candidate.exists():
                path = candidate
                break

    if path and path.exists():
        with open(path) as f:
            return yaml.safe_load(f) or {}

    return {}


def load_settings(path: Path | str | None = None) -> ExtractionSettings:
    """
    Build settings from a YAML file (explicit or discovered) plus environment.

    Raises:
        ConfigurationError: The file is missing, is not valid YAML, or holds
                            values that fail validation
    """
    source = str(path) if path else None
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}", source=source)

    try:
        yaml_config = load_yaml_config(path)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML: {e}", source=source) from e

    if not isinstance(yaml_config, dict):
        raise ConfigurationError("Config file must contain a mapping", source=source)

    yaml_config = {_to_snake(str(k)): v for k, v in yaml_config.items()}
    try:
        return ExtractionSettings(**yaml_config)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings: {e}", source=source) from e


@lru_cache
def get_settings() -> ExtractionSettings:
    """Get cached settings instance."""
    return load_settings()


def reload_settings() -> ExtractionSettings:
    """Force reload of settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
