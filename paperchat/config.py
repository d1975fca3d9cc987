"""Centralized configuration management for paperchat."""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

PROJECT_ROOT = Path(__file__).parent.parent.resolve()


class ContentStoreConfig(BaseModel):
    data_dir: str = "data/content"


class ClassifierConfig(BaseModel):
    # Equal-strength rule matches are resolved by position in this list
    tie_break_order: list[str] = Field(
        default_factory=lambda: [
            "specific_reference",
            "comparison",
            "methodology",
            "results",
            "technical_details",
            "summary",
            "conceptual",
        ]
    )


class RankingConfig(BaseModel):
    relevance_floor: float = 0.1
    reference_boost: float = 100.0
    selection_boost: float = 1.0
    priority_bonus: float = 0.3
    priority_decay: float = 0.7
    secondary_weight_factor: float = 0.5
    max_workers: int = 1


class ConversationConfig(BaseModel):
    window_size: int = 3


class GenerationConfig(BaseModel):
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 2048
    temperature: float = 0.1
    timeout_seconds: float = 60.0


class JobsConfig(BaseModel):
    stale_after_seconds: float = 1800.0
    max_workers: int = 4


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
    file: str = "logs/paperchat.log"


class Settings(BaseSettings):
    """Application settings loaded from YAML config and environment variables."""

    content_store: ContentStoreConfig = Field(default_factory=ContentStoreConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    ranking: RankingConfig = Field(default_factory=RankingConfig)
    conversation: ConversationConfig = Field(default_factory=ConversationConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    jobs: JobsConfig = Field(default_factory=JobsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    anthropic_api_key: str = Field(default="", alias="ANTHROPIC_API_KEY")

    model_config = {"env_prefix": "", "env_nested_delimiter": "__", "populate_by_name": True}

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        # Environment variables override values passed in from the YAML file
        return env_settings, init_settings, dotenv_settings, file_secret_settings


def load_config(config_path: str | None = None) -> Settings:
    """Load configuration from YAML file, with environment variable overrides."""
    if config_path is None:
        config_path = str(PROJECT_ROOT / "configs" / "default.yaml")

    data: dict[str, Any] = {}
    config_file = Path(config_path)
    if config_file.exists():
        with open(config_file) as f:
            data = yaml.safe_load(f) or {}

    return Settings(**data)


def setup_logging(config: LoggingConfig) -> None:
    """Configure application-wide logging."""
    log_file = PROJECT_ROOT / config.file
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, config.level.upper()),
        format=config.format,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(),
        ],
    )
