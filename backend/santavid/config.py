"""Configuration management with YAML and environment variable support."""

from pathlib import Path
from typing import ClassVar

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Settings source that loads config.yaml from the working directory."""

    def get_field_value(self, field, field_name: str):
        # Not used with __call__
        pass

    def prepare_field_value(self, field_name: str, field, value, value_is_complex: bool):
        return value

    def __call__(self):
        yaml_path = Path("config.yaml")
        if not yaml_path.exists():
            return {}

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return data


class GoogleCloudConfig(BaseModel):
    """Google Cloud / Gemini API configuration.

    With use_vertex_ai the client authenticates through ADC and needs
    project_id; otherwise api_key is used against the Gemini Developer API.
    """

    project_id: str = ""
    location: str = "us-central1"
    use_vertex_ai: bool = True
    api_key: str = ""


class ModelsConfig(BaseModel):
    """AI model identifiers."""

    script_llm: str = "gemini-2.5-flash"
    image_gen: str = "gemini-2.5-flash-image"
    video_gen: str = "veo-3.1-fast-generate-001"
    ollama_endpoint: str = "http://localhost:11434"
    ollama_api_key: str = ""


class PipelineConfig(BaseModel):
    """Pipeline execution parameters."""

    style: str = "warm cinematic Christmas"
    aspect_ratio: str = "16:9"
    clip_duration: int = 8
    min_scenes: int = 1
    max_scenes: int = 10
    keyframe_concurrency: int = 3
    video_kickoff_concurrency: int = 3
    poll_concurrency: int = 5
    video_poll_interval: int = 15
    video_poll_max: int = 40
    video_timeout_seconds: int = 600
    retry_max_attempts: int = 5
    retry_base_delay: int = 2
    reencode_on_stitch: bool = False
    stage_stale_seconds: int = 900


class StorageConfig(BaseModel):
    """Database, temp workspace and object storage configuration."""

    database_url: str = "sqlite+aiosqlite:///santavid.db"
    tmp_dir: Path = Path("tmp")
    supabase_url: str = ""
    supabase_key: str = ""
    bucket: str = "videos"
    cache_control: str = "31536000"

    @field_validator("tmp_dir", mode="before")
    @classmethod
    def convert_tmp_dir_to_path(cls, v):
        """Convert string to Path object."""
        if isinstance(v, str):
            return Path(v)
        return v


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])


class PaymentsConfig(BaseModel):
    """Payment webhook configuration."""

    stripe_webhook_secret: str = ""
    auto_start_on_payment: bool = True


class NotificationsConfig(BaseModel):
    """Customer e-mail configuration (Resend)."""

    resend_api_key: str = ""
    resend_base_url: str = "https://api.resend.com"
    from_address: str = "Santa <santa@example.com>"
    app_url: str = "http://localhost:3000"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class Settings(BaseSettings):
    """Main application settings with YAML and environment variable support.

    Configuration sources (in priority order):
    1. Environment variables (prefix: SANTAVID_, delimiter: __)
    2. .env file
    3. YAML file (config.yaml)
    4. Field defaults
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="SANTAVID_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    google_cloud: GoogleCloudConfig = Field(default_factory=GoogleCloudConfig)
    models: ModelsConfig = Field(default_factory=ModelsConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    payments: PaymentsConfig = Field(default_factory=PaymentsConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        """Insert the YAML source between dotenv and init settings."""
        return (
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            init_settings,
        )


# Singleton instance
settings = Settings()
