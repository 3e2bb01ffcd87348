"""Configuration management with YAML and environment variable support."""

from pathlib import Path
from typing import ClassVar, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from vidgate.schemas.quality import QualityPolicy
from vidgate.schemas.scene import MediaType


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads configuration from YAML file."""

    def get_field_value(self, field, field_name: str):
        # Not used with prepare method
        pass

    def prepare_field_value(self, field_name: str, field, value, value_is_complex: bool):
        return value

    def __call__(self):
        # Load from config.yaml in current directory
        yaml_path = Path("config.yaml")
        if not yaml_path.exists():
            return {}

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return data


class ProviderProfile(BaseModel):
    """Capabilities of one generation provider used for routing."""

    id: str
    media_type: MediaType = MediaType.VIDEO
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    image_to_video: bool = False
    endpoint: Optional[str] = None


def _default_profiles() -> list[ProviderProfile]:
    return [
        ProviderProfile(
            id="kling-2.5-turbo",
            strengths=["person", "hand", "face", "human", "motion", "dance", "walking"],
            weaknesses=["text"],
            image_to_video=True,
        ),
        ProviderProfile(
            id="runway-gen3",
            strengths=["cinematic", "dramatic", "camera", "film", "moody"],
            weaknesses=["hand", "text"],
            image_to_video=True,
        ),
        ProviderProfile(
            id="veo-3.1",
            strengths=["physics", "water", "liquid", "realistic", "complex"],
            weaknesses=[],
            image_to_video=True,
        ),
        ProviderProfile(
            id="luma-dream-machine",
            strengths=["product", "object", "rotate", "showcase", "studio"],
            weaknesses=["person", "hand"],
            image_to_video=True,
        ),
        ProviderProfile(
            id="kling-2.1",
            strengths=["person", "lifestyle"],
            weaknesses=["physics"],
            image_to_video=True,
        ),
        ProviderProfile(
            id="veo-2",
            strengths=["nature", "landscape", "aerial"],
            weaknesses=["hand"],
        ),
        ProviderProfile(
            id="wan-2.6",
            strengths=["animation", "stylized"],
            weaknesses=["realistic"],
            image_to_video=True,
        ),
        ProviderProfile(
            id="hailuo-minimax",
            strengths=["nature", "scenery", "ocean", "forest", "sky"],
            weaknesses=["text", "hand"],
        ),
        ProviderProfile(
            id="flux",
            media_type=MediaType.IMAGE,
            strengths=["food", "product", "person", "photorealistic"],
            image_to_video=True,
        ),
        ProviderProfile(
            id="falai",
            media_type=MediaType.IMAGE,
            strengths=["illustration", "stylized"],
            image_to_video=True,
        ),
    ]


class ProvidersConfig(BaseModel):
    """Generation provider routing and endpoints.

    Fallback orderings are tried front to back when a provider has failed.
    ``image_to_video`` on a profile marks providers that accept a reference
    artifact as a generation seed.
    """

    video_fallback_order: list[str] = Field(
        default_factory=lambda: [
            "kling-2.5-turbo",
            "runway-gen3",
            "veo-3.1",
            "luma-dream-machine",
            "kling-2.1",
            "veo-2",
            "wan-2.6",
            "hailuo-minimax",
        ]
    )
    image_fallback_order: list[str] = Field(default_factory=lambda: ["flux", "falai"])
    stock_provider: str = "stock-library"
    default_endpoint: str = "http://localhost:8100/generate"
    profiles: list[ProviderProfile] = Field(default_factory=_default_profiles)

    def fallback_order(self, media_type: MediaType) -> list[str]:
        if media_type == MediaType.IMAGE:
            return list(self.image_fallback_order)
        return list(self.video_fallback_order)

    def profile(self, provider_id: str) -> Optional[ProviderProfile]:
        for p in self.profiles:
            if p.id == provider_id:
                return p
        return None

    def endpoint_for(self, provider_id: str) -> str:
        profile = self.profile(provider_id)
        if profile is not None and profile.endpoint:
            return profile.endpoint
        return self.default_endpoint


class RegenerationConfig(BaseModel):
    """Regeneration loop limits and timeouts."""

    # The ladder has three tiers before escalation
    max_generation_attempts: int = Field(default=3, ge=1, le=3)
    scorer_timeout_seconds: float = 90.0
    generation_timeout_seconds: float = 600.0
    transient_retry_attempts: int = 3
    project_attempt_budget: Optional[int] = None
    project_deadline_seconds: Optional[float] = None
    scene_concurrency: int = 3


class ScorerConfig(BaseModel):
    """Vision scorer model and connection settings."""

    vision_model: str = "gemini-2.5-flash"
    ollama_endpoint: str = "http://localhost:11434"
    ollama_api_key: Optional[str] = None
    max_retries: int = 2


class GoogleCloudConfig(BaseModel):
    """Google Cloud configuration for Vertex AI vision scoring."""

    project_id: str = ""
    location: str = "us-central1"


class StorageConfig(BaseModel):
    """Storage and database configuration."""

    database_url: str = "sqlite+aiosqlite:///vidgate.db"
    tmp_dir: Path = Path("tmp")

    @field_validator("tmp_dir", mode="before")
    @classmethod
    def convert_tmp_dir_to_path(cls, v):
        """Convert string to Path object."""
        if isinstance(v, str):
            return Path(v)
        return v


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = "127.0.0.1"
    port: int = 8000


class Settings(BaseSettings):
    """Main application settings with YAML and environment variable support.

    Configuration sources (in priority order):
    1. Environment variables (prefix: VIDGATE_, delimiter: __)
    2. YAML file (config.yaml)
    3. Field defaults
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="VIDGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    quality: QualityPolicy = Field(default_factory=QualityPolicy)
    regeneration: RegenerationConfig = Field(default_factory=RegenerationConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    scorer: ScorerConfig = Field(default_factory=ScorerConfig)
    google_cloud: GoogleCloudConfig = Field(default_factory=GoogleCloudConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        """Customize settings sources to include YAML configuration.

        Priority order (highest to lowest):
        1. Environment variables
        2. YAML file
        3. Init settings (programmatic defaults)
        """
        return (
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            init_settings,
        )


# Singleton instance
settings = Settings()
