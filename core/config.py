"""
Configuration management for DuoCast.

Centralizes all configuration including:
- API key and endpoint for the AI/ML API gateway
- Scene and video model selections
- Retry, polling and timeout policy
- Credit ledger and pipeline output settings
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    return float(value)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    return int(value)


@dataclass
class APIConfig:
    """API configuration for the generation gateway."""

    api_key: str = field(default_factory=lambda: os.getenv("AIML_API_KEY", ""))
    api_base: str = field(default_factory=lambda: os.getenv("AIML_API_BASE", "https://api.aimlapi.com"))

    # Scene composition completes synchronously, so it gets the longer timeout
    scene_request_timeout: float = 180.0
    video_request_timeout: float = 60.0


@dataclass
class ModelConfig:
    """Model selection and output format configuration."""

    scene_model: str = field(default_factory=lambda: os.getenv("SCENE_MODEL", "google/nano-banana-pro-edit"))
    scene_aspect_ratio: str = "16:9"
    scene_resolution: str = "2K"
    scene_num_images: int = 1

    video_model: str = field(default_factory=lambda: os.getenv("VIDEO_MODEL", "google/veo-3.1-i2v"))
    video_aspect_ratio: str = "16:9"
    video_resolution: str = "1080p"
    generate_audio: bool = True


@dataclass
class RetryConfig:
    """Retry and polling policy for remote calls."""

    # Literal schedule: 5s, 15s, 30s between the four attempts
    backoff_delays: tuple[float, ...] = (5.0, 15.0, 30.0)

    poll_interval: float = field(default_factory=lambda: _env_float("VIDEO_POLL_INTERVAL_SECONDS", 10.0))
    video_timeout: float = field(default_factory=lambda: _env_float("VIDEO_TIMEOUT_SECONDS", 300.0))
    max_consecutive_poll_failures: int = 5


@dataclass
class CreditsConfig:
    """Credit ledger configuration."""

    starting_balance: int = field(default_factory=lambda: _env_int("STARTING_CREDITS", 20_000_000))
    ledger_path: str = field(default_factory=lambda: os.getenv("CREDITS_FILE", "credits.json"))

    # No hard cap unless explicitly enabled
    enforce_cap: bool = field(default_factory=lambda: os.getenv("ENFORCE_CREDIT_CAP", "false").lower() == "true")


@dataclass
class PipelineConfig:
    """Pipeline execution parameters."""

    output_dir: str = field(default_factory=lambda: os.getenv("OUTPUT_DIR", "./output"))
    default_duration: int = 8
    allowed_durations: tuple[int, ...] = (4, 6, 8)
    max_jobs: int = 200
    max_upload_bytes: int = 10 * 1024 * 1024


@dataclass
class ServerConfig:
    """HTTP server configuration."""

    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: _env_int("PORT", 5000))


@dataclass
class Config:
    """Main configuration class."""

    api: APIConfig = field(default_factory=APIConfig)
    models: ModelConfig = field(default_factory=ModelConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    credits: CreditsConfig = field(default_factory=CreditsConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls()

    def validate(self) -> list[str]:
        """Validate configuration and return list of issues."""
        issues = []

        if not self.api.api_key:
            issues.append("AIML_API_KEY not configured")

        if self.pipeline.default_duration not in self.pipeline.allowed_durations:
            issues.append(
                f"Default duration {self.pipeline.default_duration}s is not one of "
                f"{list(self.pipeline.allowed_durations)}"
            )

        if self.retry.poll_interval <= 0:
            issues.append("VIDEO_POLL_INTERVAL_SECONDS must be positive")

        if self.retry.video_timeout <= 0:
            issues.append("VIDEO_TIMEOUT_SECONDS must be positive")

        if self.credits.starting_balance < 0:
            issues.append("STARTING_CREDITS must not be negative")

        return issues


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config
