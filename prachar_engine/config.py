"""
Configuration module for Prachar Engine.

Handles:
- Environment variable loading
- Path configuration (OUTPUT_DIR, FONT_PATH)
- Platform constraints (PLATFORMS dict)
- Generation budget and retry schedule
- Storage and text backend selection
"""

import os
from pathlib import Path
from typing import Dict, List, Any, Optional

from dotenv import load_dotenv

load_dotenv()


class ConfigError(Exception):
    """Raised when configuration is invalid."""
    pass


class Config:
    """
    Centralized configuration for the generation engine.

    All paths and settings are configurable via environment variables
    with sensible defaults for local development.
    """

    # Platform constraints - what each target platform accepts
    PLATFORMS: Dict[str, Dict[str, Any]] = {
        "instagram": {
            "image_sizes": [(1080, 1080), (1080, 1350)],
            "caption_max_chars": 2200,
            "hashtag_range": (5, 10),
        },
        "linkedin": {
            "image_sizes": [(1200, 627)],
            "caption_max_chars": 3000,
            "hashtag_range": (3, 5),
        },
    }

    IMAGES_PER_PLATFORM: int = 3
    VIDEOS_PER_PLATFORM: int = 1
    CAPTIONS_PER_PLATFORM: int = 3
    VIDEO_DURATION_RANGE: tuple = (3, 10)
    VIDEO_FORMATS: tuple = ("mp4", "gif")
    THUMBNAIL_SIZE: tuple = (320, 320)
    MIN_PROMPT_LENGTH: int = 3

    DEFAULT_BEDROCK_MODEL_ID: str = "anthropic.claude-3-5-sonnet-20240620-v1:0"

    def __init__(
        self,
        base_dir: Optional[Path] = None,
        output_dir: Optional[Path] = None,
        font_path: Optional[Path] = None,
        public_base_url: Optional[str] = None,
        deadline_seconds: Optional[float] = None,
        storage_backend: Optional[str] = None,
        text_backend: Optional[str] = None,
        video_format: Optional[str] = None,
        simulated_latency_seconds: Optional[float] = None,
    ):
        """
        Initialize configuration.

        Args:
            base_dir: Base directory for relative paths. Defaults to current working directory.
            output_dir: Path to output folder. Overrides OUTPUT_DIR env var.
            font_path: Path to font file. Overrides FONT_PATH env var.
            public_base_url: Public URL base for asset URLs. Overrides PUBLIC_BASE_URL env var.
            deadline_seconds: Shared generation budget. Overrides GENERATION_DEADLINE_SECONDS.
            storage_backend: "local" or "s3". Overrides STORAGE_BACKEND env var.
            text_backend: "simulated" or "bedrock". Overrides TEXT_BACKEND env var.
            video_format: "mp4" or "gif". Overrides VIDEO_FORMAT env var.
            simulated_latency_seconds: Artificial delay of the simulated endpoints.
        """
        self.base_dir = base_dir or Path(os.getcwd())

        self.output_dir = self._resolve_path(
            output_dir,
            os.environ.get("OUTPUT_DIR"),
            self.base_dir / "output"
        )

        self.font_path = self._resolve_path(
            font_path,
            os.environ.get("FONT_PATH"),
            self.base_dir / "fonts" / "tiktok-sans-scm.ttf"
        )

        # Public URL for API responses
        self.public_base_url = (
            public_base_url
            or os.environ.get("PUBLIC_BASE_URL")
            or "http://localhost:8000"
        )
        # Ensure no trailing slash
        self.public_base_url = self.public_base_url.rstrip("/")

        self.deadline_seconds = self._resolve_number(
            deadline_seconds, "GENERATION_DEADLINE_SECONDS", 30.0, float
        )
        self.retry_max_attempts = self._resolve_number(
            None, "RETRY_MAX_ATTEMPTS", 3, int
        )
        self.retry_backoff_base_ms = self._resolve_number(
            None, "RETRY_BACKOFF_BASE_MS", 100, int
        )
        self.presigned_url_ttl_seconds = self._resolve_number(
            None, "PRESIGNED_URL_TTL_SECONDS", 3600, int
        )
        self.simulated_latency_seconds = self._resolve_number(
            simulated_latency_seconds, "SIMULATED_LATENCY_SECONDS", 0.0, float
        )

        self.storage_backend = (
            storage_backend or os.environ.get("STORAGE_BACKEND") or "local"
        ).lower()
        self.text_backend = (
            text_backend or os.environ.get("TEXT_BACKEND") or "simulated"
        ).lower()
        self.video_format = (
            video_format or os.environ.get("VIDEO_FORMAT") or "mp4"
        ).lower()

        # S3/R2 object storage
        self.s3_bucket = os.environ.get("S3_BUCKET")
        self.s3_endpoint = os.environ.get("S3_ENDPOINT")
        self.s3_region = os.environ.get("S3_REGION", "auto")
        self.s3_access_key = os.environ.get("S3_ACCESS_KEY")
        self.s3_secret_key = os.environ.get("S3_SECRET_KEY")

        # AWS Bedrock text generation
        self.bedrock_model_id = (
            os.environ.get("BEDROCK_MODEL_ID") or self.DEFAULT_BEDROCK_MODEL_ID
        )
        self.bedrock_region = os.environ.get("BEDROCK_REGION", "us-east-1")

    def _resolve_path(
        self,
        explicit: Optional[Path],
        env_value: Optional[str],
        default: Path
    ) -> Path:
        """Resolve a path from explicit value, env var, or default."""
        if explicit is not None:
            return Path(explicit)
        if env_value is not None:
            return Path(env_value)
        return default

    def _resolve_number(self, explicit, env_name: str, default, cast):
        """Resolve a number from explicit value, env var, or default."""
        if explicit is not None:
            return cast(explicit)
        env_value = os.environ.get(env_name)
        if env_value is None:
            return default
        try:
            return cast(env_value)
        except ValueError:
            raise ConfigError(f"{env_name} must be a number, got '{env_value}'")

    def get_platform(self, platform: str) -> Dict[str, Any]:
        """
        Get the constraints for a target platform.

        Args:
            platform: Platform tag (e.g., "instagram", "linkedin")

        Returns:
            Platform constraint dict

        Raises:
            ConfigError: If platform is not known
        """
        if platform not in self.PLATFORMS:
            available = ", ".join(self.PLATFORMS.keys())
            raise ConfigError(
                f"Unknown platform '{platform}'. Available: {available}"
            )
        return self.PLATFORMS[platform]

    def validate(self) -> None:
        """
        Validate settings that cannot be checked at construction.

        Raises:
            ConfigError: If any setting is invalid
        """
        errors = []

        if self.deadline_seconds <= 0:
            errors.append("GENERATION_DEADLINE_SECONDS must be positive")

        if self.retry_max_attempts < 1:
            errors.append("RETRY_MAX_ATTEMPTS must be at least 1")

        if self.storage_backend not in ("local", "s3"):
            errors.append(f"Unknown STORAGE_BACKEND '{self.storage_backend}'")

        if self.storage_backend == "s3" and not self.s3_bucket:
            errors.append("STORAGE_BACKEND=s3 requires S3_BUCKET")

        if self.text_backend not in ("simulated", "bedrock"):
            errors.append(f"Unknown TEXT_BACKEND '{self.text_backend}'")

        if self.video_format not in self.VIDEO_FORMATS:
            errors.append(f"Unsupported VIDEO_FORMAT '{self.video_format}'")

        if errors:
            raise ConfigError("\n".join(errors))

    def ensure_output_dir(self) -> None:
        """Create output directory if it doesn't exist."""
        self.output_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def available_platforms(cls) -> List[str]:
        """Return list of supported platform tags."""
        return list(cls.PLATFORMS.keys())


# Global config instance (lazy-loaded)
_config: Optional[Config] = None


def get_config() -> Config:
    """
    Get the global Config instance.

    Creates a new instance on first call, reuses it thereafter.
    For testing, you can set _config directly or use init_config().
    """
    global _config
    if _config is None:
        _config = Config()
    return _config


def init_config(**kwargs) -> Config:
    """
    Initialize and return a new global Config instance.

    Use this to override the default configuration.
    """
    global _config
    _config = Config(**kwargs)
    return _config
