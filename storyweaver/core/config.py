"""
Storyweaver Configuration Management

Dataclass configuration loaded from JSON, with environment overrides.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .constants import AspectRatio, DEFAULT_STYLE, MAX_CHARACTER_REFERENCES, VOICE_POOL
from .env_loader import ensure_env_loaded
from .exceptions import ConfigurationError, InvalidConfigError
from .retry import RetryConfig

DEFAULT_CONFIG_PATH = Path("config/storyweaver_config.json")


@dataclass
class StorageConfig:
    """Where the record store keeps its collections."""
    data_dir: Path = field(default_factory=lambda: Path("data"))


@dataclass
class RetrySettings:
    """Rate-limit backoff for collaborator calls."""
    max_attempts: int = 3
    base_delay: float = 5.0
    max_delay: float = 30.0

    def to_retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
        )


@dataclass
class ProductionConfig:
    """Storyboard production defaults."""
    default_aspect_ratio: str = AspectRatio.LANDSCAPE.value
    default_style: str = DEFAULT_STYLE
    voice_pool: Tuple[str, ...] = VOICE_POOL
    max_character_references: int = MAX_CHARACTER_REFERENCES


@dataclass
class GeminiConfig:
    """Models and transport settings for the Gemini collaborators."""
    image_model: str = "gemini-3-pro-image-preview"
    video_model: str = "veo-3.1-fast-generate-preview"
    tts_model: str = "gemini-2.5-flash-preview-tts"
    timeout: float = 120.0
    poll_interval: float = 5.0


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: List[str] = field(
        default_factory=lambda: ["http://localhost:5173", "http://127.0.0.1:5173"]
    )
    rate_limit_enabled: bool = True


@dataclass
class StoryweaverConfig:
    """Main configuration class for Storyweaver."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    retry: RetrySettings = field(default_factory=RetrySettings)
    production: ProductionConfig = field(default_factory=ProductionConfig)
    gemini: GeminiConfig = field(default_factory=GeminiConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    log_level: str = "INFO"
    log_file: Optional[Path] = None

    def validate(self) -> None:
        """Raise InvalidConfigError for values the system cannot run with."""
        if self.retry.max_attempts < 1:
            raise InvalidConfigError("retry.max_attempts must be at least 1")
        if self.retry.base_delay < 0 or self.retry.max_delay < 0:
            raise InvalidConfigError("retry delays must not be negative")
        if not self.production.voice_pool:
            raise InvalidConfigError("production.voice_pool must not be empty")
        valid_ratios = {ratio.value for ratio in AspectRatio}
        if self.production.default_aspect_ratio not in valid_ratios:
            raise InvalidConfigError(
                f"Unsupported aspect ratio: {self.production.default_aspect_ratio}"
            )
        if self.gemini.poll_interval <= 0:
            raise InvalidConfigError("gemini.poll_interval must be positive")

    @classmethod
    def from_dict(cls, data: dict) -> 'StoryweaverConfig':
        """Create StoryweaverConfig from dictionary."""
        config = cls()

        config.log_level = data.get('log_level', config.log_level)
        if data.get('log_file'):
            config.log_file = Path(data['log_file'])

        if 'storage' in data:
            config.storage = StorageConfig(
                data_dir=Path(data['storage'].get('data_dir', 'data'))
            )

        if 'retry' in data:
            retry_data = data['retry']
            config.retry = RetrySettings(
                max_attempts=int(retry_data.get('max_attempts', 3)),
                base_delay=float(retry_data.get('base_delay', 5.0)),
                max_delay=float(retry_data.get('max_delay', 30.0)),
            )

        if 'production' in data:
            prod = data['production']
            config.production = ProductionConfig(
                default_aspect_ratio=prod.get('default_aspect_ratio', AspectRatio.LANDSCAPE.value),
                default_style=prod.get('default_style', DEFAULT_STYLE),
                voice_pool=tuple(prod.get('voice_pool', VOICE_POOL)),
                max_character_references=int(
                    prod.get('max_character_references', MAX_CHARACTER_REFERENCES)
                ),
            )

        if 'gemini' in data:
            config.gemini = GeminiConfig(**{
                key: value for key, value in data['gemini'].items()
                if key in GeminiConfig.__dataclass_fields__
            })

        if 'server' in data:
            config.server = ServerConfig(**{
                key: value for key, value in data['server'].items()
                if key in ServerConfig.__dataclass_fields__
            })

        return config

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['storage']['data_dir'] = str(self.storage.data_dir)
        data['production']['voice_pool'] = list(self.production.voice_pool)
        data['log_file'] = str(self.log_file) if self.log_file else None
        return data


def apply_env_overrides(config: StoryweaverConfig) -> StoryweaverConfig:
    """Apply STORYWEAVER_* environment variables on top of a loaded config."""
    ensure_env_loaded()

    data_dir = os.getenv("STORYWEAVER_DATA_DIR")
    if data_dir:
        config.storage.data_dir = Path(data_dir)

    log_level = os.getenv("STORYWEAVER_LOG_LEVEL")
    if log_level:
        config.log_level = log_level

    return config


def load_config(config_path: Optional[Path] = None) -> StoryweaverConfig:
    """
    Load configuration from JSON file.

    Args:
        config_path: Path to configuration file. If None, uses default.

    Returns:
        Loaded StoryweaverConfig instance (defaults when the file is missing)
    """
    config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if not config_path.exists():
        config = StoryweaverConfig()
    else:
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise InvalidConfigError(f"Invalid JSON in config file: {e}")
        except OSError as e:
            raise ConfigurationError(f"Failed to load config: {e}")
        config = StoryweaverConfig.from_dict(data)

    config = apply_env_overrides(config)
    config.validate()
    return config


def save_config(config: StoryweaverConfig, config_path: Path) -> None:
    """Write configuration to a JSON file."""
    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, 'w', encoding='utf-8') as f:
        json.dump(config.to_dict(), f, indent=2)
