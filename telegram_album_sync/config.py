"""
Configuration management using dataclasses for type safety and validation.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any
import yaml
import json
import os
import jsonschema
import logging

from telegram_album_sync.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CLOUD_API_URL = "https://api.telegram.org"
DEFAULT_PROXY_API_URL = "http://localhost:8081"
DEFAULT_MAX_UPLOAD_SIZE = 50 * 1024 * 1024  # 50 MB cloud Bot API limit

GROUP_ROUTING_POLICIES = {"proxy", "size"}


@dataclass
class TelegramConfig:
    """Messaging backend configuration."""
    bot_token: Optional[str] = None
    chat_id: Optional[str] = None
    info_bot_token: Optional[str] = None
    cloud_api_url: str = DEFAULT_CLOUD_API_URL
    proxy_api_url: str = DEFAULT_PROXY_API_URL
    connect_timeout: float = 15.0
    read_timeout: float = 90.0
    video_timeout: float = 180.0
    large_file_timeout: float = 300.0

    def __post_init__(self):
        """Apply environment variable fallbacks and normalize URLs."""
        if not self.bot_token:
            self.bot_token = os.getenv('BOT_TOKEN')
        if not self.chat_id:
            self.chat_id = os.getenv('CHAT_ID')
        if not self.info_bot_token:
            self.info_bot_token = os.getenv('INFO_BOT_TOKEN')

        if self.chat_id is not None:
            self.chat_id = str(self.chat_id)

        self.cloud_api_url = self.cloud_api_url.rstrip('/')
        self.proxy_api_url = self.proxy_api_url.rstrip('/')

        if min(self.connect_timeout, self.read_timeout, self.video_timeout, self.large_file_timeout) <= 0:
            raise ValueError("timeouts must be positive")


@dataclass
class ProcessingConfig:
    """Conversion, batching and upload configuration."""
    state_dir: str = "state"
    scratch_dir: str = "scratch"
    batch_size: int = 10
    max_upload_size: int = DEFAULT_MAX_UPLOAD_SIZE
    parallel_jobs: int = 3
    group_routing: str = "proxy"  # 'proxy' or 'size'
    max_dimension: int = 2048
    jpeg_quality: int = 95
    retry_attempts: int = 3
    retry_backoff: float = 3.0
    batch_pause: float = 2.0
    max_background_jobs: int = 5
    min_available_memory_mb: int = 150
    cleanup_scratch: bool = False
    show_progress: bool = True

    def __post_init__(self):
        """Validate processing configuration."""
        if not self.state_dir:
            raise ValueError("state_dir is required")
        if not self.scratch_dir:
            raise ValueError("scratch_dir is required")
        if not 1 <= self.batch_size <= 10:
            raise ValueError("batch_size must be between 1 and 10 (media group limit)")
        if self.max_upload_size < 1:
            raise ValueError("max_upload_size must be positive")
        if self.parallel_jobs < 1:
            raise ValueError("parallel_jobs must be at least 1")
        if self.group_routing not in GROUP_ROUTING_POLICIES:
            raise ValueError(
                f"Invalid group_routing: {self.group_routing}. "
                f"Must be one of {sorted(GROUP_ROUTING_POLICIES)}"
            )
        if not 1 <= self.jpeg_quality <= 100:
            raise ValueError("jpeg_quality must be between 1 and 100")
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        if self.max_background_jobs < 1:
            raise ValueError("max_background_jobs must be at least 1")

    @property
    def state_path(self) -> Path:
        """Get state directory as Path object."""
        return Path(self.state_dir)

    @property
    def scratch_path(self) -> Path:
        """Get scratch root directory as Path object."""
        return Path(self.scratch_dir)


@dataclass
class LibraryConfig:
    """iPhone media library location."""
    mount_path: str = "/mnt/iphone"
    db_path: Optional[str] = None

    @property
    def database_path(self) -> Path:
        """Path to Photos.sqlite, defaulting to the standard location under the mount."""
        if self.db_path:
            return Path(self.db_path)
        return Path(self.mount_path) / 'PhotoData' / 'Photos.sqlite'


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    log_dir: str = "logs"
    json: bool = False

    def __post_init__(self):
        """Validate logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.level.upper() not in valid_levels:
            raise ValueError(f"Invalid logging level: {self.level}. Must be one of {valid_levels}")


@dataclass
class SyncConfig:
    """Main sync configuration."""
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    library: LibraryConfig = field(default_factory=LibraryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, config_path: str, validate: bool = True) -> 'SyncConfig':
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to YAML configuration file
            validate: Whether to validate against JSON schema

        Returns:
            SyncConfig instance

        Raises:
            ConfigurationError: If the file cannot be read or is invalid
        """
        try:
            with open(config_path, 'r') as f:
                config_dict = yaml.safe_load(f)
        except (yaml.YAMLError, IOError, OSError) as e:
            raise ConfigurationError(f"Failed to load configuration file '{config_path}': {e}") from e

        if config_dict is None:
            raise ConfigurationError(f"Configuration file '{config_path}' is empty or invalid")

        if validate:
            cls._validate_schema(config_dict)

        config_dict = cls._apply_env_overrides(config_dict)

        return cls.from_dict(config_dict)

    @classmethod
    def from_env(cls) -> 'SyncConfig':
        """Build configuration from defaults plus environment variables only."""
        return cls.from_dict(cls._apply_env_overrides({}))

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'SyncConfig':
        """
        Create configuration from dictionary.

        Args:
            config_dict: Configuration dictionary

        Returns:
            SyncConfig instance
        """
        try:
            return cls(
                telegram=TelegramConfig(**config_dict.get('telegram', {})),
                processing=ProcessingConfig(**config_dict.get('processing', {})),
                library=LibraryConfig(**config_dict.get('library', {})),
                logging=LoggingConfig(**config_dict.get('logging', {})),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def validate_credentials(self) -> None:
        """
        Ensure the values required to talk to the backend are present.

        Raises:
            ConfigurationError: If bot token or chat id is missing
        """
        missing = []
        if not self.telegram.bot_token:
            missing.append('BOT_TOKEN')
        if not self.telegram.chat_id:
            missing.append('CHAT_ID')
        if missing:
            raise ConfigurationError(
                f"Missing required settings: {', '.join(missing)}. "
                f"Set them in the config file or as environment variables."
            )

    @staticmethod
    def _validate_schema(config_dict: Dict[str, Any]) -> None:
        """Validate configuration against JSON schema."""
        try:
            schema_path = Path(__file__).parent / 'config_schema.json'
            if schema_path.exists():
                with open(schema_path, 'r') as f:
                    schema = json.load(f)

                jsonschema.validate(instance=config_dict, schema=schema)
                logger.debug("Configuration validated against schema")
        except jsonschema.ValidationError as e:
            raise ConfigurationError(
                f"Configuration validation failed: {e.message}\n"
                f"Path: {'.'.join(str(p) for p in e.path)}"
            ) from e
        except (IOError, OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not load configuration schema for validation: {e}")

    @staticmethod
    def _apply_env_overrides(config_dict: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration dictionary."""
        config = json.loads(json.dumps(config_dict))

        telegram = config.setdefault('telegram', {})
        processing = config.setdefault('processing', {})
        logging_section = config.setdefault('logging', {})

        string_overrides = [
            ('BOT_TOKEN', telegram, 'bot_token'),
            ('CHAT_ID', telegram, 'chat_id'),
            ('INFO_BOT_TOKEN', telegram, 'info_bot_token'),
            ('API_SERVER', telegram, 'proxy_api_url'),
            ('TELEGRAM_API', telegram, 'cloud_api_url'),
            ('STATE_DIR', processing, 'state_dir'),
            ('SCRATCH_DIR', processing, 'scratch_dir'),
            ('LOG_DIR', logging_section, 'log_dir'),
        ]
        for env_name, section, key in string_overrides:
            value = os.getenv(env_name)
            if value:
                section[key] = value

        int_overrides = [
            ('BATCH_SIZE', 'batch_size'),
            ('MAX_TELEGRAM_SIZE', 'max_upload_size'),
            ('PARALLEL_JOBS', 'parallel_jobs'),
        ]
        for env_name, key in int_overrides:
            value = os.getenv(env_name)
            if value:
                try:
                    processing[key] = int(value)
                except ValueError as e:
                    raise ConfigurationError(f"{env_name} must be an integer, got: {value!r}") from e

        return config
