"""
Configuration management for the crawler.
"""

import yaml
import logging
from pathlib import Path
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field, fields


@dataclass
class CrawlerConfig:
    """Configuration for crawler behavior."""
    include: List[str] = field(default_factory=list)
    exclude: List[str] = field(default_factory=list)
    concurrency: int = 20
    timeout: float = 10.0
    response_header_timeout: float = 10.0
    delay: float = 0.0
    delay_jitter: float = 0.0
    user_agent: str = "recrawl"
    proxy: Optional[str] = None
    resolvers: List[str] = field(default_factory=list)
    verify_tls: bool = False
    idle_timeout: float = 7.0
    max_redirects: int = 10
    similarity_threshold: int = 97


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    verbose: int = 0
    silence: bool = False
    file: Optional[str] = None
    format: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    prometheus_port: int = 8000
    metrics_enabled: bool = False


@dataclass
class Config:
    """Main configuration class."""
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    @classmethod
    def default(cls) -> 'Config':
        """Configuration with every value at its default."""
        return cls()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """Build a configuration from parsed YAML, defaulting missing keys."""
        sections = {
            'crawler': CrawlerConfig,
            'logging': LoggingConfig,
            'monitoring': MonitoringConfig,
        }

        unknown = set(data) - set(sections)
        if unknown:
            raise ValueError(f"Unknown configuration sections: {sorted(unknown)}")

        parsed = {}
        for name, section_cls in sections.items():
            values = data.get(name) or {}
            if not isinstance(values, dict):
                raise ValueError(f"Configuration section '{name}' must be a mapping")

            known = {f.name for f in fields(section_cls)}
            unknown = set(values) - known
            if unknown:
                raise ValueError(f"Unknown keys in '{name}': {sorted(unknown)}")

            parsed[name] = section_cls(**values)

        return cls(**parsed)


def validate_config(config: Config):
    """Validate configuration values."""
    crawler = config.crawler

    if crawler.concurrency < 1:
        raise ValueError("concurrency must be at least 1")

    if crawler.timeout <= 0:
        raise ValueError("timeout must be positive")

    if crawler.response_header_timeout <= 0:
        raise ValueError("response_header_timeout must be positive")

    if crawler.delay < 0 or crawler.delay_jitter < 0:
        raise ValueError("delay and delay_jitter must be non-negative")

    if crawler.idle_timeout <= 0:
        raise ValueError("idle_timeout must be positive")

    if crawler.max_redirects < 1:
        raise ValueError("max_redirects must be at least 1")

    if not 0 <= crawler.similarity_threshold <= 100:
        raise ValueError("similarity_threshold must be between 0 and 100")

    if not crawler.user_agent:
        raise ValueError("user_agent must not be empty")

    if config.logging.verbose < 0:
        raise ValueError("verbose must be non-negative")


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r') as file:
            try:
                config_data = yaml.safe_load(file) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {self.config_path}: {e}") from e

        if not isinstance(config_data, dict):
            raise ValueError(f"Top level of {self.config_path} must be a mapping")

        self._config = Config.from_dict(config_data)
        self._validate_config()
        return self._config

    def _validate_config(self):
        """Validate configuration values."""
        if not self._config:
            raise ValueError("Configuration not loaded")

        validate_config(self._config)
        logging.getLogger(__name__).debug("Configuration validation passed")

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ValueError("Configuration not loaded. Call load_config() first.")
        return self._config


# Global config manager instance
config_manager = ConfigManager()


def get_config() -> Config:
    """Get the global configuration instance."""
    return config_manager.config


def load_config(config_path: str = "config.yaml") -> Config:
    """Load configuration from file."""
    global config_manager
    config_manager = ConfigManager(config_path)
    return config_manager.load_config()
