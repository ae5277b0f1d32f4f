"""
Configuration management for the transport client.

This module holds the immutable client and pool settings, a validating
factory for them, and loading/saving of the YAML configuration file.
"""

import yaml
from dataclasses import dataclass, field, fields
from typing import Optional
from pathlib import Path
from urllib.parse import urlsplit

from requests.models import DEFAULT_REDIRECT_LIMIT


DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; Aerodrome/1.0; +http://www.sheepguru.com)"
DEFAULT_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
DEFAULT_ACCEPT_LANGUAGE = "en-US,en;q=0.5"
DEFAULT_MAX_DOWNLOAD_SIZE = 1024 * 2048  # 2 MiB


@dataclass(frozen=True)
class HostLock:
    """Scheme, host, port and base path that relative URLs are rewritten onto."""
    scheme: str
    hostname: str
    port: Optional[int] = None
    base_path: str = ""

    @property
    def netloc(self) -> str:
        if self.port is None:
            return self.hostname
        return f"{self.hostname}:{self.port}"

    @classmethod
    def parse(cls, host: str) -> "HostLock":
        parts = urlsplit(host.strip())
        if parts.scheme not in ('http', 'https') or not parts.hostname:
            raise ValueError(f"Locked host must be an absolute http(s) URL: {host}")
        return cls(
            scheme=parts.scheme,
            hostname=parts.hostname,
            port=parts.port,
            base_path=parts.path.rstrip('/')
        )


@dataclass(frozen=True)
class ClientConfig:
    """Client settings. Created once at startup and shared by reference."""
    user_agent: str = DEFAULT_USER_AGENT
    read_timeout: float = 5.0  # seconds
    connect_timeout: float = 10.0  # seconds
    accept: str = DEFAULT_ACCEPT
    accept_language: str = DEFAULT_ACCEPT_LANGUAGE
    allow_gzip: bool = False
    allow_untrusted_ssl: bool = False
    host: str = ""
    lock_host: bool = True
    crawl_delay_ms: int = 1000
    max_download_size: int = DEFAULT_MAX_DOWNLOAD_SIZE  # negative means unbounded
    max_redirects: int = DEFAULT_REDIRECT_LIMIT
    follow_redirects: bool = True
    respect_robots_txt: bool = True
    connect_retries: int = 0

    @property
    def host_lock(self) -> Optional[HostLock]:
        if not self.lock_host or not self.host:
            return None
        return HostLock.parse(self.host)

    @property
    def timeout(self) -> tuple:
        """(connect, read) pair in the form requests expects"""
        return (self.connect_timeout, self.read_timeout)


@dataclass(frozen=True)
class PoolSettings:
    """Connection pool bounds and reaper timing."""
    max_total: int = 200
    max_per_route: int = 20
    acquire_timeout: float = 10.0  # seconds
    idle_timeout: float = 30.0  # seconds
    reaper_interval: float = 5.0  # seconds


@dataclass(frozen=True)
class TransportConfig:
    """Main configuration object containing all settings."""
    client: ClientConfig = field(default_factory=ClientConfig)
    pool: PoolSettings = field(default_factory=PoolSettings)


def create_client_config(**kwargs) -> ClientConfig:
    """
    Validating factory for ClientConfig.

    Args:
        **kwargs: Any ClientConfig field

    Returns:
        ClientConfig with the given values and defaults for the rest

    Raises:
        ValueError: If an unknown key or an invalid value is supplied
    """
    known = {f.name for f in fields(ClientConfig)}
    unknown = sorted(set(kwargs) - known)
    if unknown:
        raise ValueError(f"Unknown client settings: {', '.join(unknown)}")

    config = ClientConfig(**kwargs)

    if not config.user_agent or not config.user_agent.strip():
        raise ValueError("user_agent cannot be empty")
    if config.read_timeout <= 0:
        raise ValueError("read_timeout must be greater than 0")
    if config.connect_timeout <= 0:
        raise ValueError("connect_timeout must be greater than 0")
    if config.crawl_delay_ms < 0:
        raise ValueError("crawl_delay_ms cannot be negative")
    if config.max_redirects < 0:
        raise ValueError("max_redirects cannot be negative")
    if config.connect_retries < 0:
        raise ValueError("connect_retries cannot be negative")
    if config.accept is None or config.accept_language is None:
        raise ValueError("accept and accept_language cannot be null")
    if config.host:
        # Raises ValueError for anything that is not an absolute http(s) URL
        HostLock.parse(config.host)

    return config


def create_pool_settings(**kwargs) -> PoolSettings:
    """Validating factory for PoolSettings."""
    known = {f.name for f in fields(PoolSettings)}
    unknown = sorted(set(kwargs) - known)
    if unknown:
        raise ValueError(f"Unknown pool settings: {', '.join(unknown)}")

    settings = PoolSettings(**kwargs)

    if settings.max_total < 1:
        raise ValueError("max_total must be at least 1")
    if settings.max_per_route < 1:
        raise ValueError("max_per_route must be at least 1")
    if settings.max_per_route > settings.max_total:
        raise ValueError("max_per_route cannot exceed max_total")
    if settings.acquire_timeout <= 0:
        raise ValueError("acquire_timeout must be greater than 0")
    if settings.idle_timeout <= 0 or settings.reaper_interval <= 0:
        raise ValueError("idle_timeout and reaper_interval must be greater than 0")

    return settings


def load_config(config_path: str) -> TransportConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        TransportConfig object with loaded configuration

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML parsing fails
        ValueError: If configuration is invalid
    """
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise yaml.YAMLError(f"Failed to parse YAML configuration: {e}")

    if not data:
        raise ValueError("Configuration file is empty")

    if not isinstance(data, dict):
        raise ValueError("Configuration must be a mapping with 'client' and/or 'pool' sections")

    client_data = data.get('client') or {}
    pool_data = data.get('pool') or {}

    if not isinstance(client_data, dict):
        raise ValueError("'client' section must be a dictionary")
    if not isinstance(pool_data, dict):
        raise ValueError("'pool' section must be a dictionary")

    return TransportConfig(
        client=create_client_config(**client_data),
        pool=create_pool_settings(**pool_data)
    )


def save_config_to_yaml(config: TransportConfig, output_path: str) -> None:
    """
    Save configuration to YAML file.

    Args:
        config: TransportConfig object to save
        output_path: Path where to save the YAML file
    """
    config_dict = {
        'client': {f.name: getattr(config.client, f.name) for f in fields(ClientConfig)},
        'pool': {f.name: getattr(config.pool, f.name) for f in fields(PoolSettings)},
    }

    with open(output_path, 'w', encoding='utf-8') as f:
        yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False, indent=2)
