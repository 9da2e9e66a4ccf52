"""Configuration models using Pydantic for validation."""
from typing import Optional, Literal
from pydantic import BaseModel, Field, field_validator, model_validator
import logging
import os

logger = logging.getLogger(__name__)


class ServerConfig(BaseModel):
    """HTTP listener configuration."""
    bind_address: str = "127.0.0.1"
    port: int = 9199
    tls_cert_file: Optional[str] = None
    tls_key_file: Optional[str] = None

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        if not 0 < v < 65536:
            raise ValueError(f"Port out of range: {v}")
        return v

    @model_validator(mode='after')
    def validate_tls_pair(self):
        """Certificate and key only make sense together."""
        if bool(self.tls_cert_file) != bool(self.tls_key_file):
            raise ValueError("tls_cert_file and tls_key_file must be set together")
        return self

    @property
    def tls_enabled(self) -> bool:
        return bool(self.tls_cert_file and self.tls_key_file)


class GraphQLConfig(BaseModel):
    """Upstream GraphQL API settings."""
    url: Optional[str] = None  # Default endpoint for named queries
    auth: Optional[str] = None  # Authorization header value for named queries
    timeout_s: float = 20.0
    queries_dir: str = "queries"

    @field_validator('timeout_s')
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("timeout_s must be positive")
        return v


class CacheConfig(BaseModel):
    """Response cache settings."""
    directory: str = "/tmp/query-caches"
    expiration_minutes: float = 60  # 0 disables caching

    @field_validator('expiration_minutes')
    @classmethod
    def validate_expiration(cls, v):
        if v < 0:
            raise ValueError("expiration_minutes must not be negative")
        return v

    @property
    def expiration_s(self) -> float:
        return self.expiration_minutes * 60


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"


class Config(BaseModel):
    """Root configuration model."""
    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    server: ServerConfig = Field(default_factory=ServerConfig)
    graphql: GraphQLConfig = Field(default_factory=GraphQLConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)

    model_config = {"populate_by_name": True}


def _set(raw_config: dict, section: str, key: str, value):
    raw_config.setdefault(section, {})
    if raw_config[section] is None:
        raw_config[section] = {}
    raw_config[section][key] = value


def apply_env_overrides(raw_config: dict, environ=None) -> dict:
    """Apply EXPORTER_* environment variables on top of file settings."""
    environ = os.environ if environ is None else environ

    if listen_addr := environ.get('EXPORTER_LISTEN_ADDR'):
        host, sep, port = listen_addr.rpartition(':')
        if not sep:
            raise ValueError(f"EXPORTER_LISTEN_ADDR must be host:port, got {listen_addr!r}")
        _set(raw_config, 'server', 'bind_address', host or "0.0.0.0")
        _set(raw_config, 'server', 'port', port)

    if cert := environ.get('EXPORTER_TLS_CERT_FILE'):
        _set(raw_config, 'server', 'tls_cert_file', cert)

    if key := environ.get('EXPORTER_TLS_KEY_FILE'):
        _set(raw_config, 'server', 'tls_key_file', key)

    if url := environ.get('EXPORTER_GRAPHQL_URL'):
        _set(raw_config, 'graphql', 'url', url)

    if auth := environ.get('EXPORTER_GRAPHQL_AUTH'):
        _set(raw_config, 'graphql', 'auth', auth)

    if minutes := environ.get('EXPORTER_CACHE_MINUTES'):
        try:
            _set(raw_config, 'cache', 'expiration_minutes', int(minutes))
        except ValueError:
            logger.warning(f"Invalid EXPORTER_CACHE_MINUTES={minutes!r}, keeping configured value")

    if cache_dir := environ.get('EXPORTER_CACHE_DIR'):
        _set(raw_config, 'cache', 'directory', cache_dir)

    if log_level := environ.get('LOG_LEVEL'):
        _set(raw_config, 'global', 'log_level', log_level)

    return raw_config


def load_config(config_path: Optional[str] = None, environ=None) -> Config:
    """Load and validate configuration from an optional YAML file plus environment."""
    import yaml

    raw_config = {}
    if config_path is not None:
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

    raw_config = apply_env_overrides(raw_config, environ)

    try:
        return Config(**raw_config)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")
