"""Tests for configuration loading."""
import pytest
import yaml

from gqlexporter.config import Config, load_config


def write_config(tmp_path, raw):
    path = tmp_path / "exporter.yaml"
    path.write_text(yaml.safe_dump(raw))
    return str(path)


def test_defaults_without_file():
    config = load_config(None, environ={})
    assert isinstance(config, Config)
    assert config.server.bind_address == "127.0.0.1"
    assert config.server.port == 9199
    assert config.cache.expiration_minutes == 60
    assert config.cache.expiration_s == 3600
    assert config.graphql.timeout_s == 20
    assert not config.server.tls_enabled


def test_yaml_file(tmp_path):
    path = write_config(tmp_path, {
        "global": {"log_level": "DEBUG"},
        "graphql": {"url": "https://api.example/graphql", "queries_dir": "/etc/queries"},
        "cache": {"expiration_minutes": 5, "directory": "/var/cache/gql"},
    })

    config = load_config(path, environ={})

    assert config.global_.log_level == "DEBUG"
    assert config.graphql.url == "https://api.example/graphql"
    assert config.cache.directory == "/var/cache/gql"
    assert config.cache.expiration_s == 300


def test_environment_overrides_file(tmp_path):
    path = write_config(tmp_path, {"cache": {"expiration_minutes": 5}})

    config = load_config(path, environ={
        "EXPORTER_LISTEN_ADDR": "0.0.0.0:9300",
        "EXPORTER_GRAPHQL_URL": "https://env.example/graphql",
        "EXPORTER_GRAPHQL_AUTH": "Bearer env",
        "EXPORTER_CACHE_MINUTES": "15",
        "EXPORTER_TLS_CERT_FILE": "/tls/cert.pem",
        "EXPORTER_TLS_KEY_FILE": "/tls/key.pem",
        "LOG_LEVEL": "WARNING",
    })

    assert config.server.bind_address == "0.0.0.0"
    assert config.server.port == 9300
    assert config.graphql.url == "https://env.example/graphql"
    assert config.graphql.auth == "Bearer env"
    assert config.cache.expiration_minutes == 15
    assert config.server.tls_enabled
    assert config.global_.log_level == "WARNING"


def test_invalid_cache_minutes_keeps_default():
    config = load_config(None, environ={"EXPORTER_CACHE_MINUTES": "soon"})
    assert config.cache.expiration_minutes == 60


def test_tls_requires_cert_and_key():
    with pytest.raises(ValueError):
        load_config(None, environ={"EXPORTER_TLS_CERT_FILE": "/tls/cert.pem"})


@pytest.mark.parametrize("raw", [
    {"server": {"port": 0}},
    {"cache": {"expiration_minutes": -1}},
    {"graphql": {"timeout_s": 0}},
    {"global": {"log_format": "xml"}},
])
def test_invalid_values(tmp_path, raw):
    with pytest.raises(ValueError):
        load_config(write_config(tmp_path, raw), environ={})


def test_missing_file():
    with pytest.raises(FileNotFoundError):
        load_config("/nonexistent/exporter.yaml", environ={})
