import pytest

from clipsync_relay.config import RedisConfig, RelayConfig

ENV_VARS = (
    "REDIS_URI", "REDIS_HOST", "REDIS_PORT", "REDIS_DB", "REDIS_PASSWORD", "REDIS_SSL",
    "REDIS_KEY_PREFIX", "HISTORY_DEFAULT_LIMIT", "HISTORY_MAX_LIMIT", "MAX_CONTENT_BYTES",
    "LIVE_POLL_INTERVAL", "API_HOST", "API_PORT",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # keep a developer's .env out of the picture
    monkeypatch.chdir(tmp_path)
    return tmp_path


def test_redis_defaults(clean_env):
    config = RedisConfig.from_env()
    assert config == RedisConfig()
    assert config.host == "localhost"
    assert config.port == 6379
    assert config.key_prefix == "clipsync"


def test_redis_from_variables(clean_env, monkeypatch):
    monkeypatch.setenv("REDIS_HOST", "cache.internal")
    monkeypatch.setenv("REDIS_PORT", "6380")
    monkeypatch.setenv("REDIS_DB", "2")
    monkeypatch.setenv("REDIS_PASSWORD", "hunter2")
    monkeypatch.setenv("REDIS_KEY_PREFIX", "relay")

    config = RedisConfig.from_env()

    assert config.host == "cache.internal"
    assert config.port == 6380
    assert config.db == 2
    assert config.password == "hunter2"
    assert config.key_prefix == "relay"
    assert config.ssl is False


def test_redis_uri_wins(clean_env, monkeypatch):
    monkeypatch.setenv("REDIS_HOST", "ignored")
    monkeypatch.setenv("REDIS_URI", "rediss://:pw@example.com:7000/3")

    config = RedisConfig.from_env()

    assert config.host == "example.com"
    assert config.port == 7000
    assert config.db == 3
    assert config.password == "pw"
    assert config.ssl is True


def test_redis_uri_rejects_other_schemes():
    with pytest.raises(ValueError):
        RedisConfig.from_uri("http://example.com")


def test_env_file_is_loaded(clean_env, monkeypatch):
    env_file = clean_env / ".env"
    env_file.write_text("REDIS_HOST=from-dotenv\nAPI_PORT=4000\n")

    try:
        assert RedisConfig.from_env(env_path=env_file).host == "from-dotenv"
        assert RelayConfig.from_env(env_path=env_file).api_port == 4000
    finally:
        monkeypatch.delenv("REDIS_HOST", raising=False)
        monkeypatch.delenv("API_PORT", raising=False)


def test_relay_defaults(clean_env):
    config = RelayConfig.from_env()
    assert config.history_default_limit == 50
    assert config.history_max_limit == 500
    assert config.max_content_bytes == 1_048_576
    assert config.api_port == 3001


def test_relay_limits_are_sanitised(clean_env, monkeypatch):
    monkeypatch.setenv("HISTORY_MAX_LIMIT", "20")
    monkeypatch.setenv("HISTORY_DEFAULT_LIMIT", "80")
    monkeypatch.setenv("MAX_CONTENT_BYTES", "nonsense")
    monkeypatch.setenv("LIVE_POLL_INTERVAL", "0")

    config = RelayConfig.from_env()

    assert config.history_max_limit == 20
    assert config.history_default_limit == 20
    assert config.max_content_bytes == 1_048_576
    assert config.live_poll_interval == 0.05


def test_request_limit_leaves_room_for_escaped_content():
    config = RelayConfig(max_content_bytes=1_000)
    assert config.max_request_bytes > 6 * 1_000
    assert RelayConfig().max_request_bytes < 8 * 1_048_576
