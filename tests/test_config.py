import pytest

from pocketbase_client.config import ClientSettings, ConfigurationError

PB_VARIABLES = [
    "PB_BASE_URL",
    "PB_TIMEOUT_SECONDS",
    "PB_CONNECT_TIMEOUT_SECONDS",
    "PB_RETRY_ATTEMPTS",
    "PB_RETRY_DELAY_MS",
    "PB_REALTIME_RECONNECT_BASE_MS",
    "PB_REALTIME_RECONNECT_MAX_MS",
    "PB_REALTIME_MAX_RECONNECT_ATTEMPTS",
    "PB_CACHE_MAX_SIZE",
    "PB_CACHE_TTL_SECONDS",
    "PB_TOKEN_CACHE_PATH",
    "PB_LOG_LEVEL",
    "PB_ENV_FILE",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in PB_VARIABLES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


def test_from_env_reads_values(clean_env, tmp_path):
    clean_env.setenv("PB_BASE_URL", "https://pb.example.com/ ")
    clean_env.setenv("PB_TIMEOUT_SECONDS", "12.5")
    clean_env.setenv("PB_RETRY_ATTEMPTS", "5")
    clean_env.setenv("PB_REALTIME_MAX_RECONNECT_ATTEMPTS", "4")
    clean_env.setenv("PB_TOKEN_CACHE_PATH", str(tmp_path / "token.bin"))
    clean_env.setenv("PB_LOG_LEVEL", "debug")

    settings = ClientSettings.from_env()

    assert settings.base_url == "https://pb.example.com"
    assert settings.timeout_seconds == 12.5
    assert settings.retry_attempts == 5
    assert settings.realtime_max_reconnect_attempts == 4
    assert settings.token_cache_path == str(tmp_path / "token.bin")
    assert settings.log_level == "DEBUG"
    assert settings.connect_timeout_seconds == 15.0


def test_env_file_fills_missing_variables(clean_env, tmp_path):
    env_file = tmp_path / "pb.env"
    env_file.write_text(
        "# local instance\nPB_BASE_URL='http://127.0.0.1:8090'\nPB_CACHE_MAX_SIZE=10\n",
        encoding="utf-8",
    )
    clean_env.setenv("PB_ENV_FILE", str(env_file))
    clean_env.setenv("PB_CACHE_MAX_SIZE", "20")

    settings = ClientSettings.from_env()

    assert settings.base_url == "http://127.0.0.1:8090"
    assert settings.cache_max_size == 20


def test_missing_base_url_is_rejected(clean_env):
    with pytest.raises(ConfigurationError, match="PB_BASE_URL"):
        ClientSettings.from_env()


@pytest.mark.parametrize(
    "overrides",
    [
        {"base_url": "pb.example.com"},
        {"timeout_seconds": 0},
        {"connect_timeout_seconds": -1},
        {"retry_attempts": -1},
        {"realtime_reconnect_base_ms": 0},
        {"realtime_reconnect_base_ms": 500, "realtime_reconnect_max_ms": 100},
        {"cache_max_size": 0},
        {"log_level": "VERBOSE"},
    ],
)
def test_invalid_settings_are_rejected(overrides):
    values = {"base_url": "http://pb.test", **overrides}

    with pytest.raises(ConfigurationError):
        ClientSettings(**values).validate()


def test_defaults_normalize_the_base_url():
    settings = ClientSettings.defaults("  http://pb.test/  ")

    assert settings.base_url == "http://pb.test"
    assert settings.retry_attempts == 3
    assert settings.token_cache_path.endswith("auth_token.bin")
