from pathlib import Path

import pytest

from config import AppConfig, SpotifyConfig, get_config, reset_config


ENV_KEYS = (
    "CLIENT_ID",
    "CLIENT_SECRET",
    "REDIRECT_URI",
    "TOKEN_PATH",
    "SPOTIFY_SCOPES",
    "LOGIN_TIMEOUT",
    "LOG_LEVEL",
    "REQUEST_TIMEOUT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # setenv first so values loaded from .env files are undone afterwards
    for key in ENV_KEYS:
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def env_file(tmp_path):
    path = tmp_path / ".env"
    path.write_text(
        "CLIENT_ID=abc\n"
        "CLIENT_SECRET=shh\n"
        "REDIRECT_URI=http://127.0.0.1:9999/cb/\n"
        f"TOKEN_PATH={tmp_path / 'tokens.json'}\n"
        "LOGIN_TIMEOUT=42\n"
        "REQUEST_TIMEOUT=3.5\n"
        "LOG_LEVEL=DEBUG\n"
    )
    return path


class TestSpotifyConfig:
    def test_defaults(self, monkeypatch):
        monkeypatch.setenv("CLIENT_ID", "abc")
        monkeypatch.setenv("CLIENT_SECRET", "shh")

        config = SpotifyConfig.from_env()

        assert config.redirect_uri == "http://localhost:8888/callback/"
        assert config.token_storage_path == Path("data/.spotify_tokens.json")
        assert config.login_timeout == 300.0
        assert "user-read-playback-state" in config.scopes
        config.validate()

    @pytest.mark.parametrize("missing", ["CLIENT_ID", "CLIENT_SECRET"])
    def test_missing_credentials(self, monkeypatch, missing):
        monkeypatch.setenv("CLIENT_ID", "abc")
        monkeypatch.setenv("CLIENT_SECRET", "shh")
        monkeypatch.delenv(missing)

        with pytest.raises(ValueError, match=missing):
            SpotifyConfig.from_env().validate()

    @pytest.mark.parametrize(
        "redirect_uri",
        ["https://localhost:8888/callback/", "localhost:8888/callback/", "http:///callback/"],
    )
    def test_redirect_must_be_plain_http(self, spotify_config, redirect_uri):
        spotify_config.redirect_uri = redirect_uri
        with pytest.raises(ValueError, match="REDIRECT_URI"):
            spotify_config.validate()

    def test_timeout_must_be_positive(self, spotify_config):
        spotify_config.login_timeout = 0
        with pytest.raises(ValueError, match="LOGIN_TIMEOUT"):
            spotify_config.validate()


class TestAppConfig:
    def test_load_from_env_file(self, env_file, tmp_path):
        config = AppConfig.load(str(env_file))

        assert config.spotify.client_id == "abc"
        assert config.spotify.redirect_uri == "http://127.0.0.1:9999/cb/"
        assert config.spotify.token_storage_path == tmp_path / "tokens.json"
        assert config.spotify.login_timeout == 42.0
        assert config.request_timeout == 3.5
        assert config.log_level == "DEBUG"

    def test_environment_wins_over_env_file(self, env_file, monkeypatch):
        monkeypatch.setenv("CLIENT_ID", "from-env")
        assert AppConfig.load(str(env_file)).spotify.client_id == "from-env"

    def test_invalid_configuration(self, tmp_path):
        empty = tmp_path / ".env"
        empty.write_text("")
        with pytest.raises(ValueError):
            AppConfig.load(str(empty))

    def test_get_config_is_cached(self, env_file):
        first = get_config(str(env_file))
        assert get_config() is first
        reset_config()
        assert get_config(str(env_file)) is not first
