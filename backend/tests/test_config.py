"""
Tests for settings loading, the required-variable check and CORS origins.
"""

import pytest
from pydantic import ValidationError

from indiepub.config import REQUIRED_ENV, Settings, load_settings, missing_env, public_base
from indiepub.main import get_cors_origins

from conftest import FULL_ENV


class TestLoadSettings:
    """Test building Settings from an environment mapping."""

    def test_defaults_for_optional_values(self):
        settings = load_settings({})

        assert settings.github_branch == "main"
        assert settings.content_dir == "src/posts"
        assert settings.media_dir == "src/images"
        assert settings.posts_public_path == "/posts/"
        assert settings.media_public_path == "/images/"

    def test_required_values_are_read(self):
        settings = load_settings(FULL_ENV)

        assert settings.me == "https://example.com/"
        assert settings.github_user == "alice"
        assert settings.micropub_base == "https://blog.example.com"

    def test_whitespace_values_count_as_unset(self):
        env = dict(FULL_ENV, GITHUB_TOKEN="   ", GITHUB_BRANCH=" ")
        settings = load_settings(env)

        assert settings.github_token == ""
        assert settings.github_branch == "main"
        assert missing_env(settings) == ["GITHUB_TOKEN"]

    def test_settings_are_immutable(self):
        settings = load_settings(FULL_ENV)

        with pytest.raises(ValidationError):
            settings.me = "https://other.example/"


class TestMissingEnv:
    """Test the environment gate's list of missing variables."""

    def test_nothing_missing(self):
        assert missing_env(load_settings(FULL_ENV)) == []

    def test_everything_missing_in_declaration_order(self):
        assert missing_env(Settings()) == list(REQUIRED_ENV)
        assert missing_env(Settings()) == [
            "ME", "TOKEN_ENDPOINT", "GITHUB_TOKEN", "GITHUB_USER", "GITHUB_REPO", "MICROPUB_BASE",
        ]


class TestPublicBase:
    def test_prefers_micropub_base(self):
        settings = Settings(micropub_base="https://blog.example.com/")
        assert public_base(settings, "http://localhost:3000/api/micropub") == "https://blog.example.com"

    def test_falls_back_to_request_origin(self):
        assert public_base(Settings(), "http://localhost:3000/api/micropub?q=config") == "http://localhost:3000"


class TestCorsOrigins:
    """Test CORS origin list assembly."""

    def test_includes_dev_servers_and_public_site(self):
        origins = get_cors_origins(load_settings(FULL_ENV))

        assert origins[:2] == ["http://localhost:3000", "http://localhost:8080"]
        assert "https://blog.example.com" in origins

    def test_extra_origins_are_deduplicated(self):
        settings = Settings(cors_origins="https://quill.p3k.io, http://localhost:3000,https://quill.p3k.io")

        assert get_cors_origins(settings) == [
            "http://localhost:3000",
            "http://localhost:8080",
            "https://quill.p3k.io",
        ]
