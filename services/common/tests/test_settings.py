"""
Tests for the BaseSettings loader.
"""

from typing import List, Optional

import pytest

from services.common.settings import (
    AliasChoices,
    BaseSettings,
    Field,
    SettingsConfigDict,
)


class ExampleSettings(BaseSettings):
    db_url: str = Field(
        default="sqlite:///./example.sqlite3",
        validation_alias=AliasChoices("DB_URL_EXAMPLE", "DATABASE_URL"),
    )
    window_minutes: int = Field(default=60)
    tick_seconds: float = 1.0
    debug: bool = False
    origins: List[str] = Field(default=["http://localhost:3000"])
    limit: Optional[int] = None


class RequiredSettings(BaseSettings):
    api_key: str = Field(..., validation_alias="EXAMPLE_API_KEY")


class TestAliasChoices:
    def test_choices_are_kept_in_order(self):
        assert AliasChoices("A", "B").choices == ["A", "B"]

    def test_empty(self):
        assert AliasChoices().choices == []


class TestBaseSettings:
    ENV_NAMES = [
        "DB_URL_EXAMPLE",
        "DATABASE_URL",
        "WINDOW_MINUTES",
        "TICK_SECONDS",
        "DEBUG",
        "ORIGINS",
        "LIMIT",
        "EXAMPLE_API_KEY",
    ]

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in self.ENV_NAMES:
            monkeypatch.delenv(name, raising=False)
        self.monkeypatch = monkeypatch

    def test_defaults(self):
        settings = ExampleSettings()
        assert settings.db_url == "sqlite:///./example.sqlite3"
        assert settings.window_minutes == 60
        assert settings.debug is False
        assert settings.limit is None

    def test_kwargs_win_over_environment(self):
        self.monkeypatch.setenv("WINDOW_MINUTES", "15")
        assert ExampleSettings(window_minutes=30).window_minutes == 30

    def test_first_alias_wins(self):
        self.monkeypatch.setenv("DATABASE_URL", "sqlite:///b.db")
        assert ExampleSettings().db_url == "sqlite:///b.db"
        self.monkeypatch.setenv("DB_URL_EXAMPLE", "sqlite:///a.db")
        assert ExampleSettings().db_url == "sqlite:///a.db"

    def test_type_conversion(self):
        self.monkeypatch.setenv("WINDOW_MINUTES", "45")
        self.monkeypatch.setenv("TICK_SECONDS", "0.25")
        self.monkeypatch.setenv("DEBUG", "yes")
        self.monkeypatch.setenv("LIMIT", "7")
        settings = ExampleSettings()
        assert settings.window_minutes == 45
        assert settings.tick_seconds == 0.25
        assert settings.debug is True
        assert settings.limit == 7

    def test_list_conversion(self):
        self.monkeypatch.setenv("ORIGINS", "http://a, http://b")
        assert ExampleSettings().origins == ["http://a", "http://b"]
        self.monkeypatch.setenv("ORIGINS", '["http://c"]')
        assert ExampleSettings().origins == ["http://c"]

    def test_required_field(self):
        with pytest.raises(ValueError, match="api_key"):
            RequiredSettings()
        self.monkeypatch.setenv("EXAMPLE_API_KEY", "secret")
        assert RequiredSettings().api_key == "secret"

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text(
            "# local overrides\nWINDOW_MINUTES=20\nDB_URL_EXAMPLE='sqlite:///env.db'\n"
        )

        class FileSettings(ExampleSettings):
            model_config = SettingsConfigDict(env_file=str(env_file))

        settings = FileSettings()
        assert settings.window_minutes == 20
        assert settings.db_url == "sqlite:///env.db"

        self.monkeypatch.setenv("WINDOW_MINUTES", "25")
        assert FileSettings().window_minutes == 25

    def test_case_insensitive_lookup(self):
        class LooseSettings(ExampleSettings):
            model_config = SettingsConfigDict(case_sensitive=False)

        self.monkeypatch.setenv("window_minutes", "5")
        assert LooseSettings().window_minutes == 5
