"""Tests for environment-driven scoring settings."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from pydantic import ValidationError
from pytest_check import check

from treescore.config import ScoringSettings, get_settings
from treescore.fields import DEFAULT_MISSING_TOKENS
from treescore.model import Model


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Run each test away from any `.env` file and with a fresh settings cache.

    Args:
        monkeypatch (pytest.MonkeyPatch): Pytest monkeypatch fixture.
        tmp_path (Path): Temporary working directory.

    Yields:
        None: Control to the test.
    """
    monkeypatch.chdir(tmp_path)
    for name in ("MISSING_STRATEGY", "BY_NAME", "MISSING_TOKENS", "MAX_WORKERS"):
        monkeypatch.delenv(f"TREESCORE_{name}", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestScoringSettings:
    """Tests for ScoringSettings."""

    def test_defaults(self) -> None:
        """Without overrides the settings should hold the documented defaults."""
        # Act
        settings = ScoringSettings()

        # Assert
        with check:
            assert settings.missing_strategy == "last_prediction"
        with check:
            assert settings.by_name is True
        with check:
            assert settings.missing_tokens == list(DEFAULT_MISSING_TOKENS)
        with check:
            assert settings.max_workers == 1

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Prefixed environment variables should override each default.

        Args:
            monkeypatch (pytest.MonkeyPatch): Pytest monkeypatch fixture.
        """
        # Arrange
        monkeypatch.setenv("TREESCORE_MISSING_STRATEGY", "proportional")
        monkeypatch.setenv("TREESCORE_BY_NAME", "false")
        monkeypatch.setenv("TREESCORE_MISSING_TOKENS", '["", "?"]')
        monkeypatch.setenv("TREESCORE_MAX_WORKERS", "4")

        # Act
        settings = ScoringSettings()

        # Assert
        with check:
            assert settings.missing_strategy == "proportional"
        with check:
            assert settings.by_name is False
        with check:
            assert settings.missing_tokens == ["", "?"]
        with check:
            assert settings.max_workers == 4

    def test_dotenv_file_is_read(self, tmp_path: Path) -> None:
        """A `.env` file in the working directory should be honoured.

        Args:
            tmp_path (Path): Temporary working directory.
        """
        # Arrange
        (tmp_path / ".env").write_text("TREESCORE_MAX_WORKERS=3\n", encoding="utf-8")

        # Act / Assert
        assert ScoringSettings().max_workers == 3

    @pytest.mark.parametrize(
        ("name", "value"),
        [("MAX_WORKERS", "0"), ("MISSING_STRATEGY", "mean")],
        ids=["no-workers", "unknown-strategy"],
    )
    def test_invalid_values_are_rejected(self, monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
        """Out-of-range or unknown values should fail validation.

        Args:
            monkeypatch (pytest.MonkeyPatch): Pytest monkeypatch fixture.
            name (str): Setting name without the prefix.
            value (str): Environment value.
        """
        monkeypatch.setenv(f"TREESCORE_{name}", value)

        with pytest.raises(ValidationError):
            ScoringSettings()


class TestGetSettings:
    """Tests for get_settings."""

    def test_settings_are_cached(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """The environment is read once; later changes need a cache reset.

        Args:
            monkeypatch (pytest.MonkeyPatch): Pytest monkeypatch fixture.
        """
        # Arrange
        first = get_settings()
        monkeypatch.setenv("TREESCORE_MAX_WORKERS", "8")

        # Act
        cached = get_settings()
        get_settings.cache_clear()
        refreshed = get_settings()

        # Assert
        with check:
            assert cached is first
        with check:
            assert cached.max_workers == 1
        with check:
            assert refreshed.max_workers == 8

    def test_models_fall_back_to_process_settings(
        self,
        monkeypatch: pytest.MonkeyPatch,
        classification_definition: dict,
    ) -> None:
        """Models built without explicit settings should use the cached ones.

        Args:
            monkeypatch (pytest.MonkeyPatch): Pytest monkeypatch fixture.
            classification_definition (dict): Model definition fixture.
        """
        # Arrange
        monkeypatch.setenv("TREESCORE_MISSING_STRATEGY", "proportional")

        # Act
        model = Model(classification_definition)

        # Assert
        assert model.settings.missing_strategy == "proportional"
