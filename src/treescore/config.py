"""Scoring defaults read from the environment."""

from __future__ import annotations

import functools

from pydantic import Field
from pydantic_settings import BaseSettings

from treescore.fields import DEFAULT_MISSING_TOKENS
from treescore.models import MissingStrategy


class ScoringSettings(
    BaseSettings,
    env_prefix="TREESCORE_",
    env_file=".env",
    env_file_encoding="utf-8",
    extra="ignore",
):
    """Defaults applied when a prediction call does not set them explicitly.

    Every attribute can be overridden with a `TREESCORE_`-prefixed environment
    variable or a `.env` entry, e.g. `TREESCORE_MISSING_STRATEGY=proportional`
    or `TREESCORE_MISSING_TOKENS='["", "?"]'`.

    Attributes:
        missing_strategy (MissingStrategy): Strategy used for records missing
            a split field.
        by_name (bool): Whether input records are keyed by field name.
        missing_tokens (list[str]): Values treated as absent, unless the model
            definition declares its own.
        max_workers (int): Threads used to evaluate ensemble members; 1 runs
            them sequentially.
    """

    missing_strategy: MissingStrategy = Field(
        default="last_prediction",
        description="Strategy used for records missing a split field.",
    )
    by_name: bool = Field(default=True, description="Whether input records are keyed by field name.")
    missing_tokens: list[str] = Field(
        default_factory=lambda: list(DEFAULT_MISSING_TOKENS),
        description="Values treated as absent unless the model declares its own.",
    )
    max_workers: int = Field(default=1, ge=1, description="Threads used to evaluate ensemble members.")


@functools.cache
def get_settings() -> ScoringSettings:
    """Return the process-wide default settings, read once from the environment.

    Returns:
        ScoringSettings: The cached settings instance.
    """
    return ScoringSettings()
